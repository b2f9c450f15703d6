"""
Privileged exec — how picolayer runs system commands as root.

Package managers and the system copy/remove fallbacks all go through
``PrivilegedRunner.run``. When the effective uid is already 0 the
command runs directly; otherwise it is prefixed with ``sudo`` and the
allow-listed environment is passed across as ``NAME=value`` arguments.
Stdio is inherited so package-manager output reaches the build log.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import time
from collections.abc import Iterable, Mapping

from picolayer.core.errors import AdapterStepFailure, PrivilegeUnavailable
from picolayer.core.models.exec import ExecResult

logger = logging.getLogger(__name__)

# Always carried across the sudo boundary so the child logs where we do.
LOGGING_VARS = ("PICOLAYER_LOG_LEVEL", "PICOLAYER_LOG_FILE", "PICOLAYER_LOG_FILE_LEVEL")

DEFAULT_PRESERVE_PREFIXES = ("DEBIAN_FRONTEND", "HOMEBREW_")

# Exit status reported when the executable itself cannot be found.
COMMAND_NOT_FOUND = 127


class PrivilegedRunner:
    """Run commands, elevating through sudo when not already root."""

    def __init__(
        self,
        preserve_prefixes: Iterable[str] = DEFAULT_PRESERVE_PREFIXES,
        *,
        sudo: str = "sudo",
    ):
        self.preserve_prefixes = tuple(preserve_prefixes)
        self.sudo = sudo

    @staticmethod
    def is_root() -> bool:
        return os.geteuid() == 0

    def preserved_env(self, environ: Mapping[str, str] | None = None) -> dict[str, str]:
        """Variables that must survive the privilege boundary."""
        env = os.environ if environ is None else environ
        kept: dict[str, str] = {}
        for name, value in env.items():
            if name in LOGGING_VARS or name.startswith(self.preserve_prefixes):
                kept[name] = value
        return kept

    def build_argv(
        self,
        argv: list[str],
        *,
        privileged: bool = True,
        env: Mapping[str, str] | None = None,
    ) -> list[str]:
        """Final argv, with the sudo prefix when elevation is needed.

        Raises:
            PrivilegeUnavailable: Elevation needed but sudo is missing.
        """
        if not privileged or self.is_root():
            return list(argv)
        if shutil.which(self.sudo) is None:
            raise PrivilegeUnavailable(
                f"'{argv[0]}' needs root privileges and '{self.sudo}' is not available"
            )
        merged = self.preserved_env()
        if env:
            merged.update(env)
        assignments = [f"{k}={v}" for k, v in sorted(merged.items())]
        return [self.sudo, *assignments, *argv]

    def run(
        self,
        argv: list[str],
        *,
        step: str | None = None,
        privileged: bool = True,
        check: bool = True,
        quiet: bool = False,
        env: Mapping[str, str] | None = None,
    ) -> ExecResult:
        """Run ``argv`` to completion.

        Args:
            argv: Command and arguments.
            step: Name reported in ``AdapterStepFailure`` (default: argv[0]).
            privileged: Elevate when not root.
            check: Raise on non-zero exit.
            quiet: Discard the child's stdout/stderr instead of inheriting.
            env: Extra variables for the child.

        Raises:
            AdapterStepFailure: ``check`` is set and the child failed.
            PrivilegeUnavailable: Elevation needed but sudo is missing.
        """
        step = step or argv[0]
        cmd = self.build_argv(argv, privileged=privileged, env=env)

        child_env = os.environ.copy()
        if env:
            child_env.update(env)

        sink = subprocess.DEVNULL if quiet else None
        logger.info("Running %s: %s", step, " ".join(cmd))
        start = time.monotonic()
        try:
            proc = subprocess.run(cmd, env=child_env, stdout=sink, stderr=sink)
            exit_code = proc.returncode
        except FileNotFoundError:
            logger.error("Command not found: %s", cmd[0])
            exit_code = COMMAND_NOT_FOUND
        elapsed_ms = int((time.monotonic() - start) * 1000)

        result = ExecResult(
            argv=cmd,
            exit_code=exit_code,
            elapsed_ms=elapsed_ms,
            privileged=cmd[:1] == [self.sudo] and privileged,
        )
        logger.debug("%s exited %d after %dms", step, exit_code, elapsed_ms)

        if check and not result.ok:
            raise AdapterStepFailure(step, exit_code, cmd)
        return result

    def succeeds(self, argv: list[str], *, privileged: bool = False) -> bool:
        """Quietly run a probe command; True on zero exit."""
        return self.run(argv, privileged=privileged, check=False, quiet=True).ok
