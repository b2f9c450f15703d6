"""
Logging setup for a picolayer run.

Handlers hang off the ``picolayer`` logger, so every module logger
(``logging.getLogger(__name__)``) feeds them and handlers owned by the
embedding process are never touched. Records still propagate to the
root logger.

Console level precedence:
    --debug  >  --verbose  >  --quiet  >  PICOLAYER_LOG_LEVEL

``PICOLAYER_LOG_FILE`` adds a file handler at ``PICOLAYER_LOG_FILE_LEVEL``
(DEBUG when unset). File lines carry the pid: several picolayer
processes in one image build contend for the same install lock.
"""

from __future__ import annotations

import logging
import sys

from picolayer.core.config.settings import Settings
from picolayer.core.errors import ConfigError

PACKAGE_LOGGER = "picolayer"
CONSOLE_HANDLER = "picolayer.console"
FILE_HANDLER = "picolayer.file"

_CONSOLE_FORMATS = {
    logging.DEBUG: "[%(relativeCreated)7.0fms] %(levelname)s %(name)s:%(lineno)d %(message)s",
    logging.INFO: "[%(relativeCreated)7.0fms] %(name)s: %(message)s",
}
_CONSOLE_DEFAULT = "%(levelname)s: %(message)s"
_FILE_FORMAT = "%(asctime)s pid=%(process)d %(levelname)s %(name)s: %(message)s"


def level_from_name(name: str) -> int:
    """``"info"`` → ``logging.INFO``.

    Raises:
        ConfigError: ``name`` is not a logging level.
    """
    level = logging.getLevelName(name.upper())
    if not isinstance(level, int):
        raise ConfigError(f"Unknown log level: {name}")
    return level


def resolve_level(settings: Settings, *, debug: bool = False, verbose: bool = False, quiet: bool = False) -> int:
    """Console level after applying the global CLI flags over ``settings``."""
    if debug:
        return logging.DEBUG
    if verbose:
        return logging.INFO
    if quiet:
        return logging.ERROR
    return level_from_name(settings.log_level)


def _console_format(level: int) -> str:
    if level <= logging.DEBUG:
        return _CONSOLE_FORMATS[logging.DEBUG]
    if level <= logging.INFO:
        return _CONSOLE_FORMATS[logging.INFO]
    return _CONSOLE_DEFAULT


def setup_logging(settings: Settings, level: int | None = None) -> logging.Logger:
    """Install picolayer's console and file handlers.

    Calling it again replaces the handlers a previous call installed.

    Args:
        settings: Supplies the log file, its level and the default
            console level.
        level: Console level; defaults to ``settings.log_level``.

    Raises:
        ConfigError: The file level is unknown or the log file cannot
            be opened.
    """
    console_level = level if level is not None else level_from_name(settings.log_level)
    package = logging.getLogger(PACKAGE_LOGGER)
    for handler in list(package.handlers):
        if handler.get_name() in (CONSOLE_HANDLER, FILE_HANDLER):
            package.removeHandler(handler)
            handler.close()

    console = logging.StreamHandler(sys.stderr)
    console.set_name(CONSOLE_HANDLER)
    console.setLevel(console_level)
    console.setFormatter(logging.Formatter(_console_format(console_level)))
    package.addHandler(console)
    floor = console_level

    if settings.log_file is not None:
        file_level = level_from_name(settings.log_file_level) if settings.log_file_level else logging.DEBUG
        try:
            settings.log_file.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(settings.log_file, encoding="utf-8")
        except OSError as e:
            raise ConfigError(f"cannot open log file {settings.log_file}: {e.strerror or e}") from e
        file_handler.set_name(FILE_HANDLER)
        file_handler.setLevel(file_level)
        file_handler.setFormatter(logging.Formatter(_FILE_FORMAT))
        package.addHandler(file_handler)
        floor = min(floor, file_level)

    package.setLevel(floor)
    return package
