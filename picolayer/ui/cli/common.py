"""
Shared CLI plumbing — error reporting and analytics for subcommands.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Callable
from typing import Any, TypeVar

import click

from picolayer.core.errors import FilesystemError, PicolayerError
from picolayer.core.observability.analytics import track_event

logger = logging.getLogger(__name__)

T = TypeVar("T")

json_option = click.option(
    "--json-output", "--json", "as_json", is_flag=True, help="Print the result as JSON."
)


def run_reported(
    ctx: click.Context,
    command: str,
    fn: Callable[[], T],
    properties: dict[str, Any] | None = None,
) -> T:
    """Run ``fn``, turning failures into one stderr line and an exit code.

    ``PicolayerError`` carries its own kind and code; an ``OSError``
    that no service wrapped is reported as an ``io`` error. One
    analytics event is recorded per call with the outcome.
    """
    settings = ctx.obj["settings"]
    props = {"command": command, **(properties or {})}
    try:
        result = fn()
    except (PicolayerError, OSError) as e:
        error = e if isinstance(e, PicolayerError) else FilesystemError.from_os_error(e)
        if ctx.obj.get("debug"):
            logger.exception("%s failed", command)
        track_event(
            f"{command} failed",
            {**props, "outcome": error.kind},
            enabled=settings.analytics_enabled,
        )
        click.echo(f"error[{error.kind}]: {error}", err=True)
        sys.exit(error.exit_code)

    track_event(command, {**props, "outcome": "ok"}, enabled=settings.analytics_enabled)
    return result
