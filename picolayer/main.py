"""
picolayer — CLI entrypoint.

Usage:
    picolayer --help
    picolayer apt-get curl,git --ppas git-core/ppa
    picolayer apk ripgrep
    picolayer gh-release BurntSushi/ripgrep rg --verify-checksum
"""

from __future__ import annotations

import signal
import threading

import click

from picolayer import __version__
from picolayer.core.config.settings import Settings
from picolayer.core.errors import ConfigError
from picolayer.core.observability.logging_config import resolve_level, setup_logging
from picolayer.ui.cli.install import PACKAGE_COMMANDS, adapters
from picolayer.ui.cli.release import gh_release


def _on_sigterm(signum, frame) -> None:
    # Unwind through the orchestrator so the cache restore still runs.
    raise SystemExit(128 + signum)


@click.group()
@click.version_option(version=__version__, prog_name="picolayer")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging and tracebacks.")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, quiet: bool, debug: bool) -> None:
    """picolayer — install software without leaving cache behind in image layers."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["debug"] = debug

    try:
        if "settings" not in ctx.obj:
            ctx.obj["settings"] = Settings.from_env()
        settings: Settings = ctx.obj["settings"]
        setup_logging(settings, resolve_level(settings, debug=debug, verbose=verbose, quiet=quiet))
    except ConfigError as e:
        click.echo(f"error[{e.kind}]: {e}", err=True)
        ctx.exit(e.exit_code)

    if threading.current_thread() is threading.main_thread():
        signal.signal(signal.SIGTERM, _on_sigterm)


for _command in PACKAGE_COMMANDS:
    cli.add_command(_command)
cli.add_command(gh_release)
cli.add_command(adapters)


if __name__ == "__main__":
    cli()
