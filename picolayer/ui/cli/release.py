"""
CLI command for installing binaries from GitHub releases.

Thin wrapper over ``picolayer.core.services.release.installer``.
"""

from __future__ import annotations

import json
from pathlib import Path

import click

from picolayer.core.models.request import parse_csv
from picolayer.ui.cli.common import json_option, run_reported


def _checksum_text(ctx: click.Context, param: click.Parameter, value: str | None):
    if value is None:
        return None
    from picolayer.core.services.release.verifier import parse_checksum_text

    try:
        return parse_checksum_text(value)
    except ValueError as e:
        raise click.BadParameter(str(e), ctx=ctx, param=param) from e


def _repo(ctx: click.Context, param: click.Parameter, value: str) -> str:
    owner, _, name = value.strip().partition("/")
    if not owner or not name or "/" in name:
        raise click.BadParameter("expected OWNER/NAME", ctx=ctx, param=param)
    return f"{owner}/{name}"


@click.command("gh-release")
@click.argument("repo", callback=_repo)
@click.argument("binary_names", nargs=-1, required=True)
@click.option("--version", "version", default="latest", show_default=True, help="Release tag, or 'latest'.")
@click.option(
    "--install-dir",
    "--bin-location",
    "install_dir",
    default="/usr/local/bin",
    show_default=True,
    type=click.Path(file_okay=False, path_type=Path),
    help="Directory the binaries are written to.",
)
@click.option("--filter", "asset_filter", default=None, help="Regex selecting the asset by name.")
@click.option("--verify-checksum", is_flag=True, help="Verify against a published checksum or signature.")
@click.option(
    "--checksum-text",
    default=None,
    callback=_checksum_text,
    metavar="ALG:HEX",
    help="Expected digest, e.g. sha256:abc123 (sha256, sha1, md5, sha512).",
)
@click.option(
    "--public-key",
    "--gpg-key",
    "public_key",
    default=None,
    help="Public key for signature checks: URL, file path, or armored text.",
)
@json_option
@click.pass_context
def gh_release(
    ctx: click.Context,
    repo: str,
    binary_names: tuple[str, ...],
    version: str,
    install_dir: Path,
    asset_filter: str | None,
    verify_checksum: bool,
    checksum_text,
    public_key: str | None,
    as_json: bool,
) -> None:
    """Install binaries from a GitHub release archive.

    REPO is OWNER/NAME; BINARY_NAMES is a comma-separated list (or several
    arguments) of file names to extract from the archive.
    """
    from picolayer.core.services.privileged import PrivilegedRunner
    from picolayer.core.services.release.client import ReleaseClient
    from picolayer.core.services.release.installer import ReleaseRequest, install_release

    if verify_checksum and checksum_text is not None:
        raise click.UsageError("--verify-checksum and --checksum-text are mutually exclusive")

    names = [name for item in binary_names for name in parse_csv(item)]
    if not names:
        raise click.BadParameter("at least one binary name is required", param_hint="BINARY_NAMES")

    settings = ctx.obj["settings"]
    client = ctx.obj.get("release_client") or ReleaseClient(settings)
    request = ReleaseRequest(
        repo=repo,
        binary_names=names,
        version=version,
        install_dir=install_dir,
        filter=asset_filter,
        verify_checksum=verify_checksum,
        checksum=checksum_text,
        public_key=public_key,
    )

    report = run_reported(
        ctx,
        "gh-release",
        lambda: install_release(request, client, ctx.obj.get("runner") or PrivilegedRunner()),
        {
            "version": version,
            "has_filter": asset_filter is not None,
            "verify_checksum": verify_checksum or checksum_text is not None,
            "binaries": len(names),
        },
    )

    if as_json:
        click.echo(json.dumps(report.to_dict(), indent=2))
        return
    if not ctx.obj.get("quiet"):
        click.secho(f"✅ Installed from {repo} {report.tag} ({report.asset})", fg="green")
        for path in report.installed:
            click.echo(f"   {path}")
