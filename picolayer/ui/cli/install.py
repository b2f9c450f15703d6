"""
CLI commands for package-manager installs.

One subcommand per package adapter (``apt-get``, ``apt``, ``aptitude``,
``apk``, ``brew``). Each is a thin wrapper over
``picolayer.core.services.orchestrator.install_packages``. ``adapters``
reports which of them fit the current host.
"""

from __future__ import annotations

import json

import click
from pydantic import ValidationError

from picolayer.core.models.request import PackageRequest, parse_csv
from picolayer.ui.cli.common import json_option, run_reported


def _get_registry(ctx: click.Context):
    registry = ctx.obj.get("registry")
    if registry is None:
        from picolayer.adapters.registry import build_registry

        registry = ctx.obj["registry"] = build_registry()
    return registry


def _get_adapter(ctx: click.Context, name: str):
    adapter = _get_registry(ctx).get(name)
    if adapter is None:
        raise click.UsageError(f"unknown package adapter: {name}")
    return adapter


def _build_request(packages: tuple[str, ...], alt_repos: str | None, force: bool) -> PackageRequest:
    names = [name for item in packages for name in parse_csv(item)]
    if not names:
        raise click.BadParameter("at least one package name is required", param_hint="PACKAGES")
    try:
        return PackageRequest(
            packages=names,
            alt_repos=parse_csv(alt_repos),
            force_alt_repos_on_foreign_host=force,
        )
    except ValidationError as e:
        raise click.BadParameter(str(e), param_hint="PACKAGES") from e


def _run_install(ctx: click.Context, adapter_name: str, request: PackageRequest, as_json: bool) -> None:
    from picolayer.core.services.orchestrator import install_packages

    adapter = _get_adapter(ctx, adapter_name)
    settings = ctx.obj["settings"]
    report = run_reported(
        ctx,
        adapter_name,
        lambda: install_packages(request, adapter, settings),
        {"packages": len(request.packages), "alt_repos": len(request.alt_repos)},
    )

    if as_json:
        click.echo(json.dumps(report.to_dict(), indent=2))
        return
    if not ctx.obj.get("quiet"):
        click.secho(f"✅ Installed {', '.join(report.packages)} via {adapter_name}", fg="green")
        if report.alt_repos:
            click.echo(f"   Alt-repos used and removed: {', '.join(report.alt_repos)}")
        restored = [str(p) for p in report.captured]
        if restored:
            click.echo(f"   Cache restored: {', '.join(restored)}")


def _package_command(adapter_name: str, summary: str, *, with_alt_repos: bool) -> click.Command:
    @click.argument("packages", nargs=-1, required=True)
    @json_option
    @click.pass_context
    def command(ctx: click.Context, packages: tuple[str, ...], as_json: bool, **options) -> None:
        request = _build_request(
            packages,
            options.get("alt_repos"),
            options.get("force_alt_repos", False),
        )
        _run_install(ctx, adapter_name, request, as_json)

    command.__doc__ = (
        f"{summary}\n\n"
        "PACKAGES is a comma-separated list (or several arguments). The "
        "package manager's cache is snapshotted first and restored "
        "exactly afterwards."
    )

    if with_alt_repos:
        command = click.option(
            "--force-ppas-on-non-ubuntu",
            "--force-alt-repos-on-foreign-host",
            "force_alt_repos",
            is_flag=True,
            help="Add PPAs even when the host is not Ubuntu.",
        )(command)
        command = click.option(
            "--ppas",
            "--alt-repos",
            "alt_repos",
            default=None,
            metavar="CSV",
            help="Comma-separated PPAs to add for this install only.",
        )(command)

    return click.command(adapter_name)(command)


@click.command("adapters")
@json_option
@click.pass_context
def adapters(ctx: click.Context, as_json: bool) -> None:
    """Show which package adapters can run on this host."""
    registry = _get_registry(ctx)
    available = registry.available()
    rows = []
    for name in registry.list_adapters():
        adapter = registry.get(name)
        ok = name in available
        rows.append({
            "name": name,
            "available": ok,
            "reason": None if ok else adapter.unavailable_reason(),
            "cache_roots": [str(p) for p in adapter.cache_roots],
        })

    if as_json:
        click.echo(json.dumps({"available": available, "adapters": rows}, indent=2))
        return

    for row in rows:
        if row["available"]:
            click.secho(f"✅ {row['name']:<10} cache: {', '.join(row['cache_roots'])}", fg="green")
        else:
            click.secho(f"❌ {row['name']:<10} {row['reason']}", fg="red")


apt_get = _package_command("apt-get", "Install Debian packages with apt-get.", with_alt_repos=True)
apt = _package_command("apt", "Install Debian packages with apt.", with_alt_repos=True)
aptitude = _package_command("aptitude", "Install Debian packages with aptitude.", with_alt_repos=False)
apk = _package_command("apk", "Install Alpine packages with apk.", with_alt_repos=False)
brew = _package_command("brew", "Install Homebrew packages.", with_alt_repos=False)

PACKAGE_COMMANDS = (apt_get, apt, aptitude, apk, brew)
