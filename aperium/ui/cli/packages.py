"""
CLI commands for packages — create, install, view, detect, list.

Thin wrappers over ``aperium.core``.  Everything below the click layer
raises ``AperiumError``; it is caught here, printed, and turned into
exit status 1.
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

import click

from aperium.core.errors import AperiumError, ExecutionError


def _settings(ctx: click.Context):
    from aperium.core.config.loader import load_settings

    return load_settings(ctx.obj.get("config_path"))


def _fail(error: Exception) -> None:
    click.secho(f"❌ {error}", fg="red")
    if isinstance(error, ExecutionError) and error.stderr:
        click.echo("Error output (stderr, first 1KB):", err=True)
        click.echo(error.stderr, err=True)
    sys.exit(1)


def _confirmer(yes: bool, no_rebuild: bool):
    if yes:
        return lambda _msg: True
    if no_rebuild:
        return lambda _msg: False
    return lambda msg: click.confirm(msg, default=True)


def _tick() -> None:
    click.echo(".", nl=False, err=True)


# ── Install ─────────────────────────────────────────────────────


@click.command()
@click.argument("package", type=click.Path(dir_okay=False))
@click.option("--force", is_flag=True, help="Reinstall even if this exact build is installed.")
@click.option("--yes", "-y", is_flag=True, help="Rebuild NixOS without asking.")
@click.option("--no-rebuild", is_flag=True, help="Never rebuild NixOS (only patch the configuration).")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def install(
    ctx: click.Context,
    package: str,
    force: bool,
    yes: bool,
    no_rebuild: bool,
    as_json: bool,
) -> None:
    """Install an .apm package on this system."""
    from aperium.core.persistence.registry import InstallRegistry
    from aperium.core.services.nixos_patcher import NixosPatcher
    from aperium.core.services.platform_detect import detect as detect_platform
    from aperium.core.services.privileged import PrivilegedRunner
    from aperium.core.services.script_executor import ScriptExecutor
    from aperium.core.services.vault import load_or_create_key
    from aperium.core.use_cases.install import install_package

    show_progress = not (ctx.obj.get("quiet") or as_json)

    try:
        settings = _settings(ctx)
        key = load_or_create_key(settings.key_file)
        runner = PrivilegedRunner(elevate=settings.use_sudo)
        result = install_package(
            Path(package),
            key=key,
            registry=InstallRegistry(settings.registry_dir, runner),
            executor=ScriptExecutor(runner, progress=_tick if show_progress else None),
            patcher=NixosPatcher(
                runner,
                _confirmer(yes, no_rebuild),
                config_path=settings.nixos_config,
                modules_dir=settings.nixos_modules_dir,
                rebuild_command=settings.rebuild_command,
                validate=settings.validate_nix,
            ),
            detect_platform=lambda: detect_platform(settings.os_release),
            force=force,
        )
    except AperiumError as e:
        if show_progress:
            click.echo(err=True)
        _fail(e)
        return

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        return

    if show_progress:
        click.echo(err=True)
    for warning in result.warnings:
        click.secho(f"⚠️  {warning}", fg="yellow")

    if result.status == "already_installed":
        click.secho(
            f"✅ {result.name} is already installed (identical content). Nothing to do.",
            fg="green",
        )
        return
    if result.status == "no_payload":
        click.secho(f"⚠️  Nothing to install for {result.platform} in {result.name}.", fg="yellow")
        return

    click.secho(f"✅ Installed {result.name} {result.version}", fg="green", bold=True)
    click.echo(f"   Platform: {result.platform} ({result.payload} payload)")
    if result.nixos and result.nixos.module_path:
        click.echo(f"   Module:   {result.nixos.module_path}")
        click.echo(f"   Backup:   {result.nixos.backup_path}")
        if result.nixos.rebuild == "skipped":
            click.secho("   Rebuild skipped. Run `sudo nixos-rebuild switch` to apply.", fg="yellow")


# ── Create ──────────────────────────────────────────────────────


@click.command()
@click.argument("name")
@click.option("--generic", default=None, help="Generic bash script for every Linux.")
@click.option("--arch", default=None, help="Installation commands for Arch Linux.")
@click.option("--debian", default=None, help="Installation commands for Debian/Ubuntu.")
@click.option("--nixos", default=None, help="NixOS packages, comma-separated (e.g. neofetch, git).")
@click.option(
    "--output-dir",
    "-o",
    type=click.Path(file_okay=False),
    default=".",
    help="Directory to write <name>.apm into.",
)
@click.pass_context
def create(
    ctx: click.Context,
    name: str,
    generic: str | None,
    arch: str | None,
    debian: str | None,
    nixos: str | None,
    output_dir: str,
) -> None:
    """Create a new encrypted .apm package.

    Without any script option the contents are asked for interactively.

    Examples:

        aper create htop-pack --debian "apt install htop" --nixos htop

        aper create tools --generic "curl -fsSL https://example.org/i.sh | sh"
    """
    from aperium.core.services.package_container import create_package
    from aperium.core.services.vault import load_or_create_key

    scripts = {
        k: v
        for k, v in {"generic": generic, "arch": arch, "debian": debian, "nixos": nixos}.items()
        if v is not None
    }
    if not scripts:
        scripts = _prompt_scripts()

    try:
        settings = _settings(ctx)
        key = load_or_create_key(settings.key_file)
        output = create_package(name, scripts, key, Path(output_dir))
    except AperiumError as e:
        _fail(e)
        return

    click.secho(f'✅ "{output.name}" package successfully created: {output}', fg="green", bold=True)


def _prompt_scripts() -> dict[str, str]:
    kind = click.prompt(
        "Generic bash script (all Linux) or distribution-specific commands?",
        type=click.Choice(["generic", "specific"]),
        default="specific",
    )
    if kind == "generic":
        return {
            "generic": click.prompt(
                "Enter the generic bash installation script (can be left blank)",
                default="",
                show_default=False,
            )
        }
    return {
        "arch": click.prompt(
            "Enter installation commands for Arch Linux (can be left blank)",
            default="",
            show_default=False,
        ),
        "debian": click.prompt(
            "Enter installation commands for Debian/Ubuntu (can be left blank)",
            default="",
            show_default=False,
        ),
        "nixos": click.prompt(
            "Enter NixOS packages to install, comma-separated (can be left blank)",
            default="",
            show_default=False,
        ),
    }


# ── View ────────────────────────────────────────────────────────


@click.command()
@click.argument("package", type=click.Path(dir_okay=False))
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def view(ctx: click.Context, package: str, as_json: bool) -> None:
    """Show the decrypted contents of an .apm package."""
    from aperium.core.services.package_container import load_package, view_package
    from aperium.core.services.vault import load_or_create_key

    try:
        settings = _settings(ctx)
        key = load_or_create_key(settings.key_file)
        descriptor = load_package(Path(package))
    except AperiumError as e:
        _fail(e)
        return

    views = view_package(descriptor, key)

    if as_json:
        click.echo(json.dumps({
            "name": descriptor.name,
            "version": descriptor.version,
            "description": descriptor.description,
            "payloads": [v.to_dict() for v in views],
        }, indent=2))
        return

    click.echo()
    click.secho(f"📦 {descriptor.name}", fg="cyan", bold=True)
    click.echo(f"   Version:     {descriptor.version}")
    click.echo(f"   Description: {descriptor.description or 'None'}")
    click.echo()

    for v in views:
        if not v.present:
            click.secho(f"   ⊘ No {v.label.lower()} found.", fg="white")
            continue
        if v.warning:
            click.secho(f"   ⚠️  {v.warning}", fg="yellow")
            continue
        click.secho(f"   ── {v.label} ──", fg="cyan")
        for line in (v.plaintext or "").splitlines():
            click.echo(f"     │ {line}")
    click.echo()


# ── Detect ──────────────────────────────────────────────────────


@click.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def detect(ctx: click.Context, as_json: bool) -> None:
    """Show which platform payload this system would use."""
    from aperium.core.services.platform_detect import detect as detect_platform

    try:
        settings = _settings(ctx)
    except AperiumError as e:
        _fail(e)
        return

    platform_id = detect_platform(settings.os_release)
    if as_json:
        click.echo(json.dumps({"platform": platform_id}))
        return
    click.secho(f"🔍 Platform: {platform_id}", fg="cyan", bold=True)


# ── List ────────────────────────────────────────────────────────


@click.command("list")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def list_installed(ctx: click.Context, as_json: bool) -> None:
    """List packages recorded as installed."""
    from aperium.core.persistence.registry import InstallRegistry

    try:
        settings = _settings(ctx)
    except AperiumError as e:
        _fail(e)
        return

    records = InstallRegistry(settings.registry_dir).list_installed()

    if as_json:
        click.echo(json.dumps([r.to_json_dict() for r in records], indent=2))
        return

    if not records:
        click.echo("No packages installed.")
        return

    click.secho(f"📦 Installed packages: {len(records)}", fg="cyan", bold=True)
    for r in records:
        click.echo(f"   • {r.name}  {r.hash[:12]}  {r.installed_at}  (aper {r.version})")
