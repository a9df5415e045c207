"""Thin CLI wrapper for openwrt_relay.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.
"""

import json
import logging
from pathlib import Path
from typing import Annotated, Any

import typer
from rich.console import Console
from rich.logging import RichHandler

from openwrt_relay import __version__
from openwrt_relay.config import Settings, get_settings, print_settings_json
from openwrt_relay.profiles.io import ProfileLoadError, load_active_profile
from openwrt_relay.profiles.schema import ProfileSchema
from openwrt_relay.types import SelectorOutcome

# sysexits.h EX_TEMPFAIL: another selector run is active
EXIT_SELECTOR_BUSY = 75

app = typer.Typer(
    name="openwrt-relay",
    help="OpenWrt Relay - build the relay firmware and select its uplink",
    no_args_is_help=True,
)
console = Console()
err_console = Console(stderr=True)

ProfileOption = Annotated[
    Path | None,
    typer.Option("--profile", "-p", help="Device profile file (YAML or JSON)"),
]
JsonOption = Annotated[
    bool,
    typer.Option("--json", help="Output as JSON"),
]


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"openwrt-relay version {__version__}")
        raise typer.Exit()


def configure_logging(level: str) -> None:
    """Send log records to stderr through rich."""
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


def _print_json(data: Any) -> None:
    console.print(
        json.dumps(data, indent=2), markup=False, highlight=False, soft_wrap=True
    )


def _load_profile(settings: Settings, path: Path | None) -> ProfileSchema:
    if path is not None:
        settings.profile_path = path
    try:
        return load_active_profile(settings)
    except ProfileLoadError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1) from None


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
    log_level: Annotated[
        str | None,
        typer.Option("--log-level", help="Override the configured log level"),
    ] = None,
) -> None:
    """OpenWrt Relay - build the relay firmware and select its uplink."""
    configure_logging((log_level or get_settings().log_level).upper())


@app.command()
def config(json_output: JsonOption = False) -> None:
    """Show effective configuration."""
    settings = get_settings()
    if json_output:
        console.print(print_settings_json(settings), markup=False, soft_wrap=True)
        return

    profile_display = settings.profile_path or "(built-in)"
    console.print("[bold]Effective Configuration:[/bold]")
    console.print()
    console.print("[bold]Build:[/bold]")
    console.print(f"  Cache directory:     {settings.cache_dir}")
    console.print(f"  Build directory:     {settings.build_dir}")
    console.print(f"  Profile:             {profile_display}")
    console.print(f"  Offline mode:        {settings.offline}")
    console.print(f"  Selector wheels:     {settings.selector_wheels_dir}")
    console.print(f"  Log level:           {settings.log_level}")
    console.print()
    console.print("[bold]Timeouts (seconds):[/bold]")
    console.print(f"  Download timeout:    {settings.download_timeout}")
    console.print(f"  Build timeout:       {settings.build_timeout}")
    console.print()
    console.print("[bold]Uplink selector:[/bold]")
    console.print(f"  Lock file:           {settings.lock_file}")
    console.print(f"  LED directory:       {settings.leds_root}")
    console.print(f"  Relay section:       {settings.relay_section}")
    console.print(f"  Relay service:       {settings.relay_service}")
    console.print(f"  Relay process:       {settings.relay_process}")
    console.print(f"  LAN network:         {settings.lan_network}")


profile_app = typer.Typer(help="Inspect the device profile")
app.add_typer(profile_app, name="profile")


@profile_app.command("show")
def profile_show(
    profile_path: ProfileOption = None,
    json_output: JsonOption = False,
) -> None:
    """Show the active device profile."""
    from openwrt_relay.profiles.io import (
        profile_to_json_string,
        profile_to_yaml_string,
    )

    profile = _load_profile(get_settings(), profile_path)
    if json_output:
        console.print(profile_to_json_string(profile), markup=False, soft_wrap=True)
    else:
        console.print(profile_to_yaml_string(profile), markup=False, soft_wrap=True)


@profile_app.command("validate")
def profile_validate(
    path: Annotated[Path, typer.Argument(help="Profile file to validate")],
) -> None:
    """Validate a profile file."""
    from openwrt_relay.profiles.io import load_profile

    try:
        profile = load_profile(path)
    except ProfileLoadError as e:
        console.print("[red]Validation failed:[/red]")
        console.print(str(e), markup=False)
        raise typer.Exit(code=1) from None

    console.print(f"[green]✓ Valid profile: {profile.profile_id}[/green]")
    console.print(f"  Device: {profile.device_id}")
    console.print(
        f"  Target: {profile.openwrt_release}/{profile.target}/{profile.subtarget}"
    )
    console.print(f"  Uplinks: {', '.join(u.uplink_id for u in profile.uplinks)}")


@profile_app.command("export")
def profile_export(
    path: Annotated[Path, typer.Argument(help="Output file (.yaml, .yml or .json)")],
    profile_path: ProfileOption = None,
) -> None:
    """Export the active profile, e.g. to start a customized copy."""
    from openwrt_relay.profiles.io import export_profile

    profile = _load_profile(get_settings(), profile_path)
    try:
        export_profile(profile, path)
    except ProfileLoadError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(code=1) from None
    console.print(f"[green]Exported {profile.profile_id} to {path}[/green]")


builder_app = typer.Typer(help="Manage the Image Builder cache")
app.add_typer(builder_app, name="builder")


@builder_app.command("ensure")
def builder_ensure(
    profile_path: ProfileOption = None,
    force: Annotated[
        bool,
        typer.Option("--force", "-f", help="Force re-download even if cached"),
    ] = False,
    json_output: JsonOption = False,
) -> None:
    """Ensure the profile's Image Builder is downloaded."""
    from openwrt_relay.imagebuilder.fetch import FetchError
    from openwrt_relay.imagebuilder.service import (
        ImageBuilderBrokenError,
        OfflineModeError,
        ensure_builder,
    )

    settings = get_settings()
    profile = _load_profile(settings, profile_path)
    triple = f"{profile.openwrt_release}/{profile.target}/{profile.subtarget}"

    try:
        root = ensure_builder(profile, settings, force_download=force)
    except OfflineModeError:
        console.print("[red]Cannot download in offline mode[/red]")
        raise typer.Exit(code=1) from None
    except (FetchError, ImageBuilderBrokenError) as e:
        console.print(f"[red]Failed to ensure Image Builder {triple}: {e}[/red]")
        raise typer.Exit(code=1) from None

    if json_output:
        _print_json({"release_target": triple, "root_dir": str(root)})
    else:
        console.print(f"[green]✓ Image Builder ready: {triple}[/green]")
        console.print(f"  Root: {root}")


@builder_app.command("info")
def builder_info(json_output: JsonOption = False) -> None:
    """Show Image Builder cache information."""
    from openwrt_relay.imagebuilder.service import get_builder_cache_info

    info = get_builder_cache_info(get_settings())
    if json_output:
        _print_json(info)
        return
    console.print("[bold]Image Builder Cache Information:[/bold]")
    console.print()
    console.print(f"  Cache directory: {info['cache_dir']}")
    console.print(f"  Exists: {info['exists']}")
    console.print(f"  Total size: {info['total_size_human']}")


@builder_app.command("prune")
def builder_prune(profile_path: ProfileOption = None) -> None:
    """Remove the profile's cached Image Builder."""
    from openwrt_relay.imagebuilder.service import prune_builder

    settings = get_settings()
    profile = _load_profile(settings, profile_path)
    if prune_builder(profile, settings):
        console.print(f"[green]Pruned Image Builder for {profile.profile_id}[/green]")
    else:
        console.print("[yellow]No Image Builder to prune[/yellow]")


overlay_app = typer.Typer(help="Render the relay overlay")
app.add_typer(overlay_app, name="overlay")


@overlay_app.command("render")
def overlay_render(
    output_dir: Annotated[Path, typer.Argument(help="Directory to stage into")],
    profile_path: ProfileOption = None,
    skip_dependencies: Annotated[
        bool,
        typer.Option(
            "--skip-dependencies",
            help="Leave out the selector's runtime dependencies",
        ),
    ] = False,
) -> None:
    """Stage the overlay files into a directory for inspection."""
    from openwrt_relay.builds.dependencies import (
        DependencyInstallError,
        ensure_selector_dependencies,
    )
    from openwrt_relay.builds.overlay import (
        OverlayStagingError,
        compute_tree_hash,
        stage_overlay,
    )
    from openwrt_relay.imagebuilder.service import OfflineModeError

    settings = get_settings()
    profile = _load_profile(settings, profile_path)
    try:
        deps_dir = None
        if not skip_dependencies:
            deps_dir = ensure_selector_dependencies(settings)
        staged = stage_overlay(output_dir, profile, settings, dependencies_dir=deps_dir)
    except (DependencyInstallError, OfflineModeError, OverlayStagingError) as e:
        console.print(f"[red]Overlay staging failed: {e}[/red]")
        raise typer.Exit(code=1) from None

    console.print(f"[green]Staged overlay to {staged}[/green]")
    console.print(f"  Hash: {compute_tree_hash(staged)}")


build_app = typer.Typer(help="Build firmware images")
app.add_typer(build_app, name="build")


@build_app.command("run")
def build_run(
    profile_path: ProfileOption = None,
    force_download: Annotated[
        bool,
        typer.Option("--force-download", help="Re-download the Image Builder"),
    ] = False,
    json_output: JsonOption = False,
) -> None:
    """Build the factory and sysupgrade images."""
    from openwrt_relay.builds.dependencies import DependencyInstallError
    from openwrt_relay.builds.overlay import OverlayStagingError
    from openwrt_relay.builds.runner import BuildExecutionError
    from openwrt_relay.builds.service import build_image
    from openwrt_relay.imagebuilder.fetch import FetchError
    from openwrt_relay.imagebuilder.service import (
        ImageBuilderBrokenError,
        OfflineModeError,
    )
    from openwrt_relay.types import BuildStatus

    settings = get_settings()
    profile = _load_profile(settings, profile_path)

    try:
        outcome = build_image(profile, settings, force_download=force_download)
    except (
        BuildExecutionError,
        DependencyInstallError,
        FetchError,
        ImageBuilderBrokenError,
        OfflineModeError,
        OverlayStagingError,
    ) as e:
        if json_output:
            _print_json({"status": "failed", "code": e.code, "error_message": str(e)})
        else:
            console.print(f"[red]Build failed: {e}[/red]")
        raise typer.Exit(code=1) from None

    if json_output:
        _print_json(outcome.to_dict())
    elif outcome.status == BuildStatus.SUCCEEDED:
        console.print(f"[green]✓ Build succeeded: {outcome.build_dir}[/green]")
        for kind, image in outcome.images.items():
            console.print(f"  {kind}: {image.filename} ({image.sha256[:16]}...)")
    else:
        console.print(f"[red]Build failed: {outcome.error_message}[/red]")
        console.print(f"  Log: {outcome.log_path}")

    if outcome.status != BuildStatus.SUCCEEDED:
        raise typer.Exit(code=1)


uplink_app = typer.Typer(help="Select the relay uplink (runs on the router)")
app.add_typer(uplink_app, name="uplink")


@uplink_app.command("select")
def uplink_select(
    profile_path: ProfileOption = None,
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", "-n", help="Show the plan without applying it"),
    ] = False,
    json_output: JsonOption = False,
) -> None:
    """Point the relay at the active uplink.

    Invoked every minute by cron and on interface hotplug events. Exits with
    status 75 when another run holds the lock.
    """
    from openwrt_relay.uplink.service import (
        SelectorError,
        preview_selector,
        run_selector,
    )

    settings = get_settings()
    profile = _load_profile(settings, profile_path)

    if dry_run:
        try:
            observations, plan = preview_selector(settings, profile)
        except SelectorError as e:
            console.print(f"[red]Uplink selection failed: {e}[/red]")
            raise typer.Exit(code=1) from None
        selection = plan.selection
        data = {
            "addresses": observations.addresses,
            "current_network": list(observations.relay.network),
            "current_ipaddr": observations.relay.ipaddr,
            "uplink_id": selection.uplink_id if selection else None,
            "indicator": selection.indicator if selection else None,
            "staged": plan.staged,
            "indicator_on": plan.indicator_on,
        }
        if json_output:
            _print_json(data)
        else:
            for key, value in data.items():
                console.print(f"  {key}: {value}", markup=False)
        return

    try:
        report = run_selector(settings, profile)
    except SelectorError as e:
        console.print(f"[red]Uplink selection failed: {e}[/red]")
        raise typer.Exit(code=1) from None

    if json_output:
        _print_json(report.to_dict())
    else:
        console.print(f"{report.outcome.value}: {report.message}", markup=False)

    if report.outcome == SelectorOutcome.SKIPPED:
        raise typer.Exit(code=EXIT_SELECTOR_BUSY)


if __name__ == "__main__":
    app()
