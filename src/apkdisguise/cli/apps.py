"""CLI commands for installed applications."""

import json
from contextlib import nullcontext

import typer
from rich.table import Table

from apkdisguise.cli.device import make_bridge
from apkdisguise.core.confirmation import ConfirmState, UninstallConfirmation
from apkdisguise.core.identifier import is_valid_package_name
from apkdisguise.core.inventory import AppInventory
from apkdisguise.exceptions import DisguiseError, ValidationError
from apkdisguise.models.apps import InstalledApp
from apkdisguise.utils.output import console

app = typer.Typer(no_args_is_help=True)


@app.command("list")
def list_apps(
    query: str = typer.Argument(
        None,
        help="Filter by package or display name (substring match).",
    ),
    device: str = typer.Option(
        None,
        "--device",
        "-d",
        help="Target device ID.",
    ),
    user_only: bool = typer.Option(
        False,
        "--user-only",
        "-u",
        help="Only user-installed apps.",
    ),
    system_only: bool = typer.Option(
        False,
        "--system-only",
        "-s",
        help="Only system apps.",
    ),
    versions: bool = typer.Option(
        False,
        "--versions",
        help="Fetch version names (slower, one query per app).",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output as JSON.",
    ),
) -> None:
    """List installed apps on a device."""
    console.set_json_mode(json_output)

    if user_only and system_only:
        console.print_error("Cannot use both --user-only and --system-only")
        raise typer.Exit(1)

    try:
        bridge = make_bridge()
        target = bridge.ensure_device(device)
        inventory = AppInventory(bridge)

        with console.status("Reading package list...") if not json_output else nullcontext():
            apps = inventory.list(
                target,
                include_system=not user_only,
                include_user=not system_only,
                query=query,
                with_versions=versions,
            )

        if json_output:
            output = [a.model_dump(exclude_none=True) for a in apps]
            typer.echo(json.dumps(output, indent=2))
            return

        if not apps:
            console.print_warning("No apps found")
            raise typer.Exit(1) from None

        table = Table(title=f"Installed Apps on {target.display_name} ({len(apps)})")
        table.add_column("Name")
        table.add_column("Package", style="cyan")
        if versions:
            table.add_column("Version")
        table.add_column("Type")

        for a in apps:
            kind = "[red]system[/red]" if a.is_system else "[green]user[/green]"
            row = [a.display_name, a.package_name]
            if versions:
                row.append(a.version_label or "-")
            row.append(kind)
            table.add_row(*row)

        console.print(table)

    except DisguiseError as e:
        console.print_error(str(e))
        raise typer.Exit(1) from None


def _confirm(app_info: InstalledApp) -> bool:
    """Walk the user through the confirmation flow for one app."""
    flow = UninstallConfirmation()
    flow.start(app_info)

    while not flow.confirmed:
        if flow.state == ConfirmState.CONFIRM:
            ok = typer.confirm(
                f"Uninstall {app_info.display_name} ({app_info.package_name})?"
            )
        elif flow.state == ConfirmState.WARNED:
            console.print_warning(
                f"{app_info.package_name} is a SYSTEM app. Removing it can make the "
                "device unstable and cannot be undone from here."
            )
            ok = typer.confirm("Continue?")
        elif flow.state == ConfirmState.INPUT_PENDING:
            typed = typer.prompt(f"Type the package name to confirm ({app_info.package_name})")
            if flow.advance(typed=typed) == ConfirmState.INPUT_PENDING:
                console.print_error("Package name does not match")
                flow.cancel()
                return False
            continue
        else:
            ok = typer.confirm(f"Last chance: uninstall {app_info.package_name}?")

        if not ok:
            flow.cancel()
            return False
        flow.advance()

    return True


@app.command("uninstall")
def uninstall_app(
    package_name: str = typer.Argument(
        ...,
        help="Exact package name to remove.",
    ),
    device: str = typer.Option(
        None,
        "--device",
        "-d",
        help="Target device ID.",
    ),
    yes: bool = typer.Option(
        False,
        "--yes",
        "-y",
        help="Skip confirmation for user apps. System apps always ask.",
    ),
) -> None:
    """Uninstall an app from a device.

    User apps need one confirmation. System apps need three: a warning,
    typing the exact package name, and a final confirmation. System apps are
    removed for user 0 only.
    """
    try:
        if not is_valid_package_name(package_name):
            raise ValidationError(f"Not a valid package name: {package_name!r}")

        bridge = make_bridge()
        target = bridge.ensure_device(device)
        app_info = AppInventory(bridge).get(target, package_name)

        if app_info is None:
            raise ValidationError(f"{package_name} is not installed on {target.id}")

        if not (yes and not app_info.is_system) and not _confirm(app_info):
            console.print_info("Cancelled")
            raise typer.Exit(1)

        with console.status(f"Uninstalling {package_name}..."):
            bridge.uninstall(target, package_name, user=0 if app_info.is_system else None)

        console.print_success(f"Uninstalled {package_name}")

    except DisguiseError as e:
        console.print_error(str(e))
        raise typer.Exit(1) from None
