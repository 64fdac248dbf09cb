"""CLI commands for device management."""

import json
import subprocess

import typer
from rich.table import Table

from apkdisguise.core.adb import DeviceBridge
from apkdisguise.core.toolchain import TOOL_INSTALL_HINTS, ToolchainResolver
from apkdisguise.exceptions import DisguiseError, ToolNotFoundError
from apkdisguise.models.device import Device, TransportState
from apkdisguise.utils.output import console

app = typer.Typer(no_args_is_help=True)

STATE_STYLES = {
    TransportState.ONLINE: "green",
    TransportState.UNAUTHORIZED: "yellow",
    TransportState.DISCONNECTED: "red",
}


def make_bridge() -> DeviceBridge:
    """Build a DeviceBridge over the resolved adb client.

    Raises:
        ToolNotFoundError: If adb cannot be found.
    """
    adb_path = ToolchainResolver().resolve_one("shell")
    if not adb_path:
        raise ToolNotFoundError("adb", TOOL_INSTALL_HINTS["shell"])
    return DeviceBridge(adb_path=adb_path)


def _state_cell(device: Device) -> str:
    style = STATE_STYLES[device.state]
    label = device.state.value
    if device.raw_state and device.raw_state not in ("device", label):
        label += f" ({device.raw_state})"
    return f"[{style}]{label}[/{style}]"


@app.command("list")
def list_devices(
    json_output: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output as JSON.",
    ),
) -> None:
    """List every device the adb daemon reports, usable or not."""
    console.set_json_mode(json_output)

    try:
        devices = make_bridge().discover()
    except DisguiseError as e:
        console.print_error(str(e))
        raise typer.Exit(1) from None

    if json_output:
        output = [
            {**d.model_dump(mode="json", exclude_none=True), "available": d.is_available}
            for d in devices
        ]
        typer.echo(json.dumps(output, indent=2))
        return

    if not len(devices):
        console.print_warning("No devices connected")
        raise typer.Exit(1)

    table = Table(title="Devices")
    table.add_column("ID", style="cyan")
    table.add_column("State")
    table.add_column("Model")
    table.add_column("Transport")

    for device in devices:
        table.add_row(
            device.id,
            _state_cell(device),
            device.model or "-",
            device.transport_id or "-",
        )

    console.print(table)

    unauthorized = [d.id for d in devices if d.state == TransportState.UNAUTHORIZED]
    if unauthorized:
        console.print_warning(
            f"Accept the USB debugging prompt on: {', '.join(unauthorized)}"
        )
    console.print_info(f"{len(devices.available)} device(s) usable")


@app.command("shell")
def shell(
    device: str = typer.Option(
        None,
        "--device",
        "-d",
        help="Target device ID.",
    ),
    command: list[str] | None = typer.Argument(
        None,
        help="Command to run (omit for interactive shell).",
    ),
) -> None:
    """Run a shell command on a device, or open an interactive shell."""
    try:
        bridge = make_bridge()
        target = bridge.ensure_device(device)

        if command:
            typer.echo(bridge.shell(target, command), nl=False)
            return

        # Interactive sessions need the terminal, not captured pipes
        subprocess.run([bridge.adb_path, "-s", target.id, "shell"], check=False)

    except DisguiseError as e:
        console.print_error(str(e))
        raise typer.Exit(1) from None
