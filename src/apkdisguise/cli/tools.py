"""CLI commands for inspecting the external toolchain."""

import json
from pathlib import Path

import typer
from rich.table import Table

from apkdisguise.core.toolchain import (
    DEFAULT_KEYSTORE,
    TOOL_INSTALL_HINTS,
    TOOL_SPECS,
    ToolchainResolver,
    find_problems,
    generate_keystore,
)
from apkdisguise.exceptions import DisguiseError
from apkdisguise.models.apk import SigningConfig
from apkdisguise.utils.output import console

app = typer.Typer(no_args_is_help=True)


@app.command("show")
def show_tools(
    json_output: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output as JSON.",
    ),
) -> None:
    """Show where each external tool was found."""
    console.set_json_mode(json_output)

    resolver = ToolchainResolver()
    paths = resolver.resolve()
    problems = dict(find_problems(paths, install=True))

    if json_output:
        output = {
            "tools_dir": str(resolver.tools_dir),
            "paths": paths.model_dump(),
            "problems": problems,
        }
        typer.echo(json.dumps(output, indent=2))
        if problems:
            raise typer.Exit(1)
        return

    table = Table(title="Toolchain")
    table.add_column("Tool", style="cyan")
    table.add_column("Path")
    table.add_column("Status")

    for name, spec in TOOL_SPECS.items():
        value = getattr(paths, spec.field)
        if name in problems:
            status = f"[red]{problems[name]}[/red]"
        elif value:
            status = "[green]ok[/green]"
        else:
            status = "[dim]unused[/dim]"
        table.add_row(name, value or "-", status)

    console.print(table)
    console.print_info(f"Bundled tools directory: {resolver.tools_dir}")

    for name in problems:
        hint = TOOL_INSTALL_HINTS.get(name)
        if hint:
            console.print_warning(f"{name}: {hint}")

    if problems:
        raise typer.Exit(1)


@app.command("keystore")
def create_keystore(
    path: Path = typer.Argument(
        DEFAULT_KEYSTORE,
        help="Keystore file to create.",
    ),
    key_alias: str = typer.Option(
        SigningConfig().key_alias,
        "--key-alias",
        help="Key alias to create.",
    ),
    keystore_pass: str = typer.Option(
        SigningConfig().keystore_pass,
        "--keystore-pass",
        help="Keystore password.",
    ),
    key_pass: str = typer.Option(
        SigningConfig().key_pass,
        "--key-pass",
        help="Key password.",
    ),
) -> None:
    """Generate a signing keystore with keytool (kept if it already exists)."""
    try:
        existed = path.is_file()
        signing = SigningConfig(
            key_alias=key_alias, keystore_pass=keystore_pass, key_pass=key_pass
        )
        keystore = generate_keystore(path, signing)
        if existed:
            console.print_info(f"Keystore already exists: {keystore}")
        else:
            console.print_success(f"Keystore created: {keystore}")
    except DisguiseError as e:
        console.print_error(str(e))
        raise typer.Exit(1) from None
