"""Root CLI application for apkdisguise."""

import typer

from apkdisguise import __version__
from apkdisguise.cli import apps, device, prefixes, run, tools
from apkdisguise.utils.output import setup_logging

app = typer.Typer(
    name="apkdisguise",
    help="Repackage Android apps under a package name a device installer trusts.",
    no_args_is_help=True,
)

# Register subcommands
app.command("run")(run.run_pipeline)
app.add_typer(device.app, name="device", help="Manage connected Android devices")
app.add_typer(apps.app, name="apps", help="List and uninstall installed apps")
app.add_typer(prefixes.app, name="prefixes", help="Discover trusted package prefixes")
app.add_typer(tools.app, name="tools", help="Inspect the external toolchain")


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"apkdisguise {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-V",
        help="Log every tool invocation.",
    ),
) -> None:
    """apkdisguise - APK repackaging for whitelisted installers."""
    setup_logging(verbose)


if __name__ == "__main__":
    app()
