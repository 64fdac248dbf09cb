"""CLI commands for trusted prefix discovery."""

import json
from contextlib import nullcontext

import typer
from rich.table import Table

from apkdisguise.cli.device import make_bridge
from apkdisguise.core.inventory import AppInventory
from apkdisguise.core.prefixes import PLATFORM_PREFIXES, PrefixScanner
from apkdisguise.exceptions import DisguiseError
from apkdisguise.models.apps import PrefixOrigin
from apkdisguise.utils.output import console

app = typer.Typer(no_args_is_help=True)


@app.command("scan")
def scan_prefixes(
    device: str = typer.Option(
        None,
        "--device",
        "-d",
        help="Target device ID.",
    ),
    hide_platform: bool = typer.Option(
        False,
        "--hide-platform",
        help="Drop platform namespaces (com.android, com.google, ...).",
    ),
    min_count: int = typer.Option(
        1,
        "--min-count",
        min=1,
        help="Drop observed prefixes seen fewer times.",
    ),
    limit: int = typer.Option(
        20,
        "--limit",
        "-n",
        min=1,
        help="Show at most this many candidates.",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output as JSON.",
    ),
) -> None:
    """Rank package prefixes the device's installer is likely to trust.

    Curated recommendations always come first, then prefixes observed on
    the device by number of installed packages.
    """
    console.set_json_mode(json_output)

    try:
        bridge = make_bridge()
        target = bridge.ensure_device(device)
        scanner = PrefixScanner(
            AppInventory(bridge),
            min_occurrences=min_count,
            excluded_prefixes=PLATFORM_PREFIXES if hide_platform else (),
        )

        with console.status("Scanning installed packages...") if not json_output else nullcontext():
            candidates = scanner.scan(target)[:limit]

        if json_output:
            output = [c.model_dump(mode="json") for c in candidates]
            typer.echo(json.dumps(output, indent=2))
            return

        table = Table(title=f"Trusted Prefix Candidates ({target.display_name})")
        table.add_column("#", style="cyan", width=4)
        table.add_column("Prefix", style="green")
        table.add_column("Packages")
        table.add_column("Source")

        for i, candidate in enumerate(candidates, 1):
            recommended = candidate.origin == PrefixOrigin.RECOMMENDED
            table.add_row(
                str(i),
                candidate.prefix,
                "-" if recommended else str(candidate.occurrence_count),
                "[yellow]★ recommended[/yellow]" if recommended else "observed",
            )

        console.print(table)

    except DisguiseError as e:
        console.print_error(str(e))
        raise typer.Exit(1) from None
