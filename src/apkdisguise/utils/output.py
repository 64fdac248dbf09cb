"""Rich console helpers for terminal output and logging."""

import logging
from typing import Any

from rich.console import Console as RichConsole
from rich.logging import RichHandler
from rich.status import Status


class Console:
    """Wrapper around rich.Console with convenience methods.

    In JSON mode nothing but the command's JSON document should reach
    stdout, so every print helper turns into a no-op.
    """

    def __init__(self) -> None:
        self._console = RichConsole()
        self._err_console = RichConsole(stderr=True)
        self._json_mode = False

    def set_json_mode(self, enabled: bool) -> None:
        """Enable or disable JSON mode (suppresses rich output)."""
        self._json_mode = enabled

    @property
    def json_mode(self) -> bool:
        return self._json_mode

    def print(self, *args: Any, **kwargs: Any) -> None:
        """Print to console (suppressed in JSON mode)."""
        if not self._json_mode:
            self._console.print(*args, **kwargs)

    def _tagged(self, tag: str, message: str) -> None:
        self.print(f"{tag} {message}")

    def print_success(self, message: str) -> None:
        self._tagged("[green]✓[/green]", message)

    def print_error(self, message: str) -> None:
        self._tagged("[red]✗[/red]", message)

    def print_info(self, message: str) -> None:
        self._tagged("[blue]ℹ[/blue]", message)

    def print_warning(self, message: str) -> None:
        self._tagged("[yellow]⚠[/yellow]", message)

    def print_verbose(self, message: str) -> None:
        """Print raw tool output dimmed and indented."""
        for line in message.splitlines():
            self.print(f"    {line}", style="dim", markup=False, highlight=False)

    def status(self, message: str) -> Status:
        """Create a status spinner context manager."""
        return self._console.status(message)

    def log_handler(self) -> RichHandler:
        """Build a log handler that writes through the stderr console."""
        return RichHandler(
            console=self._err_console,
            show_path=False,
            rich_tracebacks=True,
        )


def setup_logging(verbose: bool = False) -> None:
    """Route the package logger through rich.

    Args:
        verbose: If True, log at DEBUG, else only warnings and errors.
    """
    package_logger = logging.getLogger("apkdisguise")
    package_logger.handlers.clear()
    package_logger.addHandler(console.log_handler())
    package_logger.setLevel(logging.DEBUG if verbose else logging.WARNING)
    package_logger.propagate = False


# Global console instance
console = Console()
