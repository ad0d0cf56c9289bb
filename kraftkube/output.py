"""
Output utility for the kraftkube CLI with colors, progress indicators, and verbosity control.

Errors go to stderr. Command results (a generated cluster id, a properties
document) are printed unstyled and regardless of verbosity.
"""

from contextlib import contextmanager
from enum import IntEnum
from typing import TYPE_CHECKING, Iterator, List, Optional, Sequence

from rich import box
from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn
from rich.table import Table

if TYPE_CHECKING:
    from kraftkube.checks import CheckResult
    from kraftkube.materializer import ConfigDocument


class Verbosity(IntEnum):
    """Verbosity levels for output."""

    QUIET = 0  # Only errors and final results
    NORMAL = 1  # Standard output with colors
    VERBOSE = 2  # Detailed output including file paths, command execution


class OutputManager:
    """
    Centralized output manager for the kraftkube CLI.

    Provides methods for formatted output with colors, progress indicators,
    and verbosity control.
    """

    def __init__(self, verbosity: Verbosity = Verbosity.NORMAL):
        self.verbosity = verbosity
        self.console = Console()
        self.error_console = Console(stderr=True)

    def success(self, message: str) -> None:
        """Print a success message in green."""
        if self.verbosity != Verbosity.QUIET:
            self.console.print(f"[green]✓[/green] {message}")

    def error(self, message: str, suggestion: Optional[str] = None) -> None:
        """Print an error message in red to stderr."""
        self.error_console.print(f"✗ {message}", style="red", markup=False, soft_wrap=True)
        if suggestion and self.verbosity >= Verbosity.NORMAL:
            self.error_console.print(f"💡 {suggestion}", style="yellow", markup=False)

    def warning(self, message: str) -> None:
        """Print a warning message in yellow."""
        if self.verbosity != Verbosity.QUIET:
            self.console.print(f"[yellow]⚠[/yellow] {message}", style="yellow")

    def info(self, message: str) -> None:
        """Print an info message in blue."""
        if self.verbosity >= Verbosity.NORMAL:
            self.console.print(f"[blue]ℹ[/blue] {message}", style="blue")

    def result(self, message: str) -> None:
        """Print a command's result, plain and unwrapped, even in quiet mode."""
        self.console.print(message, markup=False, highlight=False, soft_wrap=True)

    def verbose(self, message: str) -> None:
        """Print a verbose message (only shown in VERBOSE mode)."""
        if self.verbosity >= Verbosity.VERBOSE:
            self.console.print(f"[dim]{message}[/dim]", style="dim")

    def section(self, title: str) -> None:
        """Print a section header."""
        if self.verbosity != Verbosity.QUIET:
            self.console.print(f"\n[bold cyan]{title}[/bold cyan]")

    def table(
        self,
        title: str,
        columns: List[str],
        rows: Sequence[Sequence[str]],
        show_header: bool = True,
    ) -> None:
        """Print a table."""
        if self.verbosity != Verbosity.QUIET:
            table = Table(title=title, show_header=show_header, box=box.ROUNDED)
            for col in columns:
                table.add_column(col)
            for row in rows:
                table.add_row(*row)
            self.console.print(table)

    def config_document(self, document: "ConfigDocument") -> None:
        """Print a node's configuration as a property table."""
        identity = document.identity
        self.table(
            f"{identity.role.value} node {identity.node_id} ({identity.host})",
            ["Property", "Value"],
            [[key, value] for key, value in document.properties.items()],
        )

    def check_results(self, results: List["CheckResult"]) -> None:
        """Print deployment check results, one row per check."""
        rows = [
            ["[green]PASS[/green]" if r.passed else "[red]FAIL[/red]", r.name, r.detail]
            for r in results
        ]
        self.table("Deployment checks", ["Status", "Check", "Detail"], rows)

    @contextmanager
    def progress(self, description: str, total: int = 0) -> Iterator[Optional[Progress]]:
        """
        Context manager for progress bars.

        Args:
            description: Description of the operation
            total: Total number of items (0 for indeterminate)

        Yields:
            Progress instance for updating progress (None in quiet mode)
        """
        if self.verbosity == Verbosity.QUIET:
            yield None
            return

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
            console=self.console,
            transient=False,
        ) as progress:
            progress.add_task(description, total=total)
            yield progress


# Global output manager instance
_output_manager: Optional[OutputManager] = None


def get_output() -> OutputManager:
    """
    Get the global output manager instance.

    Returns:
        OutputManager instance
    """
    global _output_manager
    if _output_manager is None:
        _output_manager = OutputManager()
    return _output_manager


def set_output(manager: OutputManager) -> None:
    """Set the global output manager instance."""
    global _output_manager
    _output_manager = manager
