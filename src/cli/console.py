"""Console output helpers for the intent-engine CLI.

Usage:
    from cli.console import console, print_panel, print_success, print_error

    print_success("Operation completed")
    print_panel("Title", "Content here")
"""

from typing import Any, Dict, Iterable, Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

console = Console()


def print_success(message: str) -> None:
    """Print a success message (green checkmark)."""
    console.print(f"[green]✓[/green] {message}")


def print_error(message: str) -> None:
    """Print an error message (red X)."""
    console.print(f"[red]✗[/red] {message}")


def print_warning(message: str) -> None:
    """Print a warning message (yellow warning sign)."""
    console.print(f"[yellow]⚠[/yellow] {message}")


def print_info(message: str) -> None:
    console.print(f"[blue]ℹ[/blue] {message}")


def print_panel(title: str, content: str, style: str = "blue") -> None:
    """Print content in a panel/box."""
    console.print(Panel(content, title=title, border_style=style))


def create_table(title: str = "", columns: Optional[Iterable[str]] = None) -> Table:
    table = Table(title=title) if title else Table()
    for column in columns or ():
        table.add_column(column)
    return table


def key_value_table(title: str, values: Dict[str, Any]) -> Table:
    """Two-column table of ``values`` in insertion order."""
    table = create_table(title, ["Field", "Value"])
    for key, value in values.items():
        table.add_row(str(key), "-" if value is None else str(value))
    return table


def print_table(table: Table) -> None:
    console.print(table)


__all__ = [
    "console",
    "print_success",
    "print_error",
    "print_warning",
    "print_info",
    "print_panel",
    "create_table",
    "key_value_table",
    "print_table",
]
