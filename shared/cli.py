"""Console output helpers shared by all tool CLIs."""

import functools
import sys
from typing import Any, Callable, Optional

import click
from rich.console import Console
from rich.table import Table

console = Console()


def success(message: str) -> None:
    """Print a success message."""
    console.print(f"[green]✓[/green] {message}")


def error(message: str) -> None:
    """Print an error message."""
    console.print(f"[red]✗[/red] {message}")


def warning(message: str) -> None:
    """Print a warning message."""
    console.print(f"[yellow]![/yellow] {message}")


def info(message: str) -> None:
    """Print an informational message."""
    console.print(f"[cyan]→[/cyan] {message}")


def create_table(title: Optional[str] = None) -> Table:
    """
    Create a table with the common style.

    Args:
        title: Table title

    Returns:
        Rich Table instance
    """
    return Table(title=title, show_header=True, header_style="bold")


def print_table(table: Table) -> None:
    """Print a table followed by a blank line."""
    console.print(table)
    console.print()


def handle_errors(func: Callable[..., Any]) -> Callable[..., Any]:
    """
    Decorator for CLI entrypoints that reports unexpected errors.

    click's own exits (sys.exit, usage errors) pass through untouched.
    """

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except (click.exceptions.Exit, click.exceptions.Abort, click.ClickException, SystemExit):
            raise
        except KeyboardInterrupt:
            error("Interrupted")
            sys.exit(130)
        except Exception as e:
            error(f"Unexpected error: {e}")
            sys.exit(1)

    return wrapper
