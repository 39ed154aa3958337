"""Console helpers shared by the tool CLIs."""

import functools
import sys
from typing import Any, Callable, Optional

import click
from rich.console import Console
from rich.table import Table

console = Console()


def info(message: str) -> None:
    """Print an informational message."""
    console.print(f"[cyan]{message}[/cyan]")


def success(message: str) -> None:
    """Print a success message."""
    console.print(f"[green]✓ {message}[/green]")


def warning(message: str) -> None:
    """Print a warning message."""
    console.print(f"[yellow]! {message}[/yellow]")


def error(message: str) -> None:
    """Print an error message."""
    console.print(f"[red]✗ {message}[/red]")


def create_table(title: Optional[str] = None) -> Table:
    """Create a table with the common style."""
    return Table(title=title, header_style="bold", show_lines=False)


def print_table(table: Table) -> None:
    console.print(table)


def confirm(message: str, default: bool = False) -> bool:
    """Ask the user for a yes/no confirmation."""
    return click.confirm(message, default=default)


def handle_errors(func: Callable[..., Any]) -> Callable[..., Any]:
    """
    Decorate a click command so unexpected errors end the process cleanly.

    Click's own exceptions (usage errors, aborts, explicit exits) pass through.
    """

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except (click.ClickException, click.Abort, click.exceptions.Exit, SystemExit):
            raise
        except KeyboardInterrupt:
            error("Interrupted")
            sys.exit(130)
        except Exception as e:
            error(str(e))
            sys.exit(1)

    return wrapper
