"""Terminal output helpers shared by the session and the CLI."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator, Optional

from rich.console import Console


@contextmanager
def status(console: Optional[Console], message: str) -> Iterator[None]:
    """Show a transient spinner while a blocking step runs.

    Without a console, or when the console is not a terminal, the message is
    printed once instead so that captured output still shows the step.
    """
    if console is None:
        yield
        return

    if not console.is_terminal:
        console.print(f"[dim]{message}[/dim]")
        yield
        return

    with console.status(message, spinner="dots", spinner_style="cyan"):
        yield


def section(console: Console, title: str) -> None:
    """Print a step header such as ``== Submitting sbatch ==``."""
    console.print(f"\n[bold]== {title} ==[/bold]")


def command_hint(console: Console, command: str) -> None:
    """Print a shell command the operator can copy, without markup."""
    console.print(f"  {command}", markup=False, highlight=False)
