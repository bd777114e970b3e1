"""Root application for the forward CLI."""

from __future__ import annotations

import sys

import cyclopts
from rich.console import Console

from .jobs import list_jobs
from .start import start

console = Console(stderr=True)


def _get_version() -> str:
    """Get package version for --version flag."""
    try:
        from importlib.metadata import version

        return version("slurm-forward")
    except Exception:
        return "unknown"


app = cyclopts.App(
    name="forward",
    help="Start a Slurm job and forward its service port to localhost.",
    version=_get_version(),
)

app.command(start, name="start")
app.command(list_jobs, name="jobs")


def _handle_error(e: Exception) -> None:
    """Handle exceptions with user-friendly messages."""
    from ..errors import (
        AllocationTimeoutError,
        BackendCommandError,
        BackendError,
        BackendTimeout,
        DuplicateJobError,
        ForwardError,
        ForwardfileEnvironmentNotFoundError,
        ForwardfileError,
        ForwardfileInvalidError,
        ForwardfileNotFoundError,
        ScriptNotFoundError,
        TunnelSetupError,
    )

    if isinstance(e, ForwardfileNotFoundError):
        console.print(f"[red]Error:[/red] {e}")
        console.print(
            "\n[dim]Hint: Create a Forwardfile in your project directory, "
            "or use --forwardfile to specify a path.[/dim]"
        )
    elif isinstance(e, ForwardfileEnvironmentNotFoundError):
        console.print(f"[red]Error:[/red] {e}")
        console.print("\n[dim]Hint: Check the table names in your Forwardfile.[/dim]")
    elif isinstance(e, ForwardfileInvalidError):
        console.print(f"[red]Error:[/red] {e}")
        console.print("\n[dim]Hint: Check your Forwardfile for TOML syntax errors.[/dim]")
    elif isinstance(e, ForwardfileError):
        console.print(f"[red]Forwardfile Error:[/red] {e}")
    elif isinstance(e, DuplicateJobError):
        console.print(f"[red]Duplicate Job:[/red] {e}")
        console.print("\n[dim]Hint: Use 'forward jobs' to see what is running.[/dim]")
    elif isinstance(e, ScriptNotFoundError):
        console.print(f"[red]Script Not Found:[/red] {e}")
    elif isinstance(e, AllocationTimeoutError):
        console.print(f"[yellow]Allocation Timeout:[/yellow] {e}")
        console.print(
            "\n[dim]Hint: The job may still be queued. Cancel it or wait until "
            "'forward jobs' no longer lists it, then run start again.[/dim]"
        )
    elif isinstance(e, TunnelSetupError):
        console.print(f"[red]Tunnel Error:[/red] {e}")
        console.print(
            "\n[dim]Hint: Check that the local port is free and that you can "
            "ssh to the login node without a prompt.[/dim]"
        )
    elif isinstance(e, ForwardError):
        console.print(f"[red]Error:[/red] {e}")
    elif isinstance(e, BackendTimeout):
        console.print(f"[red]Connection Timeout:[/red] {e}")
        console.print(
            "\n[dim]Hint: Check network connectivity and cluster availability.[/dim]"
        )
    elif isinstance(e, BackendCommandError):
        console.print(f"[red]Command Error:[/red] {e}")
        console.print(
            "\n[dim]Hint: Verify SSH credentials and cluster connectivity.[/dim]"
        )
    elif isinstance(e, BackendError):
        console.print(f"[red]Backend Error:[/red] {e}")
    else:
        console.print(f"[red]Error:[/red] {e}")

    sys.exit(1)


def main() -> None:
    """Entry point for the forward CLI."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted.[/yellow]")
        sys.exit(130)
    except SystemExit:
        raise
    except Exception as e:
        _handle_error(e)
