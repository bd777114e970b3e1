"""Rich output formatters for the forward CLI."""

from __future__ import annotations

from typing import Dict, List

from rich.console import Console
from rich.table import Table

console = Console()

# Color mapping for job states
STATE_COLORS: Dict[str, str] = {
    "RUNNING": "green",
    "PENDING": "yellow",
    "CONFIGURING": "cyan",
    "COMPLETING": "cyan",
    "SUSPENDED": "yellow",
}


def _get_state_color(state: str) -> str:
    """Get color for job state."""
    base_state = state.split()[0] if state else ""
    return STATE_COLORS.get(base_state, "white")


def print_jobs_table(jobs: List[Dict[str, str]], operator: str) -> None:
    """Display the operator's queued and running jobs.

    Args:
        jobs: Entries from :meth:`forward.registry.JobRegistry.list_jobs`.
        operator: Whose jobs these are, for the title.
    """
    if not jobs:
        console.print(f"[dim]No queued or running jobs for {operator}.[/dim]")
        return

    table = Table(title=f"Jobs for {operator}")
    table.add_column("Job ID", style="cyan", no_wrap=True)
    table.add_column("Name", style="white")
    table.add_column("State", style="white")

    for job in jobs:
        state = job.get("STATE", "")
        color = _get_state_color(state)
        table.add_row(job.get("JOBID", ""), job.get("NAME", ""), f"[{color}]{state}[/{color}]")

    console.print(table)
