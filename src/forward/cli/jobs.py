"""Jobs subcommand for the forward CLI."""

from __future__ import annotations

from typing import Annotated, Optional

import cyclopts

from ..api import executor_from_config
from ..config import load_config
from ..registry import JobRegistry, resolve_operator
from .formatters import print_jobs_table


def list_jobs(
    env: Annotated[
        Optional[str],
        cyclopts.Parameter(
            name=["--env", "-e"],
            help="Environment name from Forwardfile.",
        ),
    ] = None,
    forwardfile: Annotated[
        Optional[str],
        cyclopts.Parameter(
            name=["--forwardfile"],
            help="Path to Forwardfile.",
        ),
    ] = None,
) -> None:
    """List your queued and running jobs on the cluster."""
    config = load_config(forwardfile, env=env)
    executor = executor_from_config(config)
    try:
        operator = resolve_operator(config, executor)
        jobs = JobRegistry(executor).list_jobs(operator)
    finally:
        executor.close()
    print_jobs_table(jobs, operator)
