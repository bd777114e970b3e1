"""Start subcommand: submit a job and forward its port to localhost."""

from __future__ import annotations

import logging
import sys
from typing import Annotated, Optional

import cyclopts
from rich.console import Console

from ..api import executor_from_config
from ..config import load_config
from ..logging import configure_logging
from ..models import JobSpec, is_valid_job_name
from ..session import SessionOrchestrator
from ..submit import split_name

console = Console(stderr=True)


def start(
    name: Annotated[
        str,
        cyclopts.Parameter(
            help="Job name, or sbatch script path such as 'sherlock/jupyter'.",
        ),
    ],
    *extra: str,
    partition: Annotated[
        Optional[str],
        cyclopts.Parameter(
            name=["--partition", "-p"],
            help="Slurm partition; 'gpu' also requests a GPU.",
        ),
    ] = None,
    gpus: Annotated[
        Optional[int],
        cyclopts.Parameter(name=["--gpus", "-g"], help="Number of GPUs to request."),
    ] = None,
    cpus: Annotated[
        Optional[int],
        cyclopts.Parameter(name=["--cpus", "-c"], help="Number of CPUs to request."),
    ] = None,
    mem: Annotated[
        Optional[str],
        cyclopts.Parameter(name=["--mem", "-m"], help="Memory to allocate, e.g. 16G."),
    ] = None,
    time: Annotated[
        Optional[str],
        cyclopts.Parameter(name=["--time", "-t"], help="Max run time, e.g. 02:00:00."),
    ] = None,
    port: Annotated[
        Optional[int],
        cyclopts.Parameter(name=["--port", "-f"], help="Port to forward."),
    ] = None,
    script: Annotated[
        Optional[str],
        cyclopts.Parameter(
            name=["--script"],
            help="sbatch script to run, if it differs from the job name.",
        ),
    ] = None,
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
    verbose: Annotated[
        bool,
        cyclopts.Parameter(name=["--verbose", "-v"], help="Show debug logging."),
    ] = False,
) -> None:
    """Submit a job, wait for its node and forward its port to localhost.

    Extra positional arguments are passed to the sbatch script after the port.
    """
    configure_logging(logging.DEBUG if verbose else logging.WARNING)

    job_name, script_path = split_name(name)
    if not is_valid_job_name(job_name):
        console.print(
            f"[red]Error:[/red] Invalid job name {job_name!r}. "
            "Use letters, digits, '_', '-' or '.'."
        )
        sys.exit(1)

    config = load_config(forwardfile, env=env)
    spec = JobSpec(
        name=job_name,
        partition=partition or config.partition,
        gpu_count=config.gpus if gpus is None else gpus,
        cpu_count=config.cpus if cpus is None else cpus,
        memory=mem or config.mem,
        wall_time=time or config.time,
        forward_port=config.forward_port if port is None else port,
        script_path=script or script_path,
        extra_args=tuple(extra),
    )

    executor = executor_from_config(config)
    try:
        SessionOrchestrator(config, executor).run(spec)
    finally:
        executor.close()
