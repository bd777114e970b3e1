"""Command-line interface for slurm-forward.

Usage:
    forward start <name> [extra...] [-p PARTITION] [-g GPUS] [-c CPUS]
                  [-m MEM] [-t TIME] [-f PORT] [--env ENV] [--forwardfile PATH]
    forward jobs [--env ENV] [--forwardfile PATH]
"""

from .app import app, main

__all__ = ["app", "main"]
