# forward/__init__.py

"""
Start a job on a Slurm cluster and forward the port of the service it runs
to localhost, relaying through the login node when needed.
"""

__version__ = "0.1.0"

from .config import ForwardConfig, load_config
from .models import JobSpec, NodeAllocation, SubmittedJob, TunnelSession
from .registry import JobRegistry
from .resolver import NodeResolver
from .session import SessionOrchestrator, SessionReport
from .submit import JobSubmitter
from .tunnel import TunnelBuilder

__all__ = [
    "ForwardConfig",
    "load_config",
    "JobSpec",
    "SubmittedJob",
    "NodeAllocation",
    "TunnelSession",
    "JobRegistry",
    "JobSubmitter",
    "NodeResolver",
    "TunnelBuilder",
    "SessionOrchestrator",
    "SessionReport",
]
