"""Records passed between the stages of a forwarding session."""

from __future__ import annotations

import enum
import re
import subprocess
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

JOB_NAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")


def is_valid_job_name(name: str) -> bool:
    """Return True if ``name`` is safe as a Slurm job name and a file name."""
    return bool(name) and JOB_NAME_PATTERN.match(name) is not None


@dataclass(frozen=True)
class JobSpec:
    """What to run and with which resources. Built once from CLI input."""

    name: str
    partition: str
    cpu_count: int
    memory: str
    wall_time: str
    forward_port: int
    script_path: str
    gpu_count: int = 0
    extra_args: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not is_valid_job_name(self.name):
            raise ValueError(
                f"Invalid job name {self.name!r}: use letters, digits, '_', '-' or '.'"
            )
        if self.cpu_count <= 0:
            raise ValueError(f"cpu_count must be positive, got {self.cpu_count}")
        if self.gpu_count < 0:
            raise ValueError(f"gpu_count must be non-negative, got {self.gpu_count}")
        if self.forward_port <= 0:
            raise ValueError(f"forward_port must be positive, got {self.forward_port}")
        # Lists from the CLI are frozen into a tuple
        object.__setattr__(self, "extra_args", tuple(self.extra_args))


@dataclass(frozen=True)
class SubmittedJob:
    spec: JobSpec
    remote_job_id: str
    stdout_path: str
    stderr_path: str
    remote_script_path: str = ""

    @property
    def log_paths(self) -> Tuple[str, str]:
        return self.stdout_path, self.stderr_path


@dataclass(frozen=True)
class NodeAllocation:
    job_id: str
    node_hostname: str
    reachable_directly: bool


class JobState(enum.Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    FAILED = "FAILED"
    UNKNOWN = "UNKNOWN"


@dataclass(frozen=True)
class JobStatus:
    """One observation of a job in the scheduler's queue.

    ``raw_state`` is the scheduler's own state name (e.g. ``CONFIGURING``);
    ``state`` is the coarse state the resolver acts on. ``nodes`` holds every
    distinct hostname reported for the job, already expanded from hostlist
    notation.
    """

    job_id: str
    raw_state: str
    state: JobState
    nodes: Tuple[str, ...] = ()


@dataclass(frozen=True)
class Hop:
    """One ``ssh -L`` segment.

    The hop listens on ``listen_port`` and forwards through ``via_host`` to
    ``target_host:target_port``.
    """

    via_host: str
    target_host: str
    target_port: int
    listen_port: int


@dataclass
class HopProcess:
    """A running forwarding process. The tunnel never terminates it."""

    hop: Hop
    process: subprocess.Popen
    log_path: Optional[str] = None
    verified: bool = False

    @property
    def pid(self) -> int:
        return self.process.pid

    def is_alive(self) -> bool:
        return self.process.poll() is None


@dataclass
class TunnelSession:
    local_port: int
    hops: List[Hop] = field(default_factory=list)
    processes: List[HopProcess] = field(default_factory=list)

    @property
    def url(self) -> str:
        return f"http://localhost:{self.local_port}/"

    def alive_processes(self) -> List[HopProcess]:
        return [p for p in self.processes if p.is_alive()]
