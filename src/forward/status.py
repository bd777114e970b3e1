"""Parsing of ``squeue`` output into typed job status records.

Status queries use a fixed, pipe-separated field format::

    squeue -h -j <job id> -o '%i|%T|%N'

which yields lines like ``4242|RUNNING|gpu07``. This format is the contract
with the scheduler; output that does not follow it raises
:class:`~forward.errors.RemoteQueryError` instead of being guessed at.
"""

from __future__ import annotations

import re
import shlex
from typing import List

from .errors import RemoteQueryError
from .models import JobState, JobStatus

STATUS_FORMAT = "%i|%T|%N"
STATUS_FIELDS = 3

PENDING_STATES = frozenset(
    {
        "PENDING",
        "CONFIGURING",
        "REQUEUED",
        "REQUEUE_HOLD",
        "REQUEUE_FED",
        "RESIZING",
    }
)
RUNNING_STATES = frozenset({"RUNNING"})
FAILED_STATES = frozenset(
    {
        "BOOT_FAIL",
        "CANCELLED",
        "COMPLETED",
        "COMPLETING",
        "DEADLINE",
        "FAILED",
        "NODE_FAIL",
        "OUT_OF_MEMORY",
        "PREEMPTED",
        "REVOKED",
        "SPECIAL_EXIT",
        "STOPPED",
        "TIMEOUT",
    }
)

# Raw state reported when the job has left the queue entirely
GONE_STATE = "GONE"

_RANGE_RE = re.compile(r"^(\d+)-(\d+)$")


def status_command(job_id: str) -> str:
    return f"squeue -h -j {shlex.quote(job_id)} -o '{STATUS_FORMAT}'"


def classify_state(raw_state: str) -> JobState:
    """Map a Slurm state name onto the states the resolver acts on."""
    # squeue may append a reason, e.g. "CANCELLED by 1234"
    base = raw_state.split()[0].upper() if raw_state.strip() else ""
    if base in PENDING_STATES:
        return JobState.PENDING
    if base in RUNNING_STATES:
        return JobState.RUNNING
    if base in FAILED_STATES or base == GONE_STATE:
        return JobState.FAILED
    return JobState.UNKNOWN


def expand_hostlist(node_list: str) -> List[str]:
    """Expand Slurm hostlist notation into individual host names.

    Handles ``c01``, ``c01,c02``, ``c[01-03]`` and ``gpu[1,3-4]``. Pending
    jobs report ``(null)`` or an empty field, which expands to nothing.
    """
    node_list = node_list.strip()
    if not node_list or node_list == "(null)":
        return []

    nodes: List[str] = []
    for part in _split_top_level(node_list):
        part = part.strip()
        if not part:
            continue
        if "[" not in part:
            nodes.append(part)
            continue
        if not part.endswith("]"):
            raise RemoteQueryError(f"Malformed node list: {node_list!r}")
        prefix, _, body = part[:-1].partition("[")
        for item in body.split(","):
            item = item.strip()
            match = _RANGE_RE.match(item)
            if match:
                start, end = match.group(1), match.group(2)
                width = len(start)
                for i in range(int(start), int(end) + 1):
                    nodes.append(f"{prefix}{str(i).zfill(width)}")
            elif item.isdigit():
                nodes.append(f"{prefix}{item}")
            else:
                raise RemoteQueryError(f"Malformed node list: {node_list!r}")
    return nodes


def _split_top_level(node_list: str) -> List[str]:
    """Split on commas that are not inside brackets."""
    parts, depth, current = [], 0, []
    for char in node_list:
        if char == "[":
            depth += 1
        elif char == "]":
            depth -= 1
        if char == "," and depth == 0:
            parts.append("".join(current))
            current = []
        else:
            current.append(char)
    parts.append("".join(current))
    return parts


def parse_status_output(job_id: str, output: str) -> JobStatus:
    """Parse ``squeue`` output for one job into a :class:`JobStatus`.

    An empty output means the job is no longer queued or running; it is
    reported as failed with raw state ``GONE``. Several lines for the same job
    (heterogeneous jobs) are merged: distinct node names accumulate and the
    first line decides the state.
    """
    lines = [line.strip() for line in output.splitlines() if line.strip()]
    if not lines:
        return JobStatus(job_id=job_id, raw_state=GONE_STATE, state=JobState.FAILED)

    raw_state = ""
    nodes: List[str] = []
    for line in lines:
        fields = line.split("|")
        if len(fields) != STATUS_FIELDS:
            raise RemoteQueryError(
                f"Unexpected squeue status line for job {job_id}: {line!r} "
                f"(expected format '{STATUS_FORMAT}')"
            )
        reported_id, state, node_list = fields
        # Heterogeneous components show up as "<id>+<n>"
        if reported_id.split("+")[0] != job_id:
            raise RemoteQueryError(
                f"squeue reported job {reported_id!r} while querying {job_id!r}"
            )
        if not raw_state:
            raw_state = state.strip()
        for node in expand_hostlist(node_list):
            if node not in nodes:
                nodes.append(node)

    return JobStatus(
        job_id=job_id,
        raw_state=raw_state,
        state=classify_state(raw_state),
        nodes=tuple(nodes),
    )
