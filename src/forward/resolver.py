"""Waiting for a submitted job to start and finding the node it runs on."""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from .api.base import BackendBase
from .errors import (
    AllocationTimeoutError,
    AmbiguousNodeError,
    BackendError,
    JobNeverStartedError,
    RemoteQueryError,
)
from .models import JobState, JobStatus, NodeAllocation, SubmittedJob
from .status import parse_status_output, status_command

logger = logging.getLogger(__name__)


class NodeResolver:
    """Polls the scheduler until a job runs, then reports its node.

    Args:
        executor: Transport to the login node.
        is_reachable_directly: Predicate deciding, per hostname, whether the
            node can be forwarded to without a relay hop.
        sleep: Replacement for ``time.sleep`` between polls.
        clock: Replacement for ``time.monotonic``.
    """

    def __init__(
        self,
        executor: BackendBase,
        is_reachable_directly: Callable[[str], bool],
        *,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.executor = executor
        self.is_reachable_directly = is_reachable_directly
        self._sleep = sleep
        self._clock = clock

    def poll(self, job_id: str) -> JobStatus:
        """Query the scheduler once for ``job_id``."""
        try:
            stdout, stderr, return_code = self.executor.run_command(
                status_command(job_id)
            )
        except BackendError as e:
            raise RemoteQueryError(f"Failed to query job {job_id}: {e}") from e

        if return_code != 0:
            # squeue forgets finished jobs and then rejects their id
            if "Invalid job id specified" in stderr:
                return parse_status_output(job_id, "")
            raise RemoteQueryError(
                f"squeue exited with status {return_code} for job {job_id}: "
                f"{stderr.strip() or 'no error output'}"
            )
        return parse_status_output(job_id, stdout)

    def resolve_node(
        self,
        job: SubmittedJob,
        poll_interval: float,
        timeout: float,
    ) -> NodeAllocation:
        """Block until ``job`` runs and return its allocation.

        The wait can be interrupted with Ctrl-C at any poll.

        Raises:
            JobNeverStartedError: If the job ended without being seen running.
            AllocationTimeoutError: If it is still waiting after ``timeout``
                seconds. Safe to retry once the stale job is gone.
            AmbiguousNodeError: If the running job does not report exactly one
                node.
            RemoteQueryError: If the scheduler cannot be queried.
        """
        job_id = job.remote_job_id
        start = self._clock()
        last_raw_state: Optional[str] = None

        while True:
            status = self.poll(job_id)
            if status.raw_state != last_raw_state:
                logger.info("Job %s is %s", job_id, status.raw_state)
                last_raw_state = status.raw_state

            if status.state is JobState.RUNNING:
                return self._allocation(job, status)

            if status.state is JobState.FAILED:
                raise JobNeverStartedError(
                    f"Job {job_id} ended in state {status.raw_state} "
                    f"before it started running.",
                    state=status.raw_state,
                    job=job,
                )

            if status.state is JobState.UNKNOWN:
                logger.warning(
                    "Job %s reports unrecognised state %r, still waiting",
                    job_id,
                    status.raw_state,
                )

            elapsed = self._clock() - start
            if elapsed >= timeout:
                raise AllocationTimeoutError(
                    f"Job {job_id} was not allocated a node within {timeout:g}s "
                    f"(last state: {status.raw_state}).",
                    job=job,
                )

            logger.debug("Waiting %gs before polling job %s again", poll_interval, job_id)
            self._sleep(poll_interval)

    def _allocation(self, job: SubmittedJob, status: JobStatus) -> NodeAllocation:
        if len(status.nodes) != 1:
            found = ", ".join(status.nodes) if status.nodes else "none"
            raise AmbiguousNodeError(
                f"Job {status.job_id} is running but reported {len(status.nodes)} "
                f"node(s) ({found}); expected exactly one.",
                job=job,
            )
        node = status.nodes[0]
        reachable = bool(self.is_reachable_directly(node))
        logger.info("Job %s running on %s", status.job_id, node)
        return NodeAllocation(
            job_id=status.job_id,
            node_hostname=node,
            reachable_directly=reachable,
        )
