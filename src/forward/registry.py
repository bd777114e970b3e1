"""Duplicate-submission detection against the scheduler's job table."""

from __future__ import annotations

import logging
import shlex
from typing import TYPE_CHECKING, Dict, List, Set

from .api.base import BackendBase
from .errors import BackendError, DuplicateJobError, RemoteQueryError

if TYPE_CHECKING:
    from .config import ForwardConfig

logger = logging.getLogger(__name__)

LIST_FORMAT = "%i|%j|%T"


def resolve_operator(config: "ForwardConfig", executor: BackendBase) -> str:
    """Return the cluster account whose jobs are listed and checked.

    The Forwardfile's ``username`` wins. Otherwise the login name comes from
    the login node itself, since the SSH config may map to a different
    account than the local user.
    """
    if config.username:
        return config.username
    try:
        return executor.remote_user()
    except BackendError as e:
        raise RemoteQueryError(
            f"Could not determine your user on {executor.hostname}: {e}. "
            "Set username in the Forwardfile."
        ) from e


class JobRegistry:
    """Read-only view of the operator's queued and running jobs.

    The scheduler's job table is the only record consulted. The check and the
    later submission are not atomic, so two invocations racing with the same
    name can both pass.
    """

    def __init__(self, executor: BackendBase):
        self.executor = executor

    def list_jobs(self, operator: str) -> List[Dict[str, str]]:
        """Return every pending or running job owned by ``operator``.

        Each entry has the keys ``JOBID``, ``NAME`` and ``STATE``.

        Raises:
            RemoteQueryError: If ``squeue`` cannot be run or its output does not
                match the expected field format.
        """
        cmd = f"squeue -h -u {shlex.quote(operator)} -o '{LIST_FORMAT}'"
        try:
            stdout, stderr, return_code = self.executor.run_command(cmd)
        except BackendError as e:
            raise RemoteQueryError(f"Failed to list jobs for {operator}: {e}") from e

        if return_code != 0:
            raise RemoteQueryError(
                f"squeue exited with status {return_code} while listing jobs "
                f"for {operator}: {stderr.strip() or 'no error output'}"
            )

        jobs = []
        for line in stdout.splitlines():
            if not line.strip():
                continue
            # Names of jobs not started by this tool may themselves contain "|"
            fields = line.strip().split("|")
            if len(fields) < 3:
                raise RemoteQueryError(
                    f"Unexpected squeue listing line: {line!r} "
                    f"(expected format '{LIST_FORMAT}')"
                )
            jobs.append(
                {
                    "JOBID": fields[0],
                    "NAME": "|".join(fields[1:-1]),
                    "STATE": fields[-1],
                }
            )

        logger.debug("Jobs owned by %s: %s", operator, jobs)
        return jobs

    def list_running_jobs(self, operator: str) -> Set[str]:
        """Return the names of every pending or running job owned by ``operator``."""
        return {job["NAME"] for job in self.list_jobs(operator)}

    def check_previous_submit(self, name: str, operator: str) -> None:
        """Refuse to continue if a job called ``name`` is already queued or running.

        Raises:
            DuplicateJobError: If the name is taken.
        """
        if name in self.list_running_jobs(operator):
            raise DuplicateJobError(
                f"Found existing job named '{name}' for {operator}. "
                f"End it (scancel --name={name}) before starting a new one."
            )
        logger.info("No existing %s jobs found, continuing...", name)
