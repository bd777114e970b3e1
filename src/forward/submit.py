"""Uploading the sbatch script and submitting it to the scheduler."""

from __future__ import annotations

import logging
import posixpath
import re
import shlex
from pathlib import Path
from typing import List, Tuple

from .api.base import BackendBase
from .config import ForwardConfig
from .errors import BackendError, ScriptNotFoundError, SubmissionError
from .models import JobSpec, SubmittedJob

logger = logging.getLogger(__name__)

SCRIPT_SUFFIX = ".sbatch"
SUBMITTED_RE = re.compile(r"Submitted batch job (\d+)")


class JobSubmitter:
    """Resolves, uploads and submits the job script for one :class:`JobSpec`."""

    def __init__(self, executor: BackendBase, config: ForwardConfig):
        self.executor = executor
        self.config = config

    def script_candidates(self, spec: JobSpec) -> List[Path]:
        """Local paths tried for ``spec.script_path``, in search order."""
        root = self.config.script_root_path
        script = spec.script_path
        if not script.endswith(SCRIPT_SUFFIX):
            script = script + SCRIPT_SUFFIX

        if "/" in spec.script_path:
            return [root / script]

        resource = self.config.resource
        return [
            root / "sbatches" / resource / script,
            root / "sbatches" / script,
            root / resource / script,
            root / script,
        ]

    def resolve_script(self, spec: JobSpec) -> Path:
        """Find the local sbatch script to upload.

        Raises:
            ScriptNotFoundError: If none of the candidates exists.
        """
        candidates = self.script_candidates(spec)
        for candidate in candidates:
            logger.debug("Looking for %s", candidate)
            if candidate.is_file():
                logger.info("Using script %s", candidate)
                return candidate

        tried = ", ".join(str(c) for c in candidates)
        raise ScriptNotFoundError(
            f"No sbatch script found for '{spec.script_path}'. Tried: {tried}",
            candidates=candidates,
        )

    def build_resource_flags(self, spec: JobSpec) -> List[str]:
        """Scheduler flags for the requested resources.

        Asking for the GPU partition implies at least one GPU.
        """
        flags = [
            f"--partition={shlex.quote(spec.partition)}",
            f"--cpus-per-task={spec.cpu_count}",
            f"--mem={shlex.quote(spec.memory)}",
            f"--time={shlex.quote(spec.wall_time)}",
        ]
        gpus = spec.gpu_count
        if spec.partition == self.config.gpu_partition and gpus == 0:
            gpus = 1
        if gpus > 0:
            flags.append(f"--gres=gpu:{gpus}")
        return flags

    def build_sbatch_command(
        self,
        spec: JobSpec,
        remote_script: str,
        stdout_path: str,
        stderr_path: str,
    ) -> str:
        parts = ["sbatch", f"--job-name={shlex.quote(spec.name)}"]
        parts.extend(self.build_resource_flags(spec))
        parts.append(f"--output={shlex.quote(stdout_path)}")
        parts.append(f"--error={shlex.quote(stderr_path)}")
        parts.append(shlex.quote(remote_script))
        # Script arguments, not scheduler flags: the script binds its service
        # to the forward port
        parts.append(str(spec.forward_port))
        parts.extend(shlex.quote(arg) for arg in spec.extra_args)
        return " ".join(parts)

    def remote_workdir(self) -> str:
        return posixpath.join(self.executor.home_dir(), self.config.remote_workdir_name)

    def submit(self, spec: JobSpec) -> SubmittedJob:
        """Upload the script for ``spec`` and submit it with ``sbatch``.

        Raises:
            ScriptNotFoundError: If the script cannot be found locally.
            SubmissionError: If the upload or ``sbatch`` fails, or no job id
                can be parsed from its output.
        """
        local_script = self.resolve_script(spec)
        script_name = local_script.name

        try:
            workdir = self.remote_workdir()
            logger.debug("Remote work directory %s", workdir)
            _, stderr, return_code = self.executor.run_command(
                f"mkdir -p {shlex.quote(workdir)}"
            )
            if return_code != 0:
                raise SubmissionError(
                    f"Failed to create remote directory {workdir}: {stderr.strip()}"
                )

            remote_script = posixpath.join(workdir, script_name)
            logger.info("Uploading %s to %s", local_script, remote_script)
            self.executor.upload_file(str(local_script), remote_script)
        except BackendError as e:
            raise SubmissionError(f"Failed to upload {local_script}: {e}") from e

        stdout_path = posixpath.join(workdir, f"{script_name}.out")
        stderr_path = posixpath.join(workdir, f"{script_name}.err")
        command = self.build_sbatch_command(spec, remote_script, stdout_path, stderr_path)

        logger.info("Submitting: %s", command)
        try:
            stdout, stderr, return_code = self.executor.run_command(command)
        except BackendError as e:
            raise SubmissionError(f"Failed to run sbatch: {e}", command=command) from e

        if return_code != 0:
            raise SubmissionError(
                f"sbatch exited with status {return_code}: "
                f"{stderr.strip() or stdout.strip()}",
                command=command,
            )

        match = SUBMITTED_RE.search(stdout)
        if not match:
            raise SubmissionError(
                f"Failed to parse job ID from sbatch output: {stdout!r}",
                command=command,
            )

        job = SubmittedJob(
            spec=spec,
            remote_job_id=match.group(1),
            stdout_path=stdout_path,
            stderr_path=stderr_path,
            remote_script_path=remote_script,
        )
        logger.info("Job submitted: %s", job.remote_job_id)
        return job


def split_name(name: str) -> Tuple[str, str]:
    """Split a CLI job argument into (job name, script path).

    ``sherlock/jupyter`` runs script ``sherlock/jupyter`` as job ``jupyter``.
    """
    script_path = name[: -len(SCRIPT_SUFFIX)] if name.endswith(SCRIPT_SUFFIX) else name
    return posixpath.basename(script_path.rstrip("/")), script_path
