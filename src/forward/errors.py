"""Custom error types for slurm-forward."""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:  # pragma: no cover
    from .models import SubmittedJob, TunnelSession


class ForwardError(Exception):
    """Base class for every failure of a forwarding session.

    None of these errors are retried automatically. When a job has already
    been submitted, ``job`` carries it so the caller can point the operator at
    the remote ``.out``/``.err`` logs.
    """

    def __init__(self, message: str, *, job: Optional["SubmittedJob"] = None):
        super().__init__(message)
        self.message = message
        self.job = job


class DuplicateJobError(ForwardError):
    """Raised when a job with the same name is already queued or running.

    Submitting a second copy would waste an allocation and make two tunnels
    race for the same local port.

    What to check:
        - ``squeue -u $USER`` on the login node
        - End the previous job (``scancel --name=<name>``) or pick another name
    """


class ScriptNotFoundError(ForwardError):
    """Raised when no local sbatch script matches the requested name.

    Attributes:
        candidates: Every local path that was tried, in search order.
    """

    def __init__(self, message: str, *, candidates=()):
        super().__init__(message)
        self.candidates = tuple(candidates)


class SubmissionError(ForwardError):
    """Raised when job submission to the Slurm scheduler fails.

    Common causes:
        - Invalid SBATCH parameters (unknown partition, bad time format)
        - Requested resources exceed partition limits
        - The upload to the remote working directory failed

    Attributes:
        command: The sbatch command line, when one was issued.
    """

    def __init__(self, message: str, *, command: Optional[str] = None, job=None):
        super().__init__(message, job=job)
        self.command = command


class RemoteQueryError(ForwardError):
    """Raised when a scheduler query cannot be executed or parsed.

    The ``squeue`` output format is treated as a fixed contract; output that
    does not match it is an error rather than something to guess around.
    """


class JobNeverStartedError(ForwardError):
    """Raised when the job ended (failed, cancelled, completed) before running.

    What to check:
        - The job's ``.err`` log printed alongside this error
        - ``sacct -j <job id>`` for the final state and exit code
    """

    def __init__(self, message: str, *, state: Optional[str] = None, job=None):
        super().__init__(message, job=job)
        self.state = state


class AllocationTimeoutError(ForwardError):
    """Raised when the job is still pending after the allocation timeout.

    This is retriable by the operator: re-run once ``squeue`` confirms the
    stale job is gone (or cancel it first), otherwise the duplicate check
    will refuse the resubmission.
    """


class AmbiguousNodeError(ForwardError):
    """Raised when a running job reports zero or several node hostnames."""


class TunnelSequencingError(ForwardError):
    """Raised when the second hop is started before the first is verified."""


class TunnelSetupError(ForwardError):
    """Raised when a forwarding hop cannot be established.

    Hops that were already started are not torn down; ``session`` holds them
    so they can be reported.

    Common causes:
        - The local port is already in use
        - SSH authentication to the login node failed
        - The compute node refused the inner SSH connection
    """

    def __init__(
        self,
        message: str,
        *,
        session: Optional["TunnelSession"] = None,
        job=None,
    ):
        super().__init__(message, job=job)
        self.session = session


class BackendError(Exception):
    """Base class for errors originating from the remote shell transport."""


class BackendTimeout(BackendError, TimeoutError):
    """Raised when a remote command times out.

    What to check:
        - Verify the login node is responsive
        - Check network connectivity
    """


class BackendCommandError(BackendError):
    """Raised when a remote command fails to execute.

    Common causes:
        - SSH authentication failures
        - Command not found on remote system
        - Permission denied errors
    """


class ForwardfileError(Exception):
    """Base class for Forwardfile configuration errors."""


class ForwardfileNotFoundError(ForwardfileError):
    """Raised when a Forwardfile cannot be located.

    The tool searches for Forwardfile, Forwardfile.toml, forwardfile, or
    forwardfile.toml in the current directory and parent directories.

    What to check:
        - Run from within the project directory
        - Set the FORWARDFILE environment variable to an explicit path
    """


class ForwardfileInvalidError(ForwardfileError):
    """Raised when a Forwardfile contains invalid TOML or values."""


class ForwardfileEnvironmentNotFoundError(ForwardfileError):
    """Raised when a requested environment is missing from the Forwardfile.

    Examples:
        >>> load_config(env="shrelock")  # Typo!
        ForwardfileEnvironmentNotFoundError: Environment 'shrelock' not defined in Forwardfile
    """
