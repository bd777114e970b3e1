"""
This package provides the remote shell transport used to reach the
cluster's login node.
"""

from typing import Any

from .base import BackendBase
from .ssh import SSHExecutor


def create_executor(backend_type: str, **kwargs: Any) -> BackendBase:
    """
    Create a remote executor of the specified type.

    Args:
        backend_type: The type of executor to create ("ssh").
        **kwargs: Additional arguments to pass to the executor constructor.

    Returns:
        A connected remote executor.

    Raises:
        ValueError: If the specified executor type is not supported.
    """
    if backend_type == "ssh":
        # Filter out None values to avoid passing None to the executor
        ssh_kwargs = {k: v for k, v in kwargs.items() if v is not None}
        return SSHExecutor(**ssh_kwargs)
    else:
        raise ValueError(f"Unsupported backend type: {backend_type}")


def executor_from_config(config) -> BackendBase:
    """Connect to the login node named by a :class:`~forward.config.ForwardConfig`."""
    return create_executor(
        "ssh",
        hostname=config.resource,
        username=config.username,
        port=config.ssh_port,
        key_filename=config.key_filename,
    )


__all__ = ["BackendBase", "SSHExecutor", "create_executor", "executor_from_config"]
