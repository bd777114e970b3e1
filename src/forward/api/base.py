"""
Base module for remote executors.

This module defines the abstract base class for the remote shell transport
every other component uses to reach the cluster's login node.
"""

import abc
from typing import Tuple


class BackendBase(abc.ABC):
    """
    Abstract base class for remote executors.

    An executor runs command lines and copies files against one named host,
    the cluster's login node. Implementations must not interpret command
    output; parsing belongs to the caller.
    """

    hostname: str

    @abc.abstractmethod
    def run_command(self, cmd: str) -> Tuple[str, str, int]:
        """
        Run a command line on the remote host.

        Args:
            cmd: The shell command line to run.

        Returns:
            Tuple[str, str, int]: A tuple of (stdout, stderr, return_code).

        Raises:
            BackendTimeout: If the command times out.
            BackendCommandError: If the command could not be executed at all.
        """
        pass

    @abc.abstractmethod
    def upload_file(self, local_path: str, remote_path: str) -> None:
        """
        Copy a local file to a path on the remote host.

        Raises:
            FileNotFoundError: If the local file does not exist.
            BackendCommandError: If the transfer fails.
        """
        pass

    @abc.abstractmethod
    def home_dir(self) -> str:
        """
        Return the absolute path of the operator's home directory on the host.

        Raises:
            BackendCommandError: If the home directory cannot be determined.
        """
        pass

    @abc.abstractmethod
    def remote_user(self) -> str:
        """
        Return the login name the connection authenticated as on the host.

        Raises:
            BackendCommandError: If the user cannot be determined.
        """
        pass

    def close(self) -> None:
        """Release the connection. The default implementation does nothing."""
