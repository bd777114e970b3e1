"""
SSH transport to the cluster's login node.

One paramiko connection is opened per invocation and shared by every remote
``squeue``/``sbatch``/``tail`` call and the script upload. Host aliases,
users, ports and identity files from ``~/.ssh/config`` are honoured so that
``resource = "sherlock"`` works the same as ``ssh sherlock``.
"""

import logging
import os
import socket
import time
from typing import Any, Callable, Dict, Optional, Tuple

import paramiko

from .base import BackendBase
from ..errors import BackendCommandError, BackendTimeout

logger = logging.getLogger(__name__)

SSH_CONFIG_PATH = "~/.ssh/config"


def load_host_config(hostname: str, path: str = SSH_CONFIG_PATH) -> Dict[str, Any]:
    """Return the ``~/.ssh/config`` settings that apply to ``hostname``."""
    ssh_config = paramiko.SSHConfig()
    config_file = os.path.expanduser(path)
    if os.path.exists(config_file):
        with open(config_file) as f:
            ssh_config.parse(f)
    return ssh_config.lookup(hostname)


class SSHExecutor(BackendBase):
    """
    Runs commands on the login node over a persistent SSH connection.

    The connection is opened by the constructor, retried a few times since
    login nodes are often briefly overloaded, and kept until :meth:`close`.
    """

    def __init__(
        self,
        hostname: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
        key_filename: Optional[str] = None,
        port: int = 22,
        timeout: int = 10,
        command_timeout: int = 60,
        connection_attempts: int = 3,
        retry_delay: int = 2,
        banner_timeout: int = 15,
        auth_timeout: int = 30,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        """
        Connect to ``hostname``.

        Args:
            hostname: Login node host name or ``~/.ssh/config`` alias.
            username: Remote user; falls back to ``User`` from the SSH config.
            password: Password, if key authentication is not set up.
            key_filename: Private key; falls back to ``IdentityFile``.
            port: SSH port, unless the SSH config names one.
            timeout: TCP connect timeout in seconds.
            command_timeout: Channel timeout for each remote command.
            connection_attempts: Connection attempts before giving up.
            retry_delay: Seconds between connection attempts.
            banner_timeout: Timeout waiting for the SSH banner.
            auth_timeout: Timeout for authentication.
            sleep: Replacement for ``time.sleep`` between attempts.

        Raises:
            BackendCommandError: If no attempt succeeds.
        """
        self.hostname = hostname
        self.username = username
        self.password = password
        self.key_filename = key_filename
        self.port = port
        self.timeout = timeout
        self.command_timeout = command_timeout
        self.connection_attempts = connection_attempts
        self.retry_delay = retry_delay
        self.banner_timeout = banner_timeout
        self.auth_timeout = auth_timeout
        self._sleep = sleep or time.sleep
        self._home: Optional[str] = None
        self._user: Optional[str] = None
        self.client: Optional[paramiko.SSHClient] = None

        self._connect()

    def connect_options(self) -> Dict[str, Any]:
        """Keyword arguments for :meth:`paramiko.SSHClient.connect`."""
        host_config = load_host_config(self.hostname)
        options: Dict[str, Any] = {
            "hostname": host_config.get("hostname", self.hostname),
            "port": int(host_config.get("port", self.port)),
            "username": self.username or host_config.get("user"),
            "password": self.password,
            "timeout": self.timeout,
            "banner_timeout": self.banner_timeout,
            "auth_timeout": self.auth_timeout,
        }
        if self.key_filename:
            options["key_filename"] = os.path.expanduser(self.key_filename)
        elif "identityfile" in host_config:
            options["key_filename"] = host_config["identityfile"][0]
        return options

    def _connect(self) -> None:
        options = self.connect_options()
        self.client = paramiko.SSHClient()
        self.client.set_missing_host_key_policy(paramiko.AutoAddPolicy())

        last_error: Optional[Exception] = None
        for attempt in range(1, self.connection_attempts + 1):
            logger.debug(
                "Connecting to %s as %s (attempt %d/%d)",
                options["hostname"],
                options["username"] or "default user",
                attempt,
                self.connection_attempts,
            )
            try:
                self.client.connect(**options)
            except (paramiko.SSHException, OSError) as e:
                last_error = e
                logger.warning("Connection to %s failed: %s", self.hostname, e)
                if attempt < self.connection_attempts:
                    self._sleep(self.retry_delay)
                continue
            logger.info("Connected to %s", self.hostname)
            return

        raise BackendCommandError(
            f"Failed to connect to {self.hostname} after {self.connection_attempts} attempts.\n"
            f"Last error: {last_error}\n"
            f"Common fixes:\n"
            f"  - Check that 'ssh {self.hostname}' works without a prompt\n"
            f"  - Check the Host entry in {SSH_CONFIG_PATH}\n"
            f"  - Set username/key_filename in the Forwardfile"
        )

    def run_command(self, cmd: str) -> Tuple[str, str, int]:
        logger.debug("[%s] $ %s", self.hostname, cmd)
        try:
            _, stdout, stderr = self.client.exec_command(
                cmd, timeout=self.command_timeout
            )
            return_code = stdout.channel.recv_exit_status()
            out = stdout.read().decode("utf-8", errors="replace")
            err = stderr.read().decode("utf-8", errors="replace")
        except socket.timeout as e:
            raise BackendTimeout(
                f"'{cmd}' on {self.hostname} timed out after {self.command_timeout}s"
            ) from e
        except (paramiko.SSHException, OSError) as e:
            raise BackendCommandError(
                f"Could not run '{cmd}' on {self.hostname}: {e}"
            ) from e

        logger.debug("[%s] exit %d", self.hostname, return_code)
        return out, err, return_code

    def home_dir(self) -> str:
        if self._home is None:
            stdout, stderr, return_code = self.run_command("echo $HOME")
            home = stdout.strip()
            if return_code != 0 or not home:
                raise BackendCommandError(
                    f"Could not determine the home directory on {self.hostname}: "
                    f"{stderr.strip() or 'empty output'}"
                )
            self._home = home
        return self._home

    def remote_user(self) -> str:
        if self._user is None:
            stdout, stderr, return_code = self.run_command("whoami")
            user = stdout.strip()
            if return_code != 0 or not user:
                raise BackendCommandError(
                    f"Could not determine the remote user on {self.hostname}: "
                    f"{stderr.strip() or 'empty output'}"
                )
            self._user = user
        return self._user

    def upload_file(self, local_path: str, remote_path: str) -> None:
        logger.debug("Copying %s to %s:%s", local_path, self.hostname, remote_path)
        if not os.path.isfile(local_path):
            raise FileNotFoundError(local_path)
        try:
            sftp = self.client.open_sftp()
        except (paramiko.SSHException, OSError) as e:
            raise BackendCommandError(f"SFTP upload failed: {e}") from e
        try:
            sftp.put(local_path, remote_path)
        except (paramiko.SSHException, OSError) as e:
            raise BackendCommandError(
                f"SFTP upload failed for {remote_path}: {e}"
            ) from e
        finally:
            sftp.close()

    def close(self) -> None:
        if self.client is not None:
            self.client.close()
            self.client = None
