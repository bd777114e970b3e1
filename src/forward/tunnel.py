"""Local port-forwarding to the compute node through one or two SSH hops.

Each hop is a background OpenSSH client started with ``-N -L``. The processes
are handed back to the caller inside a :class:`~forward.models.TunnelSession`
and keep running after this process exits; nothing here terminates them.

Direct topology (the login node can reach the node's port)::

    localhost:<local> --ssh resource--> node:<remote>

Double-hop topology (the node is only reachable from the login node)::

    localhost:<local> --ssh resource (master)--> resource:<mid>
    resource:<mid>    --ssh node (run through the master)--> node:<remote>
"""

from __future__ import annotations

import logging
import os
import socket
import subprocess
import tempfile
import time
from typing import Callable, List, Optional

from .config import ForwardConfig
from .errors import TunnelSequencingError, TunnelSetupError
from .models import Hop, HopProcess, NodeAllocation, TunnelSession

logger = logging.getLogger(__name__)

LOCAL_HOST = "127.0.0.1"


def port_is_listening(host: str, port: int, timeout: float = 1.0) -> bool:
    """Return True if something accepts TCP connections on ``host:port``."""
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError:
        return False


def local_port_available(port: int) -> bool:
    """Return True if ``port`` can still be bound on the loopback interface."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        try:
            sock.bind((LOCAL_HOST, port))
        except OSError:
            return False
    return True


class TunnelBuilder:
    """Starts and verifies the forwarding hops for a node allocation.

    Args:
        config: Supplies the login host, SSH options and retry settings.
        popen: Replacement for :class:`subprocess.Popen`.
        listening: ``listening(host, port) -> bool`` used to check the local listener.
        port_available: ``port_available(port) -> bool`` checked before the first hop.
        sleep: Replacement for ``time.sleep``.
    """

    def __init__(
        self,
        config: ForwardConfig,
        *,
        popen: Callable[..., subprocess.Popen] = subprocess.Popen,
        listening: Callable[[str, int], bool] = port_is_listening,
        port_available: Callable[[int], bool] = local_port_available,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        self._popen = popen
        self._listening = listening
        self._port_available = port_available
        self._sleep = sleep

    def build_tunnel(
        self,
        allocation: NodeAllocation,
        local_port: int,
        remote_port: int,
    ) -> TunnelSession:
        """Forward ``localhost:local_port`` to ``remote_port`` on the allocated node.

        Raises:
            TunnelSetupError: If ``local_port`` is already taken, ssh cannot be
                started, a hop exits right after starting or the local
                listener never comes up. Hops already running are left alone
                and attached to the error's ``session``.
        """
        session = TunnelSession(local_port=local_port)
        node = allocation.node_hostname
        if not self._port_available(local_port):
            raise TunnelSetupError(
                f"localhost:{local_port} is already in use. Stop whatever is "
                "listening there or pick another port with --port.",
                session=session,
            )

        if allocation.reachable_directly:
            logger.info("Forwarding localhost:%d -> %s:%d", local_port, node, remote_port)
            hop = Hop(
                via_host=self.config.resource,
                target_host=node,
                target_port=remote_port,
                listen_port=local_port,
            )
            self._start_hop(session, hop, self._direct_command(hop))
            self._verify_listener(session, session.processes[0])
            return session

        control_dir = os.path.expanduser(self.config.control_dir)
        try:
            os.makedirs(control_dir, mode=0o700, exist_ok=True)
        except OSError as e:
            raise TunnelSetupError(
                f"Could not create the ssh control directory {control_dir}: {e}",
                session=session,
            ) from e
        mid_port = self.config.intermediate_port or remote_port
        logger.info(
            "Forwarding localhost:%d -> %s:%d -> %s:%d",
            local_port,
            self.config.resource,
            mid_port,
            node,
            remote_port,
        )
        first = Hop(
            via_host=self.config.resource,
            target_host="localhost",
            target_port=mid_port,
            listen_port=local_port,
        )
        self._start_hop(session, first, self._master_command(first))
        self._verify_listener(session, session.processes[0])
        self.start_chained_hop(session, node, remote_port)
        return session

    def start_chained_hop(
        self,
        session: TunnelSession,
        node: str,
        remote_port: int,
    ) -> HopProcess:
        """Start the second hop through the first hop's master session.

        Raises:
            TunnelSequencingError: If the first hop has not been started and
                verified yet.
        """
        if not session.processes or not session.processes[0].verified:
            raise TunnelSequencingError(
                "The relay hop to the compute node needs a verified first hop "
                f"listening on localhost:{session.local_port}."
            )
        first = session.processes[0].hop
        hop = Hop(
            via_host=first.via_host,
            target_host=node,
            target_port=remote_port,
            listen_port=first.target_port,
        )
        control_path = self.control_path(session.local_port)
        return self._start_hop(session, hop, self._chained_command(hop, control_path))

    def control_path(self, local_port: int) -> str:
        control_dir = os.path.expanduser(self.config.control_dir)
        return os.path.join(control_dir, f"forward-{local_port}-%C")

    def _ssh_options(self) -> List[str]:
        args = ["-o", "ExitOnForwardFailure=yes", "-o", "ServerAliveInterval=30"]
        if self.config.username:
            args += ["-l", self.config.username]
        if self.config.ssh_port != 22:
            args += ["-p", str(self.config.ssh_port)]
        if self.config.key_filename:
            args += ["-i", os.path.expanduser(self.config.key_filename)]
        return args

    def _direct_command(self, hop: Hop) -> List[str]:
        return (
            ["ssh", "-N"]
            + self._ssh_options()
            + ["-L", f"{hop.listen_port}:{hop.target_host}:{hop.target_port}"]
            + [hop.via_host]
        )

    def _master_command(self, hop: Hop) -> List[str]:
        return (
            ["ssh", "-N", "-M", "-S", self.control_path(hop.listen_port)]
            + self._ssh_options()
            + ["-L", f"{hop.listen_port}:{hop.target_host}:{hop.target_port}"]
            + [hop.via_host]
        )

    def _chained_command(self, hop: Hop, control_path: str) -> List[str]:
        # The inner ssh runs on the login node and forwards its port to the
        # node's own localhost
        return (
            ["ssh", "-S", control_path]
            + self._ssh_options()
            + [hop.via_host]
            + [
                "ssh",
                "-N",
                "-o",
                "ExitOnForwardFailure=yes",
                "-L",
                f"{hop.listen_port}:localhost:{hop.target_port}",
                hop.target_host,
            ]
        )

    def _start_hop(self, session: TunnelSession, hop: Hop, args: List[str]) -> HopProcess:
        logger.debug("Starting hop: %s", " ".join(args))
        log_path = None
        try:
            log_fd, log_path = tempfile.mkstemp(
                prefix=f"forward-hop{len(session.processes) + 1}-", suffix=".log"
            )
            with os.fdopen(log_fd, "w") as log_handle:
                process = self._popen(
                    args,
                    stdin=subprocess.DEVNULL,
                    stdout=subprocess.DEVNULL,
                    stderr=log_handle,
                    start_new_session=True,
                )
        except OSError as e:
            if log_path is not None:
                os.unlink(log_path)
            raise TunnelSetupError(
                f"Could not start '{args[0]}' for the hop via {hop.via_host}: {e}",
                session=session,
            ) from e

        handle = HopProcess(hop=hop, process=process, log_path=log_path)
        session.hops.append(hop)
        session.processes.append(handle)

        self._sleep(self.config.hop_grace_period)
        if process.poll() is not None:
            raise TunnelSetupError(
                f"Forwarding hop via {hop.via_host} to {hop.target_host}:"
                f"{hop.target_port} exited with status {process.returncode}: "
                f"{_read_log(log_path) or 'no output'}",
                session=session,
            )
        logger.debug("Hop pid %s running, log at %s", process.pid, log_path)
        return handle

    def _verify_listener(self, session: TunnelSession, handle: HopProcess) -> None:
        port = handle.hop.listen_port
        attempts = self.config.listener_attempts
        for attempt in range(attempts):
            if self._listening(LOCAL_HOST, port) and handle.is_alive():
                handle.verified = True
                logger.debug("Listener on localhost:%d ready", port)
                return
            if not handle.is_alive():
                break
            logger.debug(
                "localhost:%d not listening yet (%d/%d)", port, attempt + 1, attempts
            )
            self._sleep(self.config.listener_backoff * (attempt + 1))

        if not handle.is_alive():
            raise TunnelSetupError(
                f"Forwarding hop via {handle.hop.via_host} exited with status "
                f"{handle.process.returncode} before localhost:{port} was ready: "
                f"{_read_log(handle.log_path) or 'no output'}",
                session=session,
            )
        raise TunnelSetupError(
            f"Nothing is listening on localhost:{port} after {attempts} checks; "
            f"the forward via {handle.hop.via_host} did not come up. "
            f"{_read_log(handle.log_path)}".strip(),
            session=session,
        )


def _read_log(path: Optional[str]) -> str:
    if not path:
        return ""
    try:
        with open(path) as f:
            return f.read().strip()
    except OSError:
        return ""
