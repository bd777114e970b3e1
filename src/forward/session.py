"""Sequencing of a forwarding session: check, submit, wait, tunnel, report."""

from __future__ import annotations

import logging
import shlex
import time
from dataclasses import dataclass
from typing import Callable, Optional

from rich.console import Console

from .api.base import BackendBase
from .config import ForwardConfig
from .errors import BackendError, ForwardError, TunnelSetupError
from .models import JobSpec, NodeAllocation, SubmittedJob, TunnelSession
from .registry import JobRegistry, resolve_operator
from .resolver import NodeResolver
from .submit import JobSubmitter
from .tunnel import TunnelBuilder
from .ui import command_hint, section, status

logger = logging.getLogger(__name__)

LOG_TAIL_LINES = 20


@dataclass(frozen=True)
class SessionReport:
    job: SubmittedJob
    allocation: NodeAllocation
    tunnel: TunnelSession

    @property
    def url(self) -> str:
        return self.tunnel.url


class SessionOrchestrator:
    """Runs one forwarding session end to end.

    Components are built from ``config`` unless passed in explicitly.
    """

    def __init__(
        self,
        config: ForwardConfig,
        executor: BackendBase,
        *,
        registry: Optional[JobRegistry] = None,
        submitter: Optional[JobSubmitter] = None,
        resolver: Optional[NodeResolver] = None,
        tunnel_builder: Optional[TunnelBuilder] = None,
        console: Optional[Console] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        self.executor = executor
        self.registry = registry or JobRegistry(executor)
        self.submitter = submitter or JobSubmitter(executor, config)
        self.resolver = resolver or NodeResolver(executor, config.reachability)
        self.tunnel_builder = tunnel_builder or TunnelBuilder(config)
        self.console = console or Console()
        self._sleep = sleep

    def run(self, spec: JobSpec) -> SessionReport:
        """Start ``spec`` on the cluster and forward its port to localhost.

        Every error propagates unchanged. Once a job has been submitted its
        remote log paths are printed first.
        """
        console = self.console
        job: Optional[SubmittedJob] = None
        try:
            section(console, "Checking for previous job")
            operator = resolve_operator(self.config, self.executor)
            self.registry.check_previous_submit(spec.name, operator)

            section(console, "Submitting sbatch")
            job = self.submitter.submit(spec)
            console.print(f"Submitted job [cyan]{job.remote_job_id}[/cyan]")
            self.print_log_instructions(job)

            with status(console, f"Waiting for job {job.remote_job_id} to start..."):
                allocation = self.resolver.resolve_node(
                    job,
                    poll_interval=self.config.poll_interval,
                    timeout=self.config.allocation_timeout,
                )
            console.print(f"{spec.name} running on [green]{allocation.node_hostname}[/green]")

            if self.config.connection_wait > 0:
                with status(console, "Waiting for the service to start..."):
                    self._sleep(self.config.connection_wait)

            section(console, "Setting up port forwarding")
            tunnel = self.tunnel_builder.build_tunnel(
                allocation,
                local_port=spec.forward_port,
                remote_port=spec.forward_port,
            )
        except ForwardError as e:
            if e.job is None:
                e.job = job
            if isinstance(e, TunnelSetupError) and e.session is not None:
                self.print_partial_tunnel(e.session)
            if e.job is not None:
                self.print_log_instructions(e.job)
            raise
        except KeyboardInterrupt:
            if job is not None:
                self.console.print(
                    f"\n[yellow]Interrupted; job {job.remote_job_id} is still queued.[/yellow]"
                )
                self.print_log_instructions(job)
            raise
        except Exception:
            if job is not None:
                self.print_log_instructions(job)
            raise

        section(console, "Connecting")
        self.print_logs(job)
        self.print_log_instructions(job)
        self.print_instructions(job, allocation, tunnel)
        return SessionReport(job=job, allocation=allocation, tunnel=tunnel)

    def print_log_instructions(self, job: SubmittedJob) -> None:
        resource = self.config.resource
        section(self.console, "View logs in separate terminal")
        command_hint(self.console, f"ssh {resource} cat {job.stdout_path}")
        command_hint(self.console, f"ssh {resource} cat {job.stderr_path}")

    def print_logs(self, job: SubmittedJob) -> None:
        """Show the tail of the remote logs. Failure to read them is not fatal."""
        for path in job.log_paths:
            try:
                stdout, _, return_code = self.executor.run_command(
                    f"tail -n {LOG_TAIL_LINES} {shlex.quote(path)}"
                )
            except BackendError as e:
                logger.warning("Could not read %s: %s", path, e)
                continue
            if return_code != 0:
                logger.debug("No log at %s yet", path)
                continue
            if stdout.strip():
                self.console.print(f"[dim]--- {path} ---[/dim]")
                self.console.print(stdout.rstrip(), markup=False, highlight=False)

    def print_partial_tunnel(self, session: TunnelSession) -> None:
        alive = session.alive_processes()
        if not alive:
            return
        self.console.print(
            "[yellow]Partially built tunnel left running:[/yellow]"
        )
        for handle in alive:
            hop = handle.hop
            self.console.print(
                f"  pid {handle.pid}: localhost:{hop.listen_port} via {hop.via_host} "
                f"-> {hop.target_host}:{hop.target_port}"
            )

    def print_instructions(
        self,
        job: SubmittedJob,
        allocation: NodeAllocation,
        tunnel: TunnelSession,
    ) -> None:
        node = allocation.node_hostname
        port = job.spec.forward_port
        pids = ", ".join(str(p.pid) for p in tunnel.processes)
        section(self.console, "Instructions")
        self.console.print(f"Node:    [green]{node}[/green]")
        self.console.print(f"URL:     [link={tunnel.url}]{tunnel.url}[/link]")
        self.console.print(f"Tunnel:  pid {pids}")
        self.console.print(
            "1. Password, output, and error printed to this terminal? "
            "Look at logs (see instruction above)"
        )
        self.console.print(
            f"2. Browser: http://{node}:{port}/ -> {tunnel.url}"
        )
        self.console.print(
            f"3. To end session: scancel --name={job.spec.name} on "
            f"{self.config.resource}, then stop the tunnel (kill {pids})"
        )
