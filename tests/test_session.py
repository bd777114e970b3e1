import io
import sys
import tempfile
from pathlib import Path

from unittest.mock import MagicMock

import pytest
from rich.console import Console

from forward.config import ForwardConfig
from forward.errors import DuplicateJobError, JobNeverStartedError, TunnelSetupError
from forward.models import JobSpec
from forward.resolver import NodeResolver
from forward.registry import JobRegistry
from forward.session import SessionOrchestrator
from forward.tunnel import TunnelBuilder

HELPERS_DIR = Path(__file__).parent / "helpers"
if str(HELPERS_DIR) not in sys.path:
    sys.path.insert(0, str(HELPERS_DIR))
from fakes import FakeClock, FakeExecutor, FakePopen, squeue_line  # type: ignore

STDOUT_LOG = "/home/op/forward-util/nb1.sbatch.out"
STDERR_LOG = "/home/op/forward-util/nb1.sbatch.err"


@pytest.fixture(autouse=True)
def hop_logs_in_tmp(tmp_path, monkeypatch):
    monkeypatch.setattr(tempfile, "tempdir", str(tmp_path))


@pytest.fixture
def config(tmp_path):
    script = tmp_path / "sbatches" / "nb1.sbatch"
    script.parent.mkdir(parents=True)
    script.write_text("#!/bin/bash\njupyter notebook --port=$1\n", encoding="utf-8")
    return ForwardConfig(
        resource="login",
        username="op",
        script_root=str(tmp_path),
        isolated_compute_nodes=True,
        control_dir=str(tmp_path),
        poll_interval=5.0,
        allocation_timeout=600.0,
        connection_wait=10.0,
    )


def _spec():
    return JobSpec(
        name="nb1",
        partition="gpu",
        cpu_count=4,
        memory="16G",
        wall_time="02:00:00",
        forward_port=8888,
        script_path="nb1",
    )


def _orchestrator(config, executor, popen, clock):
    output = io.StringIO()
    orchestrator = SessionOrchestrator(
        config,
        executor,
        resolver=NodeResolver(
            executor, config.reachability, sleep=clock.sleep, clock=clock
        ),
        tunnel_builder=TunnelBuilder(
            config,
            popen=popen,
            listening=lambda host, port: True,
            port_available=lambda port: True,
            sleep=clock.sleep,
        ),
        console=Console(file=output, width=200),
        sleep=clock.sleep,
    )
    return orchestrator, output


def _cluster(*job_states):
    return (
        FakeExecutor()
        .on("squeue -h -u", ("", "", 0))
        .on("sbatch", ("Submitted batch job 77\n", "", 0))
        .on("squeue -h -j", *job_states)
    )


def test_session_on_isolated_gpu_node(config):
    executor = _cluster(
        squeue_line("77", "PENDING"),
        squeue_line("77", "PENDING"),
        squeue_line("77", "RUNNING", "gpu07"),
    ).on("tail -n 20 " + STDOUT_LOG, ("[I] Jupyter Server is running\n", "", 0))
    popen = FakePopen()
    clock = FakeClock()
    orchestrator, output = _orchestrator(config, executor, popen, clock)

    report = orchestrator.run(_spec())

    assert report.url == "http://localhost:8888/"
    assert report.allocation.node_hostname == "gpu07"
    assert report.allocation.reachable_directly is False
    assert len(report.tunnel.processes) == 2
    relay = report.tunnel.hops[1]
    assert (relay.via_host, relay.target_host, relay.target_port) == ("login", "gpu07", 8888)

    (sbatch,) = executor.commands_starting_with("sbatch")
    assert "--partition=gpu" in sbatch
    assert "--gres=gpu:1" in sbatch
    assert "--cpus-per-task=4" in sbatch
    assert "--mem=16G" in sbatch
    assert "--time=02:00:00" in sbatch
    assert 10.0 in clock.sleeps

    text = output.getvalue()
    assert STDOUT_LOG in text
    assert STDERR_LOG in text
    assert "Jupyter Server is running" in text
    assert "http://localhost:8888/" in text
    assert "scancel --name=nb1" in text


def test_duplicate_job_submits_nothing(config):
    executor = FakeExecutor().on("squeue -h -u", ("12|nb1|RUNNING\n", "", 0))
    orchestrator, output = _orchestrator(config, executor, FakePopen(), FakeClock())

    with pytest.raises(DuplicateJobError) as exc_info:
        orchestrator.run(_spec())

    assert exc_info.value.job is None
    assert executor.commands_starting_with("sbatch") == []
    assert executor.uploads == []
    assert STDOUT_LOG not in output.getvalue()


def test_job_that_never_starts_points_at_logs(config):
    executor = _cluster(squeue_line("77", "PENDING"), squeue_line("77", "FAILED"))
    popen = FakePopen()
    orchestrator, output = _orchestrator(config, executor, popen, FakeClock())

    with pytest.raises(JobNeverStartedError) as exc_info:
        orchestrator.run(_spec())

    assert exc_info.value.job.remote_job_id == "77"
    assert popen.calls == []
    assert STDERR_LOG in output.getvalue()


def test_relay_failure_reports_running_first_hop(config):
    executor = _cluster(squeue_line("77", "RUNNING", "gpu07"))
    popen = FakePopen(exit_codes={1: 255})
    orchestrator, output = _orchestrator(config, executor, popen, FakeClock())

    with pytest.raises(TunnelSetupError) as exc_info:
        orchestrator.run(_spec())

    assert exc_info.value.job.remote_job_id == "77"
    text = output.getvalue()
    assert f"pid {popen.processes[0].pid}" in text
    assert STDOUT_LOG in text


def test_interrupt_while_waiting_keeps_job_info(config):
    executor = _cluster(squeue_line("77", "PENDING"))
    clock = FakeClock()

    def interrupted(seconds):
        raise KeyboardInterrupt

    output = io.StringIO()
    orchestrator = SessionOrchestrator(
        config,
        executor,
        resolver=NodeResolver(executor, config.reachability, sleep=interrupted, clock=clock),
        tunnel_builder=TunnelBuilder(config, popen=FakePopen()),
        console=Console(file=output, width=200),
    )

    with pytest.raises(KeyboardInterrupt):
        orchestrator.run(_spec())

    text = output.getvalue()
    assert "job 77 is still queued" in text
    assert STDOUT_LOG in text


def test_unexpected_tunnel_error_still_points_at_logs(config):
    executor = _cluster(squeue_line("77", "RUNNING", "gpu07"))
    tunnel_builder = MagicMock()
    tunnel_builder.build_tunnel.side_effect = RuntimeError("boom")
    clock = FakeClock()
    output = io.StringIO()
    orchestrator = SessionOrchestrator(
        config,
        executor,
        resolver=NodeResolver(
            executor, config.reachability, sleep=clock.sleep, clock=clock
        ),
        tunnel_builder=tunnel_builder,
        console=Console(file=output, width=200),
        sleep=clock.sleep,
    )

    with pytest.raises(RuntimeError, match="boom"):
        orchestrator.run(_spec())

    text = output.getvalue()
    assert text.count(STDOUT_LOG) == 2
    assert STDERR_LOG in text


def test_duplicate_check_uses_remote_login_name(tmp_path, monkeypatch):
    monkeypatch.setenv("USER", "alice")
    config = ForwardConfig(resource="login", control_dir=str(tmp_path))
    executor = FakeExecutor(user="asmith").on(
        "squeue -h -u", ("12|nb1|RUNNING\n", "", 0)
    )
    orchestrator = SessionOrchestrator(
        config,
        executor,
        registry=JobRegistry(executor),
        console=Console(file=io.StringIO(), width=200),
    )

    with pytest.raises(DuplicateJobError, match="asmith"):
        orchestrator.run(_spec())

    assert executor.commands == ["squeue -h -u asmith -o '%i|%j|%T'"]
