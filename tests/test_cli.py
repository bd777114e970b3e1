"""Tests for the forward CLI."""

import sys
import textwrap
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from forward.cli.app import _handle_error, app, main
from forward.cli.formatters import print_jobs_table
from forward.errors import AllocationTimeoutError, DuplicateJobError

HELPERS_DIR = Path(__file__).parent / "helpers"
if str(HELPERS_DIR) not in sys.path:
    sys.path.insert(0, str(HELPERS_DIR))
from fakes import FakeExecutor  # type: ignore


def _write_sample_forwardfile(tmp_path: Path) -> Path:
    """Create a sample Forwardfile for testing."""
    content = textwrap.dedent(
        """
        [default]
        resource = "sherlock"
        username = "op"
        partition = "normal"
        cpus = 2
        mem = "8G"
        time = "01:00:00"
        forward_port = 8888

        [gpu]
        partition = "gpu"
        isolated_compute_nodes = true
        """
    )
    forwardfile = tmp_path / "Forwardfile"
    forwardfile.write_text(content, encoding="utf-8")
    return forwardfile


def _run(args):
    """Run the app and return its exit code; a normal return counts as 0."""
    try:
        app(args)
    except SystemExit as exc:
        return exc.code or 0
    return 0


def main_with_args(args):
    """Helper to run main() with specific arguments."""
    original_argv = sys.argv
    try:
        sys.argv = ["forward"] + args
        main()
    finally:
        sys.argv = original_argv


class TestCLIHelp:
    """Test CLI help messages and basic command structure."""

    def test_main_help(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            app(["--help"])
        assert exc_info.value.code == 0

        captured = capsys.readouterr()
        assert "start" in captured.out
        assert "jobs" in captured.out

    def test_version(self):
        with pytest.raises(SystemExit) as exc_info:
            app(["--version"])
        assert exc_info.value.code == 0

    def test_start_help(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            app(["start", "--help"])
        assert exc_info.value.code == 0

        captured = capsys.readouterr()
        assert "--partition" in captured.out
        assert "--forwardfile" in captured.out


class TestStartCommand:
    """Test 'forward start' with the session mocked out."""

    @pytest.fixture
    def session(self, monkeypatch):
        orchestrator = MagicMock()
        factory = MagicMock(return_value=orchestrator)
        executor = FakeExecutor()
        monkeypatch.setattr("forward.cli.start.SessionOrchestrator", factory)
        monkeypatch.setattr(
            "forward.cli.start.executor_from_config", lambda config: executor
        )
        return factory, orchestrator, executor

    def test_spec_from_forwardfile_defaults(self, tmp_path, session):
        forwardfile = _write_sample_forwardfile(tmp_path)
        factory, orchestrator, executor = session

        assert _run(["start", "nb1", "--forwardfile", str(forwardfile)]) == 0

        (spec,) = orchestrator.run.call_args.args
        assert spec.name == "nb1"
        assert spec.partition == "normal"
        assert spec.cpu_count == 2
        assert spec.memory == "8G"
        assert spec.wall_time == "01:00:00"
        assert spec.forward_port == 8888
        assert spec.script_path == "nb1"
        assert executor.closed

    def test_flags_override_forwardfile(self, tmp_path, session):
        forwardfile = _write_sample_forwardfile(tmp_path)
        factory, orchestrator, _ = session

        code = _run(
            [
                "start",
                "sherlock/jupyter",
                "--forwardfile",
                str(forwardfile),
                "-e",
                "gpu",
                "-c",
                "4",
                "-m",
                "16G",
                "-t",
                "02:00:00",
                "-f",
                "9000",
            ]
        )

        assert code == 0
        config = factory.call_args.args[0]
        assert config.isolated_compute_nodes is True
        (spec,) = orchestrator.run.call_args.args
        assert spec.name == "jupyter"
        assert spec.script_path == "sherlock/jupyter"
        assert spec.partition == "gpu"
        assert spec.cpu_count == 4
        assert spec.memory == "16G"
        assert spec.forward_port == 9000

    def test_invalid_name_exits_before_connecting(self, tmp_path, monkeypatch, capsys):
        forwardfile = _write_sample_forwardfile(tmp_path)

        def fail(config):
            raise AssertionError("should not connect")

        monkeypatch.setattr("forward.cli.start.executor_from_config", fail)

        assert _run(["start", "bad name", "--forwardfile", str(forwardfile)]) == 1
        assert "Invalid job name" in capsys.readouterr().err

    def test_session_errors_close_connection(self, tmp_path, session):
        forwardfile = _write_sample_forwardfile(tmp_path)
        _, orchestrator, executor = session
        orchestrator.run.side_effect = DuplicateJobError("nb1 is already queued")

        with pytest.raises(DuplicateJobError):
            app(["start", "nb1", "--forwardfile", str(forwardfile)])

        assert executor.closed


class TestJobsCommand:
    def test_jobs_lists_queue(self, tmp_path, capsys, monkeypatch):
        forwardfile = _write_sample_forwardfile(tmp_path)
        executor = FakeExecutor().on("squeue", ("4242|nb1|RUNNING\n", "", 0))
        monkeypatch.setattr("forward.cli.jobs.executor_from_config", lambda config: executor)

        assert _run(["jobs", "--forwardfile", str(forwardfile)]) == 0

        captured = capsys.readouterr()
        assert "4242" in captured.out
        assert "nb1" in captured.out
        assert executor.commands == ["squeue -h -u op -o '%i|%j|%T'"]
        assert executor.closed


class TestFormatters:
    def test_print_jobs_table_empty(self, capsys):
        print_jobs_table([], "op")
        assert "No queued or running jobs for op" in capsys.readouterr().out

    def test_print_jobs_table_with_jobs(self, capsys):
        print_jobs_table(
            [
                {"JOBID": "1", "NAME": "nb1", "STATE": "RUNNING"},
                {"JOBID": "2", "NAME": "train", "STATE": "PENDING"},
            ],
            "op",
        )
        out = capsys.readouterr().out
        assert "Jobs for op" in out
        assert "RUNNING" in out
        assert "train" in out


class TestErrorHandling:
    def test_missing_forwardfile_error(self, tmp_path):
        empty = tmp_path / "empty"
        empty.mkdir()

        with pytest.raises(SystemExit) as exc_info:
            main_with_args(["jobs", "--forwardfile", str(empty)])

        assert exc_info.value.code == 1

    def test_handle_error_exits_with_hint(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            _handle_error(AllocationTimeoutError("job 4242 still pending"))

        assert exc_info.value.code == 1
        err = capsys.readouterr().err
        assert "Allocation Timeout" in err
        assert "4242" in err
