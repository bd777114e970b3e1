import pytest

from forward.errors import RemoteQueryError
from forward.models import JobState
from forward.status import (
    classify_state,
    expand_hostlist,
    parse_status_output,
    status_command,
)


def test_status_command_uses_fixed_format():
    assert status_command("4242") == "squeue -h -j 4242 -o '%i|%T|%N'"


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("PENDING", JobState.PENDING),
        ("CONFIGURING", JobState.PENDING),
        ("RUNNING", JobState.RUNNING),
        ("FAILED", JobState.FAILED),
        ("CANCELLED by 1234", JobState.FAILED),
        ("COMPLETED", JobState.FAILED),
        ("TIMEOUT", JobState.FAILED),
        ("SUSPENDED", JobState.UNKNOWN),
        ("", JobState.UNKNOWN),
    ],
)
def test_classify_state(raw, expected):
    assert classify_state(raw) is expected


def test_expand_hostlist_forms():
    assert expand_hostlist("c01") == ["c01"]
    assert expand_hostlist("c01,c02") == ["c01", "c02"]
    assert expand_hostlist("gpu[07-09]") == ["gpu07", "gpu08", "gpu09"]
    assert expand_hostlist("n[1,3-4],login2") == ["n1", "n3", "n4", "login2"]
    assert expand_hostlist("(null)") == []
    assert expand_hostlist("  ") == []


def test_expand_hostlist_rejects_garbage():
    with pytest.raises(RemoteQueryError):
        expand_hostlist("c[01-02")
    with pytest.raises(RemoteQueryError):
        expand_hostlist("c[a-b]")


def test_parse_running_job():
    status = parse_status_output("4242", "4242|RUNNING|gpu07\n")

    assert status.state is JobState.RUNNING
    assert status.raw_state == "RUNNING"
    assert status.nodes == ("gpu07",)


def test_parse_pending_job_has_no_nodes():
    status = parse_status_output("4242", "4242|PENDING|\n")

    assert status.state is JobState.PENDING
    assert status.nodes == ()


def test_parse_empty_output_means_job_left_queue():
    status = parse_status_output("4242", "\n")

    assert status.state is JobState.FAILED
    assert status.raw_state == "GONE"


def test_parse_collects_distinct_nodes_across_lines():
    output = "4242|RUNNING|c01\n4242+1|RUNNING|c02\n4242|RUNNING|c01\n"
    status = parse_status_output("4242", output)

    assert status.nodes == ("c01", "c02")


def test_parse_rejects_unexpected_field_count():
    with pytest.raises(RemoteQueryError):
        parse_status_output("4242", "4242 RUNNING gpu07\n")


def test_parse_rejects_other_job_ids():
    with pytest.raises(RemoteQueryError):
        parse_status_output("4242", "9999|RUNNING|gpu07\n")
