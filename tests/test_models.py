import pytest

from forward.models import JobSpec, is_valid_job_name


def _spec(**overrides):
    values = dict(
        name="nb1",
        partition="normal",
        cpu_count=1,
        memory="8G",
        wall_time="01:00:00",
        forward_port=8888,
        script_path="nb1",
    )
    values.update(overrides)
    return JobSpec(**values)


@pytest.mark.parametrize("name", ["nb1", "py12torch2", "jupyter-lab", "a.b_c"])
def test_valid_job_names(name):
    assert is_valid_job_name(name)


@pytest.mark.parametrize("name", ["", "-x", "a b", "a/b", "x;rm", "$(id)"])
def test_invalid_job_names(name):
    assert not is_valid_job_name(name)


def test_job_spec_rejects_unsafe_name():
    with pytest.raises(ValueError):
        _spec(name="bad name")


def test_job_spec_rejects_bad_resources():
    with pytest.raises(ValueError):
        _spec(cpu_count=0)
    with pytest.raises(ValueError):
        _spec(gpu_count=-1)
    with pytest.raises(ValueError):
        _spec(forward_port=0)


def test_job_spec_freezes_extra_args():
    spec = _spec(extra_args=["--lab", "x"])

    assert spec.extra_args == ("--lab", "x")
    with pytest.raises(Exception):
        spec.name = "other"
