"""Loading and resolving the project Forwardfile.

A Forwardfile is a TOML file holding the cluster connection (``resource``)
and the default job sizes. A ``[default]`` table is merged with an optional
named environment, selected explicitly or through ``FORWARD_ENV``::

    [default]
    resource = "sherlock"
    partition = "normal"
    mem = "8G"

    [gpu]
    partition = "gpu"
    isolated_compute_nodes = true
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

try:  # pragma: no cover - import guard
    import tomllib  # type: ignore[attr-defined]
except ModuleNotFoundError:  # pragma: no cover - python <3.11 fallback
    import tomli as tomllib  # type: ignore[no-redef]

from .errors import (
    ForwardfileEnvironmentNotFoundError,
    ForwardfileInvalidError,
    ForwardfileNotFoundError,
)

FORWARD_ENV_VAR = "FORWARD_ENV"
FORWARDFILE_ENV_VAR = "FORWARDFILE"
DEFAULT_FORWARDFILE_NAMES = (
    "Forwardfile",
    "Forwardfile.toml",
    "forwardfile",
    "forwardfile.toml",
)
PYPROJECT_NAME = "pyproject.toml"

PathLike = Union[str, "os.PathLike[str]"]


@dataclass(frozen=True)
class ReachabilityRule:
    """Decides whether a compute node can be reached without a relay hop.

    With ``isolated_compute_nodes`` unset every node is reachable through a
    single forward on the login node. Otherwise only nodes whose hostname
    starts with one of ``direct_prefixes`` are.
    """

    isolated_compute_nodes: bool = False
    direct_prefixes: Tuple[str, ...] = ()

    def __call__(self, hostname: str) -> bool:
        if not self.isolated_compute_nodes:
            return True
        return any(hostname.startswith(prefix) for prefix in self.direct_prefixes)


@dataclass(frozen=True)
class ForwardConfig:
    """Resolved, immutable configuration handed to every component."""

    resource: str
    username: Optional[str] = None
    ssh_port: int = 22
    key_filename: Optional[str] = None
    partition: str = "normal"
    gpus: int = 0
    cpus: int = 1
    mem: str = "8G"
    time: str = "02:00:00"
    forward_port: int = 8888
    gpu_partition: str = "gpu"
    script_root: str = "."
    poll_interval: float = 5.0
    allocation_timeout: float = 600.0
    connection_wait: float = 10.0
    isolated_compute_nodes: bool = False
    direct_node_prefixes: Tuple[str, ...] = ()
    intermediate_port: Optional[int] = None
    listener_attempts: int = 10
    listener_backoff: float = 0.5
    hop_grace_period: float = 1.0
    control_dir: str = "~/.ssh"
    remote_workdir_name: str = "forward-util"
    source: Optional[Path] = field(default=None, compare=False)
    env_name: str = "default"

    @property
    def reachability(self) -> ReachabilityRule:
        return ReachabilityRule(
            isolated_compute_nodes=self.isolated_compute_nodes,
            direct_prefixes=self.direct_node_prefixes,
        )

    @property
    def script_root_path(self) -> Path:
        """``script_root`` resolved against the Forwardfile's directory."""
        root = Path(self.script_root).expanduser()
        if root.is_absolute():
            return root
        base = self.source.parent if self.source is not None else Path.cwd()
        return base / root

    @classmethod
    def from_mapping(
        cls,
        data: Dict[str, Any],
        *,
        source: Optional[Path] = None,
        env_name: str = "default",
    ) -> "ForwardConfig":
        """Build a config from a merged Forwardfile table."""
        known = {f.name for f in fields(cls)} - {"source", "env_name"}
        values = dict(data)
        # ``port`` in a Forwardfile is the SSH port, as in ~/.ssh/config
        if "port" in values:
            values["ssh_port"] = values.pop("port")

        unknown = sorted(set(values) - known)
        if unknown:
            raise ForwardfileInvalidError(
                f"Unknown Forwardfile keys: {', '.join(unknown)}."
            )
        if not isinstance(values.get("resource"), str) or not values["resource"]:
            raise ForwardfileInvalidError(
                "Forwardfile must define a non-empty 'resource' (login host)."
            )
        if "direct_node_prefixes" in values:
            prefixes = values["direct_node_prefixes"]
            if not isinstance(prefixes, list) or not all(
                isinstance(p, str) for p in prefixes
            ):
                raise ForwardfileInvalidError(
                    "'direct_node_prefixes' must be a list of strings."
                )
            values["direct_node_prefixes"] = tuple(prefixes)

        for key, value in list(values.items()):
            values[key] = _check_value(key, value)

        return cls(source=source, env_name=env_name, **values)


# Expected TOML type for each Forwardfile key; checked before anything
# contacts the cluster
INT_KEYS = frozenset(
    {"ssh_port", "gpus", "cpus", "forward_port", "listener_attempts", "intermediate_port"}
)
FLOAT_KEYS = frozenset(
    {
        "poll_interval",
        "allocation_timeout",
        "connection_wait",
        "listener_backoff",
        "hop_grace_period",
    }
)
BOOL_KEYS = frozenset({"isolated_compute_nodes"})
STR_KEYS = frozenset(
    {
        "resource",
        "username",
        "key_filename",
        "partition",
        "mem",
        "time",
        "gpu_partition",
        "script_root",
        "control_dir",
        "remote_workdir_name",
    }
)


def _check_value(key: str, value: Any) -> Any:
    # bool is a subclass of int, so it is ruled out explicitly
    if key in INT_KEYS:
        if not isinstance(value, int) or isinstance(value, bool):
            raise ForwardfileInvalidError(f"'{key}' must be an integer, got {value!r}.")
        if value < 0:
            raise ForwardfileInvalidError(f"'{key}' must not be negative, got {value}.")
    elif key in FLOAT_KEYS:
        if not isinstance(value, (int, float)) or isinstance(value, bool):
            raise ForwardfileInvalidError(
                f"'{key}' must be a number of seconds, got {value!r}."
            )
        if value < 0:
            raise ForwardfileInvalidError(f"'{key}' must not be negative, got {value}.")
        return float(value)
    elif key in BOOL_KEYS:
        if not isinstance(value, bool):
            raise ForwardfileInvalidError(
                f"'{key}' must be true or false (unquoted), got {value!r}."
            )
    elif key in STR_KEYS:
        if not isinstance(value, str):
            raise ForwardfileInvalidError(f"'{key}' must be a string, got {value!r}.")
    return value


def load_config(
    forwardfile: Optional[PathLike] = None,
    *,
    env: Optional[str] = None,
    start_dir: Optional[PathLike] = None,
) -> ForwardConfig:
    """Load a Forwardfile environment into a :class:`ForwardConfig`.

    Every problem with the file is raised here, before the cluster is
    contacted.
    """
    resolved_path = resolve_forwardfile_path(forwardfile, start_dir=start_dir)
    root_table = _forward_table(resolved_path, _read_toml(resolved_path))

    env_name = (env or os.getenv(FORWARD_ENV_VAR) or "default").strip() or "default"
    resolved = _resolve_environment_config(root_table, env_name)
    return ForwardConfig.from_mapping(resolved, source=resolved_path, env_name=env_name)


def resolve_forwardfile_path(
    forwardfile: Optional[PathLike] = None,
    *,
    start_dir: Optional[PathLike] = None,
) -> Path:
    """Pick the Forwardfile: ``forwardfile``, then ``$FORWARDFILE``, then discovery."""
    if forwardfile is not None:
        return _given_forwardfile(Path(forwardfile), "--forwardfile")

    env_path = os.getenv(FORWARDFILE_ENV_VAR)
    if env_path:
        return _given_forwardfile(Path(env_path), f"${FORWARDFILE_ENV_VAR}")

    return discover_forwardfile(start_dir=start_dir)


def discover_forwardfile(start_dir: Optional[PathLike] = None) -> Path:
    """Walk up from ``start_dir`` (or the cwd) to the first directory with a Forwardfile.

    A ``pyproject.toml`` counts only if it has a ``[tool.forward]`` table, so
    that an unrelated project file higher up does not stop the search.
    """
    start = Path(start_dir) if start_dir is not None else Path.cwd()
    start = start.expanduser().absolute()

    for directory in (start,) + tuple(start.parents):
        found = _forwardfile_in(directory)
        if found is not None:
            return found

    raise ForwardfileNotFoundError(
        f"No Forwardfile found in '{start}' or any parent directory "
        f"(looked for {', '.join(DEFAULT_FORWARDFILE_NAMES)} and "
        f"{PYPROJECT_NAME} with [tool.forward])."
    )


def _forwardfile_in(directory: Path) -> Optional[Path]:
    for name in DEFAULT_FORWARDFILE_NAMES:
        candidate = directory / name
        if candidate.is_file():
            return candidate
    pyproject = directory / PYPROJECT_NAME
    if pyproject.is_file() and _has_forward_table(pyproject):
        return pyproject
    return None


def _has_forward_table(pyproject: Path) -> bool:
    try:
        data = _read_toml(pyproject)
    except ForwardfileInvalidError:
        return False
    return _tool_forward(data) is not None


def _given_forwardfile(path: Path, origin: str) -> Path:
    path = path.expanduser()
    if path.is_file():
        return path
    if path.is_dir():
        found = _forwardfile_in(path)
        if found is not None:
            return found
        raise ForwardfileNotFoundError(
            f"Directory '{path}' from {origin} contains no Forwardfile."
        )
    raise ForwardfileNotFoundError(f"Forwardfile '{path}' from {origin} does not exist.")


def _read_toml(path: Path) -> Dict[str, Any]:
    try:
        with path.open("rb") as handle:
            return tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        # The decode error names the offending line and column
        raise ForwardfileInvalidError(f"Invalid TOML in Forwardfile '{path}': {exc}") from exc


def _tool_forward(data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    tool = data.get("tool")
    section = tool.get("forward") if isinstance(tool, dict) else None
    return section if isinstance(section, dict) else None


def _forward_table(path: Path, data: Dict[str, Any]) -> Dict[str, Any]:
    """Return the environments table: the whole file, or ``[tool.forward]``."""
    forward_section = _tool_forward(data)
    if forward_section is not None:
        return forward_section
    if path.name == PYPROJECT_NAME:
        raise ForwardfileInvalidError(
            f"'{path}' has no [tool.forward] table; add one with a "
            "[tool.forward.default] section."
        )
    return data


def _resolve_environment_config(
    root_table: Dict[str, Any],
    env_name: str,
) -> Dict[str, Any]:
    result: Dict[str, Any] = {}

    default = root_table.get("default")
    if default is not None:
        if not isinstance(default, dict):
            raise ForwardfileInvalidError("[default] section must be a table.")
        result.update(default)

    if env_name != "default":
        env_config = root_table.get(env_name)
        if env_config is None:
            raise ForwardfileEnvironmentNotFoundError(
                f"Environment '{env_name}' not defined in Forwardfile."
            )
        if not isinstance(env_config, dict):
            raise ForwardfileInvalidError(
                f"Environment '{env_name}' section must be a table."
            )
        result.update(env_config)

    return result
