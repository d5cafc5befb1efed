from __future__ import annotations

import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any


def _default_config_path() -> Path:
    """Return bundled default configuration TOML path.

    Example:
        ```python
        path = _default_config_path()
        ```
    """
    return Path(__file__).with_name("default_config.toml")


def load_config_table(path: Path, section: str) -> dict[str, Any]:
    """Read one top-level table from a configuration TOML file.

    A missing file yields an empty table so callers fall back to built-in defaults.

    Example:
        ```python
        runner_raw = load_config_table(Path("/tmp/crun.toml"), "runner")
        ```
    """
    if not path.exists():
        return {}
    raw = tomllib.loads(path.read_text(encoding="utf-8"))
    table = raw.get(section, {})
    if not isinstance(table, dict):
        raise ValueError(f"'{section}' config must be a TOML table")
    return table


def _positive_number(value: Any, field_name: str) -> float:
    """Validate a strictly positive int or float setting.

    Example:
        ```python
        _positive_number(10, "timeout_seconds")  # 10.0
        ```
    """
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"'{field_name}' must be a number")
    if value <= 0:
        raise ValueError(f"'{field_name}' must be greater than zero")
    return float(value)


_DEFAULT_RUNNER_RAW = load_config_table(_default_config_path(), "runner")
DEFAULT_TIMEOUT_SECONDS = float(_DEFAULT_RUNNER_RAW.get("timeout_seconds", 10))
DEFAULT_READ_CHUNK_BYTES = int(_DEFAULT_RUNNER_RAW.get("read_chunk_bytes", 1024))
DEFAULT_TEMP_PREFIX = str(_DEFAULT_RUNNER_RAW.get("temp_prefix", "crun"))


@dataclass(frozen=True, slots=True)
class RunnerSettings:
    """Ambient knobs shared by every run.

    Example:
        ```python
        settings = RunnerSettings(timeout_seconds=5, read_chunk_bytes=4096)
        ```
    """

    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    read_chunk_bytes: int = DEFAULT_READ_CHUNK_BYTES
    temp_prefix: str = DEFAULT_TEMP_PREFIX

    def __post_init__(self) -> None:
        """Validate limits after dataclass initialization.

        Example:
            ```python
            RunnerSettings(timeout_seconds=1)
            ```
        """
        _positive_number(self.timeout_seconds, "timeout_seconds")
        _positive_number(self.read_chunk_bytes, "read_chunk_bytes")
        if not self.temp_prefix.strip():
            raise ValueError("'temp_prefix' must be a non-empty string")

    @classmethod
    def from_file(cls, config_path: str) -> "RunnerSettings":
        """Create settings from the `[runner]` table of a TOML file.

        Example:
            ```python
            settings = RunnerSettings.from_file("/tmp/crun.toml")
            ```
        """
        raw = load_config_table(Path(config_path), "runner")
        return cls(
            timeout_seconds=_positive_number(
                raw.get("timeout_seconds", DEFAULT_TIMEOUT_SECONDS), "timeout_seconds"
            ),
            read_chunk_bytes=int(
                _positive_number(raw.get("read_chunk_bytes", DEFAULT_READ_CHUNK_BYTES), "read_chunk_bytes")
            ),
            temp_prefix=str(raw.get("temp_prefix", DEFAULT_TEMP_PREFIX)),
        )


DEFAULT_SETTINGS = RunnerSettings()
DEFAULT_CONFIG_PATH = _default_config_path()
