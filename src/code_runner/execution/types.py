from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping

from ..errors import InvalidRequestError


class Termination(str, Enum):
    """How a run was decided."""

    EXITED = "exited"
    DETECTED = "detected"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"
    LAUNCH_FAILED = "launch_failed"
    COMPILE_FAILED = "compile_failed"


def _optional_str(arguments: Mapping[str, Any], key: str) -> str | None:
    """Read an optional string argument, rejecting other types.

    Example:
        ```python
        _optional_str({"path": "/srv"}, "path")  # "/srv"
        ```
    """
    value = arguments.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise InvalidRequestError(f"'{key}' must be a string")
    return value


@dataclass(frozen=True, slots=True)
class ExecutionRequest:
    """What the caller wants run.

    Inline `code` wins over `path`/`file`; `path` joined with `file` wins over `path` alone.

    Example:
        ```python
        req = ExecutionRequest(language="python", code="print('hi')", timeout_seconds=5)
        ```
    """

    language: str
    path: str | None = None
    file: str | None = None
    code: str | None = None
    timeout_seconds: float | None = None

    def __post_init__(self) -> None:
        """Reject requests that name no language or nothing to run.

        Example:
            ```python
            ExecutionRequest(language="bash", path="/tmp/job.sh")
            ```
        """
        if not self.language or not self.language.strip():
            raise InvalidRequestError("'language' is required")
        if not self.code and not self.path:
            raise InvalidRequestError("one of 'code' or 'path' is required")
        if self.timeout_seconds is not None and self.timeout_seconds <= 0:
            raise InvalidRequestError("'timeout' must be greater than zero")

    @classmethod
    def from_arguments(cls, arguments: Mapping[str, Any]) -> "ExecutionRequest":
        """Build a request from tool-call arguments.

        Example:
            ```python
            req = ExecutionRequest.from_arguments({"language": "python", "code": "print(1)", "timeout": 3})
            ```
        """
        language = arguments.get("language")
        if not isinstance(language, str):
            raise InvalidRequestError("'language' is required and must be a string")
        timeout = arguments.get("timeout")
        if timeout is not None and (isinstance(timeout, bool) or not isinstance(timeout, (int, float))):
            raise InvalidRequestError("'timeout' must be a number of seconds")
        return cls(
            language=language,
            path=_optional_str(arguments, "path"),
            file=_optional_str(arguments, "file"),
            code=_optional_str(arguments, "code"),
            timeout_seconds=float(timeout) if timeout is not None else None,
        )


@dataclass(frozen=True, slots=True)
class RunOutcome:
    """Normalized result of one run, returned by `run_code` and `Supervisor.run`.

    Example:
        ```python
        out = RunOutcome(success=True, output="hi\\n", exit_code=0, duration=0.02, command="python3 /tmp/a.py")
        ```
    """

    success: bool
    output: str = ""
    error: str = ""
    exit_code: int = -1
    duration: float = 0.0
    command: str = ""
    termination: Termination = Termination.EXITED
    pid: int | None = None

    @property
    def duration_text(self) -> str:
        """Render the elapsed time as seconds text.

        Example:
            ```python
            RunOutcome(success=True, duration=1.2).duration_text  # "1.200s"
            ```
        """
        return f"{self.duration:.3f}s"

    def to_dict(self) -> dict[str, Any]:
        """Render the response payload handed to a transport.

        Example:
            ```python
            payload = outcome.to_dict()  # {"success": True, "output": "...", "exitCode": 0, ...}
            ```
        """
        payload: dict[str, Any] = {
            "success": self.success,
            "output": self.output,
            "exitCode": self.exit_code,
            "duration": self.duration_text,
            "command": self.command,
        }
        if self.error:
            payload["error"] = self.error
        return payload
