from __future__ import annotations

import logging
import shlex
import subprocess
import time
from typing import Any, Mapping

from .execution.cancellation import CancellationToken, deadline_scope
from .execution.process_tree import ProcessTreeKiller, default_tree_killer
from .execution.staging import StagedArtifacts, stage
from .execution.supervisor import Supervisor, effective_timeout
from .execution.types import ExecutionRequest, RunOutcome, Termination
from .languages import DEFAULT_REGISTRY, LanguageProfile, LanguageRegistry
from .settings import DEFAULT_SETTINGS, RunnerSettings

logger = logging.getLogger(__name__)


def _resolve_settings(settings: RunnerSettings | None, config_file: str | None) -> RunnerSettings:
    """Resolve the effective settings object for a run.

    Example:
        ```python
        settings = _resolve_settings(None, "/tmp/crun.toml")
        ```
    """
    if settings is not None and config_file is not None:
        raise ValueError("Provide either 'settings' or 'config_file', not both")
    if config_file is not None:
        return RunnerSettings.from_file(config_file)
    return settings or DEFAULT_SETTINGS


def _as_text(output: Any) -> str:
    """Decode captured compiler output, replacing invalid UTF-8.

    Example:
        ```python
        _as_text(b"main.c:1: error")  # "main.c:1: error"
        ```
    """
    if output is None:
        return ""
    if isinstance(output, bytes):
        return output.decode("utf-8", errors="replace")
    return str(output)


def compile_source(
    profile: LanguageProfile,
    staged: StagedArtifacts,
    *,
    timeout_seconds: float,
    tree_killer: ProcessTreeKiller | None = None,
    token: CancellationToken | None = None,
) -> RunOutcome | None:
    """Compile the staged source into the staged binary.

    The compiler leads its own process group, so a timeout or a cancellation kills every helper it
    started. Returns None on success, otherwise the failed outcome to hand back to the caller.

    Example:
        ```python
        failed = compile_source(DEFAULT_REGISTRY.lookup("c"), staged, timeout_seconds=10)
        if failed is not None:
            print(failed.error)
        ```
    """
    if staged.binary is None:
        raise ValueError(f"language '{profile.name}' was staged without a binary path")
    argv = profile.compile_argv(staged.source, staged.binary)
    command = shlex.join(argv)
    if token is not None and token.cancelled:
        return RunOutcome(
            success=False,
            error=token.reason or "cancelled",
            command=command,
            termination=Termination.CANCELLED,
        )
    killer = tree_killer or default_tree_killer()
    started = time.monotonic()
    try:
        process = subprocess.Popen(
            argv,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            **killer.popen_kwargs(),
        )
    except OSError as exc:
        return RunOutcome(
            success=False,
            error=str(exc),
            duration=time.monotonic() - started,
            command=command,
            termination=Termination.LAUNCH_FAILED,
        )

    def _kill_compiler() -> None:
        """Kill the compiler's group unless it has already been reaped.

        Example:
            ```python
            token.add_callback(_kill_compiler)
            ```
        """
        if process.returncode is None:
            killer.kill_tree(process)

    remove_callback = token.add_callback(_kill_compiler) if token is not None else _noop
    timed_out = False
    try:
        try:
            raw_output, _ = process.communicate(timeout=timeout_seconds)
        except subprocess.TimeoutExpired:
            timed_out = True
            killer.kill_tree(process)
            raw_output, _ = process.communicate()
    except BaseException:
        killer.kill_tree(process)
        process.wait()
        raise
    finally:
        remove_callback()
    output = _as_text(raw_output)
    duration = time.monotonic() - started

    if token is not None and token.cancelled:
        logger.info("Compilation of %s cancelled: %s", staged.source, token.reason)
        return RunOutcome(
            success=False,
            output=output,
            error=token.reason or "cancelled",
            duration=duration,
            command=command,
            termination=Termination.CANCELLED,
            pid=process.pid,
        )
    if timed_out:
        logger.info("Compilation of %s timed out after %.3fs", staged.source, duration)
        return RunOutcome(
            success=False,
            error=f"compilation timed out after {timeout_seconds:.1f}s\n{output}".rstrip("\n"),
            duration=duration,
            command=command,
            termination=Termination.COMPILE_FAILED,
            pid=process.pid,
        )
    if process.returncode != 0:
        logger.info("Compilation of %s failed with status %s", staged.source, process.returncode)
        return RunOutcome(
            success=False,
            error=output,
            exit_code=process.returncode,
            duration=duration,
            command=command,
            termination=Termination.COMPILE_FAILED,
        )
    logger.debug("Compiled %s into %s", staged.source, staged.binary)
    return None


def _noop() -> None:
    """Stand-in remover when no token was given.

    Example:
        ```python
        remove_callback = _noop
        ```
    """
    return None


def run_code(
    request: ExecutionRequest,
    *,
    registry: LanguageRegistry | None = None,
    supervisor: Supervisor | None = None,
    settings: RunnerSettings | None = None,
    config_file: str | None = None,
    token: CancellationToken | None = None,
) -> RunOutcome:
    """Run a request end to end: look up, stage, compile if needed, supervise, clean up.

    Raises `UnsupportedLanguageError` before touching the filesystem when the language is unknown.
    Compilation and execution share one deadline, `timeout_seconds` from the start of the call.
    Every temporary file created for the run is gone when this returns or raises.

    Example:
        ```python
        from code_runner import ExecutionRequest, run_code
        outcome = run_code(ExecutionRequest(language="python", code="print('hi')"))
        print(outcome.to_dict())
        ```
    """
    profile = (registry or DEFAULT_REGISTRY).lookup(request.language)
    resolved = _resolve_settings(settings, config_file)
    timeout = request.timeout_seconds or resolved.timeout_seconds
    if token is not None and token.cancelled:
        return RunOutcome(success=False, error=token.reason or "cancelled", termination=Termination.CANCELLED)
    supervisor = supervisor or Supervisor(read_chunk_bytes=resolved.read_chunk_bytes)
    logger.info("Running %s request (timeout %gs)", profile.name, timeout)

    with deadline_scope(token, timeout) as scoped, stage(request, profile, temp_prefix=resolved.temp_prefix) as staged:
        if profile.needs_compile:
            failed = compile_source(
                profile,
                staged,
                timeout_seconds=effective_timeout(timeout, scoped),
                tree_killer=supervisor.tree_killer,
                token=scoped,
            )
            if failed is not None:
                return failed
            argv = [str(staged.binary)]
        else:
            argv = profile.run_argv(staged.source)
        return supervisor.run(argv, timeout_seconds=timeout, token=scoped)


def run_code_arguments(
    arguments: Mapping[str, Any],
    *,
    token: CancellationToken | None = None,
    **kwargs: Any,
) -> dict[str, Any]:
    """Run tool-call style arguments and return the response payload.

    Example:
        ```python
        payload = run_code_arguments({"language": "bash", "code": "echo hi", "timeout": 3})
        ```
    """
    outcome = run_code(ExecutionRequest.from_arguments(arguments), token=token, **kwargs)
    return outcome.to_dict()
