from __future__ import annotations

import codecs
import logging
import os
import shlex
import signal
import subprocess
import threading
import time
from typing import IO, Callable

from ..detection import looks_like_service
from ..settings import DEFAULT_READ_CHUNK_BYTES
from .cancellation import CancellationToken
from .process_tree import ProcessTreeKiller, default_tree_killer
from .types import RunOutcome, Termination

logger = logging.getLogger(__name__)

SERVICE_DETECTED_MARKER = "Service detected and stopped.\n"
TIMEOUT_MARKER = "Stopped after timeout.\n"
DEFAULT_DRAIN_GRACE_SECONDS = 1.0
_CAN_PEEK_EXIT = hasattr(os, "waitid") and hasattr(os, "WNOWAIT")


def decide_termination(*, cancelled: bool, detected: bool, timed_out: bool, exited: bool) -> Termination | None:
    """Pick the winning event when several are ready at once.

    Fixed priority: cancellation, then detection, then timeout, then natural exit.

    Example:
        ```python
        decide_termination(cancelled=True, detected=False, timed_out=False, exited=True)  # Termination.CANCELLED
        ```
    """
    if cancelled:
        return Termination.CANCELLED
    if detected:
        return Termination.DETECTED
    if timed_out:
        return Termination.TIMED_OUT
    if exited:
        return Termination.EXITED
    return None


def effective_timeout(timeout_seconds: float, token: CancellationToken | None) -> float:
    """Return the shorter of the requested timeout and the caller's remaining budget.

    Example:
        ```python
        effective_timeout(10, CancellationToken.with_timeout(2))  # ~2.0
        ```
    """
    remaining = token.remaining() if token is not None else None
    if remaining is None:
        return timeout_seconds
    return min(timeout_seconds, remaining)


def describe_exit(status: int) -> str:
    """Render a non-zero exit status as error text; empty for status 0.

    Example:
        ```python
        describe_exit(2)  # "exit status 2"
        describe_exit(-9)  # "signal: SIGKILL"
        ```
    """
    if status == 0:
        return ""
    if status < 0:
        try:
            return f"signal: {signal.Signals(-status).name}"
        except ValueError:
            return f"signal: {-status}"
    return f"exit status {status}"


class DetectionSignal:
    """One-shot flag: the first `fire` wins, later calls are no-ops.

    Example:
        ```python
        detection = DetectionSignal(on_fire=state.detect)
        ```
    """

    def __init__(self, on_fire: Callable[[], None]) -> None:
        """Remember the callback to run when the signal is first raised.

        Example:
            ```python
            DetectionSignal(on_fire=lambda: print("service up"))
            ```
        """
        self._lock = threading.Lock()
        self._fired = False
        self._on_fire = on_fire

    @property
    def fired(self) -> bool:
        """Whether the signal has been raised.

        Example:
            ```python
            if not detection.fired and looks_like_service(chunk):
                detection.fire()
            ```
        """
        with self._lock:
            return self._fired

    def fire(self) -> bool:
        """Raise the signal; return True only for the call that raised it.

        Example:
            ```python
            signal = DetectionSignal(on_fire=lambda: None)
            assert signal.fire() and not signal.fire()
            ```
        """
        with self._lock:
            if self._fired:
                return False
            self._fired = True
        self._on_fire()
        return True


class _OutputBuffer:
    """Combined stdout/stderr text, appended under a lock."""

    def __init__(self) -> None:
        """Start empty.

        Example:
            ```python
            buffer = _OutputBuffer()
            ```
        """
        self._lock = threading.Lock()
        self._parts: list[str] = []

    def append(self, text: str) -> None:
        """Add one decoded chunk.

        Example:
            ```python
            buffer.append("listening\\n")
            ```
        """
        with self._lock:
            self._parts.append(text)

    def text(self) -> str:
        """Return everything captured so far, in arrival order.

        Example:
            ```python
            output = buffer.text()
            ```
        """
        with self._lock:
            return "".join(self._parts)


class _RaceState:
    """Single join point for the exit, detection, timeout and cancellation events."""

    def __init__(self) -> None:
        """Start with no event reported.

        Example:
            ```python
            state = _RaceState()
            ```
        """
        self._cond = threading.Condition()
        self._cancelled = False
        self._detected = False
        self._timed_out = False
        self._exited = False
        self.exit_status: int | None = None
        self.wait_error: str | None = None

    def cancel(self) -> None:
        """Report caller cancellation.

        Example:
            ```python
            remove = token.add_callback(state.cancel)
            ```
        """
        with self._cond:
            self._cancelled = True
            self._cond.notify_all()

    def detect(self) -> None:
        """Report that the output looked like a started service.

        Example:
            ```python
            DetectionSignal(on_fire=state.detect)
            ```
        """
        with self._cond:
            self._detected = True
            self._cond.notify_all()

    def time_out(self) -> None:
        """Report that the timeout elapsed.

        Example:
            ```python
            threading.Timer(5, state.time_out).start()
            ```
        """
        with self._cond:
            self._timed_out = True
            self._cond.notify_all()

    def exit(self, status: int | None, error: str | None) -> None:
        """Report the child's exit status, or the error that prevented reading it.

        Example:
            ```python
            state.exit(0, None)
            ```
        """
        with self._cond:
            self.exit_status = status
            self.wait_error = error
            self._exited = True
            self._cond.notify_all()

    def _decision(self) -> Termination | None:
        """Apply the fixed priority to the events seen so far.

        Example:
            ```python
            with state._cond:
                state._decision()  # None until something happened
            ```
        """
        return decide_termination(
            cancelled=self._cancelled,
            detected=self._detected,
            timed_out=self._timed_out,
            exited=self._exited,
        )

    def wait_for_decision(self) -> Termination:
        """Block until at least one event was reported and return the winner.

        Example:
            ```python
            decision = state.wait_for_decision()
            ```
        """
        with self._cond:
            decision = self._cond.wait_for(self._decision)
        assert decision is not None
        return decision


class Supervisor:
    """Run one external program and decide how it ended.

    The child runs as leader of its own process group. Its natural exit races against the service
    detector, a timeout clock, and caller cancellation; anything but a natural exit kills the whole
    group. Instances hold no per-run state and can serve concurrent runs.

    Example:
        ```python
        supervisor = Supervisor()
        outcome = supervisor.run(["python3", "server.py"], timeout_seconds=5)
        if outcome.termination is Termination.DETECTED:
            print("server came up")
        ```
    """

    def __init__(
        self,
        *,
        tree_killer: ProcessTreeKiller | None = None,
        read_chunk_bytes: int = DEFAULT_READ_CHUNK_BYTES,
        detector: Callable[[str], bool] = looks_like_service,
        drain_grace_seconds: float = DEFAULT_DRAIN_GRACE_SECONDS,
    ) -> None:
        """Configure the platform killer, read size and detector.

        Example:
            ```python
            supervisor = Supervisor(read_chunk_bytes=4096, detector=lambda chunk: "READY" in chunk)
            ```
        """
        if read_chunk_bytes <= 0:
            raise ValueError("read_chunk_bytes must be greater than zero")
        self._killer = tree_killer or default_tree_killer()
        self._chunk_size = read_chunk_bytes
        self._detector = detector
        self._drain_grace = drain_grace_seconds

    @property
    def tree_killer(self) -> ProcessTreeKiller:
        """The platform killer this supervisor uses; compile steps share it.

        Example:
            ```python
            compile_source(profile, staged, timeout_seconds=5, tree_killer=supervisor.tree_killer)
            ```
        """
        return self._killer

    def run(
        self,
        argv: list[str],
        *,
        timeout_seconds: float,
        token: CancellationToken | None = None,
    ) -> RunOutcome:
        """Spawn `argv`, race its completion, and return the outcome.

        Example:
            ```python
            outcome = Supervisor().run(["sh", "-c", "echo hi"], timeout_seconds=5)
            assert outcome.output == "hi\\n"
            ```
        """
        command = shlex.join(argv)
        if token is not None and token.cancelled:
            return RunOutcome(
                success=False,
                error=token.reason or "cancelled",
                command=command,
                termination=Termination.CANCELLED,
            )
        limit = effective_timeout(timeout_seconds, token)

        try:
            process = subprocess.Popen(
                argv,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                **self._killer.popen_kwargs(),
            )
        except OSError as exc:
            logger.info("Failed to launch %s: %s", command, exc)
            return RunOutcome(
                success=False,
                error=str(exc),
                command=command,
                termination=Termination.LAUNCH_FAILED,
            )
        started = time.monotonic()
        logger.debug("Spawned pid %s (timeout %.3fs): %s", process.pid, limit, command)

        state = _RaceState()
        detection = DetectionSignal(on_fire=state.detect)
        buffer = _OutputBuffer()
        stop = threading.Event()
        assert process.stdout is not None and process.stderr is not None
        streams = (process.stdout, process.stderr)
        drainers = [
            threading.Thread(
                target=self._drain,
                args=(stream, buffer, detection, stop),
                name=f"crun-drain-{process.pid}-{label}",
                daemon=True,
            )
            for stream, label in zip(streams, ("stdout", "stderr"))
        ]
        waiter = threading.Thread(
            target=_wait_for_exit,
            args=(process, state),
            name=f"crun-wait-{process.pid}",
            daemon=True,
        )
        timer = threading.Timer(limit, state.time_out)
        timer.daemon = True

        for thread in (*drainers, waiter):
            thread.start()
        timer.start()
        remove_callback = token.add_callback(state.cancel) if token is not None else _noop
        try:
            decision = state.wait_for_decision()
        except BaseException:
            self._killer.kill_tree(process)
            raise
        finally:
            timer.cancel()
            remove_callback()
        duration = time.monotonic() - started

        # After a natural exit the leader is still unreaped, so its pid cannot have been reused as
        # another group id; the kill only reaches descendants left in the group.
        self._killer.kill_tree(process)
        stop.set()
        self._finish(process, streams, drainers, waiter)
        output = buffer.text()
        logger.info("pid %s ended as %s after %.3fs", process.pid, decision.value, duration)

        if decision is Termination.CANCELLED:
            return RunOutcome(
                success=False,
                output=output,
                error=(token.reason if token is not None else None) or "cancelled",
                duration=duration,
                command=command,
                termination=decision,
                pid=process.pid,
            )
        if decision is Termination.DETECTED:
            return RunOutcome(
                success=True,
                output=SERVICE_DETECTED_MARKER + output,
                duration=duration,
                command=command,
                termination=decision,
                pid=process.pid,
            )
        if decision is Termination.TIMED_OUT:
            return RunOutcome(
                success=True,
                output=TIMEOUT_MARKER + output,
                duration=duration,
                command=command,
                termination=decision,
                pid=process.pid,
            )

        status = state.exit_status if state.exit_status is not None else -1
        error = state.wait_error or describe_exit(status)
        return RunOutcome(
            success=not error,
            output=output,
            error=error,
            exit_code=status,
            duration=duration,
            command=command,
            termination=decision,
            pid=process.pid,
        )

    def _drain(
        self,
        stream: IO[bytes],
        buffer: _OutputBuffer,
        detection: DetectionSignal,
        stop: threading.Event,
    ) -> None:
        """Copy one stream into the shared buffer, feeding each chunk to the detector.

        Example:
            ```python
            threading.Thread(target=supervisor._drain, args=(proc.stdout, buffer, detection, stop)).start()
            ```
        """
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        try:
            while not stop.is_set():
                data = stream.read1(self._chunk_size)  # type: ignore[attr-defined]
                if not data:
                    break
                self._consume(decoder.decode(data), buffer, detection)
            self._consume(decoder.decode(b"", final=True), buffer, detection)
        except (OSError, ValueError):
            # Stream closed underneath the reader.
            return

    def _consume(self, chunk: str, buffer: _OutputBuffer, detection: DetectionSignal) -> None:
        """Append a decoded chunk and run the detector on it until the signal has fired.

        Example:
            ```python
            supervisor._consume("Server started on port 3000\\n", buffer, detection)
            ```
        """
        if not chunk:
            return
        buffer.append(chunk)
        if not detection.fired and self._detector(chunk):
            detection.fire()

    def _finish(
        self,
        process: subprocess.Popen[bytes],
        streams: tuple[IO[bytes], IO[bytes]],
        drainers: list[threading.Thread],
        waiter: threading.Thread,
    ) -> None:
        """Reap the killed child, join helper threads within the grace period and close the pipes.

        Example:
            ```python
            supervisor._finish(proc, (proc.stdout, proc.stderr), drainers, waiter)
            ```
        """
        deadline = time.monotonic() + self._drain_grace
        try:
            process.wait(timeout=self._drain_grace)
        except subprocess.TimeoutExpired:
            logger.warning("pid %s was not reaped within %.1fs", process.pid, self._drain_grace)
        for thread in (waiter, *drainers):
            thread.join(max(0.0, deadline - time.monotonic()))
        for stream, drainer in zip(streams, drainers):
            if drainer.is_alive():
                # A process outside the group still holds the pipe open.
                logger.warning("Leaving %s detached; its pipe is still open", drainer.name)
                continue
            stream.close()


def _peek_exit_status(pid: int) -> int:
    """Wait for `pid` to exit and return its status in `Popen.returncode` form, leaving it unreaped.

    Example:
        ```python
        status = _peek_exit_status(proc.pid)  # proc.wait() still returns the same value
        ```
    """
    info = os.waitid(os.P_PID, pid, os.WEXITED | os.WNOWAIT)
    assert info is not None
    if info.si_code == os.CLD_EXITED:
        return info.si_status
    return -info.si_status


def _wait_for_exit(process: subprocess.Popen[bytes], state: _RaceState) -> None:
    """Report the child's exit to the race.

    Where the platform allows it the exited child is left as a zombie, so its pid keeps naming
    the process group until the supervisor has swept it. Windows keeps the pid reserved through
    the open process handle instead.

    Example:
        ```python
        threading.Thread(target=_wait_for_exit, args=(proc, state), daemon=True).start()
        ```
    """
    try:
        status = _peek_exit_status(process.pid) if _CAN_PEEK_EXIT else process.wait()
    except OSError as exc:
        state.exit(None, str(exc))
        return
    state.exit(status, None)


def _noop() -> None:
    """Stand-in remover when no token was given.

    Example:
        ```python
        remove_callback = token.add_callback(state.cancel) if token is not None else _noop
        ```
    """
    return None
