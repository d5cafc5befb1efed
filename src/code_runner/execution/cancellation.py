from __future__ import annotations

import contextlib
import threading
import time
from typing import Callable, Iterator


class CancellationToken:
    """Caller-owned cancel switch with an optional ambient deadline.

    Thread-safe. `cancel` may be called from any thread at any time, including before a run starts.
    The deadline bounds how long a run may take; only `cancel` marks a run as cancelled.

    Example:
        ```python
        token = CancellationToken.with_timeout(30)
        threading.Timer(2, token.cancel).start()
        outcome = run_code(request, token=token)
        ```
    """

    def __init__(self, deadline: float | None = None) -> None:
        """Create a token; `deadline` is a `time.monotonic()` instant.

        Example:
            ```python
            token = CancellationToken(deadline=time.monotonic() + 5)
            ```
        """
        self._lock = threading.Lock()
        self._deadline = deadline
        self._reason: str | None = None
        self._callbacks: list[Callable[[], None]] = []

    @classmethod
    def with_timeout(cls, seconds: float) -> "CancellationToken":
        """Create a token whose deadline is `seconds` from now.

        Example:
            ```python
            token = CancellationToken.with_timeout(2.5)
            ```
        """
        return cls(deadline=time.monotonic() + seconds)

    @property
    def deadline(self) -> float | None:
        """The `time.monotonic()` instant the caller stops waiting, if any.

        Example:
            ```python
            CancellationToken.with_timeout(5).deadline
            ```
        """
        return self._deadline

    @property
    def cancelled(self) -> bool:
        """Whether `cancel` has been called.

        Example:
            ```python
            if token.cancelled:
                return
            ```
        """
        with self._lock:
            return self._reason is not None

    @property
    def reason(self) -> str | None:
        """The reason given to the first `cancel` call, or None.

        Example:
            ```python
            token.cancel("client went away")
            token.reason  # "client went away"
            ```
        """
        with self._lock:
            return self._reason

    def remaining(self) -> float | None:
        """Return seconds left before the deadline, or None without one.

        Example:
            ```python
            budget = min(10, token.remaining() or 10)
            ```
        """
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def cancel(self, reason: str = "cancelled") -> None:
        """Cancel once; later calls keep the first reason.

        Example:
            ```python
            token.cancel("client went away")
            ```
        """
        with self._lock:
            if self._reason is not None:
                return
            self._reason = reason
            callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback()

    def add_callback(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Register `callback` for cancellation and return a function that unregisters it.

        Runs the callback immediately when the token is already cancelled.

        Example:
            ```python
            remove = token.add_callback(wake_up)
            try:
                ...
            finally:
                remove()
            ```
        """
        with self._lock:
            if self._reason is None:
                self._callbacks.append(callback)
                fire_now = False
            else:
                fire_now = True
        if fire_now:
            callback()

        def _remove() -> None:
            """Unregister the callback; harmless once it has fired.

            Example:
                ```python
                remove()
                ```
            """
            with self._lock:
                if callback in self._callbacks:
                    self._callbacks.remove(callback)

        return _remove


@contextlib.contextmanager
def deadline_scope(parent: CancellationToken | None, seconds: float) -> Iterator[CancellationToken]:
    """Yield a token that expires `seconds` from now and follows `parent`.

    The scoped deadline is the earlier of the two deadlines, and cancelling `parent` cancels the
    scoped token with the same reason. Every step of one call shares the scoped token, so together
    they never outlast `seconds`.

    Example:
        ```python
        with deadline_scope(token, 10) as scoped:
            compile_source(profile, staged, timeout_seconds=scoped.remaining(), token=scoped)
            supervisor.run(argv, timeout_seconds=10, token=scoped)
        ```
    """
    deadline = time.monotonic() + seconds
    if parent is not None and parent.deadline is not None:
        deadline = min(deadline, parent.deadline)
    scoped = CancellationToken(deadline=deadline)
    if parent is None:
        yield scoped
        return

    def _forward() -> None:
        """Copy the parent's cancellation onto the scoped token.

        Example:
            ```python
            parent.add_callback(_forward)
            ```
        """
        scoped.cancel(parent.reason or "cancelled")

    remove = parent.add_callback(_forward)
    try:
        yield scoped
    finally:
        remove()
