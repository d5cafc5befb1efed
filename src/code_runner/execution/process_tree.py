from __future__ import annotations

import logging
import os
import signal
import subprocess
import sys
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class ProcessTreeKiller(Protocol):
    """Platform capability: start processes as group leaders and kill whole groups."""

    def popen_kwargs(self) -> dict[str, Any]:
        """Return extra `subprocess.Popen` arguments that isolate the child in its own group.

        Example:
            ```python
            proc = subprocess.Popen(argv, **killer.popen_kwargs())
            ```
        """
        ...

    def kill_tree(self, process: subprocess.Popen[bytes]) -> None:
        """Forcefully kill `process` and every descendant in its group.

        Example:
            ```python
            killer.kill_tree(proc)
            ```
        """
        ...


class PosixProcessGroupKiller:
    """SIGKILL the process group led by the child (`start_new_session=True`)."""

    def popen_kwargs(self) -> dict[str, Any]:
        """Run the child as leader of a new session and process group.

        Example:
            ```python
            PosixProcessGroupKiller().popen_kwargs()  # {"start_new_session": True}
            ```
        """
        return {"start_new_session": True}

    def kill_tree(self, process: subprocess.Popen[bytes]) -> None:
        """Send SIGKILL to the negative pid, i.e. the whole group.

        Example:
            ```python
            PosixProcessGroupKiller().kill_tree(proc)
            ```
        """
        try:
            os.killpg(process.pid, signal.SIGKILL)
        except ProcessLookupError:
            return
        except PermissionError as exc:
            logger.warning("Could not kill process group %s: %s", process.pid, exc)


class WindowsJobKiller:
    """Kill a process tree with `taskkill /T /F`."""

    def popen_kwargs(self) -> dict[str, Any]:
        """Start the child in a new process group.

        Example:
            ```python
            WindowsJobKiller().popen_kwargs()
            ```
        """
        return {"creationflags": getattr(subprocess, "CREATE_NEW_PROCESS_GROUP", 0)}

    def kill_tree(self, process: subprocess.Popen[bytes]) -> None:
        """Kill the child and its descendants.

        Example:
            ```python
            WindowsJobKiller().kill_tree(proc)
            ```
        """
        result = subprocess.run(
            ["taskkill", "/PID", str(process.pid), "/T", "/F"],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            check=False,
        )
        # 128: no such process, already gone.
        if result.returncode not in (0, 128):
            logger.warning("taskkill for pid %s exited with %s", process.pid, result.returncode)


def default_tree_killer() -> ProcessTreeKiller:
    """Return the tree killer for the current platform.

    Example:
        ```python
        killer = default_tree_killer()
        ```
    """
    if sys.platform == "win32":
        return WindowsJobKiller()
    return PosixProcessGroupKiller()
