from __future__ import annotations

import contextlib
import logging
import os
import sys
import tempfile
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator

from ..languages import LanguageProfile
from ..settings import DEFAULT_TEMP_PREFIX
from .types import ExecutionRequest

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class StagedArtifacts:
    """Concrete files for one run: the source to execute and, when compiling, the binary path.

    Example:
        ```python
        staged = StagedArtifacts(source="/tmp/crun-c-x1.c", binary="/tmp/crun-bin-9f2c")
        ```
    """

    source: str
    binary: str | None = None


def resolve_target(request: ExecutionRequest) -> str:
    """Return the path a path-based request points at.

    Example:
        ```python
        resolve_target(ExecutionRequest(language="python", path="/srv", file="app.py"))  # "/srv/app.py"
        ```
    """
    if request.path and request.file:
        return os.path.join(request.path, request.file)
    return request.path or ""


def _remove_quietly(path: str) -> None:
    """Delete a staged artifact, ignoring files that are already gone.

    Example:
        ```python
        _remove_quietly("/tmp/crun-bin-5c0f")
        ```
    """
    with contextlib.suppress(OSError):
        Path(path).unlink(missing_ok=True)
        logger.debug("Removed staged artifact %s", path)


def _write_temp_source(code: str, profile: LanguageProfile, temp_prefix: str) -> str:
    """Write inline code to a fresh temp file carrying the language extension.

    Example:
        ```python
        source = _write_temp_source("print(1)", DEFAULT_REGISTRY.lookup("python"), "crun")
        ```
    """
    handle = tempfile.NamedTemporaryFile(
        mode="w",
        encoding="utf-8",
        prefix=f"{temp_prefix}-{profile.name}-",
        suffix=profile.extension,
        delete=False,
    )
    try:
        with handle:
            handle.write(code)
    except BaseException:
        _remove_quietly(handle.name)
        raise
    logger.debug("Staged inline %s source at %s", profile.name, handle.name)
    return handle.name


def temp_binary_path(temp_prefix: str = DEFAULT_TEMP_PREFIX) -> str:
    """Allocate a unique, not yet existing path for a compiled binary.

    Example:
        ```python
        binary = temp_binary_path("crun")  # "/tmp/crun-bin-5c0f..."
        ```
    """
    suffix = ".exe" if sys.platform == "win32" else ""
    return str(Path(tempfile.gettempdir()) / f"{temp_prefix}-bin-{uuid.uuid4().hex}{suffix}")


@contextlib.contextmanager
def stage(
    request: ExecutionRequest,
    profile: LanguageProfile,
    *,
    temp_prefix: str = DEFAULT_TEMP_PREFIX,
) -> Iterator[StagedArtifacts]:
    """Materialize the request on disk for the duration of the block.

    Temporary sources and binaries are removed when the block exits, however it exits.
    Path-based targets are passed through untouched and never checked for existence.

    Example:
        ```python
        with stage(request, DEFAULT_REGISTRY.lookup("c")) as staged:
            compile_to(staged.source, staged.binary)
        ```
    """
    with contextlib.ExitStack() as cleanup:
        if request.code:
            source = _write_temp_source(request.code, profile, temp_prefix)
            cleanup.callback(_remove_quietly, source)
        else:
            source = resolve_target(request)
        binary = None
        if profile.needs_compile:
            binary = temp_binary_path(temp_prefix)
            cleanup.callback(_remove_quietly, binary)
        yield StagedArtifacts(source=source, binary=binary)
