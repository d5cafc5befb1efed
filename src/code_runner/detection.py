from __future__ import annotations

import re

# Phrases a process typically prints once it is serving. A match on any one is enough.
SERVICE_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"listening",
        r"server\s+started",
        r"running\s+on\s+port",
        r"http://",
        r"tcp",
        r"port\s+\d+",
        r":\d{4,5}",
        r"localhost:\d+",
        r"0\.0\.0\.0:\d+",
        r"127\.0\.0\.1:\d+",
        r"\[::\]:\d+",
        r"starting\s+(server|application)",
    )
)


def looks_like_service(chunk: str) -> bool:
    """Classify one chunk of process output as "a service has started".

    Stateless: each chunk is judged on its own, so a phrase split across two reads is missed.

    Example:
        ```python
        assert looks_like_service("Server started on port 3000")
        assert not looks_like_service("hello world")
        ```
    """
    return any(pattern.search(chunk) for pattern in SERVICE_PATTERNS)
