from __future__ import annotations

import re
import threading
import time

from trainops.utils.errors import ApiError

_LIMIT_RE = re.compile(r"^\s*(\d+)\s*(?:per|/)\s*(second|minute|hour)\s*$", re.IGNORECASE)
_UNIT_SECONDS = {"second": 1, "minute": 60, "hour": 3600}


def parse_limit(limit: str) -> tuple[int, int]:
    """'300 per minute' -> (300, 60). Unparseable limits fall back to 300/minute."""
    m = _LIMIT_RE.match(str(limit or ""))
    if not m:
        return 300, 60
    return max(1, int(m.group(1))), _UNIT_SECONDS[m.group(2).lower()]


class InMemoryRateLimiter:
    """Fixed-window counter per key. Per-process only; gunicorn workers do not share it."""

    def __init__(self, *, max_keys: int = 50_000):
        self._max_keys = max_keys
        self._lock = threading.Lock()
        self._store: dict[str, tuple[int, int]] = {}

    def check(self, key: str, limit: str) -> None:
        max_hits, window_seconds = parse_limit(limit)
        window_id = int(time.time() // window_seconds)

        with self._lock:
            if len(self._store) > self._max_keys:
                self._store.clear()

            current_window, current_count = self._store.get(key, (window_id, 0))
            if current_window != window_id:
                current_window, current_count = window_id, 0
            current_count += 1
            self._store[key] = (current_window, current_count)

            if current_count > max_hits:
                raise ApiError("RATE_LIMITED", "Rate limit exceeded", status=429)

    def reset(self) -> None:
        with self._lock:
            self._store.clear()
