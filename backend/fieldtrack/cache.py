from __future__ import annotations

import time
from threading import Lock
from typing import Any, Callable, Hashable


class TTLCache:
    """Process-scoped key/value cache with a bounded time-to-live.

    Entries may also carry their own expiry (tokens expire on the server's
    schedule, not ours). Reads and writes are guarded by a lock; racing
    writers simply overwrite each other with equivalent values.
    """

    def __init__(self, ttl_seconds: float, *, clock: Callable[[], float] = time.time) -> None:
        self.ttl_seconds = float(ttl_seconds)
        self._clock = clock
        self._entries: dict[Hashable, tuple[float, Any]] = {}
        self._lock = Lock()

    def get(self, key: Hashable) -> Any | None:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if now >= expires_at:
                del self._entries[key]
                return None
            return value

    def set(self, key: Hashable, value: Any, *, ttl_seconds: float | None = None) -> None:
        ttl = self.ttl_seconds if ttl_seconds is None else min(float(ttl_seconds), self.ttl_seconds)
        with self._lock:
            self._entries[key] = (self._clock() + ttl, value)

    def invalidate(self, key: Hashable | None = None) -> None:
        with self._lock:
            if key is None:
                self._entries.clear()
            else:
                self._entries.pop(key, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
