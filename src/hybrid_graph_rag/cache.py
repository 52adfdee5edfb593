from __future__ import annotations
import threading
import time
from typing import Any, Callable, Dict, Optional, Protocol, Tuple


class Cache(Protocol):
    def get(self, key: str) -> Optional[Any]:
        ...

    def put(self, key: str, value: Any, ttl: float) -> None:
        ...


class InMemoryTTLCache:
    """
    Small process-local cache with per-entry expiry.
    Good enough for memoising embeddings and answers within one service.
    """

    def __init__(self, max_entries: int = 1024, clock: Callable[[], float] = time.monotonic):
        self.max_entries = max(1, max_entries)
        self._clock = clock
        self._entries: Dict[str, Tuple[float, Any]] = {}
        self._lock = threading.Lock()

    def get(self, key: str):
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if expires_at < self._clock():
                del self._entries[key]
                return None
            return value

    def put(self, key: str, value: Any, ttl: float):
        with self._lock:
            if key not in self._entries and len(self._entries) >= self.max_entries:
                # drop the entry closest to expiry
                oldest = min(self._entries, key=lambda k: self._entries[k][0])
                del self._entries[oldest]
            self._entries[key] = (self._clock() + ttl, value)

    def __len__(self):
        return len(self._entries)
