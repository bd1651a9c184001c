from __future__ import annotations  # Short-lived response cache keyed by prompt identity

import hashlib
import json
import threading
import time
from typing import Callable, Dict, Generic, Optional, Tuple, TypeVar

V = TypeVar("V")


def cache_key(system_prompt: str, user_prompt: str, temperature: float, model: str, schema_name: str = "") -> str:
    raw = json.dumps(
        [system_prompt, user_prompt, round(temperature, 1), model, schema_name],
        ensure_ascii=False,
    )
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


class TtlCache(Generic[V]):  # Thread-safe TTL map with lazy eviction
    def __init__(self, ttl_s: float, *, max_entries: int = 512, clock: Callable[[], float] = time.monotonic) -> None:
        self._ttl_s = ttl_s
        self._max_entries = max_entries
        self._clock = clock
        self._lock = threading.Lock()
        self._items: Dict[str, Tuple[float, V]] = {}

    def get(self, key: str) -> Optional[V]:
        if self._ttl_s <= 0:
            return None
        with self._lock:
            entry = self._items.get(key)
            if entry is None:
                return None
            stored_at, value = entry
            if self._clock() - stored_at > self._ttl_s:
                del self._items[key]
                return None
            return value

    def put(self, key: str, value: V) -> None:
        if self._ttl_s <= 0:
            return
        with self._lock:
            if len(self._items) >= self._max_entries:
                oldest = min(self._items, key=lambda k: self._items[k][0])
                del self._items[oldest]
            self._items[key] = (self._clock(), value)

    def clear(self) -> None:
        with self._lock:
            self._items.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


__all__ = ["TtlCache", "cache_key"]
