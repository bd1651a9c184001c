from __future__ import annotations  # Per-key mutual exclusion with in-flight markers

import threading
from contextlib import contextmanager
from typing import Dict, Hashable, Iterator, Optional


class LockBusy(RuntimeError):  # Another operation holds the key
    def __init__(self, key: str, marker: Optional[Hashable]) -> None:
        super().__init__(f"{key} is busy")
        self.key = key
        self.marker = marker


class LockTimeout(RuntimeError):
    pass


class _Entry:
    __slots__ = ("lock", "marker", "cancel", "refs")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.marker: Optional[Hashable] = None
        self.cancel = threading.Event()
        self.refs = 0


class KeyedLocks:
    """One lock per key, created on demand and dropped when unused.

    The holder publishes a ``marker`` describing its work so that a second
    caller doing the same work can wait for it instead of being rejected,
    and a ``cancel`` event that other callers can set.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._entries: Dict[str, _Entry] = {}

    def _checkout(self, key: str) -> _Entry:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = _Entry()
                self._entries[key] = entry
            entry.refs += 1
            return entry

    def _checkin(self, key: str, entry: _Entry) -> None:
        with self._guard:
            entry.refs -= 1
            if entry.refs <= 0 and self._entries.get(key) is entry:
                del self._entries[key]

    @contextmanager
    def hold(
        self,
        key: str,
        *,
        marker: Optional[Hashable] = None,
        wait_s: Optional[float] = None,
        coalesce_s: Optional[float] = None,
    ) -> Iterator[threading.Event]:
        """Hold ``key`` and yield the holder's cancel event.

        Without ``wait_s`` a busy key raises :class:`LockBusy`, unless the
        holder's marker equals ``marker`` and ``coalesce_s`` is given, in which
        case the caller waits up to ``coalesce_s`` for the holder to finish.
        """

        entry = self._checkout(key)
        try:
            acquired = entry.lock.acquire(blocking=False)
            if not acquired:
                if wait_s is not None:
                    acquired = entry.lock.acquire(timeout=max(0.0, wait_s))
                elif coalesce_s is not None and marker is not None and entry.marker == marker:
                    acquired = entry.lock.acquire(timeout=max(0.0, coalesce_s))
                else:
                    raise LockBusy(key, entry.marker)
                if not acquired:
                    raise LockTimeout(f"timed out waiting for {key}")
            entry.marker = marker
            entry.cancel = threading.Event()
            try:
                yield entry.cancel
            finally:
                entry.marker = None
                entry.lock.release()
        finally:
            self._checkin(key, entry)

    def cancel(self, key: str) -> bool:
        """Signal the current holder of ``key``; False when nobody holds it."""

        with self._guard:
            entry = self._entries.get(key)
        if entry is None or not entry.lock.locked():
            return False
        entry.cancel.set()
        return True


__all__ = ["KeyedLocks", "LockBusy", "LockTimeout"]
