"""Deadline and cancellation tokens shared by callers and the gateway."""
from __future__ import annotations

import threading
import time
from typing import Callable, Optional


class DeadlineExceeded(RuntimeError):
    """Raised when an operation ran past its overall budget."""


class CallCancelled(RuntimeError):
    """Raised when an operation was cancelled by another request."""


class Deadline:
    """Monotonic expiry plus an optional cancellation event.

    A child deadline never outlives its parent and shares the parent's
    cancellation event, so cancelling an operation cancels every call made
    under it.
    """

    def __init__(
        self,
        budget_s: Optional[float],
        *,
        cancel_event: Optional[threading.Event] = None,
        parent: Optional["Deadline"] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._clock = clock
        self.parent = parent
        self.started_at = clock()
        expiry = None if budget_s is None else self.started_at + budget_s
        if parent is not None and parent.expires_at is not None:
            expiry = parent.expires_at if expiry is None else min(expiry, parent.expires_at)
        self.expires_at = expiry
        if cancel_event is None and parent is not None:
            cancel_event = parent.cancel_event
        self.cancel_event = cancel_event or threading.Event()

    @classmethod
    def unbounded(cls) -> "Deadline":
        return cls(None)

    def child(self, budget_s: Optional[float]) -> "Deadline":
        return Deadline(budget_s, parent=self, clock=self._clock)

    def elapsed(self) -> float:
        return self._clock() - self.started_at

    def remaining(self) -> float:
        if self.expires_at is None:
            return float("inf")
        return self.expires_at - self._clock()

    @property
    def expired(self) -> bool:
        return self.remaining() <= 0

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def cancel(self) -> None:
        self.cancel_event.set()

    def root_expired(self) -> bool:
        """True when the outermost deadline (the operation budget) has run out."""

        node: Deadline = self
        while node.parent is not None:
            node = node.parent
        return node.expired

    def check(self) -> None:
        """Raise when the operation was cancelled or its budget is spent."""

        if self.cancelled:
            raise CallCancelled("operation cancelled")
        if self.expired:
            raise DeadlineExceeded("operation deadline exceeded")


__all__ = ["CallCancelled", "Deadline", "DeadlineExceeded"]
