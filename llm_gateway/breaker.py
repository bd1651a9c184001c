from __future__ import annotations  # Consecutive-failure circuit breaker for LLM calls

import logging
import threading
import time
from collections import deque
from typing import Callable, Deque, Literal

logger = logging.getLogger(__name__)

BreakerState = Literal["closed", "open", "half_open"]


class CircuitBreaker:  # Opens after N consecutive failures inside a rolling window
    def __init__(
        self,
        *,
        failures_to_open: int = 3,
        window_s: float = 60.0,
        open_s: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._failures_to_open = failures_to_open
        self._window_s = window_s
        self._open_s = open_s
        self._clock = clock
        self._lock = threading.Lock()
        self._failures: Deque[float] = deque()
        self._opened_at: float | None = None

    @property
    def state(self) -> BreakerState:
        with self._lock:
            return self._state_locked()

    def _state_locked(self) -> BreakerState:
        if self._opened_at is None:
            return "closed"
        if self._clock() - self._opened_at < self._open_s:
            return "open"
        return "half_open"

    def allow(self) -> bool:  # False while the breaker is open
        return self.state != "open"

    def record_success(self) -> None:
        with self._lock:
            if self._opened_at is not None:
                logger.info("LLM breaker closed after successful trial call")
            self._failures.clear()
            self._opened_at = None

    def record_failure(self) -> None:
        with self._lock:
            now = self._clock()
            if self._state_locked() == "half_open":
                self._opened_at = now
                logger.warning("LLM breaker re-opened after failed trial call")
                return
            self._failures.append(now)
            while self._failures and now - self._failures[0] > self._window_s:
                self._failures.popleft()
            if len(self._failures) >= self._failures_to_open and self._opened_at is None:
                self._opened_at = now
                logger.warning(
                    "LLM breaker opened failures=%d open_s=%.1f",
                    len(self._failures),
                    self._open_s,
                )

    def force_open(self) -> None:  # Operator / test hook
        with self._lock:
            self._opened_at = self._clock()

    def reset(self) -> None:
        with self._lock:
            self._failures.clear()
            self._opened_at = None


__all__ = ["BreakerState", "CircuitBreaker"]
