"""Simple span helper for recording operation timings."""
from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Iterator

from .logger import log_event


@contextmanager
def span(session_id: str, name: str) -> Iterator[None]:
    start = time.monotonic()
    try:
        yield
    finally:
        elapsed_ms = int((time.monotonic() - start) * 1000)
        log_event("span.end", session_id, name=name, ms=elapsed_ms)


__all__ = ["span"]
