"""Structured logging utilities for interview sessions."""
from __future__ import annotations

import json
import logging
import logging.handlers
import os
import sys
import time
import uuid
from typing import Any, Optional

from config.settings import settings

_logger = logging.getLogger("interview")
_logger.setLevel(settings.LOG_LEVEL.upper())
_logger.propagate = False

_HUMAN_FORMAT = "[%(asctime)s] %(levelname)s %(name)s :: %(message)s"
_HUMAN_KEYS = (
    "turn",
    "topic",
    "difficulty",
    "score",
    "gap_kind",
    "decision",
    "status",
    "degraded",
    "reason",
    "name",
    "ms",
    "gap_id",
)


def _ensure_handlers() -> None:
    if _logger.handlers:
        return

    level = settings.LOG_LEVEL.upper()

    # Console: human-readable lines only (stdout)
    human_console = logging.StreamHandler(stream=sys.stdout)
    human_console.setLevel(level)
    human_console.setFormatter(logging.Formatter(_HUMAN_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    human_console.addFilter(lambda record: getattr(record, "is_json", False) is not True)
    _logger.addHandler(human_console)

    if not settings.ENABLE_FILE_LOGS:
        return

    log_file = settings.LOG_FILE
    log_dir = os.path.dirname(log_file)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)

    # JSON file handler
    json_file = logging.handlers.RotatingFileHandler(
        log_file,
        maxBytes=settings.LOG_MAX_BYTES,
        backupCount=settings.LOG_BACKUP_COUNT,
    )
    json_file.setLevel(level)
    json_file.setFormatter(logging.Formatter("%(message)s"))
    json_file.addFilter(lambda record: getattr(record, "is_json", False) is True)
    _logger.addHandler(json_file)

    # Human-readable file handler
    human_file_name = log_file if log_file.endswith(".log") else f"{log_file}.log"
    human_file_name = human_file_name.replace(".log", "-human.log")
    human_file = logging.handlers.RotatingFileHandler(
        human_file_name,
        maxBytes=settings.LOG_MAX_BYTES,
        backupCount=settings.LOG_BACKUP_COUNT,
    )
    human_file.setLevel(level)
    human_file.setFormatter(logging.Formatter(_HUMAN_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    human_file.addFilter(lambda record: getattr(record, "is_json", False) is not True)
    _logger.addHandler(human_file)


def _format_human(evt: dict[str, Any]) -> str:
    base = f"session={evt.get('session_id')} kind={evt.get('kind')}"
    extras = [f"{key}={evt[key]}" for key in _HUMAN_KEYS if key in evt]
    return base + (" " + " ".join(extras) if extras else "")


def _emit(msg: str, *, is_json: bool, level: int) -> None:
    record = _logger.makeRecord(
        name=_logger.name,
        level=level,
        fn="",
        lno=0,
        msg=msg,
        args=(),
        exc_info=None,
    )
    record.is_json = is_json  # type: ignore[attr-defined]
    _logger.handle(record)


def log_event(kind: str, session_id: Optional[str], *, level: int = logging.INFO, **fields: Any) -> None:
    """Emit human logs to console and JSON/human logs to files."""

    _ensure_handlers()

    payload: dict[str, Any] = {
        "ts": time.time(),
        "trace": str(uuid.uuid4()),
        "kind": kind,
        "session_id": session_id,
    }
    payload.update(fields)

    _emit(_format_human(payload), is_json=False, level=level)

    if not settings.ENABLE_FILE_LOGS:
        return

    _emit(json.dumps(payload, ensure_ascii=False, default=str), is_json=True, level=level)


__all__ = ["log_event"]
