"""YAML-backed template questions for degraded operation."""
from __future__ import annotations

import os
from pathlib import Path
from typing import Dict, List, Optional

BANK_PATH = os.environ.get("QUESTION_BANK", str(Path(__file__).with_name("question_bank.yaml")))

_FALLBACK_TEMPLATE = "Tell me about your experience with {topic}."


def _load_yaml(path: str) -> dict:
    import yaml  # local import to avoid mandatory dependency until used

    with open(path, "r", encoding="utf-8") as handle:
        return yaml.safe_load(handle) or {}


class QuestionBank:
    """Template questions keyed by interview type and difficulty."""

    def __init__(self, path: str = BANK_PATH):
        self.path = path
        config = _load_yaml(path)
        self._generic: Dict[str, List[str]] = {
            str(kind): [str(topic) for topic in topics or []]
            for kind, topics in (config.get("generic_topics") or {}).items()
        }
        self._templates: Dict[str, Dict[int, str]] = {
            str(kind): {int(level): str(text) for level, text in (levels or {}).items()}
            for kind, levels in (config.get("templates") or {}).items()
        }
        self._follow_ups: Dict[str, str] = {
            str(kind): str(text) for kind, text in (config.get("follow_up") or {}).items()
        }

    def generic_topics(self, interview_type: str) -> List[str]:
        return list(self._generic.get(interview_type) or self._generic.get("mixed") or [])

    def question_text(self, topic: str, difficulty: int, interview_type: str) -> str:
        levels = self._templates.get(interview_type) or self._templates.get("mixed") or {}
        template = levels.get(difficulty) or _nearest(levels, difficulty) or _FALLBACK_TEMPLATE
        return template.format(topic=_display(topic))

    def follow_up_text(self, topic: str, gap_kind: Optional[str]) -> str:
        template = self._follow_ups.get(gap_kind or "none") or self._follow_ups.get("none") or _FALLBACK_TEMPLATE
        return template.format(topic=_display(topic))


def _nearest(levels: Dict[int, str], difficulty: int) -> Optional[str]:
    if not levels:
        return None
    level = min(levels, key=lambda candidate: (abs(candidate - difficulty), candidate))
    return levels[level]


def _display(topic: str) -> str:
    return topic.replace("-", " ")


__all__ = ["BANK_PATH", "QuestionBank"]
