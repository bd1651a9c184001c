from __future__ import annotations  # Rule-based responder used while the breaker is open

from typing import Any, Dict, Type

from pydantic import BaseModel, ValidationError

from .errors import LlmGatewayError


def degraded_payload(schema: Type[BaseModel], user_prompt: str) -> Dict[str, Any]:  # Low-confidence object matching schema
    hook = getattr(schema, "degraded_default", None)
    try:
        if callable(hook):
            instance = hook(user_prompt)
        else:
            instance = schema()
    except ValidationError as exc:
        raise LlmGatewayError(
            f"No degraded default for schema {schema.__name__}",
            kind="unavailable",
        ) from exc
    if not isinstance(instance, schema):
        instance = schema.model_validate(instance)
    return instance.model_dump()


__all__ = ["degraded_payload"]
