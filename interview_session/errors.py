from __future__ import annotations  # Engine error taxonomy mapped onto HTTP statuses

from typing import Optional

from llm_gateway import LlmGatewayError


class EngineError(Exception):  # Base for errors surfaced to API callers
    code = "internal"
    http_status = 500
    retryable = False

    def __init__(self, message: str, *, retryable: Optional[bool] = None) -> None:
        super().__init__(message)
        self.message = message
        if retryable is not None:
            self.retryable = retryable

    def to_payload(self) -> dict:
        return {"error": {"code": self.code, "message": self.message, "retryable": self.retryable}}


class ValidationFailed(EngineError):
    code = "validation"
    http_status = 400


class NotFound(EngineError):
    code = "notFound"
    http_status = 404


class StateConflict(EngineError):
    code = "stateConflict"
    http_status = 409


class QuotaExceeded(EngineError):
    code = "quotaExceeded"
    http_status = 429
    retryable = True


class ServiceUnavailable(EngineError):
    code = "transient"
    http_status = 503
    retryable = True


class OperationTimeout(EngineError):
    code = "timeout"
    http_status = 504
    retryable = True


def from_gateway_error(exc: LlmGatewayError) -> EngineError:
    """Translate an LLM failure that could not be absorbed by a fallback."""

    if exc.kind == "quotaExceeded":
        return QuotaExceeded("LLM quota exceeded; retry later")
    if exc.kind == "timeout":
        return OperationTimeout("LLM call timed out")
    if exc.kind == "authInvalid":
        return ServiceUnavailable("LLM credentials rejected", retryable=False)
    return ServiceUnavailable(f"LLM unavailable ({exc.kind})")


__all__ = [
    "EngineError",
    "NotFound",
    "OperationTimeout",
    "QuotaExceeded",
    "ServiceUnavailable",
    "StateConflict",
    "ValidationFailed",
    "from_gateway_error",
]
