from __future__ import annotations  # Gateway failure taxonomy

from typing import Literal, Optional

FailureKind = Literal[
    "quotaExceeded",
    "authInvalid",
    "transient",
    "timeout",
    "malformedResponse",
    "unavailable",
    "invalidRequest",
]

_RETRYABLE = {"quotaExceeded", "transient", "timeout", "unavailable"}


class LlmGatewayError(RuntimeError):  # Base gateway error carrying a failure kind
    def __init__(
        self,
        message: str,
        *,
        kind: FailureKind = "transient",
        status_code: Optional[int] = None,
        attempt: int = 0,
    ) -> None:
        super().__init__(message)
        self.kind: FailureKind = kind
        self.status_code = status_code
        self.attempt = attempt

    @property
    def retryable(self) -> bool:
        return self.kind in _RETRYABLE

    @property
    def counts_against_breaker(self) -> bool:
        return self.kind != "quotaExceeded"


def kind_for_status(status_code: int) -> FailureKind:  # Map an HTTP status onto a failure kind
    if status_code == 429:
        return "quotaExceeded"
    if status_code in (401, 403):
        return "authInvalid"
    if status_code == 408:
        return "timeout"
    if status_code >= 500:
        return "transient"
    return "invalidRequest"


__all__ = ["FailureKind", "LlmGatewayError", "kind_for_status"]
