from __future__ import annotations  # Re-export llm_gateway public API

from .breaker import CircuitBreaker
from .deadline import CallCancelled, Deadline, DeadlineExceeded
from .errors import FailureKind, LlmGatewayError
from .llm_gateway import HttpClient, HttpResponse, LlmGateway, LlmRequest, LlmResponse

__all__ = [
    "CallCancelled",
    "CircuitBreaker",
    "Deadline",
    "DeadlineExceeded",
    "FailureKind",
    "HttpClient",
    "HttpResponse",
    "LlmGateway",
    "LlmGatewayError",
    "LlmRequest",
    "LlmResponse",
]
