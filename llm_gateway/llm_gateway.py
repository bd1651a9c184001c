from __future__ import annotations  # LLM request gateway module

import concurrent.futures
import json
import logging
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Protocol, Type, TypeVar

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from config import GatewayConfig, LlmRoute

from .breaker import CircuitBreaker
from .cache import TtlCache, cache_key
from .deadline import CallCancelled, Deadline, DeadlineExceeded
from .degraded import degraded_payload
from .errors import LlmGatewayError, kind_for_status


logger = logging.getLogger(__name__)  # Module logger setup

_POLL_S = 0.05

T = TypeVar("T", bound=BaseModel)


class HttpClient(Protocol):  # Minimal HTTP client protocol
    def post(self, url: str, *, json: Dict[str, Any], headers: Dict[str, str], timeout: float) -> "HttpResponse": ...


class HttpResponse(Protocol):  # Minimal HTTP response protocol
    @property
    def status_code(self) -> int: ...

    def json(self) -> Any: ...

    @property
    def text(self) -> str: ...


class LlmRequest(BaseModel):  # Structured prompt sent through the gateway
    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    system_prompt: str
    user_prompt: str
    model: Optional[str] = None
    temperature: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    max_tokens: Optional[int] = Field(default=None, ge=1)
    response_schema: Optional[Type[BaseModel]] = None


class LlmResponse(BaseModel):  # Gateway result with provenance flags
    content: str
    tokens_used: int = 0
    provider: str
    degraded: bool = False
    cached: bool = False
    attempt: int = 0
    parsed: Optional[Dict[str, Any]] = None

    def as_schema(self, schema: Type[T]) -> T:  # Re-hydrate the validated payload
        if self.parsed is None:
            raise LlmGatewayError("Response carries no structured payload", kind="malformedResponse")
        return schema.model_validate(self.parsed)


class LlmGateway:  # Single egress to the LLM with retries, breaker and degraded mode
    def __init__(
        self,
        route: LlmRoute,
        config: Optional[GatewayConfig] = None,
        *,
        client: Optional[HttpClient] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._route = route
        self._cfg = config or GatewayConfig()
        self._client = client
        self._owned_client: Optional[httpx.Client] = None
        self._client_lock = threading.Lock()
        self._breaker = CircuitBreaker(
            failures_to_open=self._cfg.breaker_failures_to_open,
            window_s=self._cfg.breaker_window_s,
            open_s=self._cfg.breaker_open_s,
            clock=clock,
        )
        self._cache: TtlCache[LlmResponse] = TtlCache(self._cfg.cache_ttl_s, clock=clock)
        # FIFO across callers; per-session fairness comes from the orchestrator's session lock,
        # which allows each session one queued call. Direct callers share the FIFO order.
        self._pool = concurrent.futures.ThreadPoolExecutor(
            max_workers=self._cfg.max_in_flight,
            thread_name_prefix="llm-gateway",
        )

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker

    @property
    def route(self) -> LlmRoute:
        return self._route

    def complete(self, request: LlmRequest, *, deadline: Optional[Deadline] = None) -> LlmResponse:
        """Send ``request`` to the LLM, honouring the breaker, cache and deadline."""

        deadline = deadline or Deadline.unbounded()
        deadline.check()
        if not self._breaker.allow():
            return self._degraded_or_fail(request)

        model = request.model or self._route.model
        temperature = self._route.temperature if request.temperature is None else request.temperature
        schema = request.response_schema
        key = cache_key(
            request.system_prompt,
            request.user_prompt,
            temperature,
            model,
            schema.__name__ if schema is not None else "",
        )
        hit = self._cache.get(key)
        if hit is not None:
            logger.info("LLM cache hit route=%s model=%s", self._route.name, model)
            return hit.model_copy(update={"cached": True})

        try:
            response = self._execute(request, model, temperature, deadline)
        except LlmGatewayError as exc:
            if exc.counts_against_breaker:
                self._breaker.record_failure()
            raise
        self._breaker.record_success()
        self._cache.put(key, response)
        return response

    def close(self) -> None:  # Release worker threads and the owned HTTP client
        self._pool.shutdown(wait=False, cancel_futures=True)
        with self._client_lock:
            if self._owned_client is not None:
                self._owned_client.close()
                self._owned_client = None

    def _degraded_or_fail(self, request: LlmRequest) -> LlmResponse:
        schema = request.response_schema
        if schema is None:
            raise LlmGatewayError("LLM unavailable: circuit open", kind="unavailable")
        payload = degraded_payload(schema, request.user_prompt)
        logger.warning("LLM circuit open; serving degraded response schema=%s", schema.__name__)
        return LlmResponse(
            content=json.dumps(payload, ensure_ascii=False),
            provider="rule-based",
            degraded=True,
            parsed=payload,
        )

    def _execute(self, request: LlmRequest, model: str, temperature: float, deadline: Deadline) -> LlmResponse:
        call_deadline = deadline.child(self._route.timeout_s)
        schema = request.response_schema
        base_messages = _messages_for(request)
        preview = _preview(base_messages)
        if len(preview) > 120:
            preview = preview[:117] + "..."
        logger.info(
            "LLM request start route=%s model=%s preview=%s",
            self._route.name,
            model,
            preview,
        )
        attempt = 0
        retried = False
        repairs = 0
        tokens = 0
        last_error_text: Optional[str] = None
        while True:
            attempt += 1
            attempt_messages = list(base_messages)
            if last_error_text is not None:
                attempt_messages.append({"role": "system", "content": _retry_hint(last_error_text)})
            payload: Dict[str, Any] = {
                "model": model,
                "messages": attempt_messages,
                "temperature": temperature,
                "max_tokens": request.max_tokens or self._route.max_tokens,
            }
            if schema is not None and self._route.response_format:
                payload["response_format"] = {"type": self._route.response_format}
            logger.info(
                "LLM request send route=%s model=%s attempt=%d",
                self._route.name,
                model,
                attempt,
            )
            try:
                data = self._send(payload, call_deadline)
            except LlmGatewayError as exc:
                exc.attempt = attempt
                if not retried and self._should_retry(exc, call_deadline):
                    retried = True
                    logger.warning("LLM transient failure kind=%s; retrying once", exc.kind)
                    continue
                raise
            tokens += _usage_tokens(data)
            content = _extract_content(data)
            if schema is None:
                return LlmResponse(content=content, tokens_used=tokens, provider=self._route.name, attempt=attempt)
            try:
                parsed = _validate(schema, content)
            except (json.JSONDecodeError, ValidationError, ValueError) as exc:
                logger.warning("LLM output validation failed: %s", str(exc).splitlines()[0])
                if repairs < self._cfg.max_repairs:
                    repairs += 1
                    last_error_text = str(exc)
                    continue
                raise LlmGatewayError(
                    "LLM output validation failed",
                    kind="malformedResponse",
                    attempt=attempt,
                ) from exc
            logger.info(
                "LLM request done route=%s model=%s attempt=%d",
                self._route.name,
                model,
                attempt,
            )
            return LlmResponse(
                content=content,
                tokens_used=tokens,
                provider=self._route.name,
                attempt=attempt,
                parsed=parsed.model_dump(),
            )

    def _should_retry(self, exc: LlmGatewayError, call_deadline: Deadline) -> bool:
        if call_deadline.expired or call_deadline.cancelled:
            return False
        if exc.kind == "transient":
            return True
        return exc.kind == "timeout" and call_deadline.elapsed() < self._cfg.retry_elapsed_cutoff_s

    def _send(self, payload: Dict[str, Any], deadline: Deadline) -> Any:
        url = f"{self._route.base_url}{self._route.endpoint}"
        headers = {"Content-Type": "application/json"}
        if self._route.api_key is not None:
            headers["Authorization"] = f"Bearer {self._route.api_key.get_secret_value()}"
        headers.update(self._route.extra_headers)
        timeout = min(self._route.timeout_s, deadline.remaining())
        if timeout <= 0:
            raise self._timeout_error(deadline)
        future = self._pool.submit(self._post, url, payload, headers, timeout)
        while True:
            if deadline.cancelled:
                future.cancel()
                raise CallCancelled("LLM call cancelled")
            remaining = deadline.remaining()
            if remaining <= 0:
                future.cancel()
                raise self._timeout_error(deadline)
            try:
                response = future.result(timeout=min(remaining, _POLL_S))
                break
            except concurrent.futures.TimeoutError:
                continue
        if response.status_code >= 400:
            logger.error("LLM error status: %s", response.status_code)
            raise LlmGatewayError(
                f"LLM returned status {response.status_code}",
                kind=kind_for_status(response.status_code),
                status_code=response.status_code,
            )
        try:
            return response.json()
        except Exception as exc:  # noqa: BLE001
            logger.error("Invalid JSON payload from LLM: %s", exc)
            raise LlmGatewayError("LLM payload was not JSON", kind="malformedResponse") from exc

    def _timeout_error(self, deadline: Deadline) -> Exception:
        if deadline.root_expired():
            return DeadlineExceeded("operation deadline exceeded during LLM call")
        return LlmGatewayError("LLM call timed out", kind="timeout")

    def _post(self, url: str, payload: Dict[str, Any], headers: Dict[str, str], timeout: float) -> HttpResponse:
        client = self._client or self._default_client()
        try:
            return client.post(url, json=payload, headers=headers, timeout=timeout)
        except LlmGatewayError:
            raise
        except (httpx.TimeoutException, TimeoutError) as exc:
            logger.error("LLM transport timeout: %s", exc)
            raise LlmGatewayError("LLM transport timed out", kind="timeout") from exc
        except Exception as exc:  # noqa: BLE001
            logger.error("LLM transport failure: %s", exc)
            raise LlmGatewayError("LLM transport failed", kind="transient") from exc

    def _default_client(self) -> httpx.Client:
        with self._client_lock:
            if self._owned_client is None:
                self._owned_client = httpx.Client(timeout=self._route.timeout_s)
            return self._owned_client


def _messages_for(request: LlmRequest) -> List[Dict[str, str]]:  # Compose chat messages with schema contract
    system = request.system_prompt
    if request.response_schema is not None:
        schema_json = json.dumps(request.response_schema.model_json_schema(by_alias=True), indent=2, sort_keys=True)
        system = system + "\n\nReply with a single JSON object matching this schema:\n" + schema_json
    return [
        {"role": "system", "content": system},
        {"role": "user", "content": request.user_prompt},
    ]


def _preview(messages: List[Dict[str, str]]) -> str:  # Build preview string for logging
    for message in messages:
        text = message.get("content", "").strip()
        if text:
            return text.splitlines()[0]
    return ""


def _usage_tokens(data: Any) -> int:
    if isinstance(data, dict):
        usage = data.get("usage")
        if isinstance(usage, dict):
            try:
                return int(usage.get("total_tokens", 0))
            except (TypeError, ValueError):
                return 0
    return 0


def _extract_content(data: Any) -> str:  # Extract message content from LLM response
    if isinstance(data, dict):
        choices = data.get("choices")
        if isinstance(choices, list) and choices:
            message = choices[0].get("message") if isinstance(choices[0], dict) else None
            content = message.get("content") if isinstance(message, dict) else None
            if isinstance(content, str):
                return content
        if isinstance(data.get("content"), str):
            return data["content"]
    raise LlmGatewayError("LLM response missing content", kind="malformedResponse")


def _validate(schema: Type[T], content: str) -> T:  # Parse JSON content with schema
    cleaned = _strip_code_fences(content)
    try:
        return schema.model_validate_json(cleaned)
    except (json.JSONDecodeError, ValidationError) as exc:
        embedded = _embedded_object(cleaned)
        if embedded is not None:
            try:
                return schema.model_validate(json.loads(embedded))
            except (json.JSONDecodeError, ValidationError):
                pass
        adapter = getattr(schema, "from_raw_content", None)
        if callable(adapter):
            return adapter(cleaned)  # type: ignore[return-value]
        raise exc


def _embedded_object(text: str) -> Optional[str]:  # Slice the outermost JSON object out of prose
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        return None
    return text[start : end + 1]


def _strip_code_fences(content: str) -> str:  # Remove common markdown fences from LLM output
    text = content.strip()
    if text.startswith("```"):
        lines = text.splitlines()
        if lines:
            lines = lines[1:]
            while lines and lines[0].strip() == "":
                lines = lines[1:]
            while lines and lines[-1].strip() == "":
                lines = lines[:-1]
            if lines and lines[-1].strip() == "```":
                lines = lines[:-1]
            text = "\n".join(lines).strip()
    return text


def _retry_hint(error_text: Optional[str]) -> str:  # Compose repair instructions including last error
    base = "The previous reply failed validation."
    if error_text:
        truncated = error_text.splitlines()[0].strip()
        if len(truncated) > 200:
            truncated = truncated[:197] + "..."
        base += f" Reason: {truncated}."
    return base + " Return a single JSON object that matches the schema."
