from __future__ import annotations  # Engine configuration assembled once at process start

from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, SecretStr

from .settings import Settings, settings as default_settings


class LlmRoute(BaseModel):  # LLM endpoint configuration
    model_config = ConfigDict(frozen=True)

    name: str = "default"
    base_url: str
    endpoint: str
    model: str
    temperature: float = Field(default=0.4, ge=0.0, le=1.0)
    max_tokens: int = Field(default=800, ge=1)
    timeout_s: float = Field(default=20.0, ge=0.1)
    api_key: SecretStr | None = None
    response_format: str | None = "json_object"
    extra_headers: Dict[str, str] = Field(default_factory=dict)


class GatewayConfig(BaseModel):  # Breaker, cache and concurrency knobs for the gateway
    model_config = ConfigDict(frozen=True)

    max_in_flight: int = Field(default=64, ge=1)
    breaker_failures_to_open: int = Field(default=3, ge=1)
    breaker_window_s: float = Field(default=60.0, gt=0.0)
    breaker_open_s: float = Field(default=60.0, gt=0.0)
    cache_ttl_s: float = Field(default=600.0, ge=0.0)
    retry_elapsed_cutoff_s: float = Field(default=5.0, ge=0.0)
    max_repairs: int = Field(default=1, ge=0)


class SessionConfig(BaseModel):  # Interview session policy defaults
    model_config = ConfigDict(frozen=True)

    default_max_turns: int = Field(default=10, ge=1)
    default_max_duration_minutes: int = Field(default=45, ge=1)
    follow_ups_per_parent: int = Field(default=2, ge=0)
    initial_difficulty: int = Field(default=3, ge=1, le=5)


class DeadlineConfig(BaseModel):  # Overall budgets for public operations
    model_config = ConfigDict(frozen=True)

    start_s: float = Field(default=35.0, gt=0.0)
    answer_s: float = Field(default=35.0, gt=0.0)
    end_s: float = Field(default=10.0, gt=0.0)


class EngineConfig(BaseModel):  # Configuration root injected into every component
    model_config = ConfigDict(frozen=True)

    llm: LlmRoute
    gateway: GatewayConfig = Field(default_factory=GatewayConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    deadlines: DeadlineConfig = Field(default_factory=DeadlineConfig)


def build_engine_config(source: Optional[Settings] = None) -> EngineConfig:  # Translate flat settings into the config tree
    s = source or default_settings
    return EngineConfig(
        llm=LlmRoute(
            base_url=s.LLM_BASE_URL,
            endpoint=s.LLM_ENDPOINT,
            model=s.LLM_MODEL,
            temperature=s.LLM_TEMPERATURE,
            max_tokens=s.LLM_MAX_TOKENS,
            timeout_s=s.LLM_CALL_TIMEOUT_MS / 1000.0,
            api_key=s.LLM_API_KEY,
        ),
        gateway=GatewayConfig(
            max_in_flight=s.GATEWAY_MAX_IN_FLIGHT,
            breaker_failures_to_open=s.LLM_BREAKER_FAILURES_TO_OPEN,
            breaker_window_s=s.LLM_BREAKER_WINDOW_MS / 1000.0,
            breaker_open_s=s.LLM_BREAKER_OPEN_MS / 1000.0,
            cache_ttl_s=float(s.LLM_CACHE_TTL_S),
        ),
        session=SessionConfig(
            default_max_turns=s.SESSION_DEFAULT_MAX_TURNS,
            default_max_duration_minutes=s.SESSION_DEFAULT_MAX_DURATION_MINUTES,
            follow_ups_per_parent=s.SESSION_FOLLOW_UPS_PER_PARENT,
            initial_difficulty=s.SESSION_INITIAL_DIFFICULTY,
        ),
        deadlines=DeadlineConfig(
            start_s=s.START_DEADLINE_S,
            answer_s=s.ANSWER_DEADLINE_S,
            end_s=s.END_DEADLINE_S,
        ),
    )


__all__ = [
    "DeadlineConfig",
    "EngineConfig",
    "GatewayConfig",
    "LlmRoute",
    "SessionConfig",
    "build_engine_config",
]
