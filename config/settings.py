"""Application settings and configuration management."""
from __future__ import annotations

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from environment variables or defaults."""

    DB_PATH: str = Field(default="data/interview.db")

    LOG_LEVEL: str = "INFO"
    ENABLE_FILE_LOGS: bool = False
    LOG_FILE: str = "logs/interview.log"
    LOG_MAX_BYTES: int = 5242880
    LOG_BACKUP_COUNT: int = 5

    LLM_BASE_URL: str = "https://api.openai.com/v1"
    LLM_ENDPOINT: str = "/chat/completions"
    LLM_MODEL: str = "gpt-4o-mini"
    LLM_API_KEY: SecretStr | None = None
    LLM_TEMPERATURE: float = Field(default=0.4, ge=0.0, le=1.0)
    LLM_MAX_TOKENS: int = Field(default=800, ge=1)
    LLM_CALL_TIMEOUT_MS: int = Field(default=20000, ge=100)
    LLM_BREAKER_FAILURES_TO_OPEN: int = Field(default=3, ge=1)
    LLM_BREAKER_WINDOW_MS: int = Field(default=60000, ge=1)
    LLM_BREAKER_OPEN_MS: int = Field(default=60000, ge=1)
    LLM_CACHE_TTL_S: int = Field(default=600, ge=0)

    SESSION_DEFAULT_MAX_TURNS: int = Field(default=10, ge=1)
    SESSION_DEFAULT_MAX_DURATION_MINUTES: int = Field(default=45, ge=1)
    SESSION_FOLLOW_UPS_PER_PARENT: int = Field(default=2, ge=0)
    SESSION_INITIAL_DIFFICULTY: int = Field(default=3, ge=1, le=5)

    GATEWAY_MAX_IN_FLIGHT: int = Field(default=64, ge=1)

    START_DEADLINE_S: float = 35.0
    ANSWER_DEADLINE_S: float = 35.0
    END_DEADLINE_S: float = 10.0

    model_config = SettingsConfigDict(env_file=".env", validate_assignment=True, extra="ignore")


settings = Settings()
