"""Configuration package for the interview engine."""
from .engine import (
    DeadlineConfig,
    EngineConfig,
    GatewayConfig,
    LlmRoute,
    SessionConfig,
    build_engine_config,
)
from .settings import Settings, settings

__all__ = [
    "DeadlineConfig",
    "EngineConfig",
    "GatewayConfig",
    "LlmRoute",
    "SessionConfig",
    "Settings",
    "build_engine_config",
    "settings",
]
