# stack_engine/core/config.py

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class EngineSettings(BaseSettings):
    """Control plane configuration from environment variables (STACK_ENGINE_*)."""

    model_config = SettingsConfigDict(
        env_prefix="STACK_ENGINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Backends
    repository_backend: Literal["memory", "postgres"] = "memory"
    runtime_backend: Literal["docker", "agent"] = "agent"

    # Runtime agent
    runtime_agent_url: str = "http://localhost:9000"
    runtime_agent_timeout: float = 300.0

    # Init containers
    init_timeout: float = 300.0
    init_poll_interval: float = 0.5

    # Maintenance observers
    observer_failure_threshold: int = 3

    # Logging
    log_level: str = "INFO"

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000


@lru_cache
def get_settings() -> EngineSettings:
    return EngineSettings()
