from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # OpenRouter
    OPENROUTER_API_KEY: str
    OPENROUTER_BASE_URL: str = "https://openrouter.ai/api/v1"

    # Redis (project records + chat log)
    REDIS_URL: str = "redis://redis:6379/0"
    PERSISTENCE_ENABLED: bool = True

    # LangSmith
    LANGSMITH_API_KEY: str = ""
    LANGSMITH_PROJECT: str = "kgraph"
    LANGCHAIN_TRACING_V2: bool = True

    # Generation
    EXTRACTION_MAX_CHARS: int = 8000
    LLM_TIMEOUT_SECONDS: float = 60.0

    # Layout
    LAYOUT_WIDTH: float = 800.0
    LAYOUT_HEIGHT: float = 500.0
    LAYOUT_LINK_DISTANCE: float = 120.0
    LAYOUT_CHARGE_STRENGTH: float = -400.0
    LAYOUT_COLLIDE_RADIUS: float = 30.0
    LAYOUT_TICK_INTERVAL: float = Field(default=1 / 60, description="Seconds between simulation ticks")
    LAYOUT_AUTORUN: bool = True

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = Field(default="json", description="'json' for production, 'console' for dev")


def get_settings() -> Settings:
    return Settings()
