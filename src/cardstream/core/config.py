"""Client settings for the card streaming engine."""

import os
from functools import lru_cache
from typing import Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=(".env"), env_file_encoding="utf-8")

    # App
    APP_NAME: str = "cardstream"
    ENVIRONMENT: str = "development"  # development | production | test

    # Element backend (card creation over HTTP, element streaming over WebSocket)
    BACKEND_URL: str = "http://localhost:8000"
    WS_URL: str = "ws://localhost:8000"
    WS_PATH: str = "/ws/canva_request"

    # Destination host asset API; optional outside production
    HOST_API_URL: str | None = None
    HOST_API_TOKEN: str | None = None

    # Timeouts (seconds)
    CONNECT_TIMEOUT_SECONDS: float = 10.0
    IDLE_TIMEOUT_SECONDS: float = 60.0
    PROBE_TIMEOUT_SECONDS: float = 10.0
    UPLOAD_TIMEOUT_SECONDS: float = 60.0
    UPLOAD_POLL_INTERVAL_SECONDS: float = 0.5
    CARDS_API_TIMEOUT_SECONDS: float = 60.0

    # Resource resolution
    DEFAULT_IMAGE_MIME_TYPE: str = "image/png"
    DEFAULT_VIDEO_MIME_TYPE: str = "video/mp4"
    AI_DISCLOSURE: Literal["none", "app_generated"] = "none"

    # Streaming
    DELIVERY_MODE: Literal["sequential", "buffered"] = "sequential"
    DEFAULT_CARD_COUNT: int = 5

    @field_validator("BACKEND_URL", "HOST_API_URL", mode="before")
    @classmethod
    def strip_trailing_slash(cls, v: object) -> object:
        if isinstance(v, str):
            return v.strip().rstrip("/")
        return v

    @field_validator("WS_URL", mode="before")
    @classmethod
    def validate_ws_url(cls, v: object) -> str:
        """Require a ws:// or wss:// base URL without a trailing slash."""
        if not isinstance(v, str):
            raise ValueError("WS_URL must be a string")
        s = v.strip().rstrip("/")
        if not s.startswith(("ws://", "wss://")):
            raise ValueError("WS_URL must use the ws:// or wss:// scheme")
        return s

    @field_validator("WS_PATH", mode="before")
    @classmethod
    def normalize_ws_path(cls, v: object) -> object:
        if isinstance(v, str) and not v.startswith("/"):
            return f"/{v}"
        return v

    @field_validator(
        "CONNECT_TIMEOUT_SECONDS",
        "IDLE_TIMEOUT_SECONDS",
        "PROBE_TIMEOUT_SECONDS",
        "UPLOAD_TIMEOUT_SECONDS",
        "UPLOAD_POLL_INTERVAL_SECONDS",
        "CARDS_API_TIMEOUT_SECONDS",
    )
    @classmethod
    def require_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("timeouts must be greater than zero")
        return v

    @model_validator(mode="after")
    def _validate_card_count(self) -> "Settings":
        if self.DEFAULT_CARD_COUNT < 1:
            raise ValueError("DEFAULT_CARD_COUNT must be at least 1")
        return self

    @property
    def stream_url(self) -> str:
        """Full WebSocket URL of the element streaming endpoint."""
        return f"{self.WS_URL}{self.WS_PATH}"


@lru_cache
def get_settings() -> Settings:
    env = os.getenv("ENVIRONMENT", "development").lower()
    if env not in {"development", "production", "test"}:
        raise ValueError("ENVIRONMENT must be 'development', 'production', or 'test'")

    if env == "production":
        env_file = ".env.prod"
    elif env == "development":
        env_file = ".env.dev"
    else:
        # test environment - no env file needed, use defaults
        env_file = ""

    # pydantic-settings supports _env_file at runtime; mypy doesn't type it.
    settings = Settings(_env_file=env_file or None)  # type: ignore[call-arg]

    # Uploads cannot work without a host asset endpoint; fail fast in production
    if env == "production" and not settings.HOST_API_URL:
        raise RuntimeError("HOST_API_URL must be set in production")
    return settings
