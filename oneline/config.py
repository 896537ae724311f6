"""
Centralized configuration management using pydantic-settings.
This module provides a single source of truth for all application configuration.
"""

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from oneline.utils.logger import setup_logger

load_dotenv(override=True)


logger = setup_logger("core_config")

# Marker a client sends in model/endpoint/apiKey to ask for the server-side
# upstream configuration instead of its own.
ENV_CONFIG_SENTINELS = frozenset({"USE_ENV_CONFIG", "使用环境变量配置"})


class Settings(BaseSettings):
    """
    Application settings managed by pydantic-settings.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
        env_prefix="",
    )

    # ===== Upstream generation service =====
    api_endpoint: str | None = Field(
        default=None,
        alias="API_ENDPOINT",
        description="Chat-completions URL of the upstream generation service",
    )
    api_key: str | None = Field(
        default=None,
        alias="API_KEY",
        description="Bearer credential for the upstream generation service",
    )
    api_model: str = Field(
        default="gemini-2.0-flash-exp-search",
        alias="API_MODEL",
        description="Model used when the request does not name one",
    )
    upstream_temperature: float = Field(
        default=0.7,
        alias="UPSTREAM_TEMPERATURE",
        description="Sampling temperature sent with every generation request",
    )

    # ===== Retry / timeout policy =====
    # Attempts are capped below the ~60s limit enforced by hosting platforms
    upstream_attempt_timeout_seconds: float = Field(
        default=45.0,
        alias="UPSTREAM_ATTEMPT_TIMEOUT_SECONDS",
        description="Wall-clock limit of a single upstream attempt",
    )
    upstream_max_attempts: int = Field(
        default=3,
        ge=1,
        alias="UPSTREAM_MAX_ATTEMPTS",
        description="Total number of upstream attempts per request",
    )
    upstream_retry_delays: list[float] = Field(
        default=[1.0, 2.0, 4.0],
        alias="UPSTREAM_RETRY_DELAYS",
        description="Backoff delays (seconds) before the 2nd, 3rd, ... attempt",
    )
    upstream_fallback_retry_delay: float = Field(
        default=5.0,
        alias="UPSTREAM_FALLBACK_RETRY_DELAY",
        description="Backoff delay for attempts beyond the configured sequence",
    )
    stream_hold_until_complete: bool = Field(
        default=True,
        alias="STREAM_HOLD_UNTIL_COMPLETE",
        description=(
            "Deliver nothing to a streaming client until an upstream attempt "
            "has fully succeeded, so a retry can never duplicate output"
        ),
    )

    # ===== SearXNG grounding =====
    searxng_enabled: bool = Field(default=False, alias="SEARXNG_ENABLED")
    searxng_url: str | None = Field(default=None, alias="SEARXNG_URL")
    searxng_categories: str = Field(default="general,news", alias="SEARXNG_CATEGORIES")
    searxng_language: str = Field(default="zh", alias="SEARXNG_LANGUAGE")
    searxng_time_range: str = Field(default="year", alias="SEARXNG_TIME_RANGE")
    searxng_num_results: int = Field(default=20, alias="SEARXNG_NUM_RESULTS")
    searxng_timeout_seconds: float = Field(
        default=15.0,
        alias="SEARXNG_TIMEOUT_SECONDS",
        description="Timeout of a single SearXNG request",
    )

    # ===== Server =====
    server_host: str = Field(
        default="0.0.0.0", alias="SERVER_HOST", description="Server host address"
    )
    server_port: int = Field(
        default=8080, alias="SERVER_PORT", description="Server port number"
    )
    server_workers: int = Field(
        default=1, alias="SERVER_WORKERS", description="Number of uvicorn workers"
    )
    cors_allow_origins: list[str] = Field(
        default=["http://localhost:3000", "http://127.0.0.1:3000"],
        alias="CORS_ALLOW_ORIGINS",
    )
    cors_allow_credentials: bool = Field(default=True, alias="CORS_ALLOW_CREDENTIALS")
    cors_allow_methods: list[str] = Field(default=["*"], alias="CORS_ALLOW_METHODS")
    cors_allow_headers: list[str] = Field(default=["*"], alias="CORS_ALLOW_HEADERS")

    @field_validator("upstream_retry_delays")
    @classmethod
    def validate_retry_delays(cls, v: list[float]) -> list[float]:
        if any(delay < 0 for delay in v):
            raise ValueError("Retry delays must be non-negative")
        return v

    @property
    def has_server_upstream_config(self) -> bool:
        return bool(self.api_endpoint and self.api_key)


settings = Settings()

logger.debug(
    f"Settings loaded - upstream endpoint configured: {bool(settings.api_endpoint)}, "
    f"model: {settings.api_model}, max attempts: {settings.upstream_max_attempts}, "
    f"searxng enabled: {settings.searxng_enabled}"
)
