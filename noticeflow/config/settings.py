"""Noticeflow configuration settings."""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import BaseModel, Field, field_validator, model_validator

DEVELOPMENT_ENVIRONMENTS = frozenset({"dev", "development", "local"})


def _csv_env(var_name: str) -> list[str]:
    raw = os.getenv(var_name, "")
    return [item.strip() for item in raw.split(",") if item.strip()]


def _flag_env(var_name: str) -> bool:
    return os.getenv(var_name, "").strip().lower() in {"1", "true", "yes", "on"}


class ScrapingSettings(BaseModel):
    """Per-tenant scraping behaviour.

    Bounds mirror what the operations API accepts. An inverted delay window
    is swapped rather than rejected.
    """

    min_delay_ms: int = Field(default=3000, ge=1000, le=60000)
    max_delay_ms: int = Field(default=7000, ge=1000, le=60000)
    global_timeout_ms: int = Field(default=30000, ge=5000, le=120000)
    max_retries: int = Field(default=3, ge=1, le=10)
    retry_delay_ms: int = Field(default=2000, ge=500, le=30000)
    auto_scrape_on_sync: bool = False

    @model_validator(mode="after")
    def _order_delay_window(self) -> ScrapingSettings:
        if self.min_delay_ms > self.max_delay_ms:
            self.min_delay_ms, self.max_delay_ms = self.max_delay_ms, self.min_delay_ms
        return self


class FetchConfig(BaseModel):
    """HTTP fetch layer configuration."""

    ignore_https_errors: bool = Field(
        default_factory=lambda: os.getenv("NOTICEFLOW_IGNORE_HTTPS_ERRORS", "true").lower() == "true"
    )
    base_headers: dict[str, str] = Field(
        default_factory=lambda: {
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
            "Accept-Language": "en-US,en;q=0.5",
            "Upgrade-Insecure-Requests": "1",
        }
    )
    user_agents: list[str] = Field(default_factory=list)


class LaneConfig(BaseModel):
    """Per-tenant fetch lane rate limit: at most ``max_starts`` per ``window_ms``."""

    max_starts: int = Field(
        default_factory=lambda: int(os.getenv("NOTICEFLOW_LANE_MAX_STARTS", "1"))
    )
    window_ms: int = Field(
        default_factory=lambda: int(os.getenv("NOTICEFLOW_LANE_WINDOW_MS", "5000"))
    )

    @field_validator("max_starts", "window_ms")
    @classmethod
    def _validate_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("lane limits must be >= 1")
        return value


class PipelineConfig(BaseModel):
    """Data pipeline configuration."""

    data_dir: Path = Field(
        default_factory=lambda: Path(os.getenv("NOTICEFLOW_DATA_DIR", "./data"))
    )
    reprocess_limit: int = 5000


class APIConfig(BaseModel):
    """Operations API controls from environment."""

    api_token: str = Field(default_factory=lambda: os.getenv("NOTICEFLOW_API_TOKEN", ""))
    tenant_header: str = Field(default_factory=lambda: os.getenv("NOTICEFLOW_TENANT_HEADER", "X-Tenant-Id"))
    environment: str = Field(default_factory=lambda: os.getenv("NOTICEFLOW_ENV", "development").strip().lower())
    allowed_origins: list[str] = Field(default_factory=lambda: _csv_env("NOTICEFLOW_ALLOWED_ORIGINS"))
    dev_allow_all_origins: bool = Field(default_factory=lambda: _flag_env("NOTICEFLOW_DEV_ALLOW_ALL_ORIGINS"))
    cors_allow_credentials: bool = Field(default_factory=lambda: _flag_env("NOTICEFLOW_CORS_ALLOW_CREDENTIALS"))

    @field_validator("tenant_header")
    @classmethod
    def _validate_tenant_header(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("tenant_header must not be empty")
        return value.strip()

    @property
    def is_development(self) -> bool:
        return self.environment in DEVELOPMENT_ENVIRONMENTS

    def cors_origins(self) -> list[str]:
        """Explicit origins, or ``*`` when a development setup opts in.

        Outside development an empty origin list is a configuration error.
        """
        if self.allowed_origins:
            return list(self.allowed_origins)
        if self.is_development and self.dev_allow_all_origins:
            return ["*"]
        if not self.is_development:
            raise ValueError(
                "NOTICEFLOW_ALLOWED_ORIGINS must list the trusted origins when "
                f"NOTICEFLOW_ENV is {self.environment!r}"
            )
        return []


class NoticeflowConfig(BaseModel):
    """Root configuration for a Noticeflow process."""

    fetch: FetchConfig = Field(default_factory=FetchConfig)
    lane: LaneConfig = Field(default_factory=LaneConfig)
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)
    api: APIConfig = Field(default_factory=APIConfig)
    default_scraping: ScrapingSettings = Field(default_factory=ScrapingSettings)
    log_level: str = Field(default_factory=lambda: os.getenv("NOTICEFLOW_LOG_LEVEL", "INFO"))
