"""
Central configuration for the EchoPulse relay.
Uses pydantic-settings for env-based config with validation.
"""
from __future__ import annotations

from enum import Enum
from functools import lru_cache

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    DEV = "dev"
    STAGING = "staging"
    PRODUCTION = "production"


class ConfigError(Exception):
    """Raised when a required startup value is missing or invalid."""

    def __init__(self, missing: list[str], detail: str = "") -> None:
        self.missing = missing
        message = "Missing or invalid configuration: " + ", ".join(missing)
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class Settings(BaseSettings):
    """Settings for the relay process. Values are read once at startup."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── General ──────────────────────────────────────────────
    environment: Environment = Environment.DEV
    log_level: str = "INFO"
    instance_id: str = ""

    # ── Apple Push Notification service ──────────────────────
    apple_team_id: str = Field(min_length=1, description="Signing team identifier (JWT iss)")
    apple_key_id: str = Field(min_length=1, description="Signing key identifier (JWT kid)")
    apple_key_path: str = Field(min_length=1, description="Path to the .p8 EC private key")
    bundle_id: str = "net.dickhans.EchoPulse"
    apns_host: str = "api.sandbox.push.apple.com"
    apns_priority: int = 10
    push_timeout_s: float = 10.0
    token_refresh_s: float = 55 * 60
    end_dismissal_delay_s: int = 15 * 60

    # ── Upstream match provider ──────────────────────────────
    robotevents_token: str = Field(min_length=1, description="RobotEvents API bearer token")
    robotevents_base_url: str = "https://www.robotevents.com/api/v2"
    provider_request_timeout_s: float = 10.0
    provider_max_retries: int = 2
    provider_page_size: int = 250

    # ── Reconciliation ───────────────────────────────────────
    poll_interval_s: float = 10.0

    # ── API ──────────────────────────────────────────────────
    api_host: str = "0.0.0.0"
    api_port: int = 3030
    max_body_bytes: int = 16 * 1024

    # ── Observability ────────────────────────────────────────
    metrics_enabled: bool = True
    metrics_port: int = 9090

    @property
    def apns_base_url(self) -> str:
        return f"https://{self.apns_host}"

    @property
    def apns_topic(self) -> str:
        return f"{self.bundle_id}.push-type.liveactivity"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Singleton access to validated settings. Raises ConfigError when incomplete."""
    try:
        return Settings()
    except ValidationError as exc:
        fields = [".".join(str(p) for p in err["loc"]) for err in exc.errors()]
        raise ConfigError(fields, detail=f"{exc.error_count()} error(s)") from exc
