from __future__ import annotations

import os
import secrets
from typing import Any, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator

from clinigate.logging import get_logger

logger = get_logger(__name__)


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Runtime settings for the portal auth core."""

    jwt_secret: str = env_field(None, "JWT_SECRET", validate_default=True)
    jwt_issuer: str = env_field("clinigate", "JWT_ISSUER")
    jwt_audience: str = env_field("portal-clients", "JWT_AUDIENCE")
    token_ttl_minutes: int = env_field(
        7 * 24 * 60,
        "TOKEN_TTL_MINUTES",
        description="Embedded token expiry; the session registry is the stricter authority",
    )
    daily_reset_hour: int = env_field(
        9,
        "DAILY_RESET_HOUR",
        description="Local hour after which sessions logged in on a prior day are invalid",
    )
    session_idle_timeout_hours: int = env_field(24, "SESSION_IDLE_TIMEOUT_HOURS")
    max_concurrent_sessions: int = env_field(3, "MAX_CONCURRENT_SESSIONS")
    session_sweep_interval_seconds: int = env_field(300, "SESSION_SWEEP_INTERVAL_SECONDS")
    session_sweeper_enabled: bool = env_field(True, "SESSION_SWEEPER_ENABLED")
    server_timezone: Optional[str] = env_field(
        None,
        "SERVER_TIMEZONE",
        description="IANA zone used for the daily reset boundary; host local time when unset",
    )
    bootstrap_admin_username: Optional[str] = env_field(None, "ADMIN_USERNAME")
    bootstrap_admin_password: Optional[str] = env_field(None, "ADMIN_PASSWORD")
    cors_allow_origins: List[str] = env_field([], "CORS_ALLOW_ORIGINS")
    cors_allow_credentials: bool = env_field(False, "CORS_ALLOW_CREDENTIALS")

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_name in env_file_values:
                merged[name] = env_file_values[env_name]
        return cls(**merged)

    @field_validator("daily_reset_hour")
    @classmethod
    def _validate_reset_hour(cls, value: int) -> int:
        if not 0 <= value <= 23:
            raise ValueError("daily_reset_hour must be between 0 and 23")
        return value

    @field_validator("session_idle_timeout_hours", "max_concurrent_sessions", "session_sweep_interval_seconds")
    @classmethod
    def _validate_positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be a positive integer")
        return value

    @field_validator("server_timezone")
    @classmethod
    def _validate_timezone(cls, value: Optional[str]) -> Optional[str]:
        if not value:
            return None
        try:
            ZoneInfo(value)
        except ZoneInfoNotFoundError as exc:
            raise ValueError(f"unknown timezone: {value}") from exc
        return value

    @field_validator("cors_allow_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return value

    @field_validator("jwt_secret", mode="before")
    @classmethod
    def _ensure_jwt_secret(cls, value: str | None) -> str:
        if value:
            return value
        # Sessions are process-local; a restart drops them along with this secret.
        logger.warning(
            "jwt_secret_generated",
            message="JWT_SECRET not set; tokens will not survive a restart",
        )
        return secrets.token_urlsafe(64)

    @property
    def tzinfo(self) -> Optional[ZoneInfo]:
        return ZoneInfo(self.server_timezone) if self.server_timezone else None


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
