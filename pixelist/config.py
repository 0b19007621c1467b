from __future__ import annotations

import os
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator

from pixelist.logging import get_logger

logger = get_logger(__name__)

# Secrets shorter than this still work but are flagged at startup
_MIN_RECOMMENDED_SECRET_LENGTH = 32


class ConfigurationError(RuntimeError):
    """Raised when the process cannot start with the supplied configuration."""


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Runtime settings for the Pixelist dashboard auth core."""

    jwt_secret: str | None = env_field(
        None, "JWT_SECRET", description="HMAC key for session and challenge tokens"
    )
    app_env: str = env_field("development", "APP_ENV")
    database_url: str = env_field("sqlite:///./pixelist.db", "DATABASE_URL")
    use_memory_store: bool = env_field(False, "USE_MEMORY_STORE")
    mfa_secret_key: str | None = env_field(
        None,
        "MFA_SECRET_KEY",
        description="Key material for encrypting TOTP secrets at rest (defaults to JWT_SECRET)",
    )
    session_ttl_days: int = env_field(7, "SESSION_TTL_DAYS", ge=1, le=7)
    challenge_ttl_seconds: int = env_field(300, "CHALLENGE_TTL_SECONDS", ge=1, le=300)
    rate_limit_max_attempts: int = env_field(10, "RATE_LIMIT_MAX_ATTEMPTS", ge=1)
    rate_limit_window_seconds: int = env_field(900, "RATE_LIMIT_WINDOW_SECONDS", ge=1)
    rate_limit_sweep_threshold: int = env_field(
        10_000, "RATE_LIMIT_SWEEP_THRESHOLD", ge=1
    )
    totp_issuer: str = env_field("Pixelist", "TOTP_ISSUER")
    min_password_length: int = env_field(8, "MIN_PASSWORD_LENGTH", ge=1)

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
        settings = cls(**merged)
        settings.require_jwt_secret()
        return settings

    @field_validator("app_env")
    @classmethod
    def _normalize_env(cls, value: str) -> str:
        return (value or "development").strip().lower()

    @field_validator("database_url")
    @classmethod
    def _normalize_database_url(cls, value: str) -> str:
        # Accept the "file:./dev.db" form used by the dashboard's .env files
        if value.startswith("file:"):
            return "sqlite:///" + value[len("file:"):]
        return value

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    @property
    def session_ttl_seconds(self) -> int:
        return self.session_ttl_days * 24 * 60 * 60

    def require_jwt_secret(self) -> str:
        """Return the signing secret or abort startup when it is missing."""
        if not self.jwt_secret:
            logger.critical("jwt_secret_missing")
            raise ConfigurationError(
                "JWT_SECRET environment variable is not set; refusing to start"
            )
        if len(self.jwt_secret) < _MIN_RECOMMENDED_SECRET_LENGTH:
            logger.warning(
                "jwt_secret_weak",
                length=len(self.jwt_secret),
                recommended=_MIN_RECOMMENDED_SECRET_LENGTH,
            )
        return self.jwt_secret

    @property
    def effective_mfa_key(self) -> str:
        return self.mfa_secret_key or self.require_jwt_secret()


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
