"""
Settings for the memorial quota service, read from the environment and .env.

Groups:
    database  Supabase URL and keys; without them plan limits fail open
    security  environment name, CORS origins, identity header
    logging   level, JSON output, access log toggle
    sentry    DSN, environment, sampling, release

Usage:
    from memorial_quota.config import get_settings

    if get_settings().is_supabase_configured:
        ...
"""

from functools import lru_cache
from typing import Any, Dict, List, Literal, Optional

from pydantic import AliasChoices, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class _EnvSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )


class DatabaseSettings(_EnvSettings):
    """Supabase project holding memorials, media, timeline and usage rows."""

    # The web app exposes the URL as NEXT_PUBLIC_SUPABASE_URL
    supabase_url: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("supabase_url", "next_public_supabase_url"),
    )
    supabase_key: Optional[SecretStr] = Field(default=None, description="anon key")
    supabase_service_role_key: Optional[SecretStr] = Field(
        default=None,
        validation_alias=AliasChoices("supabase_service_role_key", "supabase_service_key"),
        description="Needed to write memorial_usage past row level security",
    )

    @property
    def is_configured(self) -> bool:
        return bool(self.supabase_url and (self.supabase_key or self.supabase_service_role_key))

    def get_client_key(self) -> Optional[str]:
        """The service role key when set, else the anon key."""
        key = self.supabase_service_role_key or self.supabase_key
        return key.get_secret_value() if key else None


class SecuritySettings(_EnvSettings):
    environment: Literal["development", "staging", "production"] = "development"
    allowed_origins: str = Field(
        default="http://localhost:3000,http://127.0.0.1:3000",
        description="Comma-separated CORS origins",
    )
    user_id_header: str = Field(
        default="X-User-ID",
        description="Header the auth gateway puts the caller's user id in",
    )

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def origins_list(self) -> List[str]:
        return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]


class LoggingSettings(_EnvSettings):
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    log_format_json: bool = Field(default=False, description="JSON lines outside production too")
    request_logging_enabled: bool = True


class SentrySettings(_EnvSettings):
    sentry_dsn: Optional[str] = None
    sentry_environment: str = "development"
    sentry_traces_sample_rate: float = Field(default=0.1, ge=0.0, le=1.0)
    sentry_release: Optional[str] = "memorial-quota@0.1.0"

    @property
    def is_configured(self) -> bool:
        return bool(self.sentry_dsn)


class Settings(_EnvSettings):
    """All settings groups, loaded once per process by get_settings()."""

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    sentry: SentrySettings = Field(default_factory=SentrySettings)

    @property
    def is_supabase_configured(self) -> bool:
        return self.database.is_configured

    @property
    def is_sentry_configured(self) -> bool:
        return self.sentry.is_configured

    @property
    def is_production(self) -> bool:
        return self.security.is_production

    def get_config_summary(self) -> Dict[str, Any]:
        """Startup log fields; flags only, never keys or URLs."""
        return {
            "environment": self.security.environment,
            "supabase_configured": self.is_supabase_configured,
            "sentry_configured": self.is_sentry_configured,
            "allowed_origins": self.security.origins_list,
            "log_level": self.logging.log_level,
        }


@lru_cache()
def get_settings() -> Settings:
    """Process-wide settings; get_settings.cache_clear() forces a re-read."""
    return Settings()
