"""
Centralized configuration management for socialsync.

This module provides a Pydantic Settings-based configuration system that:
- Validates environment variables at startup
- Groups platform credentials, OAuth, logging and monitoring settings
- Exposes which platforms have usable client credentials
- Supports .env file loading

Usage:
    from socialsync.config import get_settings

    settings = get_settings()
    if settings.platforms.is_configured(SocialPlatform.TWITTER):
        ...
"""

from functools import lru_cache
from typing import List, Literal, Optional, Tuple

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from socialsync.types.social import SocialPlatform


# =============================================================================
# Platform Credential Settings
# =============================================================================


class PlatformCredentialSettings(BaseSettings):
    """OAuth client credentials for each social platform."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    instagram_client_id: Optional[str] = Field(
        default=None,
        description="Instagram app id",
    )
    instagram_client_secret: Optional[SecretStr] = Field(
        default=None,
        description="Instagram app secret",
    )

    # TikTok calls its client id a "client key"
    tiktok_client_key: Optional[str] = Field(
        default=None,
        description="TikTok client key",
    )
    tiktok_client_secret: Optional[SecretStr] = Field(
        default=None,
        description="TikTok client secret",
    )

    linkedin_client_id: Optional[str] = Field(
        default=None,
        description="LinkedIn OAuth client id",
    )
    linkedin_client_secret: Optional[SecretStr] = Field(
        default=None,
        description="LinkedIn OAuth client secret",
    )

    twitter_client_id: Optional[str] = Field(
        default=None,
        description="Twitter/X OAuth 2.0 client id",
    )
    twitter_client_secret: Optional[SecretStr] = Field(
        default=None,
        description="Twitter/X OAuth 2.0 client secret",
    )

    def client_credentials(self, platform: SocialPlatform) -> Optional[Tuple[str, str]]:
        """
        Get (client_id, client_secret) for a platform.

        Returns None unless both values are present and non-empty.
        """
        pairs = {
            SocialPlatform.INSTAGRAM: (self.instagram_client_id, self.instagram_client_secret),
            SocialPlatform.TIKTOK: (self.tiktok_client_key, self.tiktok_client_secret),
            SocialPlatform.LINKEDIN: (self.linkedin_client_id, self.linkedin_client_secret),
            SocialPlatform.TWITTER: (self.twitter_client_id, self.twitter_client_secret),
        }
        client_id, client_secret = pairs[platform]
        secret = client_secret.get_secret_value() if client_secret else ""
        if not client_id or not secret:
            return None
        return client_id, secret

    def is_configured(self, platform: SocialPlatform) -> bool:
        """Check if a platform has both a client id and a client secret."""
        return self.client_credentials(platform) is not None

    @property
    def configured_platforms(self) -> List[SocialPlatform]:
        """Platforms with usable client credentials, in declaration order."""
        return [p for p in SocialPlatform if self.is_configured(p)]


# =============================================================================
# Social Publishing Settings
# =============================================================================


class SocialSettings(BaseSettings):
    """Configuration for OAuth round-trips and platform HTTP calls."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    oauth_redirect_base_url: Optional[str] = Field(
        default=None,
        description="Base URL used to build default OAuth callback URIs",
    )
    social_http_timeout: float = Field(
        default=30.0,
        gt=0,
        le=300,
        description="Timeout in seconds for platform API requests",
    )
    oauth_state_ttl_seconds: int = Field(
        default=600,
        ge=30,
        description="How long PKCE verifiers and OAuth state are kept",
    )
    tiktok_default_privacy_level: str = Field(
        default="SELF_ONLY",
        description="TikTok privacy level used when a publish does not set one",
    )

    def default_redirect_uri(self, platform: SocialPlatform) -> Optional[str]:
        """Default callback URI for a platform, if a base URL is configured."""
        if not self.oauth_redirect_base_url:
            return None
        base = self.oauth_redirect_base_url.rstrip("/")
        return f"{base}/auth/callback/{platform.value}"


# =============================================================================
# Logging Settings
# =============================================================================


class LoggingSettings(BaseSettings):
    """Configuration for logging."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )
    log_format_json: bool = Field(
        default=False,
        description="Force JSON log format in development",
    )


# =============================================================================
# Monitoring Settings (Sentry)
# =============================================================================


class SentrySettings(BaseSettings):
    """Configuration for Sentry error tracking."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    sentry_dsn: Optional[str] = Field(
        default=None,
        description="Sentry DSN for error tracking",
    )
    sentry_environment: str = Field(
        default="development",
        description="Sentry environment name",
    )
    sentry_traces_sample_rate: float = Field(
        default=0.1,
        ge=0.0,
        le=1.0,
        description="Sentry transaction sample rate (0.0 to 1.0)",
    )

    @property
    def is_configured(self) -> bool:
        """Check if Sentry is configured."""
        return bool(self.sentry_dsn)

    @property
    def is_production(self) -> bool:
        return self.sentry_environment.lower() in ("production", "prod")


# =============================================================================
# Main Settings Class
# =============================================================================


class Settings(BaseSettings):
    """
    Main settings class that aggregates all configuration groups.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    platforms: PlatformCredentialSettings = Field(default_factory=PlatformCredentialSettings)
    social: SocialSettings = Field(default_factory=SocialSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    sentry: SentrySettings = Field(default_factory=SentrySettings)

    @property
    def is_sentry_configured(self) -> bool:
        """Check if Sentry error tracking is available."""
        return self.sentry.is_configured

    @property
    def is_production(self) -> bool:
        return self.sentry.is_production

    def get_config_summary(self) -> dict:
        """
        Get a summary of configuration status for logging.

        Returns configured platform names WITHOUT exposing any secrets.
        """
        return {
            "environment": self.sentry.sentry_environment,
            "configured_platforms": [p.value for p in self.platforms.configured_platforms],
            "oauth_redirect_base_url": self.social.oauth_redirect_base_url,
            "social_http_timeout": self.social.social_http_timeout,
            "sentry_configured": self.is_sentry_configured,
            "log_level": self.logging.log_level,
        }


# =============================================================================
# Settings Singleton
# =============================================================================


@lru_cache()
def get_settings() -> Settings:
    """
    Get the application settings singleton.

    Uses lru_cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload settings.

    Raises:
        ValidationError: If configuration is invalid
    """
    return Settings()


def reload_settings() -> Settings:
    """
    Reload settings from environment.

    Useful for testing or after environment changes.
    """
    get_settings.cache_clear()
    return get_settings()
