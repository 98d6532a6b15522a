"""
Shared Configuration - Bot Settings and Environment Management
Centralized configuration management for MailBots.

This module provides:
- Environment-based configuration
- Type-safe settings with validation
- Webhook security settings
- Logging and monitoring settings
"""
from enum import Enum
from functools import lru_cache
from typing import List, Optional
from urllib.parse import quote

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


API_VERSION = "1"


class Environment(str, Enum):
    """Application environment types."""
    DEVELOPMENT = "development"
    TESTING = "testing"
    STAGING = "staging"
    PRODUCTION = "production"


class LogLevel(str, Enum):
    """Logging levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogFormat(str, Enum):
    """Console log formats."""
    JSON = "json"
    COLORED = "colored"
    STANDARD = "standard"


def url_join(*parts: str) -> str:
    """Join URL fragments with exactly one slash between them."""
    parts = [str(part) for part in parts if part is not None and str(part) != ""]
    if not parts:
        return ""
    head = parts[0].rstrip("/")
    tail = [part.strip("/") for part in parts[1:] if part.strip("/")]
    return "/".join([head] + tail)


class SecuritySettings(BaseSettings):
    """Inbound webhook security settings."""

    verify_webhook_signatures: bool = True
    webhook_timestamp_tolerance: int = 300

    @field_validator("webhook_timestamp_tolerance")
    @classmethod
    def validate_tolerance(cls, v):
        if v < 0:
            raise ValueError("Timestamp tolerance cannot be negative")
        return v

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")


class MonitoringSettings(BaseSettings):
    """Logging and error reporting settings."""

    log_level: LogLevel = LogLevel.INFO
    log_format: LogFormat = LogFormat.COLORED
    log_file: Optional[str] = None

    # Keep the default error handler from logging tracebacks
    silence_default_error_handler: bool = False

    # Warn when two multi-fire listeners write the same response path
    warn_on_response_conflicts: bool = False

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")


class Settings(BaseSettings):
    """Main bot settings."""

    # Application settings
    environment: Environment = Environment.DEVELOPMENT
    debug: bool = False
    app_name: str = "MailBot"
    app_version: str = "1.0.0"

    # Bot credentials and identity
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    mailbot_id: str = ""
    mailbot_url: str = "http://localhost:3011/"
    mailbots_admin: str = "https://app.followupthen.com/"
    api_host: str = "https://api.mailbots.com/"

    # Webhook routing
    webhook_route: str = "/webhooks"
    event_namespace: str = "mailbot"

    # HTTP server
    host: str = "0.0.0.0"
    port: int = 3011

    # Component settings
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)

    @field_validator("port")
    @classmethod
    def validate_port(cls, v):
        if not 1 <= v <= 65535:
            raise ValueError("Port must be between 1 and 65535")
        return v

    @field_validator("webhook_route")
    @classmethod
    def validate_webhook_route(cls, v):
        if not v.startswith("/"):
            return "/" + v
        return v

    @field_validator("debug")
    @classmethod
    def validate_debug_in_production(cls, v, info):
        if hasattr(info, 'data') and info.data.get("environment") == Environment.PRODUCTION and v:
            raise ValueError("Debug mode should not be enabled in production")
        return v

    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment == Environment.DEVELOPMENT

    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment == Environment.PRODUCTION

    def is_testing(self) -> bool:
        """Check if running in testing mode."""
        return self.environment == Environment.TESTING

    def should_verify_signatures(self) -> bool:
        """Signatures are checked everywhere except the testing environment."""
        return self.security.verify_webhook_signatures and not self.is_testing()

    @property
    def redirect_uri(self) -> str:
        return url_join(self.mailbot_url, "auth/callback")

    @property
    def settings_url(self) -> str:
        return url_join(self.mailbots_admin, "mailbots", self.mailbot_id, "settings")

    def admin_url(self, *parts, sender: Optional[str] = None) -> str:
        """Build a URL under the admin UI, tagging it with the sender address."""
        url = url_join(self.mailbots_admin, *[str(part) for part in parts])
        if sender:
            url = f"{url}?gfr={quote(sender, safe='')}"
        return url

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings.
    This function can be used as a FastAPI dependency.
    """
    return Settings()


def validate_configuration(settings: Settings) -> List[str]:
    """
    Validate a settings instance and return any problems.

    Returns:
        List of validation error messages
    """
    errors = []

    if not settings.client_id:
        errors.append("CLIENT_ID is required")
    if not settings.client_secret:
        errors.append("CLIENT_SECRET is required")

    if settings.is_production():
        if not settings.security.verify_webhook_signatures:
            errors.append("Webhook signature verification should be enabled in production")
        if settings.monitoring.silence_default_error_handler:
            errors.append("Silencing the default error handler hides production failures")

    return errors


def get_config_summary(settings: Settings) -> dict:
    """
    Get a summary of the configuration (without secrets).

    Returns:
        Dictionary with configuration summary
    """
    return {
        "environment": settings.environment.value,
        "debug": settings.debug,
        "app_name": settings.app_name,
        "app_version": settings.app_version,
        "mailbot_id": settings.mailbot_id,
        "webhook_route": settings.webhook_route,
        "event_namespace": settings.event_namespace,
        "api_host": settings.api_host,
        "security": {
            "client_id_configured": bool(settings.client_id),
            "client_secret_configured": bool(settings.client_secret),
            "verify_webhook_signatures": settings.should_verify_signatures(),
            "webhook_timestamp_tolerance": settings.security.webhook_timestamp_tolerance,
        },
        "monitoring": {
            "log_level": settings.monitoring.log_level.value,
            "log_format": settings.monitoring.log_format.value,
            "warn_on_response_conflicts": settings.monitoring.warn_on_response_conflicts,
        },
    }
