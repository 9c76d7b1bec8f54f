"""
Application configuration using Pydantic Settings.
Loads configuration from environment variables with validation.
"""
from typing import List
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Environment
    environment: str = Field(default="development", description="Environment: development, staging, production")
    debug: bool = Field(default=False, description="Debug mode")

    # Database
    database_url: str = Field(..., description="Async SQLAlchemy connection URL")
    database_url_sync: str = Field(default="", description="Sync connection URL for Alembic")

    # Shared cache (code store, sessions, global logout flags)
    redis_url: str = Field(default="redis://localhost:6379/0", description="Redis connection URL")
    redis_password: str = Field(default="", description="Redis password")
    cache_backend: str = Field(default="redis", description="Shared cache backend: redis or memory")
    code_store_backend: str = Field(default="cache", description="SSO code store backend: cache or database")

    # SSO codes
    sso_code_ttl_seconds: int = Field(default=120, ge=10, le=600, description="Lifetime of a one-time SSO code")
    tenant_switch_ttl_seconds: int = Field(default=120, ge=10, le=600, description="Lifetime of a tenant switch record")
    sso_shared_secret: str = Field(..., min_length=32, description="Shared secret for tenant provenance assertions")
    sso_assertion_ttl_seconds: int = Field(default=30, ge=5, le=300, description="Lifetime of a provenance assertion")
    sso_exchange_mode: str = Field(default="local", description="Code exchange mode: local or remote")
    sso_strict_session_binding: bool = Field(
        default=False,
        description="Require X-Session-ID to match the issuing session on exchange"
    )
    legacy_switch_enabled: bool = Field(default=True, description="Enable the deprecated session_key/token switch URL")

    # Domains and URLs
    central_domains: str = Field(default="localhost", description="Comma-separated central domain hosts")
    url_scheme: str = Field(default="https", description="Scheme used for generated URLs")
    default_landing_path: str = Field(default="/dashboard", description="Fallback path after SSO")
    central_login_path: str = Field(default="/login", description="Central login entry path")
    public_portal_path: str = Field(default="/public-portal", description="Landing path after public portal logout")
    central_logout_signal_url: str = Field(default="", description="Central endpoint notified on tenant logout")
    http_timeout_seconds: int = Field(default=10, description="Server-to-server request timeout in seconds")

    # Sessions
    session_cookie_name: str = Field(default="sso_session", description="Session cookie name")
    session_ttl_seconds: int = Field(default=28800, description="Idle session lifetime in seconds")
    session_absolute_timeout_seconds: int = Field(default=43200, description="Maximum session age since login")
    session_cookie_secure: bool = Field(default=True, description="Mark the session cookie Secure")

    # Rate Limiting
    rate_limit_enabled: bool = Field(default=True, description="Enable rate limiting")
    rate_limit_exchange: str = Field(default="60/minute", description="Rate limit for code exchange")
    rate_limit_login: str = Field(default="10/minute", description="Rate limit for central login")

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(default="text", description="Log format: json or text")

    @field_validator("central_domains")
    @classmethod
    def parse_central_domains(cls, v: str) -> List[str]:
        """Parse comma-separated central domains into a list."""
        return [host.strip().lower() for host in v.split(",") if host.strip()]

    @field_validator("cache_backend")
    @classmethod
    def check_cache_backend(cls, v: str) -> str:
        if v not in ("redis", "memory"):
            raise ValueError("cache_backend must be 'redis' or 'memory'")
        return v

    @field_validator("code_store_backend")
    @classmethod
    def check_code_store_backend(cls, v: str) -> str:
        if v not in ("cache", "database"):
            raise ValueError("code_store_backend must be 'cache' or 'database'")
        return v

    @field_validator("sso_exchange_mode")
    @classmethod
    def check_exchange_mode(cls, v: str) -> str:
        if v not in ("local", "remote"):
            raise ValueError("sso_exchange_mode must be 'local' or 'remote'")
        return v

    @model_validator(mode="after")
    def check_production_backends(self) -> "Settings":
        """The in-process cache cannot be shared between nodes or domains."""
        if self.is_production and self.cache_backend == "memory":
            raise ValueError("cache_backend=memory is not allowed in production")
        if not self.central_domains:
            raise ValueError("at least one central domain is required")
        return self

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment.lower() == "development"

    @property
    def central_domain(self) -> str:
        """Canonical central host used when building URLs."""
        return self.central_domains[0]

    @property
    def central_login_url(self) -> str:
        return f"{self.url_scheme}://{self.central_domain}{self.central_login_path}"


# Global settings instance
settings = Settings()
