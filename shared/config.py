"""
Shared configuration management for the News Portal Access Layer.
"""

from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings.

    Every field can be overridden through a ``PORTAL_``-prefixed environment
    variable (``PORTAL_SUPABASE_URL``, ``PORTAL_LOGIN_MAX_ATTEMPTS``...) or a
    ``.env`` file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="PORTAL_",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Backing service (identity provider + data API)
    supabase_url: str = Field(default="http://localhost:54321")
    supabase_anon_key: str = Field(default="")
    identity_timeout_seconds: float = Field(default=10.0, gt=0)
    identity_retry_attempts: int = Field(default=2, ge=1)
    identity_failure_threshold: int = Field(default=5, ge=1)
    identity_recovery_timeout_seconds: float = Field(default=30.0, gt=0)

    # Login brute-force defense
    login_max_attempts: int = Field(default=5, ge=1)
    login_attempt_window_seconds: float = Field(default=5 * 60, gt=0)
    login_block_duration_seconds: float = Field(default=15 * 60, gt=0)
    rate_limit_backend: str = Field(default="memory", pattern="^(memory|redis)$")
    redis_url: str = Field(default="redis://localhost:6379/0")

    # Navigation guards
    login_path: str = Field(default="/login")
    general_area_path: str = Field(default="/admin")
    session_cookie_name: str = Field(default="sb-access-token")

    # Security headers
    csp_identity_domains: List[str] = Field(
        default_factory=lambda: ["https://*.supabase.co", "wss://*.supabase.co"]
    )


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"

    def __init__(self, service_name: str, port: int, **kwargs):
        super().__init__(service_name=service_name, port=port, **kwargs)


def get_config(service_name: str, port: int, **overrides) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, port=port, **overrides)
