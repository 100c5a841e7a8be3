"""
Shared configuration management for the DuckBuck API Gateway.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="GATEWAY_",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Client authentication
    api_key: str = Field(default="")

    # Upstream identity provider
    identity_project_id: str = Field(default="duckbuck-local")
    identity_jwks_url: str = Field(
        default="https://www.googleapis.com/service_accounts/v1/jwk/securetoken@system.gserviceaccount.com"
    )
    identity_issuer_base: str = Field(default="https://securetoken.google.com")
    identity_jwks_refresh_seconds: int = Field(default=3600)
    verification_timeout_seconds: float = Field(default=5.0)

    # Token verification cache
    min_token_length: int = Field(default=50)
    max_token_length: int = Field(default=4096)
    verdict_cache_leeway_seconds: int = Field(default=300)
    verdict_cache_max_entries: int = Field(default=10000)
    verdict_sweep_probability: float = Field(default=0.01)

    # Revocation set
    revocation_max_entries: int = Field(default=1000)

    # Abuse tracking
    abuse_threshold: int = Field(default=100)
    abuse_window_ms: int = Field(default=3_600_000)
    abuse_block_seconds: int = Field(default=86_400)
    abuse_max_tracked_addresses: int = Field(default=50_000)

    # Maintenance
    sweep_interval_seconds: float = Field(default=60.0)

    # Request limits
    max_body_bytes: int = Field(default=10_240)
    rate_limit_enabled: bool = Field(default=True)
    rate_limit_requests: int = Field(default=50)
    rate_limit_window_seconds: float = Field(default=900.0)
    root_rate_limit_requests: int = Field(default=3)
    root_rate_limit_window_seconds: float = Field(default=300.0)

    # Response headers
    csp_directives: str = Field(default="default-src 'self'")

    # Observability
    enable_tracing: bool = Field(default=False)
    otel_exporter: str = Field(default="http://localhost:4318/v1/traces")
    enable_console_tracing: bool = Field(default=False)


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"

    def __init__(self, service_name: str, port: int, **kwargs):
        super().__init__(service_name=service_name, port=port, **kwargs)

    @property
    def identity_issuer(self) -> str:
        return f"{self.identity_issuer_base.rstrip('/')}/{self.identity_project_id}"


def get_config(service_name: str, port: int, **overrides) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, port=port, **overrides)
