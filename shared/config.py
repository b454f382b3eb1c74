"""
Shared configuration management for the marketplace session client.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class SessionConfig(BaseSettings):
    """Client configuration, read from MARKETPLACE_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="MARKETPLACE_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Backend service
    api_base_url: str = Field(default="https://api.thriftaccra.com")
    http_timeout: float = Field(default=10.0)

    # Identity provider
    firebase_api_key: str = Field(default="")
    identity_toolkit_url: str = Field(default="https://identitytoolkit.googleapis.com/v1")
    secure_token_url: str = Field(default="https://securetoken.googleapis.com/v1")
    token_refresh_skew_seconds: int = Field(default=300)

    # Credential storage
    storage_backend: str = Field(default="keyring")
    storage_namespace: str = Field(default="marketplace")
    storage_path: Optional[str] = Field(default=None)
    keyring_service: str = Field(default="marketplace-session")

    # Observability
    enable_metrics: bool = Field(default=True)
    metrics_port: Optional[int] = Field(default=None)

    @field_validator("api_base_url", "identity_toolkit_url", "secure_token_url")
    @classmethod
    def _strip_trailing_slashes(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("storage_backend")
    @classmethod
    def _known_backend(cls, value: str) -> str:
        value = value.lower()
        if value not in ("memory", "file", "keyring"):
            raise ValueError(f"Unknown storage backend: {value}")
        return value


@lru_cache(maxsize=1)
def get_config() -> SessionConfig:
    """Get the process-wide client configuration."""
    return SessionConfig()
