"""Service configuration, read once from the environment at import time."""

from typing import List

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

SERVICE_NAME = "Certificate & Network Toolbox"
SERVICE_VERSION = "1.0.0"

DEFAULT_TLS_PORT = 443


class Settings(BaseSettings):
    """Toolbox settings; every field can be overridden with a TOOLBOX_ variable."""

    model_config = SettingsConfigDict(
        env_prefix="TOOLBOX_",
        extra="ignore",
    )

    # Server
    host: str = Field(default="0.0.0.0", validation_alias=AliasChoices("TOOLBOX_HOST", "HOST"))
    port: int = Field(
        default=5001,
        ge=1,
        le=65535,
        validation_alias=AliasChoices("TOOLBOX_PORT", "PORT"),
    )
    log_level: str = Field(default="INFO")

    # Network timeouts (seconds)
    tls_timeout: float = Field(default=10.0, gt=0)
    port_scan_timeout: float = Field(default=5.0, gt=0)
    dns_timeout: float = Field(default=5.0, gt=0)

    max_body_bytes: int = Field(default=100 * 1024, gt=0)

    # Comma-separated list of allowed origins
    cors_origins: str = Field(default="*")

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, value: str) -> str:
        return value.strip().upper()

    @property
    def cors_origin_list(self) -> List[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


# Global settings instance
settings = Settings()
