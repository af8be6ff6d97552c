"""
Shared configuration management for the Content Aggregation Gateway.
"""

from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="CONTENT_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])

    # Content backend (CMS)
    cms_base_url: str = Field(default="http://localhost:5000")
    cms_app_name: str = Field(default="content")
    cms_client_id: str = Field(default="")
    cms_client_secret: str = Field(default="")
    cms_scope: str = Field(default="squidex-api")
    cms_request_timeout: float = Field(default=120.0)
    cms_token_ttl_seconds: int = Field(default=3600)

    # Schemas and paths inside the CMS app
    units_schema: str = Field(default="unidade")
    blog_schema: str = Field(default="blog")
    external_id_path: str = Field(default="data/externalId/iv")
    slug_path: str = Field(default="data/slug/iv")

    # Booking backend
    booking_base_url: str = Field(default="http://localhost:5100/v1/public/")
    booking_public_token: str = Field(default="")
    booking_request_timeout: float = Field(default=12.0)
    booking_franchise_identifier: int = Field(default=2)

    # Resilience
    upstream_max_retries: int = Field(default=3)
    upstream_attempt_timeout: float = Field(default=4.0)
    request_deadline_seconds: float = Field(default=60.0)

    # Caching
    content_cache_ttl_seconds: int = Field(default=3600)
    franchises_cache_ttl_seconds: int = Field(default=600)

    # Query fan-out
    batch_chunk_size: int = Field(default=50)
    full_listing_page_size: int = Field(default=200)
    fanout_concurrency: int = Field(default=8)


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"

    def __init__(self, service_name: str, port: int, **kwargs):
        super().__init__(service_name=service_name, port=port, **kwargs)


def get_config(service_name: str, port: int) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, port=port)
