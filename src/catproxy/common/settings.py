"""Application configuration for the cache proxy."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_UPSTREAM_URL = "https://http.cat"


def env_field(default, env_name: str):
    return Field(default, validation_alias=env_name)


class ProxySettings(BaseSettings):
    """Runtime settings, fixed once the server starts."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        populate_by_name=True,
        frozen=True,
    )

    host: str = env_field("127.0.0.1", "CATPROXY_HOST")
    port: int = env_field(8080, "CATPROXY_PORT")
    cache_root: Path = env_field(Path("./cache"), "CATPROXY_CACHE_ROOT")
    upstream_base_url: str = env_field(DEFAULT_UPSTREAM_URL, "CATPROXY_UPSTREAM_URL")
    upstream_timeout_seconds: float = env_field(10.0, "CATPROXY_UPSTREAM_TIMEOUT")
    max_body_bytes: int = env_field(10 * 1024 * 1024, "CATPROXY_MAX_BODY_BYTES")  # 10MB default
    single_flight: bool = env_field(False, "CATPROXY_SINGLE_FLIGHT")
    log_level: str = env_field("INFO", "CATPROXY_LOG_LEVEL")
    otel_exporter_endpoint: Optional[str] = env_field(None, "CATPROXY_OTEL_EXPORTER_ENDPOINT")
    otel_exporter_headers: Optional[str] = env_field(None, "CATPROXY_OTEL_EXPORTER_HEADERS")
    otel_sampler_ratio: float = env_field(0.1, "CATPROXY_OTEL_SAMPLER_RATIO")

    @field_validator("port")
    @classmethod
    def _check_port(cls, value: int) -> int:
        if not 0 < value < 65536:
            raise ValueError("port must be between 1 and 65535")
        return value

    @field_validator("upstream_base_url", mode="before")
    @classmethod
    def _strip_trailing_slash(cls, value):
        if isinstance(value, str):
            return value.rstrip("/")
        return value

    @field_validator("max_body_bytes")
    @classmethod
    def _check_body_limit(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("max_body_bytes must be positive")
        return value
