"""Configuration for switchyard servers.

Uses Pydantic Settings, so every field can be overridden from the
environment (``SWITCHYARD_PORT=9000``) or a ``.env`` file.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Server settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="SWITCHYARD_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Listener
    host: str = "127.0.0.1"
    port: int = 8080

    # Request limits
    max_header_bytes: int = 64 * 1024
    max_body_bytes: int = 1 * 1024 * 1024

    log_level: str = "INFO"

    # Upstream JSON API proxied by the example blog service
    posts_api_url: str = "https://jsonplaceholder.typicode.com"
