"""Configuration management using pydantic-settings."""
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Portal API configuration
    api_base_url: str = "https://sns-rooster.onrender.com"
    api_token: Optional[str] = None
    request_timeout_seconds: float = 10.0
    # GETs are retried on connection failures and timeouts
    request_retry_attempts: int = 3
    request_retry_delay_seconds: float = 1.0

    # Cache settings
    cache_cleanup_interval_seconds: float = 60.0
    # Share one upstream call between concurrent reads of the same cold key
    coalesce_reads: bool = False
    # Warm the long tier when the service starts
    preload_on_startup: bool = False

    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
