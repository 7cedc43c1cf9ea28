"""
Application settings for debrid-sync.
Loaded from environment variables (prefixed DEBRID_) and an optional .env file.
"""

from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    model_config = SettingsConfigDict(
        env_prefix="DEBRID_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Provider credentials
    api_key: str = ""
    api_url: str = "https://api.real-debrid.com/rest/1.0"
    request_timeout: float = 30.0  # Seconds per request

    # Retry settings for provider calls
    retry_max_attempts: int = 5
    retry_initial_delay: float = 1.0
    retry_max_delay: float = 30.0

    # Provider allows 250 requests per minute
    rate_limit_per_second: float = 4.0
    rate_limit_burst: int = 10

    # Symlink downloader
    rclone_mount_path: str = ""  # Trailing "*" also searches immediate subdirectories
    symlink_max_retries: int = 10
    symlink_retry_delay: float = 1.0  # Seconds, multiplied by the attempt index

    # Logging settings
    log_level: str = "INFO"
    log_file: Optional[str] = None
    log_format: str = "text"  # "text" or "json"
    log_max_size_mb: int = 10
    log_backup_count: int = 5
