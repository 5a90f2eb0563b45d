"""Configuration management for vidfx."""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="VIDFX_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    debug: bool = False
    log_level: str = "INFO"

    # Directories
    storage_root: Path = Path("./storage")
    scratch_dir: Path = Path("./temp")
    output_dir: Path = Path("./outputs")

    # Object storage
    bucket: str = "videos"
    storage_url: str | None = None  # HTTP storage API; filesystem when unset
    storage_service_key: str | None = None
    signed_url_ttl_seconds: int = 3600

    # Encoder
    ffmpeg_binary: str = "ffmpeg"

    # Worker
    max_concurrent_jobs: int = 2
    progress_throttle_seconds: float = 5.0

    # Access
    access_token_ttl_seconds: int = 3600
    api_tokens: dict[str, str] = Field(
        default_factory=dict, description="Bearer token -> user id"
    )

    # Client
    api_base_url: str = "http://localhost:8000"
    upload_endpoint: str = "http://localhost:54321/storage/v1/upload/resumable"
    upload_chunk_size: int = 6 * 1024 * 1024
    upload_retry_delays: list[float] = Field(
        default_factory=lambda: [0.0, 3.0, 5.0, 10.0, 20.0]
    )
    fingerprint_store: Path | None = None

    def ensure_directories(self) -> None:
        """Create required directories if they don't exist."""
        self.storage_root.mkdir(parents=True, exist_ok=True)
        self.scratch_dir.mkdir(parents=True, exist_ok=True)
        self.output_dir.mkdir(parents=True, exist_ok=True)


# Global settings instance
settings = Settings()
