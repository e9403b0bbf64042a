"""AdPilot — Central Configuration via Pydantic Settings."""

import os
from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables / .env file."""

    # ── Meta API ──
    meta_api_version: str = "v24.0"
    meta_base_url: str = "https://graph.facebook.com"
    meta_request_timeout: float = 30.0  # seconds
    meta_upload_timeout: float = 60.0
    publish_initial_status: str = "ACTIVE"  # ACTIVE | PAUSED

    # ── Creative Storage ──
    storage_base_url: str = ""
    storage_api_key: Optional[str] = None
    fetch_timeout: float = 30.0

    # ── Retry ──
    retry_max_attempts: int = 3
    retry_base_delay: float = 1.0  # seconds
    retry_max_delay: float = 10.0
    fetch_max_attempts: int = 3

    # ── Image Requirements ──
    image_min_width: int = 600
    image_min_height: int = 600
    image_max_width: int = 8000
    image_max_height: int = 8000
    image_max_file_size: int = 30 * 1024 * 1024  # 30MB
    image_jpeg_quality: int = 90
    image_min_jpeg_quality: int = 60
    image_upload_concurrency: int = 3

    # ── Database ──
    database_url: str = ""

    # ── App ──
    log_level: str = "INFO"
    scheduler_enabled: bool = True
    status_sync_minutes: int = 15

    @property
    def meta_graph_url(self) -> str:
        return f"{self.meta_base_url}/{self.meta_api_version}"

    @property
    def effective_database_url(self) -> str:
        """Return PostgreSQL URL if set, otherwise fall back to SQLite."""
        if self.database_url:
            return self.database_url
        # Vercel has a read-only filesystem; use /tmp for SQLite
        if os.environ.get("VERCEL"):
            return "sqlite:////tmp/adpilot.db"
        return "sqlite:///./adpilot.db"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
