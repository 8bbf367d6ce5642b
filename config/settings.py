"""Configuration management using pydantic-settings."""
from pathlib import Path
from typing import List, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Backing store (PostgREST-style REST API + auth + storage)
    backing_store_url: Optional[str] = None
    backing_store_anon_key: Optional[str] = None
    photo_bucket: str = "venue-photos"

    # External directory search (Google Places text search)
    places_api_key: Optional[str] = None
    places_base_url: str = "https://maps.googleapis.com/maps/api/place"

    # Durable client-side storage
    durable_store_enabled: bool = True
    durable_store_path: Path = Path("./data/client_storage.db")
    durable_store_max_value_bytes: int = 5 * 1024 * 1024

    # Freshness windows (seconds) per resource family
    venues_cache_ttl_seconds: int = 300
    ratings_cache_ttl_seconds: int = 120
    profile_cache_ttl_seconds: int = 300

    # Anonymous identity bootstrap
    identity_session_timeout_seconds: float = 8.0
    identity_create_timeout_seconds: float = 15.0
    identity_backoff_delays: List[float] = [0.0, 0.5, 1.5]

    # Creation workflows
    workflow_timeout_seconds: float = 15.0

    # HTTP
    http_timeout_seconds: float = 30.0

    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
