from enum import Enum
from typing import Dict, List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class SyncMode(str, Enum):
    """Which kind of relation is mirrored for the whole process."""

    TABLES = "tables"
    VIEWS = "views"


class Settings(BaseSettings):
    """Runtime configuration for the sync service."""

    model_config = SettingsConfigDict(env_prefix="DBSYNC_", env_file=".env")

    sync_interval_seconds: int = 60
    top_rows: int = 1000
    retry_wait_seconds: float = 600
    cache_ttl_seconds: int = 3600
    sync_mode: SyncMode = SyncMode.TABLES
    source_urls: List[str] = []
    table_key_mapping: Dict[str, str] = {}
    max_concurrent_writes: int = 64
    cache_backend: str = "redis"  # options: redis, memory
    redis_url: str = "redis://localhost:6379/0"
    memory_cache_max_entries: Optional[int] = None
    log_level: str = "INFO"
    log_json: bool = False
    host: str = "0.0.0.0"
    port: int = 8000


settings = Settings()
