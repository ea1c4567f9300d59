# services/api/settings.py
from pydantic_settings import BaseSettings
from pydantic import ConfigDict, Field
from typing import List
from pathlib import Path


class Settings(BaseSettings):
    # Storage settings
    # "sqlite://" gives a shared in-memory database (tests, demos)
    db_url: str = "sqlite:///data/constructionpro.db"

    # CORS settings
    allowed_origins: str = "http://localhost:3000,http://localhost:8000"

    # Access rules
    admin_role: str = "ADMIN"
    restricted_category: str = Field(
        default="BLASTING",
        description="Category visible only to admins and explicitly assigned blasters",
    )

    # Listing / pagination
    default_page_size: int = 20
    max_page_size: int = 100
    recent_revisions_limit: int = 5

    # Caller lookups are cached per adapter for this many seconds
    caller_cache_ttl: int = 5

    # Requests per minute per client ip
    rate_limit_read: int = 100
    rate_limit_write: int = 20

    # ---- Offline engine (field devices) ----
    annotation_history_limit: int = 50
    sync_max_retries: int = 3
    sync_queue_path: str = "data/sync_queue.json"

    model_config = ConfigDict(
        # Always load .env from the same folder as this settings.py
        env_file=str(Path(__file__).resolve().parent / ".env"),
        extra="ignore",
    )

    def get_origins_list(self) -> List[str]:
        """Parse comma-separated origins into a list."""
        if not self.allowed_origins:
            return ["*"]
        return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]


_settings_instance = None

def get_settings() -> Settings:
    """Singleton pattern for settings."""
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = Settings()
    return _settings_instance
