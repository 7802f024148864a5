from pydantic_settings import BaseSettings
from pydantic import field_validator
from typing import Optional
from functools import lru_cache
import json


class Settings(BaseSettings):
    """Device settings loaded from environment variables."""

    # App Settings
    APP_NAME: str = "Taproom Counter"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Local durable store (offline queue, catalogue snapshot, preferences)
    LOCAL_DATABASE_URL: str = "sqlite+aiosqlite:///./taproom_local.db"

    # Inventory backend
    INVENTORY_API_URL: str = "http://localhost:5000"
    INVENTORY_API_TOKEN: str = ""  # Sent as a Bearer token when set
    HTTP_TIMEOUT_SECONDS: float = 10.0

    # CORS - accepts JSON string, comma-separated, or list
    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    # PourMyBeer keg sensor bridge
    PMB_SERVER_URL: str = ""  # e.g. "http://192.168.1.20:8080"
    PMB_USERNAME: str = ""
    PMB_PASSWORD: str = ""
    PMB_SIMULATION_MODE: bool = False
    PMB_TOKEN_TTL: int = 3600  # Auth tokens are valid for one hour

    # Counting
    KEG_LEVEL_REFRESH_SECONDS: int = 30
    SCAN_DUPLICATE_WINDOW_SECONDS: float = 3.0
    DEFAULT_BOTTLE_SIZE_ML: int = 750

    # Offline queue
    CONNECTIVITY_CHECK_INTERVAL_SECONDS: int = 15
    OFFLINE_MAX_REPLAY_ATTEMPTS: int = 3

    # Cache Settings
    REDIS_URL: Optional[str] = None  # e.g., "redis://localhost:6379/0"
    CACHE_ENABLED: bool = True
    KEG_LEVEL_CACHE_TTL: int = 30  # Matches the sensor refresh interval

    @field_validator('CORS_ORIGINS', mode='before')
    @classmethod
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                return [origin.strip() for origin in v.split(',')]
        return v

    @property
    def pmb_configured(self) -> bool:
        """True when a live keg sensor bridge is reachable or simulated."""
        return bool(self.PMB_SERVER_URL) or self.PMB_SIMULATION_MODE

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
