"""
Configuration Management
Loads settings from environment variables and the .env file
"""
from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment"""

    environment: str = "development"
    debug: bool = False
    log_level: str = "INFO"

    # Service identity (health output)
    service_name: str = "callcrm-webhook"
    service_version: str = "1.0.0"

    # API Settings
    cors_origins: list[str] = ["*"]

    # Storage: "supabase" or "memory"
    storage_backend: str = "supabase"
    supabase_url: Optional[str] = None
    supabase_service_key: Optional[str] = None

    # Call handling
    missed_call_timeout_seconds: float = 30
    webhook_dedup_window_seconds: float = 60
    persist_webhook_audit: bool = False

    # Real-time relay (serverless webhook -> websocket server)
    realtime_relay_url: Optional[str] = None
    relay_secret: Optional[str] = None

    # Agent console fallback polling
    poll_interval_seconds: float = 5

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def uses_memory_store(self) -> bool:
        return self.storage_backend.lower() == "memory"


@lru_cache()
def get_settings() -> Settings:
    """Cached settings instance"""
    return Settings()
