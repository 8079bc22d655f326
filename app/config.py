import os
from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Database
    db_name: str = "learning_quota_db"
    db_user: str = "postgres"
    db_password: str = ""
    db_host: str = "localhost"
    db_port: str = "5432"
    database_url: str = ""  # Overrides the db_* parts when set

    # Environment
    env: str = "local"
    debug: bool = True

    # Failure policy: "open" allows on internal error, "closed" denies
    quota_failure_mode: str = "closed"
    defense_failure_mode: str = "open"

    # Abuse detection
    anomaly_sample_rate: float = 0.01
    anomaly_window_minutes: int = 60
    auto_ban_minutes: int = 60

    # Video processing cooldown
    video_cooldown_minutes: int = 60

    # Background scheduler
    scheduler_enabled: bool = True
    subscription_sweep_interval_seconds: int = 3600
    cleanup_interval_seconds: int = 21600

    # Admin endpoints
    admin_api_key: str = ""

    class Config:
        env_file = f".env.{os.getenv('ENV', 'local')}"
        env_file_encoding = "utf-8"
        extra = "ignore"

    @property
    def async_database_url(self) -> str:
        if self.database_url:
            return self.database_url
        port = self.db_port if self.db_port and self.db_port != "None" else "5432"
        return (
            f"postgresql+asyncpg://{self.db_user}:{self.db_password}"
            f"@{self.db_host}:{port}/{self.db_name}"
        )


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
