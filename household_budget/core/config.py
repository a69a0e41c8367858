from pydantic_settings import BaseSettings
from typing import List
from pathlib import Path


class Settings(BaseSettings):
    # Database - defaults to a local SQLite file, override with environment variable for production
    DATABASE_URL: str = "sqlite:///./household_budget.db"

    # Redis (Celery broker/backend)
    REDIS_URL: str = "redis://localhost:6379"

    # App Settings
    DEBUG: bool = True
    CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "http://localhost:5173",
    ]

    # Month boundaries ("now", "next month") are evaluated in this timezone
    BUDGET_TIMEZONE: str = "UTC"

    # Defaults for categories created on first use
    DEFAULT_CURRENCY: str = "USD"
    DEFAULT_WARNING_THRESHOLD: int = 80
    DEFAULT_CATEGORY_COLOR: str = "#3B82F6"

    # Whether applying a scheduled adjustment may discard a *locked* month snapshot
    # so it is rebuilt from the new template version. Locked months stay frozen when False.
    REGENERATE_LOCKED_SNAPSHOTS: bool = False

    # Run due adjustments lazily when a month snapshot is read
    APPLY_ADJUSTMENTS_ON_ACCESS: bool = True

    # Beat schedule for the month rollover task (runs daily, idempotent)
    ADJUSTMENT_APPLY_HOUR: int = 0
    ADJUSTMENT_APPLY_MINUTE: int = 10

    class Config:
        # Use absolute path to .env file
        env_file = Path(__file__).parent.parent.parent / ".env"
        env_file_encoding = 'utf-8'


settings = Settings()
