from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "postgresql+asyncpg://localhost:5432/nutriplanr"
    api_key: str | None = None
    environment: str = "development"  # "development" | "production"

    # App state persistence
    storage_backend: str = "database"  # "database" | "memory"
    state_blob_key: str = "app_state"

    # Draft profile defaults (US imperial)
    default_height_in: float = 72.0
    default_weight_lb: float = 180.0
    default_age: int = 30
    default_weekly_budget: float = 100.0

    # Health records import (health_connect_daily). Age/sex are not part of
    # body_metrics, so these fill in when user_profile is missing.
    health_device_id: str | None = None
    health_user_age: int | None = None
    health_user_sex: str | None = None  # "male" | "female"
    health_lookback_rows: int = 30

    model_config = {"env_file": ".env", "extra": "ignore"}


settings = Settings()
