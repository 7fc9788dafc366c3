import os
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import List

env = os.getenv("APP_ENV", "development")
env_file = f".env.{env}"

class Settings(BaseSettings):
    # postgresql+asyncpg://... in deployments, sqlite+aiosqlite:///... locally
    database_url: str
    # CORS origins can be overridden via CORS_ORIGINS env var (JSON list)
    cors_origins: List[str] = Field(default=["http://localhost:5173"])
    # JWT configuration
    secret_key: str
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 60
    refresh_token_expire_days: int = 7

    # Scheduling
    clinic_timezone: str = "UTC"
    recent_appointments_limit: int = 5
    # 0 disables the background sweep that completes elapsed appointments
    status_sweep_interval_seconds: int = 60

    # Push channel
    ws_replay_limit: int = 20

    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=env_file,
        env_file_encoding="utf-8",
        extra="ignore",
    )

settings = Settings()
