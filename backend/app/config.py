"""
backend/app/config.py

Purpose:
    Central settings loading for backend services.

Dependencies:
    - pydantic-settings
    - pathlib
"""

from pathlib import Path

from pydantic_settings import BaseSettings

# Prefer backend/.env, fallback to project-root .env.
_BACKEND_ENV_FILE = Path(__file__).resolve().parent.parent / ".env"
_ROOT_ENV_FILE = Path(__file__).resolve().parent.parent.parent / ".env"


class Settings(BaseSettings):
    MONGO_URI: str = "mongodb://localhost:27017"
    MONGO_DB: str = "cobage"
    JWT_SECRET: str = "change-me-to-a-long-random-secret"
    JWT_SECRET_OLD: str = ""  # Set during rotation; cleared after refresh tokens expire
    BACKEND_CORS_ORIGINS: str = "http://localhost:5173"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 15
    LOG_LEVEL: str = "INFO"

    # Expiration jobs (trips: departure date passed, requests: limit date passed)
    EXPIRATION_BATCH_SIZE: int = 100
    EXPIRATION_SCHEDULER_ENABLED: bool = True
    EXPIRE_TRIPS_CRON: str = "0 2 * * *"
    EXPIRE_REQUESTS_CRON: str = "30 2 * * *"

    # Admin audit log retention (0 disables the scheduled sweep)
    AUDIT_RETENTION_DAYS: int = 365
    AUDIT_CLEANUP_CRON: str = "15 3 * * *"
    AUDIT_EXPORT_MAX_ROWS: int = 10000

    # Realtime delivery
    REALTIME_TOPIC_BASE: str = "https://cobage.local"
    WS_EVENTS_ENABLED: bool = True
    WS_HEARTBEAT_SECONDS: int = 30
    WS_MAX_CONNECTIONS: int = 500

    model_config = {
        "env_file": (str(_BACKEND_ENV_FILE), str(_ROOT_ENV_FILE)),
        "extra": "ignore",
    }


settings = Settings()
