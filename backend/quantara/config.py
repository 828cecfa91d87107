"""
backend/quantara/config.py

Purpose:
    Environment-driven settings for the API process, read once at import.

Dependencies:
    - pydantic-settings
    - pathlib
"""

from pathlib import Path

from pydantic_settings import BaseSettings

# Later files win: backend/.env overrides the repository-root .env.
_BACKEND_ENV_FILE = Path(__file__).resolve().parent.parent / ".env"
_ROOT_ENV_FILE = Path(__file__).resolve().parent.parent.parent / ".env"


class Settings(BaseSettings):
    MONGO_URI: str
    MONGO_DB: str = "quantara"
    JWT_SECRET: str
    BACKEND_CORS_ORIGINS: str = "http://localhost:5173"
    LOG_LEVEL: str = "INFO"

    # JWT settings
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 1440  # 1 day
    PASSWORD_RESET_EXPIRE_MINUTES: int = 60

    # Links in outgoing mails point here
    FRONTEND_URL: str = "http://localhost:5173"

    # Stripe billing (leave empty to disable subscription endpoints)
    STRIPE_SECRET_KEY: str = ""
    STRIPE_WEBHOOK_SECRET: str = ""
    STRIPE_PLAN_PRICE_ID: str = ""
    STRIPE_API_VERSION: str = "2022-11-15"

    # SMTP delivery
    SMTP_HOST: str = ""
    SMTP_PORT: int = 587
    SMTP_USERNAME: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_USE_TLS: bool = True
    FROM_EMAIL: str = "no-reply@quantara.app"

    # Bet proof uploads
    UPLOAD_DIR: str = "uploads"
    UPLOAD_MAX_BYTES: int = 5 * 1024 * 1024

    # Quarterly leaderboard
    LEADERBOARD_SIZE: int = 10
    LEADERBOARD_REFRESH_MINUTES: int = 30

    # Seed admin user (leave empty to skip seeding)
    SEED_ADMIN_EMAIL: str = ""
    SEED_ADMIN_USERNAME: str = "admin"
    SEED_ADMIN_PASSWORD: str = ""

    model_config = {
        "env_file": (str(_ROOT_ENV_FILE), str(_BACKEND_ENV_FILE)),
        "extra": "ignore",
    }


settings = Settings()
