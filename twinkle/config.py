from __future__ import annotations
import os
from datetime import date
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    DATABASE_URL: str = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
    DATABASE_NAME: str = os.getenv("DATABASE_NAME", "twinkle_jingle")

    STRIPE_SECRET_KEY: Optional[str] = None
    PAYMENT_CURRENCY: str = "usd"

    ADMIN_EMAIL: str = "admin@twinklejingle.com"
    ADMIN_PASSWORD: Optional[str] = None

    # JSON list in the environment, e.g. PUBLIC_HOLIDAYS='["2026-12-25"]'
    PUBLIC_HOLIDAYS: list[date] = []

    MAX_UPLOAD_BYTES: int = 5 * 1024 * 1024
    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: list[str] = ["*"]


settings = Settings()
