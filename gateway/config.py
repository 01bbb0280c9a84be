"""
Task Gateway — Centralized configuration.

Loads all settings from .env and validates required keys.
Every other module imports the `settings` singleton from here.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

# Load .env from project root (two levels up from gateway/config.py)
_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # Telegram
    TELEGRAM_BOT_TOKEN: str
    WEBHOOK_SECRET_TOKEN: str = ""   # matched against X-Telegram-Bot-Api-Secret-Token

    # Scheduler endpoints (/jobs/*)
    JOBS_SECRET: str = ""

    # SQLite
    DATABASE_PATH: str = "data/gateway.db"

    # Local time used for "today", default due hour and day boundaries
    TIMEZONE: str = "UTC"
    DEFAULT_DUE_HOUR: int = 17

    # Tasks created from chat
    DEFAULT_TASK_CREDITS: int = 10
    MYTASKS_LIMIT: int = 10

    # Pending command lifetimes
    CONNECT_CODE_TTL_MINUTES: int = 15
    PENDING_COMMENT_TTL_MINUTES: int = 60

    # Outbound Bot API calls
    SEND_TIMEOUT_SECONDS: float = 10.0
    SEND_RETRIES: int = 1

    @field_validator(
        "DEFAULT_DUE_HOUR",
        "DEFAULT_TASK_CREDITS",
        "MYTASKS_LIMIT",
        "CONNECT_CODE_TTL_MINUTES",
        "PENDING_COMMENT_TTL_MINUTES",
        "SEND_RETRIES",
        mode="before",
    )
    @classmethod
    def parse_int(cls, v: str | int) -> int:
        return int(v)

    @field_validator("DEFAULT_DUE_HOUR")
    @classmethod
    def check_hour(cls, v: int) -> int:
        if not 0 <= v <= 23:
            raise ValueError(f"DEFAULT_DUE_HOUR must be between 0 and 23, got {v}")
        return v


def _load_settings() -> Settings:
    """Load settings from environment, validating required keys."""
    token = os.getenv("TELEGRAM_BOT_TOKEN", "")

    if not token or token.startswith("your-"):
        print("ERROR: TELEGRAM_BOT_TOKEN is missing or not set in .env", file=sys.stderr)
        sys.exit(1)

    return Settings(
        TELEGRAM_BOT_TOKEN=token,
        WEBHOOK_SECRET_TOKEN=os.getenv("WEBHOOK_SECRET_TOKEN", ""),
        JOBS_SECRET=os.getenv("JOBS_SECRET", ""),
        DATABASE_PATH=os.getenv("DATABASE_PATH", "data/gateway.db"),
        TIMEZONE=os.getenv("TIMEZONE", "UTC"),
        DEFAULT_DUE_HOUR=os.getenv("DEFAULT_DUE_HOUR", "17"),
        DEFAULT_TASK_CREDITS=os.getenv("DEFAULT_TASK_CREDITS", "10"),
        MYTASKS_LIMIT=os.getenv("MYTASKS_LIMIT", "10"),
        CONNECT_CODE_TTL_MINUTES=os.getenv("CONNECT_CODE_TTL_MINUTES", "15"),
        PENDING_COMMENT_TTL_MINUTES=os.getenv("PENDING_COMMENT_TTL_MINUTES", "60"),
        SEND_TIMEOUT_SECONDS=os.getenv("SEND_TIMEOUT_SECONDS", "10"),
        SEND_RETRIES=os.getenv("SEND_RETRIES", "1"),
    )


# Singleton, imported by all other modules as:
#   from gateway.config import settings
settings = _load_settings()
