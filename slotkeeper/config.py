"""
Slotkeeper — Centralized configuration.

Loads all settings from .env and validates them.
This module is the foundation for every other module in the project.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv
from pydantic import BaseModel, ValidationError, field_validator

# Load .env from project root (two levels up from slotkeeper/config.py)
_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # SQLite
    DATABASE_PATH: str = "data/slotkeeper.db"

    # Google Calendar OAuth client (needed to refresh Google tokens)
    GOOGLE_CLIENT_ID: str = ""
    GOOGLE_CLIENT_SECRET: str = ""
    GOOGLE_TOKEN_URI: str = "https://oauth2.googleapis.com/token"

    # Microsoft Outlook/365 OAuth client (needed to refresh Graph tokens)
    MS_CLIENT_ID: str = ""
    MS_CLIENT_SECRET: str = ""
    MS_TENANT_ID: str = "common"

    # Conflict aggregation
    EVENT_CACHE_TTL_SECONDS: int = 300
    PROVIDER_TIMEOUT_SECONDS: int = 10
    PROVIDER_PAGE_SIZE: int = 250
    MAX_CALENDAR_CONNECTIONS: int = 6

    # Slot generation
    SLOT_INCREMENT_MINUTES: int = 15
    DEFAULT_TIMEZONE: str = "UTC"

    LOG_LEVEL: str = "INFO"

    @field_validator(
        "EVENT_CACHE_TTL_SECONDS",
        "PROVIDER_TIMEOUT_SECONDS",
        "PROVIDER_PAGE_SIZE",
        "MAX_CALENDAR_CONNECTIONS",
        "SLOT_INCREMENT_MINUTES",
        mode="before",
    )
    @classmethod
    def parse_positive_int(cls, v: str | int) -> int:
        value = int(v)
        if value <= 0:
            raise ValueError(f"must be a positive integer, got {value}")
        return value

    @field_validator("DEFAULT_TIMEZONE")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"unknown IANA timezone {v!r}") from exc
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        return v.upper()


def _load_settings() -> Settings:
    """Load settings from environment, exiting on invalid values."""
    try:
        return Settings(
            DATABASE_PATH=os.getenv("DATABASE_PATH", "data/slotkeeper.db"),
            GOOGLE_CLIENT_ID=os.getenv("GOOGLE_CLIENT_ID", ""),
            GOOGLE_CLIENT_SECRET=os.getenv("GOOGLE_CLIENT_SECRET", ""),
            GOOGLE_TOKEN_URI=os.getenv(
                "GOOGLE_TOKEN_URI", "https://oauth2.googleapis.com/token"
            ),
            MS_CLIENT_ID=os.getenv("MS_CLIENT_ID", ""),
            MS_CLIENT_SECRET=os.getenv("MS_CLIENT_SECRET", ""),
            MS_TENANT_ID=os.getenv("MS_TENANT_ID", "common"),
            EVENT_CACHE_TTL_SECONDS=os.getenv("EVENT_CACHE_TTL_SECONDS", "300"),
            PROVIDER_TIMEOUT_SECONDS=os.getenv("PROVIDER_TIMEOUT_SECONDS", "10"),
            PROVIDER_PAGE_SIZE=os.getenv("PROVIDER_PAGE_SIZE", "250"),
            MAX_CALENDAR_CONNECTIONS=os.getenv("MAX_CALENDAR_CONNECTIONS", "6"),
            SLOT_INCREMENT_MINUTES=os.getenv("SLOT_INCREMENT_MINUTES", "15"),
            DEFAULT_TIMEZONE=os.getenv("DEFAULT_TIMEZONE", "UTC"),
            LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO"),
        )
    except ValidationError as exc:
        print(f"ERROR: invalid configuration in .env\n{exc}", file=sys.stderr)
        sys.exit(1)


# Singleton, imported by all other modules as:
#   from slotkeeper.config import settings
settings = _load_settings()
