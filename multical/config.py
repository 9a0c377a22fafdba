"""
Multi-Calendar Aggregator — Centralized configuration.

Loads all settings from .env and validates that at least one calendar backend
is configured. Only the factory and the entry point read these settings; core
modules receive their values through constructor arguments.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

# Load .env from project root (two levels up from multical/config.py)
_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # SharePoint calendar lists
    SHAREPOINT_SITE_URLS: list[str] = []
    SHAREPOINT_ACCESS_TOKEN: str = ""

    # Microsoft Graph mailbox calendars (app-only auth)
    MS_CLIENT_ID: str = ""
    MS_CLIENT_SECRET: str = ""
    MS_TENANT_ID: str = ""
    MS_MAILBOX_USER: str = ""
    INCLUDE_MAILBOX_CALENDARS: bool = False

    # Cache
    CACHE_DURATION_MINUTES: int = 15
    SEARCH_CACHE_MINUTES: int = 5
    CACHE_MAX_ENTRIES: int = 100

    # Aggregation
    AGGREGATE_TIMEOUT_SECONDS: float = 30.0
    SOURCE_TIMEOUT_SECONDS: float = 0.0   # 0 → no per-source timeout
    EVENT_HORIZON_DAYS: int = 180
    MAX_RECURRENCE_OCCURRENCES: int = 100
    DEFAULT_MAX_EVENTS: int = 1000

    TIMEZONE: str = "UTC"

    @field_validator("SHAREPOINT_SITE_URLS", mode="before")
    @classmethod
    def parse_site_urls(cls, v: str | list[str]) -> list[str]:
        if isinstance(v, list):
            return v
        if isinstance(v, str) and v.strip():
            return [url.strip().rstrip("/") for url in v.split(",") if url.strip()]
        return []

    @field_validator("INCLUDE_MAILBOX_CALENDARS", mode="before")
    @classmethod
    def parse_flag(cls, v: str | bool) -> bool:
        if isinstance(v, bool):
            return v
        return str(v).strip().lower() in ("1", "true", "yes", "on")

    @field_validator(
        "CACHE_DURATION_MINUTES",
        "SEARCH_CACHE_MINUTES",
        "CACHE_MAX_ENTRIES",
        "EVENT_HORIZON_DAYS",
        "MAX_RECURRENCE_OCCURRENCES",
        "DEFAULT_MAX_EVENTS",
    )
    @classmethod
    def positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be a positive integer")
        return v

    @property
    def sharepoint_enabled(self) -> bool:
        return bool(self.SHAREPOINT_SITE_URLS)

    @property
    def graph_enabled(self) -> bool:
        return bool(self.MS_CLIENT_ID and self.MS_CLIENT_SECRET and self.MS_TENANT_ID)


def _load_settings() -> Settings:
    """Load settings from environment, validating that a backend is configured."""
    site_urls = os.getenv("SHAREPOINT_SITE_URLS", "")
    client_id = os.getenv("MS_CLIENT_ID", "")

    if not site_urls.strip() and (not client_id or client_id.startswith("your-")):
        print(
            "ERROR: configure SHAREPOINT_SITE_URLS or the MS_CLIENT_ID / MS_CLIENT_SECRET / "
            "MS_TENANT_ID Graph credentials in .env",
            file=sys.stderr,
        )
        sys.exit(1)

    return Settings(
        SHAREPOINT_SITE_URLS=site_urls,
        SHAREPOINT_ACCESS_TOKEN=os.getenv("SHAREPOINT_ACCESS_TOKEN", ""),
        MS_CLIENT_ID=client_id,
        MS_CLIENT_SECRET=os.getenv("MS_CLIENT_SECRET", ""),
        MS_TENANT_ID=os.getenv("MS_TENANT_ID", ""),
        MS_MAILBOX_USER=os.getenv("MS_MAILBOX_USER", ""),
        INCLUDE_MAILBOX_CALENDARS=os.getenv("INCLUDE_MAILBOX_CALENDARS", "false"),
        CACHE_DURATION_MINUTES=os.getenv("CACHE_DURATION_MINUTES", "15"),
        SEARCH_CACHE_MINUTES=os.getenv("SEARCH_CACHE_MINUTES", "5"),
        CACHE_MAX_ENTRIES=os.getenv("CACHE_MAX_ENTRIES", "100"),
        AGGREGATE_TIMEOUT_SECONDS=os.getenv("AGGREGATE_TIMEOUT_SECONDS", "30"),
        SOURCE_TIMEOUT_SECONDS=os.getenv("SOURCE_TIMEOUT_SECONDS", "0"),
        EVENT_HORIZON_DAYS=os.getenv("EVENT_HORIZON_DAYS", "180"),
        MAX_RECURRENCE_OCCURRENCES=os.getenv("MAX_RECURRENCE_OCCURRENCES", "100"),
        DEFAULT_MAX_EVENTS=os.getenv("DEFAULT_MAX_EVENTS", "1000"),
        TIMEZONE=os.getenv("TIMEZONE", "UTC"),
    )


# Singleton — imported by the factory and the entry point as:
#   from multical.config import settings
settings = _load_settings()
