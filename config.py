# config.py
# Role: Runtime settings for the envelope ledger.
#       Reads environment variables (optionally from a .env file) once at import
#       and exposes them as an immutable Settings object.

from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()

# Base directory of the project (where this module lives)
BASE_DIR = os.path.dirname(os.path.abspath(__file__))


def _parse_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "y", "on"}


def _parse_int(value: str | None, default: int) -> int:
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _default_database_url() -> str:
    db_dir = os.path.join(BASE_DIR, "database")
    os.makedirs(db_dir, exist_ok=True)  # ensure folder exists
    return f"sqlite:///{os.path.join(db_dir, 'ledger.db')}"


@dataclass(frozen=True)
class Settings:
    app_env: str
    database_url: str
    log_level: str
    automation_max_attempts: int
    reconcile_retries: int
    default_category: str
    auto_categorize_ai: bool
    auto_categorize_model: str


def load_settings() -> Settings:
    return Settings(
        app_env=os.getenv("APP_ENV", "development"),
        database_url=os.getenv("DATABASE_URL") or _default_database_url(),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        automation_max_attempts=_parse_int(os.getenv("AUTOMATION_MAX_ATTEMPTS"), 5),
        reconcile_retries=_parse_int(os.getenv("RECONCILE_RETRIES"), 3),
        default_category=os.getenv("DEFAULT_CATEGORY", "Needs a Category"),
        auto_categorize_ai=_parse_bool(os.getenv("AUTO_CATEGORIZE_AI"), False),
        auto_categorize_model=os.getenv("AUTO_CATEGORIZE_MODEL", "gpt-4.1-mini"),
    )


settings = load_settings()
