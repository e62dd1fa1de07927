"""
Application configuration.

Settings are read from environment variables when this module is imported.
Set the variables before importing anything from the API (the test suite
and ``uvicorn`` both do this naturally).
"""

import os
from dataclasses import dataclass, field
from typing import List


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _parse_csv_env(name: str, default: str) -> List[str]:
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


@dataclass
class Settings:
    """Application settings loaded from environment variables."""

    project_name: str = os.getenv("PROJECT_NAME", "Solutil Connect API")
    api_version: str = os.getenv("API_VERSION", "1.0.0")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    log_file: str = os.getenv("LOG_FILE", "")

    # MongoDB.  An empty DATABASE_URL puts the API in mock mode.
    database_url: str = os.getenv("DATABASE_URL", "")
    database_name: str = os.getenv("DATABASE_NAME", "solutil")
    server_selection_timeout_ms: int = _env_int("MONGO_TIMEOUT_MS", 5000)

    cors_origins: List[str] = field(default_factory=lambda: _parse_csv_env("CORS_ORIGINS", "*"))

    # Dual-write migration window (MongoDB <-> Firestore)
    dual_write_enabled: bool = _env_bool("DUAL_WRITE_ENABLED", "false")
    primary_database: str = os.getenv("PRIMARY_DATABASE", "mongodb")
    enable_read_fallback: bool = _env_bool("ENABLE_READ_FALLBACK", "true")
    record_sync_errors: bool = _env_bool("RECORD_SYNC_ERRORS", "true")
    log_operations: bool = _env_bool("LOG_DUAL_WRITE_OPERATIONS", "false")
    max_sync_errors: int = _env_int("MAX_SYNC_ERRORS", 1000)
    firebase_credentials: str = os.getenv("FIREBASE_CREDENTIALS", "")
    firebase_project_id: str = os.getenv("FIREBASE_PROJECT_ID", "")

    # Payouts
    commission_rate: int = _env_int("COMMISSION_RATE", 30)
    payout_delay_minutes: int = _env_int("PAYOUT_DELAY_MINUTES", 60)

    port: int = _env_int("PORT", 8000)


settings = Settings()
