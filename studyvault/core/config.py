"""
Sweep engine configuration.
All settings come from environment variables and default to a local, offline-safe setup.
"""

import os
from pathlib import Path

# Key-value store location (SQLite backend)
DB_PATH = os.getenv("DB_PATH", "./data/studyvault.db")

DEBUG = os.getenv("DEBUG", "false").lower() == "true"

# Remote service probing (edge functions behind a bearer key)
SWEEP_FUNCTIONS_URL = os.getenv("SWEEP_FUNCTIONS_URL", "")  # e.g. https://<project>.supabase.co/functions/v1
SWEEP_API_KEY = os.getenv("SWEEP_API_KEY", "")
SERVICE_CHECKS_ENABLED = os.getenv("SERVICE_CHECKS_ENABLED", "true").lower() == "true"
SWEEP_HEALTH_TIMEOUT_SEC = float(os.getenv("SWEEP_HEALTH_TIMEOUT_SEC", "8"))

# History and storage accounting
SWEEP_HISTORY_LIMIT = int(os.getenv("SWEEP_HISTORY_LIMIT", "5"))
STORAGE_QUOTA_BYTES = int(os.getenv("STORAGE_QUOTA_BYTES", str(5 * 1024 * 1024)))
STORAGE_WARNING_PCT = int(os.getenv("STORAGE_WARNING_PCT", "80"))

# Scheduled sweeps (heartbeat loop - default disabled)
SWEEP_SCHEDULE_ENABLED = os.getenv("SWEEP_SCHEDULE_ENABLED", "false").lower() == "true"
SWEEP_SCHEDULE_SEC = int(os.getenv("SWEEP_SCHEDULE_SEC", "86400"))  # daily

VERSION = "2.0.0"


def debug_enabled():
    """Check if debug mode is enabled."""
    return os.getenv("DEBUG", "false").lower() == "true"


def ensure_db_directory(db_path: str = None):
    """Ensure the database directory exists."""
    Path(db_path or DB_PATH).parent.mkdir(parents=True, exist_ok=True)


def are_service_checks_enabled():
    """Service probing needs both the feature flag and a base URL."""
    return SERVICE_CHECKS_ENABLED and bool(SWEEP_FUNCTIONS_URL)


def is_schedule_enabled():
    return SWEEP_SCHEDULE_ENABLED


def get_schedule_interval():
    """Get scheduled sweep interval in seconds."""
    return SWEEP_SCHEDULE_SEC


def validate_sweep_config():
    """Validate sweep configuration and return any issues."""
    issues = []

    if SWEEP_HEALTH_TIMEOUT_SEC <= 0:
        issues.append("SWEEP_HEALTH_TIMEOUT_SEC must be > 0")

    if SWEEP_HISTORY_LIMIT < 1:
        issues.append("SWEEP_HISTORY_LIMIT must be >= 1")

    if STORAGE_QUOTA_BYTES <= 0:
        issues.append("STORAGE_QUOTA_BYTES must be > 0")

    if not 0 < STORAGE_WARNING_PCT <= 100:
        issues.append(f"Invalid STORAGE_WARNING_PCT: {STORAGE_WARNING_PCT}")

    if SWEEP_SCHEDULE_SEC < 1:
        issues.append("SWEEP_SCHEDULE_SEC must be >= 1")

    if SERVICE_CHECKS_ENABLED and SWEEP_FUNCTIONS_URL and not SWEEP_API_KEY:
        issues.append("SWEEP_API_KEY is empty - service probes will be unauthenticated")

    return issues
