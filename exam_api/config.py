"""Application configuration and constants."""
import os
from pathlib import Path


def _parse_int_env(name: str, default: int) -> int:
    """Parse integer from environment variable."""
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _parse_float_env(name: str, default: float) -> float:
    """Parse float from environment variable."""
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


# Database
DB_DIR = Path(os.environ.get("DB_DIR", Path.cwd() / "data"))
DB_DIR.mkdir(parents=True, exist_ok=True)
DATABASE_URL = os.environ.get(
    "DATABASE_URL", f"sqlite:///{DB_DIR / 'assessments.db'}"
)

# Logging
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

# Lifecycle scheduler
SCHEDULER_CONCURRENCY = _parse_int_env("SCHEDULER_CONCURRENCY", 5)
SCHEDULER_MAX_ATTEMPTS = _parse_int_env("SCHEDULER_MAX_ATTEMPTS", 3)
SCHEDULER_RETRY_DELAY_SECONDS = _parse_float_env("SCHEDULER_RETRY_DELAY_SECONDS", 5.0)
SCHEDULER_POLL_SECONDS = _parse_float_env("SCHEDULER_POLL_SECONDS", 1.0)
SCHEDULER_FAILED_JOBS_KEPT = _parse_int_env("SCHEDULER_FAILED_JOBS_KEPT", 100)

# Test defaults
DEFAULT_PASSING_SCORE = _parse_float_env("DEFAULT_PASSING_SCORE", 40.0)
DEFAULT_MAX_ATTEMPTS = _parse_int_env("DEFAULT_MAX_ATTEMPTS", 1)

# Actor recorded on timer-driven transitions
SYSTEM_ACTOR = "system"
