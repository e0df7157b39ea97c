"""
Notification queue config. .env is the source of truth; these defaults apply only when
the env var is unset. All values read at import time.

Env vars: QUEUE_BATCH_SIZE, QUEUE_MAX_ATTEMPTS, QUEUE_RETRY_BACKOFF_SECONDS,
DUPLICATE_COOLDOWN_MINUTES, NOTIFICATIONS_RETENTION_DAYS (7–90),
DEADLINE_SWEEP_WINDOW_HOURS, OVERDUE_SWEEP_HOUR, INSIGHT_ACTIVITY_DAYS,
ENGAGEMENT_CACHE_MINUTES.
"""
import logging
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

# Load backend/.env so queue config sees env vars regardless of entry point
# (scripts and scheduler workers import this without going through main.py)
_backend_dir = Path(__file__).resolve().parent.parent.parent
load_dotenv(_backend_dir / ".env", override=False)

_log = logging.getLogger(__name__)


def _int(key: str, default: int, min_val: int | None = None, max_val: int | None = None) -> int:
    raw = os.environ.get(key)
    if raw is None:
        v = default
    else:
        try:
            v = int(raw.strip())
        except ValueError:
            v = default
    if min_val is not None and v < min_val:
        v = min_val
    if max_val is not None and v > max_val:
        v = max_val
    return v


# -----------------------------------------------------------------------------
# Queue drain: batch size, delivery attempts, retry backoff
# -----------------------------------------------------------------------------
QUEUE_BATCH_SIZE = _int("QUEUE_BATCH_SIZE", 10, min_val=1, max_val=500)
# A notification whose delivery fails more than this many times becomes FAILED
QUEUE_MAX_ATTEMPTS = _int("QUEUE_MAX_ATTEMPTS", 5, min_val=1, max_val=50)
# First retry waits this long; each further failure doubles it (capped at one hour)
QUEUE_RETRY_BACKOFF_SECONDS = _int("QUEUE_RETRY_BACKOFF_SECONDS", 60, min_val=0, max_val=3600)
QUEUE_RETRY_BACKOFF_MAX_SECONDS = 3600

# -----------------------------------------------------------------------------
# Suppression and retention
# -----------------------------------------------------------------------------
# Same (user, task, type) within this many minutes is a duplicate
DUPLICATE_COOLDOWN_MINUTES = _int("DUPLICATE_COOLDOWN_MINUTES", 120, min_val=1, max_val=1440)
NOTIFICATIONS_RETENTION_DAYS = _int("NOTIFICATIONS_RETENTION_DAYS", 30, min_val=7, max_val=90)

# -----------------------------------------------------------------------------
# Sweeps
# -----------------------------------------------------------------------------
DEADLINE_SWEEP_WINDOW_HOURS = _int("DEADLINE_SWEEP_WINDOW_HOURS", 24, min_val=1, max_val=168)
OVERDUE_SWEEP_HOUR = _int("OVERDUE_SWEEP_HOUR", 8, min_val=0, max_val=23)
INSIGHT_ACTIVITY_DAYS = _int("INSIGHT_ACTIVITY_DAYS", 7, min_val=1, max_val=30)
ENGAGEMENT_CACHE_MINUTES = _int("ENGAGEMENT_CACHE_MINUTES", 60, min_val=0, max_val=1440)

_log.info(
    "Notification config (from env): batch_size=%s max_attempts=%s retry_backoff_sec=%s "
    "duplicate_cooldown_min=%s retention_days=%s",
    QUEUE_BATCH_SIZE,
    QUEUE_MAX_ATTEMPTS,
    QUEUE_RETRY_BACKOFF_SECONDS,
    DUPLICATE_COOLDOWN_MINUTES,
    NOTIFICATIONS_RETENTION_DAYS,
)


@dataclass(frozen=True)
class NotifyConfig:
    """Snapshot of queue config for passing around (e.g. tests)."""
    batch_size: int = QUEUE_BATCH_SIZE
    max_attempts: int = QUEUE_MAX_ATTEMPTS
    retry_backoff_seconds: int = QUEUE_RETRY_BACKOFF_SECONDS
    retry_backoff_max_seconds: int = QUEUE_RETRY_BACKOFF_MAX_SECONDS
    duplicate_cooldown_minutes: int = DUPLICATE_COOLDOWN_MINUTES
    retention_days: int = NOTIFICATIONS_RETENTION_DAYS
    deadline_window_hours: int = DEADLINE_SWEEP_WINDOW_HOURS
    insight_activity_days: int = INSIGHT_ACTIVITY_DAYS
    engagement_cache_minutes: int = ENGAGEMENT_CACHE_MINUTES


def get_notify_config() -> NotifyConfig:
    return NotifyConfig()
