"""
Centralized constants for the notification scheduler.

Change job IDs or intervals here instead of scattering literals across main and the scheduler.
Queue sizes and retention come from notify_config (env-driven).
"""
from app.core.notify_config import OVERDUE_SWEEP_HOUR

# Scheduler job IDs (must match ids used in NotificationScheduler.start)
QUEUE_DRAIN_JOB_ID = "notification_queue_drain"
DEADLINE_SWEEP_JOB_ID = "task_deadline_sweep"
OVERDUE_SWEEP_JOB_ID = "task_overdue_sweep"
RETENTION_CLEANUP_JOB_ID = "notification_retention_cleanup"
WEEKLY_INSIGHTS_JOB_ID = "weekly_insights"

QUEUE_DRAIN_INTERVAL_SECONDS = 120
DEADLINE_SWEEP_INTERVAL_HOURS = 1
OVERDUE_SWEEP_CRON = {"hour": OVERDUE_SWEEP_HOUR, "minute": 0}
# Weekly jobs run on Sunday (APScheduler day_of_week)
RETENTION_CLEANUP_CRON = {"day_of_week": "sun", "hour": 2, "minute": 0}
WEEKLY_INSIGHTS_CRON = {"day_of_week": "sun", "hour": 10, "minute": 0}

# Content limits (hard contract for stored and pushed text)
TITLE_MAX_LENGTH = 60
MESSAGE_MAX_LENGTH = 280

# Neutral value returned by scoring helpers when an input is missing
NEUTRAL_SCORE = 5
DEFAULT_PRIORITY = 5
MIN_PRIORITY = 1
MAX_PRIORITY = 10

# Lazily created per-user settings
DEFAULT_PERSONALITY = "casual"
DEFAULT_WINDOW_START = "07:00"
DEFAULT_WINDOW_END = "22:00"
DEFAULT_MAX_PER_DAY = 5
DEFAULT_ENABLED_TYPES = ("ALERT", "REMINDER", "MOTIVATION")
DEFAULT_TIMEZONE = "America/Sao_Paulo"

PERSONALITIES = ("formal", "casual", "motivational", "friendly")
FEEDBACK_TYPES = ("helpful", "annoying", "irrelevant", "perfect", "too_early", "too_late")
POSITIVE_FEEDBACK_TYPES = ("helpful", "perfect")
