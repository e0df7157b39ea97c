"""
Single source of truth for database tables that exist after migrations.

Use these names when writing raw SQL (e.g. TRUNCATE). alembic/env.py asserts the models
register exactly this set.
"""
# All tables that exist in the DB. Must match models and migrations.
ALL_TABLE_NAMES = (
    "users",
    "tasks",
    "notifications",
    "notification_settings",
    "notification_feedback",
    "user_engagement_context",
    "push_tokens",
)

# Tables cleared when resetting notification state (TRUNCATE). Order matters for FK.
NOTIFICATION_TABLE_NAMES = (
    "notification_feedback",
    "notifications",
    "user_engagement_context",
)
