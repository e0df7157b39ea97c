#!/usr/bin/env python3
"""
Clear notification state (notifications, feedback, engagement cache). Fast (TRUNCATE).
Users, tasks, settings and push tokens are kept.
Run with backend stopped to avoid locks: cd backend && python scripts/clear_notification_tables.py
"""
import sys
from pathlib import Path

# backend/scripts/ -> backend/
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from sqlalchemy import text

from app.db.session import engine
from app.db.tables import NOTIFICATION_TABLE_NAMES


def main():
    tables = ", ".join(NOTIFICATION_TABLE_NAMES)
    print(f"Connecting to DB and truncating {tables} ...")
    with engine.connect() as conn:
        conn.execute(text(f"TRUNCATE TABLE {tables} RESTART IDENTITY CASCADE"))
        conn.commit()
    print("Done. Notification tables are empty; engagement context is recomputed on the next enqueue.")


if __name__ == "__main__":
    main()
