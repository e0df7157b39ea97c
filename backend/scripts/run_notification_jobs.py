#!/usr/bin/env python3
"""
Run notification jobs once, outside the scheduler (cron, debugging, catch-up after downtime).
Run: cd backend && python scripts/run_notification_jobs.py [drain|deadline|overdue|cleanup|insights|all]
Default: drain.
"""
import argparse
import asyncio
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from app.scheduler.notification_scheduler import NotificationScheduler

JOBS = ("drain", "deadline", "overdue", "cleanup", "insights")


async def _run(names: list[str]) -> None:
    scheduler = NotificationScheduler()
    runners = {
        "drain": scheduler.drain_queue,
        "deadline": scheduler.deadline_sweep,
        "overdue": scheduler.overdue_sweep,
        "cleanup": scheduler.retention_cleanup,
        "insights": scheduler.weekly_insights,
    }
    for name in names:
        result = await runners[name]()
        if isinstance(result, list):
            result = len(result)
        print(f"{name}: {result if result is not None else 'failed (see log)'}")


def main():
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("job", nargs="?", default="drain", choices=(*JOBS, "all"))
    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    names = list(JOBS) if args.job == "all" else [args.job]
    asyncio.run(_run(names))


if __name__ == "__main__":
    main()
