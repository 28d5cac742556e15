"""One-shot scan that fires due notifications.
Run from cron (or a desktop scheduler) every minute when no Celery beat is running:
    python -m app.scripts.scan_due_notifications
"""

from __future__ import annotations

import asyncio

from app.workers.scheduler import run_dispatch


async def main() -> None:
    fired = await run_dispatch()
    if fired:
        print("[CRON] scan_due_notifications: fired", fired, "notification(s)")


if __name__ == "__main__":  # pragma: no cover
    print("[CRON] scan_due_notifications: job started")
    try:
        asyncio.run(main())
        print("[CRON] scan_due_notifications: job completed successfully")
    except Exception as e:
        print(f"[CRON] scan_due_notifications: job failed: {e}")
