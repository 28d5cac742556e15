"""Celery tasks firing due notification triggers and topping up the schedule.

Tasks are synchronous functions so they run with Celery's default prefork
pool; async code runs through ``asyncio.run``. Each run builds its own engine
because an ``asyncio.Lock`` cannot be shared across event loops.

The mutex therefore covers one process only: the API process and a worker
may both fill the same forward date. The per-date purge at the start of the
next run cancels the later trigger, and ``fire_due`` shows at most one banner
per day, so the overlap never reaches the user. The nightly top-up runs in
the small hours to keep that overlap rare.
"""

from __future__ import annotations

import asyncio
import logging
from typing import List

from app.celery_app import celery_app
from app.services.scheduling_engine import SchedulingEngine, build_engine
from app.types.message_contract import ScheduledTrigger
from app.utils.dates import local_date
from app.utils.notifier import show_banner
import db

_LOGGER = logging.getLogger(__name__)


async def fire_due(engine: SchedulingEngine, scheduler: db.SqlNotificationScheduler) -> List[ScheduledTrigger]:
    """Claim due triggers, record today's message and show its banner.

    At most one banner is shown per day: once today has a record, further
    due triggers for today are claimed silently. Triggers left over from
    earlier days are dropped without a banner; the engine's next run
    reconciles those days.
    """
    now = engine.now()
    fired: List[ScheduledTrigger] = []
    delivered = await engine.today_record() is not None
    for trig in await scheduler.claim_due(now):
        if trig.fires_at is None or local_date(trig.fires_at, engine.tz) != now.date():
            _LOGGER.info("Dropping stale trigger %s (%s)", trig.identifier, trig.fires_at)
            continue
        if delivered:
            _LOGGER.info("Today's message already delivered; suppressing trigger %s", trig.identifier)
            continue
        if await engine.on_notification_event(trig.message_id) is None:
            continue
        show_banner(trig)
        delivered = True
        fired.append(trig)
    return fired


async def run_dispatch() -> int:
    engine = build_engine()
    try:
        fired = await fire_due(engine, db.SqlNotificationScheduler())
        if fired:
            prefs = await db.SqlPreferenceStore().get()
            if prefs.notifications_enabled:
                await engine.ensure_schedule(prefs.preferred_slots)
        return len(fired)
    finally:
        await db.dispose_engine()


async def run_ensure() -> bool:
    engine = build_engine()
    try:
        prefs = await db.SqlPreferenceStore().get()
        if not prefs.notifications_enabled:
            return False
        result = await engine.ensure_schedule(prefs.preferred_slots)
        return result.completed
    finally:
        await db.dispose_engine()


# ---------------------------------------------------------------------------
# Celery Tasks
# ---------------------------------------------------------------------------

@celery_app.task(name="app.workers.scheduler.dispatch_due", bind=True, max_retries=3)
def dispatch_due(self):  # noqa: D401
    """Fire due triggers and feed them to the engine."""
    try:
        return asyncio.run(run_dispatch())
    except Exception as exc:  # noqa: BLE001
        raise self.retry(exc=exc, countdown=30)


@celery_app.task(name="app.workers.scheduler.ensure_schedule", bind=True, max_retries=3)
def ensure_schedule(self):  # noqa: D401
    """Reconcile today and refill the forward window."""
    try:
        return asyncio.run(run_ensure())
    except Exception as exc:  # noqa: BLE001
        raise self.retry(exc=exc, countdown=30)
