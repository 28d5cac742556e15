"""
Daily message scheduler and state-reconciliation engine.

Keeps three stores consistent with each other:

* the notification scheduler (pending triggers, one per calendar date),
* the scheduling ledger (last run date + date → message id),
* the message archive (what the user has actually received).

Entry points are called from app lifecycle events (foreground, notification
received/tapped, preference change) which may race each other. All mutation
happens while holding the engine's mutex; ``ensure_schedule`` is single-flight
and turns into a no-op when the mutex is already held.
"""

from __future__ import annotations

import asyncio
import logging
import random
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Callable, Dict, Iterable, List, Optional, Protocol, Union

from app.services.catalog import MessageCatalog
from app.services.ledger import SchedulingLedger
from app.services.notification_scheduler import GuardedScheduler, NotificationScheduler
from app.services.selection import select_message
from app.types.message_contract import (
    DeliveredRecord,
    Message,
    ScheduledTrigger,
    ScheduleResult,
    TimeSlot,
    TriggerPayload,
)
from app.utils.dates import ensure_aware, local_date, local_zone, random_instant_in_slot
from config import settings

_LOGGER = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class MessageArchive(Protocol):
    async def get_for_date(self, day: date) -> Optional[DeliveredRecord]: ...

    async def put(self, record: DeliveredRecord) -> DeliveredRecord: ...

    async def list_all(self) -> List[DeliveredRecord]: ...

    async def reset(self) -> None: ...


SlotsArg = Iterable[Union[TimeSlot, str]]


def normalize_slots(slots: Optional[SlotsArg]) -> List[TimeSlot]:
    """Deduplicate and order slots by time of day; unknown names raise ValueError."""
    wanted = {TimeSlot(s) for s in (slots or ())}
    return [s for s in TimeSlot if s in wanted]


def _creation_order(triggers: List[ScheduledTrigger]) -> List[ScheduledTrigger]:
    indexed = list(enumerate(triggers))
    indexed.sort(
        key=lambda pair: (
            pair[1].created_at is None,
            ensure_aware(pair[1].created_at) if pair[1].created_at else _EPOCH,
            pair[0],
        )
    )
    return [t for _, t in indexed]


class SchedulingEngine:
    def __init__(
        self,
        catalog: MessageCatalog,
        scheduler: NotificationScheduler,
        archive: MessageArchive,
        ledger: SchedulingLedger,
        *,
        tz: Optional[tzinfo] = None,
        clock: Optional[Callable[[], datetime]] = None,
        rng: Optional[random.Random] = None,
        lock: Optional[asyncio.Lock] = None,
        window_days: Optional[int] = None,
        ledger_retention_days: Optional[int] = None,
        title: Optional[str] = None,
    ):
        self.catalog = catalog
        self.scheduler = scheduler if isinstance(scheduler, GuardedScheduler) else GuardedScheduler(scheduler)
        self.archive = archive
        self.ledger = ledger
        self.tz = tz or local_zone()
        self._clock = clock or (lambda: datetime.now(self.tz))
        self.rng = rng or random.Random()
        self._lock = lock or asyncio.Lock()
        self.window_days = window_days if window_days is not None else settings.FORWARD_WINDOW_DAYS
        self.ledger_retention_days = (
            ledger_retention_days if ledger_retention_days is not None else settings.LEDGER_RETENTION_DAYS
        )
        self.title = title or settings.NOTIFICATION_TITLE

    # ------------------------------------------------------------------
    # Clock
    # ------------------------------------------------------------------
    def now(self) -> datetime:
        return ensure_aware(self._clock()).astimezone(self.tz)

    def today(self) -> date:
        return self.now().date()

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------
    async def ensure_schedule(self, preferred_slots: Optional[SlotsArg]) -> ScheduleResult:
        """Reconcile today and fill the forward window.

        Returns immediately (``skipped=True``) when no slot is preferred or
        when another run holds the mutex.
        """
        slots = normalize_slots(preferred_slots)
        if not slots:
            return ScheduleResult(skipped=True)
        if self._lock.locked():
            _LOGGER.debug("ensure_schedule already in flight; skipping")
            return ScheduleResult(skipped=True)
        async with self._lock:
            return await self._ensure_locked(slots)

    async def reschedule_from_tomorrow(self, new_slots: Optional[SlotsArg]) -> ScheduleResult:
        """Drop every future trigger and regenerate the window under ``new_slots``.

        Today's record and today's trigger are left alone.
        """
        slots = normalize_slots(new_slots)
        async with self._lock:
            today = self.today()
            cancelled: List[str] = []
            try:
                for trig in await self.scheduler.list_scheduled():
                    if trig.fires_at is None or local_date(trig.fires_at, self.tz) <= today:
                        continue
                    await self.scheduler.cancel(trig.identifier)
                    cancelled.append(trig.identifier)
                await self.ledger.clear_after(today)
            except Exception as exc:  # noqa: BLE001
                _LOGGER.exception("Rescheduling failed; next run will retry")
                return ScheduleResult(purged=cancelled, error=repr(exc))
            _LOGGER.info("Cancelled %d future triggers for new slots %s", len(cancelled), [s.value for s in slots])

            if not slots:
                return ScheduleResult(completed=True, purged=cancelled)
            result = await self._ensure_locked(slots)
            result.purged = cancelled + result.purged
            return result

    async def reset_history(self) -> None:
        """Wipe the archive and the ledger, today's record included.

        Pending triggers stay; the next run adopts them and picks today anew.
        """
        async with self._lock:
            await self.archive.reset()
            await self.ledger.reset()
            _LOGGER.info("Message history wiped")

    async def on_notification_event(self, message_id: Optional[str]) -> Optional[DeliveredRecord]:
        """Record a delivery reported by the notification subsystem.

        Waits for a running ``ensure_schedule`` instead of skipping, so the
        event is never lost; a no-op when today already has a record.
        """
        async with self._lock:
            now = self.now()
            today = now.date()
            try:
                existing = await self.archive.get_for_date(today)
                if existing is not None:
                    return existing
                message = self.catalog.get(message_id)
                if message is None:
                    _LOGGER.warning("Notification event for unknown message %r ignored", message_id)
                    return None
                record = await self.archive.put(DeliveredRecord.from_message(message, now))
                await self.ledger.assign(today, message.id)
                for trig in await self.scheduler.list_scheduled():
                    if trig.message_id == message.id:
                        await self.scheduler.cancel(trig.identifier)
                _LOGGER.info("Delivered %s via notification event", message.id)
                return record
            except Exception:  # noqa: BLE001
                _LOGGER.exception("Failed to record notification event for %r", message_id)
                return None

    async def today_record(self) -> Optional[DeliveredRecord]:
        return await self.archive.get_for_date(self.today())

    # ------------------------------------------------------------------
    # Run body (mutex held)
    # ------------------------------------------------------------------
    async def _ensure_locked(self, slots: List[TimeSlot]) -> ScheduleResult:
        now = self.now()
        today = now.date()
        result = ScheduleResult()
        try:
            done = await self._already_ran(today)
            if done is not None:
                result.skipped = True
                result.completed = True
                result.today = done
                return result

            kept = await self._purge(today, result)
            result.today = await self._reconcile_today(now, today, kept, result)
            history = await self.archive.list_all()
            await self._fill_forward(today, slots, kept, history, result)

            await self.ledger.prune_before(today - timedelta(days=self.ledger_retention_days))
            await self.ledger.mark_ran(today)
            result.completed = True
        except Exception as exc:  # noqa: BLE001
            _LOGGER.exception("Scheduling run failed; next invocation will retry")
            result.error = repr(exc)
        return result

    async def _already_ran(self, today: date) -> Optional[DeliveredRecord]:
        """Today's record if this day's work is already durably done."""
        state = await self.ledger.load()
        if state.last_run_date != today:
            return None
        window = {today + timedelta(days=i) for i in range(1, self.window_days + 1)}
        if not window.issubset(state.assigned.keys()):
            return None
        return await self.archive.get_for_date(today)

    async def _purge(self, today: date, result: ScheduleResult) -> Dict[date, ScheduledTrigger]:
        """Cancel malformed, stale and duplicate triggers; return one per date.

        Within a date the earliest-created trigger wins.
        """
        kept: Dict[date, ScheduledTrigger] = {}
        for trig in _creation_order(await self.scheduler.list_scheduled()):
            if trig.fires_at is None:
                _LOGGER.warning("Cancelling trigger %s with no fire time", trig.identifier)
            elif not trig.message_id:
                _LOGGER.warning("Cancelling trigger %s with no message payload", trig.identifier)
            else:
                day = local_date(trig.fires_at, self.tz)
                if day < today:
                    _LOGGER.info("Cancelling stale trigger %s for %s", trig.identifier, day)
                elif day in kept:
                    _LOGGER.info(
                        "Cancelling duplicate trigger %s for %s (keeping %s)",
                        trig.identifier, day, kept[day].identifier,
                    )
                else:
                    kept[day] = trig
                    continue
            await self.scheduler.cancel(trig.identifier)
            result.purged.append(trig.identifier)
        return kept

    async def _reconcile_today(
        self,
        now: datetime,
        today: date,
        kept: Dict[date, ScheduledTrigger],
        result: ScheduleResult,
    ) -> DeliveredRecord:
        trig = kept.pop(today, None)

        existing = await self.archive.get_for_date(today)
        if existing is not None:
            if trig is not None:
                # Delivery already recorded; a native banner would double-notify.
                await self.scheduler.cancel(trig.identifier)
                result.purged.append(trig.identifier)
            return existing

        if trig is not None:
            message = self.catalog.get(trig.message_id)
            if message is not None:
                record = await self.archive.put(DeliveredRecord.from_message(message, ensure_aware(trig.fires_at)))
                await self.ledger.assign(today, message.id)
                await self.scheduler.cancel(trig.identifier)
                _LOGGER.info("Today's trigger %s adopted as delivered (%s)", trig.identifier, message.id)
                return record
            _LOGGER.warning("Trigger %s references unknown message %r", trig.identifier, trig.message_id)
            await self.scheduler.cancel(trig.identifier)
            result.purged.append(trig.identifier)

        message = self.catalog.get(await self.ledger.assigned_for(today))
        if message is None:
            message = await self._select_for_today(kept)
        record = await self.archive.put(DeliveredRecord.from_message(message, now))
        await self.ledger.assign(today, message.id)
        _LOGGER.info("Today's message synthesized (%s)", message.id)
        return record

    async def _select_for_today(self, kept: Dict[date, ScheduledTrigger]) -> Message:
        history = await self.archive.list_all()
        last = max(history, key=lambda r: ensure_aware(r.received_at), default=None)
        pending = {t.message_id for t in kept.values() if t.message_id}
        return select_message(
            self.catalog,
            delivered_ids={r.message_id for r in history},
            exclude_ids=pending,
            last_id=last.message_id if last else None,
            last_category=last.category if last else None,
            rng=self.rng,
        )

    async def _fill_forward(
        self,
        today: date,
        slots: List[TimeSlot],
        kept: Dict[date, ScheduledTrigger],
        history: List[DeliveredRecord],
        result: ScheduleResult,
    ) -> None:
        assigned = await self.ledger.assignments()
        delivered = {r.message_id for r in history}
        pending = {t.message_id for t in kept.values() if t.message_id}

        # Message per date, device schedule winning over the ledger.
        chain: Dict[date, str] = dict(assigned)
        chain.update({d: t.message_id for d, t in kept.items() if t.message_id})
        if result.today is not None:
            chain[today] = result.today.message_id

        for offset in range(1, self.window_days + 1):
            day = today + timedelta(days=offset)
            existing = kept.get(day)
            if existing is not None:
                if existing.message_id and assigned.get(day) != existing.message_id:
                    await self.ledger.assign(day, existing.message_id)
                continue

            prev_id = chain.get(day - timedelta(days=1))
            prev = self.catalog.get(prev_id)
            exclude = set(pending)
            following = kept.get(day + timedelta(days=1))
            if following is not None and following.message_id:
                exclude.add(following.message_id)

            message = select_message(
                self.catalog,
                delivered_ids=delivered,
                exclude_ids=exclude,
                last_id=prev_id,
                last_category=prev.category if prev else None,
                rng=self.rng,
            )
            slot = self.rng.choice(slots)
            fires_at = random_instant_in_slot(slot, day, self.tz, self.rng)
            payload = TriggerPayload(message_id=message.id)
            identifier = await self.scheduler.create(fires_at, payload, title=self.title, body=message.content)
            await self.ledger.assign(day, message.id)

            trig = ScheduledTrigger(identifier=identifier, fires_at=fires_at, payload=payload, created_at=self.now())
            kept[day] = trig
            chain[day] = message.id
            pending.add(message.id)
            result.created.append(trig)
            _LOGGER.info("Scheduled %s for %s at %s (%s)", message.id, day, fires_at.time(), slot.value)


# ──────────────────────────────────────────────────────────────────────────
# Process wiring
# ──────────────────────────────────────────────────────────────────────────

_instance: Optional[SchedulingEngine] = None


def build_engine() -> SchedulingEngine:
    """Engine wired to the SQL stores and the shipped catalog."""
    import db
    from app.services.catalog import default_catalog

    tz = local_zone()
    return SchedulingEngine(
        default_catalog(),
        db.SqlNotificationScheduler(),
        db.SqlMessageArchive(tz=tz),
        SchedulingLedger(db.SqlKeyValueStore()),
        tz=tz,
    )


def get_scheduling_engine() -> SchedulingEngine:
    """Engine shared by everything running on the API process's event loop."""
    global _instance
    if _instance is None:
        _instance = build_engine()
    return _instance
