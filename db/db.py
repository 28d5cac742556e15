"""
Async DB helpers for the local message scheduler.
Uses SQLAlchemy 2.0 (aiosqlite locally, asyncpg on Postgres) – no raw SQL strings in app code.
"""

from __future__ import annotations

import os
import logging
from datetime import date, datetime, timezone, tzinfo
from typing import Any, AsyncGenerator, List, Optional
from uuid import uuid4

from sqlalchemy import JSON, Date, DateTime, String, Text, delete, func, select
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.ext.asyncio import (
    create_async_engine, async_sessionmaker, AsyncSession
)

from app.types.message_contract import (
    Category,
    DeliveredRecord,
    Preferences,
    ScheduledTrigger,
    TimeSlot,
    TriggerPayload,
)
from app.utils.dates import ensure_aware, local_date, local_zone
from config import settings

_LOGGER = logging.getLogger(__name__)

# ──────────────────────────────────────────────────────────────────────
# 1. Declarative metadata
# ──────────────────────────────────────────────────────────────────────
class Base(DeclarativeBase):
    pass

# ──────────────────────────────────────────────────────────────────────
# 2. Lazy engine / session factory
# ──────────────────────────────────────────────────────────────────────
_engine = None
_session_maker: async_sessionmaker[AsyncSession] | None = None

def _build_url() -> str:
    url = os.getenv("DATABASE_URL") or os.getenv("DATABASE_PUBLIC_URL") or settings.DATABASE_URL
    if not url:
        raise RuntimeError("DATABASE_URL not set")
    if url.startswith(("postgres://", "postgresql://")) and "+asyncpg" not in url:
        url = url.replace("postgres://", "postgresql+asyncpg://", 1).replace(
            "postgresql://", "postgresql+asyncpg://", 1
        )
    return url

def get_engine():
    global _engine
    if _engine is None:
        url = _build_url()
        if url.startswith("sqlite"):
            _engine = create_async_engine(url)
        else:
            _engine = create_async_engine(url, pool_size=5, max_overflow=5)
    return _engine

def get_session() -> AsyncGenerator[AsyncSession, None]:
    global _session_maker
    if _session_maker is None:
        _session_maker = async_sessionmaker(get_engine(), expire_on_commit=False)
    async def _session_scope():
        async with _session_maker() as session:
            yield session
    return _session_scope()


def _utc(value: datetime | None) -> datetime | None:
    # SQLite drops offsets, so every instant is written as UTC.
    if value is None:
        return None
    return ensure_aware(value).astimezone(timezone.utc)

# ──────────────────────────────────────────────────────────────────────
# 3. ORM models
# ──────────────────────────────────────────────────────────────────────

class DeliveredMessage(Base):
    __tablename__ = "delivered_messages"

    record_id:    Mapped[int]  = mapped_column(primary_key=True, autoincrement=True)
    delivered_on: Mapped[date] = mapped_column(Date, unique=True, index=True)
    message_id:   Mapped[str]  = mapped_column(String(64))
    content:      Mapped[str]  = mapped_column(Text)
    category:     Mapped[str]  = mapped_column(String(32))
    received_at:  Mapped[datetime] = mapped_column(DateTime(timezone=True))
    is_read:      Mapped[bool] = mapped_column(default=False)
    is_favorite:  Mapped[bool] = mapped_column(default=False)


class LedgerEntry(Base):
    __tablename__ = "scheduling_ledger"

    key:        Mapped[str] = mapped_column(String(64), primary_key=True)
    value:      Mapped[Any] = mapped_column(JSON, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class ScheduledNotification(Base):
    __tablename__ = "scheduled_notifications"

    identifier: Mapped[str] = mapped_column(String(36), primary_key=True)
    fire_at:    Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    payload:    Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    title:      Mapped[str | None] = mapped_column(String(120), nullable=True)
    body:       Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class UserPreference(Base):
    __tablename__ = "user_preferences"

    pref_id:               Mapped[int] = mapped_column(primary_key=True)
    preferred_slots:       Mapped[list[str]] = mapped_column(JSON)
    notifications_enabled: Mapped[bool] = mapped_column(default=True)
    updated_at:            Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


# ──────────────────────────────────────────────────────────────────────
# 4. DDL helper (run once at startup or from Alembic)
# ──────────────────────────────────────────────────────────────────────
async def create_all():
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


# ──────────────────────────────────────────────────────────────────────
# 5. Stores
# ──────────────────────────────────────────────────────────────────────

# 5.1 Message archive --------------------------------------------------
def _to_record(row: DeliveredMessage) -> DeliveredRecord:
    return DeliveredRecord(
        message_id=row.message_id,
        content=row.content,
        category=Category(row.category),
        received_at=ensure_aware(row.received_at),
        is_read=row.is_read,
        is_favorite=row.is_favorite,
    )


class SqlMessageArchive:
    """Delivered messages, one row per local date, capped at ``retention`` rows."""

    def __init__(self, tz: tzinfo | None = None, retention: int | None = None):
        self.tz = tz or local_zone()
        self.retention = retention if retention is not None else settings.ARCHIVE_RETENTION

    async def get_for_date(self, day: date) -> Optional[DeliveredRecord]:
        found = None
        async for s in get_session():
            res = await s.execute(select(DeliveredMessage).where(DeliveredMessage.delivered_on == day))
            row = res.scalar_one_or_none()
            found = _to_record(row) if row else None
        return found

    async def put(self, record: DeliveredRecord) -> DeliveredRecord:
        """Insert or overwrite the record for ``record``'s local date.

        Overwrites keep the stored read/favorite flags.
        """
        day = local_date(record.received_at, self.tz)
        stored = None
        async for s in get_session():
            res = await s.execute(select(DeliveredMessage).where(DeliveredMessage.delivered_on == day))
            row = res.scalar_one_or_none()
            if row is None:
                row = DeliveredMessage(
                    delivered_on=day,
                    is_read=record.is_read,
                    is_favorite=record.is_favorite,
                )
                s.add(row)
            row.message_id = record.message_id
            row.content = record.content
            row.category = record.category.value
            row.received_at = _utc(record.received_at)
            await s.flush()
            await self._enforce_retention(s)
            await s.commit()
            stored = _to_record(row)
        return stored

    async def _enforce_retention(self, s: AsyncSession) -> None:
        overflow = await s.execute(
            select(DeliveredMessage.record_id)
            .order_by(DeliveredMessage.received_at.desc(), DeliveredMessage.record_id.desc())
            .offset(self.retention)
        )
        stale = list(overflow.scalars())
        if stale:
            await s.execute(delete(DeliveredMessage).where(DeliveredMessage.record_id.in_(stale)))

    async def list_all(self) -> List[DeliveredRecord]:
        """Most recent first."""
        records: List[DeliveredRecord] = []
        async for s in get_session():
            res = await s.execute(
                select(DeliveredMessage).order_by(DeliveredMessage.received_at.desc())
            )
            records = [_to_record(r) for r in res.scalars()]
        return records

    async def toggle_favorite(self, message_id: str) -> List[DeliveredRecord]:
        return await self._update_flags(message_id, lambda row: setattr(row, "is_favorite", not row.is_favorite))

    async def mark_read(self, message_id: str) -> List[DeliveredRecord]:
        return await self._update_flags(message_id, lambda row: setattr(row, "is_read", True))

    async def _update_flags(self, message_id: str, change) -> List[DeliveredRecord]:
        updated: List[DeliveredRecord] = []
        async for s in get_session():
            res = await s.execute(select(DeliveredMessage).where(DeliveredMessage.message_id == message_id))
            rows = list(res.scalars())
            for row in rows:
                change(row)
            await s.commit()
            updated = [_to_record(r) for r in rows]
        return updated

    async def reset(self) -> None:
        async for s in get_session():
            await s.execute(delete(DeliveredMessage))
            await s.commit()


# 5.2 Ledger key-value storage -----------------------------------------
class SqlKeyValueStore:
    async def get(self, key: str) -> Optional[Any]:
        value = None
        async for s in get_session():
            row = await s.get(LedgerEntry, key)
            value = row.value if row else None
        return value

    async def set(self, key: str, value: Any) -> None:
        async for s in get_session():
            row = await s.get(LedgerEntry, key)
            if row is None:
                s.add(LedgerEntry(key=key, value=value))
            else:
                row.value = value
            await s.commit()


# 5.3 Pending notification triggers ------------------------------------
def _to_trigger(row: ScheduledNotification) -> ScheduledTrigger:
    payload = row.payload if isinstance(row.payload, dict) else {}
    message_id = payload.get("message_id")
    return ScheduledTrigger(
        identifier=row.identifier,
        fires_at=ensure_aware(row.fire_at) if isinstance(row.fire_at, datetime) else None,
        payload=TriggerPayload(message_id=str(message_id) if message_id is not None else None),
        created_at=ensure_aware(row.created_at) if row.created_at else None,
        title=row.title,
        body=row.body,
    )


class SqlNotificationScheduler:
    """Trigger table standing in for the OS notification schedule.

    Rows are fired by the dispatcher (``app.workers.scheduler.dispatch_due``),
    which claims and deletes them once due.
    """

    async def list_scheduled(self) -> List[ScheduledTrigger]:
        triggers: List[ScheduledTrigger] = []
        async for s in get_session():
            res = await s.execute(
                select(ScheduledNotification).order_by(ScheduledNotification.created_at)
            )
            triggers = [_to_trigger(r) for r in res.scalars()]
        return triggers

    async def create(
        self,
        fires_at: datetime,
        payload: TriggerPayload,
        title: str | None = None,
        body: str | None = None,
    ) -> str:
        identifier = str(uuid4())
        async for s in get_session():
            s.add(ScheduledNotification(
                identifier=identifier,
                fire_at=_utc(fires_at),
                payload=payload.model_dump(),
                title=title,
                body=body,
                created_at=_utc(datetime.now(timezone.utc)),
            ))
            await s.commit()
        return identifier

    async def cancel(self, identifier: str) -> None:
        async for s in get_session():
            await s.execute(
                delete(ScheduledNotification).where(ScheduledNotification.identifier == identifier)
            )
            await s.commit()

    async def cancel_all(self) -> None:
        async for s in get_session():
            await s.execute(delete(ScheduledNotification))
            await s.commit()

    async def claim_due(self, now: datetime | None = None, limit: int = 100) -> List[ScheduledTrigger]:
        """Remove and return triggers whose fire time has passed."""
        cutoff = _utc(now or datetime.now(timezone.utc))
        claimed: List[ScheduledTrigger] = []
        async for s in get_session():
            res = await s.execute(
                select(ScheduledNotification)
                .where(ScheduledNotification.fire_at <= cutoff)
                .order_by(ScheduledNotification.fire_at)
                .limit(limit)
            )
            rows = list(res.scalars())
            claimed = [_to_trigger(r) for r in rows]
            if rows:
                await s.execute(
                    delete(ScheduledNotification).where(
                        ScheduledNotification.identifier.in_([r.identifier for r in rows])
                    )
                )
            await s.commit()
        return claimed


# 5.4 Preferences ------------------------------------------------------
_PREF_ROW = 1


def default_slots() -> List[TimeSlot]:
    names = [n.strip() for n in settings.DEFAULT_TIME_SLOTS.split(",") if n.strip()]
    return [TimeSlot(n) for n in names]


class SqlPreferenceStore:
    async def get(self) -> Preferences:
        prefs = Preferences(preferred_slots=default_slots(), notifications_enabled=True)
        async for s in get_session():
            row = await s.get(UserPreference, _PREF_ROW)
            if row is not None:
                slots = []
                for name in row.preferred_slots or []:
                    try:
                        slots.append(TimeSlot(name))
                    except ValueError:
                        _LOGGER.warning("Ignoring unknown stored time slot %r", name)
                prefs = Preferences(preferred_slots=slots, notifications_enabled=row.notifications_enabled)
        return prefs

    async def save(self, prefs: Preferences) -> Preferences:
        async for s in get_session():
            row = await s.get(UserPreference, _PREF_ROW)
            slots = [slot.value for slot in prefs.preferred_slots]
            if row is None:
                s.add(UserPreference(
                    pref_id=_PREF_ROW,
                    preferred_slots=slots,
                    notifications_enabled=prefs.notifications_enabled,
                ))
            else:
                row.preferred_slots = slots
                row.notifications_enabled = prefs.notifications_enabled
            await s.commit()
        return prefs

    async def get_preferred_slots(self) -> List[TimeSlot]:
        return (await self.get()).preferred_slots

    async def get_notifications_enabled(self) -> bool:
        return (await self.get()).notifications_enabled


async def dispose_engine():
    global _engine, _session_maker
    if _engine is not None:
        await _engine.dispose()
        _engine = None
    _session_maker = None
