import random
from datetime import date, datetime, time, timedelta

import pytest
import pytest_asyncio

import db
from db.db import ScheduledNotification, get_session
from app.services.catalog import default_catalog
from app.services.ledger import SchedulingLedger
from app.services.scheduling_engine import SchedulingEngine
from app.types.message_contract import Category, DeliveredRecord, Preferences, TimeSlot, TriggerPayload

from conftest import START, TZ, FrozenClock

TODAY = START.date()


@pytest_asyncio.fixture
async def sqlite_db(tmp_path, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'mindping.db'}")
    await db.dispose_engine()
    await db.create_all()
    yield
    await db.dispose_engine()


def _record(message_id: str, at: datetime) -> DeliveredRecord:
    return DeliveredRecord(message_id=message_id, content=f"msg {message_id}", category=Category.WISDOM, received_at=at)


@pytest.mark.asyncio
async def test_archive_put_and_get_for_date(sqlite_db):
    archive = db.SqlMessageArchive(tz=TZ)

    stored = await archive.put(_record("1", START))

    found = await archive.get_for_date(TODAY)
    assert found == stored
    assert found.received_at == START
    assert await archive.get_for_date(TODAY + timedelta(days=1)) is None


@pytest.mark.asyncio
async def test_archive_overwrite_keeps_flags(sqlite_db):
    archive = db.SqlMessageArchive(tz=TZ)
    await archive.put(_record("1", START))
    await archive.toggle_favorite("1")
    await archive.mark_read("1")

    updated = await archive.put(_record("2", START + timedelta(hours=1)))

    assert updated.message_id == "2"
    assert updated.is_favorite and updated.is_read
    assert len(await archive.list_all()) == 1


@pytest.mark.asyncio
async def test_archive_retention_keeps_most_recent(sqlite_db):
    archive = db.SqlMessageArchive(tz=TZ, retention=3)
    for offset in range(5):
        await archive.put(_record(str(offset), START - timedelta(days=offset)))

    kept = await archive.list_all()

    assert [r.message_id for r in kept] == ["0", "1", "2"]


@pytest.mark.asyncio
async def test_toggle_favorite_unknown_returns_empty(sqlite_db):
    archive = db.SqlMessageArchive(tz=TZ)
    assert await archive.toggle_favorite("missing") == []


@pytest.mark.asyncio
async def test_ledger_over_sql_storage(sqlite_db):
    ledger = SchedulingLedger(db.SqlKeyValueStore())

    await ledger.assign(TODAY, "5")
    await ledger.assign(TODAY + timedelta(days=1), "6")
    await ledger.mark_ran(TODAY)

    state = await ledger.load()
    assert state.last_run_date == TODAY
    assert state.assigned == {TODAY: "5", TODAY + timedelta(days=1): "6"}


@pytest.mark.asyncio
async def test_notification_table_create_list_cancel(sqlite_db):
    device = db.SqlNotificationScheduler()
    fires_at = datetime.combine(TODAY, time(19, 30), tzinfo=TZ)

    ident = await device.create(fires_at, TriggerPayload(message_id="3"), title="MindPing", body="hello")
    listed = await device.list_scheduled()

    assert [t.identifier for t in listed] == [ident]
    assert listed[0].fires_at == fires_at
    assert listed[0].message_id == "3"
    assert listed[0].body == "hello"

    await device.cancel(ident)
    assert await device.list_scheduled() == []


@pytest.mark.asyncio
async def test_missing_fire_time_and_payload_are_reported_as_none(sqlite_db):
    async for s in get_session():
        s.add(ScheduledNotification(identifier="broken", fire_at=None, payload=None, created_at=START))
        await s.commit()

    listed = await db.SqlNotificationScheduler().list_scheduled()

    assert listed[0].fires_at is None
    assert listed[0].message_id is None


@pytest.mark.asyncio
async def test_claim_due_removes_only_due_rows(sqlite_db):
    device = db.SqlNotificationScheduler()
    await device.create(START - timedelta(minutes=5), TriggerPayload(message_id="1"))
    later = await device.create(START + timedelta(hours=3), TriggerPayload(message_id="2"))

    claimed = await device.claim_due(START)

    assert [t.message_id for t in claimed] == ["1"]
    assert [t.identifier for t in await device.list_scheduled()] == [later]


@pytest.mark.asyncio
async def test_preferences_default_then_saved(sqlite_db):
    prefs = db.SqlPreferenceStore()

    assert await prefs.get_preferred_slots() == [TimeSlot.FORENOON, TimeSlot.AFTERNOON, TimeSlot.EVENING]
    assert await prefs.get_notifications_enabled() is True

    await prefs.save(Preferences(preferred_slots=[TimeSlot.NIGHT], notifications_enabled=False))

    stored = await prefs.get()
    assert stored.preferred_slots == [TimeSlot.NIGHT]
    assert stored.notifications_enabled is False


@pytest.mark.asyncio
async def test_engine_against_sql_stores(sqlite_db):
    engine = SchedulingEngine(
        default_catalog(),
        db.SqlNotificationScheduler(),
        db.SqlMessageArchive(tz=TZ),
        SchedulingLedger(db.SqlKeyValueStore()),
        tz=TZ,
        clock=FrozenClock(),
        rng=random.Random(5),
    )

    first = await engine.ensure_schedule([TimeSlot.EVENING])
    second = await engine.ensure_schedule([TimeSlot.EVENING])

    assert first.completed and len(first.created) == 7
    assert second.skipped
    triggers = await db.SqlNotificationScheduler().list_scheduled()
    days = sorted(t.fires_at.astimezone(TZ).date() for t in triggers)
    assert days == [TODAY + timedelta(days=i) for i in range(1, 8)]
    assert (await engine.today_record()).message_id == first.today.message_id
