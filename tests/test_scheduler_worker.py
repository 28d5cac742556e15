import random
from datetime import datetime, time, timedelta

import pytest
import pytest_asyncio

import db
from app.services.catalog import default_catalog
from app.services.ledger import SchedulingLedger
from app.services.scheduling_engine import SchedulingEngine
from app.types.message_contract import TriggerPayload
from app.workers import scheduler as scheduler_worker

from conftest import START, TZ, FrozenClock

TODAY = START.date()


@pytest_asyncio.fixture
async def sqlite_db(tmp_path, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'worker.db'}")
    await db.dispose_engine()
    await db.create_all()
    yield
    await db.dispose_engine()


@pytest.mark.asyncio
async def test_fire_due_shows_todays_banner_only(sqlite_db, monkeypatch):
    shown = []
    monkeypatch.setattr(scheduler_worker, "show_banner", lambda trig: shown.append(trig.message_id))

    device = db.SqlNotificationScheduler()
    await device.create(START - timedelta(minutes=1), TriggerPayload(message_id="10"))
    await device.create(datetime.combine(TODAY - timedelta(days=1), time(20), tzinfo=TZ), TriggerPayload(message_id="11"))
    await device.create(START + timedelta(days=1), TriggerPayload(message_id="12"))

    engine = SchedulingEngine(
        default_catalog(),
        device,
        db.SqlMessageArchive(tz=TZ),
        SchedulingLedger(db.SqlKeyValueStore()),
        tz=TZ,
        clock=FrozenClock(),
        rng=random.Random(1),
    )

    fired = await scheduler_worker.fire_due(engine, device)

    assert [t.message_id for t in fired] == ["10"]
    assert shown == ["10"]
    assert (await engine.today_record()).message_id == "10"
    remaining = await device.list_scheduled()
    assert [t.message_id for t in remaining] == ["12"]


@pytest.mark.asyncio
async def test_fire_due_shows_one_banner_for_two_due_triggers_today(sqlite_db, monkeypatch):
    shown = []
    monkeypatch.setattr(scheduler_worker, "show_banner", lambda trig: shown.append(trig.message_id))

    device = db.SqlNotificationScheduler()
    await device.create(START - timedelta(minutes=5), TriggerPayload(message_id="10"))
    await device.create(START - timedelta(minutes=1), TriggerPayload(message_id="12"))

    engine = SchedulingEngine(
        default_catalog(),
        device,
        db.SqlMessageArchive(tz=TZ),
        SchedulingLedger(db.SqlKeyValueStore()),
        tz=TZ,
        clock=FrozenClock(),
        rng=random.Random(1),
    )

    fired = await scheduler_worker.fire_due(engine, device)

    assert shown == ["10"]
    assert [t.message_id for t in fired] == ["10"]
    assert (await engine.today_record()).message_id == "10"
    assert await device.list_scheduled() == []


@pytest.mark.asyncio
async def test_fire_due_stays_silent_once_today_is_delivered(sqlite_db, monkeypatch):
    shown = []
    monkeypatch.setattr(scheduler_worker, "show_banner", lambda trig: shown.append(trig.message_id))

    device = db.SqlNotificationScheduler()
    engine = SchedulingEngine(
        default_catalog(),
        device,
        db.SqlMessageArchive(tz=TZ),
        SchedulingLedger(db.SqlKeyValueStore()),
        tz=TZ,
        clock=FrozenClock(),
        rng=random.Random(1),
    )
    await engine.on_notification_event("7")
    await device.create(START - timedelta(minutes=1), TriggerPayload(message_id="12"))

    fired = await scheduler_worker.fire_due(engine, device)

    assert fired == []
    assert shown == []
    assert (await engine.today_record()).message_id == "7"
