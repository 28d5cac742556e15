import asyncio
import json
import random
from datetime import date, datetime, timedelta
from types import SimpleNamespace
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo

import pytest

from app.services.catalog import MessageCatalog
from app.services.ledger import SchedulingLedger
from app.services.scheduling_engine import SchedulingEngine
from app.types.message_contract import (
    Category,
    DeliveredRecord,
    Message,
    ScheduledTrigger,
    TriggerPayload,
)
from app.utils.dates import local_date

TZ = ZoneInfo("Asia/Seoul")
START = datetime(2026, 10, 19, 10, 0, tzinfo=TZ)


class FrozenClock:
    def __init__(self, now: datetime = START):
        self.current = now

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current = self.current + timedelta(**kwargs)


class FakeScheduler:
    """In-memory notification schedule that yields to the loop on every call."""

    def __init__(self):
        self.triggers: Dict[str, ScheduledTrigger] = {}
        self.cancelled: List[str] = []
        self.create_error: Optional[Exception] = None
        self._seq = 0

    def inject(
        self,
        identifier: str,
        fires_at: Optional[datetime],
        message_id: Optional[str],
        created_at: Optional[datetime] = None,
    ) -> None:
        self.triggers[identifier] = ScheduledTrigger(
            identifier=identifier,
            fires_at=fires_at,
            payload=TriggerPayload(message_id=message_id),
            created_at=created_at,
        )

    def by_date(self, tz=TZ) -> Dict[date, List[ScheduledTrigger]]:
        out: Dict[date, List[ScheduledTrigger]] = {}
        for trig in self.triggers.values():
            if trig.fires_at is not None:
                out.setdefault(local_date(trig.fires_at, tz), []).append(trig)
        return out

    async def list_scheduled(self) -> List[ScheduledTrigger]:
        await asyncio.sleep(0)
        return list(self.triggers.values())

    async def cancel(self, identifier: str) -> None:
        await asyncio.sleep(0)
        self.triggers.pop(identifier, None)
        self.cancelled.append(identifier)

    async def create(self, fires_at, payload, title=None, body=None) -> str:
        await asyncio.sleep(0)
        if self.create_error is not None:
            raise self.create_error
        self._seq += 1
        identifier = f"n{self._seq}"
        self.triggers[identifier] = ScheduledTrigger(
            identifier=identifier, fires_at=fires_at, payload=payload, title=title, body=body,
        )
        return identifier


class MemoryArchive:
    def __init__(self, tz=TZ):
        self.tz = tz
        self.records: Dict[date, DeliveredRecord] = {}
        self.puts = 0

    async def get_for_date(self, day: date) -> Optional[DeliveredRecord]:
        await asyncio.sleep(0)
        return self.records.get(day)

    async def put(self, record: DeliveredRecord) -> DeliveredRecord:
        await asyncio.sleep(0)
        self.puts += 1
        day = local_date(record.received_at, self.tz)
        existing = self.records.get(day)
        if existing is not None:
            record = record.model_copy(
                update={"is_read": existing.is_read, "is_favorite": existing.is_favorite}
            )
        self.records[day] = record
        return record

    async def list_all(self) -> List[DeliveredRecord]:
        await asyncio.sleep(0)
        return sorted(self.records.values(), key=lambda r: r.received_at, reverse=True)

    async def reset(self) -> None:
        self.records.clear()


class MemoryKeyValueStore:
    """JSON round-trips every value, like a real persisted store."""

    def __init__(self):
        self.data: Dict[str, str] = {}

    async def get(self, key: str) -> Optional[Any]:
        raw = self.data.get(key)
        return json.loads(raw) if raw is not None else None

    async def set(self, key: str, value: Any) -> None:
        self.data[key] = json.dumps(value)


def _catalog(entries):
    return MessageCatalog(Message(id=i, category=Category(c), content=f"message {i}") for i, c in entries)


@pytest.fixture
def catalog():
    cats = ["comfort", "wisdom", "question"]
    return _catalog([(str(i), cats[i % 3]) for i in range(1, 16)])


@pytest.fixture
def abc_catalog():
    return _catalog([("A", "comfort"), ("B", "wisdom"), ("C", "comfort")])


@pytest.fixture
def make_engine(catalog):
    def _make(cat: Optional[MessageCatalog] = None, seed: int = 7, scheduler=None, **kwargs):
        clock = FrozenClock()
        parts = SimpleNamespace(
            clock=clock,
            scheduler=FakeScheduler(),
            archive=MemoryArchive(),
            kv=MemoryKeyValueStore(),
        )
        parts.ledger = SchedulingLedger(parts.kv)
        parts.engine = SchedulingEngine(
            cat or catalog,
            scheduler or parts.scheduler,
            parts.archive,
            parts.ledger,
            tz=TZ,
            clock=clock,
            rng=random.Random(seed),
            **kwargs,
        )
        return parts

    return _make
