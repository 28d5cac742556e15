"""Local-calendar helpers: "today", date of an instant, random slot instants."""

from __future__ import annotations

import random
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Optional
from zoneinfo import ZoneInfo

from app.types.message_contract import TimeSlot
from config import settings


def local_zone(name: Optional[str] = None) -> ZoneInfo:
    return ZoneInfo(name or settings.DEFAULT_TIMEZONE)


def ensure_aware(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; everything is stored as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def local_date(instant: datetime, tz: tzinfo) -> date:
    return ensure_aware(instant).astimezone(tz).date()


def random_instant_in_slot(
    slot: TimeSlot,
    day: date,
    tz: tzinfo,
    rng: Optional[random.Random] = None,
) -> datetime:
    """Uniformly random instant inside ``slot``'s hour range on ``day``."""
    start_hour, end_hour = slot.hours
    start = datetime.combine(day, time(start_hour), tzinfo=tz)
    offset = (rng or random).randrange((end_hour - start_hour) * 3600)
    return start + timedelta(seconds=offset)
