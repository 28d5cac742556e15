"""Durable record of engine decisions on top of a key-value storage.

The ledger keeps two keys: the date of the last completed run and the map of
date → assigned message id. It is the source of truth when the notification
schedule and the archive disagree.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Dict, Optional, Protocol

from app.types.message_contract import LedgerState

_LOGGER = logging.getLogger(__name__)

LAST_RUN_KEY = "last_run_date"
ASSIGNED_KEY = "assigned_by_date"


class KeyValueStorage(Protocol):
    async def get(self, key: str) -> Optional[Any]: ...

    async def set(self, key: str, value: Any) -> None: ...


class SchedulingLedger:
    def __init__(self, storage: KeyValueStorage):
        self._storage = storage

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    async def load(self) -> LedgerState:
        return LedgerState(
            last_run_date=await self.last_run_date(),
            assigned=await self.assignments(),
        )

    async def last_run_date(self) -> Optional[date]:
        raw = await self._storage.get(LAST_RUN_KEY)
        if not raw:
            return None
        try:
            return date.fromisoformat(raw)
        except (TypeError, ValueError):
            _LOGGER.warning("Ignoring malformed ledger %s=%r", LAST_RUN_KEY, raw)
            return None

    async def assignments(self) -> Dict[date, str]:
        raw = await self._storage.get(ASSIGNED_KEY) or {}
        out: Dict[date, str] = {}
        for key, message_id in raw.items():
            try:
                out[date.fromisoformat(key)] = str(message_id)
            except (TypeError, ValueError):
                _LOGGER.warning("Dropping malformed ledger date %r", key)
        return out

    async def assigned_for(self, day: date) -> Optional[str]:
        return (await self.assignments()).get(day)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    async def mark_ran(self, day: date) -> None:
        await self._storage.set(LAST_RUN_KEY, day.isoformat())

    async def assign(self, day: date, message_id: str) -> None:
        current = await self.assignments()
        current[day] = message_id
        await self._save_assignments(current)

    async def clear_after(self, day: date) -> None:
        """Forget assignments strictly after ``day``; ``last_run_date`` stays."""
        current = await self.assignments()
        await self._save_assignments({d: m for d, m in current.items() if d <= day})

    async def prune_before(self, day: date) -> None:
        current = await self.assignments()
        kept = {d: m for d, m in current.items() if d >= day}
        if len(kept) != len(current):
            await self._save_assignments(kept)

    async def reset(self) -> None:
        await self._storage.set(LAST_RUN_KEY, None)
        await self._storage.set(ASSIGNED_KEY, {})

    async def _save_assignments(self, assigned: Dict[date, str]) -> None:
        await self._storage.set(
            ASSIGNED_KEY,
            {d.isoformat(): m for d, m in sorted(assigned.items())},
        )
