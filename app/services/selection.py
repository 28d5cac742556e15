"""Pure selection of the next message to deliver.

Nothing here touches storage; callers pass in what has already been delivered
or scheduled and persist the returned choice themselves.
"""

from __future__ import annotations

import logging
import random
from typing import AbstractSet, Iterable, List, Optional

from app.services.catalog import MessageCatalog
from app.types.errors import EmptyCatalogError
from app.types.message_contract import Category, Message

_LOGGER = logging.getLogger(__name__)


def candidate_pool(
    catalog: MessageCatalog,
    delivered_ids: AbstractSet[str],
    exclude_ids: AbstractSet[str],
    last_id: Optional[str] = None,
    last_category: Optional[Category] = None,
) -> List[Message]:
    """Messages eligible for the next delivery, narrowed step by step.

    Each narrowing step (recency, previous id, previous category) is applied
    only when it leaves at least one candidate.
    """
    everything = catalog.all()
    if not everything:
        raise EmptyCatalogError("message catalog is empty")

    pool = [m for m in everything if m.id not in delivered_ids and m.id not in exclude_ids]
    if not pool:
        # Recency window exhausted: start a new cycle over everything not pending.
        _LOGGER.info("Recency window exhausted (%d messages); resetting", len(everything))
        pool = [m for m in everything if m.id not in exclude_ids]
    if not pool:
        # Every message is pending somewhere; repeats are unavoidable.
        pool = everything

    if last_id is not None:
        narrowed = [m for m in pool if m.id != last_id]
        if narrowed:
            pool = narrowed

    if last_category is not None:
        narrowed = [m for m in pool if m.category != last_category]
        if narrowed:
            pool = narrowed

    return pool


def select_message(
    catalog: MessageCatalog,
    delivered_ids: Iterable[str] = (),
    exclude_ids: Iterable[str] = (),
    last_id: Optional[str] = None,
    last_category: Optional[Category] = None,
    rng: Optional[random.Random] = None,
) -> Message:
    """Return a uniformly random message from :func:`candidate_pool`."""
    pool = candidate_pool(
        catalog,
        frozenset(delivered_ids),
        frozenset(exclude_ids),
        last_id=last_id,
        last_category=last_category,
    )
    return (rng or random).choice(pool)
