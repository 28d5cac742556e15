"""Static, read-only catalog of comfort messages.

The catalog is loaded once from a JSON asset and never mutated afterwards.
"""

from __future__ import annotations

import json
import logging
from functools import lru_cache
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional

from app.types.message_contract import Message
from config import settings

_LOGGER = logging.getLogger(__name__)

_PROJECT_ROOT = Path(__file__).resolve().parents[2]


class MessageCatalog:
    """Lookup by id and enumeration, preserving the asset order."""

    def __init__(self, messages: Iterable[Message]):
        self._messages: List[Message] = []
        self._by_id: Dict[str, Message] = {}
        for msg in messages:
            if msg.id in self._by_id:
                _LOGGER.warning("Duplicate catalog id %s ignored", msg.id)
                continue
            self._messages.append(msg)
            self._by_id[msg.id] = msg

    def get(self, message_id: Optional[str]) -> Optional[Message]:
        if message_id is None:
            return None
        return self._by_id.get(message_id)

    def all(self) -> List[Message]:
        return list(self._messages)

    def ids(self) -> List[str]:
        return [m.id for m in self._messages]

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._by_id

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(self._messages)

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------
    @classmethod
    def from_file(cls, path: Path) -> "MessageCatalog":
        raw = json.loads(path.read_text(encoding="utf-8"))
        return cls(Message.model_validate(item) for item in raw)


def _asset_path() -> Path:
    asset_dir = Path(settings.CATALOG_ASSET_DIR)
    if not asset_dir.is_absolute():
        asset_dir = _PROJECT_ROOT / asset_dir
    return asset_dir / settings.CATALOG_FILE


@lru_cache(maxsize=1)
def default_catalog() -> MessageCatalog:
    """Catalog shipped with the app (cached for the process lifetime)."""
    catalog = MessageCatalog.from_file(_asset_path())
    _LOGGER.info("Loaded %d catalog messages", len(catalog))
    return catalog
