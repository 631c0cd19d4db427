"""Resumable per-parent scroll state.

Every logical parent (a profile, a hashtag, a post whose comments are being
read) gets one :class:`ScrollState`. The set of emitted child identifiers only
ever grows, which is what keeps a re-fetched scroll position or a restarted
process from emitting the same child twice.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, Optional, Protocol

logger = logging.getLogger(__name__)

STATE_KEY = "STATE-SCROLLING"


class KeyValueStore(Protocol):
    def load(self, key: str) -> Optional[Any]: ...

    def save(self, key: str, value: Any) -> None: ...


@dataclass
class ScrollState:
    cursor: Optional[str] = None
    emitted_ids: set[str] = field(default_factory=set)
    count: int = 0
    has_next_page: bool = True

    def has_emitted(self, child_id: str) -> bool:
        return child_id in self.emitted_ids

    def record(self, child_id: str) -> bool:
        """Returns ``True`` the first time ``child_id`` is seen."""

        if child_id in self.emitted_ids:
            return False
        self.emitted_ids.add(child_id)
        self.count += 1
        return True

    def advance(self, cursor: Optional[str], has_next_page: bool) -> None:
        if cursor:
            self.cursor = cursor
        self.has_next_page = has_next_page

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cursor": self.cursor,
            "ids": sorted(self.emitted_ids),
            "count": self.count,
            "hasNextPage": self.has_next_page,
        }

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "ScrollState":
        ids = {str(value) for value in raw.get("ids", [])}
        return cls(
            cursor=raw.get("cursor"),
            emitted_ids=ids,
            count=max(int(raw.get("count", 0)), len(ids)),
            has_next_page=bool(raw.get("hasNextPage", True)),
        )


class PaginationStore:
    """Maps parent ids to their :class:`ScrollState` and persists the map."""

    def __init__(self, store: KeyValueStore, key: str = STATE_KEY) -> None:
        self._store = store
        self._key = key
        self._states: Dict[str, ScrollState] = {}

    @classmethod
    def load(cls, store: KeyValueStore, key: str = STATE_KEY) -> "PaginationStore":
        instance = cls(store, key)
        raw = store.load(key) or {}
        if not isinstance(raw, dict):
            logger.warning("Ignoring scroll state with unexpected shape under %s", key)
            raw = {}
        for parent_id, state in raw.items():
            if isinstance(state, dict):
                instance._states[parent_id] = ScrollState.from_dict(state)
        if instance._states:
            logger.info("Restored scroll state for %s parents", len(instance._states))
        return instance

    def get(self, parent_id: str) -> ScrollState:
        return self._states.setdefault(parent_id, ScrollState())

    def peek(self, parent_id: str) -> Optional[ScrollState]:
        return self._states.get(parent_id)

    def persist(self) -> None:
        self._store.save(self._key, {parent_id: state.to_dict() for parent_id, state in self._states.items()})

    def __contains__(self, parent_id: object) -> bool:
        return parent_id in self._states

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._states))

    def __len__(self) -> int:
        return len(self._states)
