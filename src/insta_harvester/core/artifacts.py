"""Data structures passed between the crawl driver and its collaborators."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from .models import PageType


@dataclass(frozen=True)
class WorkItem:
    """One crawl target; immutable once enqueued."""

    url: str
    page_type: PageType
    label: Optional[str] = None


@dataclass(frozen=True)
class ItemSpec:
    """Per-page snapshot of global limits plus identifiers read from the page."""

    page_type: PageType
    id: Optional[str]
    name: Optional[str] = None
    shortcode: Optional[str] = None
    limit: int = 200
    posts_until: Optional[datetime] = None
    scroll_wait_secs: float = 15
    url: Optional[str] = None

    @property
    def parent_id(self) -> str:
        """Key of the pagination state owned by this page.

        Pages that expose no identifier fall back to their own URL so they never
        share scroll state with another page.
        """

        return f"{self.page_type.value}:{self.id or self.name or self.shortcode or self.url}"


@dataclass(frozen=True)
class ParsedBatch:
    """Child entities extracted from one API response or from the initial page data."""

    entities: List[Dict[str, Any]]
    cursor: Optional[str] = None
    has_next_page: bool = False


@dataclass
class HarvestReport:
    """Counters describing the outcome of a run."""

    succeeded: int = 0
    skipped: int = 0
    retried: int = 0
    dead_lettered: int = 0
    emitted: int = 0
    invalid_sessions: int = 0
    skipped_urls: List[str] = field(default_factory=list)
    failed_urls: List[str] = field(default_factory=list)

    def to_json(self) -> str:
        return json.dumps(asdict(self), indent=4)

    def save(self, path: Path) -> None:
        path.write_text(self.to_json(), encoding="utf-8")
