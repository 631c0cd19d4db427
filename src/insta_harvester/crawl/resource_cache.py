"""In-memory cache for static script bundles.

Request interception disables the browser's own HTTP cache, so every page
would download the same bundles again. Entries are written once per URL and
kept for the life of the process.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional

STATIC_BUNDLE_MARKER = "instagram.com/static/bundles"


def is_cacheable(url: str) -> bool:
    return STATIC_BUNDLE_MARKER in url


@dataclass(frozen=True)
class CacheEntry:
    body: bytes
    headers: Dict[str, str] = field(default_factory=dict)
    status: int = 200

    @property
    def is_servable(self) -> bool:
        return isinstance(self.body, (bytes, bytearray)) and 200 <= self.status < 300


class ResourceCache:
    """First writer wins; later writes for the same URL are ignored."""

    def __init__(self) -> None:
        self._entries: Dict[str, CacheEntry] = {}

    def get(self, url: str) -> Optional[CacheEntry]:
        return self._entries.get(url)

    def put(self, url: str, entry: CacheEntry) -> bool:
        """Stores ``entry`` unless ``url`` is cached already; returns whether it was stored."""

        return self._entries.setdefault(url, entry) is entry

    def __contains__(self, url: object) -> bool:
        return url in self._entries

    def __len__(self) -> int:
        return len(self._entries)
