"""Per-navigation request gate: block, serve from cache, or let through."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page, Route

from ..core.models import PageType, ResultType
from .resource_cache import STATIC_BUNDLE_MARKER, ResourceCache

logger = logging.getLogger(__name__)

BLOCKED_RESOURCE_TYPES = frozenset({"image", "media", "font", "texttrack", "manifest"})

BLOCKED_URL_INCLUDES = (
    "google-analytics",
    "googletagmanager",
    "doubleclick",
    "connect.facebook.net",
    "scorecardresearch",
    "/logging_client_events",
    "/falco",
    "/ajax/bz",
    "/qp/batch_fetch_web",
)

BLOCKED_URL_SUFFIXES = (".ico", ".png", ".mp4", ".avi", ".webp", ".jpg", ".jpeg", ".gif", ".svg")

# Bundles the page needs to fire its own pagination requests while scrolling.
SCROLL_SCRIPT_INCLUDES = (
    "/Consumer.js",
    "/ConsumerLibCommons.js",
    "/ConsumerUICommons.js",
    "/ConsumerAsyncCommons.js",
    "/Vendor.js",
    "/en_US.js",
    "/ProfilePageContainer.js",
    "/PostPageContainer.js",
    "/PostPageComments.js",
    "/FeedSidebarContainer.js",
)


class Verdict(str, Enum):
    BLOCK = "block"
    SERVE_CACHED = "serve_cached"
    PASS = "pass"


@dataclass(frozen=True)
class BlockingPolicy:
    """Which requests to keep away from the network.

    ``aggressive`` mode also drops script bundles. Scrolling result types keep
    the bundles listed in ``scroll_script_includes``; hashtag and place pages
    keep every bundle because their scroll handlers are spread across more
    chunks than the list covers.
    """

    blocked_resource_types: frozenset[str] = BLOCKED_RESOURCE_TYPES
    blocked_url_includes: tuple[str, ...] = BLOCKED_URL_INCLUDES
    blocked_url_suffixes: tuple[str, ...] = BLOCKED_URL_SUFFIXES
    bundle_marker: str = STATIC_BUNDLE_MARKER
    scroll_script_includes: tuple[str, ...] = SCROLL_SCRIPT_INCLUDES
    pages_needing_all_bundles: frozenset[PageType] = field(
        default_factory=lambda: frozenset({PageType.HASHTAG, PageType.PLACE})
    )
    scrolling_result_types: frozenset[str] = field(
        default_factory=lambda: frozenset({ResultType.POSTS.value, ResultType.COMMENTS.value})
    )

    def is_bundle(self, url: str) -> bool:
        return self.bundle_marker in url

    def has_blocked_extension(self, url: str) -> bool:
        path = url.split("?", 1)[0].lower()
        return path.endswith(self.blocked_url_suffixes)

    def is_tracking(self, url: str) -> bool:
        return any(fragment in url for fragment in self.blocked_url_includes)

    def keeps_bundle(self, url: str, page_type: Optional[PageType], results_type: Optional[str]) -> bool:
        """Whether aggressive mode lets ``url`` through."""

        if page_type is None:
            return True
        if results_type not in self.scrolling_result_types:
            return False
        if page_type in self.pages_needing_all_bundles:
            return True
        return any(fragment in url for fragment in self.scroll_script_includes)


class InterceptionGate:
    """Decides the fate of every request a page makes."""

    def __init__(
        self,
        cache: ResourceCache,
        *,
        page_type: Optional[PageType],
        results_type: Optional[str],
        aggressive: bool = False,
        check_proxy_ip: bool = False,
        policy: Optional[BlockingPolicy] = None,
    ) -> None:
        self.cache = cache
        self.page_type = page_type
        self.results_type = results_type
        self.aggressive = aggressive
        self.check_proxy_ip = check_proxy_ip
        self.policy = policy or BlockingPolicy()

    def classify(self, url: str, resource_type: str) -> Verdict:
        policy = self.policy
        if not self.check_proxy_ip:
            if resource_type in policy.blocked_resource_types:
                return Verdict.BLOCK
            if policy.has_blocked_extension(url) or policy.is_tracking(url):
                return Verdict.BLOCK

        if not policy.is_bundle(url):
            return Verdict.PASS

        if self.aggressive and not policy.keeps_bundle(url, self.page_type, self.results_type):
            return Verdict.BLOCK

        if url in self.cache:
            return Verdict.SERVE_CACHED
        return Verdict.PASS

    async def handle(self, route: Route) -> None:
        request = route.request
        url = request.url
        verdict = self.classify(url, request.resource_type)

        if verdict is Verdict.BLOCK:
            logger.debug("Aborting url: %s", url)
            await route.abort()
            return

        if verdict is Verdict.SERVE_CACHED and await self._serve_cached(route, url):
            return

        await route.continue_()

    async def install(self, page: Page) -> None:
        await page.route("**/*", self.handle)

    async def _serve_cached(self, route: Route, url: str) -> bool:
        entry = self.cache.get(url)
        if entry is None or not entry.is_servable:
            logger.debug("Cached entry for %s is not servable, passing through", url)
            return False
        try:
            await route.fulfill(status=entry.status, headers=dict(entry.headers), body=bytes(entry.body))
        except PlaywrightError:
            logger.debug("Serving %s from cache failed, passing through", url, exc_info=True)
            return False
        logger.debug("Has cache: %s", url)
        return True
