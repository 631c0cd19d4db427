"""Helper utilities used by the crawl modules."""

from __future__ import annotations

import importlib
from typing import Any, Callable, Iterable, List, Optional, Protocol, Sequence
from urllib.parse import urlparse

from ..core.artifacts import WorkItem
from ..core.errors import ConfigurationError
from ..core.models import POST_DETAIL_LABEL, CookieParam, PageType, ResultType

SITE_DOMAIN = "instagram.com"
COOKIE_DOMAIN = f".{SITE_DOMAIN}"

_POST_SEGMENTS = ("p", "reel", "tv")


def normalize_site_cookies(cookies: Optional[Sequence[dict]]) -> List[CookieParam]:
    """Keeps site cookies only and pins them to the parent domain.

    Cookies exported from a browser carry a mix of ``www.`` and bare domains;
    the browser context only sends them everywhere when the domain is
    ``.instagram.com`` and a path is present.
    """

    if not cookies:
        return []

    normalized: List[CookieParam] = []
    for cookie in cookies:
        name = cookie.get("name")
        if not name or cookie.get("value") is None:
            continue
        domain = str(cookie.get("domain") or SITE_DOMAIN)
        if SITE_DOMAIN not in domain:
            continue

        entry: CookieParam = {
            "name": name,
            "value": str(cookie["value"]),
            "domain": COOKIE_DOMAIN,
            "path": cookie.get("path") or "/",
        }
        expires = cookie.get("expires", cookie.get("expirationDate"))
        if isinstance(expires, (int, float)) and expires > 0:
            entry["expires"] = float(expires)
        if "httpOnly" in cookie:
            entry["httpOnly"] = bool(cookie["httpOnly"])
        if "secure" in cookie:
            entry["secure"] = bool(cookie["secure"])
        same_site = cookie.get("sameSite")
        if same_site in {"Strict", "Lax", "None"}:
            entry["sameSite"] = same_site
        normalized.append(entry)

    return normalized


def _path_segments(url: str) -> List[str]:
    return [segment for segment in urlparse(url).path.split("/") if segment]


def page_type_from_url(url: str) -> PageType:
    segments = _path_segments(url)
    if len(segments) >= 2 and segments[0] == "explore":
        if segments[1] == "tags":
            return PageType.HASHTAG
        if segments[1] == "locations":
            return PageType.PLACE
    if segments and segments[0] == "stories":
        return PageType.STORY
    if segments and segments[0] in _POST_SEGMENTS:
        return PageType.POST
    if len(segments) >= 2 and segments[1] in _POST_SEGMENTS:
        # /<username>/p/<shortcode>/
        return PageType.POST
    return PageType.PROFILE


def shortcode_from_url(url: str) -> Optional[str]:
    segments = _path_segments(url)
    for index, segment in enumerate(segments[:-1]):
        if segment in _POST_SEGMENTS:
            return segments[index + 1]
    return None


def build_work_items(urls: Iterable[str], results_type: Optional[str]) -> List[WorkItem]:
    """Turns direct URLs into work items, dropping duplicates but keeping order."""

    items: List[WorkItem] = []
    seen: set[str] = set()
    for raw in urls:
        url = (raw or "").strip()
        if not url or url in seen:
            continue
        seen.add(url)

        page_type = page_type_from_url(url)
        label = None
        if page_type is PageType.POST and results_type in {ResultType.POSTS.value, ResultType.DETAILS.value}:
            label = POST_DETAIL_LABEL
        items.append(WorkItem(url=url, page_type=page_type, label=label))
    return items


class UrlDiscovery(Protocol):
    """Finds page URLs for a search query; used when no direct URLs are given."""

    def discover(self, results_type: Optional[str]) -> List[str]: ...


def collect_work_items(
    direct_urls: Sequence[str],
    results_type: Optional[str],
    discovery: Optional[UrlDiscovery] = None,
) -> List[WorkItem]:
    urls = list(direct_urls)
    if not urls and discovery is not None:
        urls = discovery.discover(results_type)
    return build_work_items(urls, results_type)


def resolve_hook(path: Optional[str]) -> Optional[Callable[..., Any]]:
    """Loads a ``package.module:function`` reference given in the run input."""

    if not path:
        return None
    module_name, _, attribute = path.partition(":")
    if not module_name or not attribute:
        raise ConfigurationError(f"Hook '{path}' must look like 'package.module:function'.")
    try:
        hook = getattr(importlib.import_module(module_name), attribute)
    except (ImportError, AttributeError) as exc:
        raise ConfigurationError(f"Could not load hook '{path}': {exc}") from exc
    if not callable(hook):
        raise ConfigurationError(f"Hook '{path}' is not callable.")
    return hook
