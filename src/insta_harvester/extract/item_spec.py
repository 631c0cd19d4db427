"""Builds the per-page ItemSpec from the page's initial data."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from ..core.artifacts import ItemSpec
from ..core.errors import InitialDataTimeout
from ..core.models import PageType

ENTRY_KEYS = {
    PageType.PROFILE: "ProfilePage",
    PageType.POST: "PostPage",
    PageType.HASHTAG: "TagPage",
    PageType.PLACE: "LocationsPage",
    PageType.STORY: "StoriesPage",
}


def first_entry(entry_data: Dict[str, Any], key: str) -> Dict[str, Any]:
    pages = entry_data.get(key) or []
    if isinstance(pages, list) and pages and isinstance(pages[0], dict):
        return pages[0]
    return {}


def page_graphql(entry_data: Dict[str, Any], page_type: PageType) -> Dict[str, Any]:
    entry = first_entry(entry_data, ENTRY_KEYS[page_type])
    return entry.get("graphql") or entry.get("data") or entry


def post_media(entry_data: Dict[str, Any], additional_data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """The post page keeps its media either in entry data or in ``__additionalData``."""

    media = page_graphql(entry_data, PageType.POST).get("shortcode_media")
    if not media and additional_data:
        media = (additional_data.get("graphql") or {}).get("shortcode_media")
    return media or {}


def build_item_spec(
    entry_data: Dict[str, Any],
    additional_data: Optional[Dict[str, Any]],
    page_type: PageType,
    *,
    limit: int,
    posts_until: Optional[datetime] = None,
    scroll_wait_secs: float = 15,
    url: Optional[str] = None,
) -> ItemSpec:
    item_id: Optional[str] = None
    name: Optional[str] = None
    shortcode: Optional[str] = None

    if page_type is PageType.POST:
        media = post_media(entry_data, additional_data)
        item_id = media.get("id")
        shortcode = media.get("shortcode")
        name = (media.get("owner") or {}).get("username")
    elif page_type is PageType.STORY:
        user = first_entry(entry_data, ENTRY_KEYS[page_type]).get("user") or {}
        item_id = user.get("id")
        name = user.get("username")
    else:
        graphql = page_graphql(entry_data, page_type)
        node_key = {PageType.PROFILE: "user", PageType.HASHTAG: "hashtag", PageType.PLACE: "location"}[page_type]
        node = graphql.get(node_key) or {}
        item_id = node.get("id")
        name = node.get("username") or node.get("name")

    if item_id is None and not name and not shortcode and not url:
        raise InitialDataTimeout("Page data has no identifier for this page, trying again.")

    return ItemSpec(
        page_type=page_type,
        id=str(item_id) if item_id is not None else None,
        name=name,
        shortcode=shortcode,
        limit=limit,
        posts_until=posts_until,
        scroll_wait_secs=scroll_wait_secs,
        url=url,
    )
