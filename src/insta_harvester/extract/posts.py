"""Post records from profile, hashtag and place feeds."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ..core.artifacts import ItemSpec, ParsedBatch
from ..core.models import PageType
from .item_spec import page_graphql, post_media

POST_URL = "https://www.instagram.com/p/{shortcode}/"

FEED_PATHS = {
    PageType.PROFILE: ("user", "edge_owner_to_timeline_media"),
    PageType.HASHTAG: ("hashtag", "edge_hashtag_to_media"),
    PageType.PLACE: ("location", "edge_location_to_media"),
}

_POST_TYPES = {"GraphImage": "Image", "GraphVideo": "Video", "GraphSidecar": "Sidecar"}


def _edge_count(node: Dict[str, Any], *keys: str) -> Optional[int]:
    for key in keys:
        edge = node.get(key)
        if isinstance(edge, dict) and "count" in edge:
            return edge["count"]
    return None


def _caption(node: Dict[str, Any]) -> str:
    edges = (node.get("edge_media_to_caption") or {}).get("edges") or []
    if edges:
        return (edges[0].get("node") or {}).get("text") or ""
    return ""


def _iso_timestamp(value: Any) -> Optional[str]:
    if not isinstance(value, (int, float)):
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc).isoformat()


def format_post(node: Dict[str, Any], item_spec: Optional[ItemSpec] = None) -> Dict[str, Any]:
    shortcode = node.get("shortcode")
    owner = node.get("owner") or {}
    location = node.get("location") or {}
    record: Dict[str, Any] = {
        "id": node.get("id"),
        "type": _POST_TYPES.get(node.get("__typename", ""), node.get("__typename")),
        "shortCode": shortcode,
        "caption": _caption(node),
        "url": POST_URL.format(shortcode=shortcode) if shortcode else None,
        "commentsCount": _edge_count(node, "edge_media_to_comment", "edge_media_preview_comment", "edge_media_to_parent_comment"),
        "likesCount": _edge_count(node, "edge_liked_by", "edge_media_preview_like"),
        "timestamp": _iso_timestamp(node.get("taken_at_timestamp")),
        "displayUrl": node.get("display_url"),
        "videoUrl": node.get("video_url"),
        "videoViewCount": node.get("video_view_count"),
        "locationName": location.get("name"),
        "locationId": location.get("id"),
        "ownerId": owner.get("id"),
        "ownerUsername": owner.get("username"),
    }
    if item_spec is not None:
        record["queryTag" if item_spec.page_type is PageType.HASHTAG else "queryId"] = item_spec.name or item_spec.id
    return record


def _batch_from_edge(edge: Dict[str, Any], item_spec: ItemSpec) -> ParsedBatch:
    page_info = edge.get("page_info") or {}
    posts: List[Dict[str, Any]] = []
    for item in edge.get("edges") or []:
        node = item.get("node") if isinstance(item, dict) else None
        if isinstance(node, dict):
            posts.append(format_post(node, item_spec))
    return ParsedBatch(
        entities=posts,
        cursor=page_info.get("end_cursor"),
        has_next_page=bool(page_info.get("has_next_page")),
    )


def parse_posts_response(payload: Dict[str, Any], item_spec: ItemSpec) -> Optional[ParsedBatch]:
    """Parses a feed query response; ``None`` when it belongs to another query."""

    path = FEED_PATHS.get(item_spec.page_type)
    if path is None:
        return None
    container_key, edge_key = path
    container = (payload.get("data") or {}).get(container_key) or {}
    edge = container.get(edge_key)
    if not isinstance(edge, dict):
        return None
    return _batch_from_edge(edge, item_spec)


def initial_posts_batch(entry_data: Dict[str, Any], item_spec: ItemSpec) -> Optional[ParsedBatch]:
    """The first page of posts is rendered into the initial data, not fetched."""

    path = FEED_PATHS.get(item_spec.page_type)
    if path is None:
        return None
    container_key, edge_key = path
    edge = (page_graphql(entry_data, item_spec.page_type).get(container_key) or {}).get(edge_key)
    if not isinstance(edge, dict):
        return None
    return _batch_from_edge(edge, item_spec)


def scrape_post(item_spec: ItemSpec, entry_data: Dict[str, Any], additional_data: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    media = post_media(entry_data, additional_data)
    record = format_post(media)
    record["isSponsored"] = media.get("is_ad")
    record["productType"] = media.get("product_type")
    record["taggedUsers"] = [
        (edge.get("node") or {}).get("user", {}).get("username")
        for edge in (media.get("edge_media_to_tagged_user") or {}).get("edges") or []
    ]
    record["childPosts"] = [
        format_post(edge.get("node") or {})
        for edge in (media.get("edge_sidecar_to_children") or {}).get("edges") or []
    ]
    return record
