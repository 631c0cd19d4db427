"""Comment records from a post page."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ..core.artifacts import ItemSpec, ParsedBatch
from .item_spec import post_media

COMMENT_EDGE_KEYS = ("edge_media_to_parent_comment", "edge_media_to_comment", "edge_media_preview_comment")


def format_comment(node: Dict[str, Any], item_spec: ItemSpec) -> Dict[str, Any]:
    owner = node.get("owner") or node.get("user") or {}
    created_at = node.get("created_at")
    return {
        "id": node.get("id") or node.get("pk"),
        "postId": item_spec.shortcode or item_spec.id,
        "text": node.get("text"),
        "timestamp": datetime.fromtimestamp(created_at, tz=timezone.utc).isoformat()
        if isinstance(created_at, (int, float))
        else None,
        "ownerId": owner.get("id") or owner.get("pk"),
        "ownerUsername": owner.get("username"),
        "ownerProfilePicUrl": owner.get("profile_pic_url"),
        "likesCount": (node.get("edge_liked_by") or {}).get("count", node.get("comment_like_count")),
    }


def _batch_from_edge(edge: Dict[str, Any], item_spec: ItemSpec) -> ParsedBatch:
    page_info = edge.get("page_info") or {}
    comments: List[Dict[str, Any]] = []
    for item in edge.get("edges") or []:
        node = item.get("node") if isinstance(item, dict) else None
        if isinstance(node, dict):
            comments.append(format_comment(node, item_spec))
    return ParsedBatch(
        entities=comments,
        cursor=page_info.get("end_cursor"),
        has_next_page=bool(page_info.get("has_next_page")),
    )


def _comment_edge(media: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    for key in COMMENT_EDGE_KEYS:
        edge = media.get(key)
        if isinstance(edge, dict) and "edges" in edge:
            return edge
    return None


def parse_comments_response(payload: Dict[str, Any], item_spec: ItemSpec) -> Optional[ParsedBatch]:
    """Accepts both the GraphQL comment query and the REST comments endpoint."""

    if isinstance(payload.get("comments"), list):
        comments = [format_comment(node, item_spec) for node in payload["comments"] if isinstance(node, dict)]
        return ParsedBatch(
            entities=comments,
            cursor=payload.get("next_min_id") or payload.get("next_max_id"),
            has_next_page=bool(payload.get("has_more_comments") or payload.get("has_more_headload_comments")),
        )

    media = (payload.get("data") or {}).get("shortcode_media") or {}
    edge = _comment_edge(media)
    if edge is None:
        return None
    return _batch_from_edge(edge, item_spec)


def initial_comments_batch(
    entry_data: Dict[str, Any],
    additional_data: Optional[Dict[str, Any]],
    item_spec: ItemSpec,
) -> Optional[ParsedBatch]:
    edge = _comment_edge(post_media(entry_data, additional_data))
    if edge is None:
        return None
    return _batch_from_edge(edge, item_spec)
