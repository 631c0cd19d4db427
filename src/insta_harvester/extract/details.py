"""Detail records for profiles, hashtags, places and single posts."""

from __future__ import annotations

from typing import Any, Dict, Optional

from ..core.artifacts import ItemSpec
from ..core.models import PageType
from .item_spec import page_graphql
from .posts import initial_posts_batch, scrape_post


def _profile_details(user: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": user.get("id"),
        "username": user.get("username"),
        "fullName": user.get("full_name"),
        "biography": user.get("biography"),
        "externalUrl": user.get("external_url"),
        "followersCount": (user.get("edge_followed_by") or {}).get("count"),
        "followsCount": (user.get("edge_follow") or {}).get("count"),
        "postsCount": (user.get("edge_owner_to_timeline_media") or {}).get("count"),
        "isPrivate": user.get("is_private"),
        "verified": user.get("is_verified"),
        "isBusinessAccount": user.get("is_business_account"),
        "businessCategoryName": user.get("business_category_name"),
        "profilePicUrl": user.get("profile_pic_url_hd") or user.get("profile_pic_url"),
        "highlightReelCount": user.get("highlight_reel_count"),
    }


def _hashtag_details(hashtag: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": hashtag.get("id"),
        "name": hashtag.get("name"),
        "postsCount": (hashtag.get("edge_hashtag_to_media") or {}).get("count"),
        "profilePicUrl": hashtag.get("profile_pic_url"),
    }


def _place_details(location: Dict[str, Any]) -> Dict[str, Any]:
    address: Any = location.get("address_json")
    return {
        "id": location.get("id"),
        "name": location.get("name"),
        "slug": location.get("slug"),
        "lat": location.get("lat"),
        "lng": location.get("lng"),
        "address": address,
        "website": location.get("website"),
        "phone": location.get("phone"),
        "postsCount": (location.get("edge_location_to_media") or {}).get("count"),
    }


def scrape_details(
    entry_data: Dict[str, Any],
    additional_data: Optional[Dict[str, Any]],
    item_spec: ItemSpec,
    *,
    has_stories: Optional[bool] = None,
) -> Dict[str, Any]:
    if item_spec.page_type is PageType.POST:
        return scrape_post(item_spec, entry_data, additional_data)

    graphql = page_graphql(entry_data, item_spec.page_type)
    if item_spec.page_type is PageType.PROFILE:
        record = _profile_details(graphql.get("user") or {})
        if has_stories is not None:
            record["hasPublicStory"] = has_stories
    elif item_spec.page_type is PageType.HASHTAG:
        record = _hashtag_details(graphql.get("hashtag") or {})
    elif item_spec.page_type is PageType.PLACE:
        record = _place_details(graphql.get("location") or {})
    else:
        raise ValueError(f"Details are not available for {item_spec.page_type.value} pages")

    batch = initial_posts_batch(entry_data, item_spec)
    record["latestPosts"] = batch.entities if batch else []
    return record
