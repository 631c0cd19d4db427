"""Story reels fetched directly from the private API with the session's cookies."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional

import requests

from ..core.artifacts import ItemSpec

logger = logging.getLogger(__name__)

REELS_MEDIA_URL = "https://i.instagram.com/api/v1/feed/reels_media/"
# The private API answers only to the web app id.
APP_ID = "936619743392459"
REQUEST_TIMEOUT = 20


def _prepare_session(cookies: Iterable[dict], proxies: Optional[Mapping[str, str]] = None) -> requests.Session:
    session = requests.Session()
    for cookie in cookies:
        name = cookie.get("name")
        value = cookie.get("value")
        domain = cookie.get("domain")
        if name and value:
            session.cookies.set(name, value, domain=domain)
    csrf = session.cookies.get("csrftoken")
    session.headers.update({"x-ig-app-id": APP_ID, **({"x-csrftoken": csrf} if csrf else {})})
    if proxies:
        session.proxies.update(proxies)
    return session


def _fetch_reels(
    reel_ids: List[str],
    cookies: Iterable[dict],
    proxies: Optional[Mapping[str, str]],
) -> Dict[str, Any]:
    session = _prepare_session(cookies, proxies)
    try:
        response = session.get(REELS_MEDIA_URL, params={"reel_ids": reel_ids}, timeout=REQUEST_TIMEOUT)
        response.raise_for_status()
        return response.json()
    finally:
        session.close()


def format_story_item(item: Dict[str, Any], owner: Dict[str, Any]) -> Dict[str, Any]:
    taken_at = item.get("taken_at")
    videos = item.get("video_versions") or []
    images = (item.get("image_versions2") or {}).get("candidates") or []
    return {
        "id": item.get("id") or item.get("pk"),
        "ownerId": owner.get("pk") or owner.get("id"),
        "ownerUsername": owner.get("username"),
        "timestamp": datetime.fromtimestamp(taken_at, tz=timezone.utc).isoformat()
        if isinstance(taken_at, (int, float))
        else None,
        "expiringAt": item.get("expiring_at"),
        "mediaType": "video" if videos else "image",
        "videoUrl": videos[0].get("url") if videos else None,
        "displayUrl": images[0].get("url") if images else None,
    }


def fetch_stories(
    item_spec: ItemSpec,
    cookies: Iterable[dict],
    proxies: Optional[Mapping[str, str]] = None,
) -> List[Dict[str, Any]]:
    """Returns one record per story item of the page's owner."""

    if not item_spec.id:
        return []
    data = _fetch_reels([item_spec.id], cookies, proxies)
    stories: List[Dict[str, Any]] = []
    for reel in data.get("reels_media") or []:
        owner = reel.get("user") or {}
        for item in reel.get("items") or []:
            stories.append(format_story_item(item, owner))
    return stories


def has_stories(user_id: Optional[str], cookies: Iterable[dict], proxies: Optional[Mapping[str, str]] = None) -> bool:
    if not user_id:
        return False
    try:
        data = _fetch_reels([user_id], cookies, proxies)
    except requests.RequestException as exc:
        logger.warning("Could not check stories for %s: %s", user_id, exc)
        return False
    return any(reel.get("items") for reel in data.get("reels_media") or [])
