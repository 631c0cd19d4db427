"""Shared data structures used across the crawler and the extractors."""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional, TypedDict


class PageType(str, Enum):
    PROFILE = "profile"
    POST = "post"
    HASHTAG = "hashtag"
    PLACE = "place"
    STORY = "story"


class ResultType(str, Enum):
    POSTS = "posts"
    COMMENTS = "comments"
    DETAILS = "details"
    STORIES = "stories"
    COOKIES = "cookies"

    @classmethod
    def values(cls) -> List[str]:
        return [member.value for member in cls]


POST_DETAIL_LABEL = "postDetail"


class CookieParam(TypedDict, total=False):
    """Cookie in the shape accepted by ``BrowserContext.add_cookies``."""

    name: str
    value: str
    domain: str
    path: str
    expires: float
    httpOnly: bool
    secure: bool
    sameSite: str


class DeadLetterDebug(TypedDict):
    url: str
    page_type: Optional[str]
    label: Optional[str]
    retry_count: int
    error_messages: List[str]


class DeadLetterRecord(TypedDict):
    """Output record for a work item that exhausted its retries."""

    # keys start with '#' in the dataset, see ``as_output``
    error: str
    debug: DeadLetterDebug


def as_output(record: DeadLetterRecord) -> Dict[str, Any]:
    return {"#error": record["error"], "#debug": dict(record["debug"])}
