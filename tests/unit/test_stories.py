import requests

import insta_harvester.extract.stories as stories  # type: ignore[import]

from tests.helpers.harvest_imports import ItemSpec, PageType

COOKIES = [{"name": "sessionid", "value": "abc", "domain": ".instagram.com"}, {"name": "csrftoken", "value": "tok"}]


def test_prepare_session_sets_cookies_and_headers():
    session = stories._prepare_session(COOKIES, {"https": "http://proxy:1"})

    assert session.cookies.get("sessionid") == "abc"
    assert session.headers["x-csrftoken"] == "tok"
    assert session.headers["x-ig-app-id"] == stories.APP_ID
    assert session.proxies["https"] == "http://proxy:1"


def test_fetch_stories_formats_every_item(monkeypatch):
    calls = []

    def fake_fetch(reel_ids, cookies, proxies):
        calls.append(reel_ids)
        return {
            "reels_media": [
                {
                    "user": {"pk": "42", "username": "someone"},
                    "items": [{"id": "s1", "taken_at": 0}, {"id": "s2", "taken_at": 60}],
                }
            ]
        }

    monkeypatch.setattr(stories, "_fetch_reels", fake_fetch)

    records = stories.fetch_stories(ItemSpec(page_type=PageType.STORY, id="42"), COOKIES)

    assert calls == [["42"]]
    assert [record["id"] for record in records] == ["s1", "s2"]
    assert records[0]["mediaType"] == "image"


def test_fetch_stories_needs_an_owner_id():
    assert stories.fetch_stories(ItemSpec(page_type=PageType.STORY, id=None), COOKIES) == []


def test_has_stories_treats_request_errors_as_no_stories(monkeypatch):
    def failing_fetch(*_args):
        raise requests.ConnectionError("offline")

    monkeypatch.setattr(stories, "_fetch_reels", failing_fetch)

    assert stories.has_stories("42", COOKIES) is False


def test_has_stories_detects_items(monkeypatch):
    monkeypatch.setattr(stories, "_fetch_reels", lambda *_args: {"reels_media": [{"items": [{"id": "s1"}]}]})

    assert stories.has_stories("42", COOKIES) is True
