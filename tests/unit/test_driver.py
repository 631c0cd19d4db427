import asyncio

import pytest
import requests

import insta_harvester.crawl.driver as driver_module  # type: ignore[import]
from insta_harvester.crawl.capture import NavigationCapture  # type: ignore[import]
from insta_harvester.extract.initial_data import InitialData  # type: ignore[import]

from tests.helpers.fakes import MemorySink, MemoryStore
from tests.helpers.harvest_imports import (
    CredentialExhaustedError,
    HarvestConfig,
    ItemSpec,
    NavigationError,
    PageType,
    PageUnavailableError,
    WorkItem,
)

PROFILE_URL = "https://www.instagram.com/someone/"
POST_URL = "https://www.instagram.com/p/abc/"


def _driver(results_type="posts", **overrides):
    overrides.setdefault("max_request_retries", 2)
    overrides.setdefault("handle_page_timeout", 5)
    config = HarvestConfig(results_type=results_type, **overrides)
    sink = MemorySink()
    store = MemoryStore()
    return driver_module.CrawlDriver(config, sink, store), sink, store


def _profile_entry_data():
    return {
        "ProfilePage": [
            {
                "graphql": {
                    "user": {
                        "id": "42",
                        "username": "someone",
                        "edge_followed_by": {"count": 10},
                        "edge_owner_to_timeline_media": {
                            "count": 3,
                            "page_info": {"has_next_page": True, "end_cursor": "c1"},
                            "edges": [
                                {"node": {"id": "1", "shortcode": "a"}},
                                {"node": {"id": "2", "shortcode": "b"}},
                            ],
                        },
                    }
                }
            }
        ]
    }


def test_private_page_is_skipped_without_retry():
    driver, sink, _ = _driver()
    calls = []

    async def fake_attempt(_browser, item):
        calls.append(item.url)
        raise PageUnavailableError(item.url, "page is private")

    driver._attempt = fake_attempt
    report = asyncio.run(driver.crawl(None, [WorkItem(PROFILE_URL, PageType.PROFILE)]))

    assert calls == [PROFILE_URL]
    assert report.skipped == 1
    assert report.retried == 0
    assert report.skipped_urls == [PROFILE_URL]
    assert sink.records == []


def test_exhausted_retries_emit_one_dead_letter_record():
    driver, sink, _ = _driver()
    calls = []

    async def fake_attempt(_browser, item):
        calls.append(item.url)
        raise NavigationError(f"boom {len(calls)}")

    driver._attempt = fake_attempt
    report = asyncio.run(driver.crawl(None, [WorkItem(POST_URL, PageType.POST, "postDetail")]))

    assert len(calls) == 3
    assert report.retried == 2
    assert report.dead_lettered == 1
    assert sink.records == [
        {
            "#error": POST_URL,
            "#debug": {
                "url": POST_URL,
                "page_type": "post",
                "label": "postDetail",
                "retry_count": 2,
                "error_messages": ["boom 1", "boom 2", "boom 3"],
            },
        }
    ]


def test_transient_failure_is_retried_until_success():
    driver, sink, _ = _driver()
    calls = []

    async def fake_attempt(_browser, item):
        calls.append(item.url)
        if len(calls) == 1:
            raise NavigationError("initial data did not load")

    driver._attempt = fake_attempt
    report = asyncio.run(driver.crawl(None, [WorkItem(PROFILE_URL, PageType.PROFILE)]))

    assert report.succeeded == 1
    assert report.retried == 1
    assert report.dead_lettered == 0
    assert sink.records == []


def test_slow_page_times_out_and_is_retried():
    driver, sink, _ = _driver(max_request_retries=1, handle_page_timeout=0.01)

    async def fake_attempt(_browser, _item):
        await asyncio.sleep(1)

    driver._attempt = fake_attempt
    report = asyncio.run(driver.crawl(None, [WorkItem(PROFILE_URL, PageType.PROFILE)]))

    assert report.retried == 1
    assert report.dead_lettered == 1
    assert sink.records[0]["#error"] == PROFILE_URL


def test_unexpected_error_is_dead_lettered_and_the_run_continues():
    driver, sink, _ = _driver(max_concurrency=1, max_request_retries=1)
    calls = []
    failing_url = "https://www.instagram.com/a/"

    async def fake_attempt(_browser, item):
        calls.append(item.url)
        if item.url == failing_url:
            raise requests.HTTPError("429 Too Many Requests")

    driver._attempt = fake_attempt
    items = [WorkItem(failing_url, PageType.PROFILE), WorkItem(PROFILE_URL, PageType.PROFILE)]
    report = asyncio.run(driver.crawl(None, items))

    assert calls == [failing_url, failing_url, PROFILE_URL]
    assert report.succeeded == 1
    assert report.dead_lettered == 1
    assert report.failed_urls == [failing_url]
    assert sink.records[0]["#error"] == failing_url
    assert sink.records[0]["#debug"]["error_messages"] == ["429 Too Many Requests"] * 2


def test_details_on_story_page_fails_only_that_item():
    driver, sink, _ = _driver(results_type="details", max_request_retries=0)

    async def fake_attempt(_browser, item):
        spec = ItemSpec(page_type=PageType.STORY, id="42", name="someone")
        initial = InitialData(data={"entry_data": {}})
        await driver._handle_page(None, item, spec, initial, None, None)

    driver._attempt = fake_attempt
    report = asyncio.run(driver.crawl(None, [WorkItem("https://www.instagram.com/stories/someone/", PageType.STORY)]))

    assert report.dead_lettered == 1
    assert "story" in sink.records[0]["#debug"]["error_messages"][0]


def test_credential_exhaustion_stops_the_whole_run():
    driver, sink, store = _driver(max_concurrency=1)
    calls = []

    async def fake_attempt(_browser, item):
        calls.append(item.url)
        raise CredentialExhaustedError()

    driver._attempt = fake_attempt
    items = [WorkItem(PROFILE_URL, PageType.PROFILE), WorkItem("https://www.instagram.com/other/", PageType.PROFILE)]

    with pytest.raises(CredentialExhaustedError):
        asyncio.run(driver.crawl(None, items))

    assert calls == [PROFILE_URL]
    assert sink.records == []
    assert "STATE-SCROLLING" in store.values


def test_every_item_is_processed_by_the_worker_pool():
    driver, _, _ = _driver(max_concurrency=3)
    seen = []

    async def fake_attempt(_browser, item):
        await asyncio.sleep(0)
        seen.append(item.url)

    driver._attempt = fake_attempt
    items = [WorkItem(f"https://www.instagram.com/user{index}/", PageType.PROFILE) for index in range(7)]
    report = asyncio.run(driver.crawl(None, items))

    assert sorted(seen) == sorted(item.url for item in items)
    assert report.succeeded == 7


def test_post_detail_label_emits_single_post_record():
    driver, sink, _ = _driver()
    item = WorkItem(POST_URL, PageType.POST, "postDetail")
    spec = ItemSpec(page_type=PageType.POST, id="99", shortcode="abc")
    initial = InitialData(
        data={"entry_data": {"PostPage": [{"graphql": {"shortcode_media": {"id": "99", "shortcode": "abc"}}}]}}
    )

    asyncio.run(driver._handle_page(None, item, spec, initial, None, None))

    assert len(sink.records) == 1
    assert sink.records[0]["shortCode"] == "abc"
    assert driver.report.emitted == 1


def test_posts_handler_emits_initial_batch_before_scrolling(monkeypatch):
    driver, sink, _ = _driver()
    item = WorkItem(PROFILE_URL, PageType.PROFILE)
    spec = ItemSpec(page_type=PageType.PROFILE, id="42", name="someone")
    initial = InitialData(data={"entry_data": _profile_entry_data()})
    scrolled = []

    async def fake_scroll(_page, capture, item_spec, **_kwargs):
        scrolled.append(capture.last_outcome)
        return capture.last_outcome.count

    monkeypatch.setattr(driver_module, "scroll_until_drained", fake_scroll)

    async def scenario():
        capture = NavigationCapture(driver.pipeline)
        await driver._handle_page(None, item, spec, initial, capture, None)
        return capture

    capture = asyncio.run(scenario())

    assert [record["id"] for record in sink.records] == ["1", "2"]
    assert scrolled[0].emitted == 2
    assert capture.signal.is_set
    assert driver.report.emitted == 2


def test_details_handler_emits_profile_record():
    driver, sink, _ = _driver(results_type="details")
    item = WorkItem(PROFILE_URL, PageType.PROFILE)
    spec = ItemSpec(page_type=PageType.PROFILE, id="42", name="someone")
    initial = InitialData(data={"entry_data": _profile_entry_data()})

    async def scenario():
        capture = NavigationCapture(driver.pipeline)
        await driver._handle_page(None, item, spec, initial, capture, None)

    asyncio.run(scenario())

    record = sink.records[0]
    assert record["username"] == "someone"
    assert record["followersCount"] == 10
    assert [post["id"] for post in record["latestPosts"]] == ["1", "2"]


def test_output_hook_rewrites_and_drops_records():
    def add_source(record):
        if record.get("shortCode") == "skip":
            return None
        return {**record, "source": "harvest"}

    config = HarvestConfig(results_type="posts")
    sink = MemorySink()
    driver = driver_module.CrawlDriver(config, sink, MemoryStore(), output_hook=add_source)
    item = WorkItem(POST_URL, PageType.POST, "postDetail")

    for shortcode in ["abc", "skip"]:
        spec = ItemSpec(page_type=PageType.POST, id="99", shortcode=shortcode)
        initial = InitialData(
            data={"entry_data": {"PostPage": [{"graphql": {"shortcode_media": {"id": "99", "shortcode": shortcode}}}]}}
        )
        asyncio.run(driver._handle_page(None, item, spec, initial, None, None))

    assert len(sink.records) == 1
    assert sink.records[0]["shortCode"] == "abc"
    assert sink.records[0]["source"] == "harvest"


def test_dead_letters_bypass_the_output_hook():
    config = HarvestConfig(results_type="posts", max_request_retries=0, handle_page_timeout=5)
    sink = MemorySink()
    driver = driver_module.CrawlDriver(config, sink, MemoryStore(), output_hook=lambda _record: None)

    async def fake_attempt(_browser, _item):
        raise NavigationError("boom")

    driver._attempt = fake_attempt
    asyncio.run(driver.crawl(None, [WorkItem(PROFILE_URL, PageType.PROFILE)]))

    assert sink.records[0]["#error"] == PROFILE_URL


@pytest.mark.parametrize("is_async", [True, False])
def test_page_hook_receives_the_item_spec(is_async):
    seen = []

    def sync_hook(page, item, item_spec):
        seen.append((page, item.url, item_spec.parent_id))

    async def async_hook(page, item, item_spec):
        sync_hook(page, item, item_spec)

    config = HarvestConfig(results_type="posts")
    driver = driver_module.CrawlDriver(config, MemorySink(), MemoryStore(), page_hook=async_hook if is_async else sync_hook)
    spec = ItemSpec(page_type=PageType.PROFILE, id="42", name="someone")

    asyncio.run(driver._run_page_hook("page", WorkItem(PROFILE_URL, PageType.PROFILE), spec))

    assert seen == [("page", PROFILE_URL, "profile:42")]
