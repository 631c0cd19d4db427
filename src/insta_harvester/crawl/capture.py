"""Capture of the site's data-fetch responses while a page scrolls.

Each navigation gets a :class:`NavigationCapture`: a queue fed by the page's
``response`` events and drained by a single task, so responses for one page
are handled in arrival order while different pages never share a channel.
The shared :class:`ResponseCapturePipeline` turns API responses into
deduplicated records and reports whether the parent has been drained.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Mapping, Optional

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Response

from ..core.artifacts import ItemSpec, ParsedBatch
from ..core.errors import ItemSpecTimeout
from ..storage.pagination import PaginationStore
from ..storage.sink import OutputSink
from .resource_cache import CacheEntry, ResourceCache, is_cacheable

logger = logging.getLogger(__name__)

GRAPHQL_ENDPOINT = "https://www.instagram.com/graphql/query/"
COMMENTS_API_MARKER = "/api/v1/media/"
DEFAULT_ITEM_SPEC_TIMEOUT = 60.0
CLOSE_TIMEOUT = 10.0

ResponseParser = Callable[[Dict[str, Any], ItemSpec], Optional[ParsedBatch]]


def is_api_response(url: str) -> bool:
    if url.startswith(GRAPHQL_ENDPOINT):
        return True
    return COMMENTS_API_MARKER in url and "/comments/" in url


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class CaptureOutcome:
    """What the scroll loop needs to decide whether to keep going."""

    parent_id: str
    emitted: int
    count: int
    drained: bool


class ItemSpecSignal:
    """One-shot signal carrying the ItemSpec once the page has computed it."""

    def __init__(self) -> None:
        self._future: asyncio.Future[ItemSpec] = asyncio.get_running_loop().create_future()

    @property
    def is_set(self) -> bool:
        return self._future.done()

    def set(self, item_spec: ItemSpec) -> None:
        if not self._future.done():
            self._future.set_result(item_spec)

    async def wait(self, timeout: float) -> ItemSpec:
        try:
            return await asyncio.wait_for(asyncio.shield(self._future), timeout)
        except asyncio.TimeoutError as exc:
            raise ItemSpecTimeout(f"Page did not provide its item spec within {timeout:.0f}s") from exc


class ResponseCapturePipeline:
    """Shared by every navigation of a run."""

    def __init__(
        self,
        *,
        results_type: Optional[str],
        cache: ResourceCache,
        pagination: PaginationStore,
        sink: OutputSink,
        parsers: Mapping[str, ResponseParser],
        item_spec_timeout: float = DEFAULT_ITEM_SPEC_TIMEOUT,
    ) -> None:
        self.results_type = results_type
        self.cache = cache
        self.pagination = pagination
        self.sink = sink
        self.parsers = dict(parsers)
        self.item_spec_timeout = item_spec_timeout

    async def handle_response(self, response: Response, signal: ItemSpecSignal) -> Optional[CaptureOutcome]:
        url = response.url

        if is_cacheable(url):
            await self._cache_response(response)
            return None

        if not is_api_response(url):
            return None

        parser = self.parsers.get(self.results_type or "")
        if parser is None:
            return None

        item_spec = await signal.wait(self.item_spec_timeout)

        try:
            payload = await response.json()
            batch = parser(payload, item_spec)
        except Exception as exc:
            # The scroll loop re-requests the data if the page still needs it.
            logger.error("Error happened while processing response %s: %s", url, exc, exc_info=True)
            return None

        if batch is None:
            return None
        return self.process_batch(batch, item_spec)

    def process_batch(self, batch: ParsedBatch, item_spec: ItemSpec) -> CaptureOutcome:
        """Emits every child not seen before for the page's parent."""

        parent_id = item_spec.parent_id
        state = self.pagination.get(parent_id)
        emitted = 0
        reached_cutoff = False

        for entity in batch.entities:
            if state.count >= item_spec.limit:
                break
            child_id = entity.get("id")
            if not child_id:
                continue
            child_id = str(child_id)
            if state.has_emitted(child_id):
                continue
            if self._is_before_cutoff(entity, item_spec):
                reached_cutoff = True
                continue

            state.record(child_id)
            self.sink.emit(entity)
            emitted += 1

        state.advance(batch.cursor, batch.has_next_page)
        if emitted:
            self.pagination.persist()
            logger.info("%s: emitted %s new items, %s in total", parent_id, emitted, state.count)

        return CaptureOutcome(
            parent_id=parent_id,
            emitted=emitted,
            count=state.count,
            drained=reached_cutoff or not state.has_next_page or state.count >= item_spec.limit,
        )

    def progress(self, item_spec: ItemSpec) -> CaptureOutcome:
        state = self.pagination.peek(item_spec.parent_id)
        if state is None:
            return CaptureOutcome(item_spec.parent_id, 0, 0, False)
        return CaptureOutcome(
            parent_id=item_spec.parent_id,
            emitted=0,
            count=state.count,
            drained=state.count >= item_spec.limit,
        )

    async def _cache_response(self, response: Response) -> None:
        url = response.url
        if url in self.cache or response.status != 200:
            return
        try:
            body = await response.body()
        except PlaywrightError:
            logger.debug("Could not read body of %s for caching", url, exc_info=True)
            return
        if self.cache.put(url, CacheEntry(body=body, headers=dict(response.headers), status=response.status)):
            logger.debug("Adding cache: %s", url)

    @staticmethod
    def _is_before_cutoff(entity: Dict[str, Any], item_spec: ItemSpec) -> bool:
        if item_spec.posts_until is None:
            return False
        taken_at = _parse_timestamp(entity.get("timestamp"))
        return taken_at is not None and taken_at < item_spec.posts_until


_CLOSE = object()


class NavigationCapture:
    """Response channel of one navigation context."""

    def __init__(self, pipeline: ResponseCapturePipeline, signal: Optional[ItemSpecSignal] = None) -> None:
        self.pipeline = pipeline
        self.signal = signal or ItemSpecSignal()
        self.last_outcome: Optional[CaptureOutcome] = None
        self.error: Optional[Exception] = None
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._batch_event = asyncio.Event()
        self._task: Optional[asyncio.Task[None]] = None

    def publish(self, response: Response) -> None:
        self._queue.put_nowait(response)

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._consume())

    def attach(self, item_spec: ItemSpec) -> None:
        self.signal.set(item_spec)

    def record(self, outcome: CaptureOutcome) -> None:
        """Feeds an outcome produced outside the channel, e.g. from initial page data."""

        self.last_outcome = outcome

    @property
    def drained(self) -> bool:
        return bool(self.last_outcome and self.last_outcome.drained)

    async def wait_for_batch(self, timeout: float) -> Optional[CaptureOutcome]:
        """Waits for the next processed API batch; ``None`` if nothing arrived in time."""

        try:
            await asyncio.wait_for(self._batch_event.wait(), timeout)
        except asyncio.TimeoutError:
            return None
        finally:
            self._batch_event.clear()
        self.raise_if_failed()
        return self.last_outcome

    def raise_if_failed(self) -> None:
        if self.error is not None:
            raise self.error

    async def close(self) -> None:
        task = self._task
        if task is None:
            return
        self._task = None

        if not self.signal.is_set:
            # Nothing left in the queue can be parsed without an item spec.
            task.cancel()
        else:
            self._queue.put_nowait(_CLOSE)
            try:
                await asyncio.wait_for(asyncio.shield(task), CLOSE_TIMEOUT)
            except asyncio.TimeoutError:
                task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _consume(self) -> None:
        while True:
            response = await self._queue.get()
            if response is _CLOSE:
                return
            try:
                outcome = await self.pipeline.handle_response(response, self.signal)
            except ItemSpecTimeout as exc:
                logger.error("Dropping captured response: %s", exc)
                if self.error is None:
                    self.error = exc
                self._batch_event.set()
                continue
            if outcome is not None:
                self.last_outcome = outcome
                self._batch_event.set()
