"""Crawl driver: runs every work item through a browser page with retries."""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Union

from playwright.async_api import Browser, Page, async_playwright
from playwright.async_api import Error as PlaywrightError

from ..auth.login import login
from ..core.artifacts import HarvestReport, ItemSpec, WorkItem
from ..core.config import HarvestConfig
from ..core.errors import (
    CredentialExhaustedError,
    LoginRedirectError,
    NavigationError,
    PageUnavailableError,
)
from ..core.models import POST_DETAIL_LABEL, DeadLetterRecord, ResultType, as_output
from ..extract.comments import initial_comments_batch, parse_comments_response
from ..extract.details import scrape_details
from ..extract.initial_data import InitialData, is_private_page, read_initial_data
from ..extract.item_spec import build_item_spec
from ..extract.posts import initial_posts_batch, parse_posts_response, scrape_post
from ..extract.scrolling import scroll_until_drained
from ..extract.stories import fetch_stories, has_stories
from ..storage.pagination import KeyValueStore, PaginationStore
from ..storage.sink import OutputSink, TransformingSink
from .capture import NavigationCapture, ResponseCapturePipeline
from .interception import InterceptionGate
from .proxies import ProxyRotation
from .resource_cache import ResourceCache
from .sessions import Outcome, Session, SessionPool

logger = logging.getLogger(__name__)

CHROME_ARGS = [
    "--disable-blink-features=AutomationControlled",
    "--no-sandbox",
    "--disable-dev-shm-usage",
]
USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/133.0.0.0 Safari/537.36"
)
VIEWPORT = {"width": 1366, "height": 900}
IP_ECHO_URL = "https://api.ipify.org?format=json"
OUTPUT_KEY = "OUTPUT"
LOGIN_PAGE_KEY = "LoginAndSignupPage"

OutputHook = Callable[[Dict[str, Any]], Optional[Dict[str, Any]]]
PageHook = Callable[[Page, WorkItem, ItemSpec], Union[Awaitable[None], None]]

# Removes the login and cookie dialogs that cover the feed while scrolling.
CLOSE_MODALS_SCRIPT = """
(() => {
    const close = () => {
        document.querySelectorAll('div[role="presentation"], div[role="dialog"]').forEach((node) => {
            if (node.querySelector('input[name="username"]') || node.textContent.includes('cookies')) {
                node.remove();
            }
        });
        if (document.body) {
            document.body.style.overflow = 'auto';
        }
    };
    new MutationObserver(close).observe(document, { childList: true, subtree: true });
})();
"""


@dataclass
class CrawlDriver:
    """Drives a headless browser over the work items of one run."""

    config: HarvestConfig
    sink: OutputSink
    store: KeyValueStore
    report: HarvestReport = field(default_factory=HarvestReport)
    output_hook: Optional[OutputHook] = None
    page_hook: Optional[PageHook] = None

    def __post_init__(self) -> None:
        # Dead letters bypass the output hook and go straight to the sink.
        self.output: OutputSink = TransformingSink(self.sink, self.output_hook) if self.output_hook else self.sink
        self.cache = ResourceCache()
        self.rotation = ProxyRotation(self.config.proxy_urls)
        self.pool = SessionPool(
            self.config.credential_sets,
            max_error_score=self.config.max_error_score,
            max_pool_size=self.config.effective_concurrency,
        )
        self.pagination = PaginationStore.load(self.store)
        self.pipeline = ResponseCapturePipeline(
            results_type=self.config.results_type,
            cache=self.cache,
            pagination=self.pagination,
            sink=self.output,
            parsers={
                ResultType.POSTS.value: parse_posts_response,
                ResultType.COMMENTS.value: parse_comments_response,
            },
        )

    # ------------------------------------------------------------------
    # Core workflow
    # ------------------------------------------------------------------
    async def run(self, items: Sequence[WorkItem]) -> HarvestReport:
        async with async_playwright() as playwright:
            browser = await playwright.chromium.launch(headless=self.config.headless, args=CHROME_ARGS)
            try:
                if self.config.results_type == ResultType.COOKIES.value:
                    await self.capture_cookies(browser)
                else:
                    await self.crawl(browser, items)
            finally:
                await browser.close()
        return self.report

    async def crawl(self, browser: Optional[Browser], items: Sequence[WorkItem]) -> HarvestReport:
        """Processes ``items`` with one worker per allowed concurrent navigation."""

        queue: asyncio.Queue[WorkItem] = asyncio.Queue()
        for item in items:
            queue.put_nowait(item)

        worker_count = max(1, min(self.config.effective_concurrency, len(items)))
        logger.info("Crawling %s URLs with %s workers", len(items), worker_count)
        workers = [asyncio.create_task(self._worker(browser, queue)) for _ in range(worker_count)]

        try:
            done, _ = await asyncio.wait(workers, return_when=asyncio.FIRST_EXCEPTION)
            for task in done:
                exc = task.exception()
                if exc is not None:
                    raise exc
        finally:
            for task in workers:
                task.cancel()
            await asyncio.gather(*workers, return_exceptions=True)
            self.pagination.persist()
            self.report.invalid_sessions = self.pool.invalid_count
            if self.report.invalid_sessions:
                logger.warning("%s login cookies became invalid during the run", self.report.invalid_sessions)

        return self.report

    async def _worker(self, browser: Optional[Browser], queue: asyncio.Queue[WorkItem]) -> None:
        while True:
            try:
                item = queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            try:
                await self._process_with_retries(browser, item)
            finally:
                queue.task_done()

    async def _process_with_retries(self, browser: Optional[Browser], item: WorkItem) -> None:
        errors: List[str] = []
        attempts = self.config.max_request_retries + 1

        for attempt in range(attempts):
            if attempt:
                self.report.retried += 1
                logger.warning("Retrying %s (%s/%s)", item.url, attempt, self.config.max_request_retries)
            try:
                await asyncio.wait_for(self._attempt(browser, item), self.config.handle_page_timeout)
            except PageUnavailableError as exc:
                logger.error("Skipping %s: %s", item.url, exc.reason)
                self.report.skipped += 1
                self.report.skipped_urls.append(item.url)
                return
            except CredentialExhaustedError:
                raise
            except (NavigationError, PlaywrightError, asyncio.TimeoutError) as exc:
                message = str(exc) or type(exc).__name__
                errors.append(message)
                logger.warning("Attempt %s on %s failed: %s", attempt + 1, item.url, message)
                continue
            except Exception as exc:
                message = str(exc) or type(exc).__name__
                errors.append(message)
                logger.warning("Attempt %s on %s failed: %s", attempt + 1, item.url, message, exc_info=True)
                continue
            self.report.succeeded += 1
            return

        self._dead_letter(item, errors)

    def _dead_letter(self, item: WorkItem, errors: List[str]) -> None:
        record: DeadLetterRecord = {
            "error": item.url,
            "debug": {
                "url": item.url,
                "page_type": item.page_type.value,
                "label": item.label,
                "retry_count": self.config.max_request_retries,
                "error_messages": errors,
            },
        }
        logger.error("%s failed %s times, giving up", item.url, len(errors))
        self.sink.emit(as_output(record))
        self.report.dead_lettered += 1
        self.report.failed_urls.append(item.url)

    # ------------------------------------------------------------------
    # One navigation
    # ------------------------------------------------------------------
    async def _attempt(self, browser: Browser, item: WorkItem) -> None:
        async with self.pool.lease() as lease:
            session = lease.session
            context = await browser.new_context(
                proxy=self.rotation.playwright_proxy(session.id),
                bypass_csp=True,
                viewport=VIEWPORT,
                user_agent=USER_AGENT,
            )
            capture = NavigationCapture(self.pipeline)
            try:
                await self.pool.apply_cookies(session, context)
                page = await context.new_page()

                gate = InterceptionGate(
                    self.cache,
                    page_type=item.page_type,
                    results_type=self.config.results_type,
                    aggressive=self.config.block_more_assets,
                    check_proxy_ip=self.config.check_proxy_ip,
                )
                await gate.install(page)
                page.on("response", capture.publish)
                capture.start()
                await page.add_init_script(CLOSE_MODALS_SCRIPT)

                response = await page.goto(item.url, timeout=self.config.page_timeout * 1000)

                if self.config.check_proxy_ip:
                    await self._log_client_ip(page)
                if self.pool.credentialed:
                    await self.pool.validate(session, page)

                if response is None:
                    raise NavigationError(f"Navigation to {item.url} returned no response")
                if response.status == 404:
                    raise PageUnavailableError(item.url, "page not found")
                if is_private_page(await page.content()):
                    raise PageUnavailableError(item.url, "page is private")

                initial = await read_initial_data(page)
                if LOGIN_PAGE_KEY in initial.entry_data:
                    lease.outcome = Outcome.RETIRE
                    raise LoginRedirectError(item.url)

                item_spec = build_item_spec(
                    initial.entry_data,
                    initial.additional,
                    item.page_type,
                    limit=self.config.results_limit_or_default,
                    posts_until=self.config.posts_until,
                    scroll_wait_secs=self.config.scroll_wait_secs,
                    url=item.url,
                )

                try:
                    await self._run_page_hook(page, item, item_spec)
                    await self._handle_page(page, item, item_spec, initial, capture, session)
                except Exception:
                    lease.outcome = Outcome.RETIRE
                    raise
                lease.outcome = Outcome.GOOD
            finally:
                await capture.close()
                await context.close()

    async def _handle_page(
        self,
        page: Page,
        item: WorkItem,
        item_spec: ItemSpec,
        initial: InitialData,
        capture: NavigationCapture,
        session: Session,
    ) -> None:
        results_type = self.config.results_type

        if item.label == POST_DETAIL_LABEL:
            self.output.emit(scrape_post(item_spec, initial.entry_data, initial.additional))
            self.report.emitted += 1
            return

        capture.attach(item_spec)

        before = self.pipeline.progress(item_spec).count
        if results_type == ResultType.POSTS.value:
            batch = initial_posts_batch(initial.entry_data, item_spec)
            if batch is not None:
                capture.record(self.pipeline.process_batch(batch, item_spec))
            count = await scroll_until_drained(page, capture, item_spec)
            self.report.emitted += max(0, count - before)
        elif results_type == ResultType.COMMENTS.value:
            batch = initial_comments_batch(initial.entry_data, initial.additional, item_spec)
            if batch is not None:
                capture.record(self.pipeline.process_batch(batch, item_spec))
            count = await scroll_until_drained(page, capture, item_spec, comments=True)
            self.report.emitted += max(0, count - before)
        elif results_type == ResultType.DETAILS.value:
            stories_flag = None
            if self.config.include_has_stories and item_spec.id:
                stories_flag = await asyncio.to_thread(
                    has_stories,
                    item_spec.id,
                    session.cookies,
                    self.rotation.requests_proxies(session.id),
                )
            self.output.emit(scrape_details(initial.entry_data, initial.additional, item_spec, has_stories=stories_flag))
            self.report.emitted += 1
        elif results_type == ResultType.STORIES.value:
            stories = await asyncio.to_thread(
                fetch_stories,
                item_spec,
                session.cookies,
                self.rotation.requests_proxies(session.id),
            )
            for story in stories:
                self.output.emit(story)
            self.report.emitted += len(stories)
            logger.info("%s: emitted %s stories", item_spec.parent_id, len(stories))
        else:
            raise ValueError(f"Unsupported results type {results_type!r}")

    async def _run_page_hook(self, page: Page, item: WorkItem, item_spec: ItemSpec) -> None:
        if self.page_hook is None:
            return
        result = self.page_hook(page, item, item_spec)
        if inspect.isawaitable(result):
            await result

    async def _log_client_ip(self, page: Page) -> None:
        try:
            response = await page.context.request.get(IP_ECHO_URL)
            payload: Dict[str, Any] = await response.json()
        except PlaywrightError as exc:
            logger.warning("Could not read client IP: %s", exc)
            return
        logger.info("Client IP for %s: %s", page.url, payload.get("ip"))

    # ------------------------------------------------------------------
    # Cookie capture
    # ------------------------------------------------------------------
    async def capture_cookies(self, browser: Browser) -> List[Dict[str, Any]]:
        """Logs in with username and password and stores the resulting cookies."""

        username = self.config.login_username or ""
        password = self.config.login_password or ""
        context = await browser.new_context(
            proxy=self.rotation.playwright_proxy(username),
            viewport=VIEWPORT,
            user_agent=USER_AGENT,
        )
        try:
            page = await context.new_page()
            cookies = await login(page, username, password)
        except NavigationError as exc:
            raise CredentialExhaustedError(f"Failed to log in as {username}: {exc}") from exc
        finally:
            await context.close()

        saved = [dict(cookie) for cookie in cookies]
        self.store.save(OUTPUT_KEY, saved)
        self.sink.emit({"cookies": saved})
        self.report.emitted += 1
        self.report.succeeded += 1
        logger.info("Saved %s cookies under %s", len(saved), OUTPUT_KEY)
        return saved
