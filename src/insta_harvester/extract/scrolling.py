"""Scroll loop that keeps the page fetching until its parent is drained."""

from __future__ import annotations

import logging
import random

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page

from ..core.artifacts import ItemSpec
from ..crawl.capture import NavigationCapture

logger = logging.getLogger(__name__)

LOAD_MORE_COMMENTS_SELECTOR = "article ul li button:has(svg[aria-label='Load more comments']), button:has-text('View more comments')"
STAGNANT_TOLERANCE = 3
MAX_ROUNDS = 3000
STEP_RATIO = 0.75


async def _scroll_step(page: Page, step_px: int) -> None:
    await page.evaluate("(y) => window.scrollBy(0, y)", step_px)


async def _load_more_comments(page: Page) -> bool:
    button = page.locator(LOAD_MORE_COMMENTS_SELECTOR).first
    try:
        if await button.count() == 0:
            return False
        await button.click(timeout=2000)
        return True
    except PlaywrightError:
        return False


async def scroll_until_drained(
    page: Page,
    capture: NavigationCapture,
    item_spec: ItemSpec,
    *,
    comments: bool = False,
    stagnant_tolerance: int = STAGNANT_TOLERANCE,
    max_rounds: int = MAX_ROUNDS,
) -> int:
    """Scrolls until the capture reports the parent drained; returns the final count.

    The loop stops when the limit is reached, when the API says there is no
    next page, or after ``stagnant_tolerance`` scroll rounds without a single
    captured batch.
    """

    progress = capture.pipeline.progress(item_spec)
    count = progress.count
    if progress.drained or capture.drained:
        return capture.last_outcome.count if capture.last_outcome else count

    viewport_h = await page.evaluate("() => window.innerHeight || 900")
    step_px = max(200, int(viewport_h * STEP_RATIO))
    stagnant = 0

    for round_idx in range(max_rounds):
        capture.raise_if_failed()

        clicked = comments and await _load_more_comments(page)
        if not clicked:
            await _scroll_step(page, step_px)

        outcome = await capture.wait_for_batch(item_spec.scroll_wait_secs)
        if outcome is None or outcome.emitted == 0:
            stagnant += 1
            logger.debug("%s: nothing new after round %s (%s/%s)", item_spec.parent_id, round_idx, stagnant, stagnant_tolerance)
        else:
            stagnant = 0
            count = outcome.count

        if outcome is not None and outcome.drained:
            count = outcome.count
            logger.info("%s: finished with %s items", item_spec.parent_id, count)
            break
        if stagnant >= stagnant_tolerance:
            logger.info("%s: no new items for %s rounds, stopping at %s", item_spec.parent_id, stagnant, count)
            break

        # jitter between rounds
        await page.wait_for_timeout(random.randint(200, 800))

    return count
