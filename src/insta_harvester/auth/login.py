"""Login flow used by the cookie-capture mode."""

from __future__ import annotations

import logging
from typing import List

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from ..core.errors import NavigationError
from ..core.models import CookieParam

logger = logging.getLogger(__name__)

LOGIN_URL = "https://www.instagram.com/accounts/login/"
LOGIN_FORM_TIMEOUT = 15000
LOGIN_REDIRECT_TIMEOUT = 30000


async def _close_overlays(page: Page) -> None:
    """Best-effort dismissal of the cookie consent dialog."""

    selectors = (
        "button:has-text('Only allow essential cookies')",
        "button:has-text('Allow all cookies')",
        "button:has-text('Accept')",
    )
    for selector in selectors:
        try:
            locator = page.locator(selector)
            if await locator.count() > 0:
                await locator.first.click(timeout=1500)
                return
        except PlaywrightTimeoutError:
            continue


async def login(page: Page, username: str, password: str) -> List[CookieParam]:
    """Logs in with the form and returns the session cookies."""

    try:
        await page.goto(LOGIN_URL, wait_until="domcontentloaded")
        await _close_overlays(page)

        await page.wait_for_selector("input[name='username']", timeout=LOGIN_FORM_TIMEOUT)
        await page.locator("input[name='username']").fill(username)
        await page.locator("input[name='password']").fill(password)
        await page.locator("input[name='password']").press("Enter")

        await page.wait_for_url(lambda current: "/accounts/login" not in current, timeout=LOGIN_REDIRECT_TIMEOUT)
    except PlaywrightTimeoutError as exc:
        raise NavigationError(f"Login as {username} did not complete: {exc}") from exc
    except PlaywrightError as exc:
        raise NavigationError(f"Login page failed to load: {exc}") from exc

    cookies = await page.context.cookies()
    logger.info("Logged in as %s, captured %s cookies", username, len(cookies))
    return cookies  # type: ignore[return-value]
