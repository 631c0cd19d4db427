"""Reading the JSON payload a page embeds for its first render."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from bs4 import BeautifulSoup
from playwright.async_api import Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from ..core.errors import InitialDataTimeout

logger = logging.getLogger(__name__)

INITIAL_DATA_TIMEOUT_MS = 20000

INITIAL_DATA_READY_SCRIPT = "() => !!(window.__initialData && !window.__initialData.pending && window.__initialData.data)"
INITIAL_DATA_SCRIPT = "() => window.__initialData"
ADDITIONAL_DATA_SCRIPT = """() => {
    try {
        return Object.values(window.__additionalData)[0].data;
    } catch (e) {
        return {};
    }
}"""

_SHARED_DATA_RE = re.compile(r"window\._sharedData\s*=\s*(\{.*\})\s*;?\s*$", re.DOTALL)
_ADDITIONAL_DATA_RE = re.compile(r"window\.__additionalDataLoaded\(\s*['\"][^'\"]*['\"]\s*,\s*(\{.*\})\s*\)\s*;?\s*$", re.DOTALL)


@dataclass
class InitialData:
    data: Dict[str, Any]
    additional: Dict[str, Any] = field(default_factory=dict)

    @property
    def entry_data(self) -> Dict[str, Any]:
        return self.data.get("entry_data") or {}


def _json_from_scripts(html: str, pattern: re.Pattern[str]) -> Optional[Dict[str, Any]]:
    soup = BeautifulSoup(html, "html.parser")
    for script in soup.find_all("script"):
        text = script.string or script.get_text() or ""
        match = pattern.search(text.strip())
        if not match:
            continue
        try:
            value = json.loads(match.group(1))
        except json.JSONDecodeError:
            logger.debug("Embedded script did not contain valid JSON")
            continue
        if isinstance(value, dict):
            return value
    return None


def parse_shared_data(html: str) -> Optional[Dict[str, Any]]:
    return _json_from_scripts(html, _SHARED_DATA_RE)


def parse_additional_data(html: str) -> Dict[str, Any]:
    return _json_from_scripts(html, _ADDITIONAL_DATA_RE) or {}


def is_private_page(html: str) -> bool:
    """Private and removed pages render with an ``p-error`` body class."""

    soup = BeautifulSoup(html, "html.parser")
    body = soup.body
    if body is None:
        return False
    return "p-error" in (body.get("class") or [])


async def read_initial_data(page: Page, *, timeout: int = INITIAL_DATA_TIMEOUT_MS) -> InitialData:
    """Waits for the page's embedded data; falls back to the raw HTML."""

    try:
        await page.wait_for_function(INITIAL_DATA_READY_SCRIPT, timeout=timeout)
        raw = await page.evaluate(INITIAL_DATA_SCRIPT) or {}
        additional = await page.evaluate(ADDITIONAL_DATA_SCRIPT) or {}
        if raw.get("pending"):
            raise InitialDataTimeout("Page took too long to load initial data, trying again.")
        data = raw.get("data") or {}
        if data.get("entry_data"):
            return InitialData(data=data, additional=additional)
    except PlaywrightTimeoutError:
        logger.debug("window.__initialData never settled on %s, reading HTML", page.url)

    html = await page.content()
    shared = parse_shared_data(html)
    if not shared or not shared.get("entry_data"):
        raise InitialDataTimeout("Page does not contain initial data, trying again.")
    return InitialData(data=shared, additional=parse_additional_data(html))
