"""Configuration loading and validation for a harvest run."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

from dotenv import load_dotenv

from .errors import ConfigurationError
from .models import CookieParam, ResultType

logger = logging.getLogger(__name__)

DEFAULT_RESULTS_LIMIT = 200
UNLIMITED_RESULTS = 999999
DEFAULT_MAX_CONCURRENCY = 1000
# Comments on large posts can take hours to scroll through.
DEFAULT_HANDLE_PAGE_TIMEOUT = 300 * 60

_TRUE_VALUES = {"1", "true", "yes"}


@dataclass(slots=True)
class HarvestConfig:
    """Holds runtime options for one harvest run."""

    results_type: Optional[str]
    results_limit: int = DEFAULT_RESULTS_LIMIT
    posts_until: Optional[datetime] = None
    scroll_wait_secs: float = 15
    page_timeout: int = 60
    max_request_retries: int = 3
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY
    max_error_score: float = 3
    handle_page_timeout: float = DEFAULT_HANDLE_PAGE_TIMEOUT
    login_cookies: List[Any] = field(default_factory=list)
    login_username: Optional[str] = None
    login_password: Optional[str] = None
    direct_urls: List[str] = field(default_factory=list)
    proxy_urls: List[str] = field(default_factory=list)
    require_proxy: bool = False
    block_more_assets: bool = False
    include_has_stories: bool = False
    check_proxy_ip: bool = False
    extend_output_function: Optional[str] = None
    extend_scraper_function: Optional[str] = None
    headless: bool = True
    state_dir: Path = Path("harvest_state")
    output_path: Path = Path("dataset.jsonl")

    @property
    def credential_sets(self) -> List[List[CookieParam]]:
        """``loginCookies`` may hold a single cookie list or a list of them."""

        if not self.login_cookies:
            return []
        if isinstance(self.login_cookies[0], list):
            return [list(cookies) for cookies in self.login_cookies if cookies]
        return [list(self.login_cookies)]

    @property
    def credential_count(self) -> int:
        return len(self.credential_sets)

    @property
    def effective_concurrency(self) -> int:
        if self.credential_count:
            # One navigation per credential at a time.
            return max(1, min(self.max_concurrency, self.credential_count))
        if self.results_type == ResultType.COOKIES.value:
            return 1
        return max(1, self.max_concurrency)

    @property
    def results_limit_or_default(self) -> int:
        return self.results_limit or UNLIMITED_RESULTS

    @property
    def has_proxy(self) -> bool:
        return bool(self.proxy_urls)


def _read_input(input_path: Optional[Path]) -> Dict[str, Any]:
    if input_path is None:
        return {}
    try:
        raw = json.loads(Path(input_path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigurationError(f"Could not read input file {input_path}: {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigurationError(f"Input file {input_path} must contain a JSON object.")
    return raw


def _read_cookie_file(path: Optional[str]) -> List[Any]:
    if not path:
        return []
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigurationError(f"Could not read cookie file {path}: {exc}") from exc
    return data if isinstance(data, list) else []


def _parse_date(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError as exc:
            raise ConfigurationError(f"scrapePostsUntilDate '{value}' is not an ISO date.") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _split_urls(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in _TRUE_VALUES


def load_configuration(
    input_path: Optional[Path] = None,
    *,
    overrides: Optional[Mapping[str, Any]] = None,
) -> HarvestConfig:
    """Builds a ``HarvestConfig`` from the run input, CLI overrides and environment."""

    load_dotenv()

    data = _read_input(input_path)
    if overrides:
        data.update({key: value for key, value in overrides.items() if value is not None})

    proxy = data.get("proxy") or {}
    proxy_urls = list(proxy.get("proxyUrls") or []) or _split_urls(os.getenv("PROXY_URLS"))

    login_cookies = data.get("loginCookies") or _read_cookie_file(os.getenv("LOGIN_COOKIES"))

    headless = data.get("headless")
    if headless is None:
        headless = _env_flag("HEADLESS", "true")

    return HarvestConfig(
        results_type=data.get("resultsType"),
        results_limit=int(data.get("resultsLimit", DEFAULT_RESULTS_LIMIT) or 0),
        posts_until=_parse_date(data.get("scrapePostsUntilDate")),
        scroll_wait_secs=float(data.get("scrollWaitSecs", 15)),
        page_timeout=int(data.get("pageTimeout", 60)),
        max_request_retries=int(data.get("maxRequestRetries", 3)),
        max_concurrency=int(data.get("maxConcurrency") or DEFAULT_MAX_CONCURRENCY),
        max_error_score=float(data.get("maxErrorCount") or 3),
        login_cookies=list(login_cookies or []),
        login_username=data.get("loginUsername") or os.getenv("LOGIN_USERNAME") or None,
        login_password=data.get("loginPassword") or os.getenv("LOGIN_PASSWORD") or None,
        direct_urls=list(data.get("directUrls") or []),
        proxy_urls=proxy_urls,
        require_proxy=bool(data.get("requireProxy")) or _env_flag("REQUIRE_PROXY"),
        block_more_assets=bool(data.get("blockMoreAssets", False)),
        include_has_stories=bool(data.get("includeHasStories", False)),
        check_proxy_ip=bool(data.get("checkProxyIp", False)),
        extend_output_function=data.get("extendOutputFunction") or None,
        extend_scraper_function=data.get("extendScraperFunction") or None,
        headless=bool(headless),
        state_dir=Path(data.get("stateDir") or os.getenv("HARVEST_STATE_DIR", "harvest_state")),
        output_path=Path(data.get("output") or os.getenv("HARVEST_OUTPUT", "dataset.jsonl")),
    )


def validate_configuration(config: HarvestConfig, supported: Sequence[str] = ()) -> None:
    """Fails fast on input problems that would otherwise surface mid-crawl."""

    supported = tuple(supported) or tuple(ResultType.values())

    if config.require_proxy and not config.has_proxy:
        raise ConfigurationError.proxy_required()
    if not config.results_type:
        raise ConfigurationError.type_required()
    if config.results_type not in supported:
        raise ConfigurationError.unsupported_type(config.results_type, supported)

    is_cookie_capture = config.results_type == ResultType.COOKIES.value
    has_login = bool(config.login_username and config.login_password)
    if is_cookie_capture and not has_login:
        raise ConfigurationError.credentials_required()
    if has_login and not is_cookie_capture:
        logger.warning("You provided username and password but they will be ignored")

    if config.credential_count:
        logger.warning(
            "Cookies were used, setting maxConcurrency to %s. Count of available cookies: %s!",
            config.effective_concurrency,
            config.credential_count,
        )
