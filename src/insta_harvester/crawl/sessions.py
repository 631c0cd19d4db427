"""Session lifecycle: credential pool, validation and retirement."""

from __future__ import annotations

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncIterator, Dict, List, Optional, Sequence

from playwright.async_api import BrowserContext, Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from ..core.errors import CredentialExhaustedError, SessionValidationError
from ..core.models import CookieParam
from .utils import normalize_site_cookies

logger = logging.getLogger(__name__)

DEFAULT_MAX_POOL_SIZE = 1000
MAX_USAGE_COUNT = 50000
VIEWER_MARKER_TIMEOUT_MS = 15000

VIEWER_MARKER_SCRIPT = "() => !!(window._sharedData && window._sharedData.config && window._sharedData.config.viewerId)"
VIEWER_ID_SCRIPT = "() => window._sharedData.config.viewerId"


class SessionState(str, Enum):
    FRESH = "fresh"
    USABLE = "usable"
    RETIRED = "retired"


class Outcome(str, Enum):
    GOOD = "good"
    BAD = "bad"
    RETIRE = "retire"


@dataclass(slots=True)
class Session:
    """A cookie identity used for one navigation at a time."""

    id: str
    cookies: List[CookieParam] = field(default_factory=list)
    credentialed: bool = False
    max_error_score: float = 3
    max_usage_count: int = MAX_USAGE_COUNT
    usage_count: int = 0
    error_score: float = 0
    state: SessionState = SessionState.FRESH

    def is_usable(self) -> bool:
        return (
            self.state is not SessionState.RETIRED
            and self.error_score < self.max_error_score
            and self.usage_count < self.max_usage_count
        )

    def mark_good(self) -> None:
        self.usage_count += 1
        self.error_score = max(0.0, self.error_score - 0.5)
        if self.state is SessionState.FRESH:
            self.state = SessionState.USABLE
        self._retire_if_spent()

    def mark_bad(self) -> None:
        self.usage_count += 1
        self.error_score += 1
        self._retire_if_spent()

    def retire(self) -> None:
        self.state = SessionState.RETIRED

    def _retire_if_spent(self) -> None:
        if self.error_score >= self.max_error_score or self.usage_count >= self.max_usage_count:
            self.retire()


class SessionPool:
    """Hands out sessions so that no credential is used by two navigations at once.

    With credentials the pool size is pinned to the number of cookie sets;
    anonymous pools grow on demand up to ``max_pool_size``.
    """

    def __init__(
        self,
        credential_sets: Sequence[Sequence[dict]] = (),
        *,
        max_error_score: float = 3,
        max_pool_size: int = DEFAULT_MAX_POOL_SIZE,
    ) -> None:
        self.max_error_score = max_error_score
        self._sessions: Dict[str, Session] = {}
        self._in_use: set[str] = set()
        self._condition = asyncio.Condition()

        for cookies in credential_sets:
            session = Session(
                id=f"session_{uuid.uuid4().hex[:10]}",
                cookies=normalize_site_cookies(cookies),
                credentialed=True,
                max_error_score=max_error_score,
            )
            self._sessions[session.id] = session

        self.credentialed = bool(self._sessions)
        self.capacity = len(self._sessions) if self.credentialed else max(1, max_pool_size)

    @property
    def sessions(self) -> List[Session]:
        return list(self._sessions.values())

    @property
    def in_use_count(self) -> int:
        return len(self._in_use)

    @property
    def invalid_count(self) -> int:
        return sum(1 for session in self._sessions.values() if session.credentialed and not session.is_usable())

    def has_usable_credentials(self, exclude: Optional[Session] = None) -> bool:
        return any(
            session.credentialed and session.is_usable()
            for session in self._sessions.values()
            if session is not exclude
        )

    async def acquire(self) -> Session:
        async with self._condition:
            while True:
                if self.credentialed and not self.has_usable_credentials():
                    raise CredentialExhaustedError("No login cookies available.")

                session = self._pick_idle()
                if session is not None:
                    self._in_use.add(session.id)
                    return session

                await self._condition.wait()

    async def release(self, session: Session, outcome: Outcome) -> None:
        if outcome is Outcome.GOOD:
            session.mark_good()
        elif outcome is Outcome.BAD:
            session.mark_bad()
        else:
            session.retire()

        async with self._condition:
            self._in_use.discard(session.id)
            if not session.credentialed and not session.is_usable():
                self._sessions.pop(session.id, None)
            self._condition.notify_all()

    @asynccontextmanager
    async def lease(self) -> AsyncIterator["SessionLease"]:
        session = await self.acquire()
        lease = SessionLease(session)
        try:
            yield lease
        finally:
            await self.release(session, lease.outcome)

    def _pick_idle(self) -> Optional[Session]:
        for session in self._sessions.values():
            if session.id not in self._in_use and session.is_usable():
                return session

        if self.credentialed or len(self._sessions) >= self.capacity:
            return None

        session = Session(id=f"session_{uuid.uuid4().hex[:10]}", max_error_score=self.max_error_score)
        self._sessions[session.id] = session
        return session

    # ------------------------------------------------------------------
    # Browser-facing helpers
    # ------------------------------------------------------------------
    async def apply_cookies(self, session: Session, context: BrowserContext) -> None:
        if session.cookies:
            await context.add_cookies(list(session.cookies))

    async def validate(self, session: Session, page: Page, *, timeout: int = VIEWER_MARKER_TIMEOUT_MS) -> str:
        """Waits for the logged-in viewer marker and returns the viewer id.

        The caller releases a failed session as ``Outcome.BAD``. When no other
        usable credential is left the run cannot continue authenticated, so
        the session is retired and :class:`CredentialExhaustedError` is raised.
        """

        viewer_id = None
        try:
            await page.wait_for_function(VIEWER_MARKER_SCRIPT, timeout=timeout)
            viewer_id = await page.evaluate(VIEWER_ID_SCRIPT)
        except PlaywrightTimeoutError:
            logger.warning("Viewer marker did not appear for %s", session.id)

        if viewer_id:
            if session.state is SessionState.FRESH:
                session.state = SessionState.USABLE
            return str(viewer_id)

        if not self.has_usable_credentials(exclude=session):
            session.retire()
            raise CredentialExhaustedError()
        raise SessionValidationError("Page didn't load properly with login, retrying...")


@dataclass
class SessionLease:
    """Carries the outcome the holder wants recorded when the lease ends."""

    session: Session
    outcome: Outcome = Outcome.BAD
