"""
Browser-driven pagination of one target's ranking.

The walk is an explicit state machine::

    INIT -> LOADED(1) -> LOADING(n+1) -> LOADED(n+1) -> ... -> DONE
                 \\___________ any non-terminal state ___________-> FAILED

Browser failures are classified here, where they are first observed, and
re-raised as ``HarvestError`` subclasses carrying an ``ErrorKind``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, List, Optional

import structlog
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page, async_playwright
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from rankharvest.artifacts import ArtifactStore
from rankharvest.change.estimator import FreshSample
from rankharvest.config.config import BrowserConfig, SelectorConfig, SourceConfig
from rankharvest.errors import (
    ErrorKind,
    HarvestError,
    NavigationTimeoutError,
    ResourceExhaustedError,
    SessionLostError,
)
from rankharvest.extractor.ranking_extractor import RankingExtractor
from rankharvest.protocols import Record, Target

logger = structlog.get_logger(__name__)

_SESSION_LOST_MARKERS = (
    "target closed",
    "target page, context or browser has been closed",
    "browser has been closed",
    "browser closed",
    "connection closed",
    "session closed",
    "websocket",
)
_RESOURCE_MARKERS = ("out of memory", "page crashed", "oom")

_ROW_GROWTH_JS = "([selector, previous]) => document.querySelectorAll(selector).length > previous"


class WalkState(Enum):
    INIT = "init"
    LOADED = "loaded"
    LOADING = "loading"
    DONE = "done"
    FAILED = "failed"


def classify_browser_error(exc: BaseException) -> ErrorKind:
    """Map a rendering-layer failure to an ErrorKind."""
    if isinstance(exc, HarvestError):
        return exc.kind
    if isinstance(exc, (PlaywrightTimeoutError, TimeoutError)):
        return ErrorKind.TRANSIENT
    if isinstance(exc, MemoryError):
        return ErrorKind.RESOURCE_EXHAUSTED
    if isinstance(exc, PlaywrightError):
        message = str(exc).lower()
        if any(marker in message for marker in _RESOURCE_MARKERS):
            return ErrorKind.RESOURCE_EXHAUSTED
        if any(marker in message for marker in _SESSION_LOST_MARKERS):
            return ErrorKind.TRANSIENT
    return ErrorKind.PERMANENT


def to_harvest_error(exc: BaseException, target_key: str) -> HarvestError:
    if isinstance(exc, HarvestError):
        return exc
    kind = classify_browser_error(exc)
    if kind is ErrorKind.RESOURCE_EXHAUSTED:
        return ResourceExhaustedError(str(exc), target_key=target_key)
    if isinstance(exc, (PlaywrightTimeoutError, TimeoutError)):
        return NavigationTimeoutError(str(exc), target_key=target_key)
    if kind is ErrorKind.TRANSIENT:
        return SessionLostError(str(exc), target_key=target_key)
    return HarvestError(str(exc), target_key=target_key, kind=kind)


class BrowserSession:
    """Scoped Playwright browser; everything it opened is closed on exit."""

    def __init__(self, headless: bool = True, user_agent: str | None = None, navigation_timeout_ms: int = 60000):
        self.headless = headless
        self.user_agent = user_agent
        self.navigation_timeout_ms = navigation_timeout_ms
        self._playwright: Any = None
        self._browser: Any = None
        self._context: Any = None

    async def __aenter__(self) -> Page:
        self._playwright = await async_playwright().start()
        try:
            self._browser = await self._playwright.chromium.launch(headless=self.headless)
            self._context = await self._browser.new_context(user_agent=self.user_agent)
            page = await self._context.new_page()
            page.set_default_navigation_timeout(self.navigation_timeout_ms)
            return page
        except BaseException:
            await self._close()
            raise

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self._close()

    async def _close(self) -> None:
        for name, closer in (
            ("context", self._context.close if self._context else None),
            ("browser", self._browser.close if self._browser else None),
            ("playwright", self._playwright.stop if self._playwright else None),
        ):
            if closer is None:
                continue
            try:
                await closer()
            except PlaywrightError as e:
                logger.debug("Error while closing browser resource", resource=name, error=str(e))
        self._context = self._browser = self._playwright = None


@dataclass
class WalkProgress:
    target: Target
    state: WalkState = WalkState.INIT
    page: int = 0
    records: List[Record] = field(default_factory=list)

    def move(self, state: WalkState, page: Optional[int] = None) -> None:
        self.state = state
        if page is not None:
            self.page = page
        logger.debug("Walk state", target=self.target.key, state=state.value, page=self.page)


class PageWalker:
    """Walks every page of one target and returns its accumulated records."""

    def __init__(
        self,
        source: Optional[SourceConfig] = None,
        selectors: Optional[SelectorConfig] = None,
        browser: Optional[BrowserConfig] = None,
        extractor: Optional[RankingExtractor] = None,
        artifacts: Optional[ArtifactStore] = None,
        session_factory: Optional[Callable[[], Any]] = None,
    ) -> None:
        self.source = source or SourceConfig()
        self.selectors = selectors or SelectorConfig()
        self.browser = browser or BrowserConfig()
        self.extractor = extractor or RankingExtractor(self.selectors)
        self.artifacts = artifacts or ArtifactStore()
        self._session_factory = session_factory or self._default_session

    def _default_session(self) -> BrowserSession:
        return BrowserSession(
            headless=self.browser.headless,
            user_agent=self.source.user_agent,
            navigation_timeout_ms=self.browser.navigation_timeout_ms,
        )

    def target_url(self, target: Target) -> str:
        query = self.source.target_query.format(region_id=target.region_id, server_id=target.server_id)
        separator = "&" if "?" in self.source.base_url else "?"
        return f"{self.source.base_url}{separator}{query}"

    async def fetch_first_page(self, target: Target) -> FreshSample:
        """Load only page 1; the sample is incomplete when more pages are offered."""
        samples: List[FreshSample] = []

        def keep_sample(sample: FreshSample) -> bool:
            samples.append(sample)
            return False

        await self._walk(target, keep_sample)
        return samples[0]

    async def walk(self, target: Target) -> List[Record]:
        return await self._walk(target, None) or []

    async def walk_if_changed(
        self, target: Target, needs_full_walk: Callable[[FreshSample], bool]
    ) -> Optional[List[Record]]:
        """
        Load page 1 and hand its sample to ``needs_full_walk``. Paging goes on
        in the same browser session only when it returns True; otherwise the
        session is closed and None is returned.
        """
        return await self._walk(target, needs_full_walk)

    async def _walk(
        self, target: Target, needs_full_walk: Optional[Callable[[FreshSample], bool]]
    ) -> Optional[List[Record]]:
        progress = WalkProgress(target)
        async with self._session_factory() as page:
            try:
                await self._open(page, progress)
                if needs_full_walk is not None:
                    has_more = await self._load_more_available(page)
                    sample = FreshSample(tuple(r.with_target(target) for r in progress.records), complete=not has_more)
                    if not needs_full_walk(sample):
                        return None
                while progress.state is WalkState.LOADED:
                    await self._advance(page, progress)
            except BaseException as exc:
                raise await self._fail(page, progress, exc)

        logger.info("Walk complete", target=target.key, pages=progress.page, records=len(progress.records))
        return [r.with_target(target) for r in progress.records]

    async def _open(self, page: Page, progress: WalkProgress) -> None:
        url = self.target_url(progress.target)
        logger.info("Opening target", target=progress.target.key, url=url)
        await page.goto(url, wait_until="domcontentloaded")
        await self._dismiss_consent(page)

        try:
            await page.wait_for_selector(self.selectors.row, timeout=self.browser.wait_for_selector_ms)
        except PlaywrightTimeoutError:
            logger.warning("No ranking rows appeared", target=progress.target.key)

        progress.records = await self._extract(page, progress.target, 1)
        progress.move(WalkState.LOADED, page=1)

    async def _advance(self, page: Page, progress: WalkProgress) -> None:
        if progress.page >= self.browser.max_pages:
            logger.info("Page ceiling reached", target=progress.target.key, max_pages=self.browser.max_pages)
            progress.move(WalkState.DONE)
            return

        if not await self._load_more_available(page):
            progress.move(WalkState.DONE)
            return

        previous_rows = await page.locator(self.selectors.row).count()
        progress.move(WalkState.LOADING)
        await page.locator(self.selectors.load_more).first.click(timeout=self.browser.wait_for_selector_ms)

        try:
            await page.wait_for_function(
                _ROW_GROWTH_JS, arg=[self.selectors.row, previous_rows], timeout=self.browser.wait_for_growth_ms
            )
        except PlaywrightTimeoutError:
            logger.info("Row count did not grow, keeping partial data", target=progress.target.key, page=progress.page)
            progress.move(WalkState.DONE)
            return

        records = await self._extract(page, progress.target, progress.page + 1)
        if len(records) <= len(progress.records):
            progress.move(WalkState.DONE)
            return

        progress.records = records
        progress.move(WalkState.LOADED, page=progress.page + 1)
        await page.wait_for_timeout(self.browser.wait_between_pages_ms)

    async def _load_more_available(self, page: Page) -> bool:
        control = page.locator(self.selectors.load_more)
        if await control.count() == 0:
            return False
        return await control.first.is_visible()

    async def _dismiss_consent(self, page: Page) -> None:
        try:
            button = page.locator(self.selectors.consent_button)
            if await button.count() > 0:
                await button.first.click(timeout=self.browser.wait_for_selector_ms)
                logger.debug("Dismissed consent dialog")
        except PlaywrightError as e:
            logger.debug("Consent dialog not dismissed", error=str(e))

    async def _extract(self, page: Page, target: Target, page_number: int) -> List[Record]:
        markup = await page.content()
        await self.artifacts.save_markup(markup, f"{target.key}_p{page_number}")
        return self.extractor.extract(markup)

    async def _fail(self, page: Page, progress: WalkProgress, exc: BaseException) -> BaseException:
        if not isinstance(exc, Exception):
            return exc
        progress.move(WalkState.FAILED)
        error = to_harvest_error(exc, progress.target.key)
        logger.warning(
            "Walk failed",
            target=progress.target.key,
            page=progress.page,
            error_kind=error.kind.value,
            error=str(exc),
        )
        await self._screenshot(page, progress.target)
        return error

    async def _screenshot(self, page: Page, target: Target) -> None:
        path = self.artifacts.screenshot_path(f"error_{target.key}")
        if path is None:
            return
        try:
            await page.screenshot(path=str(path), full_page=True)
            logger.info("Saved failure screenshot", path=str(path))
        except PlaywrightError as e:
            logger.debug("Could not capture screenshot", error=str(e))
