"""
Browser automation collaborator.

The healing engine and the testing pipeline talk to the browser only
through ``BrowserDriver``. ``PlaywrightBrowserFactory`` owns the browser
process and hands out drivers whose context is closed when the
``open_driver`` block exits, on success and failure alike.
"""

import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Optional

from playwright.async_api import (
    Browser,
    Error as PlaywrightError,
    Locator,
    Page,
    async_playwright,
)

from ..core.config import settings
from ..core.healing_utils import parse_locator
from ..core.models import LocatorType

logger = logging.getLogger(__name__)


class BrowserError(Exception):
    """A browser action failed (timeout, detached element, crashed page)."""


class NavigationError(BrowserError):
    """A page could not be loaded."""


class BrowserDriver(ABC):
    """Capabilities the core needs from a browser page.

    Implementations raise BrowserError (NavigationError for page loads)
    and never leak driver-specific exceptions.
    """

    video_path: Optional[str] = None

    @property
    @abstractmethod
    def url(self) -> str:
        ...

    @abstractmethod
    async def navigate(self, url: str) -> Optional[int]:
        """Open a URL and return the HTTP status of the main response."""

    @abstractmethod
    async def title(self) -> str:
        ...

    @abstractmethod
    async def content(self) -> str:
        """Serialized DOM of the current page."""

    @abstractmethod
    async def find_element(self, locator_type: LocatorType, value: str,
                           timeout_ms: Optional[int] = None) -> Optional[Any]:
        """Return a handle only when exactly one visible element matches."""

    @abstractmethod
    async def screenshot(self, element: Optional[Any] = None) -> bytes:
        ...

    @abstractmethod
    async def click(self, element: Any) -> None:
        ...

    @abstractmethod
    async def fill(self, element: Any, value: str) -> None:
        ...

    @abstractmethod
    async def select(self, element: Any, value: str) -> None:
        ...

    @abstractmethod
    async def press(self, element: Any, key: str) -> None:
        ...

    @abstractmethod
    async def wait_for_load_state(self, state: str = "load", timeout_ms: Optional[int] = None) -> None:
        ...

    @abstractmethod
    async def wait(self, milliseconds: int) -> None:
        ...

    @abstractmethod
    async def clear_session(self) -> None:
        """Drop cookies and storage so the page is anonymous again."""

    async def find(self, locator: str, timeout_ms: Optional[int] = None) -> Optional[Any]:
        locator_type, value = parse_locator(locator)
        return await self.find_element(locator_type, value, timeout_ms)


class PlaywrightBrowserDriver(BrowserDriver):
    """BrowserDriver backed by a Playwright page."""

    def __init__(self, page: Page, element_timeout_ms: int, navigation_timeout_ms: int):
        self.page = page
        self.element_timeout_ms = element_timeout_ms
        self.navigation_timeout_ms = navigation_timeout_ms

    @property
    def url(self) -> str:
        return self.page.url

    async def navigate(self, url: str) -> Optional[int]:
        try:
            response = await self.page.goto(
                url, wait_until="domcontentloaded", timeout=self.navigation_timeout_ms
            )
        except PlaywrightError as e:
            raise NavigationError(f"Navigation to {url} failed: {e}") from e
        return response.status if response else None

    async def title(self) -> str:
        return await self._guard("Reading title", self.page.title())

    async def content(self) -> str:
        return await self._guard("Reading content", self.page.content())

    def _locator(self, locator_type: LocatorType, value: str) -> Locator:
        if locator_type == LocatorType.ID:
            return self.page.locator(f'[id="{value}"]')
        if locator_type == LocatorType.XPATH:
            return self.page.locator(f"xpath={value}")
        if locator_type == LocatorType.TEXT:
            return self.page.get_by_text(value, exact=True)
        if locator_type == LocatorType.ROLE:
            return self.page.locator(f"role={value}")
        if locator_type == LocatorType.TEST_ID:
            return self.page.get_by_test_id(value)
        if locator_type == LocatorType.ARIA_LABEL:
            return self.page.locator(f'[aria-label="{value}"]')
        return self.page.locator(value)

    async def find_element(self, locator_type: LocatorType, value: str,
                           timeout_ms: Optional[int] = None) -> Optional[Locator]:
        locator = self._locator(locator_type, value)
        try:
            await locator.first.wait_for(
                state="visible", timeout=timeout_ms or self.element_timeout_ms
            )
            visible = [handle for handle in await locator.all() if await handle.is_visible()]
        except PlaywrightError as e:
            logger.debug(f"Locator {locator_type.value}={value} did not resolve: {e}")
            return None

        if len(visible) != 1:
            logger.debug(f"Locator {locator_type.value}={value} matched {len(visible)} visible elements")
            return None
        return visible[0]

    async def _guard(self, action: str, awaitable):
        try:
            return await awaitable
        except PlaywrightError as e:
            raise BrowserError(f"{action} failed: {e}") from e

    async def screenshot(self, element: Optional[Locator] = None) -> bytes:
        if element is not None:
            return await self._guard("Element screenshot", element.screenshot())
        return await self._guard("Page screenshot", self.page.screenshot())

    async def click(self, element: Locator) -> None:
        await self._guard("Click", element.click(timeout=self.element_timeout_ms))

    async def fill(self, element: Locator, value: str) -> None:
        await self._guard("Fill", element.fill(value, timeout=self.element_timeout_ms))

    async def select(self, element: Locator, value: str) -> None:
        await self._guard("Select", element.select_option(value, timeout=self.element_timeout_ms))

    async def press(self, element: Locator, key: str) -> None:
        await self._guard("Key press", element.press(key, timeout=self.element_timeout_ms))

    async def wait_for_load_state(self, state: str = "load", timeout_ms: Optional[int] = None) -> None:
        await self._guard(
            f"Waiting for {state}",
            self.page.wait_for_load_state(state, timeout=timeout_ms or self.navigation_timeout_ms),
        )

    async def wait(self, milliseconds: int) -> None:
        await self._guard("Waiting", self.page.wait_for_timeout(milliseconds))

    async def clear_session(self) -> None:
        await self._guard("Clearing cookies", self.page.context.clear_cookies())
        await self._guard("Clearing storage", self.page.evaluate(
            "() => { try { localStorage.clear(); sessionStorage.clear(); } catch (e) {} }"
        ))


class PlaywrightBrowserFactory:
    """Owns one Playwright browser and hands out isolated drivers."""

    def __init__(self, headless: Optional[bool] = None,
                 navigation_timeout_ms: Optional[int] = None,
                 element_timeout_ms: Optional[int] = None):
        self.headless = settings.BROWSER_HEADLESS if headless is None else headless
        self.navigation_timeout_ms = navigation_timeout_ms or settings.NAVIGATION_TIMEOUT_MS
        self.element_timeout_ms = element_timeout_ms or settings.ELEMENT_TIMEOUT_MS
        self._playwright = None
        self._browser: Optional[Browser] = None

    async def start(self) -> None:
        if self._browser is not None:
            return
        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(headless=self.headless)
        logger.info(f"Browser launched (headless={self.headless})")

    async def stop(self) -> None:
        try:
            if self._browser is not None:
                await self._browser.close()
        finally:
            self._browser = None
            if self._playwright is not None:
                await self._playwright.stop()
                self._playwright = None
        logger.info("Browser stopped")

    async def __aenter__(self) -> 'PlaywrightBrowserFactory':
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    @asynccontextmanager
    async def open_driver(self, record_video_dir: Optional[str] = None) -> AsyncIterator[BrowserDriver]:
        """Open a fresh browser context for the duration of the block."""
        if self._browser is None:
            raise RuntimeError("Browser factory is not started")

        context_options = {}
        if record_video_dir:
            Path(record_video_dir).mkdir(parents=True, exist_ok=True)
            context_options["record_video_dir"] = record_video_dir

        context = await self._browser.new_context(**context_options)
        page = await context.new_page()
        driver = PlaywrightBrowserDriver(page, self.element_timeout_ms, self.navigation_timeout_ms)
        try:
            yield driver
        finally:
            await context.close()
            if record_video_dir and page.video:
                driver.video_path = str(await page.video.path())
