import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, List, Optional

from playwright.async_api import Locator

from .waiting import bounded

if TYPE_CHECKING:
    from .browser_engine import Session

logger = logging.getLogger(__name__)


class ActionExecutor:
    """Primitive page interactions, each one bounded by the configured timeouts.

    A timeout surfaces as ``NavigationTimeout``. Nothing here retries: retry
    policy belongs to the test runner.
    """

    def __init__(self, session: "Session"):
        self.session = session
        self.action_timeout_ms = session.settings.action_timeout_ms
        self.navigation_timeout_ms = session.settings.navigation_timeout_ms

    @property
    def page(self):
        return self.session.page

    def _locate(self, selector: str, index: int = 0) -> Locator:
        locator = self.page.locator(selector)
        return locator.nth(index) if index else locator.first

    async def navigate(self, path: str, wait_until: str = "domcontentloaded") -> str:
        """Navigate to a path relative to the base URL (or an absolute URL)"""
        url = self.session.absolute_url(path)
        logger.debug(f"[{self.session.id}] navigate {url}")

        async with bounded(f"navigation to {url}", self.navigation_timeout_ms, self.session):
            await self.page.goto(url, wait_until=wait_until, timeout=self.navigation_timeout_ms)

        return self.page.url

    async def go_back(self, wait_until: str = "domcontentloaded") -> str:
        async with bounded("navigation back", self.navigation_timeout_ms, self.session):
            await self.page.go_back(wait_until=wait_until, timeout=self.navigation_timeout_ms)
        return self.page.url

    @asynccontextmanager
    async def expect_navigation(self, description: str, wait_until: str = "domcontentloaded"):
        """Run the block and wait for the document it triggers to load.

        Reads made after the block see the new page, never the one that was
        on screen when the block started.
        """
        async with bounded(description, self.navigation_timeout_ms, self.session):
            async with self.page.expect_navigation(wait_until=wait_until, timeout=self.navigation_timeout_ms):
                yield

    async def click_and_navigate(self, selector: str, description: Optional[str] = None, index: int = 0) -> str:
        async with self.expect_navigation(description or f"navigation after clicking {selector}"):
            await self.click(selector, index)
        logger.debug(f"[{self.session.id}] now on {self.page.url}")
        return self.page.url

    async def fill(self, selector: str, value: str):
        async with bounded(f"fill {selector}", self.action_timeout_ms, self.session):
            await self._locate(selector).fill(value, timeout=self.action_timeout_ms)

    async def click(self, selector: str, index: int = 0):
        logger.debug(f"[{self.session.id}] click {selector}" + (f" #{index}" if index else ""))
        async with bounded(f"click {selector}", self.action_timeout_ms, self.session):
            await self._locate(selector, index).click(timeout=self.action_timeout_ms)

    async def hover(self, selector: str, index: int = 0):
        async with bounded(f"hover {selector}", self.action_timeout_ms, self.session):
            await self._locate(selector, index).hover(timeout=self.action_timeout_ms)

    async def check(self, selector: str):
        async with bounded(f"check {selector}", self.action_timeout_ms, self.session):
            await self._locate(selector).check(timeout=self.action_timeout_ms)

    async def select(self, selector: str, value: str):
        async with bounded(f"select {value} in {selector}", self.action_timeout_ms, self.session):
            await self._locate(selector).select_option(value, timeout=self.action_timeout_ms)

    async def hide(self, selector: str):
        """Hide the first match so a later check cannot mistake it for a new one"""
        async with bounded(f"hide {selector}", self.action_timeout_ms, self.session):
            await self._locate(selector).evaluate("element => { element.style.display = 'none'; }")

    async def wait_for_visible(self, selector: str, timeout_ms: Optional[int] = None):
        timeout_ms = timeout_ms or self.action_timeout_ms
        async with bounded(f"{selector} to become visible", timeout_ms, self.session):
            await self._locate(selector).wait_for(state="visible", timeout=timeout_ms)

    async def wait_for_hidden(self, selector: str, timeout_ms: Optional[int] = None):
        timeout_ms = timeout_ms or self.action_timeout_ms
        async with bounded(f"{selector} to disappear", timeout_ms, self.session):
            await self._locate(selector).wait_for(state="hidden", timeout=timeout_ms)

    async def wait_for_load(self, state: str = "load"):
        async with bounded(f"load state '{state}'", self.navigation_timeout_ms, self.session):
            await self.page.wait_for_load_state(state, timeout=self.navigation_timeout_ms)

    async def is_visible(self, selector: str, index: int = 0) -> bool:
        """Non-waiting visibility check"""
        return await self._locate(selector, index).is_visible()

    async def text_of(self, selector: str, index: int = 0) -> Optional[str]:
        """Text of a match, or None when it is not on the page"""
        locator = self._locate(selector, index)
        if not await locator.is_visible():
            return None
        # The element can detach between the two calls
        async with bounded(f"text of {selector}", self.action_timeout_ms, self.session):
            text = await locator.text_content(timeout=self.action_timeout_ms)
        return text.strip() if text is not None else None

    async def texts_of(self, selector: str) -> List[str]:
        async with bounded(f"texts of {selector}", self.action_timeout_ms, self.session):
            texts = await self.page.locator(selector).all_text_contents()
        return [text.strip() for text in texts]

    async def count(self, selector: str) -> int:
        async with bounded(f"count of {selector}", self.action_timeout_ms, self.session):
            return await self.page.locator(selector).count()

    async def attribute_of(self, selector: str, name: str) -> Optional[str]:
        async with bounded(f"attribute {name} of {selector}", self.action_timeout_ms, self.session):
            return await self._locate(selector).get_attribute(name, timeout=self.action_timeout_ms)

    async def evaluate(self, script: str, arg=None):
        return await self.page.evaluate(script, arg)
