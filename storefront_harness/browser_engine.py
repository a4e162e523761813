import itertools
import logging
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar
from urllib.parse import urljoin

from playwright.async_api import async_playwright, Browser, BrowserContext, Page
from playwright.async_api import Error as PlaywrightError
from pydantic import BaseModel, Field

from .action_executor import ActionExecutor
from .config import DeviceProfile, HarnessSettings, get_settings
from .errors import SessionStateError

logger = logging.getLogger(__name__)

T = TypeVar("T")

_session_ids = itertools.count(1)


class SessionOptions(BaseModel):
    """How a browsing context should be set up"""
    device: Optional[str] = None
    viewport: Optional[Dict[str, int]] = None
    user_agent: Optional[str] = None
    cookies: List[Dict[str, Any]] = Field(default_factory=list)


class Session:
    """One isolated browsing context (own cookie jar and storage) and its page"""

    def __init__(
            self,
            session_id: str,
            context: BrowserContext,
            page: Page,
            settings: HarnessSettings
    ):
        self.id = session_id
        self.context = context
        self.page = page
        self.settings = settings
        self.actions = ActionExecutor(self)
        self.authenticated_as: Optional[str] = None
        self.pre_submit_cookies: List[Dict[str, Any]] = []
        self.closed = False

    def __repr__(self) -> str:
        return f"<Session {self.id} url={self.url!r} authenticated_as={self.authenticated_as!r}>"

    @property
    def url(self) -> str:
        return self.page.url

    def absolute_url(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return urljoin(self.settings.base_url.rstrip("/") + "/", path.lstrip("/"))

    def _ensure_open(self):
        if self.closed:
            raise SessionStateError(f"Session {self.id} has already been destroyed")

    async def cookies(self) -> List[Dict[str, Any]]:
        self._ensure_open()
        return await self.context.cookies()

    async def session_cookies(self) -> List[Dict[str, Any]]:
        """Cookies whose name matches one of the configured session patterns"""
        patterns = [p.lower() for p in self.settings.session_cookie_patterns]
        return [
            cookie for cookie in await self.cookies()
            if any(p in cookie["name"].lower() for p in patterns)
        ]

    async def session_cookie(self) -> Optional[Dict[str, Any]]:
        cookies = await self.session_cookies()
        return cookies[0] if cookies else None

    async def add_cookies(self, cookies: List[Dict[str, Any]]):
        self._ensure_open()
        await self.context.add_cookies(cookies)

    async def snapshot_cookies(self):
        """Remember the session cookies as they were before a submit"""
        self.pre_submit_cookies = await self.session_cookies()


class BrowserEngine:
    def __init__(self, settings: Optional[HarnessSettings] = None):
        self.settings = settings or get_settings()
        self.playwright = None
        self.browser: Optional[Browser] = None
        self.sessions: Dict[str, Session] = {}

    async def __aenter__(self) -> "BrowserEngine":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.cleanup()

    async def initialize(self):
        """Initialize Playwright and browser"""
        self.playwright = await async_playwright().start()
        browser_type = getattr(self.playwright, self.settings.browser)
        self.browser = await browser_type.launch(
            headless=self.settings.headless,
            slow_mo=self.settings.slow_mo_ms,
            args=['--no-sandbox', '--disable-setuid-sandbox'] if self.settings.browser == "chromium" else None
        )
        logger.info(f"Launched {self.settings.browser} (headless={self.settings.headless}) for {self.settings.base_url}")

    def _context_args(self, options: SessionOptions) -> Dict[str, Any]:
        profile = DeviceProfile(
            width=self.settings.viewport_width,
            height=self.settings.viewport_height
        )
        if options.device:
            profile = self.settings.device(options.device)

        viewport = options.viewport or {"width": profile.width, "height": profile.height}
        args: Dict[str, Any] = {"viewport": viewport}

        user_agent = options.user_agent or profile.user_agent
        if user_agent:
            args["user_agent"] = user_agent

        return args

    async def create_session(self, options: Optional[SessionOptions] = None) -> Session:
        """Open a fresh browser context and page"""
        if self.browser is None:
            raise SessionStateError("BrowserEngine.initialize() must run before creating sessions")

        options = options or SessionOptions()
        session_id = f"session-{next(_session_ids)}"

        context = await self.browser.new_context(**self._context_args(options))
        context.set_default_timeout(self.settings.action_timeout_ms)
        context.set_default_navigation_timeout(self.settings.navigation_timeout_ms)
        page = await context.new_page()

        # Set up console and error logging
        page.on("console", lambda msg: logger.debug(f"[{session_id}] console: {msg.text}"))
        page.on("pageerror", lambda err: logger.debug(f"[{session_id}] page error: {err}"))

        session = Session(session_id, context, page, self.settings)
        if options.cookies:
            await session.add_cookies(options.cookies)

        self.sessions[session_id] = session
        logger.debug(f"Created {session_id} with {options.model_dump(exclude_defaults=True)}")
        return session

    async def destroy_session(self, session: Session):
        """Close the page and context; safe to call more than once"""
        if session.closed:
            return

        session.closed = True
        session.authenticated_as = None
        self.sessions.pop(session.id, None)

        try:
            await session.page.close()
            await session.context.close()
        except PlaywrightError as e:
            # Teardown must not hide the failure that got us here
            logger.warning(f"Error while closing {session.id}: {e}")
        else:
            logger.debug(f"Destroyed {session.id}")

    @asynccontextmanager
    async def session_scope(self, options: Optional[SessionOptions] = None):
        session = await self.create_session(options)
        try:
            yield session
        finally:
            await self.destroy_session(session)

    async def with_session(
            self,
            action: Callable[[Session], Awaitable[T]],
            options: Optional[SessionOptions] = None
    ) -> T:
        async with self.session_scope(options) as session:
            return await action(session)

    async def cleanup(self):
        """Clean up browser resources"""
        for session in list(self.sessions.values()):
            await self.destroy_session(session)
        if self.browser:
            await self.browser.close()
            self.browser = None
        if self.playwright:
            await self.playwright.stop()
            self.playwright = None
