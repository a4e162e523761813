import asyncio
import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Awaitable, Callable, Optional, TypeVar

from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from .diagnostics import capture_state
from .errors import NavigationTimeout

if TYPE_CHECKING:
    from .browser_engine import Session

logger = logging.getLogger(__name__)

T = TypeVar("T")


@asynccontextmanager
async def bounded(description: str, timeout_ms: int, session: Optional["Session"] = None):
    """Turn a Playwright timeout inside the block into a NavigationTimeout"""
    try:
        yield
    except PlaywrightTimeoutError as e:
        state = await capture_state(session) if session is not None else None
        logger.warning(f"Timed out ({timeout_ms}ms): {description}")
        raise NavigationTimeout(description, timeout_ms, state) from e


async def wait_until(
        condition: Callable[[], Awaitable[Optional[T]]],
        timeout_ms: int,
        interval_ms: int,
        description: str,
        session: Optional["Session"] = None
) -> T:
    """Poll ``condition`` until it returns something truthy or the bound expires"""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout_ms / 1000
    attempts = 0

    while True:
        attempts += 1
        result = await condition()
        if result:
            return result
        if loop.time() >= deadline:
            break
        await asyncio.sleep(interval_ms / 1000)

    logger.debug(f"Gave up on '{description}' after {attempts} polls")
    state = await capture_state(session) if session is not None else None
    raise NavigationTimeout(description, timeout_ms, state)
