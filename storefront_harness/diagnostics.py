import json
import logging
import re
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from playwright.async_api import Error as PlaywrightError

from . import locators

if TYPE_CHECKING:
    from .browser_engine import Session

logger = logging.getLogger(__name__)

BANNER_SELECTORS = (
    locators.SUCCESS_BANNER,
    locators.ERROR_BANNER,
    locators.WARNING_BANNER,
    locators.CREATE_ACCOUNT_ERROR,
)


@dataclass
class PageState:
    """What the page looked like when something went wrong"""
    url: str
    title: str = ""
    heading: str = ""
    banners: List[str] = field(default_factory=list)
    screenshot: Optional[str] = None

    def describe(self) -> str:
        lines = [f"  url: {self.url}"]
        if self.title:
            lines.append(f"  title: {self.title}")
        if self.heading:
            lines.append(f"  heading: {self.heading}")
        for banner in self.banners:
            lines.append(f"  banner: {banner}")
        if self.screenshot:
            lines.append(f"  screenshot: {self.screenshot}")
        return "\n".join(lines)


async def capture_state(session: "Session") -> PageState:
    """Read URL, title, heading and visible banners without failing"""
    page = session.page
    state = PageState(url=page.url)

    try:
        state.title = await page.title()
        heading = page.locator(locators.PAGE_HEADING).first
        if await heading.is_visible():
            state.heading = ((await heading.text_content()) or "").strip()
        for selector in BANNER_SELECTORS:
            banner = page.locator(selector).first
            if await banner.is_visible():
                state.banners.append(((await banner.text_content()) or "").strip())
    except PlaywrightError as e:
        # Page may be closing; keep what we have
        logger.debug(f"Partial page state for {session.id}: {e}")

    return state


async def take_screenshot(session: "Session", name: str) -> Optional[str]:
    """Save a full page screenshot under the artifacts directory.

    Returns the file path, or None when the page can no longer be captured.
    """
    directory = Path(session.settings.artifacts_dir)
    directory.mkdir(parents=True, exist_ok=True)
    safe_name = re.sub(r"[^\w.-]+", "_", name)
    path = directory / f"{safe_name}-{session.id}.png"

    try:
        await session.page.screenshot(path=str(path), full_page=True)
    except PlaywrightError as e:
        logger.warning(f"Could not capture a screenshot of {session.id}: {e}")
        return None

    logger.info(f"Saved screenshot {path}")
    return str(path)


@dataclass
class StepRecord:
    step: str
    success: bool
    detail: Dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())


class ScenarioLog:
    """Ordered history of the steps executed by one scenario"""

    def __init__(self, scenario: str):
        self.scenario = scenario
        self.created_at = datetime.now().isoformat()
        self.history: List[StepRecord] = []
        self.final_state: Optional[PageState] = None

    def record(self, step: str, success: bool, **detail) -> StepRecord:
        entry = StepRecord(step=step, success=success, detail=detail)
        self.history.append(entry)
        logger.debug(f"[{self.scenario}] {step}: {'ok' if success else 'failed'} {detail}")
        return entry

    @property
    def failed_steps(self) -> List[StepRecord]:
        return [entry for entry in self.history if not entry.success]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scenario": self.scenario,
            "created_at": self.created_at,
            "history": [asdict(entry) for entry in self.history],
            "final_state": asdict(self.final_state) if self.final_state else None,
        }

    def export_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2, default=str)
