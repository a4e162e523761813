import logging
from functools import lru_cache
from typing import Dict, List, Optional

from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class DeviceProfile(BaseModel):
    """Viewport and user agent used to emulate a device"""
    width: int
    height: int
    user_agent: Optional[str] = None


DEFAULT_DEVICES: Dict[str, DeviceProfile] = {
    "desktop": DeviceProfile(width=1280, height=720),
    "mobile": DeviceProfile(
        width=375,
        height=667,
        user_agent="Mozilla/5.0 (iPhone; CPU iPhone OS 14_0 like Mac OS X) AppleWebKit/605.1.15"
    ),
    "tablet": DeviceProfile(
        width=768,
        height=1024,
        user_agent="Mozilla/5.0 (iPad; CPU OS 14_0 like Mac OS X) AppleWebKit/605.1.15"
    ),
}


class HarnessSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="STOREFRONT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Target
    base_url: str = "http://automationpractice.multiformis.com"

    # Browser
    browser: str = "chromium"
    headless: bool = True
    slow_mo_ms: int = 0
    viewport_width: int = 1280
    viewport_height: int = 720
    devices: Dict[str, DeviceProfile] = DEFAULT_DEVICES

    # Bounds (milliseconds)
    navigation_timeout_ms: int = 30000
    action_timeout_ms: int = 10000
    terminal_state_timeout_ms: int = 15000
    poll_interval_ms: int = 250

    # Cookie names containing one of these are treated as session cookies
    session_cookie_patterns: List[str] = ["PrestaShop", "PHPSESSID", "session"]

    # Failure artifacts
    screenshot_on_failure: bool = False
    artifacts_dir: str = "artifacts"

    # Suite
    run_e2e: bool = False
    log_level: str = "INFO"

    def device(self, name: str) -> DeviceProfile:
        try:
            return self.devices[name]
        except KeyError:
            raise ValueError(
                f"Unknown device profile: {name} (known: {', '.join(sorted(self.devices))})"
            ) from None


@lru_cache
def get_settings() -> HarnessSettings:
    return HarnessSettings()


def configure_logging(level: str = "INFO"):
    """Configure root logging the same way for the CLI and pytest runs"""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT
    )
