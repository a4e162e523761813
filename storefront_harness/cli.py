import argparse
import asyncio
import json
import logging
import sys
from typing import Callable, Dict, List, Optional

from .browser_engine import BrowserEngine
from .config import HarnessSettings, configure_logging, get_settings
from .identity import generate_identity
from .scenario import Scenario, ScenarioRunner, Step
from .validator import SearchOutcome, comprehensive_success, registration_success, rejection

logger = logging.getLogger(__name__)


def happy_path() -> Scenario:
    identity = generate_identity("Flow")
    return Scenario(
        name="happy-path",
        identity=identity,
        steps=[
            Step("register", description="register a fresh account"),
            Step("verify", {"policy": registration_success(identity)}, "registration landed on the account page"),
            Step("logout"),
            Step("login", description="log back in with the same credentials"),
        ],
        policy=comprehensive_success(identity.display_name),
    )


def wrong_password() -> Scenario:
    identity = generate_identity("Wrongpassword")
    return Scenario(
        name="wrong-password",
        identity=identity,
        steps=[
            Step("register"),
            Step("logout"),
            Step("login", {"password": identity.password + "_wrong"}, "login with a mutated password"),
        ],
        policy=rejection(),
    )


def empty_search() -> Scenario:
    return Scenario(
        name="empty-search",
        steps=[
            Step("navigate", {"page": "home"}),
            Step("search", {"query": ""}),
            Step("expect_search", {"outcome": SearchOutcome.EMPTY_QUERY}, "empty query asks for a keyword"),
        ],
    )


SMOKE_SCENARIOS: Dict[str, Callable[[], Scenario]] = {
    "happy-path": happy_path,
    "wrong-password": wrong_password,
    "empty-search": empty_search,
}


async def run_smoke(names: List[str], settings: HarnessSettings) -> List[Dict]:
    """Run the named smoke scenarios and return one report dict per scenario"""
    reports = []
    async with BrowserEngine(settings) as engine:
        runner = ScenarioRunner(engine)
        for name in names:
            result = await runner.run(SMOKE_SCENARIOS[name]())
            reports.append(result.to_dict())
    return reports


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="storefront-smoke",
        description="Run the built-in smoke scenarios against the storefront"
    )
    parser.add_argument("scenarios", nargs="*", metavar="SCENARIO",
                        help=f"scenarios to run: {', '.join(SMOKE_SCENARIOS)} (default: all)")
    parser.add_argument("--base-url", help="override STOREFRONT_BASE_URL")
    parser.add_argument("--headed", action="store_true", help="show the browser window")
    parser.add_argument("--screenshots", metavar="DIR", default=None,
                        help="save a screenshot of every failed scenario into DIR")
    parser.add_argument("--log-level", default=None)
    args = parser.parse_args(argv)

    unknown = [name for name in args.scenarios if name not in SMOKE_SCENARIOS]
    if unknown:
        parser.error(f"unknown scenario(s): {', '.join(unknown)}")
    return args


def main(argv: Optional[List[str]] = None):
    """Entry point for the smoke runner"""
    args = parse_args(argv)

    updates = {}
    if args.base_url:
        updates["base_url"] = args.base_url
    if args.headed:
        updates["headless"] = False
    if args.screenshots:
        updates["screenshot_on_failure"] = True
        updates["artifacts_dir"] = args.screenshots
    settings = get_settings().model_copy(update=updates)

    configure_logging(args.log_level or settings.log_level)
    names = args.scenarios or list(SMOKE_SCENARIOS)

    try:
        reports = asyncio.run(run_smoke(names, settings))
    except KeyboardInterrupt:
        logger.info("Smoke run stopped by user")
        sys.exit(130)

    print(json.dumps(reports, indent=2))
    if not all(report["success"] for report in reports):
        sys.exit(1)


if __name__ == "__main__":
    main()
