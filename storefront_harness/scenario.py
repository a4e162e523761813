import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from . import flows
from .browser_engine import BrowserEngine, Session, SessionOptions
from .diagnostics import ScenarioLog, capture_state, take_screenshot
from .errors import AssertionViolation, HarnessError
from .identity import Identity
from .validator import (
    CheckStatus,
    VerificationOutcome,
    VerificationPolicy,
    assert_verified,
    inspect_search,
    verify,
)

logger = logging.getLogger(__name__)


@dataclass
class Step:
    action: str
    params: Dict[str, Any] = field(default_factory=dict)
    description: str = ""

    def label(self) -> str:
        return self.description or self.action


@dataclass
class Scenario:
    """Identity (optional) + ordered flow steps + final verification policy"""
    name: str
    steps: List[Step]
    policy: Optional[VerificationPolicy] = None
    identity: Optional[Identity] = None
    session_options: Optional[SessionOptions] = None


@dataclass
class ScenarioResult:
    name: str
    success: bool
    outcomes: List[VerificationOutcome]
    log: ScenarioLog
    final_url: str = ""
    error: Optional[HarnessError] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scenario": self.name,
            "success": self.success,
            "final_url": self.final_url,
            "error": str(self.error) if self.error else None,
            "outcomes": [
                {"check": o.check, "status": o.status.value, "detail": o.detail}
                for o in self.outcomes
            ],
            "steps": self.log.to_dict()["history"],
        }


StepHandler = Callable[[Session, Scenario, Step], Awaitable[Dict[str, Any]]]


class ScenarioRunner:
    """Executes scenarios step by step in a fresh session each"""

    def __init__(self, engine: BrowserEngine):
        self.engine = engine
        self.step_handlers: Dict[str, StepHandler] = {
            'register': self._run_register,
            'login': self._run_login,
            'logout': self._run_logout,
            'search': self._run_search,
            'navigate': self._run_navigate,
            'verify': self._run_verify,
            'expect_search': self._run_expect_search,
            'sort': self._run_sort,
            'paginate': self._run_paginate,
            'open_product': self._run_open_product,
            'back': self._run_back,
            'add_to_cart': self._run_add_to_cart,
        }

    @staticmethod
    def _identity(scenario: Scenario) -> Identity:
        if scenario.identity is None:
            raise ValueError(f"Scenario {scenario.name!r} needs an identity for this step")
        return scenario.identity

    async def _run_register(self, session, scenario, step):
        attempt = await flows.register_account(session, self._identity(scenario))
        return {"state": attempt.state.value, "messages": attempt.messages}

    async def _run_login(self, session, scenario, step):
        identity = scenario.identity
        email = step.params.get("email", identity.email if identity else None)
        password = step.params.get("password", identity.password if identity else None)
        if email is None or password is None:
            raise ValueError(f"Scenario {scenario.name!r}: login step needs an identity or explicit credentials")

        attempt = await flows.login(
            session, email, password,
            navigate=step.params.get("navigate", True),
            remember_me=step.params.get("remember_me", False),
        )
        return {"state": attempt.state.value, "messages": attempt.messages}

    async def _run_logout(self, session, scenario, step):
        return {"logged_out": await flows.logout(session)}

    async def _run_search(self, session, scenario, step):
        await flows.search(session, step.params.get("query", ""))
        return {"url": session.url}

    async def _run_sort(self, session, scenario, step):
        await flows.sort_results(session, step.params["order"])
        return {"url": session.url}

    async def _run_paginate(self, session, scenario, step):
        moved = await flows.paginate(session, step.params["target"])
        return {"moved": moved, "page": flows.current_results_page(session)}

    async def _run_open_product(self, session, scenario, step):
        return {"title": await flows.open_product(session, step.params.get("position", 0))}

    async def _run_back(self, session, scenario, step):
        await flows.back_to_results(session)
        return {"url": session.url}

    async def _run_add_to_cart(self, session, scenario, step):
        confirmation = await flows.add_to_cart(session, step.params.get("position", 0))
        return {"message": confirmation.message, "quantity": confirmation.quantity}

    async def _run_navigate(self, session, scenario, step):
        return {"url": await flows.navigate_to(session, step.params["page"])}

    async def _run_verify(self, session, scenario, step):
        outcomes = await verify(session, step.params["policy"])
        assert_verified(outcomes, scenario.name)
        return {"checks": [o.check for o in outcomes if o.satisfied]}

    async def _run_expect_search(self, session, scenario, step):
        snapshot = await inspect_search(session)
        expected = step.params["outcome"]
        if snapshot.outcome != expected:
            raise AssertionViolation([VerificationOutcome(
                "search_outcome",
                CheckStatus.VIOLATED,
                f"expected {expected.value}, observed {snapshot.outcome.value} (warning={snapshot.warning!r})",
            )], scenario.name)
        return {"outcome": snapshot.outcome.value, "products": len(snapshot.product_names)}

    async def _execute(self, session: Session, scenario: Scenario, log: ScenarioLog) -> List[VerificationOutcome]:
        for step in scenario.steps:
            handler = self.step_handlers.get(step.action)
            if handler is None:
                raise ValueError(f"Unknown step action: {step.action}")

            try:
                detail = await handler(session, scenario, step)
            except HarnessError as e:
                log.record(step.label(), False, error=str(e))
                raise
            log.record(step.label(), True, **detail)

        if scenario.policy is None:
            return []

        outcomes = await verify(session, scenario.policy)
        log.record("final verification", not any(o.violated for o in outcomes),
                   checks={o.check: o.status.value for o in outcomes})
        assert_verified(outcomes, scenario.name)
        return outcomes

    async def run(self, scenario: Scenario) -> ScenarioResult:
        """Run a scenario; harness failures are captured into the result"""
        log = ScenarioLog(scenario.name)
        logger.info(f"Running scenario {scenario.name}")

        async with self.engine.session_scope(scenario.session_options) as session:
            try:
                outcomes = await self._execute(session, scenario, log)
            except HarnessError as e:
                log.final_state = e.state or await capture_state(session)
                if session.settings.screenshot_on_failure:
                    log.final_state.screenshot = await take_screenshot(session, scenario.name)
                logger.error(f"Scenario {scenario.name} failed: {e}")
                return ScenarioResult(scenario.name, False, getattr(e, "violations", []), log, session.url, e)

            log.final_state = await capture_state(session)
            logger.info(f"Scenario {scenario.name} passed")
            return ScenarioResult(scenario.name, True, outcomes, log, session.url)

    async def run_or_raise(self, scenario: Scenario) -> ScenarioResult:
        result = await self.run(scenario)
        if result.error is not None:
            raise result.error
        return result
