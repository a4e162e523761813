import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Awaitable, Callable, FrozenSet, List, Optional

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from . import flows, locators
from .diagnostics import capture_state
from .errors import AssertionViolation, UnexpectedOutcome
from .flows import AttemptState, ErrorSurface, observe_auth_state

if TYPE_CHECKING:
    from .browser_engine import Session
    from .identity import Identity

logger = logging.getLogger(__name__)

ACCOUNT_HEADING = "My account"
AUTHENTICATION_HEADING = "Authentication"
WELCOME_MESSAGE = "Welcome to your account"
SAME_SITE_VALUES = {"Lax", "Strict", "None"}

TERMINAL_OUTCOMES = {AttemptState.SUCCEEDED, AttemptState.REJECTED}


class Requirement(str, Enum):
    REQUIRED = "required"
    BEST_EFFORT = "best_effort"  # inapplicable when the element is absent
    OFF = "off"


class CheckStatus(str, Enum):
    SATISFIED = "satisfied"
    VIOLATED = "violated"
    INAPPLICABLE = "inapplicable"


@dataclass(frozen=True)
class VerificationOutcome:
    check: str
    status: CheckStatus
    detail: str = ""

    @property
    def satisfied(self) -> bool:
        return self.status == CheckStatus.SATISFIED

    @property
    def violated(self) -> bool:
        return self.status == CheckStatus.VIOLATED


REQUIREMENT_FIELDS = (
    "require_success_banner",
    "require_welcome_message",
    "require_redirect_away_from_form",
    "require_no_error_banner",
    "require_session_cookie_rotated",
    "require_session_cookie_flags",
    "require_stayed_on_form",
    "require_error_indicator",
    "require_no_authenticated_indicator",
    "require_form_usable",
)


class VerificationPolicy(BaseModel):
    """Which checks to run after an auth attempt, and how strictly"""
    model_config = ConfigDict(frozen=True)

    expected: AttemptState = AttemptState.SUCCEEDED
    allowed_alternate_outcomes: FrozenSet[AttemptState] = frozenset()

    # Success side
    expected_heading: Optional[str] = None
    require_success_banner: Requirement = Requirement.OFF
    require_identity_displayed: Optional[str] = None
    require_welcome_message: Requirement = Requirement.OFF
    require_redirect_away_from_form: Requirement = Requirement.OFF
    require_no_error_banner: Requirement = Requirement.OFF
    require_session_cookie_rotated: Requirement = Requirement.OFF
    require_session_cookie_flags: Requirement = Requirement.OFF

    # Rejection side
    require_stayed_on_form: Requirement = Requirement.OFF
    require_error_indicator: Requirement = Requirement.OFF
    require_no_authenticated_indicator: Requirement = Requirement.OFF
    require_form_usable: Requirement = Requirement.OFF
    error_message_pattern: Optional[str] = None
    error_surface: Optional[ErrorSurface] = None

    @field_validator(*REQUIREMENT_FIELDS, mode="before")
    @classmethod
    def _coerce_bool(cls, value):
        if isinstance(value, bool):
            return Requirement.REQUIRED if value else Requirement.OFF
        return value

    @model_validator(mode="after")
    def _check_outcomes(self):
        outcomes = {self.expected, *self.allowed_alternate_outcomes}
        if not outcomes <= TERMINAL_OUTCOMES:
            raise ValueError("policies can only expect succeeded or rejected outcomes")
        if self.expected in self.allowed_alternate_outcomes:
            raise ValueError("the expected outcome cannot also be an alternate")
        return self


def comprehensive_success(expected_name: Optional[str] = None) -> VerificationPolicy:
    """Everything a primary happy-path login should show"""
    return VerificationPolicy(
        expected=AttemptState.SUCCEEDED,
        expected_heading=ACCOUNT_HEADING,
        require_success_banner=Requirement.BEST_EFFORT,
        require_identity_displayed=expected_name,
        require_welcome_message=Requirement.REQUIRED,
        require_redirect_away_from_form=Requirement.REQUIRED,
        require_no_error_banner=Requirement.REQUIRED,
        require_session_cookie_rotated=Requirement.BEST_EFFORT,
        require_session_cookie_flags=Requirement.BEST_EFFORT,
    )


def minimal_success(expected_name: Optional[str] = None) -> VerificationPolicy:
    """Only the decisive signal, for scenarios focused on something else"""
    return VerificationPolicy(
        expected=AttemptState.SUCCEEDED,
        expected_heading=ACCOUNT_HEADING,
        require_identity_displayed=expected_name,
    )


def registration_success(identity: Optional["Identity"] = None) -> VerificationPolicy:
    return VerificationPolicy(
        expected=AttemptState.SUCCEEDED,
        expected_heading=ACCOUNT_HEADING,
        require_success_banner=Requirement.REQUIRED,
        require_identity_displayed=identity.display_name if identity else None,
        require_welcome_message=Requirement.REQUIRED,
        require_redirect_away_from_form=Requirement.REQUIRED,
        require_no_error_banner=Requirement.REQUIRED,
    )


def rejection(
        error_message_pattern: Optional[str] = None,
        error_surface: Optional[ErrorSurface] = None,
        stay_on_form: bool = True
) -> VerificationPolicy:
    """The attempt must be refused and leave no authenticated trace"""
    return VerificationPolicy(
        expected=AttemptState.REJECTED,
        expected_heading=AUTHENTICATION_HEADING if stay_on_form else None,
        require_stayed_on_form=stay_on_form,
        require_error_indicator=Requirement.REQUIRED,
        require_no_authenticated_indicator=Requirement.REQUIRED,
        require_form_usable=stay_on_form,
        error_message_pattern=error_message_pattern,
        error_surface=error_surface,
    )


def registration_rejection(error_message_pattern: Optional[str] = None) -> VerificationPolicy:
    """Second registration step refused: errors above the expanded form"""
    return VerificationPolicy(
        expected=AttemptState.REJECTED,
        require_stayed_on_form=Requirement.REQUIRED,
        require_error_indicator=Requirement.REQUIRED,
        require_no_authenticated_indicator=Requirement.REQUIRED,
        error_message_pattern=error_message_pattern,
        error_surface=ErrorSurface.FORM,
    )


def quick_rejection() -> VerificationPolicy:
    return VerificationPolicy(
        expected=AttemptState.REJECTED,
        expected_heading=AUTHENTICATION_HEADING,
        require_error_indicator=Requirement.REQUIRED,
    )


Check = Callable[["Session", VerificationPolicy], Awaitable[Optional[VerificationOutcome]]]


class PolicyValidator:
    """Runs a VerificationPolicy against the current page of a session"""

    def __init__(self):
        self.success_checks: List[Check] = [
            self._check_heading,
            self._check_success_banner,
            self._check_identity_displayed,
            self._check_welcome_message,
            self._check_redirect,
            self._check_no_error_banner,
            self._check_cookie_rotated,
            self._check_cookie_flags,
        ]
        self.rejection_checks: List[Check] = [
            self._check_heading,
            self._check_stayed_on_form,
            self._check_error_indicator,
            self._check_error_message,
            self._check_error_surface,
            self._check_no_authenticated_indicator,
            self._check_form_usable,
        ]

    async def verify(self, session: "Session", policy: VerificationPolicy) -> List[VerificationOutcome]:
        observation = await observe_auth_state(session)
        if observation is None:
            state = await capture_state(session)
            raise UnexpectedOutcome(
                f"Page shows neither a success nor a rejection signal (expected {policy.expected.value})",
                state,
            )

        observed = observation[0]
        checks = self.success_checks if policy.expected == AttemptState.SUCCEEDED else self.rejection_checks

        if observed == policy.expected:
            outcomes = [VerificationOutcome("outcome", CheckStatus.SATISFIED, observed.value)]
        elif observed in policy.allowed_alternate_outcomes:
            reason = f"alternate outcome {observed.value} accepted instead of {policy.expected.value}"
            logger.warning(f"[{session.id}] {reason}")
            outcomes = [VerificationOutcome("outcome", CheckStatus.INAPPLICABLE, reason)]
            for check in checks:
                outcome = await check(session, policy)
                if outcome is not None:
                    outcomes.append(VerificationOutcome(outcome.check, CheckStatus.INAPPLICABLE, reason))
            return outcomes
        else:
            outcomes = [VerificationOutcome(
                "outcome",
                CheckStatus.VIOLATED,
                f"expected {policy.expected.value}, observed {observed.value}",
            )]

        for check in checks:
            outcome = await check(session, policy)
            if outcome is None:
                continue
            if outcome.status == CheckStatus.INAPPLICABLE:
                logger.warning(f"[{session.id}] skipped {outcome.check}: {outcome.detail}")
            outcomes.append(outcome)

        return outcomes

    @staticmethod
    def _evaluate(
            check: str,
            requirement: Requirement,
            present: bool,
            ok: bool,
            detail: str
    ) -> Optional[VerificationOutcome]:
        if requirement == Requirement.OFF:
            return None
        if not present:
            if requirement == Requirement.BEST_EFFORT:
                return VerificationOutcome(check, CheckStatus.INAPPLICABLE, f"not present: {detail}")
            return VerificationOutcome(check, CheckStatus.VIOLATED, f"missing: {detail}")
        status = CheckStatus.SATISFIED if ok else CheckStatus.VIOLATED
        return VerificationOutcome(check, status, detail)

    # Success checks

    async def _check_heading(self, session, policy):
        if policy.expected_heading is None:
            return None
        heading = await session.actions.text_of(locators.PAGE_HEADING)
        return self._evaluate(
            "heading", Requirement.REQUIRED, heading is not None,
            (heading or "").lower() == policy.expected_heading.lower(),
            f"heading {heading!r}, expected {policy.expected_heading!r}",
        )

    async def _check_success_banner(self, session, policy):
        visible = await session.actions.is_visible(locators.SUCCESS_BANNER)
        return self._evaluate("success_banner", policy.require_success_banner, visible, True, "success banner")

    async def _check_identity_displayed(self, session, policy):
        if not policy.require_identity_displayed:
            return None
        shown = await session.actions.text_of(locators.ACCOUNT_NAME)
        return self._evaluate(
            "identity_displayed", Requirement.REQUIRED, shown is not None,
            policy.require_identity_displayed in (shown or ""),
            f"account link shows {shown!r}, expected {policy.require_identity_displayed!r}",
        )

    async def _check_welcome_message(self, session, policy):
        info = await session.actions.text_of(locators.ACCOUNT_INFO)
        return self._evaluate(
            "welcome_message", policy.require_welcome_message, info is not None,
            WELCOME_MESSAGE.lower() in (info or "").lower(),
            f"account info {info!r}",
        )

    async def _check_redirect(self, session, policy):
        url = session.url
        return self._evaluate(
            "redirect_away_from_form", policy.require_redirect_away_from_form, True,
            not locators.is_authentication_url(url),
            f"ended on {url}",
        )

    async def _check_no_error_banner(self, session, policy):
        visible = await session.actions.is_visible(locators.ERROR_BANNER)
        return self._evaluate(
            "no_error_banner", policy.require_no_error_banner, True, not visible,
            "error banner visible" if visible else "no error banner",
        )

    async def _check_cookie_rotated(self, session, policy):
        if policy.require_session_cookie_rotated == Requirement.OFF:
            return None
        before = {c["name"]: c["value"] for c in session.pre_submit_cookies}
        after = {c["name"]: c["value"] for c in await session.session_cookies()}
        common = set(before) & set(after)
        if not common:
            return self._evaluate(
                "session_cookie_rotated", policy.require_session_cookie_rotated, False, False,
                "no session cookie present both before and after the submit",
            )
        unchanged = sorted(name for name in common if before[name] == after[name])
        return self._evaluate(
            "session_cookie_rotated", policy.require_session_cookie_rotated, True, not unchanged,
            f"unchanged: {', '.join(unchanged)}" if unchanged else f"rotated: {', '.join(sorted(common))}",
        )

    async def _check_cookie_flags(self, session, policy):
        if policy.require_session_cookie_flags == Requirement.OFF:
            return None
        cookies = await session.session_cookies()
        secure_expected = session.url.startswith("https://")
        problems = []
        for cookie in cookies:
            if secure_expected and not cookie.get("secure"):
                problems.append(f"{cookie['name']} lacks Secure")
            if not cookie.get("httpOnly"):
                problems.append(f"{cookie['name']} lacks HttpOnly")
            if cookie.get("sameSite") not in SAME_SITE_VALUES:
                problems.append(f"{cookie['name']} has SameSite={cookie.get('sameSite')}")
        return self._evaluate(
            "session_cookie_flags", policy.require_session_cookie_flags, bool(cookies), not problems,
            "; ".join(problems) if problems else f"{len(cookies)} session cookie(s)",
        )

    # Rejection checks

    async def _check_stayed_on_form(self, session, policy):
        return self._evaluate(
            "stayed_on_form", policy.require_stayed_on_form, True,
            locators.is_authentication_url(session.url),
            f"ended on {session.url}",
        )

    async def _check_error_indicator(self, session, policy):
        actions = session.actions
        visible = (
            await actions.is_visible(locators.ERROR_BANNER)
            or await actions.is_visible(locators.CREATE_ACCOUNT_ERROR)
            or await actions.is_visible(locators.INVALID_FIELD)
        )
        return self._evaluate("error_indicator", policy.require_error_indicator, visible, True, "error indicator")

    async def _check_error_message(self, session, policy):
        if not policy.error_message_pattern:
            return None
        observation = await observe_auth_state(session)
        messages = observation[2] if observation else []
        text = " ".join(messages)
        return self._evaluate(
            "error_message", Requirement.REQUIRED, bool(text),
            re.search(policy.error_message_pattern, text, re.IGNORECASE) is not None,
            f"message {text!r}, expected /{policy.error_message_pattern}/",
        )

    async def _check_error_surface(self, session, policy):
        if policy.error_surface is None:
            return None
        observation = await observe_auth_state(session)
        surface = observation[1] if observation else None
        return self._evaluate(
            "error_surface", Requirement.REQUIRED, surface is not None,
            surface == policy.error_surface,
            f"surface {surface.value if surface else None}, expected {policy.error_surface.value}",
        )

    async def _check_no_authenticated_indicator(self, session, policy):
        visible = await session.actions.is_visible(locators.LOGOUT_LINK)
        return self._evaluate(
            "no_authenticated_indicator", policy.require_no_authenticated_indicator, True, not visible,
            "logout link visible" if visible else "no logout link",
        )

    async def _check_form_usable(self, session, policy):
        if policy.require_form_usable == Requirement.OFF:
            return None
        actions = session.actions
        missing = [
            selector for selector in (locators.LOGIN_EMAIL, locators.LOGIN_PASSWORD, locators.SUBMIT_LOGIN)
            if not await actions.is_visible(selector)
        ]
        return self._evaluate(
            "form_usable", policy.require_form_usable, True, not missing,
            f"missing {', '.join(missing)}" if missing else "login form visible",
        )


_default_validator = PolicyValidator()


async def verify(session: "Session", policy: VerificationPolicy) -> List[VerificationOutcome]:
    return await _default_validator.verify(session, policy)


def assert_verified(outcomes: List[VerificationOutcome], scenario: Optional[str] = None):
    violations = [outcome for outcome in outcomes if outcome.violated]
    if violations:
        raise AssertionViolation(violations, scenario)


async def expect(session: "Session", policy: VerificationPolicy,
                 scenario: Optional[str] = None) -> List[VerificationOutcome]:
    """verify() and fail on any violated mandatory check"""
    outcomes = await verify(session, policy)
    violations = [outcome for outcome in outcomes if outcome.violated]
    if violations:
        raise AssertionViolation(violations, scenario, await capture_state(session))
    return outcomes


# Search

class SearchOutcome(str, Enum):
    RESULTS = "results"
    NO_RESULTS = "no_results"
    EMPTY_QUERY = "empty_query"


EMPTY_QUERY_PATTERN = re.compile(r"enter.*(search|keyword)|please.*search", re.IGNORECASE)
NO_RESULTS_PATTERN = re.compile(r"no results|not found", re.IGNORECASE)


@dataclass
class SearchSnapshot:
    outcome: SearchOutcome
    product_names: List[str]
    warning: Optional[str] = None
    prices: List[float] = field(default_factory=list)
    page: int = 1


def parse_price(text: str) -> Optional[float]:
    digits = re.sub(r"[^\d.]", "", text or "")
    try:
        return float(digits)
    except ValueError:
        return None


async def inspect_search(session: "Session") -> SearchSnapshot:
    """Classify the search page; anything unrecognised is an UnexpectedOutcome"""
    if not locators.is_search_url(session.url):
        raise UnexpectedOutcome(f"Not a search results page: {session.url}", await capture_state(session))

    actions = session.actions
    names, prices = [], []
    if await actions.count(locators.PRODUCT_CONTAINER):
        names = await actions.texts_of(locators.PRODUCT_NAME)
        prices = [price for price in map(parse_price, await actions.texts_of(locators.PRODUCT_PRICE))
                  if price is not None]
    warning = await actions.text_of(locators.WARNING_BANNER)
    page = flows.current_results_page(session)

    if warning and EMPTY_QUERY_PATTERN.search(warning):
        return SearchSnapshot(SearchOutcome.EMPTY_QUERY, names, warning, prices, page)
    if warning and NO_RESULTS_PATTERN.search(warning):
        return SearchSnapshot(SearchOutcome.NO_RESULTS, names, warning, prices, page)
    if names:
        return SearchSnapshot(SearchOutcome.RESULTS, names, warning, prices, page)

    raise UnexpectedOutcome(
        f"Search page shows neither products nor a recognised message (warning={warning!r})",
        await capture_state(session),
    )
