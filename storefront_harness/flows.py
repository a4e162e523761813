"""
Composite storefront actions: register, login, logout, search, navigate,
and the results page (sorting, pagination, product page, cart).

Helpers act but do not judge. A login that the storefront refuses comes back
as an ``AuthAttempt`` in the ``REJECTED`` state; deciding whether that was
the right answer is the job of a verification policy. Only harness-level
problems raise: ``NavigationTimeout`` when nothing happened in time,
``UnexpectedOutcome`` when the page moved somewhere unrecognisable.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, List, Optional, Tuple, Union
from urllib.parse import parse_qs, urlparse

from . import locators
from .diagnostics import capture_state
from .errors import NavigationTimeout, SessionStateError, UnexpectedOutcome, ValidationRejected
from .identity import Identity
from .waiting import wait_until

if TYPE_CHECKING:
    from .browser_engine import BrowserEngine, Session

logger = logging.getLogger(__name__)


class AttemptState(str, Enum):
    IDLE = "idle"
    SUBMITTING = "submitting"
    SUCCEEDED = "succeeded"
    REJECTED = "rejected"
    TIMED_OUT = "timed_out"


class ErrorSurface(str, Enum):
    ACCOUNT_CREATION = "account_creation"    # email capture step of registration
    FORM = "form"                            # error banner above a submitted form
    CLIENT_VALIDATION = "client_validation"  # browser refused to submit


@dataclass
class AuthAttempt:
    kind: str
    state: AttemptState = AttemptState.IDLE
    url: str = ""
    surface: Optional[ErrorSurface] = None
    messages: List[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.state == AttemptState.SUCCEEDED

    @property
    def rejected(self) -> bool:
        return self.state == AttemptState.REJECTED

    @property
    def rejection(self) -> Optional[ValidationRejected]:
        if not self.rejected:
            return None
        return ValidationRejected(self.surface.value if self.surface else "unknown", self.messages)

    def raise_for_rejection(self):
        if self.rejected:
            raise self.rejection


Observation = Tuple[AttemptState, Optional[ErrorSurface], List[str]]


async def _error_messages(session: "Session", surface: ErrorSurface) -> List[str]:
    actions = session.actions
    if surface == ErrorSurface.ACCOUNT_CREATION:
        text = await actions.text_of(locators.CREATE_ACCOUNT_ERROR)
        return [text] if text else []
    if surface == ErrorSurface.FORM:
        items = await actions.texts_of(locators.ERROR_ITEMS)
        if items:
            return [item for item in items if item]
        text = await actions.text_of(locators.ERROR_BANNER)
        return [text] if text else []
    return ["field failed browser validation"]


async def observe_auth_state(session: "Session") -> Optional[Observation]:
    """Classify the page after an auth submit, or None if it is not settled"""
    actions = session.actions
    on_form = locators.is_authentication_url(session.url)

    if not on_form:
        if await actions.is_visible(locators.LOGOUT_LINK) or await actions.is_visible(locators.SUCCESS_BANNER):
            return AttemptState.SUCCEEDED, None, []
        return None

    for selector, surface in (
            (locators.CREATE_ACCOUNT_ERROR, ErrorSurface.ACCOUNT_CREATION),
            (locators.ERROR_BANNER, ErrorSurface.FORM),
            (locators.INVALID_FIELD, ErrorSurface.CLIENT_VALIDATION),
    ):
        if await actions.is_visible(selector):
            return AttemptState.REJECTED, surface, await _error_messages(session, surface)

    return None


async def await_terminal_state(session: "Session", kind: str, entry_url: str) -> AuthAttempt:
    """Wait (bounded) for an auth submit to succeed or be rejected"""
    settings = session.settings
    attempt = AuthAttempt(kind=kind, state=AttemptState.SUBMITTING, url=entry_url)

    try:
        state, surface, messages = await wait_until(
            lambda: observe_auth_state(session),
            settings.terminal_state_timeout_ms,
            settings.poll_interval_ms,
            f"{kind} to succeed or be rejected",
            session,
        )
    except NavigationTimeout as e:
        attempt.state = AttemptState.TIMED_OUT
        if session.url != entry_url and not locators.is_authentication_url(session.url):
            raise UnexpectedOutcome(
                f"{kind} ended on {session.url} without a success or error signal",
                e.state,
            ) from e
        raise

    attempt.state = state
    attempt.surface = surface
    attempt.messages = messages
    attempt.url = session.url
    logger.info(f"[{session.id}] {kind} {state.value}" + (f": {'; '.join(messages)}" if messages else ""))
    return attempt


async def navigate_to(session: "Session", page_name: str) -> str:
    try:
        path = locators.PAGES[page_name]
    except KeyError:
        raise ValueError(f"Unknown page: {page_name}") from None
    return await session.actions.navigate(path)


async def _submit(session: "Session", selector: str, form: str, description: str) -> bool:
    """Click a submit control and wait for the document it posts to.

    Returns False, without waiting, when the browser refuses to submit
    because a required field of ``form`` is invalid.
    """
    actions = session.actions
    if await actions.is_visible(f"{form} {locators.INVALID_FIELD}"):
        await actions.click(selector)
        return False

    await actions.click_and_navigate(selector, description)
    return True


def _blocked_by_browser(session: "Session", kind: str) -> AuthAttempt:
    attempt = AuthAttempt(
        kind=kind,
        state=AttemptState.REJECTED,
        url=session.url,
        surface=ErrorSurface.CLIENT_VALIDATION,
        messages=["field failed browser validation"],
    )
    logger.info(f"[{session.id}] {kind} rejected: browser refused to submit the form")
    return attempt


async def initiate_registration(session: "Session", email: str) -> Optional[AuthAttempt]:
    """Submit the email capture step.

    Returns None once the expanded form is interactive, or a rejected attempt
    when the storefront refuses the email (already registered, malformed).
    The step is answered in place, so an error left over from an earlier
    attempt is hidden before submitting.
    """
    actions = session.actions
    if not await actions.is_visible(locators.EMAIL_CREATE):
        await navigate_to(session, "registration")

    if await actions.is_visible(locators.CREATE_ACCOUNT_ERROR):
        await actions.hide(locators.CREATE_ACCOUNT_ERROR)

    await actions.fill(locators.EMAIL_CREATE, email)
    await actions.click(locators.SUBMIT_CREATE)

    async def settled():
        if await actions.is_visible(locators.ACCOUNT_CREATION_FORM):
            return "form"
        if await actions.is_visible(locators.CREATE_ACCOUNT_ERROR):
            return "error"
        if await actions.is_visible(f"{locators.CREATE_FORM} {locators.INVALID_FIELD}"):
            return "invalid"
        return None

    settings = session.settings
    result = await wait_until(
        settled,
        settings.terminal_state_timeout_ms,
        settings.poll_interval_ms,
        "registration form or account creation error",
        session,
    )

    if result == "form":
        return None
    if result == "invalid":
        return _blocked_by_browser(session, "registration")

    attempt = AuthAttempt(
        kind="registration",
        state=AttemptState.REJECTED,
        url=session.url,
        surface=ErrorSurface.ACCOUNT_CREATION,
        messages=await _error_messages(session, ErrorSurface.ACCOUNT_CREATION),
    )
    logger.info(f"[{session.id}] registration rejected at email capture: {attempt.messages}")
    return attempt


async def fill_registration_form(session: "Session", identity: Identity):
    actions = session.actions

    if identity.gender:
        await actions.check(locators.GENDER_RADIOS[identity.gender])

    await actions.fill(locators.FIRST_NAME, identity.first_name)
    await actions.fill(locators.LAST_NAME, identity.last_name)
    await actions.fill(locators.ACCOUNT_EMAIL, identity.email)
    await actions.fill(locators.LOGIN_PASSWORD, identity.password)

    dob = identity.date_of_birth
    if dob:
        await actions.select(locators.DOB_DAY, str(dob.day))
        await actions.select(locators.DOB_MONTH, str(dob.month))
        await actions.select(locators.DOB_YEAR, str(dob.year))

    if identity.newsletter_opt_in:
        await actions.check(locators.NEWSLETTER)


async def submit_registration(session: "Session", identity: Identity) -> AuthAttempt:
    """Fill and submit the expanded form that is already on screen.

    Also used to correct a refused form in place.
    """
    _ensure_can_authenticate(session, identity.email)
    await fill_registration_form(session, identity)
    await session.snapshot_cookies()
    entry_url = session.url

    submitted = await _submit(
        session, locators.SUBMIT_ACCOUNT, locators.ACCOUNT_CREATION_FORM,
        "registration to succeed or be rejected",
    )
    if not submitted:
        return _blocked_by_browser(session, "registration")

    attempt = await await_terminal_state(session, "registration", entry_url)
    if attempt.succeeded:
        session.authenticated_as = identity.email
    return attempt


async def register_account(session: "Session", identity: Identity) -> AuthAttempt:
    """Run both registration steps and report how the storefront answered"""
    _ensure_can_authenticate(session, identity.email)

    rejected = await initiate_registration(session, identity.email)
    if rejected is not None:
        return rejected

    return await submit_registration(session, identity)


async def create_account(engine: "BrowserEngine", identity: Identity) -> Identity:
    """Register an identity in a throw-away session, for use as test setup"""

    async def provision(session: "Session") -> Identity:
        attempt = await register_account(session, identity)
        attempt.raise_for_rejection()
        await logout(session)
        return identity

    created = await engine.with_session(provision)
    logger.info(f"Provisioned account {identity.email}")
    return created


def _ensure_can_authenticate(session: "Session", email: str):
    if session.authenticated_as and session.authenticated_as.lower() != email.strip().lower():
        raise SessionStateError(
            f"Session {session.id} is already signed in as {session.authenticated_as}; "
            f"log out or use another session before authenticating as {email}"
        )


async def login(
        session: "Session",
        email: str,
        password: str,
        navigate: bool = True,
        remember_me: bool = False
) -> AuthAttempt:
    """Fill and submit the login form.

    When ``navigate`` is set and the page is not already the authentication
    form, the entry point is opened first. A redirect back to a protected
    page therefore survives when the caller landed on the form through it,
    and a retry after a refused attempt reuses the same form.
    """
    _ensure_can_authenticate(session, email)
    actions = session.actions

    if navigate and not (
            locators.is_authentication_url(session.url)
            and await actions.is_visible(locators.SUBMIT_LOGIN)
    ):
        await navigate_to(session, "authentication")

    await actions.fill(locators.LOGIN_EMAIL, email)
    await actions.fill(locators.LOGIN_PASSWORD, password)

    if remember_me:
        if await actions.is_visible(locators.REMEMBER_ME):
            await actions.check(locators.REMEMBER_ME)
        else:
            logger.warning(f"[{session.id}] no 'remember me' control on this build; continuing without it")

    return await submit_login(session, email)


async def submit_login(session: "Session", email: str) -> AuthAttempt:
    await session.snapshot_cookies()
    entry_url = session.url

    submitted = await _submit(
        session, locators.SUBMIT_LOGIN, locators.LOGIN_FORM,
        "login to succeed or be rejected",
    )
    if not submitted:
        return _blocked_by_browser(session, "login")

    attempt = await await_terminal_state(session, "login", entry_url)
    if attempt.succeeded:
        session.authenticated_as = email.strip()
    return attempt


async def fill_login_via_script(session: "Session", email: str, password: str) -> AuthAttempt:
    """Populate the login form the way a password manager does, then submit"""
    _ensure_can_authenticate(session, email)
    if not locators.is_authentication_url(session.url):
        await navigate_to(session, "authentication")

    await session.actions.evaluate(
        """({ email, password }) => {
            document.getElementById("email").value = email;
            document.getElementById("passwd").value = password;
            ["email", "passwd"].forEach((id) => {
                const element = document.getElementById(id);
                element.dispatchEvent(new Event("input", { bubbles: true }));
                element.dispatchEvent(new Event("change", { bubbles: true }));
            });
        }""",
        {"email": email, "password": password},
    )
    return await submit_login(session, email)


async def logout(session: "Session") -> bool:
    """Sign out if a logout link is showing; otherwise do nothing and say so"""
    actions = session.actions
    if not await actions.is_visible(locators.LOGOUT_LINK):
        logger.info(f"[{session.id}] logout not applicable: no logout link on {session.url}")
        session.authenticated_as = None
        return False

    await actions.click_and_navigate(locators.LOGOUT_LINK, "logout")
    session.authenticated_as = None
    logger.info(f"[{session.id}] logged out")
    return True


async def _await_results(session: "Session", description: str):
    """Wait for a search page to show products or a message"""
    actions = session.actions

    async def settled():
        if not locators.is_search_url(session.url):
            return None
        for selector in (locators.PRODUCT_CONTAINER, locators.WARNING_BANNER, locators.ERROR_BANNER):
            if await actions.is_visible(selector):
                return selector
        return None

    settings = session.settings
    try:
        await wait_until(
            settled,
            settings.terminal_state_timeout_ms,
            settings.poll_interval_ms,
            description,
            session,
        )
    except NavigationTimeout as e:
        if locators.is_search_url(session.url):
            state = e.state or await capture_state(session)
            raise UnexpectedOutcome(f"{description}: page rendered neither results nor a message", state) from e
        raise


async def search(session: "Session", query: str):
    """Submit a catalog search and wait for its results page to render"""
    actions = session.actions
    if not await actions.is_visible(locators.SEARCH_INPUT):
        await navigate_to(session, "home")

    await actions.fill(locators.SEARCH_INPUT, query)
    await actions.click_and_navigate(locators.SEARCH_SUBMIT, f"search for {query!r}")
    await _await_results(session, f"search results for {query!r}")


SORT_ORDERS = ("position:asc", "price:asc", "price:desc", "name:asc", "name:desc")


async def sort_results(session: "Session", order: str):
    """Re-order the current results; the storefront reloads the list"""
    if order not in SORT_ORDERS:
        raise ValueError(f"Unknown sort order: {order} (known: {', '.join(SORT_ORDERS)})")

    actions = session.actions
    async with actions.expect_navigation(f"results sorted by {order}"):
        await actions.select(locators.SORT_SELECT, order)
    await _await_results(session, f"results sorted by {order}")


def current_results_page(session: "Session") -> int:
    values = parse_qs(urlparse(session.url).query).get("p")
    return int(values[0]) if values and values[0].isdigit() else 1


async def paginate(session: "Session", target: Union[int, str]) -> bool:
    """Move through paged results.

    ``target`` is a page number, ``"next"`` or ``"previous"``. Returns False,
    leaving the page as it is, when there is no such link: a single page of
    results, the current page, or an arrow disabled at either end.
    """
    if target == "next":
        selector = locators.PAGINATION_NEXT
    elif target == "previous":
        selector = locators.PAGINATION_PREVIOUS
    elif isinstance(target, int):
        selector = locators.pagination_link(target)
    else:
        raise ValueError(f"Unknown pagination target: {target!r}")

    actions = session.actions
    if not await actions.is_visible(selector):
        logger.info(f"[{session.id}] no pagination link for {target!r} on page {current_results_page(session)}")
        return False

    await actions.click_and_navigate(selector, f"results page {target}")
    await _await_results(session, f"results page {target}")
    return True


async def open_product(session: "Session", position: int = 0) -> str:
    """Open a product from the results and return the title of its page"""
    actions = session.actions
    await actions.click_and_navigate(locators.PRODUCT_NAME, f"product page of result {position}", position)
    await actions.wait_for_visible(locators.PRODUCT_TITLE)
    return await actions.text_of(locators.PRODUCT_TITLE)


async def back_to_results(session: "Session"):
    await session.actions.go_back()
    await _await_results(session, "results after navigating back")


@dataclass
class CartConfirmation:
    message: str
    quantity: int


async def add_to_cart(session: "Session", position: int = 0) -> CartConfirmation:
    """Add a listed product to the cart and close the confirmation layer.

    The list answers in place, so the page (and its results) stays the same.
    """
    actions = session.actions
    if await actions.is_visible(locators.LAYER_CART):
        await continue_shopping(session)

    # Buttons only show while the product is hovered
    await actions.hover(locators.PRODUCT_CONTAINER, position)
    await actions.click(locators.ADD_TO_CART, position)
    await actions.wait_for_visible(locators.LAYER_CART, session.settings.terminal_state_timeout_ms)

    message = await actions.text_of(locators.LAYER_CART_MESSAGE) or ""
    await continue_shopping(session)

    quantity = await actions.text_of(locators.CART_QUANTITY)
    confirmation = CartConfirmation(message, int(quantity) if quantity and quantity.isdigit() else 0)
    logger.info(f"[{session.id}] added result {position} to cart: {confirmation.quantity} in cart")
    return confirmation


async def continue_shopping(session: "Session"):
    await session.actions.click(locators.CONTINUE_SHOPPING)
    await session.actions.wait_for_hidden(locators.LAYER_CART)
