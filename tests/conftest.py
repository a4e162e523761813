"""
Shared fixtures.

Unit tests run against FakeStorefront: an in-memory stand-in for the
Playwright browser/context/page objects that renders just enough of the demo
shop (authentication, account creation, my-account, search, product pages,
cart layer) for the flow helpers and policies to be exercised without a
network.

Signed in state lives server side, keyed by the session cookie value, and is
bound to the browser that received the cookie. With ``navigation_delay`` set,
clicks that load a new document answer after that many seconds, leaving the
old page on screen in the meantime, the way a real browser does.
"""

import asyncio
import uuid
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Dict, List, Optional
from unittest.mock import patch
from urllib.parse import parse_qs, urlencode, urlparse

import pytest
import pytest_asyncio
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from storefront_harness import locators
from storefront_harness.browser_engine import BrowserEngine
from storefront_harness.config import HarnessSettings

pytest_plugins = ["storefront_harness.pytest_plugin"]

BASE_URL = "http://shop.test"

CATALOG = [
    ("Faded Short Sleeves T-shirt", 16.51),
    ("Blouse", 27.00),
    ("Printed Dress", 26.00),
    ("Printed Summer Dress", 28.98),
    ("Printed Chiffon Dress", 16.40),
]

FEATURED = ["Blouse", "Printed Dress"]

CART_MESSAGE = "Product successfully added to your shopping cart"

CHROME = {locators.SEARCH_INPUT, locators.SEARCH_SUBMIT}

CREATION_FORM = {
    locators.ACCOUNT_CREATION_FORM,
    locators.GENDER_RADIOS["male"],
    locators.GENDER_RADIOS["female"],
    locators.FIRST_NAME,
    locators.LAST_NAME,
    locators.ACCOUNT_EMAIL,
    locators.LOGIN_PASSWORD,
    locators.DOB_DAY,
    locators.DOB_MONTH,
    locators.DOB_YEAR,
    locators.NEWSLETTER,
    locators.SUBMIT_ACCOUNT,
}

CART_LAYER = (locators.LAYER_CART, locators.LAYER_CART_MESSAGE, locators.CONTINUE_SHOPPING)


def _valid_email(email: str) -> bool:
    if " " in email or email.count("@") != 1:
        return False
    local, domain = email.split("@")
    return bool(local) and "." in domain and not domain.startswith(".") \
        and not domain.endswith(".") and ".." not in domain


def _product_url(name: str) -> str:
    product_id = [product for product, _ in CATALOG].index(name) + 1
    return f"{BASE_URL}/index.php?id_product={product_id}&controller=product"


def _search_url(**params) -> str:
    return f"{BASE_URL}/index.php?" + urlencode({"controller": "search", **params})


class FakeLocator:
    def __init__(self, page: "FakePage", selector: str, index: int = 0):
        self.page = page
        self.selector = selector
        self.index = index

    @property
    def first(self):
        return FakeLocator(self.page, self.selector)

    def nth(self, index):
        return FakeLocator(self.page, self.selector, index)

    def _visible(self) -> bool:
        if self.selector not in self.page.visible:
            return False
        value = self.page.texts.get(self.selector)
        if isinstance(value, list):
            return self.index < len(value)
        return self.index == 0 or self.index < self.page.counts.get(self.selector, 1)

    def _require_visible(self, timeout):
        if not self._visible():
            raise PlaywrightTimeoutError(f"Timeout {timeout}ms exceeded waiting for {self.selector}")

    async def is_visible(self):
        return self._visible()

    async def text_content(self, timeout=None):
        value = self.page.texts.get(self.selector)
        if isinstance(value, list):
            return value[self.index] if self.index < len(value) else None
        return value

    async def all_text_contents(self):
        value = self.page.texts.get(self.selector)
        if value is None:
            return []
        return list(value) if isinstance(value, list) else [value]

    async def count(self):
        if self.selector in self.page.counts:
            return self.page.counts[self.selector]
        value = self.page.texts.get(self.selector)
        if isinstance(value, list):
            return len(value)
        return 1 if self._visible() else 0

    async def fill(self, value, timeout=None):
        self._require_visible(timeout)
        self.page.fields[self.selector] = value

    async def click(self, timeout=None):
        self._require_visible(timeout)
        page = self.page
        page.clicks.append(self.selector)

        # The browser refuses to submit while a required field is invalid
        if any(selector.endswith(locators.INVALID_FIELD) for selector in page.visible):
            return

        link = page.links.get(self.selector)
        if isinstance(link, list):
            link = link[self.index]
        if link:
            page.context.store.navigate(page, link)
        else:
            page.context.store.click(page, self.selector, self.index)

    async def hover(self, timeout=None):
        self._require_visible(timeout)
        self.page.hovered = (self.selector, self.index)

    async def check(self, timeout=None):
        self._require_visible(timeout)
        self.page.checked.add(self.selector)

    async def select_option(self, value, timeout=None):
        self._require_visible(timeout)
        self.page.fields[self.selector] = value
        self.page.context.store.select(self.page, self.selector, value)

    async def wait_for(self, state="visible", timeout=None):
        if state == "hidden":
            if self._visible():
                raise PlaywrightTimeoutError(f"Timeout {timeout}ms exceeded waiting for {self.selector} to hide")
            return
        self._require_visible(timeout)

    async def get_attribute(self, name, timeout=None):
        return self.page.attributes.get((self.selector, name))

    async def evaluate(self, script, arg=None):
        if "display = 'none'" in script:
            self.page.visible.discard(self.selector)


class FakePage:
    def __init__(self, context: "FakeContext"):
        self.context = context
        self.url = "about:blank"
        self.heading = ""
        self.visible = set()
        self.texts: Dict[str, object] = {}
        self.counts: Dict[str, int] = {}
        self.attributes: Dict[tuple, str] = {}
        self.fields: Dict[str, str] = {}
        self.links: Dict[str, object] = {}
        self.checked = set()
        self.clicks: List[str] = []
        self.hovered = None
        self.handlers = {}
        self.history: List[str] = []
        self.navigations = 0
        self.navigation_waiters: List[asyncio.Event] = []
        self.screenshots: List[str] = []
        self.closed = False

    def reset(self, url: str, heading: str = "", navigated: bool = True):
        self.url = url
        self.heading = heading
        self.visible = set(CHROME)
        self.texts = {}
        self.counts = {}
        self.attributes = {}
        self.fields = {}
        self.links = {}
        self.checked = set()
        if heading:
            self.visible.add(locators.PAGE_HEADING)
            self.texts[locators.PAGE_HEADING] = heading
        if navigated:
            self.navigations += 1
            self.history.append(url)
            for waiter in self.navigation_waiters:
                waiter.set()

    def show(self, selector: str, text=None):
        self.visible.add(selector)
        if text is not None:
            self.texts[selector] = text

    def hide(self, *selectors):
        for selector in selectors:
            self.visible.discard(selector)

    def on(self, event, callback):
        self.handlers[event] = callback

    def locator(self, selector):
        return FakeLocator(self, selector)

    async def title(self):
        return self.heading or "My Store"

    async def goto(self, url, wait_until=None, timeout=None):
        if self.context.store.unreachable:
            raise PlaywrightTimeoutError(f"Timeout {timeout}ms exceeded navigating to {url}")
        self.context.store.render(self, url)

    async def go_back(self, wait_until=None, timeout=None):
        if len(self.history) < 2:
            return None
        self.history.pop()
        self.context.store.render(self, self.history.pop())

    @asynccontextmanager
    async def expect_navigation(self, wait_until=None, timeout=None):
        navigated = asyncio.Event()
        self.navigation_waiters.append(navigated)
        try:
            yield
            try:
                await asyncio.wait_for(navigated.wait(), (timeout or 30000) / 1000)
            except asyncio.TimeoutError:
                raise PlaywrightTimeoutError(f"Timeout {timeout}ms exceeded waiting for navigation") from None
        finally:
            self.navigation_waiters.remove(navigated)

    async def wait_for_load_state(self, state="load", timeout=None):
        return None

    async def evaluate(self, script, arg=None):
        if arg and "email" in arg:
            self.fields[locators.LOGIN_EMAIL] = arg["email"]
            self.fields[locators.LOGIN_PASSWORD] = arg["password"]
        return None

    async def screenshot(self, path=None, full_page=False):
        data = b"\x89PNG\r\n\x1a\n"
        if path:
            Path(path).write_bytes(data)
            self.screenshots.append(path)
        return data

    async def close(self):
        self.closed = True


class FakeContext:
    def __init__(self, store: "FakeStorefront", **options):
        self.store = store
        self.options = options
        # Stands in for what a server can tell browsers apart by
        self.client_id = uuid.uuid4().hex
        self.cookie_jar: List[Dict] = []
        self.cart: List[str] = []
        self.pages: List[FakePage] = []
        self.closed = False
        self.default_timeout = None
        self.default_navigation_timeout = None

    @property
    def user(self) -> Optional[str]:
        return self.store.current_user(self)

    def set_default_timeout(self, timeout):
        self.default_timeout = timeout

    def set_default_navigation_timeout(self, timeout):
        self.default_navigation_timeout = timeout

    async def new_page(self):
        page = FakePage(self)
        self.pages.append(page)
        return page

    async def cookies(self):
        return [dict(cookie) for cookie in self.cookie_jar]

    async def add_cookies(self, cookies):
        for cookie in cookies:
            self.cookie_jar = [c for c in self.cookie_jar if c["name"] != cookie["name"]]
            self.cookie_jar.append(dict(cookie))

    async def close(self):
        self.closed = True


class FakeStorefront:
    """In-memory demo shop; accounts persist across sessions like the real one"""

    def __init__(self):
        self.accounts: Dict[str, Dict[str, str]] = {}
        self.sessions: Dict[str, Dict[str, str]] = {}
        self.contexts: List[FakeContext] = []
        self.min_password_length = 5
        self.results_per_page = 12
        self.navigation_delay: Optional[float] = None
        self.unreachable = False
        self.hang_on_submit = False
        self.blank_after_submit = False
        self.rotate_cookie_on_login = True
        self.bind_sessions_to_client = True

    def add_account(self, email, password, first_name="Test", last_name="User"):
        self.accounts[email.strip().lower()] = {
            "password": password,
            "first_name": first_name,
            "last_name": last_name,
        }

    # Sessions

    @staticmethod
    def _session_cookie(context: FakeContext) -> Optional[Dict]:
        return next((c for c in context.cookie_jar if c["name"].startswith("PrestaShop-")), None)

    def _issue_cookie(self, context: FakeContext):
        if self._session_cookie(context):
            return
        context.cookie_jar.append({
            "name": "PrestaShop-a1b2c3",
            "value": uuid.uuid4().hex,
            "domain": "shop.test",
            "path": "/",
            "expires": -1,
            "httpOnly": True,
            "secure": False,
            "sameSite": "Lax",
        })

    def current_user(self, context: FakeContext) -> Optional[str]:
        cookie = self._session_cookie(context)
        record = self.sessions.get(cookie["value"]) if cookie else None
        if record is None:
            return None
        if self.bind_sessions_to_client and record["client"] != context.client_id:
            return None
        return record["email"]

    def _sign_in(self, context: FakeContext, email: str):
        self._issue_cookie(context)
        cookie = self._session_cookie(context)
        if self.rotate_cookie_on_login:
            self.sessions.pop(cookie["value"], None)
            cookie["value"] = uuid.uuid4().hex
        self.sessions[cookie["value"]] = {"email": email, "client": context.client_id}

    def _sign_out(self, context: FakeContext):
        cookie = self._session_cookie(context)
        if cookie:
            self.sessions.pop(cookie["value"], None)

    # Timing

    def _later(self, callback, *args):
        if self.navigation_delay:
            asyncio.get_running_loop().call_later(self.navigation_delay, callback, *args)
        else:
            callback(*args)

    def navigate(self, page: FakePage, url: str):
        self._later(self.render, page, url)

    # Rendering

    def render(self, page: FakePage, url: str):
        self._issue_cookie(page.context)
        query = parse_qs(urlparse(url).query)
        controller = query.get("controller", [""])[0]
        user = page.context.user

        if controller == "authentication":
            if user:
                return self._account_page(page, "my-account")
            return self._auth_page(page, url)
        if controller in ("my-account", "history"):
            if not user:
                return self._auth_page(page, f"{BASE_URL}/index.php?controller=authentication&back={controller}")
            return self._account_page(page, controller)
        if controller == "search":
            return self._search_page(page, url)
        if controller == "product":
            return self._product_page(page, url)
        return self._home_page(page)

    def _chrome(self, page: FakePage):
        user = page.context.user
        if user:
            account = self.accounts[user.lower()]
            page.show(locators.LOGOUT_LINK)
            page.show(locators.ACCOUNT_NAME, f"{account['first_name']} {account['last_name']}")
        if page.context.cart:
            page.show(locators.CART_QUANTITY, str(len(page.context.cart)))

    def _product_list(self, page: FakePage, names: List[str]):
        prices = dict(CATALOG)
        page.show(locators.PRODUCT_LISTING)
        page.show(locators.PRODUCT_CONTAINER)
        page.show(locators.PRODUCT_NAME, list(names))
        page.show(locators.PRODUCT_PRICE, [f"${prices[name]:.2f}" for name in names])
        page.show(locators.ADD_TO_CART, list(names))
        page.counts[locators.PRODUCT_CONTAINER] = len(names)
        page.links[locators.PRODUCT_NAME] = [_product_url(name) for name in names]

    def _home_page(self, page: FakePage):
        page.reset(f"{BASE_URL}/index.php")
        self._product_list(page, FEATURED)
        self._chrome(page)

    def _auth_page(self, page: FakePage, url: str, errors: Optional[List[str]] = None):
        page.reset(url, "Authentication")
        for selector in (locators.EMAIL_CREATE, locators.SUBMIT_CREATE, locators.LOGIN_EMAIL,
                         locators.LOGIN_PASSWORD, locators.SUBMIT_LOGIN):
            page.show(selector)
        page.attributes[(locators.LOGIN_PASSWORD, "type")] = "password"
        if errors:
            self._show_errors(page, errors)
        self._chrome(page)

    def _creation_form(self, page: FakePage, url: str, email: str,
                       errors: Optional[List[str]] = None, navigated: bool = True):
        page.reset(url.split("#")[0] + "#account-creation", "Create an account", navigated)
        for selector in CREATION_FORM:
            page.show(selector)
        page.fields[locators.ACCOUNT_EMAIL] = email
        if errors:
            self._show_errors(page, errors)

    @staticmethod
    def _show_errors(page: FakePage, errors: List[str]):
        page.show(locators.ERROR_BANNER, f"There is {len(errors)} error")
        page.texts[locators.ERROR_ITEMS] = list(errors)

    def _account_page(self, page: FakePage, controller: str, created: bool = False):
        heading = "Order history" if controller == "history" else "My account"
        page.reset(f"{BASE_URL}/index.php?controller={controller}", heading)
        if controller == "my-account":
            page.show(locators.ACCOUNT_INFO, "Welcome to your account. Here you can manage all of your personal information and orders.")
        if created:
            page.show(locators.SUCCESS_BANNER, "Your account has been created.")
        self._chrome(page)

    def _search_page(self, page: FakePage, url: str):
        params = {key: values[0] for key, values in parse_qs(urlparse(url).query).items()}
        query = params.get("search_query", "").strip()
        page.reset(url)
        self._chrome(page)

        if not query:
            page.show(locators.WARNING_BANNER, "Please enter a search keyword")
            return

        words = query.lower().split()
        matches = [(name, price) for name, price in CATALOG if all(word in name.lower() for word in words)]
        if not matches:
            page.show(locators.WARNING_BANNER, f'No results were found for your search "{query}"')
            return

        order_by, order_way = params.get("orderby"), params.get("orderway", "asc")
        if order_by in ("price", "name"):
            key = 1 if order_by == "price" else 0
            matches.sort(key=lambda product: product[key], reverse=order_way == "desc")
        page.show(locators.SORT_SELECT)
        page.fields[locators.SORT_SELECT] = f"{order_by}:{order_way}" if order_by else "position:asc"

        pages = -(-len(matches) // self.results_per_page)
        current = min(max(int(params.get("p", "1")), 1), pages)
        start = (current - 1) * self.results_per_page
        self._product_list(page, [name for name, _ in matches[start:start + self.results_per_page]])

        if pages > 1:
            page.show(locators.PAGINATION)
            targets = {locators.pagination_link(number): number for number in range(1, pages + 1) if number != current}
            if current < pages:
                targets[locators.PAGINATION_NEXT] = current + 1
            if current > 1:
                targets[locators.PAGINATION_PREVIOUS] = current - 1
            for selector, number in targets.items():
                page.show(selector)
                page.links[selector] = _search_url(**{**params, "p": str(number)})

    def _product_page(self, page: FakePage, url: str):
        product_id = int(parse_qs(urlparse(url).query)["id_product"][0])
        page.reset(url)
        page.show(locators.PRODUCT_TITLE, CATALOG[product_id - 1][0])
        self._chrome(page)

    # Interaction

    def click(self, page: FakePage, selector: str, index: int = 0):
        deferred = {
            locators.SUBMIT_CREATE: self._submit_create,
            locators.SUBMIT_ACCOUNT: self._submit_account,
            locators.SUBMIT_LOGIN: self._submit_login,
            locators.LOGOUT_LINK: self._logout,
            locators.SEARCH_SUBMIT: self._search,
        }.get(selector)
        if deferred:
            self._later(deferred, page)
        elif selector == locators.ADD_TO_CART:
            self._add_to_cart(page, index)
        elif selector == locators.CONTINUE_SHOPPING:
            page.hide(*CART_LAYER)

    def select(self, page: FakePage, selector: str, value: str):
        if selector != locators.SORT_SELECT:
            return
        order_by, order_way = value.split(":")
        params = {key: values[0] for key, values in parse_qs(urlparse(page.url).query).items()}
        params.pop("p", None)
        self.navigate(page, _search_url(**{**params, "orderby": order_by, "orderway": order_way}))

    def _submit_create(self, page: FakePage):
        if self.hang_on_submit:
            return
        email = page.fields.get(locators.EMAIL_CREATE, "").strip()
        if not _valid_email(email):
            page.show(locators.CREATE_ACCOUNT_ERROR, "Invalid email address.")
        elif email.lower() in self.accounts:
            page.show(
                locators.CREATE_ACCOUNT_ERROR,
                "An account using this email address has already been registered. "
                "Please enter a valid password or request a new one.",
            )
        else:
            self._creation_form(page, page.url, email, navigated=False)

    def _submit_account(self, page: FakePage):
        if self.hang_on_submit:
            return
        if self.blank_after_submit:
            page.reset(f"{BASE_URL}/index.php?controller=error")
            return

        fields = page.fields
        first = fields.get(locators.FIRST_NAME, "").strip()
        last = fields.get(locators.LAST_NAME, "").strip()
        email = fields.get(locators.ACCOUNT_EMAIL, "").strip()
        password = fields.get(locators.LOGIN_PASSWORD, "")

        errors = []
        if not last:
            errors.append("lastname is required.")
        if not first:
            errors.append("firstname is required.")
        if not email:
            errors.append("email is required.")
        elif not _valid_email(email):
            errors.append("email is invalid.")
        elif email.lower() in self.accounts:
            errors.append("An account using this email address has already been registered.")
        if not password:
            errors.append("passwd is required.")
        elif len(password) < self.min_password_length:
            errors.append("passwd is invalid.")

        if errors:
            self._creation_form(page, page.url, email, errors)
            return

        self.add_account(email, password, first, last)
        self._sign_in(page.context, email)
        self._account_page(page, "my-account", created=True)

    def _submit_login(self, page: FakePage):
        if self.hang_on_submit:
            return
        if self.blank_after_submit:
            page.reset(f"{BASE_URL}/index.php?controller=error")
            return

        email = page.fields.get(locators.LOGIN_EMAIL, "").strip()
        password = page.fields.get(locators.LOGIN_PASSWORD, "").strip()
        back = parse_qs(urlparse(page.url).query).get("back", ["my-account"])[0]

        if not email:
            error = "An email address required."
        elif not _valid_email(email):
            error = "Invalid email address."
        elif not password:
            error = "Password is required."
        else:
            account = self.accounts.get(email.lower())
            error = None if account and account["password"] == password else "Authentication failed."

        if error:
            self._auth_page(page, page.url, [error])
            return

        self._sign_in(page.context, email)
        self._account_page(page, back if back in ("my-account", "history") else "my-account")

    def _logout(self, page: FakePage):
        self._sign_out(page.context)
        self._auth_page(page, f"{BASE_URL}/index.php?controller=authentication&back=my-account")

    def _search(self, page: FakePage):
        if self.hang_on_submit:
            return
        query = page.fields.get(locators.SEARCH_INPUT, "").strip()
        self.render(page, _search_url(search_query=query))

    def _add_to_cart(self, page: FakePage, index: int):
        name = page.texts[locators.PRODUCT_NAME][index]
        page.context.cart.append(name)
        page.show(locators.LAYER_CART)
        page.show(locators.LAYER_CART_MESSAGE, CART_MESSAGE)
        page.show(locators.CONTINUE_SHOPPING)
        page.show(locators.CART_QUANTITY, str(len(page.context.cart)))


class FakeBrowser:
    def __init__(self, store: FakeStorefront, **launch_options):
        self.store = store
        self.launch_options = launch_options
        self.closed = False

    async def new_context(self, **options):
        context = FakeContext(self.store, **options)
        self.store.contexts.append(context)
        return context

    async def close(self):
        self.closed = True


class FakeBrowserType:
    def __init__(self, store: FakeStorefront):
        self.store = store
        self.browser: Optional[FakeBrowser] = None

    async def launch(self, **options):
        self.browser = FakeBrowser(self.store, **options)
        return self.browser


class FakePlaywright:
    def __init__(self, store: FakeStorefront):
        self.chromium = FakeBrowserType(store)
        self.stopped = False

    async def stop(self):
        self.stopped = True


class FakePlaywrightManager:
    def __init__(self, store: FakeStorefront):
        self.store = store

    async def start(self):
        return FakePlaywright(self.store)


@pytest.fixture
def storefront():
    return FakeStorefront()


@pytest.fixture
def slow_storefront(storefront):
    """Storefront whose submits load the next page 30ms after the click"""
    storefront.navigation_delay = 0.03
    return storefront


@pytest.fixture
def fake_settings(tmp_path):
    return HarnessSettings(
        base_url=BASE_URL,
        action_timeout_ms=100,
        navigation_timeout_ms=100,
        terminal_state_timeout_ms=150,
        poll_interval_ms=10,
        artifacts_dir=str(tmp_path / "artifacts"),
    )


@pytest_asyncio.fixture
async def engine(storefront, fake_settings):
    with patch("storefront_harness.browser_engine.async_playwright",
               lambda: FakePlaywrightManager(storefront)):
        async with BrowserEngine(fake_settings) as engine:
            yield engine


@pytest_asyncio.fixture
async def session(engine):
    async with engine.session_scope() as session:
        yield session
