"""
pytest integration: command line options, markers and fixtures.

Load it from a conftest with ``pytest_plugins = ["storefront_harness.pytest_plugin"]``.
Live storefront scenarios are marked ``e2e`` and only run with ``--run-e2e``
(or ``STOREFRONT_RUN_E2E=1``).
"""

import asyncio

import pytest
import pytest_asyncio

from .browser_engine import BrowserEngine
from .config import HarnessSettings, configure_logging, get_settings
from .flows import create_account
from .identity import generate_identity
from .scenario import ScenarioRunner


def pytest_addoption(parser):
    group = parser.getgroup("storefront")
    group.addoption("--run-e2e", action="store_true", default=False,
                    help="run scenarios against the live storefront")
    group.addoption("--storefront-url", default=None,
                    help="base URL of the storefront under test")


def pytest_configure(config):
    config.addinivalue_line("markers", "e2e: drives the live storefront through a real browser")
    config.addinivalue_line("markers", "serial: touches remote state shared between scenarios (rate limits)")
    configure_logging(get_settings().log_level)


def pytest_collection_modifyitems(config, items):
    if config.getoption("--run-e2e") or get_settings().run_e2e:
        return

    skip_e2e = pytest.mark.skip(reason="live storefront scenarios need --run-e2e")
    for item in items:
        if "e2e" in item.keywords:
            item.add_marker(skip_e2e)


@pytest.fixture(scope="session")
def harness_settings(pytestconfig) -> HarnessSettings:
    settings = get_settings()
    url = pytestconfig.getoption("--storefront-url")
    if url:
        settings = settings.model_copy(update={"base_url": url})
    return settings


@pytest_asyncio.fixture
async def browser_engine(harness_settings):
    async with BrowserEngine(harness_settings) as engine:
        yield engine


@pytest_asyncio.fixture
async def storefront_session(browser_engine):
    async with browser_engine.session_scope() as session:
        yield session


@pytest.fixture
def scenario_runner(browser_engine) -> ScenarioRunner:
    return ScenarioRunner(browser_engine)


@pytest.fixture
def identity(request):
    """Fresh identity named after the requesting test"""
    name = getattr(request.node, "originalname", request.node.name)
    base = name.replace("test_", "", 1).title().replace("_", "")
    return generate_identity(base[:20] or "TestUser")


@pytest_asyncio.fixture
async def registered_identity(browser_engine, identity):
    """An identity whose account exists on the storefront and is logged out"""
    return await create_account(browser_engine, identity)


async def _provision_shared(settings: HarnessSettings):
    async with BrowserEngine(settings) as engine:
        return await create_account(engine, generate_identity("Shared"))


@pytest.fixture(scope="module")
def shared_identity(harness_settings, pytestconfig):
    """One account per test module, shared read-only.

    Identity is frozen; a test that needs different credentials derives its
    own copy with ``shared_identity.derive(...)`` and registers that instead.
    """
    if not (pytestconfig.getoption("--run-e2e") or harness_settings.run_e2e):
        pytest.skip("shared storefront account needs --run-e2e")
    return asyncio.run(_provision_shared(harness_settings))
