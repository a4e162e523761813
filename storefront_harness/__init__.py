"""
Storefront Regression Harness

Playwright-driven building blocks for end-to-end regression scenarios against
a demo e-commerce storefront: synthetic identities, isolated sessions, flow
helpers and verification policies.
"""

__version__ = "0.1.0"

from .browser_engine import BrowserEngine, Session, SessionOptions
from .config import HarnessSettings, get_settings
from .errors import (
    AssertionViolation,
    HarnessError,
    NavigationTimeout,
    SessionStateError,
    UnexpectedOutcome,
    ValidationRejected,
)
from .flows import AttemptState, AuthAttempt, ErrorSurface
from .identity import Identity, generate_identity
from .scenario import Scenario, ScenarioRunner, Step
from .validator import CheckStatus, Requirement, VerificationOutcome, VerificationPolicy

__all__ = [
    "AssertionViolation",
    "AttemptState",
    "AuthAttempt",
    "BrowserEngine",
    "CheckStatus",
    "ErrorSurface",
    "HarnessError",
    "HarnessSettings",
    "Identity",
    "NavigationTimeout",
    "Requirement",
    "Scenario",
    "ScenarioRunner",
    "Session",
    "SessionOptions",
    "SessionStateError",
    "Step",
    "UnexpectedOutcome",
    "ValidationRejected",
    "VerificationOutcome",
    "VerificationPolicy",
    "generate_identity",
    "get_settings",
]
