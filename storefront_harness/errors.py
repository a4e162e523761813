from typing import TYPE_CHECKING, List, Optional, Sequence

if TYPE_CHECKING:
    from .diagnostics import PageState
    from .validator import VerificationOutcome


class HarnessError(Exception):
    """Base class for every failure raised by the harness"""

    def __init__(self, message: str, state: Optional["PageState"] = None):
        super().__init__(message)
        self.message = message
        self.state = state

    def __str__(self) -> str:
        if self.state is None:
            return self.message
        return f"{self.message}\n{self.state.describe()}"


class NavigationTimeout(HarnessError):
    """An expected state transition did not happen within its bound"""

    def __init__(self, description: str, timeout_ms: int, state: Optional["PageState"] = None):
        super().__init__(f"Timed out after {timeout_ms}ms waiting for: {description}", state)
        self.description = description
        self.timeout_ms = timeout_ms


class ValidationRejected(HarnessError):
    """The storefront rejected the submitted input"""

    def __init__(
            self,
            surface: str,
            messages: Sequence[str] = (),
            state: Optional["PageState"] = None
    ):
        detail = "; ".join(messages) if messages else "no message"
        super().__init__(f"Rejected by the storefront ({surface}): {detail}", state)
        self.surface = surface
        self.messages = list(messages)


class UnexpectedOutcome(HarnessError):
    """Neither the success nor the rejection signal showed up"""


class AssertionViolation(HarnessError, AssertionError):
    """One or more mandatory checks of a verification policy failed"""

    def __init__(
            self,
            violations: List["VerificationOutcome"],
            scenario: Optional[str] = None,
            state: Optional["PageState"] = None
    ):
        checks = ", ".join(f"{v.check} ({v.detail})" for v in violations)
        prefix = f"[{scenario}] " if scenario else ""
        super().__init__(f"{prefix}Verification failed: {checks}", state)
        self.violations = violations
        self.scenario = scenario

    @property
    def checks(self) -> List[str]:
        return [v.check for v in self.violations]


class SessionStateError(HarnessError):
    """The harness was asked to do something the session cannot do"""
