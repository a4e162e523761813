"""
Synthetic identities for the storefront.

Accounts created on the target are never deleted, so every generated email
carries a token made of a nanosecond timestamp and random hex. Generation is
pure: no I/O and no shared counters, so parallel workers need no
coordination.
"""

import random
import re
import secrets
import time
import unicodedata
from datetime import date
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict

DEFAULT_LAST_NAME = "Auto"
EMAIL_DOMAIN = "test.com"


class DateOfBirth(BaseModel):
    model_config = ConfigDict(frozen=True)

    day: int
    month: int
    year: int


class Identity(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    first_name: str
    last_name: str
    email: str
    password: str
    gender: Optional[Literal["male", "female"]] = None
    date_of_birth: Optional[DateOfBirth] = None
    newsletter_opt_in: bool = False

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def derive(self, **changes) -> "Identity":
        """Copy with some fields replaced; shared identities are never changed in place"""
        return self.model_validate({**self.model_dump(), **changes})


def unique_token() -> str:
    return f"{time.time_ns()}_{secrets.token_hex(4)}"


def _local_part(base_name: str) -> str:
    """ASCII-only email prefix: accents are folded ('Renée' gives 'renee'), anything else dropped"""
    folded = unicodedata.normalize("NFKD", base_name).encode("ascii", "ignore").decode("ascii")
    cleaned = re.sub(r"[^a-z0-9]+", "", folded.lower())
    return cleaned or "user"


def generate_identity(base_name: str = "TestUser", **overrides) -> Identity:
    """Build a fresh identity; any field can be overridden, including with junk"""
    token = unique_token()
    fields = {
        "first_name": base_name,
        "last_name": DEFAULT_LAST_NAME,
        "email": f"{_local_part(base_name)}_{token}@{EMAIL_DOMAIN}",
        "password": f"P@ssw0rd_{token}",
    }
    fields.update(overrides)
    return Identity(**fields)


def generate_unique_email(base_name: str = "user") -> str:
    return f"{_local_part(base_name)}_{unique_token()}@{EMAIL_DOMAIN}"


def random_date_of_birth(min_age: int = 18, max_age: int = 65,
                         rng: Optional[random.Random] = None,
                         today: Optional[date] = None) -> DateOfBirth:
    rng = rng or random.Random()
    today = today or date.today()
    year = today.year - rng.randint(min_age, max_age)
    # Day capped at 28 so every month is valid
    return DateOfBirth(day=rng.randint(1, 28), month=rng.randint(1, 12), year=year)


def age_boundary_dates(today: Optional[date] = None) -> Dict[str, DateOfBirth]:
    year = (today or date.today()).year
    return {
        "exactly_18": DateOfBirth(day=15, month=6, year=year - 18),
        "almost_18": DateOfBirth(day=16, month=6, year=year - 18),
        "exactly_21": DateOfBirth(day=15, month=6, year=year - 21),
        "over_100": DateOfBirth(day=15, month=6, year=year - 100),
        "under_13": DateOfBirth(day=15, month=6, year=year - 12),
    }


WEAK_PASSWORDS: List[str] = [
    "123", "123456", "password", "abc123", "qwerty",
    "letmein", "admin", "welcome", "monkey", "password1",
]

STRONG_PASSWORDS: List[str] = [
    "Str0ngP@ssw0rd!",
    "C0mpl3x#P@ss2024",
    "My$3cur3P@ss!",
    "P@ssw0rdW1thSymb0ls",
    "V3ry$tr0ngP@ss123",
]

INVALID_EMAILS: List[str] = [
    "invalidemail",
    "user@domain",
    "@domain.com",
    "user@.com",
    "user@domain.",
    "user name@domain.com",
    "user@domain..com",
]

SPECIAL_CHARACTER_NAMES: List[Dict[str, str]] = [
    {"first": "O'Connor", "last": "Smith-Jones"},
    {"first": "Renée", "last": "Müller"},
    {"first": "José", "last": "García"},
    {"first": "Anna-Maria", "last": "van den Berg"},
    {"first": "Björn", "last": "Andrén"},
    {"first": "Chloë", "last": "Moretz-Éclair"},
]

XSS_PAYLOADS: List[str] = [
    "<script>alert('xss')</script>",
    '"><script>alert(1)</script>',
    "javascript:alert('xss')",
    "<img src=x onerror=alert('xss')>",
    "<svg onload=alert(1)>",
    "<body onload=alert('xss')>",
]

SQL_INJECTION_PAYLOADS: List[str] = [
    "' OR '1'='1",
    "'; DROP TABLE users; --",
    "' OR 1=1--",
    "admin'--",
    "' UNION SELECT * FROM products --",
    "1; DELETE FROM products",
]
