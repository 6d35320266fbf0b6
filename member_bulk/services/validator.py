from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from ..models.bulk_row import RowMode
from ..models.lookup_catalog import LookupCatalog

"""Per-field and cross-field validation of a normalized row.

Every applicable check runs; a row can come back with several reasons. ADD
rows must carry every field. EDIT rows only need the identifier and are
checked field by field for whatever they do carry.
"""

__all__ = [
    "ValidationOutcome",
    "validate_row",
    "validate_password",
    "PASSWORD_SPECIALS",
]

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[A-Za-z]{2,}$")
USERNAME_PATTERN = re.compile(r"^[A-Za-z0-9._-]{4,20}$")
PASSWORD_SPECIALS = "@$!%*?&"
PASSWORD_MIN_LENGTH = 8
NAME_MIN_LENGTH = 2

ADD_REQUIRED = (
    ("name", "Name is required"),
    ("email", "Email is required"),
    ("username", "Username is required"),
    ("mobile", "Mobile is required"),
    ("credit_card", "Credit card is required"),
    ("state", "State is required"),
    ("city", "City is required"),
    ("gender", "Gender is required"),
    ("hobbies", "At least one hobby is required"),
    ("tech_interests", "At least one tech interest is required"),
    ("dob", "DOB is required"),
    ("password", "Password is required"),
)

# Fields whose non-blank cell can still normalize to nothing
_FORMAT_REPORTED = frozenset({"mobile", "credit_card", "dob"})

ADD_CARD_RULE = "Credit card must be exactly 16 digits"
EDIT_CARD_RULE = "Credit card must be 16 digits (or the last 4 digits already on file)"

PASSWORD_RULE = (
    f"Password must be at least {PASSWORD_MIN_LENGTH} characters and include uppercase, "
    f"lowercase, number and special character ({PASSWORD_SPECIALS})"
)


@dataclass(frozen=True)
class ValidationOutcome:
    reasons: list[str]
    values: dict[str, Any]  # pass-through so callers never re-normalize

    @property
    def valid(self) -> bool:
        return not self.reasons


def validate_password(password: str) -> bool:
    return (
        len(password) >= PASSWORD_MIN_LENGTH
        and any(c.islower() for c in password)
        and any(c.isupper() for c in password)
        and any(c.isdigit() for c in password)
        and any(c in PASSWORD_SPECIALS for c in password)
    )


def _present(values: dict[str, Any], key: str) -> bool:
    value = values.get(key)
    if isinstance(value, list):
        return bool(value)
    return value is not None


def _invalid_members(items: Iterable[str], allowed: Iterable[str]) -> list[str]:
    allowed_set = set(allowed)
    return [item for item in items if item not in allowed_set]


def validate_row(
    values: dict[str, Any],
    mode: RowMode,
    catalog: LookupCatalog,
    supplied: Iterable[str] = (),
) -> ValidationOutcome:
    """Validate one normalized record.

    Args:
        values: output of ``normalize_row(...).values``
        mode: ADD or EDIT
        catalog: closed vocabularies
        supplied: field keys whose raw cell was non-blank; a supplied field
            that normalized to nothing (e.g. DOB "04/05/2001") is reported as
            malformed rather than silently treated as absent

    Returns:
        ValidationOutcome with reasons in a stable field order
    """
    supplied_set = set(supplied)
    reasons: list[str] = []

    if mode is RowMode.ADD:
        for key, message in ADD_REQUIRED:
            if _present(values, key):
                continue
            if key in _FORMAT_REPORTED and key in supplied_set:
                continue  # reported below as malformed
            reasons.append(message)
    elif not _present(values, "identifier"):
        reasons.append("Identifier is required for EDIT rows")

    name = values.get("name")
    if name is not None and len(name) < NAME_MIN_LENGTH:
        reasons.append(f"Name must be at least {NAME_MIN_LENGTH} characters")

    email = values.get("email")
    if email is not None and not EMAIL_PATTERN.match(email):
        reasons.append("Invalid email format")

    username = values.get("username")
    if username is not None and not USERNAME_PATTERN.match(username):
        reasons.append("Username must be 4-20 characters (letters, numbers, . _ - allowed)")

    mobile = values.get("mobile")
    if (mobile is not None or "mobile" in supplied_set) and (mobile is None or len(mobile) != 10):
        reasons.append("Mobile must be exactly 10 digits")

    card = values.get("credit_card")
    if card is not None or "credit_card" in supplied_set:
        allowed_lengths = (16,) if mode is RowMode.ADD else (16, 4)
        if card is None or len(card) not in allowed_lengths:
            if mode is RowMode.ADD:
                reasons.append(ADD_CARD_RULE)
            else:
                reasons.append(EDIT_CARD_RULE)

    gender = values.get("gender")
    if gender is not None and gender not in catalog.genders:
        reasons.append(f"Invalid gender '{gender}'")

    state = values.get("state")
    city = values.get("city")
    if state is not None and not catalog.has_state(state):
        reasons.append(f"Invalid state '{state}'")
    if city is not None:
        if state is not None and catalog.has_state(state):
            if not catalog.city_in_state(city, state):
                reasons.append(f"City '{city}' does not belong to state '{state}'")
        elif state is None and city not in catalog.cities:
            reasons.append(f"Invalid city '{city}'")

    for bad in _invalid_members(values.get("hobbies") or [], catalog.hobbies):
        reasons.append(f"Invalid hobby '{bad}'")
    for bad in _invalid_members(values.get("tech_interests") or [], catalog.tech_interests):
        reasons.append(f"Invalid tech interest '{bad}'")

    if "dob" in supplied_set and values.get("dob") is None:
        reasons.append("Invalid DOB (expected YYYY-MM-DD)")

    password = values.get("password")
    if password is not None and not validate_password(password):
        reasons.append(PASSWORD_RULE)

    return ValidationOutcome(reasons=reasons, values=values)
