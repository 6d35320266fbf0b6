from __future__ import annotations

import math
import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Mapping

import pandas as pd

"""Row normalization helpers shared by the bulk pipeline and single-record handlers.

Every function here is pure and never raises on bad input: anything that
cannot be coerced becomes an absent value (None / empty list) and the
validator decides whether that is a violation.
"""

__all__ = [
    "NormalizedRow",
    "is_blank",
    "sanitize_value",
    "split_list",
    "parse_dob",
    "digits_only",
    "extract_card_last4",
    "mask_card",
    "format_dob",
    "format_timestamp",
    "normalize_row",
]

_DOB_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_NON_DIGIT = re.compile(r"\D")
CARD_MASK_PREFIX = "*" * 12

STRING_FIELDS = ("identifier", "name", "email", "username", "state", "city", "gender", "address", "password")
DIGIT_FIELDS = ("mobile", "credit_card")
LIST_FIELDS = ("hobbies", "tech_interests")


@dataclass(frozen=True)
class NormalizedRow:
    values: dict[str, Any]
    supplied: frozenset[str]  # 元セルが空でなかったフィールド


def is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (list, tuple, set, frozenset)):
        return not any(not is_blank(v) for v in value)
    if isinstance(value, str):
        return value.strip() == ""
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def sanitize_value(value: Any) -> str | None:
    """Trimmed string, or None for blank cells.

    Integral floats (how spreadsheets hand back numeric cells) lose the
    trailing ".0" so that 9876543210.0 reads as "9876543210".
    """
    if is_blank(value):
        return None
    if isinstance(value, float) and math.isfinite(value) and value.is_integer():
        value = int(value)
    text = str(value).strip()
    return text or None


def split_list(value: Any) -> list[str]:
    """Comma-separated cell or native list -> trimmed, non-empty items in order."""
    if is_blank(value):
        return []
    if isinstance(value, (list, tuple)):
        items = value
    else:
        items = str(value).split(",")
    out: list[str] = []
    for item in items:
        cleaned = sanitize_value(item)
        if cleaned is not None:
            out.append(cleaned)
    return out


def parse_dob(value: Any) -> date | None:
    """Native date/datetime, or a string in exactly YYYY-MM-DD form."""
    if is_blank(value):
        return None
    if isinstance(value, datetime):  # pd.Timestamp included
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not _DOB_PATTERN.match(text):
        return None
    try:
        return date.fromisoformat(text)
    except ValueError:
        return None


def digits_only(value: Any) -> str | None:
    text = sanitize_value(value)
    if text is None:
        return None
    digits = _NON_DIGIT.sub("", text)
    return digits or None


def extract_card_last4(card: Any) -> str | None:
    """Irreversible truncation applied before anything is persisted."""
    digits = digits_only(card)
    if digits is None or len(digits) < 4:
        return None
    return digits[-4:]


def mask_card(last4: str | None) -> str | None:
    if not last4:
        return None
    return CARD_MASK_PREFIX + last4


def format_dob(value: date | None) -> str | None:
    if value is None:
        return None
    return value.strftime("%Y-%m-%d")


def format_timestamp(value: Any) -> str | None:
    if value is None:
        return None
    return value.isoformat() if hasattr(value, "isoformat") else str(value)


def normalize_row(raw: Mapping[str, Any]) -> NormalizedRow:
    """Convert one raw row (field key -> cell) into the canonical record."""
    values: dict[str, Any] = {}
    supplied: set[str] = set()
    for key in STRING_FIELDS:
        values[key] = sanitize_value(raw.get(key))
    for key in DIGIT_FIELDS:
        values[key] = digits_only(raw.get(key))
    for key in LIST_FIELDS:
        values[key] = split_list(raw.get(key))
    values["dob"] = parse_dob(raw.get("dob"))
    for key, cell in raw.items():
        if not is_blank(cell):
            supplied.add(key)
    return NormalizedRow(values=values, supplied=frozenset(supplied))
