from __future__ import annotations

import re

"""Canonical column set of the Users sheet.

Order is fixed and shared by the reader (header resolution), the error
report and the template. Matching on upload is case/whitespace/punctuation
insensitive: "Credit Card", "credit_card" and "CREDITCARD" all resolve to the
same column.
"""

__all__ = [
    "COLUMNS",
    "COLUMN_LABELS",
    "FIELD_BY_LABEL",
    "LABEL_BY_FIELD",
    "REASON_COLUMN",
    "LIST_FIELDS",
    "normalize_header",
]

# (header label, record field key)
COLUMNS: tuple[tuple[str, str], ...] = (
    ("Identifier", "identifier"),
    ("Name", "name"),
    ("Email", "email"),
    ("Username", "username"),
    ("Mobile", "mobile"),
    ("Credit Card", "credit_card"),
    ("State", "state"),
    ("City", "city"),
    ("Gender", "gender"),
    ("Hobbies", "hobbies"),
    ("Tech Interests", "tech_interests"),
    ("Address", "address"),
    ("DOB", "dob"),
    ("Password", "password"),
)

COLUMN_LABELS: tuple[str, ...] = tuple(label for label, _ in COLUMNS)
FIELD_BY_LABEL: dict[str, str] = dict(COLUMNS)
LABEL_BY_FIELD: dict[str, str] = {key: label for label, key in COLUMNS}

REASON_COLUMN = "Error Reason"

LIST_FIELDS = frozenset({"hobbies", "tech_interests"})

_NON_ALNUM = re.compile(r"[^a-z0-9]")


def normalize_header(value: object) -> str:
    """Case-fold and strip every non-alphanumeric character."""
    if value is None:
        return ""
    return _NON_ALNUM.sub("", str(value).lower())
