from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

"""BulkRow model: one spreadsheet data row moving through the pipeline.

The row_number is the spreadsheet line the user sees (header = line 1, first
data row = line 2), never an internal list index.
"""

__all__ = [
    "RowMode",
    "BulkRow",
    "RowRejection",
]


class RowMode(Enum):
    """ADD when the Identifier cell is blank, EDIT otherwise."""
    ADD = "ADD"
    EDIT = "EDIT"


@dataclass(frozen=True)
class BulkRow:
    row_number: int
    mode: RowMode
    raw_values: dict[str, Any]  # canonical column label -> original cell
    values: dict[str, Any]  # field key -> normalized value
    supplied: frozenset[str] = field(default_factory=frozenset)  # fields with a non-blank raw cell
    reasons: tuple[str, ...] = ()

    @property
    def rejected(self) -> bool:
        return bool(self.reasons)

    @property
    def identifier(self) -> str | None:
        return self.values.get("identifier")

    @property
    def email_key(self) -> str | None:
        email = self.values.get("email")
        return email.lower() if email else None

    @property
    def username_key(self) -> str | None:
        return self.values.get("username")

    def with_reasons(self, *reasons: str) -> BulkRow:
        return replace(self, reasons=self.reasons + tuple(reasons))


@dataclass(frozen=True)
class RowRejection:
    """One entry of the error report."""
    row_number: int
    reason: str
    raw_values: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_row(cls, row: BulkRow) -> RowRejection:
        return cls(row_number=row.row_number, reason="; ".join(row.reasons), raw_values=row.raw_values)

    def to_detail(self) -> dict[str, Any]:
        return {"rowNumber": self.row_number, "reason": self.reason}
