from __future__ import annotations

import base64
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from .bulk_row import BulkRow, RowMode, RowRejection

"""Result models for the bulk reconciliation pipeline.

RowPartition is the pure outcome of reconciliation (no writes involved);
BulkResult is what callers (HTTP handler, CLI) receive after the dry-run or
commit branch.
"""


@dataclass(frozen=True)
class RowPartition:
    """Disjoint split of the uploaded rows, both sides in row order."""
    accepted: tuple[BulkRow, ...] = ()
    rejected: tuple[BulkRow, ...] = ()

    @property
    def accepted_adds(self) -> list[BulkRow]:
        return [r for r in self.accepted if r.mode is RowMode.ADD]

    @property
    def accepted_edits(self) -> list[BulkRow]:
        return [r for r in self.accepted if r.mode is RowMode.EDIT]

    @property
    def rejections(self) -> list[RowRejection]:
        return [RowRejection.from_row(r) for r in sorted(self.rejected, key=lambda r: r.row_number)]


@dataclass(frozen=True)
class CommitStats:
    """Counts produced by the write phase."""
    added: int = 0
    updated: int = 0  # members whose header or profile actually changed


@dataclass(frozen=True)
class BulkResult:
    """Aggregated outcome of one bulk upload."""
    file_name: str
    dry_run: bool
    total_rows: int  # non-blank data rows read
    rejections: list[RowRejection] = field(default_factory=list)
    error_file: bytes | None = None  # rendered error workbook (only when rejections exist)
    added: int = 0
    updated: int = 0
    start_time: datetime | None = None
    end_time: datetime | None = None
    elapsed_seconds: float = 0.0

    @property
    def error_count(self) -> int:
        return len(self.rejections)

    def to_response(self) -> dict[str, Any]:
        """Serialize to the bulk endpoint's JSON body."""
        encoded = None
        if self.error_count and self.error_file is not None:
            encoded = base64.b64encode(self.error_file).decode("ascii")
        return {
            "errorCount": self.error_count,
            "errorDetails": [r.to_detail() for r in self.rejections],
            "errorFileBase64": encoded,
            "addedCount": self.added,
            "updatedCount": self.updated,
            "dryRun": self.dry_run,
        }
