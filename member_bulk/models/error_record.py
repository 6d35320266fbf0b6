from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import UTC, datetime

"""ErrorRecord model for the JSON Lines rejection log.

Row-level rejections and batch-level failures share one fixed schema. Use
row=-1 for file-level errors where no spreadsheet line applies.
"""

__all__ = [
    "ErrorRecord",
]


@dataclass(frozen=True)
class ErrorRecord:
    """Structured error record for JSON Lines logging.

    Attributes:
        timestamp: ISO8601 UTC timestamp with 'Z' suffix
        file: uploaded workbook name
        row: spreadsheet line (header = 1). -1 for file-level errors
        error_type: classification in UPPER_SNAKE_CASE (ROW_REJECTED, MISSING_COLUMNS, ...)
        reason: human readable reason(s)
    """
    timestamp: str
    file: str
    row: int
    error_type: str
    reason: str

    @staticmethod
    def create(file: str, row: int, error_type: str, reason: str) -> ErrorRecord:
        ts = datetime.now(UTC).isoformat().replace("+00:00", "Z")
        return ErrorRecord(timestamp=ts, file=file, row=row, error_type=error_type, reason=reason)

    def to_json_line(self) -> str:
        return json.dumps(asdict(self), ensure_ascii=False)
