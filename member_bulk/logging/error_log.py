from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

from ..models.bulk_result import BulkResult
from ..models.error_record import ErrorRecord

"""JSON Lines rejection log.

- one fixed schema per line (see ErrorRecord)
- one file per CLI run: `logs/errors-YYYYMMDD-HHMMSS.log` (UTC)
- records are buffered and appended on flush(); nothing is created when
  the buffer never received a record
"""

__all__ = [
    "ErrorRecord",
    "ErrorLogBuffer",
    "ROW_REJECTED",
]

LOGS_DIR = Path("./logs")
TIMESTAMP_FMT = "%Y%m%d-%H%M%S"

ROW_REJECTED = "ROW_REJECTED"


class ErrorLogBuffer:
    """In-memory buffer for error records. Flush writes JSON Lines.

    シリアル実行前提 (スレッド安全性不要)
    """

    def __init__(self, logs_dir: Path | None = None) -> None:
        self._records: list[ErrorRecord] = []
        self._file_path: Path | None = None
        self._logs_dir = logs_dir or LOGS_DIR

    @property
    def file_path(self) -> Path:
        if self._file_path is None:
            self._logs_dir.mkdir(parents=True, exist_ok=True)
            stamp = datetime.now(UTC).strftime(TIMESTAMP_FMT)
            self._file_path = self._logs_dir / f"errors-{stamp}.log"
        return self._file_path

    def append(self, record: ErrorRecord) -> None:
        self._records.append(record)

    def append_result(self, result: BulkResult) -> None:
        """Buffer one ROW_REJECTED record per rejected row of a bulk run."""
        for r in result.rejections:
            self.append(ErrorRecord.create(result.file_name, r.row_number, ROW_REJECTED, r.reason))

    def __len__(self) -> int:  # pragma: no cover (trivial)
        return len(self._records)

    def flush(self) -> Path | None:
        """Append buffered records to the log file; None when nothing was buffered."""
        if not self._records:
            return self._file_path
        fp = self.file_path
        with fp.open("a", encoding="utf-8") as f:
            for r in self._records:
                f.write(r.to_json_line() + "\n")
        self._records.clear()
        return fp
