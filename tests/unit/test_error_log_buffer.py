from __future__ import annotations

import json
import re
from pathlib import Path

from member_bulk.logging.error_log import ROW_REJECTED, ErrorLogBuffer
from member_bulk.models.bulk_result import BulkResult
from member_bulk.models.bulk_row import RowRejection
from member_bulk.models.error_record import ErrorRecord

KEYS = {"timestamp", "file", "row", "error_type", "reason"}


def test_error_record_json_line_has_fixed_keys():
    rec = ErrorRecord.create("users.xlsx", 3, ROW_REJECTED, "Duplicate email within file")
    data = json.loads(rec.to_json_line())
    assert set(data) == KEYS
    assert data["timestamp"].endswith("Z")
    assert data["row"] == 3


def test_flush_writes_json_lines(tmp_path: Path):
    buf = ErrorLogBuffer(logs_dir=tmp_path / "logs")
    buf.append(ErrorRecord.create("users.xlsx", -1, "MISSING_COLUMNS", "missing columns: ['DOB']"))
    result = BulkResult(
        file_name="users.xlsx",
        dry_run=True,
        total_rows=3,
        rejections=[
            RowRejection(2, "Invalid email format"),
            RowRejection(3, "Name is required; DOB is required"),
        ],
    )
    buf.append_result(result)
    path = buf.flush()
    assert path is not None
    assert re.fullmatch(r"errors-\d{8}-\d{6}\.log", path.name)
    lines = [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]
    assert [line["row"] for line in lines] == [-1, 2, 3]
    assert lines[1]["error_type"] == ROW_REJECTED
    assert all(set(line) == KEYS for line in lines)
    assert len(buf) == 0


def test_flush_without_records_creates_nothing(tmp_path: Path):
    logs = tmp_path / "logs"
    buf = ErrorLogBuffer(logs_dir=logs)
    assert buf.flush() is None
    assert not logs.exists()
