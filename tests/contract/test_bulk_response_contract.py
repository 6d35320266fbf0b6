from __future__ import annotations

import base64
import io

from openpyxl import load_workbook

from conftest import add_row, build_workbook
from member_bulk.services.reconciler import run_bulk

"""Shape of the bulk endpoint body and of the error report it carries."""

RESPONSE_KEYS = {"errorCount", "errorDetails", "errorFileBase64", "addedCount", "updatedCount", "dryRun"}


def test_response_keys_and_detail_shape(gateway, catalog, bulk_config):
    data = build_workbook([add_row(Name=None), add_row(Email="b@x.com", Username="bee.user")])
    body = run_bulk(data, "users.xlsx", catalog, gateway, dry_run=True, bulk_config=bulk_config).to_response()
    assert set(body) == RESPONSE_KEYS
    assert body["errorCount"] == len(body["errorDetails"]) == 1
    detail = body["errorDetails"][0]
    assert set(detail) == {"rowNumber", "reason"}
    assert detail == {"rowNumber": 2, "reason": "Name is required"}


def test_error_report_header_and_order(gateway, catalog, bulk_config):
    data = build_workbook(
        [
            add_row(Email="bad", Username="user.one"),
            add_row(Email="b@x.com", Username="user.two"),
            add_row(Email="c@x.com", Username="x"),
        ]
    )
    body = run_bulk(data, "users.xlsx", catalog, gateway, dry_run=True, bulk_config=bulk_config).to_response()
    wb = load_workbook(io.BytesIO(base64.b64decode(body["errorFileBase64"])))
    ws = wb["Users"]
    header = [c.value for c in ws[1]]
    assert header[0] == "Identifier"
    assert header[-1] == "Error Reason"
    assert len(header) == 15
    reasons = [ws.cell(row=r, column=15).value for r in range(2, ws.max_row + 1)]
    assert reasons == [
        "Invalid email format",
        "Username must be 4-20 characters (letters, numbers, . _ - allowed)",
    ]
