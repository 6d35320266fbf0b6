from __future__ import annotations

import io
from collections.abc import Iterable, Sequence
from datetime import UTC, date, datetime
from typing import Any

import pandas as pd
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.datavalidation import DataValidation
from openpyxl.worksheet.worksheet import Worksheet

from ..models.bulk_row import RowRejection
from ..models.lookup_catalog import LookupCatalog
from ..models.member import MemberRecord
from ..services.normalizer import format_dob, is_blank, mask_card, sanitize_value
from .columns import COLUMN_LABELS, LABEL_BY_FIELD, REASON_COLUMN

"""Workbook rendering: error reports and download templates.

Both artifacts put the canonical header on line 1 of the data sheet so that
they can be fed straight back into the reader.
"""

__all__ = [
    "render_error_workbook",
    "render_template",
    "template_filename",
    "member_to_cells",
]

INSTRUCTIONS_SHEET = "Instructions"
LOOKUPS_SHEET = "Lookups"
VALIDATION_ROWS = 1000  # プルダウンを適用する行数

_HEADER_FONT = Font(bold=True)
PASSWORD_LABEL = LABEL_BY_FIELD["password"]


def _cell_text(value: Any) -> str | None:
    """Render one raw cell the way it is written back to a sheet."""
    if is_blank(value):
        return None
    if isinstance(value, datetime):
        return value.strftime("%Y-%m-%d")
    if isinstance(value, date):
        return format_dob(value)
    if isinstance(value, (list, tuple)):
        return ", ".join(str(v) for v in value)
    return sanitize_value(value)


def _style_header(ws: Worksheet, width: int = 18) -> None:
    for cell in ws[1]:
        cell.font = _HEADER_FONT
    for idx in range(1, ws.max_column + 1):
        ws.column_dimensions[get_column_letter(idx)].width = width
    ws.freeze_panes = "A2"


def _to_bytes(frames: Sequence[tuple[str, pd.DataFrame]], decorate=None) -> bytes:
    buffer = io.BytesIO()
    with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
        for sheet_name, df in frames:
            df.to_excel(writer, sheet_name=sheet_name, index=False)
        if decorate is not None:
            decorate(writer.sheets)
    return buffer.getvalue()


def render_error_workbook(rejections: Iterable[RowRejection], sheet_name: str = "Users") -> bytes:
    """Rejected rows with their original cells plus a trailing reason column.

    The Password cell is left blank; passwords never leave the upload.

    Rows are written in display row order so that line N of the report is
    easy to match with the rejection list.
    """
    ordered = sorted(rejections, key=lambda r: r.row_number)
    records = [
        [None if label == PASSWORD_LABEL else _cell_text(r.raw_values.get(label))
         for label in COLUMN_LABELS] + [r.reason]
        for r in ordered
    ]
    df = pd.DataFrame(records, columns=[*COLUMN_LABELS, REASON_COLUMN])

    def decorate(sheets: dict[str, Worksheet]) -> None:
        ws = sheets[sheet_name]
        _style_header(ws)
        ws.column_dimensions[get_column_letter(len(COLUMN_LABELS) + 1)].width = 60

    return _to_bytes([(sheet_name, df)], decorate)


def member_to_cells(member: MemberRecord) -> list[str | None]:
    """One member as a template data row; the card is exported masked."""
    profile = member.profile
    values: dict[str, Any] = {
        "identifier": member.member_id,
        "name": member.name,
        "email": member.email,
        "username": member.username,
        "password": None,
    }
    if profile is not None:
        values.update(
            mobile=profile.mobile,
            credit_card=mask_card(profile.credit_card_last4),
            state=profile.state,
            city=profile.city,
            gender=profile.gender,
            hobbies=", ".join(profile.hobbies) or None,
            tech_interests=", ".join(profile.tech_interests) or None,
            address=profile.address,
            dob=format_dob(profile.dob),
        )
    by_label = {LABEL_BY_FIELD[k]: v for k, v in values.items()}
    return [by_label.get(label) for label in COLUMN_LABELS]


def _lookup_frames(catalog: LookupCatalog) -> tuple[pd.DataFrame, pd.DataFrame]:
    lists = {
        "Gender": list(catalog.genders),
        "Hobbies": list(catalog.hobbies),
        "Tech Interests": list(catalog.tech_interests),
        "State": list(catalog.states),
        "City": list(catalog.cities),
    }
    longest = max(len(v) for v in lists.values())
    padded = {k: v + [None] * (longest - len(v)) for k, v in lists.items()}
    vocab = pd.DataFrame(padded)
    mapping = pd.DataFrame(
        [(state, city) for state, cities in catalog.cities_by_state.items() for city in cities],
        columns=["Mapping State", "Mapping City"],
    )
    return vocab, mapping


def _city_formula(catalog: LookupCatalog, state_col: str, mapping_col: int) -> str:
    """City list for the State chosen on the same row, read from the mapping table.

    A blank State falls back to every known city.
    """
    state_ref = get_column_letter(mapping_col)
    city_ref = get_column_letter(mapping_col + 1)
    last = sum(len(c) for c in catalog.cities_by_state.values()) + 1
    states = f"{LOOKUPS_SHEET}!${state_ref}$2:${state_ref}${last}"
    return (
        f'=IF(${state_col}2="",{LOOKUPS_SHEET}!$E$2:$E${len(catalog.cities) + 1},'
        f"OFFSET({LOOKUPS_SHEET}!${city_ref}$1,MATCH(${state_col}2,{states},0),0,"
        f"COUNTIF({states},${state_col}2),1))"
    )


def _add_dropdowns(data_ws: Worksheet, catalog: LookupCatalog, mapping_col: int) -> None:
    """List validations on the data sheet backed by ranges of the Lookups sheet."""
    state_col = get_column_letter(COLUMN_LABELS.index("State") + 1)
    formulas = {
        "Gender": f"={LOOKUPS_SHEET}!$A$2:$A${len(catalog.genders) + 1}",
        "State": f"={LOOKUPS_SHEET}!$D$2:$D${len(catalog.states) + 1}",
        "City": _city_formula(catalog, state_col, mapping_col),
    }
    for label, formula in formulas.items():
        target_col = get_column_letter(COLUMN_LABELS.index(label) + 1)
        dv = DataValidation(
            type="list",
            formula1=formula,
            allow_blank=True,
            showErrorMessage=True,
            errorTitle=f"Invalid {label}",
            error=f"Pick a {label} from the list",
        )
        data_ws.add_data_validation(dv)
        dv.add(f"{target_col}2:{target_col}{VALIDATION_ROWS + 1}")


def template_filename(mode: str, today: date | None = None) -> str:
    today = today or datetime.now(UTC).date()
    suffix = "with_data" if mode == "data" else "blank"
    return f"users_template_{suffix}_{today.isoformat()}.xlsx"


def render_template(
    catalog: LookupCatalog,
    members: Iterable[MemberRecord] = (),
    *,
    mode: str = "blank",
    downloaded_by: str = "",
    generated_at: datetime | None = None,
    sheet_name: str = "Users",
) -> bytes:
    """Cover sheet + data-entry sheet + lookup reference sheet.

    mode="data" pre-populates the data sheet with existing members including
    their identifiers, so a re-upload of the same file is all EDIT rows.
    """
    generated_at = generated_at or datetime.now(UTC)
    rows = [member_to_cells(m) for m in members] if mode == "data" else []
    data_df = pd.DataFrame(rows, columns=list(COLUMN_LABELS))

    instructions = pd.DataFrame(
        [
            ("Downloaded by", downloaded_by or "-"),
            ("Generated at", generated_at.strftime("%Y-%m-%d %H:%M:%S UTC")),
            ("Mode", "with data" if mode == "data" else "blank"),
            ("Identifier", "Leave blank to add a new member. Keep it to edit an existing member."),
            ("Password", "Required for new members. Ignored for existing members."),
            ("Credit Card", "16 digits. Only the last 4 digits are stored."),
            ("DOB", "YYYY-MM-DD"),
            ("Hobbies / Tech Interests", "Comma separated values from the Lookups sheet."),
            ("City", "Must belong to the selected State (see the mapping on the Lookups sheet)."),
        ],
        columns=["Item", "Details"],
    )
    vocab, mapping = _lookup_frames(catalog)

    def decorate(sheets: dict[str, Worksheet]) -> None:
        _style_header(sheets[INSTRUCTIONS_SHEET], width=30)
        sheets[INSTRUCTIONS_SHEET].column_dimensions["B"].width = 80
        _style_header(sheets[sheet_name])
        lookups_ws = sheets[LOOKUPS_SHEET]
        # 州→市の対応表は語彙リストの右側 (G列以降) に配置
        start_col = vocab.shape[1] + 2
        for offset, title in enumerate(mapping.columns):
            lookups_ws.cell(row=1, column=start_col + offset, value=title)
        for r_idx, (state, city) in enumerate(mapping.itertuples(index=False), start=2):
            lookups_ws.cell(row=r_idx, column=start_col, value=state)
            lookups_ws.cell(row=r_idx, column=start_col + 1, value=city)
        _style_header(lookups_ws)
        _add_dropdowns(sheets[sheet_name], catalog, start_col)

    return _to_bytes(
        [(INSTRUCTIONS_SHEET, instructions), (sheet_name, data_df), (LOOKUPS_SHEET, vocab)],
        decorate,
    )
