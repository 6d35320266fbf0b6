from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from ..db.gateway import GatewayError, MemberGateway
from ..errors import BulkCommitError, NoFileError, UploadTooLargeError
from ..excel.columns import FIELD_BY_LABEL
from ..excel.reader import RawRow, load_rows
from ..excel.writer import render_error_workbook
from ..models.bulk_result import BulkResult, CommitStats, RowPartition
from ..models.bulk_row import BulkRow, RowMode
from ..models.config_models import BulkConfig
from ..models.lookup_catalog import LookupCatalog
from ..models.member import MemberHeader, MemberProfile, MemberRecord, NewMember
from .credentials import hash_password
from .normalizer import extract_card_last4, normalize_row
from .validator import EDIT_CARD_RULE, validate_row

"""Bulk reconciliation of an uploaded Users sheet against the member store.

Pipeline:
1. read the workbook and resolve the header (batch-level failure on problems)
2. normalize + validate every row (row-level reasons)
3. flag duplicate email / username keys within the file (mode-scoped, first wins)
4. flag conflicts with stored members (two read queries)
5. dry run: report only / commit: one transaction of bulk writes

Steps 2-4 are a pure function of (rows, catalog, store snapshot) producing a
RowPartition, so a dry run and a commit over the same input and store state
reject exactly the same rows.
"""

logger = logging.getLogger(__name__)

__all__ = [
    "WritePlan",
    "build_rows",
    "flag_file_duplicates",
    "flag_store_conflicts",
    "reconcile",
    "build_write_plan",
    "apply_write_plan",
    "run_bulk",
]

DUPLICATE_EMAIL = "Duplicate email within file"
DUPLICATE_USERNAME = "Duplicate username within file"
DUPLICATE_IDENTIFIER = "Duplicate identifier within file"
EMAIL_EXISTS = "Email already exists"
USERNAME_EXISTS = "Username already exists"
MEMBER_NOT_FOUND = "Member not found"
EMAIL_TAKEN = "Email belongs to another member"
USERNAME_TAKEN = "Username belongs to another member"


@dataclass(frozen=True)
class WritePlan:
    """Everything the commit branch will write, computed before the transaction."""
    new_members: list[NewMember] = field(default_factory=list)
    profiles: list[MemberProfile] = field(default_factory=list)  # EDIT upserts (changed only)
    headers: list[MemberHeader] = field(default_factory=list)  # EDIT header updates (changed only)

    @property
    def updated_member_ids(self) -> set[str]:
        return {p.member_id for p in self.profiles} | {h.member_id for h in self.headers}

    @property
    def empty(self) -> bool:
        return not (self.new_members or self.profiles or self.headers)


def build_rows(raw_rows: Iterable[RawRow], catalog: LookupCatalog) -> list[BulkRow]:
    """Normalize and validate each raw row; mode comes from the Identifier cell."""
    rows: list[BulkRow] = []
    for raw in raw_rows:
        cells = {FIELD_BY_LABEL[label]: cell for label, cell in raw.cells.items()}
        normalized = normalize_row(cells)
        mode = RowMode.EDIT if normalized.values.get("identifier") else RowMode.ADD
        outcome = validate_row(normalized.values, mode, catalog, normalized.supplied)
        rows.append(
            BulkRow(
                row_number=raw.row_number,
                mode=mode,
                raw_values=dict(raw.cells),
                values=outcome.values,
                supplied=normalized.supplied,
                reasons=tuple(outcome.reasons),
            )
        )
    return rows


def flag_file_duplicates(rows: Iterable[BulkRow]) -> list[BulkRow]:
    """Reject later repeats of an email (case-insensitive), username (exact) or identifier.

    Keys are scoped by mode, so an ADD row and an EDIT row never collide here.
    An EDIT identifier may appear only once per file.
    Only rows that are still clean register their keys; a row that already
    failed validation still gets the duplicate reason appended.
    """
    seen_emails: set[tuple[RowMode, str]] = set()
    seen_usernames: set[tuple[RowMode, str]] = set()
    seen_ids: set[str] = set()
    out: list[BulkRow] = []
    for row in rows:
        email_key = (row.mode, row.email_key) if row.email_key else None
        username_key = (row.mode, row.username_key) if row.username_key else None
        member_id = str(row.identifier) if row.mode is RowMode.EDIT and row.identifier else None
        extra: list[str] = []
        if email_key is not None and email_key in seen_emails:
            extra.append(DUPLICATE_EMAIL)
        if username_key is not None and username_key in seen_usernames:
            extra.append(DUPLICATE_USERNAME)
        if member_id is not None and member_id in seen_ids:
            extra.append(DUPLICATE_IDENTIFIER)
        if extra:
            row = row.with_reasons(*extra)
        if not row.rejected:
            if email_key is not None:
                seen_emails.add(email_key)
            if username_key is not None:
                seen_usernames.add(username_key)
            if member_id is not None:
                seen_ids.add(member_id)
        out.append(row)
    return out


def _card_not_on_file(row: BulkRow, stored: MemberRecord) -> bool:
    """A 4-digit card cell on an EDIT row must repeat the stored last 4 digits."""
    card = row.values.get("credit_card")
    if card is None or len(card) != 4:
        return False
    on_file = stored.profile.credit_card_last4 if stored.profile else None
    return card != on_file


def flag_store_conflicts(
    rows: list[BulkRow], gateway: MemberGateway
) -> tuple[list[BulkRow], dict[str, MemberRecord]]:
    """Check surviving rows against stored members.

    Returns the updated rows and the stored snapshot of every referenced EDIT
    identifier (used later to compute what actually changed).
    """
    survivors = [r for r in rows if not r.rejected]
    emails = {r.email_key for r in survivors if r.email_key}
    usernames = {r.username_key for r in survivors if r.username_key}
    member_ids = {r.identifier for r in survivors if r.mode is RowMode.EDIT and r.identifier}

    existing = gateway.find_by_keys(emails, usernames) if (emails or usernames) else []
    current = gateway.find_by_ids(member_ids) if member_ids else {}
    owner_by_email = {m.email.lower(): m.member_id for m in existing}
    owner_by_username = {m.username: m.member_id for m in existing}

    out: list[BulkRow] = []
    for row in rows:
        if row.rejected:
            out.append(row)
            continue
        email_owner = owner_by_email.get(row.email_key) if row.email_key else None
        username_owner = owner_by_username.get(row.username_key) if row.username_key else None
        extra: list[str] = []
        if row.mode is RowMode.ADD:
            if email_owner is not None:
                extra.append(EMAIL_EXISTS)
            if username_owner is not None:
                extra.append(USERNAME_EXISTS)
        else:
            stored = current.get(row.identifier)
            if stored is None:
                extra.append(MEMBER_NOT_FOUND)
            elif _card_not_on_file(row, stored):
                extra.append(EDIT_CARD_RULE)
            if email_owner is not None and email_owner != row.identifier:
                extra.append(EMAIL_TAKEN)
            if username_owner is not None and username_owner != row.identifier:
                extra.append(USERNAME_TAKEN)
        out.append(row.with_reasons(*extra) if extra else row)
    return out, current


def reconcile(
    raw_rows: Iterable[RawRow], catalog: LookupCatalog, gateway: MemberGateway
) -> tuple[RowPartition, dict[str, MemberRecord]]:
    """Partition rows into accepted / rejected. Reads from the store, never writes."""
    rows = build_rows(raw_rows, catalog)
    rows = flag_file_duplicates(rows)
    rows, current = flag_store_conflicts(rows, gateway)
    partition = RowPartition(
        accepted=tuple(r for r in rows if not r.rejected),
        rejected=tuple(r for r in rows if r.rejected),
    )
    return partition, current


def _profile_changes(values: dict[str, Any]) -> dict[str, Any]:
    """Profile fields carried by a row; absent fields map to None (keep stored value)."""
    return {
        "mobile": values.get("mobile"),
        "credit_card_last4": extract_card_last4(values.get("credit_card")),
        "state": values.get("state"),
        "city": values.get("city"),
        "gender": values.get("gender"),
        "hobbies": tuple(values["hobbies"]) if values.get("hobbies") else None,
        "tech_interests": tuple(values["tech_interests"]) if values.get("tech_interests") else None,
        "address": values.get("address"),
        "dob": values.get("dob"),
    }


def build_write_plan(
    partition: RowPartition,
    current: dict[str, MemberRecord],
    *,
    password_hasher: Callable[[str], str] = hash_password,
    id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
) -> WritePlan:
    """Turn accepted rows into insert / upsert / update batches.

    EDIT rows only produce writes for members whose stored values actually
    differ; a password supplied on an EDIT row is never written.
    """
    new_members: list[NewMember] = []
    for row in partition.accepted_adds:
        member_id = id_factory()
        v = row.values
        new_members.append(
            NewMember(
                header=MemberHeader(member_id=member_id, name=v["name"], email=v["email"], username=v["username"]),
                password_hash=password_hasher(v["password"]),
                profile=MemberProfile(member_id=member_id).merged(_profile_changes(v)),
            )
        )

    profiles: list[MemberProfile] = []
    headers: list[MemberHeader] = []
    for row in partition.accepted_edits:
        stored = current[row.identifier]
        v = row.values
        header = MemberHeader(
            member_id=stored.member_id,
            name=v.get("name") or stored.name,
            email=v.get("email") or stored.email,
            username=v.get("username") or stored.username,
        )
        if header != stored.header:
            headers.append(header)
        base = stored.profile or MemberProfile(member_id=stored.member_id)
        merged = base.merged(_profile_changes(v))
        if merged != base:
            profiles.append(merged)

    return WritePlan(new_members=new_members, profiles=profiles, headers=headers)


def apply_write_plan(plan: WritePlan, gateway: MemberGateway) -> CommitStats:
    """Apply all writes in one transaction; any failure rolls everything back."""
    if plan.empty:
        return CommitStats()
    with gateway.transaction():
        added = gateway.insert_members(plan.new_members) if plan.new_members else 0
        if plan.profiles:
            gateway.upsert_profiles(plan.profiles)
        if plan.headers:
            gateway.update_member_headers(plan.headers)
    return CommitStats(added=added, updated=len(plan.updated_member_ids))


def run_bulk(
    data: bytes | None,
    file_name: str,
    catalog: LookupCatalog,
    gateway: MemberGateway,
    *,
    dry_run: bool = False,
    bulk_config: BulkConfig | None = None,
) -> BulkResult:
    """Run the whole pipeline for one uploaded workbook.

    Raises:
        BulkInputError: no file, oversized upload, unreadable workbook, empty
            sheet or missing columns (nothing is read from or written to the store)
        BulkCommitError: the write transaction failed and was rolled back; the
            row-level report is attached to the exception
    """
    cfg = bulk_config or BulkConfig()
    start_time = datetime.now(UTC)
    if not data:
        raise NoFileError("no file provided")
    if len(data) > cfg.max_upload_bytes:
        raise UploadTooLargeError(len(data), cfg.max_upload_bytes)

    sheet = load_rows(data, sheet_name=cfg.data_sheet_name)
    partition, current = reconcile(sheet.rows, catalog, gateway)
    rejections = partition.rejections
    error_file = render_error_workbook(rejections, sheet_name=cfg.data_sheet_name) if rejections else None
    for r in rejections:
        logger.debug("file=%s row=%d rejected: %s", file_name, r.row_number, r.reason)

    def _result(stats: CommitStats) -> BulkResult:
        end_time = datetime.now(UTC)
        return BulkResult(
            file_name=file_name,
            dry_run=dry_run,
            total_rows=len(sheet.rows),
            rejections=rejections,
            error_file=error_file,
            added=stats.added,
            updated=stats.updated,
            start_time=start_time,
            end_time=end_time,
            elapsed_seconds=(end_time - start_time).total_seconds(),
        )

    if dry_run:
        result = _result(CommitStats())
        logger.info(
            "dry run file=%s rows=%d accepted=%d rejected=%d",
            file_name, result.total_rows, len(partition.accepted), result.error_count,
        )
        return result

    plan = build_write_plan(
        partition,
        current,
        password_hasher=lambda pw: hash_password(pw, rounds=cfg.bcrypt_rounds),
    )
    try:
        stats = apply_write_plan(plan, gateway)
    except GatewayError as e:
        logger.error("commit failed file=%s: %s", file_name, e)
        raise BulkCommitError(f"bulk commit failed, no changes were applied: {e}", _result(CommitStats())) from e

    result = _result(stats)
    logger.info(
        "commit file=%s rows=%d added=%d updated=%d rejected=%d",
        file_name, result.total_rows, result.added, result.updated, result.error_count,
    )
    return result
