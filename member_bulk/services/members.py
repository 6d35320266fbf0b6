from __future__ import annotations

import logging
from typing import Any

from ..db.gateway import MemberGateway
from ..models.bulk_result import RowPartition
from ..models.bulk_row import BulkRow, RowMode
from ..models.config_models import BulkConfig
from ..models.lookup_catalog import LookupCatalog
from ..models.member import MemberRecord
from .credentials import hash_password
from .normalizer import format_dob, format_timestamp, mask_card, normalize_row
from .reconciler import MEMBER_NOT_FOUND, apply_write_plan, build_write_plan, flag_store_conflicts
from .validator import validate_row

"""Single-record member operations (list / get / create / update / delete).

These go through the same normalizer, validator and conflict checks as the
bulk pipeline; a single record is a one-row batch with row number 0.
"""

logger = logging.getLogger(__name__)

__all__ = [
    "MemberServiceError",
    "MemberNotFoundError",
    "MemberValidationError",
    "MemberConflictError",
    "serialize_member",
    "list_members",
    "get_member",
    "create_member",
    "update_member",
    "delete_member",
]


class MemberServiceError(Exception):
    pass


class MemberNotFoundError(MemberServiceError):
    def __init__(self, member_id: str) -> None:
        super().__init__(f"member not found: {member_id}")
        self.member_id = member_id


class MemberValidationError(MemberServiceError):
    def __init__(self, reasons: list[str]) -> None:
        super().__init__("; ".join(reasons))
        self.reasons = reasons


class MemberConflictError(MemberServiceError):
    def __init__(self, reasons: list[str]) -> None:
        super().__init__("; ".join(reasons))
        self.reasons = reasons


def serialize_member(record: MemberRecord) -> dict[str, Any]:
    """JSON view of a member; the card is only ever shown masked."""
    p = record.profile
    return {
        "id": record.member_id,
        "name": record.name,
        "email": record.email,
        "username": record.username,
        "mobile": p.mobile if p else None,
        "creditCard": mask_card(p.credit_card_last4) if p else None,
        "state": p.state if p else None,
        "city": p.city if p else None,
        "gender": p.gender if p else None,
        "hobbies": list(p.hobbies) if p else [],
        "techInterests": list(p.tech_interests) if p else [],
        "address": p.address if p else None,
        "dob": format_dob(p.dob) if p else None,
        "createdAt": format_timestamp(record.created_at),
        "updatedAt": format_timestamp(record.updated_at),
    }


def list_members(gateway: MemberGateway) -> list[dict[str, Any]]:
    return [serialize_member(m) for m in gateway.list_members()]


def get_member(gateway: MemberGateway, member_id: str) -> dict[str, Any]:
    record = gateway.get_member(member_id)
    if record is None:
        raise MemberNotFoundError(member_id)
    return serialize_member(record)


def _single_row(fields: dict[str, Any], mode: RowMode, catalog: LookupCatalog) -> BulkRow:
    normalized = normalize_row(fields)
    outcome = validate_row(normalized.values, mode, catalog, normalized.supplied)
    if not outcome.valid:
        raise MemberValidationError(outcome.reasons)
    return BulkRow(
        row_number=0,
        mode=mode,
        raw_values=dict(fields),
        values=outcome.values,
        supplied=normalized.supplied,
    )


def _save(
    row: BulkRow, gateway: MemberGateway, bulk_config: BulkConfig, new_id: str | None = None
) -> str:
    rows, current = flag_store_conflicts([row], gateway)
    checked = rows[0]
    if checked.rejected:
        if MEMBER_NOT_FOUND in checked.reasons:
            raise MemberNotFoundError(str(row.identifier))
        raise MemberConflictError(list(checked.reasons))

    kwargs: dict[str, Any] = {}
    if new_id is not None:
        kwargs["id_factory"] = lambda: new_id
    plan = build_write_plan(
        RowPartition(accepted=(checked,)),
        current,
        password_hasher=lambda pw: hash_password(pw, rounds=bulk_config.bcrypt_rounds),
        **kwargs,
    )
    apply_write_plan(plan, gateway)
    if plan.new_members:
        return plan.new_members[0].header.member_id
    return str(row.identifier)


def create_member(
    gateway: MemberGateway,
    catalog: LookupCatalog,
    fields: dict[str, Any],
    *,
    bulk_config: BulkConfig | None = None,
    new_id: str | None = None,
) -> dict[str, Any]:
    """Create one member from field-keyed values (every field required)."""
    data = {k: v for k, v in fields.items() if k != "identifier"}
    row = _single_row(data, RowMode.ADD, catalog)
    member_id = _save(row, gateway, bulk_config or BulkConfig(), new_id=new_id)
    logger.info("member created id=%s", member_id)
    return get_member(gateway, member_id)


def update_member(
    gateway: MemberGateway,
    catalog: LookupCatalog,
    member_id: str,
    fields: dict[str, Any],
    *,
    bulk_config: BulkConfig | None = None,
) -> dict[str, Any]:
    """Partial update; only supplied fields are checked and changed."""
    data = dict(fields)
    data["identifier"] = member_id
    row = _single_row(data, RowMode.EDIT, catalog)
    _save(row, gateway, bulk_config or BulkConfig())
    logger.info("member updated id=%s", member_id)
    return get_member(gateway, member_id)


def delete_member(gateway: MemberGateway, member_id: str) -> None:
    if not gateway.delete_member(member_id):
        raise MemberNotFoundError(member_id)
    logger.info("member deleted id=%s", member_id)
