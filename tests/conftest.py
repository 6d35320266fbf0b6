# Shared pytest fixtures
from __future__ import annotations

import io
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import replace
from datetime import UTC, date, datetime
from pathlib import Path
from typing import Any

import pandas as pd
import pytest

from member_bulk.config.loader import load_lookup_catalog
from member_bulk.db.gateway import GatewayError
from member_bulk.excel.columns import COLUMN_LABELS
from member_bulk.models.config_models import BulkConfig
from member_bulk.models.lookup_catalog import LookupCatalog
from member_bulk.models.member import MemberHeader, MemberProfile, MemberRecord, NewMember

WRITE_METHODS = ("insert_members", "upsert_profiles", "update_member_headers")


class FakeGateway:
    """In-memory MemberGateway.

    Enforces the two uniqueness constraints of the real schema and restores
    the pre-transaction state when a write inside `transaction()` fails.
    Set `fail_on` to a write method name to force that call to fail.
    """

    def __init__(self, members: Iterable[MemberRecord] = ()) -> None:
        self.members: dict[str, MemberRecord] = {m.member_id: m for m in members}
        self.password_hashes: dict[str, str] = {}
        self.calls: list[str] = []
        self.fail_on: str | None = None

    @property
    def write_calls(self) -> list[str]:
        return [c for c in self.calls if c in WRITE_METHODS]

    def _write(self, name: str) -> None:
        self.calls.append(name)
        if self.fail_on == name:
            raise GatewayError(f"forced failure in {name}")

    def _check_unique(self, member_id: str, email: str, username: str) -> None:
        for other in self.members.values():
            if other.member_id == member_id:
                continue
            if other.email.lower() == email.lower():
                raise GatewayError(f"duplicate key value violates unique constraint: email {email}")
            if other.username == username:
                raise GatewayError(f"duplicate key value violates unique constraint: username {username}")

    # reads
    def find_by_keys(self, emails: Iterable[str], usernames: Iterable[str]) -> list[MemberRecord]:
        self.calls.append("find_by_keys")
        email_set = {e.lower() for e in emails}
        username_set = set(usernames)
        return [
            m for m in self.members.values()
            if m.email.lower() in email_set or m.username in username_set
        ]

    def find_by_ids(self, member_ids: Iterable[str]) -> dict[str, MemberRecord]:
        self.calls.append("find_by_ids")
        return {i: self.members[i] for i in member_ids if i in self.members}

    def list_members(self) -> list[MemberRecord]:
        self.calls.append("list_members")
        return sorted(self.members.values(), key=lambda m: m.created_at or datetime.min.replace(tzinfo=UTC), reverse=True)

    def get_member(self, member_id: str) -> MemberRecord | None:
        self.calls.append("get_member")
        return self.members.get(member_id)

    # writes
    @contextmanager
    def transaction(self) -> Iterator[None]:
        self.calls.append("transaction")
        members = dict(self.members)
        hashes = dict(self.password_hashes)
        try:
            yield
        except Exception as e:
            self.members = members
            self.password_hashes = hashes
            if isinstance(e, GatewayError):
                raise
            raise GatewayError(str(e)) from e

    def insert_members(self, members: list[NewMember]) -> int:
        self._write("insert_members")
        for m in members:
            self._check_unique(m.header.member_id, m.header.email, m.header.username)
            self.members[m.header.member_id] = MemberRecord(
                member_id=m.header.member_id,
                name=m.header.name,
                email=m.header.email,
                username=m.header.username,
                created_at=datetime.now(UTC),
                profile=m.profile,
            )
            self.password_hashes[m.header.member_id] = m.password_hash
        return len(members)

    def upsert_profiles(self, profiles: list[MemberProfile]) -> int:
        self._write("upsert_profiles")
        for p in profiles:
            self.members[p.member_id] = replace(self.members[p.member_id], profile=p)
        return len(profiles)

    def update_member_headers(self, headers: list[MemberHeader]) -> int:
        self._write("update_member_headers")
        for h in headers:
            self._check_unique(h.member_id, h.email, h.username)
            self.members[h.member_id] = replace(
                self.members[h.member_id],
                name=h.name,
                email=h.email,
                username=h.username,
                updated_at=datetime.now(UTC),
            )
        return len(headers)

    def delete_member(self, member_id: str) -> bool:
        self.calls.append("delete_member")
        self.password_hashes.pop(member_id, None)
        return self.members.pop(member_id, None) is not None


def make_member(
    member_id: str = "m-0001",
    name: str = "Ravi Kumar",
    email: str = "ravi@example.com",
    username: str = "ravi.kumar",
    **profile: Any,
) -> MemberRecord:
    defaults: dict[str, Any] = dict(
        mobile="9123456780",
        credit_card_last4="4242",
        state="Andhra Pradesh",
        city="Guntur",
        gender="Male",
        hobbies=("Sports",),
        tech_interests=("Java", "Node.js"),
        address="4 Beach Road",
        dob=date(1985, 2, 3),
    )
    defaults.update(profile)
    return MemberRecord(
        member_id=member_id,
        name=name,
        email=email,
        username=username,
        created_at=datetime(2024, 1, 1, tzinfo=UTC),
        profile=MemberProfile(member_id=member_id, **defaults),
    )


def add_row(**overrides: Any) -> dict[str, Any]:
    """A fully valid ADD row keyed by column label."""
    row: dict[str, Any] = {
        "Identifier": None,
        "Name": "Asha Rao",
        "Email": "asha@example.com",
        "Username": "asha.rao",
        "Mobile": "9876543210",
        "Credit Card": "4111111111111111",
        "State": "Telangana",
        "City": "Hyderabad",
        "Gender": "Female",
        "Hobbies": "Reading, Music",
        "Tech Interests": "React",
        "Address": "12 MG Road",
        "DOB": "1990-05-17",
        "Password": "Secret@123",
    }
    row.update(overrides)
    return row


def build_workbook(
    rows: list[dict[str, Any]],
    columns: Iterable[str] = COLUMN_LABELS,
    sheet_name: str = "Users",
) -> bytes:
    df = pd.DataFrame(rows, columns=list(columns))
    buffer = io.BytesIO()
    with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
        df.to_excel(writer, sheet_name=sheet_name, index=False)
    return buffer.getvalue()


@pytest.fixture()
def catalog() -> LookupCatalog:
    return load_lookup_catalog()


@pytest.fixture()
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture()
def bulk_config() -> BulkConfig:
    # bcrypt の最小コストでテストを高速化
    return BulkConfig(bcrypt_rounds=4)


@pytest.fixture()
def temp_workdir(tmp_path: Path, monkeypatch) -> Path:
    (tmp_path / "config").mkdir()
    (tmp_path / "data").mkdir()
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("MEMBER_BULK_CONFIG", raising=False)
    return tmp_path
