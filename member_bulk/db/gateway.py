from __future__ import annotations

import json
import logging
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from typing import Any, Protocol

from ..models.member import MemberHeader, MemberProfile, MemberRecord, NewMember
from .batch_insert import BatchInsertError, BatchMetrics, batch_insert, execute_batch

"""Persistence gateway for members and their profiles.

`MemberGateway` is the interface the reconciler and the single-record
service depend on; `PostgresGateway` implements it over one psycopg2 cursor
with explicit BEGIN / COMMIT / ROLLBACK statements (the connection runs in
autocommit mode, so every statement outside `transaction()` is its own
transaction).
"""

logger = logging.getLogger(__name__)

__all__ = [
    "GatewayError",
    "MemberGateway",
    "PostgresGateway",
]

USERS_TABLE = "users"
PROFILES_TABLE = "user_interests"

USER_COLUMNS = ("id", "name", "email", "username", "password_hash")
PROFILE_COLUMNS = (
    "user_id",
    "mobile",
    "credit_card_last4",
    "state",
    "city",
    "gender",
    "hobbies",
    "tech_interests",
    "address",
    "dob",
)
PROFILE_TEMPLATE = "(%s, %s, %s, %s, %s, %s, %s::jsonb, %s::jsonb, %s, %s)"
PROFILE_UPSERT = "ON CONFLICT (user_id) DO UPDATE SET " + ", ".join(
    f"{c} = EXCLUDED.{c}" for c in PROFILE_COLUMNS[1:]
)

_SELECT_JOINED = """
    SELECT u.id, u.name, u.email, u.username, u.created_at, u.updated_at,
           ui.user_id, ui.mobile, ui.credit_card_last4, ui.state, ui.city, ui.gender,
           ui.hobbies, ui.tech_interests, ui.address, ui.dob
    FROM users u
    LEFT JOIN user_interests ui ON u.id = ui.user_id
"""

_UPDATE_HEADERS = """
    UPDATE users AS u
    SET name = v.name, email = v.email, username = v.username, updated_at = now()
    FROM (VALUES %s) AS v(id, name, email, username)
    WHERE u.id = v.id
      AND (u.name, u.email, u.username) IS DISTINCT FROM (v.name, v.email, v.username)
"""


class GatewayError(Exception):
    """A persistence statement failed (constraint violation, connection loss, ...)."""


class MemberGateway(Protocol):
    def find_by_keys(self, emails: Iterable[str], usernames: Iterable[str]) -> list[MemberRecord]: ...
    def find_by_ids(self, member_ids: Iterable[str]) -> dict[str, MemberRecord]: ...
    def list_members(self) -> list[MemberRecord]: ...
    def get_member(self, member_id: str) -> MemberRecord | None: ...
    def transaction(self) -> Any: ...
    def insert_members(self, members: list[NewMember]) -> int: ...
    def upsert_profiles(self, profiles: list[MemberProfile]) -> int: ...
    def update_member_headers(self, headers: list[MemberHeader]) -> int: ...
    def delete_member(self, member_id: str) -> bool: ...


def _json_list(value: Any) -> tuple[str, ...]:
    if not value:
        return ()
    if isinstance(value, str):
        value = json.loads(value)
    return tuple(str(v) for v in value) if isinstance(value, list) else ()


def _record_from_row(row: tuple[Any, ...]) -> MemberRecord:
    (member_id, name, email, username, created_at, updated_at,
     profile_id, mobile, last4, state, city, gender, hobbies, tech, address, dob) = row
    profile = None
    if profile_id is not None:
        profile = MemberProfile(
            member_id=member_id,
            mobile=mobile,
            credit_card_last4=last4,
            state=state,
            city=city,
            gender=gender,
            hobbies=_json_list(hobbies),
            tech_interests=_json_list(tech),
            address=address,
            dob=dob,
        )
    return MemberRecord(
        member_id=member_id,
        name=name,
        email=email,
        username=username,
        created_at=created_at,
        updated_at=updated_at,
        profile=profile,
    )


def _profile_values(profile: MemberProfile) -> tuple[Any, ...]:
    return (
        profile.member_id,
        profile.mobile,
        profile.credit_card_last4,
        profile.state,
        profile.city,
        profile.gender,
        json.dumps(list(profile.hobbies)),
        json.dumps(list(profile.tech_interests)),
        profile.address,
        profile.dob,
    )


class PostgresGateway:
    def __init__(self, cursor: Any, page_size: int = 1000) -> None:
        self.cursor = cursor
        self.page_size = page_size

    def _timed(self, statement: str) -> Callable[[BatchMetrics], None]:
        def log_batch(metrics: BatchMetrics) -> None:
            logger.debug(
                "%s rows=%d elapsed=%.3fs", statement, metrics.batch_size, metrics.elapsed_seconds
            )
        return log_batch

    def _fetch(self, sql: str, params: tuple[Any, ...] = ()) -> list[tuple[Any, ...]]:
        try:
            self.cursor.execute(sql, params)
            return list(self.cursor.fetchall())
        except Exception as e:
            raise GatewayError(str(e)) from e

    # --- reads -----------------------------------------------------------

    def find_by_keys(self, emails: Iterable[str], usernames: Iterable[str]) -> list[MemberRecord]:
        """Members whose email (case-insensitive) or username (exact) is in the given sets."""
        email_list = sorted({e.lower() for e in emails})
        username_list = sorted(set(usernames))
        if not email_list and not username_list:
            return []
        rows = self._fetch(
            _SELECT_JOINED + " WHERE lower(u.email) = ANY(%s) OR u.username = ANY(%s)",
            (email_list, username_list),
        )
        return [_record_from_row(r) for r in rows]

    def find_by_ids(self, member_ids: Iterable[str]) -> dict[str, MemberRecord]:
        ids = sorted(set(member_ids))
        if not ids:
            return {}
        rows = self._fetch(_SELECT_JOINED + " WHERE u.id = ANY(%s)", (ids,))
        records = [_record_from_row(r) for r in rows]
        return {r.member_id: r for r in records}

    def list_members(self) -> list[MemberRecord]:
        rows = self._fetch(_SELECT_JOINED + " ORDER BY u.created_at DESC")
        return [_record_from_row(r) for r in rows]

    def get_member(self, member_id: str) -> MemberRecord | None:
        return self.find_by_ids([member_id]).get(member_id)

    # --- writes ----------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """All writes inside the block commit together or not at all."""
        try:
            self.cursor.execute("BEGIN")
        except Exception as e:
            raise GatewayError(f"failed to begin transaction: {e}") from e
        try:
            yield
            self.cursor.execute("COMMIT")
        except Exception as e:
            try:
                self.cursor.execute("ROLLBACK")
            except Exception as rollback_e:
                # 元の例外を優先して送出
                logger.error("rollback failed: %s", rollback_e)
            if isinstance(e, GatewayError):
                raise
            raise GatewayError(str(e)) from e

    def insert_members(self, members: list[NewMember]) -> int:
        if not members:
            return 0
        try:
            batch_insert(
                self.cursor,
                USERS_TABLE,
                USER_COLUMNS,
                [
                    (m.header.member_id, m.header.name, m.header.email, m.header.username, m.password_hash)
                    for m in members
                ],
                page_size=self.page_size,
                metrics_callback=self._timed("insert users"),
            )
            batch_insert(
                self.cursor,
                PROFILES_TABLE,
                PROFILE_COLUMNS,
                [_profile_values(m.profile) for m in members],
                page_size=self.page_size,
                template=PROFILE_TEMPLATE,
                metrics_callback=self._timed("insert profiles"),
            )
        except BatchInsertError as e:
            raise GatewayError(f"member insert failed: {e}") from e
        return len(members)

    def upsert_profiles(self, profiles: list[MemberProfile]) -> int:
        try:
            result = batch_insert(
                self.cursor,
                PROFILES_TABLE,
                PROFILE_COLUMNS,
                [_profile_values(p) for p in profiles],
                page_size=self.page_size,
                on_conflict=PROFILE_UPSERT,
                template=PROFILE_TEMPLATE,
                metrics_callback=self._timed("upsert profiles"),
            )
        except BatchInsertError as e:
            raise GatewayError(f"profile upsert failed: {e}") from e
        return result.inserted_rows

    def update_member_headers(self, headers: list[MemberHeader]) -> int:
        """One multi-row conditional UPDATE keyed by the identifier list."""
        try:
            result = execute_batch(
                self.cursor,
                _UPDATE_HEADERS,
                [(h.member_id, h.name, h.email, h.username) for h in headers],
                page_size=self.page_size,
                metrics_callback=self._timed("update users"),
            )
        except BatchInsertError as e:
            raise GatewayError(f"member update failed: {e}") from e
        return result.inserted_rows

    def delete_member(self, member_id: str) -> bool:
        # user_interests は ON DELETE CASCADE で削除される
        try:
            self.cursor.execute("DELETE FROM users WHERE id = %s", (member_id,))
        except Exception as e:
            raise GatewayError(str(e)) from e
        return bool(self.cursor.rowcount)
