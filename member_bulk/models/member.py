from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, datetime

"""Persisted member models.

Member rows live in `users`; the 1:1 extended attributes live in
`user_interests` keyed by the same identifier. A member may exist without a
profile row until the profile is first populated.
"""

__all__ = [
    "MemberProfile",
    "MemberRecord",
    "MemberHeader",
    "NewMember",
]


@dataclass(frozen=True)
class MemberProfile:
    """One `user_interests` row. Only the last 4 card digits are ever held here."""
    member_id: str
    mobile: str | None = None
    credit_card_last4: str | None = None
    state: str | None = None
    city: str | None = None
    gender: str | None = None
    hobbies: tuple[str, ...] = ()
    tech_interests: tuple[str, ...] = ()
    address: str | None = None
    dob: date | None = None

    def merged(self, changes: dict[str, object]) -> MemberProfile:
        """Return a copy with the non-None entries of `changes` applied."""
        applicable = {k: v for k, v in changes.items() if v is not None}
        return replace(self, **applicable) if applicable else self


@dataclass(frozen=True)
class MemberHeader:
    """The `users` columns an EDIT row may change."""
    member_id: str
    name: str
    email: str
    username: str


@dataclass(frozen=True)
class MemberRecord:
    """A `users` row joined with its optional profile."""
    member_id: str
    name: str
    email: str
    username: str
    created_at: datetime | None = None
    updated_at: datetime | None = None
    profile: MemberProfile | None = None

    @property
    def header(self) -> MemberHeader:
        return MemberHeader(
            member_id=self.member_id, name=self.name, email=self.email, username=self.username
        )


@dataclass(frozen=True)
class NewMember:
    """A member about to be inserted (identifier and hash already generated)."""
    header: MemberHeader
    password_hash: str
    profile: MemberProfile
