from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

"""Request / response bodies of the `/api/users` endpoints (camelCase on the wire)."""


class RowErrorDetail(BaseModel):
    rowNumber: int
    reason: str


class BulkResponse(BaseModel):
    errorCount: int
    errorDetails: list[RowErrorDetail]
    errorFileBase64: str | None = None
    addedCount: int = 0
    updatedCount: int = 0
    dryRun: bool = False


class LookupsResponse(BaseModel):
    genders: list[str]
    hobbies: list[str]
    techInterests: list[str]
    states: list[str]
    cities: list[str]
    citiesByState: dict[str, list[str]]
    roles: list[str]
    departments: list[str]
    statuses: list[str]


class MemberPayload(BaseModel):
    """Body of POST / PUT. Omitted fields are left untouched on update."""

    model_config = ConfigDict(populate_by_name=True)

    name: str | None = None
    email: str | None = None
    username: str | None = None
    mobile: str | None = None
    credit_card: str | None = Field(default=None, alias="creditCard")
    state: str | None = None
    city: str | None = None
    gender: str | None = None
    hobbies: list[str] | None = None
    tech_interests: list[str] | None = Field(default=None, alias="techInterests")
    address: str | None = None
    dob: str | None = None
    password: str | None = None

    def to_fields(self) -> dict[str, Any]:
        """Field-keyed values as the normalizer expects them."""
        return self.model_dump(exclude_none=True)


class MemberResponse(BaseModel):
    id: str
    name: str
    email: str
    username: str
    mobile: str | None = None
    creditCard: str | None = None  # masked
    state: str | None = None
    city: str | None = None
    gender: str | None = None
    hobbies: list[str] = Field(default_factory=list)
    techInterests: list[str] = Field(default_factory=list)
    address: str | None = None
    dob: str | None = None
    createdAt: str | None = None
    updatedAt: str | None = None
