from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from mathquiz.models.user import UserRole


def _child_only_for_parents(data: Any) -> Any:
    # Only parents link to a student; any other role carries no child.
    if isinstance(data, dict):
        role = data.get("role")
        if role is not None and str(getattr(role, "value", role)) != UserRole.parent.value:
            return {**data, "child_id": None}
    return data


class User(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    email: str | None = None
    role: UserRole
    child_id: str | None = None

    @model_validator(mode="before")
    @classmethod
    def normalize_child(cls, data: Any) -> Any:
        return _child_only_for_parents(data)

    @field_validator("child_id", mode="before")
    @classmethod
    def blank_child_is_none(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None

    @classmethod
    def from_profile(cls, row: dict, *, email: str | None = None) -> "User":
        return cls(
            id=str(row["id"]),
            name=str(row.get("name") or ""),
            email=email if email is not None else row.get("email"),
            role=row.get("role"),
            child_id=row.get("child_id"),
        )


class UserData(BaseModel):
    """Payload for creating an account (self sign-up or admin add)."""

    name: str = Field(min_length=1)
    email: str = Field(min_length=3)
    password: str
    role: UserRole = UserRole.student
    child_id: str | None = None

    @model_validator(mode="before")
    @classmethod
    def normalize_child(cls, data: Any) -> Any:
        return _child_only_for_parents(data)

    @field_validator("email")
    @classmethod
    def email_trimmed(cls, v: str) -> str:
        v = v.strip()
        if "@" not in v:
            raise ValueError("invalid email")
        return v

    @field_validator("child_id", mode="before")
    @classmethod
    def blank_child_is_none(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None
