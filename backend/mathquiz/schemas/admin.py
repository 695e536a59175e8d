from __future__ import annotations

from pydantic import BaseModel, Field

from mathquiz.models.user import UserRole
from mathquiz.schemas.user import User


class UserUpdateRequest(BaseModel):
    # Email and password are not editable here.
    name: str = Field(min_length=1)
    role: UserRole
    child_id: str | None = None


class UsersListResponse(BaseModel):
    items: list[User]
    total: int
