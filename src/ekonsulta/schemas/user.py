"""Pydantic schemas for identities and auth requests.

Learn: Separate schemas for create/update/read keeps the API clean.
- UserCreate: what register and POST /users accept (validated here)
- UserUpdate: what PUT /users/:id accepts (all optional)
- UserRead: what the API returns: never includes password_hash
- LoginRequest: email or username plus password; presence is checked by
  the handler so a missing field gives the login-specific 400
"""

import re
import uuid
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from ekonsulta.auth.password import MAX_PASSWORD_BYTES, password_too_long
from ekonsulta.db.models import Role

# Accepts the same addresses as the usual mongoose email pattern, without nested
# quantifiers so a hostile address cannot trigger catastrophic backtracking.
EMAIL_PATTERN = re.compile(r"^\w+(?:[.-]\w+)*@\w+(?:[.-]\w+)*\.\w{2,3}$", re.ASCII)
EMAIL_MAX_LENGTH = 254


def _strip(value: Any) -> Any:
    return value.strip() if isinstance(value, str) else value


def _check_password(value: Optional[str]) -> Optional[str]:
    if value is not None and password_too_long(value):
        raise ValueError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes")
    return value


def _check_email(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    if len(value) > EMAIL_MAX_LENGTH or not EMAIL_PATTERN.match(value):
        raise ValueError("Please add a valid email")
    return value


# ─── Identity ────────────────────────────────────────────


class UserCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    username: str = Field(..., min_length=1, max_length=30)
    email: str
    password: str = Field(..., min_length=6, max_length=MAX_PASSWORD_BYTES)
    role: Role = Role.CLIENT
    phone: Optional[str] = Field(None, max_length=20)
    address: Optional[str] = Field(None, max_length=200)

    @field_validator("name", "username", mode="before")
    @classmethod
    def strip_names(cls, value: Any) -> Any:
        return _strip(value)

    @field_validator("email", mode="before")
    @classmethod
    def strip_email(cls, value: Any) -> Any:
        return _strip(value)

    @field_validator("email")
    @classmethod
    def valid_email(cls, value: Optional[str]) -> Optional[str]:
        return _check_email(value)

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: Optional[str]) -> Optional[str]:
        return _check_password(value)

    @field_validator("role", mode="before")
    @classmethod
    def default_role(cls, value: Any) -> Any:
        # An explicit null means "use the default", as an absent field does.
        return Role.CLIENT if value is None else value


class UserUpdate(BaseModel):
    """Partial update: only fields that are sent and non-null are applied."""
    name: Optional[str] = Field(None, min_length=1, max_length=50)
    username: Optional[str] = Field(None, min_length=1, max_length=30)
    email: Optional[str] = None
    password: Optional[str] = Field(None, min_length=6, max_length=MAX_PASSWORD_BYTES)
    role: Optional[Role] = None
    phone: Optional[str] = Field(None, max_length=20)
    address: Optional[str] = Field(None, max_length=200)

    @field_validator("name", "username", mode="before")
    @classmethod
    def strip_names(cls, value: Any) -> Any:
        return _strip(value)

    @field_validator("email", mode="before")
    @classmethod
    def strip_email(cls, value: Any) -> Any:
        return _strip(value)

    @field_validator("email")
    @classmethod
    def valid_email(cls, value: Optional[str]) -> Optional[str]:
        return _check_email(value)

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: Optional[str]) -> Optional[str]:
        return _check_password(value)

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True, exclude_none=True)


class UserRead(BaseModel):
    id: uuid.UUID
    name: str
    username: str
    email: str
    role: Role
    phone: Optional[str] = None
    address: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}


# ─── Auth ────────────────────────────────────────────────


class LoginRequest(BaseModel):
    email: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None


class TokenResponse(BaseModel):
    success: bool = True
    token: str


# ─── Envelopes ───────────────────────────────────────────


class UserEnvelope(BaseModel):
    success: bool = True
    data: UserRead


class EmptyEnvelope(BaseModel):
    success: bool = True
    data: dict = Field(default_factory=dict)


class PageLink(BaseModel):
    page: int
    limit: int


class UserListResponse(BaseModel):
    success: bool = True
    count: int
    pagination: dict[str, PageLink]
    total_pages: int = Field(alias="totalPages")
    current_page: int = Field(alias="currentPage")
    data: list[dict[str, Any]]

    model_config = {"populate_by_name": True}
