import re
from datetime import datetime
from typing import Annotated, Any, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator

from storefront_auth.core.models.user import AuthProvider, Role

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _check_email(value: str) -> str:
    value = value.strip().lower()
    if not EMAIL_RE.match(value):
        raise ValueError("Invalid email address")
    return value


Email = Annotated[str, AfterValidator(_check_email)]


class RegisterIn(BaseModel):
    name: str = Field(min_length=2, max_length=120)
    email: Email
    password: str = Field(min_length=8, max_length=128)

    @field_validator("name")
    @classmethod
    def strip_name(cls, value: str) -> str:
        value = value.strip()
        if len(value) < 2:
            raise ValueError("Name must be at least 2 characters")
        return value


class LoginIn(BaseModel):
    email: Email
    password: str = Field(min_length=1, max_length=128)


class GoogleLoginIn(BaseModel):
    token: str = Field(min_length=1)


class ResetPasswordIn(BaseModel):
    email: Email
    new_password: str = Field(min_length=8, max_length=128, alias="newPassword")

    model_config = ConfigDict(populate_by_name=True)


class UpdateProfileIn(BaseModel):
    name: Optional[str] = Field(default=None, min_length=2, max_length=120)
    avatar_url: Optional[str] = Field(default=None, max_length=512, pattern=r"^https?://")


class PublicUser(BaseModel):
    """A user as returned to clients; never carries the password hash."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    email: str
    role: Role
    auth_provider: AuthProvider
    avatar_url: Optional[str] = None
    email_verified: bool
    created_at: datetime
    updated_at: datetime


class ProfileOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    email: str
    role: Role
    created_at: datetime


class AuthData(BaseModel):
    token: str
    user: PublicUser


def ok(data: Any = None, message: Optional[str] = None) -> dict:
    body: dict[str, Any] = {"success": True}
    if data is not None:
        body["data"] = data
    if message is not None:
        body["message"] = message
    return body
