"""
User and Session Models

Users are stored with a salted password hash, never the password itself.
Emails are unique without regard to case.
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator


class UserRole(str, Enum):
    """Portal roles."""
    ADMIN = "admin"
    EMPLOYEE = "employee"


def normalize_email(email: str) -> str:
    """Canonical form used for comparisons and as OTP key."""
    return email.strip().lower()


def _check_email(value: str) -> str:
    local, _, domain = value.partition("@")
    if not local or not domain:
        raise ValueError(f"Invalid email address: {value}")
    return value


class User(BaseModel):
    """A portal account."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    email: str = Field(..., min_length=3, max_length=254)
    password_hash: str = Field(
        ...,
        min_length=1,
        description="Salted one-way hash of the password"
    )
    role: UserRole = Field(default=UserRole.EMPLOYEE)
    name: str = Field(..., min_length=1, max_length=200)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    is_active: bool = Field(default=True)

    @field_validator('email')
    @classmethod
    def validate_email(cls, v: str) -> str:
        return _check_email(v)

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    def matches_email(self, email: str) -> bool:
        return normalize_email(self.email) == normalize_email(email)


class UserCreate(BaseModel):
    """Fields an administrator supplies for a new account."""
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(..., min_length=3, max_length=254)
    password: str = Field(..., min_length=6, max_length=128)
    role: UserRole = Field(default=UserRole.EMPLOYEE)
    name: str = Field(..., min_length=1, max_length=200)

    @field_validator('email')
    @classmethod
    def validate_email(cls, v: str) -> str:
        return _check_email(v)


class UserUpdate(BaseModel):
    """Partial update; unset fields are left alone."""
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    email: Optional[str] = Field(default=None, min_length=3, max_length=254)
    password: Optional[str] = Field(default=None, min_length=6, max_length=128)
    role: Optional[UserRole] = None
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    is_active: Optional[bool] = None

    @field_validator('email')
    @classmethod
    def validate_email(cls, v: Optional[str]) -> Optional[str]:
        return _check_email(v) if v is not None else v


class Session(BaseModel):
    """Projection of a user established after a successful login."""

    user_id: UUID
    email: str
    role: UserRole
    name: str
    login_time: datetime = Field(default_factory=datetime.utcnow)

    @classmethod
    def from_user(cls, user: User) -> 'Session':
        return cls(
            user_id=user.id,
            email=user.email,
            role=user.role,
            name=user.name,
        )

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN
