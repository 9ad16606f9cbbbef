"""
API request and response models for IdentityGate REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from auth.models import Account

# ---------------------------------------------------------------------------
# Login
# ---------------------------------------------------------------------------


class LoginStatus(str, Enum):
    authenticated = "authenticated"
    two_factor_required = "two_factor_required"


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login."""

    username: str = Field(min_length=1, max_length=255)
    # Not stripped -- leading/trailing spaces can be part of a password.
    password: str = Field(min_length=1, max_length=255)
    use_directory: bool = False
    remember_me: bool = False

    @field_validator("username")
    @classmethod
    def strip_username(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("username must not be blank")
        return value


class TwoFactorLoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login/2fa."""

    model_config = ConfigDict(str_strip_whitespace=True)

    code: str = Field(min_length=6, max_length=7)
    remember_me: bool = False


class LoginResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: LoginStatus
    account_id: Optional[int] = None
    username: Optional[str] = None


# ---------------------------------------------------------------------------
# Current account
# ---------------------------------------------------------------------------


class MeResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    account_id: int
    username: str
    display_name: str
    email: str
    account_type: str
    two_factor_enabled: bool
    roles: list[str]


class TwoFactorSetupResponse(BaseModel):
    """A fresh, not-yet-stored TOTP secret for the authenticator app."""

    model_config = ConfigDict(frozen=True)

    secret: str
    provisioning_uri: str


class TwoFactorEnableRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    secret: str = Field(min_length=16, max_length=64, pattern=r"^[A-Z2-7]+=*$")
    code: str = Field(min_length=6, max_length=7)


class PasswordChangeRequest(BaseModel):
    current_password: str = Field(min_length=1, max_length=255)
    new_password: str = Field(min_length=6, max_length=100)


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


# ---------------------------------------------------------------------------
# Account administration
# ---------------------------------------------------------------------------


class AccountCreate(BaseModel):
    """Request body for POST /api/v1/accounts (local accounts only)."""

    username: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=6, max_length=100)
    display_name: str = Field(default="", max_length=255)
    email: str = Field(default="", max_length=255)
    role_ids: list[int] = Field(default_factory=list, max_length=50)

    @field_validator("username")
    @classmethod
    def strip_username(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("username must not be blank")
        return value

    @field_validator("display_name", "email")
    @classmethod
    def strip_text(cls, value: str) -> str:
        return value.strip()


class AccountPatch(BaseModel):
    """Request body for PATCH /api/v1/accounts/{id}. All fields optional."""

    is_active: Optional[bool] = None
    lockout_end: Optional[datetime] = None
    clear_lockout: bool = False
    role_ids: Optional[list[int]] = Field(default=None, max_length=50)

    @field_validator("lockout_end")
    @classmethod
    def assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        # Naive timestamps are read as UTC so they compare with stored values.
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class AccountResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    username: str
    display_name: str
    email: str
    account_type: str
    is_active: bool
    two_factor_enabled: bool
    lockout_end: Optional[datetime]
    role_ids: list[int]

    @classmethod
    def from_account(cls, account: Account) -> "AccountResponse":
        """Build an AccountResponse from a domain Account.

        Never exposes password_hash, salt or two_factor_secret.
        """
        return cls(
            id=account.id,
            username=account.username,
            display_name=account.display_name,
            email=account.email,
            account_type=account.account_type.name.lower(),
            is_active=account.is_active,
            two_factor_enabled=account.two_factor_enabled,
            lockout_end=account.lockout_end,
            role_ids=account.active_role_ids(),
        )


# ---------------------------------------------------------------------------
# Role administration
# ---------------------------------------------------------------------------


class RoleCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=100)
    directory_group_cn: str = Field(default="", max_length=255)


class RolePatch(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    directory_group_cn: Optional[str] = Field(default=None, max_length=255)


class RoleResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    normalized_name: str
    directory_group_cn: str


# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
