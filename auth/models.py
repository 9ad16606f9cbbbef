"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own domain
shape; stores, services and routes do the work.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class AccountType(int, Enum):
    """How an account authenticates. Stored as an integer column."""

    LOCAL = 1
    DIRECTORY = 2


class SessionScope(str, Enum):
    """The two independent claim scopes a browser can hold at once.

    PENDING_TWO_FACTOR carries only the account id between a successful
    password check and a successful TOTP check. FULL carries id + roles and is
    the only scope that grants access.
    """

    FULL = "full"
    PENDING_TWO_FACTOR = "pending_2fa"


@dataclass
class RoleAssignment:
    """Join of Account and Role.

    is_active=False rows are placeholders materialized by
    UserStore.get_role_assignments() for roles an account does NOT hold.
    Never treat them as membership.
    """

    role_id: int
    account_id: int | None = None
    is_active: bool = True


@dataclass
class Account:
    """Identity + credential record.

    directory_guid is set only for DIRECTORY accounts and is the sole
    correlation key back to the directory object -- usernames can be renamed
    in AD, the objectGUID cannot.

    password_hash / salt are empty strings for DIRECTORY accounts (the
    directory owns their credentials).
    """

    username: str
    display_name: str = ""
    email: str = ""
    id: int | None = None
    directory_guid: uuid.UUID | None = None
    password_hash: str = ""
    salt: str = ""
    account_type: AccountType = AccountType.LOCAL
    is_active: bool = True
    two_factor_enabled: bool = False
    two_factor_secret: str | None = None  # base32 TOTP secret
    lockout_end: datetime | None = None  # timezone-aware UTC
    lockout_enabled: bool = False
    access_failed_count: int = 0
    roles: list[RoleAssignment] = field(default_factory=list)

    def active_role_ids(self) -> list[int]:
        return [r.role_id for r in self.roles if r.is_active]


@dataclass
class Role:
    """Named permission group, optionally linked to one directory group.

    normalized_name is the value written into role claims. An empty
    directory_group_cn means "not linked to any directory group".
    """

    name: str
    normalized_name: str
    id: int | None = None
    directory_group_cn: str = ""


@dataclass
class DirectoryLookupResult:
    """Transient result of one directory bind + search. Never persisted.

    guid is required: a search entry without objectGUID is discarded by the
    directory client, because nothing else reliably links it to a local
    account.
    """

    guid: uuid.UUID
    should_provision: bool = False
    groups: list[str] = field(default_factory=list)
    attributes: dict[str, str] = field(default_factory=dict)


@dataclass
class SessionClaims:
    """Claims carried inside a session cookie.

    account_id is kept as the string it travels as; consumers parse it and
    treat a non-numeric value as an invalid session.
    """

    account_id: str
    roles: list[str] = field(default_factory=list)
