"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper.
UserStore and RoleStore are the repositories; _row_to_account / _row_to_role
are the mappers and _account_to_params is the single mapping from an Account
to column values. Service and route code never touches SQL directly.

Unit of work:
  Every method takes an optional `conn`. When omitted the method opens its own
  transaction (engine.begin()). When supplied, the method runs inside the
  caller's transaction so several calls commit or roll back together:

      with store.transaction() as conn:
          store.update_account(account, conn=conn)
          ...

  update_account() itself always replaces role assignments in the same
  transaction as the account row, so a crash between the two can never leave
  an account with stale or missing roles.

Security:
  All queries use bound parameters. No f-strings in SQL.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    select,
)
from sqlalchemy.engine import Connection, Engine

from auth.models import Account, AccountType, Role, RoleAssignment

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_accounts = Table(
    "accounts",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(255), nullable=False, unique=True),
    Column("display_name", String(255), nullable=False, server_default=""),
    Column("email", String(255), nullable=False, server_default=""),
    Column("directory_guid", String(36), unique=True),  # NULL for local accounts
    Column("password_hash", Text, nullable=False, server_default=""),
    Column("salt", String(88), nullable=False, server_default=""),
    Column("account_type", Integer, nullable=False),
    Column("is_active", Boolean, nullable=False, server_default="1"),
    Column("two_factor_enabled", Boolean, nullable=False, server_default="0"),
    Column("two_factor_secret", String(64)),
    Column("lockout_end", DateTime(timezone=True)),
    Column("lockout_enabled", Boolean, nullable=False, server_default="0"),
    Column("access_failed_count", Integer, nullable=False, server_default="0"),
)

_roles = Table(
    "roles",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False),
    Column("normalized_name", String(100), nullable=False, unique=True),
    Column("directory_group_cn", String(255), nullable=False, server_default=""),
)

_account_roles = Table(
    "account_roles",
    _metadata,
    Column("account_id", Integer, ForeignKey("accounts.id"), primary_key=True),
    Column("role_id", Integer, ForeignKey("roles.id"), primary_key=True),
    Column("is_active", Boolean, nullable=False, server_default="1"),
)


# ---------------------------------------------------------------------------
# Engine helpers
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def build_engine(db_url: str) -> Engine:
    """Create an engine and make sure every auth table exists."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    _metadata.create_all(engine)
    return engine


class _Repository:
    """Shared transaction plumbing for the stores."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    @contextmanager
    def transaction(self) -> Iterator[Connection]:
        """Open a unit of work. Commits on clean exit, rolls back on exception."""
        with self.engine.begin() as conn:
            yield conn

    @contextmanager
    def _use(self, conn: Connection | None) -> Iterator[Connection]:
        if conn is not None:
            yield conn
        else:
            with self.engine.begin() as own:
                yield own

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------


class UserStore(_Repository):
    """Repository for Account records and their role assignments.

    Usage:
        store = UserStore(build_engine("sqlite:///identitygate.db"))
        store.create_account(Account(username="alice", ...))
        account = store.get_by_username("alice")
        store.close()
    """

    def get_by_id(self, account_id: int, conn: Connection | None = None) -> Account | None:
        """Look up an account by primary key, roles included. None if not found."""
        return self._get_one(_accounts.c.id == account_id, conn)

    def get_by_username(self, username: str, conn: Connection | None = None) -> Account | None:
        """Look up an account by exact username (case-sensitive), roles included."""
        return self._get_one(_accounts.c.username == username, conn)

    def get_by_directory_guid(self, guid: uuid.UUID, conn: Connection | None = None) -> Account | None:
        """Look up the account linked to a directory objectGUID, roles included."""
        return self._get_one(_accounts.c.directory_guid == str(guid), conn)

    def _get_one(self, clause, conn: Connection | None) -> Account | None:
        with self._use(conn) as c:
            row = c.execute(_accounts.select().where(clause)).fetchone()
            if row is None:
                return None
            account = _row_to_account(row)
            account.roles = self._held_roles(c, account.id)
        return account

    def list_accounts(self, conn: Connection | None = None) -> list[Account]:
        """Return all accounts ordered by username, with their held roles."""
        with self._use(conn) as c:
            rows = c.execute(_accounts.select().order_by(_accounts.c.username)).fetchall()
            accounts = [_row_to_account(r) for r in rows]
            assignments = self.get_role_assignments([a.id for a in accounts], conn=c)
        by_account: dict[int, list[RoleAssignment]] = {}
        for assignment in assignments:
            if assignment.is_active:
                by_account.setdefault(assignment.account_id, []).append(assignment)
        for account in accounts:
            account.roles = by_account.get(account.id, [])
        return accounts

    def create_account(self, account: Account, conn: Connection | None = None) -> int:
        """Insert an account and its role assignments; assign and return the new id.

        Raises sqlalchemy.exc.IntegrityError if the username or directory GUID
        already exists.
        """
        with self._use(conn) as c:
            params = _account_to_params(account)
            result = c.execute(_accounts.insert().values(**params))
            account.id = result.inserted_primary_key[0]
            self._insert_roles(c, account)
        return account.id

    def update_account(self, account: Account, conn: Connection | None = None) -> None:
        """Write profile fields and replace the role set wholesale.

        Only identity fields touched by a login or an admin edit are written:
        username, display name, email, failed-access counter, active flag,
        lockout end. Credentials and 2FA have their own setters.
        """
        params = _account_to_params(account)
        with self._use(conn) as c:
            c.execute(
                _accounts.update()
                .where(_accounts.c.id == account.id)
                .values(
                    username=params["username"],
                    display_name=params["display_name"],
                    email=params["email"],
                    access_failed_count=params["access_failed_count"],
                    is_active=params["is_active"],
                    lockout_end=params["lockout_end"],
                )
            )
            c.execute(_account_roles.delete().where(_account_roles.c.account_id == account.id))
            self._insert_roles(c, account)

    def set_two_factor(self, account: Account, conn: Connection | None = None) -> None:
        """Persist only two_factor_enabled and two_factor_secret."""
        with self._use(conn) as c:
            c.execute(
                _accounts.update()
                .where(_accounts.c.id == account.id)
                .values(
                    two_factor_enabled=account.two_factor_enabled,
                    two_factor_secret=account.two_factor_secret,
                )
            )

    def set_password(self, account: Account, conn: Connection | None = None) -> None:
        """Persist only password_hash and salt."""
        with self._use(conn) as c:
            c.execute(
                _accounts.update()
                .where(_accounts.c.id == account.id)
                .values(password_hash=account.password_hash, salt=account.salt)
            )

    def set_active(self, account_id: int, is_active: bool, conn: Connection | None = None) -> bool:
        """Flip only the active flag. Returns False if the account does not exist."""
        with self._use(conn) as c:
            result = c.execute(_accounts.update().where(_accounts.c.id == account_id).values(is_active=is_active))
        return result.rowcount > 0

    def get_role_assignments(self, account_ids: list[int], conn: Connection | None = None) -> list[RoleAssignment]:
        """Return one row per (account, role) pair for every requested account.

        Roles the account holds come back with is_active=True; every other
        role comes back as an is_active=False placeholder. An empty id list
        returns an empty list without touching the database.
        """
        if not account_ids:
            return []
        with self._use(conn) as c:
            roles = c.execute(select(_roles.c.id).order_by(_roles.c.id)).fetchall()
            held = c.execute(
                select(_account_roles.c.account_id, _account_roles.c.role_id, _account_roles.c.is_active).where(
                    _account_roles.c.account_id.in_(account_ids)
                )
            ).fetchall()
        held_map = {(r.account_id, r.role_id): bool(r.is_active) for r in held}
        return [
            RoleAssignment(
                account_id=account_id,
                role_id=role.id,
                is_active=held_map.get((account_id, role.id), False),
            )
            for account_id in account_ids
            for role in roles
        ]

    def _held_roles(self, conn: Connection, account_id: int) -> list[RoleAssignment]:
        rows = conn.execute(
            _account_roles.select()
            .where((_account_roles.c.account_id == account_id) & (_account_roles.c.is_active.is_(True)))
            .order_by(_account_roles.c.role_id)
        ).fetchall()
        return [RoleAssignment(account_id=r.account_id, role_id=r.role_id, is_active=True) for r in rows]

    def _insert_roles(self, conn: Connection, account: Account) -> None:
        seen: set[int] = set()
        for assignment in account.roles:
            if not assignment.is_active or assignment.role_id in seen:
                continue
            seen.add(assignment.role_id)
            assignment.account_id = account.id
            conn.execute(
                _account_roles.insert().values(account_id=account.id, role_id=assignment.role_id, is_active=True)
            )


# ---------------------------------------------------------------------------
# Roles
# ---------------------------------------------------------------------------


class RoleStore(_Repository):
    """Repository for Role records. Administrative writes only -- reads at
    request time go through RoleCache."""

    def list_roles(self, conn: Connection | None = None) -> list[Role]:
        with self._use(conn) as c:
            rows = c.execute(_roles.select().order_by(_roles.c.id)).fetchall()
        return [_row_to_role(r) for r in rows]

    def get_role(self, role_id: int, conn: Connection | None = None) -> Role | None:
        with self._use(conn) as c:
            row = c.execute(_roles.select().where(_roles.c.id == role_id)).fetchone()
        return _row_to_role(row) if row is not None else None

    def create_role(self, role: Role, conn: Connection | None = None) -> int:
        """Insert a role and assign its id. IntegrityError on duplicate normalized name."""
        with self._use(conn) as c:
            result = c.execute(
                _roles.insert().values(
                    name=role.name,
                    normalized_name=role.normalized_name,
                    directory_group_cn=role.directory_group_cn,
                )
            )
            role.id = result.inserted_primary_key[0]
        return role.id

    def update_role(self, role: Role, conn: Connection | None = None) -> bool:
        """Returns True if a row was updated, False if the role was not found."""
        with self._use(conn) as c:
            result = c.execute(
                _roles.update()
                .where(_roles.c.id == role.id)
                .values(
                    name=role.name,
                    normalized_name=role.normalized_name,
                    directory_group_cn=role.directory_group_cn,
                )
            )
        return result.rowcount > 0

    def delete_role(self, role_id: int, conn: Connection | None = None) -> bool:
        """Delete a role and every assignment that references it."""
        with self._use(conn) as c:
            c.execute(_account_roles.delete().where(_account_roles.c.role_id == role_id))
            result = c.execute(_roles.delete().where(_roles.c.id == role_id))
        return result.rowcount > 0


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _account_to_params(account: Account) -> dict:
    """Single mapping from an Account to its column values."""
    return {
        "username": account.username,
        "display_name": account.display_name,
        "email": account.email,
        "directory_guid": str(account.directory_guid) if account.directory_guid else None,
        "password_hash": account.password_hash,
        "salt": account.salt,
        "account_type": int(account.account_type),
        "is_active": account.is_active,
        "two_factor_enabled": account.two_factor_enabled,
        "two_factor_secret": account.two_factor_secret,
        "lockout_end": account.lockout_end.astimezone(timezone.utc) if account.lockout_end else None,
        "lockout_enabled": account.lockout_enabled,
        "access_failed_count": account.access_failed_count,
    }


def _as_utc(value: datetime | None) -> datetime | None:
    # SQLite drops tzinfo on the way back out.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _row_to_account(row) -> Account:
    return Account(
        id=row.id,
        username=row.username,
        display_name=row.display_name,
        email=row.email,
        directory_guid=uuid.UUID(row.directory_guid) if row.directory_guid else None,
        password_hash=row.password_hash,
        salt=row.salt,
        account_type=AccountType(row.account_type),
        is_active=bool(row.is_active),
        two_factor_enabled=bool(row.two_factor_enabled),
        two_factor_secret=row.two_factor_secret,
        lockout_end=_as_utc(row.lockout_end),
        lockout_enabled=bool(row.lockout_enabled),
        access_failed_count=row.access_failed_count,
    )


def _row_to_role(row) -> Role:
    return Role(
        id=row.id,
        name=row.name,
        normalized_name=row.normalized_name,
        directory_group_cn=row.directory_group_cn,
    )
