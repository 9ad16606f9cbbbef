"""
tests/conftest.py -- Shared test fixtures for IdentityGate tests.

This module provides:
  - FakeDirectory: stand-in for DirectoryClient with a canned lookup result
  - _make_test_services(): wires stores, role cache and services around one DB
  - _patch_lifespan(): hangs test services on app.state, bypassing real startup
  - services: fresh services on their own DB file, per test (unit tests)
  - api_context / api: TestClient plus services and an admin token (integration tests)

Design: every fixture gets its own SQLite file under tmp_path (WAL mode).
Revalidation reads from a worker thread while tests write from the main
thread. Plain :memory: DBs are per-connection, and shared-cache memory DBs
fail such overlaps with "table is locked" instead of waiting.

Environment variables must be set before any auth/core import so
get_settings() picks them up on its first (cached) call.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass

# CRITICAL: set before any auth/core import -- get_settings() is cached.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')
os.environ.setdefault("REVALIDATION_INTERVAL_SECONDS", "0.05")
os.environ.setdefault("TRUSTED_IP_RANGES", '[{"start": "10.0.0.0", "end": "10.0.0.255"}]')

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.engine import Engine

from api.main import app
from auth.login import LoginService
from auth.models import Account, AccountType, DirectoryLookupResult, Role, RoleAssignment, SessionClaims, SessionScope
from auth.passwords import generate_salt, hash_password
from auth.roles import RoleCache
from auth.sessions import SessionManager
from auth.store import RoleStore, UserStore, build_engine
from auth.tokens import CookieSessionTransport
from core.config import get_settings

# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeDirectory:
    """DirectoryClient double. Returns `result` when the password matches."""

    def __init__(self, result: DirectoryLookupResult | None = None, password: str = "dirpass") -> None:
        self.result = result
        self.password = password
        self.calls: list[str] = []

    @property
    def enabled(self) -> bool:
        return True

    def authenticate(self, username: str, password: str) -> DirectoryLookupResult | None:
        self.calls.append(username)
        if password != self.password:
            return None
        return self.result


# ---------------------------------------------------------------------------
# Service wiring
# ---------------------------------------------------------------------------


@dataclass
class Services:
    engine: Engine
    user_store: UserStore
    role_store: RoleStore
    role_cache: RoleCache
    directory: FakeDirectory
    login_service: LoginService
    transport: CookieSessionTransport
    session_manager: SessionManager


def _make_test_services(db_url: str) -> Services:
    settings = get_settings()
    engine = build_engine(db_url)
    user_store = UserStore(engine)
    role_store = RoleStore(engine)
    role_cache = RoleCache(role_store.list_roles)
    role_cache.reload()
    directory = FakeDirectory()
    transport = CookieSessionTransport(settings)
    return Services(
        engine=engine,
        user_store=user_store,
        role_store=role_store,
        role_cache=role_cache,
        directory=directory,
        login_service=LoginService(user_store, directory, role_cache),
        transport=transport,
        session_manager=SessionManager(settings, transport, user_store, role_cache),
    )


def _patch_lifespan(services: Services):
    """Return a lifespan that installs pre-built test services on app.state."""

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = services.user_store
        app.state.role_store = services.role_store
        app.state.role_cache = services.role_cache
        app.state.directory_client = services.directory
        app.state.login_service = services.login_service
        app.state.session_transport = services.transport
        app.state.session_manager = services.session_manager
        yield

    return test_lifespan


def make_local_account(
    store: UserStore,
    username: str,
    password: str,
    roles: list[int] | None = None,
    **fields,
) -> Account:
    """Insert an active local account with a real salted hash and return it."""
    salt = generate_salt()
    account = Account(
        username=username,
        display_name=fields.pop("display_name", username.title()),
        email=fields.pop("email", f"{username}@example.com"),
        account_type=AccountType.LOCAL,
        salt=salt,
        password_hash=hash_password(password, salt),
        roles=[RoleAssignment(role_id=rid) for rid in (roles or [])],
        **fields,
    )
    store.create_account(account)
    return account


def make_role(services: Services, name: str, directory_group_cn: str = "") -> Role:
    """Insert a role and keep the cache in step, the way the admin routes do."""
    role = Role(name=name, normalized_name=name.upper(), directory_group_cn=directory_group_cn)
    services.role_store.create_role(role)
    services.role_cache.upsert(role)
    return role


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def services(tmp_path) -> Generator[Services, None, None]:
    """Fresh, isolated services backed by a per-test DB file."""
    svc = _make_test_services(f"sqlite:///{tmp_path / 'identitygate.db'}")
    yield svc
    svc.engine.dispose()


@dataclass
class ApiContext:
    client: TestClient
    services: Services
    admin_id: int
    admin_token: str


@pytest.fixture(scope="module")
def api_context(tmp_path_factory) -> Generator[ApiContext, None, None]:
    """Yield an ApiContext for API integration tests.

    The admin account (testadmin / testpass123) holds the ADMIN role. The
    token is a FULL-scope session token for Authorization: Bearer headers.
    """
    db_path = tmp_path_factory.mktemp("api") / "identitygate.db"
    svc = _make_test_services(f"sqlite:///{db_path}")

    admin_role = make_role(svc, "Admin")
    admin = make_local_account(svc.user_store, "testadmin", "testpass123", roles=[admin_role.id])
    token = svc.transport.encode(SessionScope.FULL, SessionClaims(account_id=str(admin.id), roles=["ADMIN"]))

    app.router.lifespan_context = _patch_lifespan(svc)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield ApiContext(client=client, services=svc, admin_id=admin.id, admin_token=token)

    svc.engine.dispose()


@pytest.fixture
def api(api_context: ApiContext) -> ApiContext:
    """api_context with an empty cookie jar, so login state never leaks between tests."""
    api_context.client.cookies.clear()
    return api_context
