"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Two carriers are accepted for the FULL session token, in priority order:
  1. "session" cookie -- set by the login flow.
  2. Authorization: Bearer <token> header -- API clients replaying the same token.

The pending two-factor token is never accepted here; it only unlocks
POST /auth/login/2fa.

Every request re-runs the revalidation rule (resolve_session_account): the
token must name an existing, active account. A valid signature on a token
for a deactivated account is not enough.

try_get_current_session() is the soft variant (returns None on failure).
get_current_session() / get_current_account() raise HTTP 401.
require_role(name) additionally raises HTTP 403 when the role claim is absent.

Layer rule: this module may import from fastapi because it is part of the
FastAPI dependency injection system.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from fastapi import HTTPException, Request

from auth.models import Account, SessionClaims, SessionScope
from auth.revalidation import resolve_session_account
from auth.tokens import CookieSessionTransport

ADMIN_ROLE = "ADMIN"


@dataclass
class AuthenticatedSession:
    account: Account
    claims: SessionClaims

    def has_role(self, normalized_name: str) -> bool:
        return normalized_name in self.claims.roles


def try_get_current_session(request: Request) -> AuthenticatedSession | None:
    """Return the authenticated session for the request, or None. Never raises."""
    transport: CookieSessionTransport = request.app.state.session_transport
    user_store = request.app.state.user_store

    claims = transport.read_claims(request.cookies, SessionScope.FULL)
    if claims is None:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            claims = transport.decode(SessionScope.FULL, auth_header[7:])
    if claims is None:
        return None

    account = resolve_session_account(user_store, claims)
    if account is None:
        return None
    return AuthenticatedSession(account=account, claims=claims)


def get_current_session(request: Request) -> AuthenticatedSession:
    """Require authentication. Raises HTTP 401 if the request is not authenticated."""
    session = try_get_current_session(request)
    if session is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    return session


def get_current_account(request: Request) -> Account:
    """Require authentication and return the live Account.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(account: Account = Depends(get_current_account)): ...
    """
    return get_current_session(request).account


def require_role(normalized_name: str) -> Callable[[Request], AuthenticatedSession]:
    """Build a dependency that requires a role claim. 401 if anonymous, 403 if missing."""

    def dependency(request: Request) -> AuthenticatedSession:
        session = get_current_session(request)
        if not session.has_role(normalized_name):
            raise HTTPException(
                status_code=403,
                detail={"code": "forbidden", "message": f"Role {normalized_name} required."},
            )
        return session

    return dependency


require_admin = require_role(ADMIN_ROLE)
