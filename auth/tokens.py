"""
auth/tokens.py -- Signed-cookie session transport.

Each SessionScope lives in its own httpOnly cookie holding a JWT (python-jose,
HS256, signed with SECRET_KEY):

    FULL                -> "session"      {sub, roles, scope, exp}
    PENDING_TWO_FACTOR  -> "session_2fa"  {sub, scope, exp}

The scope is also written into the token and checked on read, so a pending
token copied into the full cookie is rejected.

Verification returns None on any failure (bad signature, expired, wrong
scope, missing subject) -- the caller treats that as anonymous.

Persistence: a persistent session gets a cookie max_age; a non-persistent
one is a browser-session cookie. Either way the JWT carries its own expiry.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from auth.models import SessionClaims, SessionScope
from core.config import Settings

logger = logging.getLogger("identitygate.auth.tokens")

_ALGORITHM = "HS256"

COOKIE_NAMES: dict[SessionScope, str] = {
    SessionScope.FULL: "session",
    SessionScope.PENDING_TWO_FACTOR: "session_2fa",
}


class CookieSessionTransport:
    """Writes, reads and clears session claims for both scopes."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    def _lifetime(self, scope: SessionScope, persistent: bool) -> int:
        if scope is SessionScope.PENDING_TWO_FACTOR:
            return self._settings.pending_two_factor_expire_seconds
        if persistent:
            return self._settings.persistent_session_seconds
        return self._settings.token_expire_seconds

    def encode(self, scope: SessionScope, claims: SessionClaims, persistent: bool = False) -> str:
        """Return the signed JWT for claims under scope."""
        expire = datetime.now(timezone.utc) + timedelta(seconds=self._lifetime(scope, persistent))
        payload: dict = {"sub": claims.account_id, "scope": scope.value, "exp": expire}
        if scope is SessionScope.FULL:
            payload["roles"] = list(claims.roles)
        return jwt.encode(payload, self._settings.secret_key, algorithm=_ALGORITHM)

    def decode(self, scope: SessionScope, token: str) -> SessionClaims | None:
        """Verify a token for scope. Returns None on any failure."""
        try:
            payload = jwt.decode(token, self._settings.secret_key, algorithms=[_ALGORITHM])
        except JWTError:
            return None
        if payload.get("scope") != scope.value or not payload.get("sub"):
            return None
        roles = payload.get("roles") or []
        if not isinstance(roles, list):
            return None
        return SessionClaims(account_id=str(payload["sub"]), roles=[str(r) for r in roles])

    def issue_claims(self, response, scope: SessionScope, claims: SessionClaims, persistent: bool = False) -> None:
        """Write claims as an httpOnly cookie on the response.

        httponly=True: JS cannot read the cookie (XSS mitigation).
        samesite="lax": not sent on cross-site POST (CSRF mitigation).
        secure: only sent over HTTPS when SECURE_COOKIES=true.
        """
        token = self.encode(scope, claims, persistent)
        max_age = self._lifetime(scope, persistent) if (persistent or scope is SessionScope.PENDING_TWO_FACTOR) else None
        response.set_cookie(
            COOKIE_NAMES[scope],
            value=token,
            httponly=True,
            samesite="lax",
            secure=self._settings.secure_cookies,
            max_age=max_age,
        )

    def clear_scope(self, response, scope: SessionScope) -> None:
        response.delete_cookie(
            COOKIE_NAMES[scope],
            httponly=True,
            samesite="lax",
            secure=self._settings.secure_cookies,
        )

    def read_claims(self, cookies: Mapping[str, str], scope: SessionScope) -> SessionClaims | None:
        """Return the verified claims for scope from a request's cookies, or None."""
        token = cookies.get(COOKIE_NAMES[scope])
        if not token:
            return None
        return self.decode(scope, token)
