"""
auth/sessions.py -- Session/claims manager and the two-factor gate.

After LoginService returns an Account, the HTTP layer asks
should_require_two_factor(). Then exactly one of:

  issue_full_session()     -- claims = account id + role names; clears any
                              pending scope.
  issue_pending_session()  -- claims = account id only, short-lived, under
                              the pending scope. The full scope is untouched.

complete_pending_session() converts a pending session into a full one once
the TOTP code checks out. A wrong code raises InvalidTwoFactorCode and leaves
every cookie as it was.
"""

from __future__ import annotations

import logging

import pyotp

from auth.exceptions import AuthenticationRejected, InvalidTwoFactorCode
from auth.login import is_usable
from auth.models import Account, SessionClaims, SessionScope
from auth.network import is_trusted_origin
from auth.roles import RoleCache
from auth.store import UserStore
from auth.tokens import CookieSessionTransport
from core.config import Settings

logger = logging.getLogger("identitygate.auth.sessions")


def verify_totp(secret: str | None, code: str) -> bool:
    """Check a TOTP code against a base32 secret.

    RFC 6238 defaults (30 s step, 6 digits) with one step of tolerance either
    side for network delay.
    """
    if not secret or not code:
        return False
    try:
        return pyotp.TOTP(secret).verify(code.strip().replace(" ", ""), valid_window=1)
    except (ValueError, TypeError):
        # binascii.Error (malformed base32) is a ValueError subclass
        return False


class SessionManager:
    def __init__(
        self,
        settings: Settings,
        transport: CookieSessionTransport,
        user_store: UserStore,
        role_cache: RoleCache,
    ) -> None:
        self._settings = settings
        self._transport = transport
        self._store = user_store
        self._role_cache = role_cache

    def should_require_two_factor(self, account: Account, remote_address: str | None) -> bool:
        """True iff the account has 2FA on and the caller is not on a trusted network."""
        if not account.two_factor_enabled:
            return False
        return not is_trusted_origin(remote_address, self._settings.trusted_ip_ranges)

    def build_claims(self, account: Account) -> SessionClaims:
        """Account id plus one role claim per active assignment.

        Assignments whose role is no longer in the cache are skipped.
        """
        roles: list[str] = []
        for role_id in account.active_role_ids():
            role = self._role_cache.find_by_id(role_id)
            if role is not None:
                roles.append(role.normalized_name)
        return SessionClaims(account_id=str(account.id), roles=roles)

    def issue_full_session(self, response, account: Account, persistent: bool = False) -> None:
        self._transport.clear_scope(response, SessionScope.PENDING_TWO_FACTOR)
        self._transport.issue_claims(response, SessionScope.FULL, self.build_claims(account), persistent)
        logger.info("Issued full session for account id=%s (persistent=%s)", account.id, persistent)

    def issue_pending_session(self, response, account: Account) -> None:
        claims = SessionClaims(account_id=str(account.id))
        self._transport.issue_claims(response, SessionScope.PENDING_TWO_FACTOR, claims)
        logger.info("Issued pending two-factor session for account id=%s", account.id)

    def pending_account_id(self, cookies) -> int | None:
        """Return the account id held by the pending scope, or None."""
        claims = self._transport.read_claims(cookies, SessionScope.PENDING_TWO_FACTOR)
        if claims is None:
            return None
        return parse_account_id(claims)

    def complete_pending_session(self, response, account_id: int, code: str, persistent: bool = False) -> Account:
        """Verify the TOTP code for a pending account and issue its full session.

        Raises:
            AuthenticationRejected: the account vanished or is no longer usable
                (deactivated or locked out since the first step).
            InvalidTwoFactorCode:  the code is wrong or outside the time window.
        """
        account = self._store.get_by_id(account_id)
        if account is None or not is_usable(account):
            raise AuthenticationRejected()
        if not verify_totp(account.two_factor_secret, code):
            logger.info("Invalid two-factor code for account id=%s", account_id)
            raise InvalidTwoFactorCode()
        self.issue_full_session(response, account, persistent)
        return account

    def logout(self, response) -> None:
        """Clear the full scope only."""
        self._transport.clear_scope(response, SessionScope.FULL)


def parse_account_id(claims: SessionClaims | None) -> int | None:
    """Return the numeric account id claim, or None if missing or not a plain integer."""
    if claims is None:
        return None
    value = claims.account_id
    if not value or not (value.isascii() and value.isdigit()):
        return None
    return int(value)
