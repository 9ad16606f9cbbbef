"""
auth/login.py -- Login orchestration for local and directory accounts.

LoginService is the single place that decides whether a set of raw
credentials yields an Account. It owns three checks that used to be left to
callers:

  1. credentials (directory bind or salted local hash),
  2. is_active,
  3. lockout_end in the future.

Every failure returns None. The HTTP layer turns None into one generic 401,
so the response never reveals which check failed. The reason is logged.

Directory logins provision or refresh the local record. Account update and
role replacement run in one transaction (UserStore.update_account). If the
directory username is already held by a different local record, the
transaction rolls back and the login is rejected.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError

from auth.directory import DirectoryClient
from auth.models import Account, AccountType, DirectoryLookupResult
from auth.passwords import burn_verification, verify_password
from auth.roles import RoleCache, map_groups_to_roles
from auth.store import UserStore

logger = logging.getLogger("identitygate.auth.login")


class LoginService:
    def __init__(self, user_store: UserStore, directory: DirectoryClient, role_cache: RoleCache) -> None:
        self._store = user_store
        self._directory = directory
        self._role_cache = role_cache

    def login(self, username: str, password: str, use_directory: bool = False) -> Account | None:
        """Dispatch to the directory or the local path."""
        if use_directory:
            return self.directory_login(username, password)
        return self.local_login(username, password)

    # ------------------------------------------------------------------
    # Directory path
    # ------------------------------------------------------------------

    def directory_login(self, username: str, password: str) -> Account | None:
        """Authenticate against the directory and provision/refresh the local account.

        Unknown GUID + auto-provisioning on  -> new DIRECTORY account.
        Unknown GUID + auto-provisioning off -> None.
        Known GUID -> email, display name, username and roles refreshed from
        the directory; failed-access counter reset to 0.
        """
        result = self._directory.authenticate(username, password)
        if result is None:
            return None

        try:
            with self._store.transaction() as conn:
                account = self._store.get_by_directory_guid(result.guid, conn=conn)
                if account is None:
                    if not result.should_provision:
                        logger.info("Directory user %r has no local account and provisioning is off", username)
                        return None
                    account = self._new_directory_account(username, result)
                    self._store.create_account(account, conn=conn)
                    logger.info("Provisioned directory account %s (id=%s)", account.username, account.id)
                else:
                    self._refresh_directory_account(account, username, result)
                    self._store.update_account(account, conn=conn)
        except IntegrityError:
            logger.warning(
                "Directory login for %r rejected: username %s is held by another account",
                username,
                username.upper(),
            )
            return None

        if not is_usable(account):
            return None
        return account

    def _new_directory_account(self, username: str, result: DirectoryLookupResult) -> Account:
        return Account(
            username=username.upper(),
            email=result.attributes["mail"],
            display_name=_display_name(result),
            directory_guid=result.guid,
            account_type=AccountType.DIRECTORY,
            is_active=True,
            lockout_enabled=True,
            roles=map_groups_to_roles(result, self._role_cache),
        )

    def _refresh_directory_account(self, account: Account, username: str, result: DirectoryLookupResult) -> None:
        account.email = result.attributes["mail"]
        account.display_name = _display_name(result)
        account.username = username.upper()
        account.access_failed_count = 0
        account.roles = map_groups_to_roles(result, self._role_cache)

    # ------------------------------------------------------------------
    # Local path
    # ------------------------------------------------------------------

    def local_login(self, username: str, password: str) -> Account | None:
        """Verify a local username/password. Does not modify the account."""
        account = self._store.get_by_username(username)
        if account is None or account.account_type is not AccountType.LOCAL:
            burn_verification(password)
            return None
        if not verify_password(password, account.salt, account.password_hash):
            logger.info("Local login failed for %r: bad password", username)
            return None
        if not is_usable(account):
            return None
        return account


def _display_name(result: DirectoryLookupResult) -> str:
    return f"{result.attributes['givenName']} {result.attributes['sn']}"


def is_usable(account: Account) -> bool:
    """False if the account is deactivated or its lockout has not yet ended."""
    if not account.is_active:
        logger.info("Login rejected for %s (id=%s): account inactive", account.username, account.id)
        return False
    if account.lockout_end is not None and account.lockout_end > datetime.now(timezone.utc):
        logger.info(
            "Login rejected for %s (id=%s): locked out until %s",
            account.username,
            account.id,
            account.lockout_end.isoformat(),
        )
        return False
    return True
