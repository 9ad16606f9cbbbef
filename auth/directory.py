"""
auth/directory.py -- Active Directory / LDAP bind + lookup via ldap3.

DirectoryClient.authenticate() binds to the directory AS THE USER (their
credentials are the proof of identity -- there is no service account), then
searches for the same account to read its identity attributes and group
memberships.

Failure policy: every LDAP-level failure (wrong password, unreachable server,
malformed filter, empty result) returns None. Callers cannot and should not
tell these apart -- all of them mean "not authenticated". A search entry
without objectGUID is rejected too, even after a successful bind, because the
GUID is the only stable key linking the directory object to a local account.

Transport encryption is a deployment concern: point DIRECTORY_SERVER at an
ldaps:// URL to get TLS.
"""

from __future__ import annotations

import logging
import uuid

from ldap3 import NONE, NTLM, SIMPLE, SUBTREE, Connection, Server
from ldap3.core.exceptions import LDAPException
from ldap3.utils.conv import escape_filter_chars

from auth.models import DirectoryLookupResult
from core.config import Settings

logger = logging.getLogger("identitygate.auth.directory")

SEARCH_ATTRIBUTES = ["cn", "mail", "displayName", "givenName", "sn", "objectGUID", "memberOf"]

# Keys always present in DirectoryLookupResult.attributes, "" when the
# directory returned nothing for them.
REQUIRED_ATTRIBUTES = ("mail", "sn", "givenName", "displayName")


class DirectoryClient:
    """Thin wrapper over an ldap3 connection configured from Settings."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    @property
    def enabled(self) -> bool:
        return self._settings.directory_enabled

    def authenticate(self, username: str, password: str) -> DirectoryLookupResult | None:
        """Bind with the user's credentials and return their directory record.

        Returns None if the directory is disabled, on any LDAP failure, when
        the search finds nothing, or when the entry carries no objectGUID.
        """
        if not self.enabled:
            return None
        # An empty password turns into an unauthenticated bind on many servers,
        # which "succeeds" without proving anything.
        if not username or not password:
            return None

        conn: Connection | None = None
        try:
            conn = self._open_connection(username, password)
            found = conn.search(
                search_base=self._settings.directory_base_dn,
                search_filter=f"(sAMAccountName={escape_filter_chars(username)})",
                search_scope=SUBTREE,
                attributes=SEARCH_ATTRIBUTES,
            )
            entries = [e for e in (conn.response or []) if e.get("type") == "searchResEntry"]
            if not found or not entries:
                logger.info("Directory search returned no entry for %r", username)
                return None
            return self._build_result(entries[0])
        except LDAPException as exc:
            logger.warning("Directory authentication failed for %r: %s", username, exc.__class__.__name__)
            return None
        finally:
            if conn is not None:
                try:
                    conn.unbind()
                except LDAPException:
                    logger.debug("Ignoring unbind failure", exc_info=True)

    def _open_connection(self, username: str, password: str) -> Connection:
        """Return a bound connection. Raises LDAPException on bind failure."""
        server = Server(self._settings.directory_server, get_info=NONE)
        if self._settings.directory_authentication == "NTLM":
            user = f"{self._settings.directory_domain}\\{username}"
            authentication = NTLM
        else:
            user = username if "@" in username or "=" in username else f"{username}@{self._settings.directory_domain}"
            authentication = SIMPLE
        return Connection(
            server,
            user=user,
            password=password,
            authentication=authentication,
            auto_bind=True,
            raise_exceptions=True,
            read_only=True,
        )

    def _build_result(self, entry: dict) -> DirectoryLookupResult | None:
        raw: dict = entry.get("raw_attributes") or {}
        guid: uuid.UUID | None = None
        groups: list[str] = []
        attributes: dict[str, str] = {}
        group_ou = self._settings.directory_group_base_ou

        for name, values in raw.items():
            if not values:
                continue
            if name == "objectGUID":
                try:
                    # AD stores the GUID in Microsoft's mixed-endian layout.
                    guid = uuid.UUID(bytes_le=bytes(values[0]))
                except ValueError:
                    logger.warning("Directory entry has malformed objectGUID")
            elif name == "memberOf":
                for value in values:
                    group_dn = _decode(value)
                    if not group_ou:
                        # No base OU configured: keep every group, bare CN only.
                        groups.append(group_dn.split(",", 1)[0].replace("CN=", ""))
                    elif group_ou in group_dn:
                        groups.append(group_dn.replace(f",{group_ou}", "").replace("CN=", ""))
            else:
                attributes[name] = _decode(values[0])

        for key in REQUIRED_ATTRIBUTES:
            attributes.setdefault(key, "")

        if guid is None:
            logger.warning("Directory entry %s has no objectGUID; rejecting", entry.get("dn", "?"))
            return None

        return DirectoryLookupResult(
            guid=guid,
            should_provision=self._settings.directory_auto_provision,
            groups=groups,
            attributes=attributes,
        )


def _decode(value) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)
