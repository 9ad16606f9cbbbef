"""
auth/roles.py -- Read-through role cache and directory-group -> role mapping.

RoleCache is loaded once at startup (reload()) and then kept in sync by
explicit upsert()/remove() calls from the admin role routes. It is owned by
the application (app.state.role_cache) and passed to whoever needs it; there
is no module-level cache.

Concurrency: readers get an immutable tuple snapshot. Writers build a new
tuple under a lock and swap it in, so a reader iterating the old snapshot is
never affected by a concurrent write.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable

from auth.models import DirectoryLookupResult, Role, RoleAssignment

logger = logging.getLogger("identitygate.auth.roles")


class RoleCache:
    """In-memory copy of the roles table.

    Args:
        loader: Zero-argument callable returning the current list of roles,
                typically RoleStore.list_roles.
    """

    def __init__(self, loader: Callable[[], list[Role]]) -> None:
        self._loader = loader
        self._lock = threading.Lock()
        self._roles: tuple[Role, ...] = ()

    def reload(self) -> None:
        """Replace the whole snapshot with a fresh read from the loader."""
        roles = tuple(self._loader())
        with self._lock:
            self._roles = roles
        _warn_duplicate_groups(roles)
        logger.info("Role cache loaded (%d roles)", len(roles))

    def all_roles(self) -> tuple[Role, ...]:
        return self._roles

    def find_by_id(self, role_id: int | None) -> Role | None:
        if role_id is None:
            return None
        for role in self._roles:
            if role.id == role_id:
                return role
        return None

    def upsert(self, role: Role) -> None:
        """Insert role, or replace the cached role with the same id in place."""
        with self._lock:
            roles = list(self._roles)
            for index, existing in enumerate(roles):
                if existing.id == role.id:
                    roles[index] = role
                    break
            else:
                roles.append(role)
            self._roles = tuple(roles)

    def remove(self, role_id: int) -> None:
        with self._lock:
            self._roles = tuple(r for r in self._roles if r.id != role_id)


def _warn_duplicate_groups(roles: tuple[Role, ...]) -> None:
    seen: set[str] = set()
    for role in roles:
        cn = role.directory_group_cn
        if not cn:
            continue
        if cn in seen:
            logger.warning(
                "Directory group %r is linked to more than one role; role %r is ignored for mapping",
                cn,
                role.normalized_name,
            )
        seen.add(cn)


def map_groups_to_roles(result: DirectoryLookupResult, role_cache: RoleCache) -> list[RoleAssignment]:
    """Translate directory group membership into active role assignments.

    Only roles with a non-empty directory_group_cn take part. Assignments are
    emitted in role cache order; a role whose group the user is not in
    contributes nothing, so the result may be empty. When two roles share a
    group CN, the first one wins.
    """
    groups = set(result.groups)
    claimed: set[str] = set()
    assignments: list[RoleAssignment] = []
    for role in role_cache.all_roles():
        cn = role.directory_group_cn
        if not cn or cn in claimed:
            continue
        if cn in groups:
            claimed.add(cn)
            assignments.append(RoleAssignment(role_id=role.id, is_active=True))
    return assignments
