"""
tests/test_roles.py -- Unit tests for RoleCache and directory group mapping.

Coverage:
  - Roles without a directory group never map
  - Groups without a linked role are ignored
  - Duplicate group CN: first role in cache order wins
  - Cache upsert/remove keep lookups in step with admin writes
"""

from __future__ import annotations

import uuid

from auth.models import DirectoryLookupResult, Role
from auth.roles import RoleCache, map_groups_to_roles


def _cache(*roles: Role) -> RoleCache:
    cache = RoleCache(lambda: list(roles))
    cache.reload()
    return cache


def _lookup(*groups: str) -> DirectoryLookupResult:
    return DirectoryLookupResult(guid=uuid.uuid4(), groups=list(groups))


class TestGroupMapping:
    def test_only_linked_roles_map(self) -> None:
        """Roles {1: "Admins", 2: ""} and groups ["Admins", "Users"] -> exactly role 1."""
        cache = _cache(
            Role(id=1, name="Admin", normalized_name="ADMIN", directory_group_cn="Admins"),
            Role(id=2, name="Viewer", normalized_name="VIEWER", directory_group_cn=""),
        )
        assignments = map_groups_to_roles(_lookup("Admins", "Users"), cache)
        assert len(assignments) == 1
        assert assignments[0].role_id == 1
        assert assignments[0].is_active is True

    def test_no_matching_groups_gives_empty_list(self) -> None:
        cache = _cache(Role(id=1, name="Admin", normalized_name="ADMIN", directory_group_cn="Admins"))
        assert map_groups_to_roles(_lookup("Users"), cache) == []

    def test_duplicate_group_first_role_wins(self) -> None:
        cache = _cache(
            Role(id=1, name="Ops", normalized_name="OPS", directory_group_cn="Staff"),
            Role(id=2, name="Staff", normalized_name="STAFF", directory_group_cn="Staff"),
        )
        assignments = map_groups_to_roles(_lookup("Staff"), cache)
        assert [a.role_id for a in assignments] == [1]

    def test_group_match_is_exact(self) -> None:
        cache = _cache(Role(id=1, name="Admin", normalized_name="ADMIN", directory_group_cn="Admins"))
        assert map_groups_to_roles(_lookup("admins", "Admins-RO"), cache) == []


class TestRoleCache:
    def test_reload_reads_loader(self) -> None:
        roles = [Role(id=1, name="Admin", normalized_name="ADMIN")]
        cache = RoleCache(lambda: roles)
        assert cache.all_roles() == ()
        cache.reload()
        assert cache.find_by_id(1).normalized_name == "ADMIN"

    def test_upsert_replaces_in_place(self) -> None:
        cache = _cache(
            Role(id=1, name="Admin", normalized_name="ADMIN"),
            Role(id=2, name="Viewer", normalized_name="VIEWER"),
        )
        cache.upsert(Role(id=1, name="Root", normalized_name="ROOT"))
        assert [r.normalized_name for r in cache.all_roles()] == ["ROOT", "VIEWER"]

    def test_upsert_appends_new_role(self) -> None:
        cache = _cache(Role(id=1, name="Admin", normalized_name="ADMIN"))
        cache.upsert(Role(id=5, name="Audit", normalized_name="AUDIT"))
        assert cache.find_by_id(5) is not None
        assert len(cache.all_roles()) == 2

    def test_remove(self) -> None:
        cache = _cache(Role(id=1, name="Admin", normalized_name="ADMIN"))
        cache.remove(1)
        assert cache.find_by_id(1) is None

    def test_snapshot_is_unaffected_by_later_writes(self) -> None:
        cache = _cache(Role(id=1, name="Admin", normalized_name="ADMIN"))
        snapshot = cache.all_roles()
        cache.remove(1)
        assert len(snapshot) == 1

    def test_find_by_none(self) -> None:
        assert _cache().find_by_id(None) is None
