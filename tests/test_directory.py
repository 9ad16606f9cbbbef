"""
tests/test_directory.py -- Unit tests for DirectoryClient.

No directory server is needed: _open_connection is replaced with a fake
bound connection that records the search and serves a canned response in
ldap3's raw_attributes shape.

Coverage:
  - objectGUID decoded from AD's little-endian byte layout
  - memberOf filtered to the configured group OU and reduced to bare CNs
  - Required attributes always present ("" when absent)
  - Missing objectGUID, empty result and LDAP errors all yield None
  - Disabled directory and empty credentials never touch the network
  - sAMAccountName filter is escaped
"""

from __future__ import annotations

import uuid

import pytest
from ldap3.core.exceptions import LDAPBindError, LDAPSocketOpenError

from auth.directory import DirectoryClient
from core.config import Settings

GROUP_OU = "OU=Groups,DC=example,DC=com"


def _settings(**overrides) -> Settings:
    values = dict(
        debug=True,
        secret_key="k" * 32,
        directory_enabled=True,
        directory_server="ldap://dc01.example.com",
        directory_domain="EXAMPLE",
        directory_base_dn="DC=example,DC=com",
        directory_group_base_ou=GROUP_OU,
        directory_auto_provision=True,
    )
    values.update(overrides)
    return Settings(**values)


class FakeConnection:
    def __init__(self, entries: list[dict], found: bool = True) -> None:
        self.response = entries
        self.found = found
        self.searches: list[dict] = []
        self.unbound = False

    def search(self, **kwargs) -> bool:
        self.searches.append(kwargs)
        return self.found

    def unbind(self) -> None:
        self.unbound = True


def _entry(guid: uuid.UUID | None = None, **raw) -> dict:
    attributes = {
        "mail": [b"alice@example.com"],
        "givenName": [b"Alice"],
        "sn": [b"Smith"],
        "memberOf": [
            f"CN=Admins,{GROUP_OU}".encode(),
            b"CN=Printers,OU=Devices,DC=example,DC=com",
        ],
    }
    if guid is not None:
        attributes["objectGUID"] = [guid.bytes_le]
    attributes.update(raw)
    return {"type": "searchResEntry", "dn": "CN=Alice,DC=example,DC=com", "raw_attributes": attributes}


@pytest.fixture
def fake_connect(monkeypatch):
    """Install a fake connection factory; returns a setter for the connection to hand out."""
    holder: dict = {}

    def _open(self, username, password):
        if "error" in holder:
            raise holder["error"]
        return holder["conn"]

    monkeypatch.setattr(DirectoryClient, "_open_connection", _open)

    def install(conn: FakeConnection | None = None, error: Exception | None = None) -> None:
        if error is not None:
            holder["error"] = error
        holder["conn"] = conn

    return install


class TestAuthenticateSuccess:
    def test_guid_groups_and_attributes(self, fake_connect) -> None:
        guid = uuid.uuid4()
        conn = FakeConnection([_entry(guid)])
        fake_connect(conn)

        result = DirectoryClient(_settings()).authenticate("alice", "pw")

        assert result is not None
        assert result.guid == guid
        assert result.groups == ["Admins"]
        assert result.attributes["mail"] == "alice@example.com"
        assert result.attributes["givenName"] == "Alice"
        assert result.should_provision is True
        assert conn.unbound is True

    def test_missing_attributes_backfilled_empty(self, fake_connect) -> None:
        entry = _entry(uuid.uuid4())
        del entry["raw_attributes"]["mail"]
        fake_connect(FakeConnection([entry]))

        result = DirectoryClient(_settings()).authenticate("alice", "pw")

        assert result.attributes["mail"] == ""
        assert result.attributes["displayName"] == ""

    def test_empty_group_ou_keeps_every_group(self, fake_connect) -> None:
        fake_connect(FakeConnection([_entry(uuid.uuid4())]))
        result = DirectoryClient(_settings(directory_group_base_ou="")).authenticate("alice", "pw")
        assert result.groups == ["Admins", "Printers"]

    def test_auto_provision_flag_is_carried(self, fake_connect) -> None:
        fake_connect(FakeConnection([_entry(uuid.uuid4())]))
        result = DirectoryClient(_settings(directory_auto_provision=False)).authenticate("alice", "pw")
        assert result.should_provision is False

    def test_filter_is_escaped(self, fake_connect) -> None:
        conn = FakeConnection([_entry(uuid.uuid4())])
        fake_connect(conn)
        DirectoryClient(_settings()).authenticate("a*)(cn=b", "pw")
        search_filter = conn.searches[0]["search_filter"]
        assert "*" not in search_filter
        assert search_filter.startswith("(sAMAccountName=a\\2a\\29\\28cn=b")


class TestAuthenticateFailure:
    def test_entry_without_guid_is_rejected(self, fake_connect) -> None:
        fake_connect(FakeConnection([_entry(None)]))
        assert DirectoryClient(_settings()).authenticate("alice", "pw") is None

    def test_no_search_result(self, fake_connect) -> None:
        conn = FakeConnection([], found=False)
        fake_connect(conn)
        assert DirectoryClient(_settings()).authenticate("alice", "pw") is None
        assert conn.unbound is True

    def test_referrals_only_is_no_result(self, fake_connect) -> None:
        fake_connect(FakeConnection([{"type": "searchResRef", "uri": ["ldap://other"]}]))
        assert DirectoryClient(_settings()).authenticate("alice", "pw") is None

    @pytest.mark.parametrize("error", [LDAPBindError("invalid credentials"), LDAPSocketOpenError("unreachable")])
    def test_ldap_errors_become_none(self, fake_connect, error) -> None:
        fake_connect(error=error)
        assert DirectoryClient(_settings()).authenticate("alice", "pw") is None

    def test_disabled_directory_never_connects(self, fake_connect) -> None:
        fake_connect(error=AssertionError("must not connect"))
        assert DirectoryClient(_settings(directory_enabled=False)).authenticate("alice", "pw") is None

    @pytest.mark.parametrize("username,password", [("", "pw"), ("alice", "")])
    def test_empty_credentials_never_connect(self, fake_connect, username, password) -> None:
        fake_connect(error=AssertionError("must not connect"))
        assert DirectoryClient(_settings()).authenticate(username, password) is None


class TestSettingsValidation:
    def test_enabled_directory_requires_server(self) -> None:
        with pytest.raises(ValueError):
            _settings(directory_server="")

    def test_ntlm_requires_domain(self) -> None:
        with pytest.raises(ValueError):
            _settings(directory_domain="")

    def test_simple_bind_without_domain_is_allowed(self) -> None:
        settings = _settings(directory_domain="", directory_authentication="SIMPLE")
        assert settings.directory_authentication == "SIMPLE"
