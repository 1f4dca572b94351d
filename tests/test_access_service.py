"""Integration tests for access/service.py -- the full command pipeline.

Each test drives AccessControl against an in-memory store and tmp proxy
directories, then asserts on both the store and the files on disk.

Covers:
- End-to-end scenario: global + site credentials, then global delete
- Promotion of admin-tools credentials through the pipeline
- Whitelist create guard, append idempotence, removal
- Reload is triggered after every mutation
- Failures after the store commit surface as PartiallyApplied; repair fixes files
- Hashing tool check happens before any mutation
- Site cleanup hook and admin-tools bootstrap
"""

import pytest

from core.errors import (
    CredentialNotFound,
    CredentialWriteError,
    DuplicateUsername,
    HashingToolUnavailable,
    InvalidIP,
    PartiallyApplied,
    ProxyReloadError,
    WhitelistAlreadyExists,
    WhitelistEntryNotFound,
)
from core.models import ADMIN_TOOLS, GLOBAL


def _lines(path):
    return path.read_text(encoding="utf-8").splitlines()


@pytest.fixture
def global_scope(access):
    return access.resolve_scope("global")


@pytest.fixture
def site(access):
    return access.resolve_scope("example.com")


# ===========================================================================
# Credentials
# ===========================================================================


class TestCredentialPipeline:
    def test_scenario_global_then_site_then_delete_global(self, access, global_scope, site, dirs):
        access.create_credential(global_scope, "admin", "s1")
        access.create_credential(site, "ee-42", "s2")

        assert _lines(dirs.htpasswd / "example.com") == ["admin:s1", "ee-42:s2"]

        access.delete_credential(global_scope, "admin")

        assert _lines(dirs.htpasswd / "example.com") == ["ee-42:s2"]
        assert not (dirs.htpasswd / "default").exists()

    def test_create_defaults_username_and_generates_secret(self, access, site):
        credential = access.create_credential(site)
        assert credential.username == "easyengine"
        assert len(credential.secret) >= 16

    def test_duplicate_username_across_scopes_rejected(self, access, global_scope, site, reloader):
        access.create_credential(global_scope, "admin", "s1")
        reloader.reset_mock()
        with pytest.raises(DuplicateUsername):
            access.create_credential(site, "admin", "s2")
        reloader.reload.assert_not_called()

    def test_promotion_through_pipeline(self, access, global_scope, dirs):
        admin_tools = access.resolve_scope("admin-tools")
        original = access.create_credential(admin_tools, "easyengine", "old")
        assert (dirs.htpasswd / "default_admin_tools").exists()

        promoted = access.create_credential(global_scope, "easyengine", "new")

        assert promoted.id == original.id
        assert promoted.scope_key == GLOBAL
        assert not (dirs.htpasswd / "default_admin_tools").exists()
        assert _lines(dirs.htpasswd / "default") == ["easyengine:new"]

    def test_update_rewrites_file(self, access, site, dirs):
        access.create_credential(site, "bob", "old")
        access.update_credential(site, "bob", "new")
        assert _lines(dirs.htpasswd / "example.com") == ["bob:new"]

    def test_update_missing_user(self, access, site):
        with pytest.raises(CredentialNotFound):
            access.update_credential(site, "ghost", "pw")

    def test_compound_update_includes_admin_tools(self, access, site, credentials):
        credentials.create(ADMIN_TOOLS, "ops", "old")
        updated = access.update_credential(site, "ops", "new", include_admin_tools=True)
        assert [c.scope_key for c in updated] == [ADMIN_TOOLS]
        assert credentials.find(username="ops")[0].secret == "new"

    def test_delete_all_in_scope_removes_file(self, access, site, dirs):
        access.create_credential(site, "a", "1")
        access.create_credential(site, "b", "2")
        removed = access.delete_credential(site)
        assert len(removed) == 2
        assert not (dirs.htpasswd / "example.com").exists()

    def test_list_credentials(self, access, site):
        access.create_credential(site, "a", "1")
        access.create_credential(site, "b", "2")
        assert [c.username for c in access.list_credentials(site)] == ["a", "b"]

    def test_reload_after_each_mutation(self, access, site, reloader):
        access.create_credential(site, "a", "1")
        access.update_credential(site, "a", "2")
        access.delete_credential(site, "a")
        assert reloader.reload.call_count == 3


# ===========================================================================
# Whitelist
# ===========================================================================


class TestWhitelistPipeline:
    def test_create_writes_acl(self, access, site, dirs):
        access.create_whitelist(site, ["10.0.0.1"])
        assert _lines(dirs.vhost / "example.com_acl") == ["satisfy any;", "allow 10.0.0.1;", "deny all;"]

    def test_second_create_rejected(self, access, site):
        access.create_whitelist(site, ["10.0.0.1"])
        with pytest.raises(WhitelistAlreadyExists):
            access.create_whitelist(site, ["10.0.0.2"])
        assert access.list_whitelist(site) == ["10.0.0.1"]

    def test_invalid_ip_stores_nothing(self, access, site, dirs):
        with pytest.raises(InvalidIP):
            access.create_whitelist(site, ["300.1.1.1"])
        assert access.list_whitelist(site) == []
        assert not (dirs.vhost / "example.com_acl").exists()

    @pytest.mark.parametrize("ip", ["10.0.0.1/abc", "10.0.0.2/999", "::1/200"])
    def test_bad_subnet_suffix_stores_nothing(self, access, site, dirs, ip):
        with pytest.raises(InvalidIP):
            access.create_whitelist(site, ["10.0.0.5", ip])
        assert access.list_whitelist(site) == []
        assert not (dirs.vhost / "example.com_acl").exists()

    def test_subnet_entry_written_to_acl(self, access, site):
        access.create_whitelist(site, ["10.0.0.0/24"])
        assert access.acl_files.read("example.com") == ["10.0.0.0/24"]

    def test_empty_ip_list_rejected(self, access, site):
        with pytest.raises(InvalidIP):
            access.append_whitelist(site, [])

    def test_append_twice_single_entry(self, access, site):
        access.append_whitelist(site, ["10.0.0.1"])
        access.append_whitelist(site, ["10.0.0.1"])
        assert access.list_whitelist(site) == ["10.0.0.1"]

    def test_global_ips_flow_into_site_acl(self, access, global_scope, site, dirs):
        access.create_whitelist(site, ["2.2.2.2"])
        access.create_whitelist(global_scope, ["1.1.1.1"])
        assert access.acl_files.read("example.com") == ["1.1.1.1", "2.2.2.2"]
        assert access.acl_files.read("other.org") == ["1.1.1.1"]

    def test_remove_some(self, access, site):
        access.create_whitelist(site, ["10.0.0.1", "10.0.0.2"])
        removal = access.remove_whitelist(site, ["10.0.0.1", "10.0.0.7"])
        assert removal.removed == ["10.0.0.1"]
        assert removal.missing == ["10.0.0.7"]
        assert access.acl_files.read("example.com") == ["10.0.0.2"]

    def test_remove_all_deletes_file(self, access, site, dirs):
        access.create_whitelist(site, ["10.0.0.1", "10.0.0.2"])
        access.remove_whitelist(site, "all")
        assert access.list_whitelist(site) == []
        assert not (dirs.vhost / "example.com_acl").exists()

    def test_remove_unknown_ip(self, access, site):
        access.create_whitelist(site, ["10.0.0.1"])
        with pytest.raises(WhitelistEntryNotFound):
            access.remove_whitelist(site, ["10.9.9.9"])


# ===========================================================================
# Failure handling
# ===========================================================================


class TestFailures:
    def test_hashing_tool_unavailable_blocks_mutation(self, access, site, writer, credentials, monkeypatch):
        def unavailable():
            raise HashingToolUnavailable("htpasswd missing")

        monkeypatch.setattr(writer, "check_available", unavailable)
        with pytest.raises(HashingToolUnavailable):
            access.create_credential(site, "a", "1")
        assert credentials.find() == []

    def test_write_failure_after_commit_is_partially_applied(self, access, site, writer, credentials, monkeypatch):
        def broken(*args, **kwargs):
            raise CredentialWriteError("disk full")

        monkeypatch.setattr(writer, "write", broken)
        with pytest.raises(PartiallyApplied) as excinfo:
            access.create_credential(site, "a", "1")

        assert isinstance(excinfo.value.cause, CredentialWriteError)
        assert excinfo.value.result.username == "a"
        assert [c.username for c in credentials.find(scope_key="example.com")] == ["a"]

    def test_reload_failure_is_partially_applied(self, access, site, reloader):
        reloader.reload.side_effect = ProxyReloadError("nginx down")
        with pytest.raises(PartiallyApplied) as excinfo:
            access.create_whitelist(site, ["10.0.0.1"])
        assert excinfo.value.context["scope"] == "example.com"
        assert access.list_whitelist(site) == ["10.0.0.1"]

    def test_repair_failure_is_partially_applied(self, access, site, whitelist, reloader, monkeypatch):
        whitelist.create("example.com", ["10.0.0.1"])

        def unwritable(scope_key):
            raise PermissionError("vhost.d is read-only")

        monkeypatch.setattr(access.acl_files, "regenerate", unwritable)
        with pytest.raises(PartiallyApplied) as excinfo:
            access.repair(site)

        assert isinstance(excinfo.value.cause, PermissionError)
        assert excinfo.value.to_dict()["error"] == "PARTIALLY_APPLIED"
        assert excinfo.value.to_dict()["context"] == {"scope": "example.com"}
        reloader.reload.assert_not_called()

    def test_repair_rebuilds_from_store(self, access, site, credentials, whitelist, dirs):
        credentials.create("example.com", "a", "1")
        whitelist.create("example.com", ["10.0.0.1"])
        assert not (dirs.htpasswd / "example.com").exists()

        access.repair(site)

        assert _lines(dirs.htpasswd / "example.com") == ["a:1"]
        assert access.acl_files.read("example.com") == ["10.0.0.1"]


# ===========================================================================
# Lifecycle hooks
# ===========================================================================


class TestCleanupSite:
    def test_cleanup_removes_rows_and_files(self, access, site, credentials, whitelist, dirs):
        access.create_credential(site, "a", "1")
        access.create_whitelist(site, ["10.0.0.1"])

        assert access.cleanup_site("example.com") is True

        assert credentials.find(scope_key="example.com") == []
        assert whitelist.find(scope_key="example.com") == []
        assert not (dirs.htpasswd / "example.com").exists()
        assert not (dirs.vhost / "example.com_acl").exists()

    def test_cleanup_unknown_site_is_no_op(self, access, reloader):
        assert access.cleanup_site("missing.io") is False
        reloader.reload.assert_not_called()


class TestAdminToolsBootstrap:
    def test_creates_admin_tools_credential_and_whitelists_frontend(self, access, dirs):
        credential = access.ensure_admin_tools_auth()

        assert credential.scope_key == ADMIN_TOOLS
        assert credential.username == "easyengine"
        assert (dirs.htpasswd / "default_admin_tools").exists()
        assert access.acl_files.read(GLOBAL) == ["172.18.0.0/16"]

    def test_skipped_when_global_auth_exists(self, access, global_scope):
        access.create_credential(global_scope, "admin", "s1")
        assert access.ensure_admin_tools_auth() is None
        assert access.credentials.find(scope_key=ADMIN_TOOLS) == []

    def test_second_call_is_no_op(self, access):
        access.ensure_admin_tools_auth()
        assert access.ensure_admin_tools_auth() is None
