"""Unit tests for core/scope.py and store/sites.py."""

import pytest

from core.errors import ScopeDisabled, ScopeNotFound
from core.models import ADMIN_TOOLS, GLOBAL
from core.scope import ScopeResolver


@pytest.fixture
def resolver(sites):
    return ScopeResolver(sites)


class TestScopeResolver:
    def test_global_is_singleton(self, resolver):
        scope = resolver.resolve("global")
        assert scope.key == GLOBAL
        assert scope.is_singleton
        assert scope.is_global

    def test_admin_tools_is_singleton(self, resolver):
        scope = resolver.resolve("admin-tools")
        assert scope.key == ADMIN_TOOLS
        assert scope.is_singleton
        assert scope.is_admin_tools

    def test_enabled_site_resolves(self, resolver):
        scope = resolver.resolve("example.com")
        assert scope.key == "example.com"
        assert not scope.is_singleton

    def test_trailing_slash_is_dropped(self, resolver):
        assert resolver.resolve("example.com/").key == "example.com"

    def test_unknown_site_raises_not_found(self, resolver):
        with pytest.raises(ScopeNotFound):
            resolver.resolve("missing.io")

    def test_disabled_site_raises_disabled(self, resolver):
        with pytest.raises(ScopeDisabled):
            resolver.resolve("disabled.net")

    def test_empty_token_raises_not_found(self, resolver):
        with pytest.raises(ScopeNotFound):
            resolver.resolve("")


class TestSiteDirectory:
    def test_list_sites_sorted(self, sites):
        assert [s.site_url for s in sites.list_sites()] == ["disabled.net", "example.com", "other.org"]

    def test_register_site_updates_enabled_flag(self, sites):
        sites.register_site("disabled.net", enabled=True)
        assert sites.find("disabled.net").enabled is True

    def test_remove_site(self, sites):
        assert sites.remove_site("other.org") is True
        assert sites.find("other.org") is None
        assert sites.remove_site("other.org") is False
