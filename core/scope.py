"""
core/scope.py -- Turns a raw scope token into a resolved Scope.

Accepted tokens: "global", "admin-tools", or a site name. A trailing slash on
a site name is dropped ("example.com/" -> "example.com"). Site tokens are
checked against the site directory; singleton tokens are not.

No side effects: resolution only reads from the site lookup.
"""

from typing import Optional, Protocol

from core.errors import ScopeDisabled, ScopeNotFound
from core.models import SINGLETON_SCOPES, Scope, Site


class SiteLookup(Protocol):
    def find(self, site_url: str) -> Optional[Site]: ...


def normalize_token(token: str) -> str:
    return token.strip().rstrip("/")


class ScopeResolver:
    def __init__(self, sites: SiteLookup) -> None:
        self._sites = sites

    def resolve(self, token: str) -> Scope:
        """Return the canonical Scope for token.

        Raises ScopeNotFound if the site does not exist (or token is empty)
        and ScopeDisabled if it exists but is not enabled.
        """
        key = normalize_token(token or "")
        if key in SINGLETON_SCOPES:
            return Scope(key=key, is_singleton=True)
        if not key:
            raise ScopeNotFound(token or "")
        site = self._sites.find(key)
        if site is None:
            raise ScopeNotFound(key)
        if not site.enabled:
            raise ScopeDisabled(key)
        return Scope(key=site.site_url, is_singleton=False)
