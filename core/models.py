"""
core/models.py -- Domain dataclasses for scoped access control.

Pure data containers with zero logic. Entities are frozen: stores hand out
new instances instead of mutating the ones a caller already holds.
"""

from dataclasses import dataclass, field
from typing import Optional

# ---------------------------------------------------------------------------
# Domain constants
# ---------------------------------------------------------------------------

# Singleton scope keys. Every other scope key is a site identifier.
GLOBAL = "global"
ADMIN_TOOLS = "admin-tools"
SINGLETON_SCOPES = (GLOBAL, ADMIN_TOOLS)

# Sentinel accepted by whitelist removal to drop every entry of a scope.
ALL_IPS = "all"


@dataclass(frozen=True)
class Scope:
    """A resolved scope: canonical key plus whether it is a singleton scope."""

    key: str
    is_singleton: bool

    @property
    def is_global(self) -> bool:
        return self.key == GLOBAL

    @property
    def is_admin_tools(self) -> bool:
        return self.key == ADMIN_TOOLS


@dataclass(frozen=True)
class Credential:
    """A Basic-Auth username/secret pair bound to one scope.

    secret is the plaintext password. It is stored and handed unchanged to
    the credential writer, which hashes it on every materialization.

    id reflects creation order and is the sort key for file materialization.
    It is None only for records not yet written to the store.
    """

    scope_key: str
    username: str
    secret: str = field(repr=False)
    id: Optional[int] = None
    created_at: str = ""  # ISO 8601, set by store on insert


@dataclass(frozen=True)
class WhitelistEntry:
    scope_key: str
    ip: str  # as given, including any /subnet suffix
    id: Optional[int] = None
    created_at: str = ""


@dataclass(frozen=True)
class Site:
    site_url: str
    enabled: bool = True


@dataclass
class WhitelistRemoval:
    """Outcome of a whitelist removal.

    removed -- IPs that were present and are now deleted
    missing -- requested IPs that were not in the whitelist
    """

    removed: list[str] = field(default_factory=list)
    missing: list[str] = field(default_factory=list)
