"""
store/credentials.py -- Credential persistence and the username exclusivity rule.

A username is bound to at most one scope at a time. The single exception is
promotion: an admin-tools credential is treated as "not yet claimed" by the
global scope, so creating the same username globally moves that row into the
global scope instead of failing. The moved row keeps its id, and with it its
place in creation order.

username_exclusivity() is the create policy injected into the generic
Repository; it has no database access of its own and is tested directly.

Layer rule: imports only core/ and store/.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Optional

from sqlalchemy.engine import Engine

from core.errors import CredentialNotFound, DuplicateUsername
from core.models import ADMIN_TOOLS, GLOBAL, SINGLETON_SCOPES, Credential
from store.repository import Repository
from store.schema import auth_users

logger = logging.getLogger("proxyauth.store.credentials")


def username_exclusivity(candidate: dict, conflicts: list[Credential]) -> Optional[int]:
    """Create policy for credentials.

    Returns None (insert) when the username is free, or the id of the
    admin-tools row to promote when the candidate is global and that row is
    the only holder of the username. Any other holder raises DuplicateUsername.
    """
    if not conflicts:
        return None
    if (
        candidate["scope_key"] == GLOBAL
        and len(conflicts) == 1
        and conflicts[0].scope_key == ADMIN_TOOLS
    ):
        logger.info("Promoting admin-tools credential %r to global scope", candidate["username"])
        return conflicts[0].id
    holder = next((c for c in conflicts if c.scope_key != candidate["scope_key"]), conflicts[0])
    raise DuplicateUsername(candidate["username"], holder.scope_key)


class CredentialRepository:
    """CRUD over credential records.

    Usage:
        creds = CredentialRepository(engine)
        creds.create("global", "admin", "s3cret")
        creds.find(scope_key="example.com")
        creds.update(["example.com"], "admin", "n3w")
        creds.delete("example.com", "admin")
    """

    def __init__(self, engine: Engine) -> None:
        self._repo: Repository[Credential] = Repository(
            engine,
            auth_users,
            _row_to_credential,
            policy=username_exclusivity,
            conflict_columns=("username",),
        )

    def find(self, scope_key: Optional[str] = None, username: Optional[str] = None) -> list[Credential]:
        """Return matching credentials in creation order (lowest id first)."""
        return self._repo.find(scope_key=scope_key, username=username)

    def has_any(self, scope_key: str) -> bool:
        return self._repo.exists(scope_key=scope_key)

    def create(self, scope_key: str, username: str, secret: str) -> Credential:
        """Insert a credential, or promote a matching admin-tools one into global.

        Raises DuplicateUsername with no mutation if the username is held
        anywhere else.
        """
        return self._repo.create({"scope_key": scope_key, "username": username, "secret": secret})

    def update(self, scope_keys: Sequence[str], username: str, secret: str) -> list[Credential]:
        """Replace the secret of username in each of scope_keys.

        Several scope keys make a compound update (e.g. a site plus
        admin-tools). Scopes where the username is absent are skipped; if it
        is absent from all of them, CredentialNotFound is raised.
        """
        updated = self._repo.update({"scope_key": list(scope_keys), "username": username}, {"secret": secret})
        if not updated:
            raise CredentialNotFound(scope_keys[0] if len(scope_keys) == 1 else ", ".join(scope_keys), username)
        return updated

    def delete(self, scope_key: str, username: Optional[str] = None) -> list[Credential]:
        """Delete username from scope_key, or every credential of the scope if
        username is None. Returns the removed rows.
        """
        removed = self._repo.delete(scope_key=scope_key, username=username)
        if not removed:
            raise CredentialNotFound(scope_key, username)
        return removed

    def purge(self, scope_key: str) -> list[Credential]:
        """Delete every credential of scope_key; an empty scope is not an error."""
        return self._repo.delete(scope_key=scope_key)

    def site_scopes(self) -> list[str]:
        """Distinct site scope keys that hold at least one credential."""
        return [key for key in self._repo.distinct("scope_key") if key not in SINGLETON_SCOPES]


def _row_to_credential(row) -> Credential:
    return Credential(
        id=row.id,
        scope_key=row.scope_key,
        username=row.username,
        secret=row.secret,
        created_at=row.created_at,
    )
