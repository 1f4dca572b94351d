"""
store/whitelist.py -- IP whitelist persistence.

Two ways in:
  create -- start a whitelist for a scope. Rejected if the scope already has
            entries; growing an existing whitelist goes through append.
  append -- add IPs, silently skipping those already present.

Every IP is validated (core.ip.validate_ip) before anything is written, so a
single bad address in a batch stores nothing.

Layer rule: imports only core/ and store/.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Optional

from sqlalchemy.engine import Engine

from core.errors import WhitelistAlreadyExists, WhitelistEntryNotFound
from core.ip import dedupe, validate_ip
from core.models import SINGLETON_SCOPES, WhitelistEntry, WhitelistRemoval
from store.repository import Repository
from store.schema import auth_ips

logger = logging.getLogger("proxyauth.store.whitelist")


def skip_existing_ip(candidate: dict, conflicts: list[WhitelistEntry]) -> Optional[int]:
    """Create policy: an IP already whitelisted for the scope is a no-op."""
    return conflicts[0].id if conflicts else None


class WhitelistRepository:
    def __init__(self, engine: Engine) -> None:
        self._repo: Repository[WhitelistEntry] = Repository(
            engine,
            auth_ips,
            _row_to_entry,
            policy=skip_existing_ip,
            conflict_columns=("scope_key", "ip"),
        )

    def find(self, scope_key: Optional[str] = None, ip: Optional[str] = None) -> list[WhitelistEntry]:
        return self._repo.find(scope_key=scope_key, ip=ip)

    def ips(self, scope_key: str) -> list[str]:
        return [entry.ip for entry in self.find(scope_key=scope_key)]

    def has_any(self, scope_key: str) -> bool:
        return self._repo.exists(scope_key=scope_key)

    def create(self, scope_key: str, ips: Iterable[str]) -> list[WhitelistEntry]:
        """Start the whitelist of scope_key.

        Raises InvalidIP for any unparsable address and WhitelistAlreadyExists
        if the scope has entries. Either way nothing is stored.
        """
        valid = dedupe([validate_ip(ip) for ip in ips])
        if self.has_any(scope_key):
            raise WhitelistAlreadyExists(scope_key)
        return self._repo.create_many({"scope_key": scope_key, "ip": ip} for ip in valid)

    def append(self, scope_key: str, ips: Iterable[str]) -> list[WhitelistEntry]:
        """Add ips to scope_key. Returns only the entries that were new."""
        valid = dedupe([validate_ip(ip) for ip in ips])
        existing = set(self.ips(scope_key))
        fresh = [ip for ip in valid if ip not in existing]
        if len(fresh) < len(valid):
            logger.debug("Skipping %d already whitelisted IP(s) on %s", len(valid) - len(fresh), scope_key)
        return self._repo.create_many({"scope_key": scope_key, "ip": ip} for ip in fresh)

    def delete(self, scope_key: str, ips: Iterable[str]) -> WhitelistRemoval:
        """Remove the given ips from scope_key.

        Raises WhitelistEntryNotFound if none of them were whitelisted.
        IPs that were not present are reported in the result's `missing`.
        """
        requested = dedupe([ip.strip() for ip in ips if ip.strip()])
        removed = self._repo.delete(scope_key=scope_key, ip=requested)
        removed_ips = [entry.ip for entry in removed]
        if not removed_ips:
            raise WhitelistEntryNotFound(scope_key, requested)
        return WhitelistRemoval(
            removed=removed_ips,
            missing=[ip for ip in requested if ip not in removed_ips],
        )

    def delete_all(self, scope_key: str) -> WhitelistRemoval:
        """Remove every entry of scope_key. Raises WhitelistEntryNotFound if it had none."""
        removed = self.purge(scope_key)
        if not removed:
            raise WhitelistEntryNotFound(scope_key)
        return WhitelistRemoval(removed=[entry.ip for entry in removed])

    def purge(self, scope_key: str) -> list[WhitelistEntry]:
        return self._repo.delete(scope_key=scope_key)

    def site_scopes(self) -> list[str]:
        return [key for key in self._repo.distinct("scope_key") if key not in SINGLETON_SCOPES]


def _row_to_entry(row) -> WhitelistEntry:
    return WhitelistEntry(
        id=row.id,
        scope_key=row.scope_key,
        ip=row.ip,
        created_at=row.created_at,
    )
