"""
access/service.py -- The command pipeline for scoped credentials and whitelists.

Every mutating command runs the same linear pipeline:

    resolve scope -> validate + mutate store -> materialize files -> reload proxy

Validation failures (DuplicateUsername, InvalidIP, ...) are raised before the
store changes and leave no trace. Once the store mutation has committed, any
failure while rebuilding files or reloading the proxy is re-raised as
PartiallyApplied: the store holds the new state and `repair` re-derives the
files from it.

No print statements. Presentation and exit codes belong to main.py.

Usage:
    access = AccessControl.from_settings()
    scope = access.resolve_scope("example.com")
    access.create_credential(scope, "admin", "s3cret")
    access.append_whitelist(access.resolve_scope("global"), ["10.0.0.1"])
    access.close()
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable, Iterable, Sequence
from typing import Any, Optional, Union

from sqlalchemy.engine import Engine

from core.config import Settings, get_settings
from core.errors import InvalidIP, MaterializationError, PartiallyApplied
from core.models import ADMIN_TOOLS, ALL_IPS, GLOBAL, Credential, Scope, WhitelistEntry, WhitelistRemoval
from core.scope import ScopeResolver
from materialize.credentials import CredentialFileMaterializer
from materialize.proxy import ProxyReloader
from materialize.whitelist import WhitelistFileMaterializer
from materialize.writers import CredentialWriter, build_writer
from store.credentials import CredentialRepository
from store.schema import create_store_engine
from store.sites import SiteDirectory
from store.whitelist import WhitelistRepository

logger = logging.getLogger("proxyauth.access")


def generate_secret() -> str:
    """Random password for credentials created without one."""
    return secrets.token_urlsafe(18)


class AccessControl:
    def __init__(
        self,
        credentials: CredentialRepository,
        whitelist: WhitelistRepository,
        sites: SiteDirectory,
        writer: CredentialWriter,
        reloader: ProxyReloader,
        credential_files: CredentialFileMaterializer,
        acl_files: WhitelistFileMaterializer,
        default_username: str = "easyengine",
        frontend_subnet_ip: str = "",
        engine: Optional[Engine] = None,
    ) -> None:
        self.credentials = credentials
        self.whitelist = whitelist
        self.sites = sites
        self.writer = writer
        self.reloader = reloader
        self.credential_files = credential_files
        self.acl_files = acl_files
        self.resolver = ScopeResolver(sites)
        self.default_username = default_username
        self.frontend_subnet_ip = frontend_subnet_ip
        self._engine = engine
        self._hasher_checked = False

    @classmethod
    def from_settings(
        cls,
        settings: Optional[Settings] = None,
        writer: Optional[CredentialWriter] = None,
        reloader: Optional[ProxyReloader] = None,
    ) -> "AccessControl":
        """Wire the store, writer, reloader and materializers from Settings."""
        settings = settings or get_settings()
        engine = create_store_engine(settings.db_url)
        credentials = CredentialRepository(engine)
        whitelist = WhitelistRepository(engine)
        sites = SiteDirectory(engine)
        writer = writer or build_writer(settings)
        return cls(
            credentials=credentials,
            whitelist=whitelist,
            sites=sites,
            writer=writer,
            reloader=reloader or ProxyReloader(settings.reload_command),
            credential_files=CredentialFileMaterializer(credentials, writer, settings.htpasswd_dir, sites),
            acl_files=WhitelistFileMaterializer(whitelist, settings.vhost_dir, sites),
            default_username=settings.default_username,
            frontend_subnet_ip=settings.frontend_subnet_ip,
            engine=engine,
        )

    def close(self) -> None:
        if self._engine is not None:
            self._engine.dispose()

    # ------------------------------------------------------------------
    # Scope
    # ------------------------------------------------------------------

    def resolve_scope(self, token: str) -> Scope:
        return self.resolver.resolve(token)

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    def create_credential(
        self, scope: Scope, username: Optional[str] = None, secret: Optional[str] = None
    ) -> Credential:
        """Create a credential and rebuild the affected credential files.

        username defaults to the configured default username and secret to a
        random password; the returned Credential carries the secret used.
        """
        self._require_hasher()
        credential = self.credentials.create(scope.key, username or self.default_username, secret or generate_secret())
        logger.info("Auth %r created on %s", credential.username, credential.scope_key)
        # Differs from scope.key only when an admin-tools row was promoted into global.
        self._apply(credential.scope_key, self._rebuild_credentials([scope.key, credential.scope_key]), credential)
        return credential

    def update_credential(
        self,
        scope: Scope,
        username: Optional[str] = None,
        secret: Optional[str] = None,
        include_admin_tools: bool = False,
    ) -> list[Credential]:
        """Replace the secret of username in scope (and admin-tools when asked)."""
        self._require_hasher()
        scope_keys = [scope.key]
        if include_admin_tools and scope.key != ADMIN_TOOLS:
            scope_keys.append(ADMIN_TOOLS)
        updated = self.credentials.update(scope_keys, username or self.default_username, secret or generate_secret())
        logger.info("Auth %r updated on %s", updated[0].username, ", ".join(c.scope_key for c in updated))
        self._apply(scope.key, self._rebuild_credentials([c.scope_key for c in updated]), updated)
        return updated

    def delete_credential(self, scope: Scope, username: Optional[str] = None) -> list[Credential]:
        """Delete one user, or every credential of the scope when username is None."""
        self._require_hasher()
        removed = self.credentials.delete(scope.key, username)
        logger.info("Removed %d auth(s) from %s", len(removed), scope.key)
        self._apply(scope.key, self._rebuild_credentials([scope.key]), removed)
        return removed

    def list_credentials(self, scope: Scope) -> list[Credential]:
        return self.credentials.find(scope_key=scope.key)

    # ------------------------------------------------------------------
    # Whitelist
    # ------------------------------------------------------------------

    def create_whitelist(self, scope: Scope, ips: Iterable[str]) -> list[WhitelistEntry]:
        ips = _require_ips(ips)
        created = self.whitelist.create(scope.key, ips)
        logger.info("Created whitelist for %s with %s", scope.key, ",".join(e.ip for e in created))
        self._apply(scope.key, self._rebuild_acl(scope.key), created)
        return created

    def append_whitelist(self, scope: Scope, ips: Iterable[str]) -> list[WhitelistEntry]:
        ips = _require_ips(ips)
        added = self.whitelist.append(scope.key, ips)
        logger.info("Appended %d IP(s) to whitelist of %s", len(added), scope.key)
        self._apply(scope.key, self._rebuild_acl(scope.key), added)
        return added

    def remove_whitelist(self, scope: Scope, ips: Union[Sequence[str], str]) -> WhitelistRemoval:
        """Remove ips from the scope's whitelist; "all" (or nothing) clears it."""
        if isinstance(ips, str):
            ips = [ips]
        ips = [ip.strip() for ip in ips if ip.strip()]
        if not ips or ips[0] == ALL_IPS:
            removal = self.whitelist.delete_all(scope.key)
        else:
            removal = self.whitelist.delete(scope.key, ips)
        if removal.missing:
            logger.warning("Could not find %s IP's in whitelist of %s", ",".join(removal.missing), scope.key)
        logger.info("Removed %s from whitelist of %s", ",".join(removal.removed), scope.key)
        self._apply(scope.key, self._rebuild_acl(scope.key), removal)
        return removal

    def list_whitelist(self, scope: Scope) -> list[str]:
        return self.whitelist.ips(scope.key)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def repair(self, scope: Scope) -> None:
        """Re-derive the scope's credential and ACL files without changing data.

        A write or reload failure is raised as PartiallyApplied, the same as
        after a mutation, so the caller can retry once the problem is fixed.
        """
        self._require_hasher()
        logger.info("Rebuilding access files for %s", scope.key)

        def rebuild() -> None:
            self.credential_files.regenerate(scope.key)
            self.acl_files.regenerate(scope.key)

        self._apply(scope.key, rebuild, None)

    def cleanup_site(self, site_url: str) -> bool:
        """Site lifecycle hook: drop every credential and IP of a deleted site.

        Returns False, doing nothing, if the site is unknown to the directory.
        """
        if self.sites.find(site_url) is None:
            return False
        creds = self.credentials.purge(site_url)
        ips = self.whitelist.purge(site_url)
        logger.info("Cleaned up %d auth(s) and %d IP(s) of %s", len(creds), len(ips), site_url)

        def remove_files() -> None:
            self.credential_files.remove(site_url)
            self.acl_files.remove(site_url)

        self._apply(site_url, remove_files, (creds, ips))
        return True

    def ensure_admin_tools_auth(self) -> Optional[Credential]:
        """Bootstrap admin-tools auth on a fresh install.

        If neither global nor admin-tools has a credential, creates one for
        the default username with a random password and, when a frontend
        subnet is configured, whitelists it globally. Returns the new
        credential, or None if auth already existed.
        """
        if self.credentials.has_any(ADMIN_TOOLS) or self.credentials.has_any(GLOBAL):
            logger.info("Global auth exists on admin-tools.")
            return None
        self._require_hasher()
        credential = self.credentials.create(ADMIN_TOOLS, self.default_username, generate_secret())
        added: list[WhitelistEntry] = []
        if self.frontend_subnet_ip:
            added = self.whitelist.append(GLOBAL, [self.frontend_subnet_ip])

        def rebuild() -> None:
            self.credential_files.regenerate_global()
            if added:
                self.acl_files.regenerate_global()

        self._apply(ADMIN_TOOLS, rebuild, credential)
        logger.info("Global admin-tools auth added.")
        return credential

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_hasher(self) -> None:
        if not self._hasher_checked:
            self.writer.check_available()
            self._hasher_checked = True

    def _rebuild_credentials(self, scope_keys: Iterable[str]) -> Callable[[], None]:
        keys = list(dict.fromkeys(scope_keys))

        def rebuild() -> None:
            if GLOBAL in keys or ADMIN_TOOLS in keys:
                self.credential_files.regenerate_global()
                return
            for key in keys:
                self.credential_files.regenerate_site(key)

        return rebuild

    def _rebuild_acl(self, scope_key: str) -> Callable[[], None]:
        return lambda: self.acl_files.regenerate(scope_key)

    def _apply(self, scope_key: str, rebuild: Callable[[], None], result: Any) -> None:
        """Materialize and reload after a committed mutation."""
        try:
            rebuild()
            self.reloader.reload()
        except (MaterializationError, OSError) as exc:
            logger.error("Store updated for %s but proxy files are out of date: %s", scope_key, exc)
            raise PartiallyApplied(scope_key, exc, result) from exc


def _require_ips(ips: Iterable[str]) -> list[str]:
    ips = [ip for ip in ips if ip and ip.strip()]
    if not ips:
        raise InvalidIP("", "At least one IP is required")
    return ips
