"""
materialize/credentials.py -- Derives credential (htpasswd) files from the store.

Files are never patched: each regeneration throws the old file away and
rebuilds it from the current rows, handing them to the credential writer one
at a time. The first line is written with create (truncate) semantics, the
rest are appended.

File layout in the htpasswd directory:
    default               global credentials
    default_admin_tools   admin-tools credentials, only while global has none
    <site>                global credentials, then the site's own

Global rows always come first, each group in creation order. Two scopes
holding the same rows therefore produce the same sequence of writes.

An absent file means no auth is enforced for that scope.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path

from core.models import ADMIN_TOOLS, GLOBAL, Credential
from materialize.files import remove_file
from materialize.writers import CredentialWriter
from store.credentials import CredentialRepository
from store.sites import SiteDirectory

logger = logging.getLogger("proxyauth.materialize.credentials")

_FILE_NAMES = {GLOBAL: "default", ADMIN_TOOLS: "default_admin_tools"}


def credential_file_name(scope_key: str) -> str:
    return _FILE_NAMES.get(scope_key, scope_key)


class CredentialFileMaterializer:
    def __init__(
        self,
        credentials: CredentialRepository,
        writer: CredentialWriter,
        directory: Path,
        sites: SiteDirectory,
    ) -> None:
        self._credentials = credentials
        self._writer = writer
        self.directory = Path(directory)
        self._sites = sites

    def path_for(self, scope_key: str) -> Path:
        return self.directory / credential_file_name(scope_key)

    def regenerate(self, scope_key: str) -> None:
        """Rebuild whatever files depend on scope_key."""
        if scope_key in (GLOBAL, ADMIN_TOOLS):
            self.regenerate_global()
        else:
            self.regenerate_site(scope_key)

    def regenerate_global(self) -> None:
        """Rebuild the global and admin-tools files, then every site file.

        While global has no credentials of its own, the admin-tools
        credential is the only gate: its file is written and the global file
        is suppressed. Once global has credentials, the admin-tools file is
        dropped and the global file is built from them.
        """
        global_rows = self._credentials.find(scope_key=GLOBAL)
        admin_rows = self._credentials.find(scope_key=ADMIN_TOOLS)

        if not global_rows and admin_rows:
            self._write(ADMIN_TOOLS, admin_rows)
            remove_file(self.path_for(GLOBAL))
        else:
            remove_file(self.path_for(ADMIN_TOOLS))
            self._write(GLOBAL, global_rows)

        for site_key in self.site_keys():
            self.regenerate_site(site_key)

    def regenerate_site(self, site_key: str) -> None:
        self._write(site_key, self.rows_for_site(site_key))

    def rows_for_site(self, site_key: str) -> list[Credential]:
        return self._credentials.find(scope_key=GLOBAL) + self._credentials.find(scope_key=site_key)

    def remove(self, scope_key: str) -> bool:
        return remove_file(self.path_for(scope_key))

    def site_keys(self) -> list[str]:
        """Every site with a directory entry or stored credentials, sorted."""
        keys = {site.site_url for site in self._sites.list_sites()}
        keys.update(self._credentials.site_scopes())
        return sorted(keys)

    def _write(self, scope_key: str, rows: Sequence[Credential]) -> None:
        path = self.path_for(scope_key)
        remove_file(path)
        if not rows:
            logger.debug("No credentials for %s, leaving %s absent", scope_key, path.name)
            return
        name = credential_file_name(scope_key)
        for index, row in enumerate(rows):
            self._writer.write(name, row.username, row.secret, create=index == 0)
        logger.debug("Wrote %d credential(s) to %s", len(rows), path.name)
