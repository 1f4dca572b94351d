"""
materialize/whitelist.py -- Derives nginx ACL files from the whitelist store.

File grammar:

    satisfy any;
    allow <ip-1>;
    allow <ip-2>;
    deny all;

File layout in the vhost.d directory:
    default_acl               global IPs
    default_admin_tools_acl   global IPs, then admin-tools IPs
    <site>_acl                global IPs, then the site's own

IPs are de-duplicated keeping the first occurrence. An empty IP set removes
the file, which means unrestricted access for that scope.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from core.ip import dedupe
from core.models import ADMIN_TOOLS, GLOBAL
from materialize.files import atomic_write, remove_file
from store.sites import SiteDirectory
from store.whitelist import WhitelistRepository

logger = logging.getLogger("proxyauth.materialize.whitelist")

_FILE_NAMES = {GLOBAL: "default_acl", ADMIN_TOOLS: "default_admin_tools_acl"}


def acl_file_name(scope_key: str) -> str:
    return _FILE_NAMES.get(scope_key, f"{scope_key}_acl")


def render_acl(ips: list[str]) -> str:
    lines = ["satisfy any;"]
    lines.extend(f"allow {ip};" for ip in ips)
    lines.append("deny all;")
    return "\n".join(lines) + "\n"


def parse_acl(content: str) -> list[str]:
    """Return the IPs of the allow lines in an ACL file."""
    ips = []
    for line in content.splitlines():
        line = line.strip()
        if line.startswith("allow ") and line.endswith(";"):
            ips.append(line[len("allow ") : -1].strip())
    return ips


class WhitelistFileMaterializer:
    def __init__(self, whitelist: WhitelistRepository, directory: Path, sites: SiteDirectory) -> None:
        self._whitelist = whitelist
        self.directory = Path(directory)
        self._sites = sites

    def path_for(self, scope_key: str) -> Path:
        return self.directory / acl_file_name(scope_key)

    def regenerate(self, scope_key: str) -> None:
        if scope_key == GLOBAL:
            self.regenerate_global()
        else:
            self.regenerate_site(scope_key)

    def regenerate_global(self) -> None:
        """Rebuild the global ACL, then every file that includes global IPs."""
        self._write(GLOBAL, self._whitelist.ips(GLOBAL))
        self.regenerate_site(ADMIN_TOOLS)
        for site_key in self.site_keys():
            self.regenerate_site(site_key)

    def regenerate_site(self, site_key: str) -> None:
        self._write(site_key, self.ips_for_site(site_key))

    def ips_for_site(self, site_key: str) -> list[str]:
        return dedupe(self._whitelist.ips(GLOBAL) + self._whitelist.ips(site_key))

    def read(self, scope_key: str) -> Optional[list[str]]:
        """IPs currently in the scope's ACL file, or None if there is no file."""
        path = self.path_for(scope_key)
        if not path.is_file():
            return None
        return parse_acl(path.read_text(encoding="utf-8"))

    def remove(self, scope_key: str) -> bool:
        return remove_file(self.path_for(scope_key))

    def site_keys(self) -> list[str]:
        keys = {site.site_url for site in self._sites.list_sites()}
        keys.update(self._whitelist.site_scopes())
        return sorted(keys)

    def _write(self, scope_key: str, ips: list[str]) -> None:
        path = self.path_for(scope_key)
        if not ips:
            if remove_file(path):
                logger.debug("Whitelist for %s is empty, removed %s", scope_key, path.name)
            return
        atomic_write(path, render_acl(ips))
        logger.debug("Wrote %d IP(s) to %s", len(ips), path.name)
