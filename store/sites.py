"""
store/sites.py -- Read access to the site directory.

The sites table belongs to the site lifecycle (create/enable/disable/delete),
which lives outside proxyauth. SiteDirectory answers the two questions the
access-control engine asks: does this site exist and is it enabled, and
which sites are there to rebuild when the global scope changes.

register_site() and remove_site() exist for provisioning tools and tests.
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy.engine import Engine

from core.models import Site
from store.schema import sites as _sites


class SiteDirectory:
    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def find(self, site_url: str) -> Optional[Site]:
        """Look up a site by exact name. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_sites.select().where(_sites.c.site_url == site_url)).fetchone()
        return _row_to_site(row) if row is not None else None

    def list_sites(self) -> list[Site]:
        """Return all sites ordered by name."""
        with self.engine.connect() as conn:
            rows = conn.execute(_sites.select().order_by(_sites.c.site_url)).fetchall()
        return [_row_to_site(r) for r in rows]

    def register_site(self, site_url: str, enabled: bool = True) -> Site:
        """Insert or update a site record."""
        with self.engine.begin() as conn:
            updated = conn.execute(
                _sites.update().where(_sites.c.site_url == site_url).values(site_enabled=1 if enabled else 0)
            )
            if updated.rowcount == 0:
                conn.execute(_sites.insert().values(site_url=site_url, site_enabled=1 if enabled else 0))
        return Site(site_url=site_url, enabled=enabled)

    def remove_site(self, site_url: str) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(_sites.delete().where(_sites.c.site_url == site_url))
        return result.rowcount > 0


def _row_to_site(row) -> Site:
    return Site(site_url=row.site_url, enabled=bool(row.site_enabled))
