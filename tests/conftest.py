"""
tests/conftest.py -- Shared test fixtures for proxyauth.

This module provides:
  - engine: fresh in-memory SQLite store per test
  - sites: site directory pre-loaded with two enabled sites and one disabled
  - credentials / whitelist: repositories over the same engine
  - dirs: tmp htpasswd/ and vhost.d/ directories
  - writer: PlainWriter, a deterministic credential writer
  - access: AccessControl wired to all of the above with a mock reloader

PlainWriter writes "username:secret" instead of a bcrypt hash. The
materializers only decide which pairs are written and in what order, so a
deterministic writer lets tests compare file content byte for byte. The real
bcrypt writer is covered separately in test_writers.py.
"""

from __future__ import annotations

from collections.abc import Generator
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from access.service import AccessControl
from materialize.credentials import CredentialFileMaterializer
from materialize.proxy import ProxyReloader
from materialize.whitelist import WhitelistFileMaterializer
from store.credentials import CredentialRepository
from store.schema import create_store_engine
from store.sites import SiteDirectory
from store.whitelist import WhitelistRepository

# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class PlainWriter:
    """Credential writer that records calls and writes unhashed lines."""

    def __init__(self, directory: Path) -> None:
        self.directory = directory
        self.calls: list[tuple[str, str, bool]] = []

    def check_available(self) -> None:
        return None

    def write(self, file_name: str, username: str, secret: str, *, create: bool) -> None:
        self.calls.append((file_name, username, create))
        with (self.directory / file_name).open("w" if create else "a", encoding="utf-8") as handle:
            handle.write(f"{username}:{secret}\n")


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def engine():
    eng = create_store_engine("sqlite:///:memory:")
    yield eng
    eng.dispose()


@pytest.fixture
def sites(engine) -> SiteDirectory:
    directory = SiteDirectory(engine)
    directory.register_site("example.com")
    directory.register_site("other.org")
    directory.register_site("disabled.net", enabled=False)
    return directory


@pytest.fixture
def credentials(engine) -> CredentialRepository:
    return CredentialRepository(engine)


@pytest.fixture
def whitelist(engine) -> WhitelistRepository:
    return WhitelistRepository(engine)


@pytest.fixture
def dirs(tmp_path) -> SimpleNamespace:
    htpasswd = tmp_path / "htpasswd"
    vhost = tmp_path / "vhost.d"
    htpasswd.mkdir()
    vhost.mkdir()
    return SimpleNamespace(htpasswd=htpasswd, vhost=vhost)


@pytest.fixture
def writer(dirs) -> PlainWriter:
    return PlainWriter(dirs.htpasswd)


@pytest.fixture
def credential_files(credentials, writer, dirs, sites) -> CredentialFileMaterializer:
    return CredentialFileMaterializer(credentials, writer, dirs.htpasswd, sites)


@pytest.fixture
def acl_files(whitelist, dirs, sites) -> WhitelistFileMaterializer:
    return WhitelistFileMaterializer(whitelist, dirs.vhost, sites)


@pytest.fixture
def reloader() -> MagicMock:
    return MagicMock(spec=ProxyReloader)


@pytest.fixture
def access(credentials, whitelist, sites, writer, reloader, credential_files, acl_files) -> Generator[AccessControl, None, None]:
    yield AccessControl(
        credentials=credentials,
        whitelist=whitelist,
        sites=sites,
        writer=writer,
        reloader=reloader,
        credential_files=credential_files,
        acl_files=acl_files,
        frontend_subnet_ip="172.18.0.0/16",
    )
