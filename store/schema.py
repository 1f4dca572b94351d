"""
store/schema.py -- SQLAlchemy Core schema and engine setup for proxyauth.

Uses SQLAlchemy Core (not ORM) so the frozen dataclasses in core/models.py
remain the authoritative domain representation. Swapping SQLite for
PostgreSQL is a connection string change, not a rewrite.

Tables:
  auth_users -- one row per (scope_key, username) credential. The secret is
                kept in plaintext because every materialization re-hashes it.
  auth_ips   -- one row per (scope_key, ip) whitelist entry. UNIQUE at the
                DB level as well as in code.
  sites      -- site directory owned by the site lifecycle; read-only here
                except for register/remove helpers used by tooling and tests.

The id column doubles as creation order. Materialized files are ordered by
it, so it must never be reassigned.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, UniqueConstraint, create_engine, event
from sqlalchemy.engine import Engine, make_url

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

auth_users = Table(
    "auth_users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("scope_key", String(255), nullable=False, index=True),
    Column("username", String(255), nullable=False, index=True),
    Column("secret", Text, nullable=False),
    Column("created_at", String(32), nullable=False),
)

auth_ips = Table(
    "auth_ips",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("scope_key", String(255), nullable=False, index=True),
    Column("ip", String(64), nullable=False),
    Column("created_at", String(32), nullable=False),
    UniqueConstraint("scope_key", "ip", name="uq_auth_ips_scope_ip"),
)

sites = Table(
    "sites",
    metadata,
    Column("site_url", String(255), primary_key=True),
    Column("site_enabled", Integer, nullable=False, server_default="1"),
)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def create_store_engine(db_url: str) -> Engine:
    """Create an engine for db_url and make sure every table exists.

    For file-backed SQLite the parent directory is created first, so a fresh
    host does not need any manual setup before the first command.
    """
    url = make_url(db_url)
    connect_args: dict = {}
    if url.get_backend_name() == "sqlite":
        connect_args["check_same_thread"] = False
        database = url.database or ""
        if database and database != ":memory:" and not database.startswith("file:"):
            Path(database).parent.mkdir(parents=True, exist_ok=True)
    engine = create_engine(db_url, connect_args=connect_args)
    if url.get_backend_name() == "sqlite":
        event.listen(engine, "connect", _set_wal_mode)
    metadata.create_all(engine)
    return engine


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
