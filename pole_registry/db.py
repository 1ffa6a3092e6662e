"""
Pole Registry — PostgreSQL Connection Pool

One process-wide psycopg2 ThreadedConnectionPool shared by
PostgresPoleInventory and PostgresScoreLedger.  Settings come from the
POLE_DB_* environment variables.

Every unit of work runs inside get_conn(): the whole block is one
transaction, committed when the block exits cleanly and rolled back when
it raises.  A conditional pole write and its identifier rows, or all
entries of one ledger append, therefore land together or not at all.

transaction() widens that to several adapter calls: while it is open,
every get_conn() on the same thread joins its connection instead of
checking out a new one, so a pole write and the ledger payouts for the
same attempt commit or roll back together.

Usage:
    from pole_registry import db

    if db.init_pool():
        with db.get_conn() as conn:
            with db.dict_cursor(conn) as cur:
                cur.execute("SELECT count(*) AS n FROM poles")
                print(cur.fetchone()["n"])
"""

from __future__ import annotations

import logging
import os
import threading
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from typing import Iterator

import psycopg2
from psycopg2 import extras, pool

logger = logging.getLogger(__name__)

REQUIRED_TABLES = ("poles", "pole_identifiers", "pole_verifications", "score_ledger")


@dataclass(frozen=True)
class DatabaseSettings:
    host: str = "localhost"
    port: int = 5432
    dbname: str = "pole_registry"
    user: str = "pole"
    password: str = "pole_local_dev"

    @classmethod
    def from_env(cls) -> "DatabaseSettings":
        defaults = cls()
        return cls(
            host=os.environ.get("POLE_DB_HOST", defaults.host),
            port=int(os.environ.get("POLE_DB_PORT", defaults.port)),
            dbname=os.environ.get("POLE_DB_NAME", defaults.dbname),
            user=os.environ.get("POLE_DB_USER", defaults.user),
            password=os.environ.get("POLE_DB_PASSWORD", defaults.password),
        )

    def dsn_label(self) -> str:
        return f"{self.user}@{self.host}:{self.port}/{self.dbname}"


DB_CONFIG = asdict(DatabaseSettings.from_env())

_pool: pool.ThreadedConnectionPool | None = None
_local = threading.local()


# ---------------------------------------------------------------------------
# Pool lifecycle
# ---------------------------------------------------------------------------


def init_pool(
    settings: DatabaseSettings | None = None,
    minconn: int = 1,
    maxconn: int = 10,
) -> bool:
    """
    Open the pool and check that the engine tables exist.

    Returns False (and leaves no pool behind) when the server is
    unreachable or the migrations have not been applied; callers then use
    the in-memory inventory and ledger.
    """
    global _pool
    settings = settings or DatabaseSettings.from_env()
    try:
        _pool = pool.ThreadedConnectionPool(minconn, maxconn, **asdict(settings))
        missing = _missing_tables()
    except psycopg2.Error as e:
        logger.warning("Database %s unavailable, using in-memory stores: %s", settings.dsn_label(), e)
        close_pool()
        return False

    if missing:
        logger.warning(
            "Database %s lacks table(s) %s; run scripts/apply_migrations.py",
            settings.dsn_label(),
            ", ".join(missing),
        )
        close_pool()
        return False

    logger.info("Database pool ready (%s)", settings.dsn_label())
    return True


def close_pool() -> None:
    global _pool
    if _pool is not None:
        _pool.closeall()
        _pool = None
        logger.info("Database pool closed")


def is_available() -> bool:
    return _pool is not None


def _missing_tables() -> list[str]:
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                "SELECT table_name FROM information_schema.tables WHERE table_name = ANY(%s)",
                (list(REQUIRED_TABLES),),
            )
            present = {row[0] for row in cur.fetchall()}
    return [t for t in REQUIRED_TABLES if t not in present]


# ---------------------------------------------------------------------------
# Connections
# ---------------------------------------------------------------------------


@contextmanager
def get_conn() -> Iterator[psycopg2.extensions.connection]:
    """Check out a connection for one transaction; always returned to the pool."""
    shared = getattr(_local, "conn", None)
    if shared is not None:
        # inside transaction(): the outermost block commits or rolls back
        yield shared
        return
    if _pool is None:
        raise RuntimeError("Database pool not initialized")
    active = _pool
    conn = active.getconn()
    try:
        yield conn
    except BaseException:
        conn.rollback()
        raise
    else:
        conn.commit()
    finally:
        active.putconn(conn)


def dict_cursor(conn):
    """Cursor whose rows are dicts keyed by column name."""
    return conn.cursor(cursor_factory=extras.RealDictCursor)


@contextmanager
def transaction() -> Iterator[psycopg2.extensions.connection]:
    """Run every get_conn() on this thread inside one shared transaction."""
    shared = getattr(_local, "conn", None)
    if shared is not None:
        yield shared
        return
    with get_conn() as conn:
        _local.conn = conn
        try:
            yield conn
        finally:
            _local.conn = None
