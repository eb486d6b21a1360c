"""
Centralized Database Access for the hours ledger.

Single source of truth for:
- Connection factory (WAL, foreign keys, busy timeout, Row factory)
- Explicit transactions
- Schema convergence (delegated to schema_engine)
- Health checks

ALL code must use this module for DB access. No direct sqlite3.connect() elsewhere.

Connections are opened in autocommit mode (``isolation_level=None``); writes
that must be atomic go through ``transaction()``, which issues
``BEGIN IMMEDIATE`` so that concurrent writers serialize on SQLite's write
lock instead of failing mid-way.
"""

import logging
import sqlite3
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path

from tfs_hours import schema, schema_engine
from tfs_hours.errors import PersistenceError

logger = logging.getLogger(__name__)

BUSY_TIMEOUT_MS = 5000


# ============================================================
# CONNECTION FACTORY
# ============================================================


def connect(db_path: Path | str) -> sqlite3.Connection:
    """Open a configured connection. Caller owns closing it."""
    if str(db_path) != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    # FastAPI resolves dependencies and runs sync endpoints on worker threads
    conn = sqlite3.connect(str(db_path), isolation_level=None, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys=ON")
    conn.execute(f"PRAGMA busy_timeout={BUSY_TIMEOUT_MS}")
    if str(db_path) != ":memory:":
        conn.execute("PRAGMA journal_mode=WAL")
    return conn


@contextmanager
def get_connection(db_path: Path | str) -> Generator[sqlite3.Connection, None, None]:
    """
    Get a database connection with proper setup.

    Usage:
        with get_connection(settings.db_path) as conn:
            conn.execute(...)
    """
    conn = connect(db_path)
    try:
        yield conn
    finally:
        conn.close()


@contextmanager
def transaction(conn: sqlite3.Connection) -> Generator[sqlite3.Connection, None, None]:
    """
    Run a block atomically. Commits on success, rolls back on any exception
    and re-raises it.
    """
    conn.execute("BEGIN IMMEDIATE")
    try:
        yield conn
    except BaseException:
        # SQLite may already have rolled back on its own (e.g. SQLITE_FULL)
        if conn.in_transaction:
            conn.execute("ROLLBACK")
        raise
    else:
        conn.execute("COMMIT")


# ============================================================
# SCHEMA
# ============================================================


def get_schema_version(conn: sqlite3.Connection) -> int:
    """Get current schema version from PRAGMA user_version."""
    return conn.execute("PRAGMA user_version").fetchone()[0]


def table_exists(conn: sqlite3.Connection, table: str) -> bool:
    cursor = conn.execute("SELECT name FROM sqlite_master WHERE type='table' AND name=?", (table,))
    return cursor.fetchone() is not None


def run_startup_migrations(db_path: Path | str) -> dict:
    """
    Converge the schema at startup. Safe to call multiple times.
    Logs what changed.
    """
    logger.info("Resolved DB path: %s", db_path)
    logger.info("Target SCHEMA_VERSION: %s", schema.SCHEMA_VERSION)

    with get_connection(db_path) as conn:
        version_before = get_schema_version(conn)
        logger.info("Current user_version: %s", version_before)

        results = schema_engine.converge(conn)
        results["previous_version"] = version_before

        if results.get("tables_created"):
            logger.info("Tables created: %s", results["tables_created"])
        if results.get("columns_added"):
            logger.info("Columns added: %s", results["columns_added"])
        if results.get("indexes_created"):
            logger.info("Indexes created: %d", len(results["indexes_created"]))
        if results.get("data_migrations_run"):
            logger.info("Data migrations: %s", results["data_migrations_run"])
        if results.get("errors"):
            logger.warning("Convergence errors: %s", results["errors"])

        for critical in schema.TABLES:
            if not table_exists(conn, critical):
                logger.error("MISSING %s", critical)

        return results


# ============================================================
# HEALTH
# ============================================================


def check_health(conn: sqlite3.Connection) -> bool:
    """Return True when the database answers a trivial query."""
    try:
        row = conn.execute("SELECT 1 AS ok").fetchone()
    except sqlite3.Error as e:
        raise PersistenceError(f"Database unavailable: {e}") from e
    return row is not None and row["ok"] == 1
