"""
Schema Convergence Engine: introspect, diff, apply.

Reads the declarative schema from tfs_hours.schema and converges any SQLite
database to match. Two entry points:

  converge(conn)      existing DBs; adds missing tables, columns and indexes
  create_fresh(conn)  new or test DBs; drops everything and creates clean

The engine never drops tables or columns on an existing DB.
It only adds what is missing and runs idempotent data migrations.
"""

import logging
import re
import sqlite3

from tfs_hours import schema

logger = logging.getLogger(__name__)


# ────────────────────────────────────────────────────────────
# SQLite ALTER TABLE column-safety
# ────────────────────────────────────────────────────────────

# Clauses that are valid in CREATE TABLE but not in ALTER TABLE ADD COLUMN
_STRIP_PATTERNS = [
    re.compile(r"\bPRIMARY\s+KEY\b", re.IGNORECASE),
    re.compile(r"\bAUTOINCREMENT\b", re.IGNORECASE),
    re.compile(r"\bUNIQUE\b", re.IGNORECASE),
    re.compile(r"\bREFERENCES\s+\w+\s*\([^)]*\)", re.IGNORECASE),
    re.compile(r"\bCHECK\s*\([^)]*\)", re.IGNORECASE),
]


def make_alter_safe(col_def: str) -> str:
    """
    Transform a CREATE TABLE column definition into one safe for
    ALTER TABLE ADD COLUMN.

    SQLite restrictions on ALTER TABLE ADD COLUMN:
      - Cannot be PRIMARY KEY or AUTOINCREMENT
      - Cannot have UNIQUE constraint
      - NOT NULL requires a non-NULL DEFAULT
    REFERENCES and CHECK are stripped as well; they are only enforced on
    tables created fresh.
    """
    safe = col_def
    for pattern in _STRIP_PATTERNS:
        safe = pattern.sub("", safe)

    safe = re.sub(r"\s{2,}", " ", safe).strip()

    # NOT NULL without DEFAULT → add DEFAULT ''
    has_not_null = re.search(r"\bNOT\s+NULL\b", safe, re.IGNORECASE)
    has_default = re.search(r"\bDEFAULT\b", safe, re.IGNORECASE)
    if has_not_null and not has_default:
        safe = safe + " DEFAULT ''"

    return safe


# ────────────────────────────────────────────────────────────
# Introspection helpers
# ────────────────────────────────────────────────────────────


def _get_existing_tables(conn: sqlite3.Connection) -> dict[str, str]:
    """Return {name: type} for all tables and views."""
    cursor = conn.execute("SELECT name, type FROM sqlite_master WHERE type IN ('table', 'view')")
    return {row[0]: row[1] for row in cursor.fetchall()}


def _get_existing_columns(conn: sqlite3.Connection, table: str) -> set[str]:
    try:
        cursor = conn.execute(f"PRAGMA table_info([{table}])")  # nosec B608
        return {row[1] for row in cursor.fetchall()}
    except sqlite3.OperationalError:
        return set()


def _get_existing_indexes(conn: sqlite3.Connection) -> set[str]:
    cursor = conn.execute(
        "SELECT name FROM sqlite_master WHERE type = 'index' AND name NOT LIKE 'sqlite_%'"
    )
    return {row[0] for row in cursor.fetchall()}


# ────────────────────────────────────────────────────────────
# DDL builders
# ────────────────────────────────────────────────────────────


def _build_create_sql(table_name: str, table_def: dict) -> str:
    """Build a CREATE TABLE IF NOT EXISTS statement from schema declaration."""
    parts = []
    for col_name, col_ddl in table_def["columns"]:
        parts.append(f"    {col_name} {col_ddl}")
    for unique_cols in table_def.get("unique", []):
        cols_str = ", ".join(unique_cols)
        parts.append(f"    UNIQUE({cols_str})")
    body = ",\n".join(parts)
    return f"CREATE TABLE IF NOT EXISTS [{table_name}] (\n{body}\n)"


def _build_index_sql(idx_name: str, idx_table: str, idx_cols: str, idx_where: str | None, unique: bool) -> str:
    kind = "UNIQUE INDEX" if unique else "INDEX"
    where_clause = f" WHERE {idx_where}" if idx_where else ""
    return f"CREATE {kind} IF NOT EXISTS [{idx_name}] ON [{idx_table}]({idx_cols}){where_clause}"


# ────────────────────────────────────────────────────────────
# converge: the main entry point for existing databases
# ────────────────────────────────────────────────────────────


def converge(conn: sqlite3.Connection) -> dict:
    """
    Converge an existing database to match schema.TABLES.

    Algorithm:
      1. Create missing tables; add missing columns to existing ones.
      2. Run idempotent data migrations (back-fills new columns).
      3. Create missing indexes.
      4. Set PRAGMA user_version.

    Data migrations run before indexes so that a unique index over a
    back-filled column sees real values instead of the ALTER default.

    Returns a results dict for logging.
    """
    results = {
        "tables_created": [],
        "columns_added": [],
        "indexes_created": [],
        "data_migrations_run": [],
        "errors": [],
    }

    existing_objects = _get_existing_tables(conn)
    existing_indexes = _get_existing_indexes(conn)

    # ── Phase 1: Tables and columns ──────────────────────────

    for table_name, table_def in schema.TABLES.items():
        if table_name not in existing_objects:
            try:
                conn.execute(_build_create_sql(table_name, table_def))
                results["tables_created"].append(table_name)
                logger.info("schema_engine: created table %s", table_name)
            except sqlite3.OperationalError as e:
                err = f"CREATE TABLE {table_name}: {e}"
                results["errors"].append(err)
                logger.warning("schema_engine: %s", err)
            continue

        existing_cols = _get_existing_columns(conn, table_name)
        for col_name, col_ddl in table_def["columns"]:
            if col_name in existing_cols:
                continue
            safe_ddl = make_alter_safe(col_ddl)
            try:
                conn.execute(
                    f"ALTER TABLE [{table_name}] ADD COLUMN [{col_name}] {safe_ddl}"  # nosec B608
                )
                col_ref = f"{table_name}.{col_name}"
                results["columns_added"].append(col_ref)
                logger.info("schema_engine: added column %s", col_ref)
            except sqlite3.OperationalError as e:
                err = f"ADD COLUMN {table_name}.{col_name}: {e}"
                results["errors"].append(err)
                logger.warning("schema_engine: %s", err)

    existing_objects = _get_existing_tables(conn)

    # ── Phase 2: Data migrations ─────────────────────────────

    for table, target_col, source_expr, where_cond in schema.DATA_MIGRATIONS:
        if existing_objects.get(table) != "table":
            continue
        if target_col not in _get_existing_columns(conn, table):
            continue

        sql = f"UPDATE [{table}] SET [{target_col}] = {source_expr} WHERE {where_cond}"  # noqa: S608  # nosec B608
        try:
            cursor = conn.execute(sql)
            if cursor.rowcount > 0:
                migration_ref = f"{table}.{target_col} <- {source_expr}"
                results["data_migrations_run"].append(f"{migration_ref} ({cursor.rowcount} rows)")
                logger.info(
                    "schema_engine: data migration %s updated %d rows",
                    migration_ref,
                    cursor.rowcount,
                )
        except sqlite3.OperationalError as e:
            err = f"DATA MIGRATION {table}.{target_col}: {e}"
            results["errors"].append(err)
            logger.warning("schema_engine: %s", err)

    # ── Phase 3: Indexes ─────────────────────────────────────

    for idx_name, idx_table, idx_cols, idx_where, unique in schema.INDEXES:
        if idx_name in existing_indexes:
            continue
        if existing_objects.get(idx_table) != "table":
            continue
        try:
            conn.execute(_build_index_sql(idx_name, idx_table, idx_cols, idx_where, unique))  # nosec B608
            results["indexes_created"].append(idx_name)
        except (sqlite3.OperationalError, sqlite3.IntegrityError) as e:
            # A legacy ledger with duplicate (task, effective) rows cannot take
            # the unique index until it is de-duplicated.
            err = f"CREATE INDEX {idx_name}: {e}"
            results["errors"].append(err)
            logger.warning("schema_engine: %s", err)

    # ── Phase 4: Schema version ──────────────────────────────

    conn.execute(f"PRAGMA user_version = {schema.SCHEMA_VERSION}")  # nosec B608

    results["schema_version"] = schema.SCHEMA_VERSION
    return results


# ────────────────────────────────────────────────────────────
# create_fresh: for new databases and test fixtures
# ────────────────────────────────────────────────────────────


def create_fresh(conn: sqlite3.Connection) -> dict:
    """
    Create all tables from scratch in an empty database.

    Drops ALL existing tables and views first. Use only for brand-new
    databases and test fixtures.
    """
    results = {"tables_created": [], "indexes_created": [], "errors": []}

    cursor = conn.execute(
        "SELECT name, type FROM sqlite_master WHERE type IN ('table', 'view') "
        "AND name NOT LIKE 'sqlite_%'"
    )
    existing = cursor.fetchall()

    conn.execute("PRAGMA foreign_keys=OFF")
    for name, obj_type in existing:
        if obj_type == "view":
            conn.execute(f"DROP VIEW IF EXISTS [{name}]")  # nosec B608
    for name, obj_type in existing:
        if obj_type == "table":
            conn.execute(f"DROP TABLE IF EXISTS [{name}]")  # nosec B608
    conn.execute("PRAGMA foreign_keys=ON")

    for table_name, table_def in schema.TABLES.items():
        try:
            conn.execute(_build_create_sql(table_name, table_def))
            results["tables_created"].append(table_name)
        except sqlite3.OperationalError as e:
            err = f"CREATE TABLE {table_name}: {e}"
            results["errors"].append(err)
            logger.warning("schema_engine: create_fresh %s", err)

    for idx_name, idx_table, idx_cols, idx_where, unique in schema.INDEXES:
        try:
            conn.execute(_build_index_sql(idx_name, idx_table, idx_cols, idx_where, unique))  # nosec B608
            results["indexes_created"].append(idx_name)
        except sqlite3.OperationalError as e:
            err = f"CREATE INDEX {idx_name}: {e}"
            results["errors"].append(err)
            logger.warning("schema_engine: create_fresh index %s", err)

    conn.execute(f"PRAGMA user_version = {schema.SCHEMA_VERSION}")  # nosec B608

    results["schema_version"] = schema.SCHEMA_VERSION
    return results
