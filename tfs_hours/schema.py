"""
Declarative Schema Definition: the single source of truth.

Every table, column, index, and data migration of the hours ledger lives
here. The schema_engine reads this and converges any database to match.

Adding a column = add one line here. The engine handles the rest.

Column definitions use CREATE TABLE syntax. The schema_engine knows how
to derive ALTER TABLE ADD COLUMN DDL (strips PK, adjusts NOT NULL, etc.).

All timestamps are fixed-width UTC text: YYYY-MM-DDTHH:MM:SS.ffffffZ.
"""

from collections import OrderedDict

# =============================================================================
# Schema version: bump when you change this file
# =============================================================================
SCHEMA_VERSION = 2

RUNS_TABLE = "tfs_hours_runs"
LATEST_TABLE = "tfs_task_hours_latest"
SNAPSHOTS_TABLE = "tfs_task_hours_snapshots"

# =============================================================================
# Table Definitions
#
# Format: TABLES[name] = {"columns": [(col_name, col_ddl), ...], "unique": [...]}
# =============================================================================

TABLES: dict[str, dict] = OrderedDict()

# ---------------------------------------------------------------------------
# Sync runs: one row per ingest batch
# ---------------------------------------------------------------------------
TABLES[RUNS_TABLE] = {
    "columns": [
        ("run_id", "INTEGER PRIMARY KEY AUTOINCREMENT"),
        ("run_at", "TEXT NOT NULL"),
        ("source", "TEXT NOT NULL"),
        ("item_count", "INTEGER NOT NULL"),
    ],
}

# ---------------------------------------------------------------------------
# Latest state per task (fast grid / lookup)
# ---------------------------------------------------------------------------
TABLES[LATEST_TABLE] = {
    "columns": [
        ("task_id", "INTEGER PRIMARY KEY"),
        ("task_title", "TEXT"),
        ("task_changed_date", "TEXT"),
        ("task_activity", "TEXT"),
        ("task_assigned_to", "TEXT"),
        ("task_assigned_upn", "TEXT"),
        ("task_actual_hours", "REAL"),
        # Parent (account code carrier)
        ("parent_id", "INTEGER"),
        ("parent_type", "TEXT"),
        ("parent_title", "TEXT"),
        ("account_code", "INTEGER"),
        ("synced_at", "TEXT NOT NULL"),
    ],
}

# ---------------------------------------------------------------------------
# Ledger: one row per observed (task, effective change time)
# ---------------------------------------------------------------------------
TABLES[SNAPSHOTS_TABLE] = {
    "columns": [
        ("run_id", f"INTEGER NOT NULL REFERENCES {RUNS_TABLE}(run_id)"),
        ("snapshot_at", "TEXT NOT NULL"),
        ("task_id", "INTEGER NOT NULL"),
        ("task_assigned_upn", "TEXT"),
        ("task_assigned_to", "TEXT"),
        ("task_changed_date", "TEXT"),
        # COALESCE(task_changed_date, snapshot_at)
        ("effective_at", "TEXT NOT NULL"),
        ("task_activity", "TEXT"),
        ("task_actual_hours", "REAL"),
        ("parent_id", "INTEGER"),
        ("account_code", "INTEGER"),
    ],
    "unique": [("task_id", "effective_at")],
}

# =============================================================================
# Indexes
#
# Format: (index_name, table, columns, where_clause, unique)
# =============================================================================

INDEXES: list[tuple[str, str, str, str | None, bool]] = [
    # Ledger range scans
    ("ix_hours_snap_task_time", SNAPSHOTS_TABLE, "task_id, effective_at", None, False),
    ("ix_hours_snap_time", SNAPSHOTS_TABLE, "effective_at", None, False),
    ("ix_hours_snap_run", SNAPSHOTS_TABLE, "run_id", None, False),
    # Upsert key; also covers ledgers created before the table-level UNIQUE
    ("ux_hours_snap_task_effective", SNAPSHOTS_TABLE, "task_id, effective_at", None, True),
    # Projection lookups
    ("ix_hours_latest_assigned", LATEST_TABLE, "task_assigned_upn", None, False),
    ("ix_hours_latest_changed", LATEST_TABLE, "task_changed_date", None, False),
]

# =============================================================================
# Data migrations (idempotent)
#
# Format: (table, target_column, source_expression, where_condition)
# =============================================================================

DATA_MIGRATIONS: list[tuple[str, str, str, str]] = [
    (
        SNAPSHOTS_TABLE,
        "effective_at",
        "COALESCE(task_changed_date, snapshot_at)",
        "effective_at IS NULL OR effective_at = ''",
    ),
]
