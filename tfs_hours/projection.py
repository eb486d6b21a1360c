"""
Latest-state projection: one row per task, last-write-wins by change time.

An incoming row replaces the stored one only when its change time is at or
after the stored change time, so a late batch carrying an older observation
cannot overwrite a newer one. Rejected updates are silent. A null change time
falls back to the row's sync time on both sides of the comparison.
"""

import sqlite3
from collections.abc import Sequence
from datetime import datetime

from tfs_hours.models import IngestRow
from tfs_hours.report_range import to_db_timestamp
from tfs_hours.schema import LATEST_TABLE

LATEST_COLUMNS = (
    "task_id",
    "task_title",
    "task_changed_date",
    "task_activity",
    "task_assigned_to",
    "task_assigned_upn",
    "task_actual_hours",
    "parent_id",
    "parent_type",
    "parent_title",
    "account_code",
    "synced_at",
)


def _row_values(row: IngestRow, synced_at: datetime) -> tuple:
    return (
        row.task_id,
        row.task_title,
        to_db_timestamp(row.task_changed_date) if row.task_changed_date else None,
        row.activity,
        row.task_assigned_to,
        row.task_assigned_upn,
        row.actual_hours,
        row.parent_id,
        row.parent_type,
        row.parent_title,
        row.account_code,
        to_db_timestamp(synced_at),
    )


def build_upsert(rows: Sequence[IngestRow], synced_at: datetime) -> tuple[str, list]:
    """Build one multi-row guarded upsert. Rows must be unique on task_id."""
    row_sql = "(" + ",".join("?" for _ in LATEST_COLUMNS) + ")"
    values: list = []
    for row in rows:
        values.extend(_row_values(row, synced_at))

    updates = ",\n          ".join(
        f"{col} = excluded.{col}" for col in LATEST_COLUMNS if col != "task_id"
    )
    sql = f"""
        INSERT INTO {LATEST_TABLE} ({", ".join(LATEST_COLUMNS)})
        VALUES {", ".join(row_sql for _ in rows)}
        ON CONFLICT (task_id) DO UPDATE SET
          {updates}
        WHERE COALESCE(excluded.task_changed_date, excluded.synced_at)
              >= COALESCE({LATEST_TABLE}.task_changed_date, {LATEST_TABLE}.synced_at)
    """  # noqa: S608  # nosec B608
    return sql, values


def upsert(conn: sqlite3.Connection, rows: Sequence[IngestRow], synced_at: datetime) -> int:
    """
    Insert or conditionally update projection rows.

    Returns the number of rows submitted (accepted or silently ignored).
    """
    if not rows:
        return 0
    sql, values = build_upsert(rows, synced_at)
    conn.execute(sql, values)
    return len(rows)
