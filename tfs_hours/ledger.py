"""
Snapshot ledger: one row per observed (task, effective change time).

Writes are upserts keyed on (task_id, effective_at), not appends keyed on the
run: re-ingesting an observation after a tracker edit corrects the existing
ledger entry in place instead of forking the task's history.
"""

import sqlite3
from collections.abc import Sequence
from datetime import datetime

from tfs_hours.models import IngestRow
from tfs_hours.report_range import to_db_timestamp
from tfs_hours.schema import SNAPSHOTS_TABLE

SNAPSHOT_COLUMNS = (
    "run_id",
    "snapshot_at",
    "task_id",
    "task_assigned_upn",
    "task_assigned_to",
    "task_changed_date",
    "effective_at",
    "task_activity",
    "task_actual_hours",
    "parent_id",
    "account_code",
)

_KEY_COLUMNS = ("task_id", "effective_at")


def _row_values(run_id: int, snapshot_at: datetime, row: IngestRow) -> tuple:
    return (
        run_id,
        to_db_timestamp(snapshot_at),
        row.task_id,
        row.task_assigned_upn,
        row.task_assigned_to,
        to_db_timestamp(row.task_changed_date) if row.task_changed_date else None,
        to_db_timestamp(row.effective_at(snapshot_at)),
        row.activity,
        row.actual_hours,
        row.parent_id,
        row.account_code,
    )


def build_upsert(run_id: int, snapshot_at: datetime, rows: Sequence[IngestRow]) -> tuple[str, list]:
    """Build one multi-row upsert. Rows must be unique on (task_id, effective_at)."""
    row_sql = "(" + ",".join("?" for _ in SNAPSHOT_COLUMNS) + ")"
    values: list = []
    for row in rows:
        values.extend(_row_values(run_id, snapshot_at, row))

    updates = ",\n          ".join(
        f"{col} = excluded.{col}" for col in SNAPSHOT_COLUMNS if col not in _KEY_COLUMNS
    )
    sql = f"""
        INSERT INTO {SNAPSHOTS_TABLE} ({", ".join(SNAPSHOT_COLUMNS)})
        VALUES {", ".join(row_sql for _ in rows)}
        ON CONFLICT (task_id, effective_at) DO UPDATE SET
          {updates}
    """  # noqa: S608  # nosec B608
    return sql, values


def append_or_update(
    conn: sqlite3.Connection,
    run_id: int,
    snapshot_at: datetime,
    rows: Sequence[IngestRow],
) -> int:
    """
    Write ledger rows for one run.

    On a (task_id, effective_at) conflict every mutable field, including the
    run id and snapshot time, is overwritten with the incoming values.

    Returns the number of rows written.
    """
    if not rows:
        return 0
    sql, values = build_upsert(run_id, snapshot_at, rows)
    conn.execute(sql, values)
    return len(rows)
