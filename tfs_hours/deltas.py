"""
Delta reconstruction: turn the snapshot ledger into per-bucket hour deltas.

The ledger stores observed *totals* of actual hours per task. Hours logged in
a window are recovered as differences between consecutive observations:

1. Collapse the ledger to one row per (task, effective time), preferring the
   highest run id, then the latest snapshot time.
2. Per task, take the latest observation strictly before the window (the
   prior anchor) and every observation inside the window.
3. Order per task by effective time, then snapshot time.
4. delta = hours - previous hours. A task whose first-ever observation lands
   in the window with no anchor contributes its full value (previous = 0).
5. Drop the anchors; only in-window rows carry deltas.
6. Bucket by day / week / month in the report timezone.
7. Sum per (bucket, UPN, display name, account code).
8. Order by bucket, then display name.

Deltas are not clamped: a correction that lowers the logged total yields a
negative delta. Null hours count as 0.

Summary, CSV export and the entries feed all go through
``reconstruct_deltas``; there is exactly one implementation of the rules.
"""

import logging
import sqlite3
from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass, replace
from datetime import date, datetime

from tfs_hours.errors import PersistenceError, ValidationError
from tfs_hours.models import norm_num
from tfs_hours.report_range import (
    BucketUnit,
    DateRange,
    ReportTimezone,
    bucket_start,
    from_db_timestamp,
)
from tfs_hours.schema import LATEST_TABLE, SNAPSHOTS_TABLE

logger = logging.getLogger(__name__)

# Float noise from repeated subtraction; hours are never finer than this
_ROUND_DIGITS = 6


# =============================================================================
# DATA CLASSES
# =============================================================================


@dataclass(frozen=True)
class Filters:
    """Optional read filters, applied to in-window rows after deltas are computed."""

    assigned_to_upn: str | None = None
    """Case-insensitive substring of the assignee UPN."""

    account_code: int | None = None
    """Exact account code."""

    @classmethod
    def parse(cls, assigned_to_upn: str | None = None, account_code: str | int | None = None) -> "Filters":
        """
        Build filters from raw query-string values.

        Raises:
            ValidationError: If account_code is present but not an integer
        """
        upn = (assigned_to_upn or "").strip() or None
        code = None
        raw = "" if account_code is None else str(account_code).strip()
        if raw:
            number = norm_num(raw)
            if number is None or number != int(number):
                raise ValidationError(f"invalid accountCode: {raw!r}")
            code = int(number)
        return cls(assigned_to_upn=upn, account_code=code)

    def matches(self, assigned_to_upn: str | None, account_code: int | None) -> bool:
        if self.assigned_to_upn and self.assigned_to_upn.lower() not in (assigned_to_upn or "").lower():
            return False
        if self.account_code is not None and account_code != self.account_code:
            return False
        return True


@dataclass(frozen=True)
class Observation:
    """One ledger row."""

    task_id: int
    effective_at: datetime
    snapshot_at: datetime
    run_id: int
    hours: float
    assigned_to: str | None = None
    assigned_to_upn: str | None = None
    account_code: int | None = None
    activity: str | None = None
    parent_id: int | None = None
    changed_date: datetime | None = None


@dataclass(frozen=True)
class DeltaEntry:
    """An in-window observation with its reconstructed delta."""

    observation: Observation
    previous_hours: float
    delta_hours: float
    task_title: str | None = None
    parent_type: str | None = None
    parent_title: str | None = None


@dataclass(frozen=True)
class BucketTotal:
    """Summed deltas for one (bucket, assignee, account code)."""

    bucket: date
    bucket_start: datetime
    assigned_to_upn: str | None
    assigned_to: str | None
    account_code: int | None
    hours: float


# =============================================================================
# PURE CORE
# =============================================================================


def _collapse(observations: Iterable[Observation]) -> dict[int, list[Observation]]:
    """One observation per (task, effective time); highest run id, then latest snapshot."""
    best: dict[tuple[int, datetime], Observation] = {}
    for obs in observations:
        key = (obs.task_id, obs.effective_at)
        current = best.get(key)
        if current is None or (obs.run_id, obs.snapshot_at) > (current.run_id, current.snapshot_at):
            best[key] = obs

    by_task: dict[int, list[Observation]] = defaultdict(list)
    for obs in best.values():
        by_task[obs.task_id].append(obs)
    return by_task


def reconstruct_deltas(observations: Iterable[Observation], date_range: DateRange) -> list[DeltaEntry]:
    """
    Compute deltas for every observation inside ``date_range``.

    ``observations`` may contain any part of the ledger; rows at or after the
    range end are ignored and rows before it only serve as the prior anchor.

    Returns entries ordered by task id, then effective time, then snapshot time.
    """
    by_task = _collapse(observations)
    entries: list[DeltaEntry] = []
    for task_id in sorted(by_task):
        ordered = sorted(by_task[task_id], key=lambda o: (o.effective_at, o.snapshot_at))

        previous = 0.0
        for obs in ordered:
            if obs.effective_at >= date_range.end_exclusive:
                break
            if obs.effective_at < date_range.start:
                # The last one seen before the window is the anchor
                previous = obs.hours or 0.0
                continue
            hours = obs.hours or 0.0
            delta = round(hours - previous, _ROUND_DIGITS)
            entries.append(DeltaEntry(observation=obs, previous_hours=previous, delta_hours=delta))
            previous = hours
    return entries


def summarize(entries: Iterable[DeltaEntry], unit: BucketUnit, tz: ReportTimezone) -> list[BucketTotal]:
    """Bucket entries in the report timezone and sum per (bucket, assignee, account)."""
    totals: dict[tuple, float] = defaultdict(float)
    starts: dict[date, datetime] = {}
    for entry in entries:
        obs = entry.observation
        bucket = bucket_start(obs.effective_at, unit, tz)
        starts[bucket.local_date] = bucket.start
        key = (bucket.local_date, obs.assigned_to_upn, obs.assigned_to, obs.account_code)
        totals[key] += entry.delta_hours

    rows = [
        BucketTotal(
            bucket=day,
            bucket_start=starts[day],
            assigned_to_upn=upn,
            assigned_to=name,
            account_code=code,
            hours=round(hours, _ROUND_DIGITS),
        )
        for (day, upn, name, code), hours in totals.items()
    ]
    # Null names sort last
    rows.sort(
        key=lambda r: (
            r.bucket,
            r.assigned_to is None,
            r.assigned_to or "",
            r.assigned_to_upn or "",
            r.account_code is None,
            r.account_code or 0,
        )
    )
    return rows


# =============================================================================
# LEDGER FETCH
# =============================================================================

_OBSERVATION_COLUMNS = (
    "task_id, effective_at, snapshot_at, run_id, task_actual_hours, task_assigned_to, "
    "task_assigned_upn, account_code, task_activity, parent_id, task_changed_date"
)

# Prior anchors + in-window rows for every task observed inside the window.
_WINDOW_SQL = f"""
    WITH collapsed AS (
        SELECT {_OBSERVATION_COLUMNS},
               ROW_NUMBER() OVER (
                   PARTITION BY task_id, effective_at
                   ORDER BY run_id DESC, snapshot_at DESC
               ) AS dup_rank
        FROM {SNAPSHOTS_TABLE}
        WHERE effective_at < :end
          AND task_id IN (
              SELECT task_id FROM {SNAPSHOTS_TABLE}
              WHERE effective_at >= :start AND effective_at < :end
          )
    ),
    observed AS (
        SELECT * FROM collapsed WHERE dup_rank = 1
    ),
    prior AS (
        SELECT *,
               ROW_NUMBER() OVER (
                   PARTITION BY task_id
                   ORDER BY effective_at DESC, snapshot_at DESC
               ) AS prior_rank
        FROM observed
        WHERE effective_at < :start
    )
    SELECT {_OBSERVATION_COLUMNS} FROM prior WHERE prior_rank = 1
    UNION ALL
    SELECT {_OBSERVATION_COLUMNS} FROM observed WHERE effective_at >= :start
    ORDER BY task_id, effective_at, snapshot_at
"""  # nosec B608


def _to_observation(row: sqlite3.Row) -> Observation:
    return Observation(
        task_id=row["task_id"],
        effective_at=from_db_timestamp(row["effective_at"]),
        snapshot_at=from_db_timestamp(row["snapshot_at"]),
        run_id=row["run_id"],
        hours=row["task_actual_hours"] or 0.0,
        assigned_to=row["task_assigned_to"],
        assigned_to_upn=row["task_assigned_upn"],
        account_code=row["account_code"],
        activity=row["task_activity"],
        parent_id=row["parent_id"],
        changed_date=from_db_timestamp(row["task_changed_date"]),
    )


def fetch_window_observations(conn: sqlite3.Connection, date_range: DateRange) -> list[Observation]:
    """Load the prior anchor and in-window ledger rows for tasks active in the window."""
    try:
        cursor = conn.execute(_WINDOW_SQL, {"start": date_range.start_db, "end": date_range.end_db})
        return [_to_observation(row) for row in cursor.fetchall()]
    except sqlite3.Error as e:
        logger.error("Ledger window query failed: %s", e)
        raise PersistenceError(f"Ledger query failed: {e}") from e


def _filtered_entries(conn: sqlite3.Connection, date_range: DateRange, filters: Filters) -> list[DeltaEntry]:
    entries = reconstruct_deltas(fetch_window_observations(conn, date_range), date_range)
    return [e for e in entries if filters.matches(e.observation.assigned_to_upn, e.observation.account_code)]


# =============================================================================
# PUBLIC QUERIES
# =============================================================================


def compute_delta_report(
    conn: sqlite3.Connection,
    date_range: DateRange,
    unit: BucketUnit,
    filters: Filters,
    tz: ReportTimezone,
) -> list[BucketTotal]:
    """
    Summed hour deltas per (bucket, assignee, account code) for a window.

    Backs both the JSON summary and the CSV export.
    """
    entries = _filtered_entries(conn, date_range, filters)
    return summarize(entries, unit, tz)


def list_delta_entries(
    conn: sqlite3.Connection,
    date_range: DateRange,
    filters: Filters,
    limit: int,
    offset: int = 0,
) -> tuple[int, list[DeltaEntry]]:
    """
    One row per in-window observed change, newest first, with display fields
    joined from the latest projection.

    Returns (total matching rows, page of entries).
    """
    entries = _filtered_entries(conn, date_range, filters)
    entries.sort(key=lambda e: (e.observation.effective_at, e.observation.snapshot_at), reverse=True)
    page = entries[offset : offset + limit]

    task_ids = sorted({e.observation.task_id for e in page})
    if not task_ids:
        return len(entries), page

    placeholders = ",".join("?" for _ in task_ids)
    try:
        cursor = conn.execute(
            f"SELECT task_id, task_title, parent_type, parent_title FROM {LATEST_TABLE} "  # nosec B608
            f"WHERE task_id IN ({placeholders})",
            task_ids,
        )
        latest = {row["task_id"]: row for row in cursor.fetchall()}
    except sqlite3.Error as e:
        logger.error("Latest projection lookup failed: %s", e)
        raise PersistenceError(f"Latest projection query failed: {e}") from e

    joined = []
    for entry in page:
        info = latest.get(entry.observation.task_id)
        if info is not None:
            entry = replace(
                entry,
                task_title=info["task_title"],
                parent_type=info["parent_type"],
                parent_title=info["parent_title"],
            )
        joined.append(entry)
    return len(entries), joined


def list_latest(
    conn: sqlite3.Connection,
    date_range: DateRange | None,
    filters: Filters,
    limit: int,
    offset: int = 0,
) -> tuple[int, list[dict]]:
    """
    Latest-state grid: projection rows by changed date, newest first, nulls last.

    Returns (total matching rows, page of row dicts).
    """
    where: list[str] = []
    params: list = []
    if date_range is not None:
        where.append("task_changed_date >= ? AND task_changed_date < ?")
        params.extend([date_range.start_db, date_range.end_db])
    if filters.assigned_to_upn:
        where.append("instr(lower(COALESCE(task_assigned_upn, '')), lower(?)) > 0")
        params.append(filters.assigned_to_upn)
    if filters.account_code is not None:
        where.append("account_code = ?")
        params.append(filters.account_code)
    where_sql = f"WHERE {' AND '.join(where)}" if where else ""

    try:
        total = conn.execute(
            f"SELECT COUNT(*) FROM {LATEST_TABLE} {where_sql}",  # nosec B608
            params,
        ).fetchone()[0]
        cursor = conn.execute(
            f"""
            SELECT task_id, task_title, task_changed_date, task_activity,
                   task_assigned_to, task_assigned_upn, task_actual_hours,
                   parent_id, parent_type, parent_title, account_code, synced_at
            FROM {LATEST_TABLE}
            {where_sql}
            ORDER BY task_changed_date IS NULL, task_changed_date DESC, task_id
            LIMIT ? OFFSET ?
            """,  # nosec B608
            [*params, limit, offset],
        )
        rows = [dict(row) for row in cursor.fetchall()]
    except sqlite3.Error as e:
        logger.error("Latest projection query failed: %s", e)
        raise PersistenceError(f"Latest projection query failed: {e}") from e

    for row in rows:
        row["task_changed_date"] = from_db_timestamp(row["task_changed_date"])
        row["synced_at"] = from_db_timestamp(row["synced_at"])
    return total, rows
