"""
Hours router: ingest, delta summary, entries, CSV export and config.

Read endpoints take local calendar dates (``from``/``to``, YYYY-MM-DD,
both inclusive) in the configured report timezone. Filters:
``assignedToUPN`` (case-insensitive substring) and ``accountCode`` (exact).
"""

import logging
import sqlite3
from typing import Any

from fastapi import APIRouter, Body, Depends, Query, Response

from api.auth import require_sync_key
from api.deps import get_db, get_settings
from api.response_models import (
    ConfigResponse,
    EntriesResponse,
    ErrorResponse,
    IngestResponse,
    LatestResponse,
    SummaryResponse,
)
from tfs_hours.config import DEFAULT_ENTRIES_LIMIT, Settings
from tfs_hours.csv_export import render_summary_csv, summary_filename
from tfs_hours.deltas import (
    BucketTotal,
    DeltaEntry,
    Filters,
    compute_delta_report,
    list_delta_entries,
    list_latest,
)
from tfs_hours.errors import ValidationError
from tfs_hours.ingest import ingest_batch, parse_batch
from tfs_hours.report_range import (
    BucketUnit,
    DateRange,
    ReportTimezone,
    isoformat_utc,
    local_date,
    resolve_date_range,
)

logger = logging.getLogger(__name__)

hours_router = APIRouter(tags=["Hours"])

_ERRORS = {400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}}

# Largest OFFSET SQLite will bind
MAX_OFFSET = 2**63 - 1


# =============================================================================
# Helpers
# =============================================================================


def _require_range(from_: str | None, to: str | None, tz: ReportTimezone) -> DateRange:
    date_range = resolve_date_range(from_, to, tz)
    if date_range is None:
        raise ValidationError("from and to must be valid dates (YYYY-MM-DD)")
    return date_range


def _optional_range(from_: str | None, to: str | None, tz: ReportTimezone) -> DateRange | None:
    if not from_ and not to:
        return None
    return _require_range(from_, to, tz)


def _page_limit(limit: int | None, settings: Settings) -> int:
    if limit is None:
        return min(DEFAULT_ENTRIES_LIMIT, settings.entries_max_limit)
    return min(limit, settings.entries_max_limit)


def _tz_payload(tz: ReportTimezone) -> dict:
    return {"offsetMinutes": tz.offset_minutes, "label": tz.label}


def _workitem_url(template: str, task_id: int | None) -> str | None:
    if not template or task_id is None:
        return None
    return template.replace("{id}", str(task_id))


def _summary_row(row: BucketTotal) -> dict:
    return {
        "bucket": row.bucket.isoformat(),
        "bucketStart": isoformat_utc(row.bucket_start),
        "assignedToUPN": row.assigned_to_upn,
        "assignedTo": row.assigned_to,
        "accountCode": row.account_code,
        "hours": row.hours,
    }


def _entry_row(entry: DeltaEntry, settings: Settings) -> dict:
    obs = entry.observation
    return {
        "taskId": obs.task_id,
        "taskTitle": entry.task_title,
        "changedAt": isoformat_utc(obs.effective_at),
        "snapshotAt": isoformat_utc(obs.snapshot_at),
        "runId": obs.run_id,
        "day": local_date(obs.effective_at, settings.report_tz).isoformat(),
        "activity": obs.activity,
        "assignedTo": obs.assigned_to,
        "assignedToUPN": obs.assigned_to_upn,
        "accountCode": obs.account_code,
        "parentId": obs.parent_id,
        "parentType": entry.parent_type,
        "parentTitle": entry.parent_title,
        "previousHours": entry.previous_hours,
        "actualHours": obs.hours,
        "deltaHours": entry.delta_hours,
        "workItemUrl": _workitem_url(settings.workitem_url_template, obs.task_id),
    }


def _latest_row(row: dict, settings: Settings) -> dict:
    return {
        "taskId": row["task_id"],
        "taskTitle": row["task_title"],
        "taskChangedDate": isoformat_utc(row["task_changed_date"]),
        "activity": row["task_activity"],
        "assignedTo": row["task_assigned_to"],
        "assignedToUPN": row["task_assigned_upn"],
        "actualHours": row["task_actual_hours"],
        "parentId": row["parent_id"],
        "parentType": row["parent_type"],
        "parentTitle": row["parent_title"],
        "accountCode": row["account_code"],
        "syncedAt": isoformat_utc(row["synced_at"]),
        "workItemUrl": _workitem_url(settings.workitem_url_template, row["task_id"]),
    }


# =============================================================================
# Ingest
# =============================================================================


@hours_router.post(
    "/api/tfs-hours-sync",
    response_model=IngestResponse,
    responses={401: {"model": ErrorResponse}, **_ERRORS},
    dependencies=[Depends(require_sync_key)],
)
def ingest(
    payload: Any = Body(None),
    conn: sqlite3.Connection = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """Record one poller batch: run row, latest projection, snapshot ledger."""
    batch = parse_batch(payload)
    result = ingest_batch(conn, batch, chunk_size=settings.ingest_chunk_size)
    return {
        "ok": True,
        "runId": result.run_id,
        "runAt": isoformat_utc(result.run_at),
        "count": result.count,
    }


# =============================================================================
# Reads
# =============================================================================


@hours_router.get("/api/hours/summary", response_model=SummaryResponse, responses=_ERRORS)
def hours_summary(
    from_: str | None = Query(None, alias="from"),
    to: str | None = Query(None),
    bucket: str | None = Query(None),
    assignedToUPN: str | None = Query(None),
    accountCode: str | None = Query(None),
    conn: sqlite3.Connection = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """Summed hour deltas per bucket, assignee and account code."""
    tz = settings.report_tz
    date_range = _require_range(from_, to, tz)
    filters = Filters.parse(assignedToUPN, accountCode)
    unit = BucketUnit.parse(bucket)

    rows = compute_delta_report(conn, date_range, unit, filters, tz)
    return {
        "ok": True,
        "bucket": unit.value,
        "from": date_range.from_date.isoformat(),
        "to": date_range.to_date.isoformat(),
        "timezone": _tz_payload(tz),
        "rows": [_summary_row(r) for r in rows],
    }


@hours_router.get("/api/hours/entries", response_model=EntriesResponse, responses=_ERRORS)
def hours_entries(
    from_: str | None = Query(None, alias="from"),
    to: str | None = Query(None),
    assignedToUPN: str | None = Query(None),
    accountCode: str | None = Query(None),
    limit: int | None = Query(None, ge=1),
    offset: int = Query(0, ge=0, le=MAX_OFFSET),
    conn: sqlite3.Connection = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """Observed changes inside the window, newest first."""
    date_range = _require_range(from_, to, settings.report_tz)
    filters = Filters.parse(assignedToUPN, accountCode)
    page_limit = _page_limit(limit, settings)

    total, entries = list_delta_entries(conn, date_range, filters, page_limit, offset)
    return {
        "ok": True,
        "total": total,
        "limit": page_limit,
        "offset": offset,
        "rows": [_entry_row(e, settings) for e in entries],
    }


@hours_router.get("/api/hours/latest", response_model=LatestResponse, responses=_ERRORS)
def hours_latest(
    from_: str | None = Query(None, alias="from"),
    to: str | None = Query(None),
    assignedToUPN: str | None = Query(None),
    accountCode: str | None = Query(None),
    limit: int | None = Query(None, ge=1),
    offset: int = Query(0, ge=0, le=MAX_OFFSET),
    conn: sqlite3.Connection = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """Latest known state per task, by changed date (dates optional)."""
    date_range = _optional_range(from_, to, settings.report_tz)
    filters = Filters.parse(assignedToUPN, accountCode)
    page_limit = _page_limit(limit, settings)

    total, rows = list_latest(conn, date_range, filters, page_limit, offset)
    return {
        "ok": True,
        "total": total,
        "limit": page_limit,
        "offset": offset,
        "rows": [_latest_row(r, settings) for r in rows],
    }


@hours_router.get(
    "/api/hours/export.csv",
    response_class=Response,
    responses={200: {"content": {"text/csv": {}}}, **_ERRORS},
)
def hours_export_csv(
    from_: str | None = Query(None, alias="from"),
    to: str | None = Query(None),
    bucket: str | None = Query(None),
    assignedToUPN: str | None = Query(None),
    accountCode: str | None = Query(None),
    conn: sqlite3.Connection = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """Same rows as the summary, as CSV."""
    tz = settings.report_tz
    date_range = _require_range(from_, to, tz)
    filters = Filters.parse(assignedToUPN, accountCode)
    unit = BucketUnit.parse(bucket)

    rows = compute_delta_report(conn, date_range, unit, filters, tz)
    body = render_summary_csv(rows)
    filename = summary_filename(date_range.from_date, date_range.to_date, unit.value)
    return Response(
        content=body,
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@hours_router.get("/api/config", response_model=ConfigResponse)
def read_config(settings: Settings = Depends(get_settings)):
    """Work item link template and report timezone for the dashboard."""
    return {
        "ok": True,
        "tfsWorkItemUrlTemplate": settings.workitem_url_template,
        "reportTimezone": _tz_payload(settings.report_tz),
    }
