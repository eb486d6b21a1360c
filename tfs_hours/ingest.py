"""
Ingest transaction: record a run, then write projection and ledger atomically.

Flow:
1. Validate the batch (non-empty rows array, well-formed rows).
2. BEGIN IMMEDIATE.
3. Insert the run row; its run_at is the canonical snapshot time.
4. De-duplicate the whole batch in memory: per task for the projection,
   per (task, effective time) for the ledger. A multi-row upsert cannot hit
   the same conflict key twice in one statement.
5. Write projection rows, then ledger rows, chunk by chunk.
6. COMMIT, or ROLLBACK everything and raise PersistenceError.

Chunking only bounds statement size. De-duplication happens before chunking,
so chunk boundaries never change what is stored.
"""

import logging
import sqlite3
from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from tfs_hours import ledger, projection
from tfs_hours.config import DEFAULT_INGEST_CHUNK_SIZE, DEFAULT_SOURCE
from tfs_hours.db import transaction
from tfs_hours.errors import PersistenceError, ValidationError
from tfs_hours.models import IngestBatch, IngestRow
from tfs_hours.report_range import from_db_timestamp, to_db_timestamp
from tfs_hours.schema import RUNS_TABLE

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IngestResult:
    """Outcome of one committed ingest."""

    run_id: int
    run_at: datetime
    count: int
    projection_rows: int
    ledger_rows: int


# =============================================================================
# Validation
# =============================================================================


def parse_batch(payload: Any) -> IngestBatch:
    """
    Validate a decoded JSON payload into an IngestBatch.

    Raises:
        ValidationError: If rows is missing, empty, or any row is malformed
    """
    if not isinstance(payload, Mapping):
        raise ValidationError("rows array required")
    rows = payload.get("rows")
    if not isinstance(rows, list) or not rows:
        raise ValidationError("rows array required")
    try:
        return IngestBatch.model_validate(payload)
    except PydanticValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(p) for p in first.get("loc", ()))
        raise ValidationError(f"invalid batch at {location}: {first.get('msg')}") from e


# =============================================================================
# In-memory reductions
# =============================================================================


def dedupe_for_projection(rows: Sequence[IngestRow], synced_at: datetime) -> list[IngestRow]:
    """Keep one row per task: the latest change time; later batch position wins ties."""
    latest: dict[int, IngestRow] = {}
    for row in rows:
        current = latest.get(row.task_id)
        if current is None or row.effective_at(synced_at) >= current.effective_at(synced_at):
            latest[row.task_id] = row
    return list(latest.values())


def dedupe_for_ledger(rows: Sequence[IngestRow], snapshot_at: datetime) -> list[IngestRow]:
    """Keep one row per (task, effective time); the later batch position wins."""
    keyed: dict[tuple[int, datetime], IngestRow] = {}
    for row in rows:
        keyed[(row.task_id, row.effective_at(snapshot_at))] = row
    return list(keyed.values())


def chunked(items: Sequence, size: int) -> Iterator[Sequence]:
    if size < 1:
        raise ValueError("chunk size must be >= 1")
    for i in range(0, len(items), size):
        yield items[i : i + size]


# =============================================================================
# Transaction
# =============================================================================


def _insert_run(conn: sqlite3.Connection, run_at: datetime, source: str, item_count: int) -> tuple[int, datetime]:
    stored_at = to_db_timestamp(run_at)
    cursor = conn.execute(
        f"INSERT INTO {RUNS_TABLE} (run_at, source, item_count) VALUES (?, ?, ?)",  # nosec B608
        (stored_at, source, item_count),
    )
    return cursor.lastrowid, from_db_timestamp(stored_at)


def ingest_batch(
    conn: sqlite3.Connection,
    batch: IngestBatch,
    chunk_size: int = DEFAULT_INGEST_CHUNK_SIZE,
    now: datetime | None = None,
) -> IngestResult:
    """
    Record one batch atomically.

    Args:
        conn: Autocommit connection from tfs_hours.db
        batch: Validated batch (see parse_batch)
        chunk_size: Rows per multi-row statement
        now: Run time when the batch carries no syncedAtUtc

    Raises:
        ValidationError: If the batch has no rows
        PersistenceError: If any write fails; nothing is committed
    """
    if not batch.rows:
        raise ValidationError("rows array required")

    sync_ts = batch.synced_at_utc or now or datetime.now(UTC)
    source = (batch.source or "").strip() or DEFAULT_SOURCE

    try:
        with transaction(conn):
            run_id, run_at = _insert_run(conn, sync_ts, source, len(batch.rows))

            latest_rows = dedupe_for_projection(batch.rows, run_at)
            ledger_rows = dedupe_for_ledger(batch.rows, run_at)

            for chunk in chunked(latest_rows, chunk_size):
                projection.upsert(conn, chunk, run_at)
            for chunk in chunked(ledger_rows, chunk_size):
                ledger.append_or_update(conn, run_id, run_at, chunk)
    except sqlite3.Error as e:
        logger.error("Ingest failed, rolled back (source=%s, rows=%d): %s", source, len(batch.rows), e)
        raise PersistenceError(str(e)) from e

    logger.info(
        "Ingested run %s from %s: %d rows (%d tasks, %d ledger entries)",
        run_id,
        source,
        len(batch.rows),
        len(latest_rows),
        len(ledger_rows),
    )
    return IngestResult(
        run_id=run_id,
        run_at=run_at,
        count=len(batch.rows),
        projection_rows=len(latest_rows),
        ledger_rows=len(ledger_rows),
    )
