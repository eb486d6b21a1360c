"""
Ingest payload models.

The poller posts a flat batch of observed task states. Field names on the
wire are camelCase; optional numeric fields are coerced leniently (anything
that is not a finite number becomes null) while the task id and the changed
date must be well-formed.
"""

import math
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from tfs_hours.report_range import parse_instant

# SQLite INTEGER is a signed 64-bit value
SQLITE_INT_MIN = -(2**63)
SQLITE_INT_MAX = 2**63 - 1


def norm_int(value: Any) -> int | None:
    """
    Truncate a finite number to int.

    None for empty or non-numeric values, and for values SQLite cannot store
    as an INTEGER.
    """
    if isinstance(value, int) and not isinstance(value, bool):
        number = value
    else:
        num = norm_num(value)
        if num is None:
            return None
        number = math.trunc(num)
    if not SQLITE_INT_MIN <= number <= SQLITE_INT_MAX:
        return None
    return number


def norm_num(value: Any) -> float | None:
    """Finite float or None."""
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


class IngestRow(BaseModel):
    """One observed task state."""

    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True)

    task_id: int = Field(alias="taskId")
    task_title: str | None = Field(default=None, alias="taskTitle")
    task_changed_date: datetime | None = Field(default=None, alias="taskChangedDate")
    activity: str | None = None
    task_assigned_to: str | None = Field(default=None, alias="taskAssignedTo")
    task_assigned_upn: str | None = Field(default=None, alias="taskAssignedToUPN")
    actual_hours: float | None = Field(default=None, alias="actualHours")
    parent_id: int | None = Field(default=None, alias="parentId")
    parent_type: str | None = Field(default=None, alias="parentType")
    parent_title: str | None = Field(default=None, alias="parentTitle")
    account_code: int | None = Field(default=None, alias="accountCode")

    @field_validator("task_id", mode="before")
    @classmethod
    def _task_id(cls, v: Any) -> int:
        task_id = norm_int(v)
        if task_id is None:
            raise ValueError("taskId must be a 64-bit integer")
        return task_id

    @field_validator("parent_id", "account_code", mode="before")
    @classmethod
    def _optional_int(cls, v: Any) -> int | None:
        return norm_int(v)

    @field_validator("actual_hours", mode="before")
    @classmethod
    def _optional_num(cls, v: Any) -> float | None:
        return norm_num(v)

    @field_validator("task_changed_date", mode="before")
    @classmethod
    def _changed_date(cls, v: Any) -> datetime | None:
        try:
            return parse_instant(v)
        except (TypeError, ValueError) as e:
            raise ValueError(f"taskChangedDate is not an ISO-8601 timestamp: {v!r}") from e

    def effective_at(self, snapshot_at: datetime) -> datetime:
        """The change time this observation is keyed by in the ledger."""
        return self.task_changed_date or snapshot_at


class IngestBatch(BaseModel):
    """A batch posted by the poller."""

    model_config = ConfigDict(populate_by_name=True)

    source: str | None = None
    synced_at_utc: datetime | None = Field(default=None, alias="syncedAtUtc")
    rows: list[IngestRow]

    @field_validator("synced_at_utc", mode="before")
    @classmethod
    def _synced_at(cls, v: Any) -> datetime | None:
        try:
            return parse_instant(v)
        except (TypeError, ValueError) as e:
            raise ValueError(f"syncedAtUtc is not an ISO-8601 timestamp: {v!r}") from e
