"""
Pydantic response models for the hours API.

These give FastAPI the type information it needs to generate accurate
OpenAPI schemas. Wire names are camelCase, matching the dashboard and the
poller.

Every JSON response carries ``ok``; errors are ``{"ok": false, "error": ...}``.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ErrorResponse(BaseModel):
    """Error envelope for 4xx/5xx responses."""

    ok: bool = False
    error: str = Field(description="Human-readable error message")


class HealthResponse(BaseModel):
    ok: bool
    db: bool


# ==== Ingest ====


class IngestResponse(BaseModel):
    """Created run."""

    ok: bool = True
    runId: int = Field(description="Id of the run row created for this batch")
    runAt: str = Field(description="Canonical run time (UTC ISO-8601)")
    count: int = Field(description="Rows accepted")


# ==== Config ====


class ReportTimezoneModel(BaseModel):
    offsetMinutes: int = Field(description="Fixed offset east of UTC, in minutes")
    label: str


class ConfigResponse(BaseModel):
    """Read-only configuration for the presentation layer."""

    ok: bool = True
    tfsWorkItemUrlTemplate: str = Field(description="e.g. .../_workitems/edit/{id}")
    reportTimezone: ReportTimezoneModel


# ==== Summary ====


class SummaryRow(BaseModel):
    bucket: str = Field(description="Local calendar date the bucket starts on")
    bucketStart: str = Field(description="UTC instant of the bucket start")
    assignedToUPN: str | None = None
    assignedTo: str | None = None
    accountCode: int | None = None
    hours: float = Field(description="Summed deltas; negative for net corrections")


class SummaryResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    ok: bool = True
    bucket: str
    from_: str = Field(alias="from")
    to: str
    timezone: ReportTimezoneModel
    rows: list[SummaryRow] = Field(default_factory=list)


# ==== Entries ====


class EntryRow(BaseModel):
    """One observed change inside the window."""

    taskId: int
    taskTitle: str | None = None
    changedAt: str
    snapshotAt: str
    runId: int
    day: str = Field(description="Local calendar date of the change")
    activity: str | None = None
    assignedTo: str | None = None
    assignedToUPN: str | None = None
    accountCode: int | None = None
    parentId: int | None = None
    parentType: str | None = None
    parentTitle: str | None = None
    previousHours: float
    actualHours: float
    deltaHours: float
    workItemUrl: str | None = None


class EntriesResponse(BaseModel):
    ok: bool = True
    total: int
    limit: int
    offset: int
    rows: list[EntryRow] = Field(default_factory=list)


# ==== Latest projection ====


class LatestResponse(BaseModel):
    ok: bool = True
    total: int
    limit: int
    offset: int
    rows: list[dict[str, Any]] = Field(default_factory=list)
