# TFS Hours Ledger - Core Library
"""
Exports for the API server, the CLI and other consumers.
"""

from .config import Settings, load_settings
from .deltas import (
    BucketTotal,
    DeltaEntry,
    Filters,
    compute_delta_report,
    list_delta_entries,
    list_latest,
    reconstruct_deltas,
)
from .errors import ConfigError, HoursError, PersistenceError, ValidationError
from .ingest import IngestBatch, IngestResult, ingest_batch, parse_batch
from .report_range import BucketUnit, DateRange, ReportTimezone, resolve_date_range

__all__ = [
    "Settings",
    "load_settings",
    "BucketTotal",
    "DeltaEntry",
    "Filters",
    "compute_delta_report",
    "list_delta_entries",
    "list_latest",
    "reconstruct_deltas",
    "ConfigError",
    "HoursError",
    "PersistenceError",
    "ValidationError",
    "IngestBatch",
    "IngestResult",
    "ingest_batch",
    "parse_batch",
    "BucketUnit",
    "DateRange",
    "ReportTimezone",
    "resolve_date_range",
]
