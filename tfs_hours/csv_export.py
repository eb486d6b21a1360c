"""
CSV rendering for the delta summary.

Columns: bucket,assignedTo,assignedToUPN,accountCode,hours

RFC-4180 quoting: fields containing a comma, quote, CR or LF are quoted and
embedded quotes doubled; records end with CRLF. The whole body is rendered
in memory so a failure can never leave a half-written response.
"""

import csv
import io
from collections.abc import Iterable

from tfs_hours.deltas import BucketTotal

CSV_HEADERS = ["bucket", "assignedTo", "assignedToUPN", "accountCode", "hours"]


def format_hours(hours: float) -> str:
    """Plain decimal without float noise: 1.5 -> '1.5', 2.0 -> '2'."""
    text = f"{hours:.6f}".rstrip("0").rstrip(".")
    return "0" if text in ("-0", "") else text


def render_summary_csv(rows: Iterable[BucketTotal]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_MINIMAL, lineterminator="\r\n")
    writer.writerow(CSV_HEADERS)
    for row in rows:
        writer.writerow(
            [
                row.bucket.isoformat(),
                row.assigned_to or "",
                row.assigned_to_upn or "",
                "" if row.account_code is None else row.account_code,
                format_hours(row.hours),
            ]
        )
    return buffer.getvalue()


def summary_filename(from_date, to_date, bucket) -> str:
    return f"tfs_hours_summary_{from_date.isoformat()}_{to_date.isoformat()}_{bucket}.csv"
