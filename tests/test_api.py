"""
API tests via FastAPI TestClient.

Every test runs against its own temporary database; create_app converges the
schema before the first request.
"""

import csv
import io
from dataclasses import replace

import pytest

from tests.fixtures import make_batch, make_row
from tfs_hours import db
from tfs_hours.report_range import ReportTimezone
from tfs_hours.schema import LATEST_TABLE, RUNS_TABLE, SNAPSHOTS_TABLE

SYNC = "/api/tfs-hours-sync"


def stored_rows(db_path) -> dict[str, int]:
    with db.get_connection(db_path) as conn:
        return {
            table: conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]  # nosec B608
            for table in (RUNS_TABLE, LATEST_TABLE, SNAPSHOTS_TABLE)
        }


def post_runs(client, runs, headers=None):
    for synced_at, rows in runs:
        response = client.post(SYNC, json=make_batch(rows, synced_at), headers=headers or {})
        assert response.status_code == 200, response.text


CORRECTION_RUNS = [
    ("2024-01-01T12:00:00Z", [make_row(1, 10, "2024-01-01T10:00:00Z")]),
    ("2024-01-02T12:00:00Z", [make_row(1, 15, "2024-01-02T10:00:00Z"), make_row(2, 2, "2024-01-02T11:00:00Z")]),
    ("2024-01-03T12:00:00Z", [make_row(1, 8, "2024-01-03T10:00:00Z")]),
]


# =============================================================================
# Ingest + auth
# =============================================================================


class TestIngestAuth:
    @pytest.fixture
    def secured(self, make_client, settings):
        return make_client(replace(settings, sync_api_key="s3cret"))

    def test_missing_key_is_401_and_stores_nothing(self, secured, settings):
        response = secured.post(SYNC, json=make_batch([make_row(1, 1, None)]))

        assert response.status_code == 401
        assert response.json() == {"ok": False, "error": "unauthorized"}
        assert stored_rows(settings.db_path) == {RUNS_TABLE: 0, LATEST_TABLE: 0, SNAPSHOTS_TABLE: 0}

    def test_wrong_key_is_401(self, secured):
        response = secured.post(SYNC, json=make_batch([make_row(1, 1, None)]), headers={"x-api-key": "nope"})
        assert response.status_code == 401

    def test_api_key_header(self, secured):
        response = secured.post(SYNC, json=make_batch([make_row(1, 1, None)]), headers={"x-api-key": "s3cret"})
        assert response.status_code == 200

    def test_bearer_token(self, secured):
        response = secured.post(
            SYNC,
            json=make_batch([make_row(1, 1, None)]),
            headers={"Authorization": "Bearer s3cret"},
        )
        assert response.status_code == 200

    def test_open_when_no_key_configured(self, client):
        response = client.post(SYNC, json=make_batch([make_row(1, 1, None)]))
        assert response.status_code == 200


class TestIngestEndpoint:
    def test_created_run(self, client, settings):
        response = client.post(
            SYNC,
            json=make_batch(
                [make_row(1, 2, "2024-01-01T09:00:00Z"), make_row(2, 3, "2024-01-01T10:00:00Z")],
                synced_at="2024-01-01T12:00:00Z",
            ),
        )

        assert response.status_code == 200
        data = response.json()
        assert data["ok"] is True
        assert data["runId"] >= 1
        assert data["runAt"] == "2024-01-01T12:00:00.000Z"
        assert data["count"] == 2
        assert stored_rows(settings.db_path) == {RUNS_TABLE: 1, LATEST_TABLE: 2, SNAPSHOTS_TABLE: 2}

    @pytest.mark.parametrize("body", [{}, {"rows": []}, {"source": "x", "rows": "nope"}])
    def test_empty_batch_is_400(self, client, body, settings):
        response = client.post(SYNC, json=body)

        assert response.status_code == 400
        assert response.json() == {"ok": False, "error": "rows array required"}
        assert stored_rows(settings.db_path)[RUNS_TABLE] == 0

    def test_no_body_is_400(self, client):
        assert client.post(SYNC).status_code == 400

    def test_malformed_json_is_400(self, client):
        response = client.post(SYNC, content=b"{not json", headers={"Content-Type": "application/json"})
        assert response.status_code == 400
        assert response.json()["ok"] is False

    def test_bad_row_is_400(self, client):
        response = client.post(SYNC, json=make_batch([{"taskId": "abc"}]))
        assert response.status_code == 400
        assert "taskId" in response.json()["error"]

    def test_oversized_task_id_is_400_and_stores_nothing(self, client, settings):
        response = client.post(SYNC, json=make_batch([make_row(10**30, 1, "2024-01-01T10:00:00Z")]))

        assert response.status_code == 400
        assert response.json()["ok"] is False
        assert "taskId" in response.json()["error"]
        assert stored_rows(settings.db_path) == {RUNS_TABLE: 0, LATEST_TABLE: 0, SNAPSHOTS_TABLE: 0}


# =============================================================================
# Reports
# =============================================================================


class TestSummary:
    def test_correction_deltas(self, client):
        post_runs(client, CORRECTION_RUNS)

        response = client.get("/api/hours/summary", params={"from": "2024-01-02", "to": "2024-01-03"})

        assert response.status_code == 200
        data = response.json()
        assert data["ok"] is True
        assert data["bucket"] == "day"
        assert data["from"] == "2024-01-02"
        assert data["to"] == "2024-01-03"
        assert data["timezone"] == {"offsetMinutes": 0, "label": "UTC"}
        assert [(r["bucket"], r["hours"]) for r in data["rows"]] == [("2024-01-02", 7.0), ("2024-01-03", -7.0)]
        assert data["rows"][0]["bucketStart"] == "2024-01-02T00:00:00.000Z"
        assert data["rows"][0]["assignedToUPN"] == "alice@corp.example"
        assert data["rows"][0]["accountCode"] == 4100

    def test_malformed_date_is_400(self, client):
        response = client.get("/api/hours/summary", params={"from": "2024-13-01", "to": "2024-12-31"})

        assert response.status_code == 400
        assert response.json()["ok"] is False
        assert "YYYY-MM-DD" in response.json()["error"]

    def test_missing_dates_is_400(self, client):
        assert client.get("/api/hours/summary").status_code == 400

    @pytest.mark.parametrize("path", ["/api/hours/summary", "/api/hours/entries", "/api/hours/export.csv"])
    def test_date_at_calendar_edge_is_400(self, client, path):
        response = client.get(path, params={"from": "2024-01-01", "to": "9999-12-31"})

        assert response.status_code == 400
        assert response.json()["ok"] is False

    def test_first_calendar_day_east_of_utc_is_400(self, make_client, settings):
        client = make_client(replace(settings, report_tz=ReportTimezone(120, "UTC+02:00")))
        response = client.get("/api/hours/summary", params={"from": "0001-01-01", "to": "2024-01-01"})
        assert response.status_code == 400

    def test_bad_account_code_is_400(self, client):
        response = client.get(
            "/api/hours/summary",
            params={"from": "2024-01-01", "to": "2024-01-01", "accountCode": "abc"},
        )
        assert response.status_code == 400
        assert "accountCode" in response.json()["error"]

    def test_unknown_bucket_falls_back_to_day(self, client):
        response = client.get(
            "/api/hours/summary",
            params={"from": "2024-01-01", "to": "2024-01-01", "bucket": "fortnight"},
        )
        assert response.status_code == 200
        assert response.json()["bucket"] == "day"

    def test_week_bucket_and_filter(self, client):
        post_runs(client, CORRECTION_RUNS)

        response = client.get(
            "/api/hours/summary",
            params={"from": "2024-01-01", "to": "2024-01-07", "bucket": "week", "assignedToUPN": "ALICE"},
        )

        rows = response.json()["rows"]
        assert [(r["bucket"], r["hours"]) for r in rows] == [("2024-01-01", 10.0)]

    def test_report_timezone_shifts_buckets(self, make_client, settings):
        client = make_client(replace(settings, report_tz=ReportTimezone(-480, "UTC-08:00")))
        post_runs(
            client,
            [("2024-01-02T09:00:00Z", [make_row(1, 2, "2024-01-02T07:59:00Z"), make_row(2, 3, "2024-01-02T08:00:00Z")])],
        )

        data = client.get("/api/hours/summary", params={"from": "2024-01-01", "to": "2024-01-02"}).json()

        assert data["timezone"] == {"offsetMinutes": -480, "label": "UTC-08:00"}
        assert [(r["bucket"], r["hours"]) for r in data["rows"]] == [("2024-01-01", 2.0), ("2024-01-02", 3.0)]
        assert data["rows"][0]["bucketStart"] == "2024-01-01T08:00:00.000Z"


class TestExportCsv:
    def test_matches_summary(self, client):
        post_runs(client, CORRECTION_RUNS)
        params = {"from": "2024-01-01", "to": "2024-01-03"}

        summary = client.get("/api/hours/summary", params=params).json()["rows"]
        response = client.get("/api/hours/export.csv", params=params)

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert 'filename="tfs_hours_summary_2024-01-01_2024-01-03_day.csv"' in response.headers["content-disposition"]
        parsed = list(csv.DictReader(io.StringIO(response.text)))
        assert [(r["bucket"], r["assignedToUPN"], float(r["hours"])) for r in parsed] == [
            (r["bucket"], r["assignedToUPN"], r["hours"]) for r in summary
        ]

    def test_malformed_date_is_400_json(self, client):
        response = client.get("/api/hours/export.csv", params={"from": "2024-01-01", "to": "nope"})

        assert response.status_code == 400
        assert response.json()["ok"] is False


class TestEntries:
    def test_entries_with_links(self, client):
        post_runs(client, CORRECTION_RUNS)

        response = client.get("/api/hours/entries", params={"from": "2024-01-02", "to": "2024-01-03"})

        data = response.json()
        assert data["total"] == 3
        assert data["limit"] == 200
        first = data["rows"][0]
        assert first["taskId"] == 1
        assert first["changedAt"] == "2024-01-03T10:00:00.000Z"
        assert first["day"] == "2024-01-03"
        assert first["previousHours"] == 15.0
        assert first["actualHours"] == 8.0
        assert first["deltaHours"] == -7.0
        assert first["taskTitle"] == "Task 1"
        assert first["parentTitle"] == "Parent of 1"
        assert first["workItemUrl"] == "https://tfs.example.com/tfs/Coll/Proj/_workitems/edit/1"

    def test_limit_is_clamped(self, client):
        response = client.get(
            "/api/hours/entries",
            params={"from": "2024-01-01", "to": "2024-01-01", "limit": 100000},
        )
        assert response.json()["limit"] == 2000

    def test_pagination(self, client):
        post_runs(client, CORRECTION_RUNS)

        data = client.get(
            "/api/hours/entries",
            params={"from": "2024-01-01", "to": "2024-01-03", "limit": 2, "offset": 2},
        ).json()

        assert data["total"] == 4
        assert [(r["taskId"], r["deltaHours"]) for r in data["rows"]] == [(1, 5.0), (1, 10.0)]

    def test_invalid_limit_is_400(self, client):
        response = client.get("/api/hours/entries", params={"from": "2024-01-01", "to": "2024-01-01", "limit": 0})
        assert response.status_code == 400


class TestLatest:
    def test_latest_rows(self, client):
        post_runs(client, CORRECTION_RUNS)

        data = client.get("/api/hours/latest").json()

        assert data["total"] == 2
        assert [r["taskId"] for r in data["rows"]] == [1, 2]
        assert data["rows"][0]["actualHours"] == 8.0
        assert data["rows"][0]["taskChangedDate"] == "2024-01-03T10:00:00.000Z"
        assert data["rows"][0]["workItemUrl"].endswith("/edit/1")

    @pytest.mark.parametrize("path", ["/api/hours/latest", "/api/hours/entries"])
    def test_offset_beyond_sqlite_integer_is_400(self, client, path):
        response = client.get(path, params={"from": "2024-01-01", "to": "2024-01-01", "offset": 10**20})

        assert response.status_code == 400
        assert response.json()["ok"] is False
        assert "offset" in response.json()["error"]

    def test_largest_offset_is_accepted(self, client):
        response = client.get("/api/hours/latest", params={"offset": 2**63 - 1})
        assert response.status_code == 200
        assert response.json()["rows"] == []

    def test_latest_range_filter(self, client):
        post_runs(client, CORRECTION_RUNS)

        data = client.get("/api/hours/latest", params={"from": "2024-01-02", "to": "2024-01-02"}).json()

        assert [r["taskId"] for r in data["rows"]] == [2]


# =============================================================================
# Config, health, request IDs
# =============================================================================


class TestConfigAndHealth:
    def test_config(self, client):
        data = client.get("/api/config").json()
        assert data == {
            "ok": True,
            "tfsWorkItemUrlTemplate": "https://tfs.example.com/tfs/Coll/Proj/_workitems/edit/{id}",
            "reportTimezone": {"offsetMinutes": 0, "label": "UTC"},
        }

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"ok": True, "db": True}

    def test_request_id_echoed(self, client):
        response = client.get("/health", headers={"X-Request-ID": "req-test-123"})
        assert response.headers["x-request-id"] == "req-test-123"

    def test_request_id_generated(self, client):
        response = client.get("/api/config")
        assert response.headers.get("x-request-id")

    def test_unknown_route_uses_error_envelope(self, client):
        response = client.get("/api/nope")
        assert response.status_code == 404
        assert response.json()["ok"] is False

    def test_unexpected_error_uses_error_envelope(self, settings):
        from fastapi.testclient import TestClient

        from api.server import create_app

        app = create_app(settings)

        @app.get("/api/explode")
        def explode():
            raise RuntimeError("kaboom")

        with TestClient(app, raise_server_exceptions=False) as client:
            response = client.get("/api/explode")

        assert response.status_code == 500
        assert response.json() == {"ok": False, "error": "internal server error"}
