"""
Test configuration: repo root on sys.path, isolated databases, app clients.

Every test gets its own SQLite file under tmp_path. Nothing here touches
~/.tfs_hours or reads the process environment for settings.
"""

import sys
from pathlib import Path

import pytest

# Add repo root to sys.path so tests can import tfs_hours.*, api.*, cli.*
REPO_ROOT = Path(__file__).parent.parent
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from tfs_hours import db, schema_engine  # noqa: E402
from tfs_hours.config import Settings  # noqa: E402
from tfs_hours.report_range import ReportTimezone  # noqa: E402


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def db_path(tmp_path) -> Path:
    return tmp_path / "data" / "tfs_hours.db"


@pytest.fixture
def conn(db_path):
    """Fresh schema, open connection, closed after the test."""
    connection = db.connect(db_path)
    schema_engine.create_fresh(connection)
    yield connection
    connection.close()


@pytest.fixture
def utc() -> ReportTimezone:
    return ReportTimezone()


@pytest.fixture
def pacific() -> ReportTimezone:
    return ReportTimezone(offset_minutes=-480, label="UTC-08:00")


@pytest.fixture
def settings(db_path) -> Settings:
    return Settings(
        db_path=db_path,
        workitem_url_template="https://tfs.example.com/tfs/Coll/Proj/_workitems/edit/{id}",
    )


@pytest.fixture
def make_client():
    """Build a TestClient for arbitrary settings."""
    from fastapi.testclient import TestClient

    from api.server import create_app

    clients = []

    def _make(app_settings: Settings) -> TestClient:
        client = TestClient(create_app(app_settings))
        clients.append(client)
        return client

    yield _make
    for client in clients:
        client.close()


@pytest.fixture
def client(make_client, settings):
    return make_client(settings)
