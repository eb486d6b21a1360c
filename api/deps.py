"""
FastAPI dependencies: settings and per-request DB connections.

Settings are attached to ``app.state`` by ``create_app``; nothing here reads
the environment.
"""

import logging
import sqlite3
from collections.abc import Generator

from fastapi import Request

from tfs_hours import db
from tfs_hours.config import Settings
from tfs_hours.errors import PersistenceError

logger = logging.getLogger(__name__)


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_db(request: Request) -> Generator[sqlite3.Connection, None, None]:
    """One connection per request, closed when the response is done."""
    settings = get_settings(request)
    try:
        conn = db.connect(settings.db_path)
    except sqlite3.Error as e:
        logger.error("Failed to connect to database at %s: %s", settings.db_path, e)
        raise PersistenceError(f"Database unavailable: {e}") from e
    try:
        yield conn
    finally:
        conn.close()
