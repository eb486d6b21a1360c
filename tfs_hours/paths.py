from __future__ import annotations

import os
from pathlib import Path

APP_ENV_HOME = "TFS_HOURS_HOME"
APP_ENV_DB = "TFS_HOURS_DB"
APP_ENV_CONFIG = "TFS_HOURS_CONFIG"


def app_home() -> Path:
    """
    User-writable home for the hours ledger.
    Override with TFS_HOURS_HOME.
    """
    if os.environ.get(APP_ENV_HOME):
        return Path(os.environ[APP_ENV_HOME]).expanduser().resolve()
    return (Path.home() / ".tfs_hours").resolve()


def config_dir() -> Path:
    return app_home() / "config"


def data_dir() -> Path:
    return app_home() / "data"


def db_path() -> Path:
    """
    Canonical DB path.

    Resolution order:
    1. TFS_HOURS_DB env var (explicit override)
    2. ~/.tfs_hours/data/tfs_hours.db (default)
    """
    if os.environ.get(APP_ENV_DB):
        return Path(os.environ[APP_ENV_DB]).expanduser().resolve()
    return data_dir() / "tfs_hours.db"


def config_path() -> Path:
    """
    Optional YAML config file.

    Resolution order:
    1. TFS_HOURS_CONFIG env var
    2. ~/.tfs_hours/config/tfs_hours.yaml
    """
    if os.environ.get(APP_ENV_CONFIG):
        return Path(os.environ[APP_ENV_CONFIG]).expanduser().resolve()
    return config_dir() / "tfs_hours.yaml"
