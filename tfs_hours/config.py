"""
Centralized configuration for the hours ledger.

All values that vary by deployment belong here. Resolution order, lowest to
highest precedence:

1. Built-in defaults
2. Optional YAML file (TFS_HOURS_CONFIG, default ~/.tfs_hours/config/tfs_hours.yaml)
3. Environment variables

The result is an immutable ``Settings`` value built once at startup and handed
to the components that need it.
"""

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from tfs_hours import paths
from tfs_hours.errors import ConfigError
from tfs_hours.report_range import ReportTimezone

logger = logging.getLogger(__name__)

DEFAULT_INGEST_CHUNK_SIZE = 50
DEFAULT_ENTRIES_LIMIT = 200
MAX_ENTRIES_LIMIT = 2000
DEFAULT_SOURCE = "tfs-hours-sync"

# env var -> settings key
_ENV_KEYS = {
    "TFS_HOURS_DB": "db_path",
    "SYNC_API_KEY": "sync_api_key",
    "TFS_WORKITEM_URL_TEMPLATE": "workitem_url_template",
    "REPORT_TZ_OFFSET_MINUTES": "report_tz_offset_minutes",
    "REPORT_TZ_LABEL": "report_tz_label",
    "INGEST_CHUNK_SIZE": "ingest_chunk_size",
    "ENTRIES_MAX_LIMIT": "entries_max_limit",
    "CORS_ORIGINS": "cors_origins",
    "LOG_LEVEL": "log_level",
    "LOG_JSON": "log_json",
    "HOST": "host",
    "PORT": "port",
}


@dataclass(frozen=True)
class Settings:
    """Immutable process configuration."""

    db_path: Path = field(default_factory=paths.db_path)
    sync_api_key: str = ""
    """Shared secret for the ingest endpoint. Empty disables auth (insecure)."""

    workitem_url_template: str = ""
    """e.g. https://tfs.example.com/tfs/Collection/Project/_workitems/edit/{id}"""

    report_tz: ReportTimezone = field(default_factory=ReportTimezone)
    ingest_chunk_size: int = DEFAULT_INGEST_CHUNK_SIZE
    entries_max_limit: int = MAX_ENTRIES_LIMIT
    cors_origins: tuple[str, ...] = ("*",)
    log_level: str = "INFO"
    log_json: bool | None = None
    host: str = "127.0.0.1"
    port: int = 3000

    @property
    def auth_enabled(self) -> bool:
        return bool(self.sync_api_key)


def _parse_int(key: str, value) -> int:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{key} must be an integer, got {value!r}") from e


def _parse_bool(key: str, value) -> bool | None:
    if value is None or isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("", "auto"):
        return None
    if text in ("1", "true", "yes", "on"):
        return True
    if text in ("0", "false", "no", "off"):
        return False
    raise ConfigError(f"{key} must be a boolean, got {value!r}")


def _parse_origins(value) -> tuple[str, ...]:
    if isinstance(value, (list, tuple)):
        items = [str(v).strip() for v in value]
    else:
        items = [o.strip() for o in str(value).split(",")]
    origins = tuple(o for o in items if o)
    return origins or ("*",)


def _load_yaml(config_path: Path) -> dict:
    """Load YAML config, return empty dict when the file is absent."""
    if not config_path.exists():
        logger.debug("Config file not found at %s, using defaults", config_path)
        return {}
    try:
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Failed to load config file {config_path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {config_path} must contain a mapping")
    return data


def load_settings(
    env: Mapping[str, str] | None = None,
    config_path: Path | None = None,
) -> Settings:
    """
    Build Settings from defaults, the YAML file and the environment.

    Args:
        env: Environment mapping (defaults to os.environ)
        config_path: YAML file path (defaults to paths.config_path())

    Raises:
        ConfigError: If any value cannot be parsed
    """
    env = os.environ if env is None else env
    raw: dict = {}

    if config_path is None:
        config_path = Path(env["TFS_HOURS_CONFIG"]) if env.get("TFS_HOURS_CONFIG") else paths.config_path()
    raw.update(_load_yaml(config_path))

    for env_key, settings_key in _ENV_KEYS.items():
        if env.get(env_key) is not None:
            raw[settings_key] = env[env_key]

    kwargs: dict = {}
    if raw.get("db_path"):
        kwargs["db_path"] = Path(str(raw["db_path"])).expanduser()
    if raw.get("sync_api_key") is not None:
        kwargs["sync_api_key"] = str(raw["sync_api_key"]).strip()
    if raw.get("workitem_url_template") is not None:
        kwargs["workitem_url_template"] = str(raw["workitem_url_template"]).strip()

    offset = _parse_int("report_tz_offset_minutes", raw.get("report_tz_offset_minutes", 0))
    if not -14 * 60 <= offset <= 14 * 60:
        raise ConfigError(f"report_tz_offset_minutes out of range: {offset}")
    label = str(raw.get("report_tz_label") or "").strip() or _default_label(offset)
    kwargs["report_tz"] = ReportTimezone(offset_minutes=offset, label=label)

    if raw.get("ingest_chunk_size") is not None:
        chunk = _parse_int("ingest_chunk_size", raw["ingest_chunk_size"])
        if chunk < 1:
            raise ConfigError("ingest_chunk_size must be >= 1")
        kwargs["ingest_chunk_size"] = chunk
    if raw.get("entries_max_limit") is not None:
        limit = _parse_int("entries_max_limit", raw["entries_max_limit"])
        if limit < 1:
            raise ConfigError("entries_max_limit must be >= 1")
        kwargs["entries_max_limit"] = limit
    if raw.get("cors_origins") is not None:
        kwargs["cors_origins"] = _parse_origins(raw["cors_origins"])
    if raw.get("log_level"):
        level = str(raw["log_level"]).strip().upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ConfigError(f"Unknown log_level: {raw['log_level']!r}")
        kwargs["log_level"] = level
    if "log_json" in raw:
        kwargs["log_json"] = _parse_bool("log_json", raw["log_json"])
    if raw.get("host"):
        kwargs["host"] = str(raw["host"]).strip()
    if raw.get("port") is not None:
        port = _parse_int("port", raw["port"])
        if not 0 < port < 65536:
            raise ConfigError(f"port out of range: {port}")
        kwargs["port"] = port

    return Settings(**kwargs)


def _default_label(offset_minutes: int) -> str:
    """UTC, UTC+02:00, UTC-08:00 ..."""
    if offset_minutes == 0:
        return "UTC"
    sign = "+" if offset_minutes > 0 else "-"
    hours, minutes = divmod(abs(offset_minutes), 60)
    return f"UTC{sign}{hours:02d}:{minutes:02d}"
