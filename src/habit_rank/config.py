"""Configuration file management for habit-rank.

Reads and writes ~/.habit-rank/config.json for settings that don't belong in the DB
(database location, log level, XP economy overrides).
"""
from __future__ import annotations

import json
import logging
from pathlib import Path

from habit_rank.db import DEFAULT_DB_PATH
from habit_rank.economy import Economy

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH: Path = Path.home() / ".habit-rank" / "config.json"
DEFAULT_LOG_LEVEL = "WARNING"
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def load_config(config_path: Path | None = None) -> dict:
    """Load config from JSON file. Returns {} if file missing or invalid."""
    path = config_path or DEFAULT_CONFIG_PATH
    if not path.exists():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, OSError) as exc:
        logger.warning("Ignoring unreadable config %s: %s", path, exc)
        return {}
    if not isinstance(data, dict):
        logger.warning("Ignoring config %s: top level is not an object", path)
        return {}
    return data


def save_config(data: dict, config_path: Path | None = None) -> None:
    """Write config dict to JSON file. Creates parent dirs if needed."""
    path = config_path or DEFAULT_CONFIG_PATH
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2) + "\n", encoding="utf-8")


def get_db_path(config_path: Path | None = None) -> Path:
    """Return the configured database path, or the default one."""
    raw = load_config(config_path).get("db_path")
    if raw:
        return Path(raw).expanduser()
    return DEFAULT_DB_PATH


def set_db_path(db_path: Path, config_path: Path | None = None) -> None:
    """Persist the database path to config."""
    config = load_config(config_path)
    config["db_path"] = str(db_path)
    save_config(config, config_path)


def get_log_level(config_path: Path | None = None) -> str:
    level = load_config(config_path).get("log_level")
    if isinstance(level, str) and level.upper() in LOG_LEVELS:
        return level.upper()
    return DEFAULT_LOG_LEVEL


def load_economy(config_path: Path | None = None) -> Economy:
    """Default economy with any ``economy`` overrides from config applied."""
    overrides = load_config(config_path).get("economy")
    if overrides is not None and not isinstance(overrides, dict):
        logger.warning("Ignoring economy overrides: expected an object")
        overrides = None
    try:
        return Economy.from_overrides(overrides)
    except (TypeError, ValueError) as exc:
        logger.warning("Ignoring invalid economy overrides: %s", exc)
        return Economy()
