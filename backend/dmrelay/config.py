"""dmrelay application configuration.

Settings come from three layers, later ones winning:
  * built-in defaults
  * dmrelay.settings.yaml (optional)
  * environment variables, including a ``.env`` file in the working directory

Environment overrides:
  PORT, KEEP_DAYS, MAX_MESSAGES, DATA_DIR, SWEEP_INTERVAL_HOURS,
  HISTORY_LIMIT, LOG_LEVEL
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path("dmrelay.settings.yaml")


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerSettings(BaseModel):
    host: str = "0.0.0.0"
    port: int = Field(default=3000, ge=0, le=65535)


class StorageSettings(BaseModel):
    data_dir:     str = "data"
    max_messages: int = Field(default=2000, ge=1)


class RetentionSettings(BaseModel):
    keep_days:            float = Field(default=30, ge=0)
    sweep_interval_hours: float = Field(default=24.0, gt=0)
    sweep_on_startup:     bool  = True


class ChatSettings(BaseModel):
    history_limit:   int = Field(default=100, ge=1)
    max_name_length: int = Field(default=64, ge=1)


class LoggingSettings(BaseModel):
    level: str = "info"


class AppConfig(BaseModel):
    server:    ServerSettings    = Field(default_factory=ServerSettings)
    storage:   StorageSettings   = Field(default_factory=StorageSettings)
    retention: RetentionSettings = Field(default_factory=RetentionSettings)
    chat:      ChatSettings      = Field(default_factory=ChatSettings)
    logging:   LoggingSettings   = Field(default_factory=LoggingSettings)


# (section, field) for each supported environment variable
ENV_OVERRIDES = {
    "PORT":                 ("server", "port"),
    "DATA_DIR":             ("storage", "data_dir"),
    "MAX_MESSAGES":         ("storage", "max_messages"),
    "KEEP_DAYS":            ("retention", "keep_days"),
    "SWEEP_INTERVAL_HOURS": ("retention", "sweep_interval_hours"),
    "HISTORY_LIMIT":        ("chat", "history_limit"),
    "LOG_LEVEL":            ("logging", "level"),
}


def _apply_env_overrides(data: Dict[str, Any], environ: Mapping[str, str]) -> Dict[str, Any]:
    for var, (section, key) in ENV_OVERRIDES.items():
        value = environ.get(var)
        if value is None or not value.strip():
            continue
        data.setdefault(section, {})[key] = value.strip()
    return data


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_config(
    settings_path: Optional[Union[str, Path]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> AppConfig:
    """Load settings from YAML and the environment into an *AppConfig*.

    Args:
        settings_path: YAML settings file. Defaults to ``dmrelay.settings.yaml``
            in the working directory; a missing file means defaults.
        environ: Environment to read overrides from. Defaults to
            ``os.environ`` after loading ``.env``.

    Raises:
        pydantic.ValidationError: A setting has an invalid value.
    """
    if environ is None:
        load_dotenv()
        environ = os.environ

    path = Path(settings_path) if settings_path is not None else SETTINGS_FILE
    data = _load_yaml(path)

    # A relative data_dir in the settings file is relative to that file.
    data_dir = (data.get("storage") or {}).get("data_dir")
    if data_dir and not Path(data_dir).is_absolute():
        data["storage"]["data_dir"] = str(path.resolve().parent / data_dir)

    cfg = AppConfig(**_apply_env_overrides(data, environ))
    logger.info(
        "Settings loaded (server=%s:%s, data_dir=%s, max_messages=%s, keep_days=%s)",
        cfg.server.host,
        cfg.server.port,
        cfg.storage.data_dir,
        cfg.storage.max_messages,
        cfg.retention.keep_days,
    )
    return cfg


_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Return the process-wide configuration, loading it on first use."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def set_config(cfg: AppConfig) -> None:
    global _config
    _config = cfg


def reset_config() -> None:
    """Forget the cached configuration (used by tests)."""
    global _config
    _config = None
