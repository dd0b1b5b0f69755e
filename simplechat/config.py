from __future__ import annotations

import os
from dataclasses import asdict, dataclass, replace
from typing import Any, TypeVar

from .constants import DEFAULT_HOST, DEFAULT_PORT
from .util import expand_path

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s[%(threadName)s]: %(message)s"


@dataclass(frozen=True)
class ServerRuntimeConfig:
    config_path: str | None = None
    host: str = ""
    port: int = DEFAULT_PORT
    accept_poll_interval_s: float = 0.5
    log_level: str = "WARNING"
    log_console: bool = True
    log_file: str | None = None
    log_format: str = _LOG_FORMAT
    log_datefmt: str | None = None


@dataclass(frozen=True)
class ClientRuntimeConfig:
    config_path: str | None = None
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    log_level: str = "WARNING"
    log_console: bool = True
    log_file: str | None = None
    log_format: str = _LOG_FORMAT
    log_datefmt: str | None = None


RuntimeConfig = TypeVar("RuntimeConfig", ServerRuntimeConfig, ClientRuntimeConfig)

# [logging] table key -> config field
_LOGGING_KEYS = {
    "level": "log_level",
    "console": "log_console",
    "file": "log_file",
    "format": "log_format",
    "datefmt": "log_datefmt",
}

_OPTIONAL_STR_KEYS = ("log_file", "log_datefmt")


def load_toml(path: str) -> dict:
    import tomllib

    with open(expand_path(path), "rb") as f:
        data = tomllib.load(f)
    return data if isinstance(data, dict) else {}


def apply_config_data(base: RuntimeConfig, data: dict, *, section: str) -> RuntimeConfig:
    """Overlay parsed TOML data onto a runtime config.

    ``section`` names the table holding this side's settings (``server`` or
    ``client``). Keys the dataclass does not know are ignored.
    """
    table = data.get(section) if isinstance(data, dict) else None
    if isinstance(table, dict):
        data = {**data, **table}

    log_table = data.get("logging") if isinstance(data, dict) else None
    if isinstance(log_table, dict):
        mapped: dict[str, object] = {}
        for key, field_name in _LOGGING_KEYS.items():
            if key in log_table:
                mapped[field_name] = log_table.get(key)
        data = {**data, **mapped}

    allowed = set(asdict(base).keys())
    # This identifies where the config came from; do not let the file override it.
    allowed.discard("config_path")
    updates: dict[str, Any] = {k: v for k, v in data.items() if k in allowed}

    for key in _OPTIONAL_STR_KEYS:
        if key in updates and updates[key] == "":
            updates[key] = None

    if "port" in updates:
        try:
            updates["port"] = int(updates["port"])
        except (TypeError, ValueError) as e:
            raise ValueError(f"invalid port in config: {updates['port']!r}") from e

    return replace(base, **updates) if updates else base


def load_config(base: RuntimeConfig, path: str | None, *, section: str) -> RuntimeConfig:
    """Apply a config file if it exists. A missing file leaves ``base`` alone."""
    if not path:
        return base
    cfg = replace(base, config_path=path)
    if not os.path.exists(expand_path(path)):
        return cfg
    return apply_config_data(cfg, load_toml(path), section=section)
