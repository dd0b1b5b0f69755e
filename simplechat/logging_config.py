from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Any

from .config import ClientRuntimeConfig, ServerRuntimeConfig
from .util import expand_path

_FALLBACK_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _parse_level(value: Any, default: int) -> int:
    """Turn a level name or number from config into a logging level."""
    if isinstance(value, int):
        return value

    text = str(value).strip().upper() if value is not None else ""
    if not text:
        return default
    if text == "WARN":
        return logging.WARNING

    named = logging.getLevelNamesMapping().get(text)
    if named is not None:
        return named

    try:
        return int(text)
    except ValueError:
        return default


def _optional(value: Any) -> str | None:
    s = "" if value is None else str(value)
    return s if s.strip() else None


def _build_handlers(cfg: ServerRuntimeConfig | ClientRuntimeConfig) -> list[logging.Handler]:
    handlers: list[logging.Handler] = []

    # stdout belongs to the chat console.
    if cfg.log_console:
        handlers.append(logging.StreamHandler(sys.stderr))

    log_file = _optional(cfg.log_file)
    if log_file:
        path = Path(expand_path(log_file))
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(path, encoding="utf-8"))

    return handlers


def configure_logging(cfg: ServerRuntimeConfig | ClientRuntimeConfig) -> None:
    """Install root handlers for a server or client process.

    Calling it again replaces whatever handlers an earlier call installed.
    """
    formatter = logging.Formatter(
        fmt=_optional(cfg.log_format) or _FALLBACK_FORMAT,
        datefmt=_optional(cfg.log_datefmt),
    )

    root = logging.getLogger()
    for h in list(root.handlers):
        root.removeHandler(h)
        h.close()

    for h in _build_handlers(cfg):
        h.setFormatter(formatter)
        root.addHandler(h)

    root.setLevel(_parse_level(cfg.log_level, logging.WARNING))
    logging.captureWarnings(True)
