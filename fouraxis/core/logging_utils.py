"""
Logging helpers.

The CLI prints short progress lines; the details of a planning run (stage
timings, solver fallbacks, tracebacks) go to one log file per user.
"""

from __future__ import annotations

import logging
import os
import threading
from pathlib import Path
from typing import Optional

_LOG_ONCE_KEYS: set[str] = set()
_LOG_ONCE_LOCK = threading.Lock()

ENV_LOG_LEVEL = "FOURAXIS_LOG_LEVEL"
ENV_LOG_DIR = "FOURAXIS_LOG_DIR"
LOG_FILENAME = "fouraxis.log"
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def _log_dir() -> Path:
    override = os.environ.get(ENV_LOG_DIR)
    if override:
        return Path(override)
    if os.name == "nt":
        return Path(os.environ.get("LOCALAPPDATA") or Path.home()) / "FourAxis" / "logs"
    state = os.environ.get("XDG_STATE_HOME") or (Path.home() / ".local" / "state")
    return Path(state) / "fouraxis" / "logs"


def _level(value: str | int) -> int:
    if isinstance(value, int):
        return value
    resolved = logging.getLevelName(str(value).strip().upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def setup_logging(*, log_level: str | int = "INFO", log_dir: Optional[str | Path] = None) -> Optional[Path]:
    """
    Attach a UTF-8 file handler to the root logger and return its path.

    Calling it again returns the existing handler's file. Returns None when
    the log file cannot be opened.
    """
    root = logging.getLogger()
    for handler in root.handlers:
        if isinstance(handler, logging.FileHandler):
            return Path(handler.baseFilename)

    level = _level(os.environ.get(ENV_LOG_LEVEL) or log_level)
    log_path = (Path(log_dir) if log_dir is not None else _log_dir()) / LOG_FILENAME
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(str(log_path), encoding="utf-8")
    except OSError:
        return None

    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.setLevel(level)
    root.addHandler(handler)
    logging.captureWarnings(True)
    root.info("Logging to %s (level=%s)", log_path, logging.getLevelName(level))
    return log_path


def format_exception_message(prefix: str, message: str, *, log_path: Optional[Path]) -> str:
    if log_path is None:
        return f"{prefix}\n\n{message}"
    return f"{prefix}\n\n{message}\n\n(log file: {log_path})"


def log_once(logger: logging.Logger, key: str, level: int, msg: str, *args) -> bool:
    """Log at most once per process for `key`; returns whether it logged."""
    with _LOG_ONCE_LOCK:
        if key in _LOG_ONCE_KEYS:
            return False
        _LOG_ONCE_KEYS.add(key)
    logger.log(level, msg, *args)
    return True
