"""
Structured Logging Utilities

This module centralizes logging setup for the binary installer. It provides
helpers for masking sensitive fields, emitting JSON log records, and rolling
log files so the log directory keeps a bounded retention window. Components
never configure handlers themselves; they log through module loggers under
the ``BinDepot.BinaryFetch`` namespace with a ``stage`` field in ``extra``.
"""

from __future__ import annotations

import gzip
import json
import logging
import os
import sys
from datetime import datetime, timedelta, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Dict, Optional

from .settings import LOG_DIR, LoggingConfiguration

LOGGER_NAME = "BinDepot.BinaryFetch"

# Attributes present on every LogRecord; anything else arrived through ``extra``.
_RESERVED_ATTRS = frozenset(
    vars(logging.makeLogRecord({})).keys() | {"message", "asctime", "taskName"}
)


def mask_sensitive_data(payload: Dict[str, object]) -> Dict[str, object]:
    """Remove secrets from structured payloads prior to logging.

    Examples:
        >>> mask_sensitive_data({"token": "secret", "status": "ok"})
        {'token': '***masked***', 'status': 'ok'}
    """
    sensitive_keys = {"authorization", "api_key", "apikey", "token", "secret", "password"}
    masked: Dict[str, object] = {}
    for key, value in payload.items():
        lower = key.lower()
        if lower in sensitive_keys:
            masked[key] = "***masked***"
        elif isinstance(value, str) and "apikey" in value.lower():
            masked[key] = "***masked***"
        else:
            masked[key] = value
    return masked


class JSONFormatter(logging.Formatter):
    """Formatter emitting one JSON object per log record."""

    def format(self, record: logging.LogRecord) -> str:
        now = datetime.now(timezone.utc)
        log_obj: Dict[str, object] = {
            "timestamp": now.isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "stage": getattr(record, "stage", None),
        }
        for key, value in vars(record).items():
            if key in _RESERVED_ATTRS or key in log_obj:
                continue
            log_obj[key] = value
        if record.exc_info:
            log_obj["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(mask_sensitive_data(log_obj), default=str)


def _compress_old_log(path: Path) -> None:
    compressed_path = path.with_suffix(path.suffix + ".gz")
    with path.open("rb") as source, gzip.open(compressed_path, "wb") as target:
        target.write(source.read())
    path.unlink(missing_ok=True)


def _cleanup_logs(log_dir: Path, retention_days: int) -> None:
    """Compress logs older than the retention window and drop stale archives."""
    now = datetime.now(timezone.utc)
    retention_delta = timedelta(days=retention_days)
    for file in log_dir.glob("*.jsonl"):
        mtime = datetime.fromtimestamp(file.stat().st_mtime, tz=timezone.utc)
        if now - mtime > retention_delta:
            _compress_old_log(file)
    for file in log_dir.glob("*.jsonl.gz"):
        mtime = datetime.fromtimestamp(file.stat().st_mtime, tz=timezone.utc)
        if now - mtime > retention_delta * 2:
            file.unlink(missing_ok=True)


def setup_logging(
    config: LoggingConfiguration,
    log_dir: Optional[Path] = None,
    *,
    console_level: Optional[str] = None,
) -> logging.Logger:
    """Configure console and JSON-lines file handlers for the installer.

    Args:
        config: Logging configuration containing level, size, and retention.
        log_dir: Optional directory override for log file placement.
        console_level: Optional level for the console handler (CLI verbosity).

    Returns:
        The package logger.

    Examples:
        >>> import tempfile
        >>> logger = setup_logging(LoggingConfiguration(), Path(tempfile.mkdtemp()))
        >>> logger.name
        'BinDepot.BinaryFetch'
    """
    env_dir = os.environ.get("BINFETCH_LOG_DIR")
    log_dir = log_dir or config.log_dir or (Path(env_dir) if env_dir else LOG_DIR)
    log_dir.mkdir(parents=True, exist_ok=True)
    _cleanup_logs(log_dir, config.retention_days)

    file_level = getattr(logging, config.level.upper(), logging.INFO)
    stream_level = getattr(logging, (console_level or "WARNING").upper(), logging.WARNING)
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(min(file_level, stream_level))

    for handler in list(logger.handlers):
        if getattr(handler, "_binfetch_managed", False):
            logger.removeHandler(handler)
            handler.close()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
    console_handler.setLevel(stream_level)
    console_handler._binfetch_managed = True  # type: ignore[attr-defined]
    logger.addHandler(console_handler)

    today = datetime.now(timezone.utc).strftime("%Y%m%d")
    file_handler = RotatingFileHandler(
        log_dir / f"binfetch-{today}.jsonl",
        maxBytes=int(config.max_log_size_mb * 1024 * 1024),
        backupCount=5,
    )
    file_handler.setLevel(file_level)
    file_handler.setFormatter(JSONFormatter())
    file_handler._binfetch_managed = True  # type: ignore[attr-defined]
    logger.addHandler(file_handler)

    logger.propagate = True
    return logger


__all__ = [
    "JSONFormatter",
    "LOGGER_NAME",
    "mask_sensitive_data",
    "setup_logging",
]
