"""Structured logging configuration."""

from __future__ import annotations

import json
import logging
import os
import sys
import time

import pytest

from BinDepot.BinaryFetch.logging_config import (
    LOGGER_NAME,
    JSONFormatter,
    mask_sensitive_data,
    setup_logging,
)
from BinDepot.BinaryFetch.settings import LoggingConfiguration


@pytest.fixture
def restore_package_logger():
    logger = logging.getLogger(LOGGER_NAME)
    handlers, level = list(logger.handlers), logger.level
    yield
    for handler in list(logger.handlers):
        if handler not in handlers:
            logger.removeHandler(handler)
            handler.close()
    logger.setLevel(level)


def test_setup_logging_writes_json_lines(tmp_path, restore_package_logger):
    logger = setup_logging(LoggingConfiguration(level="DEBUG"), tmp_path)

    logging.getLogger(f"{LOGGER_NAME}.pipeline").info(
        "installed artifact", extra={"stage": "install", "path": "/opt/bin/jq", "token": "abc"}
    )
    for handler in logger.handlers:
        handler.flush()

    (log_file,) = tmp_path.glob("binfetch-*.jsonl")
    payload = json.loads(log_file.read_text(encoding="utf-8").strip().splitlines()[-1])
    assert payload["message"] == "installed artifact"
    assert payload["stage"] == "install"
    assert payload["path"] == "/opt/bin/jq"
    assert payload["token"] == "***masked***"
    assert payload["level"] == "INFO"


def test_setup_logging_replaces_its_own_handlers(tmp_path, restore_package_logger):
    setup_logging(LoggingConfiguration(), tmp_path)
    logger = setup_logging(LoggingConfiguration(), tmp_path)

    managed = [handler for handler in logger.handlers if getattr(handler, "_binfetch_managed", False)]
    assert len(managed) == 2


def test_old_logs_are_compressed(tmp_path, restore_package_logger):
    stale = tmp_path / "binfetch-20000101.jsonl"
    stale.write_text('{"message": "old"}\n', encoding="utf-8")
    old = time.time() - 90 * 86400
    os.utime(stale, (old, old))

    setup_logging(LoggingConfiguration(retention_days=30), tmp_path)

    assert not stale.exists()
    assert (tmp_path / "binfetch-20000101.jsonl.gz").exists()


def test_json_formatter_includes_exception():
    try:
        raise ValueError("boom")
    except ValueError:
        record = logging.getLogger("x").makeRecord(
            "x", logging.ERROR, __file__, 1, "failed", None, exc_info=sys.exc_info()
        )

    payload = json.loads(JSONFormatter().format(record))
    assert payload["stage"] is None
    assert "ValueError: boom" in payload["exc_info"]


def test_mask_sensitive_data():
    assert mask_sensitive_data({"Authorization": "Bearer x", "url": "https://x?apikey=1", "ok": 1}) == {
        "Authorization": "***masked***",
        "url": "***masked***",
        "ok": 1,
    }
