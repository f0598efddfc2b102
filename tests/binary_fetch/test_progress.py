"""Progress observers."""

from __future__ import annotations

import io
import logging

from rich.console import Console

from BinDepot.BinaryFetch.progress import LoggingProgress, NullProgress, RichProgressBoard


def _progress_records(caplog):
    return [record.progress for record in caplog.records if record.message == "download progress"]


def test_logging_progress_percent_steps(caplog):
    caplog.set_level(logging.INFO)
    progress = LoggingProgress(logging.getLogger("binfetch-progress"), label="jq", percent_step=0.5)

    progress.start(100)
    for _ in range(10):
        progress.advance(10)
    progress.finish()

    assert [record["percent"] for record in _progress_records(caplog)] == [50.0, 100.0]


def test_logging_progress_unknown_size_uses_byte_threshold(caplog):
    caplog.set_level(logging.INFO)
    progress = LoggingProgress(logging.getLogger("binfetch-progress"), bytes_threshold=1000)

    progress.start(None)
    for _ in range(5):
        progress.advance(400)

    records = _progress_records(caplog)
    assert [record["bytes_downloaded"] for record in records] == [1200]
    assert records[0]["total_bytes"] is None


def test_rich_board_tracks_each_download():
    board = RichProgressBoard(console=Console(file=io.StringIO()), transient=False)

    with board:
        first = board.observer("jq")
        second = board.observer("rg")
        first.start(10)
        second.start(None)
        first.advance(10)
        second.advance(3)
        first.finish()
        second.finish()

    tasks = {task.description: task for task in board.progress.tasks}
    assert tasks["jq"].completed == 10
    assert tasks["rg"].completed == 3
    assert not tasks["jq"].visible


def test_null_progress_accepts_calls():
    progress = NullProgress()
    progress.start(None)
    progress.advance(1)
    progress.finish()
