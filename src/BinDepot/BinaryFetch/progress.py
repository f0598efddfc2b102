"""Per-chunk progress observers for the install pipeline.

The pipeline owns no terminal state.  It calls an injected observer once with
the expected size, once per chunk with the byte count, and once when the
transfer ends (successfully or not).  :class:`LoggingProgress` turns that into
structured ``download progress`` records; :class:`RichProgressBoard` drives a
``rich`` progress bar for interactive CLI use.
"""

from __future__ import annotations

import logging
from typing import Optional, Protocol

from rich.console import Console
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    TaskID,
    TextColumn,
    TransferSpeedColumn,
)


class ProgressObserver(Protocol):
    def start(self, total_bytes: Optional[int]) -> None:
        """Called before the first chunk; ``total_bytes`` is ``None`` when unknown."""

    def advance(self, num_bytes: int) -> None:
        """Called after every chunk is written and hashed."""

    def finish(self) -> None:
        """Called exactly once when the transfer stops."""


class NullProgress:
    def start(self, total_bytes: Optional[int]) -> None:
        pass

    def advance(self, num_bytes: int) -> None:
        pass

    def finish(self) -> None:
        pass


class LoggingProgress:
    """Emit a log record every ``percent_step`` of the transfer.

    When the size is unknown a record is emitted every ``bytes_threshold``
    bytes instead.
    """

    def __init__(
        self,
        logger: logging.Logger,
        *,
        label: str = "",
        percent_step: float = 0.1,
        bytes_threshold: int = 8 * 1024 * 1024,
    ) -> None:
        self.logger = logger
        self.label = label
        self.percent_step = percent_step
        self.bytes_threshold = bytes_threshold
        self.total_bytes: Optional[int] = None
        self.bytes_downloaded = 0
        self._next_percent: Optional[float] = None
        self._last_logged = 0

    def start(self, total_bytes: Optional[int]) -> None:
        self.total_bytes = total_bytes if total_bytes and total_bytes > 0 else None
        self.bytes_downloaded = 0
        self._last_logged = 0
        self._next_percent = self.percent_step if self.total_bytes else None

    def _emit(self, percent: Optional[float]) -> None:
        progress = {"bytes_downloaded": self.bytes_downloaded, "total_bytes": self.total_bytes}
        if percent is not None:
            progress["percent"] = round(min(percent, 1.0) * 100, 1)
        self.logger.info(
            "download progress",
            extra={"stage": "download", "file": self.label, "progress": progress},
        )

    def advance(self, num_bytes: int) -> None:
        self.bytes_downloaded += num_bytes
        if self.total_bytes:
            fraction = self.bytes_downloaded / self.total_bytes
            if self._next_percent is None or fraction + 1e-9 < self._next_percent:
                return
            self._emit(fraction)
            while self._next_percent is not None and fraction + 1e-9 >= self._next_percent:
                self._next_percent += self.percent_step
                if self._next_percent > 1.0 + 1e-9:
                    self._next_percent = None
            return
        if self.bytes_threshold > 0 and self.bytes_downloaded - self._last_logged >= self.bytes_threshold:
            self._emit(None)
            self._last_logged = self.bytes_downloaded

    def finish(self) -> None:
        self.logger.debug(
            "download finished",
            extra={"stage": "download", "file": self.label, "bytes": self.bytes_downloaded},
        )


class RichProgressBoard:
    """One ``rich`` live display shared by concurrent downloads.

    ``rich`` allows a single live display per console, so each download gets
    a task row on this board via :meth:`observer` instead of its own bar.
    """

    def __init__(self, *, console: Optional[Console] = None, transient: bool = True) -> None:
        self.progress = Progress(
            TextColumn("[bold]{task.description}"),
            BarColumn(),
            DownloadColumn(),
            TransferSpeedColumn(),
            console=console or Console(stderr=True),
            transient=transient,
        )

    def __enter__(self) -> "RichProgressBoard":
        self.progress.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.progress.stop()

    def observer(self, label: str) -> "RichProgress":
        return RichProgress(self.progress, label)


class RichProgress:
    """Task row on a shared :class:`rich.progress.Progress`."""

    def __init__(self, progress: Progress, label: str) -> None:
        self.progress = progress
        self.label = label
        self._task: Optional[TaskID] = None

    def start(self, total_bytes: Optional[int]) -> None:
        self._task = self.progress.add_task(self.label, total=total_bytes)

    def advance(self, num_bytes: int) -> None:
        if self._task is not None:
            self.progress.advance(self._task, num_bytes)

    def finish(self) -> None:
        if self._task is not None:
            self.progress.update(self._task, visible=False)


__all__ = ["LoggingProgress", "NullProgress", "ProgressObserver", "RichProgress", "RichProgressBoard"]
