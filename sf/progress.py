"""
Progress rendering — rich live progress bars.

Usage::

    tracker = ProgressTracker(direction="↓ RECV")
    tracker.start()
    tracker.set_total(3)

    with tracker.file(1, "docs/readme.txt", size=11) as fp:
        fp.advance(11)

    tracker.stop()
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Generator

from rich.console import Console
from rich.markup import escape
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeRemainingColumn,
    TransferSpeedColumn,
)


class FileProgress:
    """Context returned by ProgressTracker.file() — advance bytes as you go."""

    def __init__(self, progress: Progress, task_id: TaskID, size: int) -> None:
        self._progress = progress
        self._task_id = task_id
        self._size = size

    def advance(self, n: int) -> None:
        self._progress.advance(self._task_id, n)

    def finish(self) -> None:
        self._progress.update(self._task_id, completed=max(self._size, 1))


class ProgressTracker:
    """Live per-file progress display using Rich, labelled [index/total]."""

    def __init__(self, direction: str = "→", total_files: int = 0) -> None:
        self.direction = direction
        self.total_files = total_files
        self._progress = Progress(
            SpinnerColumn(),
            TextColumn(f"[bold cyan]{direction}[/] [bold]{{task.fields[counter]}}[/]"),
            BarColumn(bar_width=None),
            DownloadColumn(),
            TransferSpeedColumn(),
            TimeRemainingColumn(),
            TextColumn("[dim]{task.fields[filename]}"),
            console=Console(stderr=True),
            expand=True,
        )

    def start(self) -> None:
        self._progress.start()

    def stop(self) -> None:
        self._progress.stop()

    def set_total(self, total_files: int) -> None:
        """The receiver only learns the file count from the manifest."""
        self.total_files = total_files

    @contextmanager
    def file(self, index: int, filename: str, size: int) -> Generator[FileProgress, None, None]:
        """Progress for the *index*-th file (1-based) of the transfer."""
        width = len(str(self.total_files))
        task_id = self._progress.add_task(
            "transfer",
            total=max(size, 1),
            filename=escape(filename),
            counter=f"[{index:>{width}}/{self.total_files}]",
        )
        fp = FileProgress(self._progress, task_id, size)
        try:
            yield fp
            fp.finish()
        finally:
            self._progress.remove_task(task_id)


class _NopFileProgress:
    def advance(self, n: int) -> None: ...
    def finish(self) -> None: ...


class NullProgress:
    """Drop-in no-op replacement when --quiet is set."""

    def start(self) -> None: ...
    def stop(self) -> None: ...
    def set_total(self, total_files: int) -> None: ...

    @contextmanager
    def file(self, index: int, filename: str, size: int) -> Generator[_NopFileProgress, None, None]:
        yield _NopFileProgress()
