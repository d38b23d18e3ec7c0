"""Rich progress bars for downloads and zip archiving."""
from __future__ import annotations

from contextlib import contextmanager
from typing import Callable, Iterator

from rich.console import Console
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
    TransferSpeedColumn,
)


class TransferProgress:
    def __init__(self, console: Console | None = None, *, transient: bool = False) -> None:
        self._progress = Progress(
            TextColumn("[bold blue]{task.fields[verb]:>8}"),
            TextColumn("{task.description}", markup=False),
            BarColumn(bar_width=None),
            DownloadColumn(),
            TransferSpeedColumn(),
            TimeElapsedColumn(),
            TextColumn("{task.fields[outcome]}"),
            console=console,
            transient=transient,
        )

    def __enter__(self) -> "TransferProgress":
        self._progress.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self._progress.stop()

    @contextmanager
    def track(self, verb: str, label: str, total_bytes: int | None = None) -> Iterator["ByteCounter"]:
        """Yield a counter for one transfer; the row shows ok/failed when the block exits."""
        task_id = self._progress.add_task(label, total=total_bytes, verb=verb, outcome="")
        counter = ByteCounter(self._progress, task_id)
        try:
            yield counter
        except BaseException:
            self._progress.update(task_id, outcome="[red]failed")
            raise
        # unknown sizes get a full bar once done
        self._progress.update(task_id, total=counter.transferred, outcome="[green]ok")


class ByteCounter:
    def __init__(self, progress: Progress, task_id: TaskID) -> None:
        self._progress = progress
        self._task_id = task_id
        self.transferred = 0

    def __call__(self, nbytes: int) -> None:
        self.transferred += nbytes
        self._progress.advance(self._task_id, nbytes)

    def relabel(self, label: str) -> None:
        self._progress.update(self._task_id, description=label)

    def per_entry(self) -> Callable[[str, int], None]:
        """Adapter for callbacks that report (entry name, nbytes)."""

        def _on_entry(name: str, nbytes: int) -> None:
            self.relabel(name)
            self(nbytes)

        return _on_entry
