"""Console progress display for arkv uploads.

One row per destination: a spinner, elapsed time, files done / total and
the file currently being sent.  The hooks are called from the transfer
worker threads; ``rich.progress.Progress`` serialises its own updates.
"""

from __future__ import annotations

import threading

from rich.console import Console
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
)

from arkv.config import Destination
from arkv.transfer import DestinationFailure, TransferStats
from arkv.utils.path_helpers import human_readable_size
from arkv.walker import TransferTask, UploadPlan


class ConsoleProgress:
    """Renders :func:`arkv.transfer.run_transfers` callbacks with rich.

    Usage::

        with ConsoleProgress(console) as progress:
            report = run_transfers(
                destinations,
                path,
                key_path,
                on_plan=progress.on_plan,
                on_file_start=progress.on_file_start,
                on_finished=progress.on_finished,
                on_failed=progress.on_failed,
            )
    """

    def __init__(self, console: Console | None = None) -> None:
        self._progress = Progress(
            SpinnerColumn(style="green"),
            TextColumn("[bold]{task.fields[destination]}"),
            TimeElapsedColumn(),
            BarColumn(bar_width=40, style="blue", complete_style="cyan"),
            MofNCompleteColumn(),
            TextColumn("files {task.description}"),
            console=console,
        )
        self._tasks: dict[str, TaskID] = {}
        self._lock = threading.Lock()

    def __enter__(self) -> "ConsoleProgress":
        self._progress.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self._progress.stop()

    def _task_for(self, destination: Destination, total: int | None = None) -> TaskID:
        with self._lock:
            task_id = self._tasks.get(destination.name)
            if task_id is None:
                task_id = self._progress.add_task(
                    "", total=total, destination=destination.name
                )
                self._tasks[destination.name] = task_id
            return task_id

    def on_plan(self, destination: Destination, plan: UploadPlan) -> None:
        task_id = self._task_for(destination, plan.file_count)
        self._progress.update(task_id, total=plan.file_count)

    def on_file_start(
        self, destination: Destination, task: TransferTask, position: int, total: int
    ) -> None:
        task_id = self._task_for(destination, total)
        self._progress.update(
            task_id,
            completed=position - 1,
            description=f"Uploading {task.relative_path}",
        )

    def on_finished(
        self, destination: Destination, plan: UploadPlan, stats: TransferStats
    ) -> None:
        task_id = self._task_for(destination, plan.file_count)
        self._progress.update(
            task_id,
            completed=plan.file_count,
            description=(
                f"[green]✓ Uploaded {plan.describe()} "
                f"({human_readable_size(stats.bytes_transferred)})"
            ),
        )

    def on_failed(self, destination: Destination, failure: DestinationFailure) -> None:
        """Freeze the destination's row and show why it stopped."""
        task_id = self._task_for(destination)
        self._progress.update(task_id, description=f"[red]✗ Failed: {failure.error}")
        self._progress.stop_task(task_id)
