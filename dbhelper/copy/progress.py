"""Periodic progress snapshots.

The reporter runs on its own thread and only reads counters, so a slow
sink never delays task execution.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from loguru import logger

from .models import DEFAULT_PROGRESS_INTERVAL, Task, TaskKind, TaskStatus


@dataclass(frozen=True)
class ProgressSnapshot:
    tasks_total: int
    tasks_done: int
    tasks_failed: int
    estimated_percent: float
    row_weighted: bool = False

    def describe(self) -> str:
        basis = "rows" if self.row_weighted else "tasks"
        return (
            f"{self.estimated_percent:5.1f}% ({self.tasks_done}/{self.tasks_total} tasks done, "
            f"{self.tasks_failed} failed, weighted by {basis})"
        )


ProgressSink = Callable[[ProgressSnapshot], None]


def take_snapshot(tasks: Sequence[Task]) -> ProgressSnapshot:
    """Summarize task states.

    The percentage is weighted by estimated row counts when every data
    task carries one, otherwise by task count.
    """
    total = len(tasks)
    done = sum(1 for t in tasks if t.status.terminal)
    failed = sum(1 for t in tasks if t.status == TaskStatus.FAILED)

    weighted = [t for t in tasks if t.estimated_rows is not None]
    row_total = sum(t.estimated_rows or 0 for t in weighted)
    data_tasks = [t for t in tasks if t.kind == TaskKind.DATA]
    row_weighted = row_total > 0 and all(t.estimated_rows is not None for t in data_tasks)

    if total == 0:
        percent = 100.0
    elif row_weighted:
        # Tasks without a row estimate (schema, prepare) count as one row each
        unweighted = [t for t in tasks if t.estimated_rows is None]
        denominator = row_total + len(unweighted)
        numerator = sum(t.estimated_rows or 0 for t in weighted if t.status.terminal)
        numerator += sum(1 for t in unweighted if t.status.terminal)
        percent = 100.0 * numerator / denominator
    else:
        percent = 100.0 * done / total

    return ProgressSnapshot(
        tasks_total=total,
        tasks_done=done,
        tasks_failed=failed,
        estimated_percent=round(percent, 1),
        row_weighted=row_weighted,
    )


class ProgressReporter:
    """Emits a snapshot to ``sink`` every ``interval`` seconds.

    Use as a context manager around the dispatch; a final snapshot is
    emitted on exit.
    """

    def __init__(
        self,
        tasks: Sequence[Task],
        sink: ProgressSink,
        interval: float = DEFAULT_PROGRESS_INTERVAL,
    ) -> None:
        self._tasks = tasks
        self._sink = sink
        self._interval = interval
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def snapshot(self) -> ProgressSnapshot:
        return take_snapshot(self._tasks)

    def emit(self) -> None:
        try:
            self._sink(self.snapshot())
        except Exception as e:
            logger.warning(f"Progress sink failed: {e}")

    def _loop(self) -> None:
        while not self._stop.wait(self._interval):
            self.emit()

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(
            target=self._loop, name="copy-progress", daemon=True
        )
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None
        self.emit()

    def __enter__(self) -> ProgressReporter:
        self.start()
        return self

    def __exit__(self, *args: object) -> None:
        self.stop()
