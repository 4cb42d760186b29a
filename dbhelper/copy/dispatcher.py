"""Bounded parallel execution of plan tasks.

Phases run strictly in order with a barrier between them: every task of a
phase reaches a terminal state before the next phase starts. PREPARE tasks
run one at a time in plan order and stop at the first failure; the other
phases go through a thread pool of ``jobs`` workers.

Failure policy:
- continue-on-error within a phase (a failing table does not stop its
  siblings), unless ``abort_on_data_failure`` is set
- fail-fast across phases: after a PREPARE or SCHEMA failure no later phase
  starts, unless ``force`` is set
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass

from loguru import logger

from .models import PHASE_ORDER, Phase, SubStatus, Task, TaskResult, TaskStatus
from .retry import RetryPolicy, classify_failure
from .runner import ToolResult, ToolRunner

TaskCallback = Callable[[Task, TaskResult], None]


@dataclass(frozen=True)
class DispatchOutcome:
    """Per-task results in plan order, plus how the dispatch ended."""

    results: tuple[TaskResult, ...]
    elapsed: float
    sub_status: SubStatus | None = None


class ParallelDispatcher:
    """Runs tasks through a bounded worker pool.

    Args:
        runner: Executes each task's external command
        jobs: Worker pool size (>= 1)
        retry_policy: Retry limit and backoff for transient failures
        task_timeout: Per-attempt timeout in seconds
        total_timeout: Deadline for the whole dispatch, in seconds
        force: Start later phases even after a required task failed
        abort_on_data_failure: Cancel sibling tasks after a non-required failure
        on_task_finished: Called with each task's terminal result
    """

    def __init__(
        self,
        runner: ToolRunner,
        *,
        jobs: int = 1,
        retry_policy: RetryPolicy | None = None,
        task_timeout: float | None = None,
        total_timeout: float | None = None,
        force: bool = False,
        abort_on_data_failure: bool = False,
        on_task_finished: TaskCallback | None = None,
    ) -> None:
        if jobs < 1:
            raise ValueError("jobs must be at least 1")
        self._runner = runner
        self._jobs = jobs
        self._retry = retry_policy or RetryPolicy()
        self._task_timeout = task_timeout
        self._total_timeout = total_timeout
        self._force = force
        self._abort_on_data_failure = abort_on_data_failure
        self._on_task_finished = on_task_finished

        self._lock = threading.Lock()
        self._cancelled = threading.Event()
        self._phase_stop = threading.Event()
        self._sub_status: SubStatus | None = None
        self._results: dict[str, TaskResult] = {}

    # =========================================================================
    # Cancellation
    # =========================================================================

    def cancel(self, sub_status: SubStatus = SubStatus.CANCELLED) -> None:
        """Stop the dispatch: no new tasks start, running processes are terminated."""
        with self._lock:
            if self._cancelled.is_set():
                return
            self._sub_status = sub_status
            self._cancelled.set()
            self._phase_stop.set()
        logger.warning(f"Copy {sub_status.value}; terminating running tasks")
        self._runner.terminate_all()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    # =========================================================================
    # Dispatch
    # =========================================================================

    def run(self, tasks: Sequence[Task]) -> DispatchOutcome:
        """Run every task and return their terminal results in input order."""
        start = time.monotonic()
        self._results = {}
        deadline: threading.Timer | None = None
        if self._total_timeout:
            deadline = threading.Timer(
                self._total_timeout, self.cancel, kwargs={"sub_status": SubStatus.TIMED_OUT}
            )
            deadline.daemon = True
            deadline.start()

        blocked_by: str | None = None
        try:
            for phase in PHASE_ORDER:
                phase_tasks = [t for t in tasks if t.phase == phase]
                if not phase_tasks:
                    continue

                if self.cancelled:
                    self._skip(phase_tasks, "skipped: copy was cancelled")
                    continue
                if blocked_by is not None:
                    self._skip(phase_tasks, f"skipped: {blocked_by} phase failed")
                    continue

                logger.info(f"Starting {phase.value} phase ({len(phase_tasks)} tasks)")
                self._phase_stop = threading.Event()
                if self.cancelled:
                    self._phase_stop.set()

                if phase == Phase.PREPARE:
                    self._run_sequential(phase_tasks)
                else:
                    self._run_parallel(phase_tasks)

                failed = [
                    t for t in phase_tasks if self._results[t.id].status == TaskStatus.FAILED
                ]
                if failed:
                    logger.warning(f"{len(failed)} task(s) failed in {phase.value} phase")
                if failed and phase.required:
                    if self._force:
                        logger.warning(f"Continuing after {phase.value} failure (--force)")
                    else:
                        blocked_by = phase.value
        finally:
            if deadline is not None:
                deadline.cancel()

        ordered = tuple(self._results[t.id] for t in tasks)
        return DispatchOutcome(
            results=ordered,
            elapsed=time.monotonic() - start,
            sub_status=self._sub_status,
        )

    def _run_sequential(self, tasks: list[Task]) -> None:
        for index, task in enumerate(tasks):
            if self._phase_stop.is_set():
                self._skip(tasks[index:], "skipped: copy was cancelled")
                return
            try:
                result = self._execute(task, self._phase_stop)
            except KeyboardInterrupt:
                self.cancel()
                result = self._finish(task, None, error="cancelled")
            if result.status == TaskStatus.FAILED:
                self._skip(tasks[index + 1 :], f"skipped: {task.id} failed")
                return

    def _run_parallel(self, tasks: list[Task]) -> None:
        stop = self._phase_stop
        with ThreadPoolExecutor(
            max_workers=self._jobs, thread_name_prefix="copy-worker"
        ) as executor:
            futures = {executor.submit(self._execute, task, stop): task for task in tasks}
            pending = set(futures)
            while pending:
                try:
                    for future in as_completed(pending):
                        pending.discard(future)
                        result = future.result()
                        if (
                            result.status == TaskStatus.FAILED
                            and self._abort_on_data_failure
                            and not stop.is_set()
                        ):
                            logger.warning(
                                f"Aborting remaining {result.phase.value} tasks after {result.task_id} failed"
                            )
                            stop.set()
                            self._runner.terminate_all()
                except KeyboardInterrupt:
                    self.cancel()

    # =========================================================================
    # Task execution
    # =========================================================================

    def _execute(self, task: Task, stop: threading.Event) -> TaskResult:
        """Run one task with retries. Never raises for tool failures."""
        try:
            return self._attempt_loop(task, stop)
        except Exception as e:
            logger.exception(f"Task {task.id} crashed")
            return self._finish(task, None, error=f"internal error: {e}")

    def _attempt_loop(self, task: Task, stop: threading.Event) -> TaskResult:
        while True:
            if stop.is_set():
                reason = "cancelled" if self.cancelled else "aborted after sibling failure"
                return self._finish(task, None, error=reason)

            task.attempts += 1
            task.status = TaskStatus.RUNNING
            logger.debug(f"Task {task.id} attempt {task.attempts}: {task.command.render()}")
            result = self._runner.run(
                task.command, timeout=self._task_timeout, cancel_event=stop
            )

            if result.success:
                return self._finish(task, result)
            if result.cancelled:
                return self._finish(task, result, error="cancelled")

            failure = classify_failure(result)
            if self._retry.should_retry(failure, task.attempts):
                delay = self._retry.delay(task.attempts)
                task.status = TaskStatus.RETRIED
                logger.warning(
                    f"Task {task.id} failed ({failure.value}), retrying in {delay:.1f}s "
                    f"[attempt {task.attempts}/{self._retry.max_attempts}]"
                )
                if stop.wait(delay):
                    return self._finish(task, result, error="cancelled during backoff")
                continue

            error = "timed out" if result.timed_out else _first_line(result.stderr)
            return self._finish(task, result, error=error or f"exit code {result.returncode}")

    def _finish(
        self,
        task: Task,
        result: ToolResult | None,
        *,
        error: str | None = None,
    ) -> TaskResult:
        succeeded = result is not None and result.success and error is None
        task.status = TaskStatus.SUCCEEDED if succeeded else TaskStatus.FAILED
        failure_class = None
        if not succeeded and result is not None and not result.cancelled:
            failure_class = classify_failure(result)

        task_result = TaskResult(
            task_id=task.id,
            phase=task.phase,
            kind=task.kind,
            scope=task.scope,
            status=task.status,
            attempts=task.attempts,
            returncode=result.returncode if result else None,
            stderr=result.stderr if result else "",
            elapsed=result.elapsed if result else 0.0,
            failure_class=failure_class,
            error=error,
            estimated_rows=task.estimated_rows,
        )
        with self._lock:
            self._results[task.id] = task_result

        if succeeded:
            logger.info(f"Task {task.id} succeeded in {task_result.elapsed:.1f}s")
        else:
            logger.error(f"Task {task.id} failed: {error}")

        if self._on_task_finished is not None:
            try:
                self._on_task_finished(task, task_result)
            except Exception as e:
                logger.warning(f"Task callback failed: {e}")
        return task_result

    def _skip(self, tasks: Sequence[Task], reason: str) -> None:
        for task in tasks:
            self._finish(task, None, error=reason)


def _first_line(text: str) -> str:
    for line in text.splitlines():
        if line.strip():
            return line.strip()
    return ""
