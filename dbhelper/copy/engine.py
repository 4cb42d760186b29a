"""Copy orchestration.

Pipeline: validate the request, select a strategy, probe both catalogs,
build the plan, then dispatch it and aggregate the results. Everything up
to the plan is side-effect free, which is what ``--dry-run`` relies on.
"""

from __future__ import annotations

import shutil
import time
from collections.abc import Callable
from dataclasses import dataclass, replace
from pathlib import Path

from loguru import logger

from .catalog import CatalogReader, CopyInventory, PostgresCatalogReader
from .commands import PgToolCommands
from .dispatcher import ParallelDispatcher, TaskCallback
from .errors import ConflictError, ConnectionFailedError, ExecutionError
from .models import (
    CopyPlan,
    CopyRequest,
    CopyResult,
    OverallStatus,
    Strategy,
    TaskKind,
    TaskResult,
    TaskStatus,
)
from .planner import WHOLE_DATABASE, build_plan
from .progress import ProgressReporter, ProgressSink
from .results import aggregate_result
from .retry import RetryPolicy
from .runner import SubprocessToolRunner, ToolRunner
from .strategy import StrategyDecision, select_strategy
from .validator import OptionValidator


@dataclass(frozen=True)
class PreparedCopy:
    """Everything decided before the first side effect."""

    request: CopyRequest
    decision: StrategyDecision
    plan: CopyPlan
    inventory: CopyInventory | None
    warnings: tuple[str, ...] = ()

    @property
    def strategy(self) -> Strategy:
        return self.plan.strategy


class CopyEngine:
    """Runs a copy request end to end.

    Args:
        runner: Executes tool commands; a SubprocessToolRunner by default
        catalog: Reads source/target inventories; psycopg2-backed by default
        tool_dir: Directory holding pg_dump/psql/createdb/dropdb
        retry_base_delay: First retry backoff, in seconds
        progress_sink: Receives periodic progress snapshots
        on_task_finished: Receives each task's terminal result
        which: Tool lookup used by the pre-flight check
    """

    def __init__(
        self,
        *,
        runner: ToolRunner | None = None,
        catalog: CatalogReader | None = None,
        tool_dir: Path | None = None,
        retry_base_delay: float = 1.0,
        progress_sink: ProgressSink | None = None,
        on_task_finished: TaskCallback | None = None,
        which: Callable[[str], str | None] = shutil.which,
    ) -> None:
        self._runner = runner or SubprocessToolRunner()
        self._catalog = catalog or PostgresCatalogReader()
        self._tool_dir = tool_dir
        self._retry_base_delay = retry_base_delay
        self._progress_sink = progress_sink
        self._on_task_finished = on_task_finished
        self._which = which
        self._dispatcher: ParallelDispatcher | None = None

    # =========================================================================
    # Planning
    # =========================================================================

    def prepare(self, request: CopyRequest) -> PreparedCopy:
        """Validate, select a strategy and build the plan.

        Raises:
            ValidationError: If the flag set is invalid
            ConflictError: If the target state does not fit the mode (outside
                dry-run)
            ConnectionFailedError: If the catalog probe fails (outside dry-run)
        """
        validated = OptionValidator().validate(request)
        decision = select_strategy(request)
        warnings = list(validated.warnings)

        commands = PgToolCommands(
            request.source, request.target, request.options, tool_dir=self._tool_dir
        )
        try:
            inventory = self._probe(request, warnings)
            plan = build_plan(request, decision, commands, inventory)
        except ConflictError as e:
            if not request.options.dry_run:
                raise
            message = f"{e.message}; a real run would stop here"
            logger.warning(message)
            warnings.append(message)
            inventory = None
            plan = build_plan(request, decision, commands, None)

        for notice in plan.notices:
            if notice not in warnings:
                warnings.append(notice)

        return PreparedCopy(
            request=request,
            decision=decision,
            plan=plan,
            inventory=inventory,
            warnings=tuple(warnings),
        )

    def _probe(self, request: CopyRequest, warnings: list[str]) -> CopyInventory | None:
        """Read both catalogs. In dry-run a failure degrades to a coarse plan."""
        try:
            source = self._catalog.read(request.source)
            if not source.exists:
                raise ConflictError(
                    f"Source database {request.source.dbname} does not exist",
                    details=f"Checked on {request.source.host}:{request.source.port}",
                )
            target = self._catalog.read(request.target)
        except ConnectionFailedError as e:
            if not request.options.dry_run:
                raise
            message = f"Catalog probe failed ({e.message}); showing a coarse plan"
            logger.warning(message)
            warnings.append(message)
            return None
        return CopyInventory(source=source, target=target)

    # =========================================================================
    # Execution
    # =========================================================================

    def check_tools(self, plan: CopyPlan) -> None:
        """Verify every client tool the plan needs is executable.

        Raises:
            ExecutionError: Listing the missing tools
        """
        missing = sorted(tool for tool in plan.tools if self._which(tool) is None)
        if missing:
            raise ExecutionError(
                f"Required PostgreSQL client tools not found: {', '.join(missing)}",
                details="Install the PostgreSQL client package or set tool_dir in the config",
            )

    def run(self, prepared: PreparedCopy) -> CopyResult:
        """Execute a prepared plan. Task failures are reported, not raised.

        Raises:
            ExecutionError: If a required client tool is missing
        """
        request = prepared.request
        opts = request.options
        if opts.dry_run:
            return self.dry_run_result(prepared)

        self.check_tools(prepared.plan)
        start = time.monotonic()
        tasks = [replace(task) for task in prepared.plan.tasks]

        self._dispatcher = ParallelDispatcher(
            self._runner,
            jobs=opts.jobs,
            retry_policy=RetryPolicy(
                max_attempts=opts.max_attempts, base_delay=self._retry_base_delay
            ),
            task_timeout=opts.copy_timeout,
            total_timeout=opts.total_timeout,
            force=opts.force,
            abort_on_data_failure=opts.abort_on_data_failure,
            on_task_finished=self._on_task_finished,
        )
        logger.info(
            f"Copying {request.source.describe()} -> {request.target.describe()} "
            f"({prepared.strategy.value}, {len(tasks)} tasks, jobs={opts.jobs})"
        )

        if self._progress_sink is not None:
            with ProgressReporter(tasks, self._progress_sink, opts.progress_interval):
                outcome = self._dispatcher.run(tasks)
        else:
            outcome = self._dispatcher.run(tasks)

        warnings = list(prepared.warnings)
        if opts.validate_copy and outcome.sub_status is None:
            warnings.extend(self._verify_row_counts(request, outcome.results))

        result = aggregate_result(
            prepared.strategy,
            outcome.results,
            elapsed=time.monotonic() - start,
            warnings=warnings,
            sub_status=outcome.sub_status,
            target_name=request.target.dbname,
        )
        logger.info(
            f"Copy finished: {result.overall_status.value} in {result.elapsed:.1f}s "
            f"({len(result.failed_tasks)} failed tasks)"
        )
        return result

    def copy(self, request: CopyRequest) -> CopyResult:
        """Prepare and run ``request`` in one call."""
        return self.run(self.prepare(request))

    def cancel(self) -> None:
        """Cancel an in-flight run from another thread."""
        if self._dispatcher is not None:
            self._dispatcher.cancel()

    def dry_run_result(self, prepared: PreparedCopy) -> CopyResult:
        """Result describing the plan without running anything."""
        results = tuple(
            TaskResult(
                task_id=task.id,
                phase=task.phase,
                kind=task.kind,
                scope=task.scope,
                status=TaskStatus.PENDING,
                estimated_rows=task.estimated_rows,
            )
            for task in prepared.plan.tasks
        )
        return CopyResult(
            overall_status=OverallStatus.SUCCESS,
            strategy=prepared.strategy,
            task_results=results,
            warnings=prepared.warnings,
            dry_run=True,
        )

    # =========================================================================
    # Post-copy validation
    # =========================================================================

    def _verify_row_counts(
        self, request: CopyRequest, results: tuple[TaskResult, ...]
    ) -> list[str]:
        """Compare exact row counts of copied tables; mismatches become warnings."""
        tables = [
            r.scope
            for r in results
            if r.kind == TaskKind.DATA and r.succeeded and r.scope != WHOLE_DATABASE
        ]
        if not tables:
            return []

        try:
            source_counts = self._catalog.row_counts(request.source, tables)
            target_counts = self._catalog.row_counts(request.target, tables)
        except ConnectionFailedError as e:
            logger.warning(f"Row count validation skipped: {e.message}")
            return [f"Row count validation skipped: {e.message}"]

        warnings = []
        for table in tables:
            expected = source_counts.get(table)
            actual = target_counts.get(table)
            if expected != actual:
                warnings.append(
                    f"Row count mismatch for {table}: source={expected} target={actual}"
                )
        if warnings:
            logger.warning(f"Row count validation found {len(warnings)} mismatches")
        else:
            logger.info(f"Row counts match for {len(tables)} tables")
        return warnings
