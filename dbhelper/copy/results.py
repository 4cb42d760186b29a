"""Aggregation of task outcomes into a CopyResult."""

from __future__ import annotations

from collections.abc import Sequence

from .models import (
    CopyResult,
    OverallStatus,
    Strategy,
    SubStatus,
    TaskKind,
    TaskResult,
    TaskStatus,
)

ROW_CARRYING_KINDS = (TaskKind.DATA, TaskKind.CLONE)


def overall_status(
    results: Sequence[TaskResult], sub_status: SubStatus | None = None
) -> OverallStatus:
    """Success, PartialFailure (only data/finalize failures) or Failed."""
    if sub_status is not None:
        return OverallStatus.FAILED
    failed = [r for r in results if r.status == TaskStatus.FAILED]
    if not failed:
        return OverallStatus.SUCCESS
    if any(r.phase.required for r in failed):
        return OverallStatus.FAILED
    return OverallStatus.PARTIAL_FAILURE


def aggregate_result(
    strategy: Strategy,
    results: Sequence[TaskResult],
    *,
    elapsed: float,
    warnings: Sequence[str] = (),
    sub_status: SubStatus | None = None,
    target_name: str | None = None,
    dry_run: bool = False,
) -> CopyResult:
    """Build the final CopyResult.

    A cancelled or timed-out copy adds a warning that the target may be
    partially populated; it is never rolled back automatically.
    """
    all_warnings = list(warnings)
    if sub_status is not None:
        subject = f"Target database {target_name}" if target_name else "The target"
        all_warnings.append(
            f"Copy {sub_status.value.replace('_', ' ')}: {subject} may be partially "
            "populated and was not rolled back"
        )

    rows = sum(
        r.estimated_rows or 0
        for r in results
        if r.status == TaskStatus.SUCCEEDED and r.kind in ROW_CARRYING_KINDS
    )

    return CopyResult(
        overall_status=overall_status(results, sub_status),
        strategy=strategy,
        task_results=tuple(results),
        elapsed=elapsed,
        rows_copied_estimate=rows,
        warnings=tuple(dict.fromkeys(all_warnings)),
        sub_status=sub_status,
        dry_run=dry_run,
    )
