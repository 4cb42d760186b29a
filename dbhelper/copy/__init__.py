"""Database copy orchestration.

This package turns a copy request (source, target, filters, mode flags)
into a validated plan of external-tool tasks and runs it with bounded
parallelism, retries and progress reporting:

- resolver: Connection parameter resolution
- validator: Pre-flight option validation
- strategy: TemplateClone / DumpRestorePipe / SyncDiff selection
- planner: Strategy expansion into phased tasks
- dispatcher: Bounded parallel execution with retries
- progress: Periodic progress snapshots
- engine: The end-to-end pipeline

Usage:
    from dbhelper.copy import CopyEngine, resolve_request

    request = resolve_request(source, target, options)
    result = CopyEngine().copy(request)
"""

from .catalog import (
    CatalogReader,
    ColumnInfo,
    CopyInventory,
    DatabaseInventory,
    PostgresCatalogReader,
    TableInfo,
)
from .commands import PgToolCommands
from .dispatcher import DispatchOutcome, ParallelDispatcher
from .engine import CopyEngine, PreparedCopy
from .errors import (
    ConflictError,
    ConnectionFailedError,
    CopyError,
    ExecutionError,
    ResolutionError,
    ValidationError,
)
from .models import (
    ConnectionSpec,
    CopyOptions,
    CopyPlan,
    CopyRequest,
    CopyResult,
    OverallStatus,
    PasswordSource,
    Phase,
    Strategy,
    SubStatus,
    Task,
    TaskKind,
    TaskResult,
    TaskStatus,
    ToolCommand,
)
from .planner import PlanBuilder, build_plan
from .progress import ProgressReporter, ProgressSnapshot
from .resolver import RawConnectionParams, resolve_request
from .retry import RetryPolicy, classify_failure
from .runner import SubprocessToolRunner, ToolResult, ToolRunner
from .strategy import StrategyDecision, select_strategy
from .validator import OptionValidator, validate_request

__all__ = [
    "CatalogReader",
    "ColumnInfo",
    "ConflictError",
    "ConnectionFailedError",
    "ConnectionSpec",
    "CopyEngine",
    "CopyError",
    "CopyInventory",
    "CopyOptions",
    "CopyPlan",
    "CopyRequest",
    "CopyResult",
    "DatabaseInventory",
    "DispatchOutcome",
    "ExecutionError",
    "OptionValidator",
    "OverallStatus",
    "ParallelDispatcher",
    "PasswordSource",
    "PgToolCommands",
    "Phase",
    "PlanBuilder",
    "PostgresCatalogReader",
    "PreparedCopy",
    "ProgressReporter",
    "ProgressSnapshot",
    "RawConnectionParams",
    "ResolutionError",
    "RetryPolicy",
    "Strategy",
    "StrategyDecision",
    "SubStatus",
    "SubprocessToolRunner",
    "TableInfo",
    "Task",
    "TaskKind",
    "TaskResult",
    "TaskStatus",
    "ToolCommand",
    "ToolResult",
    "ToolRunner",
    "ValidationError",
    "build_plan",
    "classify_failure",
    "resolve_request",
    "select_strategy",
    "validate_request",
]
