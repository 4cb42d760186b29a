"""Database copy command.

Copies a PostgreSQL database (or a filtered subset of it) to another
database on the same or a different server, using template cloning,
a pg_dump | psql pipe, or an in-place sync.
"""

import signal
import sys
import threading
from pathlib import Path
from typing import Annotated

import typer
from rich.table import Table

from dbhelper.cli.shared.console import EXIT_FAILURE, console, with_error_handling
from dbhelper.copy import (
    CopyEngine,
    CopyError,
    CopyOptions,
    CopyResult,
    OverallStatus,
    PasswordSource,
    PreparedCopy,
    ProgressSnapshot,
    RawConnectionParams,
    Task,
    TaskResult,
    TaskStatus,
    ValidationError,
    resolve_request,
)
from dbhelper.runtime.config import ToolConfig, load_config
from dbhelper.runtime.logging import LOG_FILE_NAME, configure_logging

_STATUS_STYLE = {
    TaskStatus.SUCCEEDED: "[green]succeeded[/green]",
    TaskStatus.FAILED: "[red]failed[/red]",
    TaskStatus.PENDING: "[dim]pending[/dim]",
    TaskStatus.RUNNING: "[cyan]running[/cyan]",
    TaskStatus.RETRIED: "[yellow]retried[/yellow]",
}

_OVERALL_STYLE = {
    OverallStatus.SUCCESS: "green",
    OverallStatus.PARTIAL_FAILURE: "yellow",
    OverallStatus.FAILED: "red",
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _password_source(
    side: str, literal: str | None, env_var: str | None, from_stdin: bool
) -> PasswordSource:
    flags = (
        (f"--{side}-password", literal),
        (f"--{side}-password-env", env_var),
        (f"--{side}-password-stdin", from_stdin),
    )
    given = [flag for flag, value in flags if value]
    if len(given) > 1:
        raise ValidationError([f"Use only one of {', '.join(given)}"])
    if literal:
        return PasswordSource.literal(literal)
    if env_var:
        return PasswordSource.env(env_var)
    if from_stdin:
        return PasswordSource.stdin()
    return PasswordSource()


def _load_config() -> ToolConfig:
    try:
        return load_config()
    except ValueError as e:
        raise CopyError("Invalid configuration", details=str(e)) from e


def build_engine(config: ToolConfig) -> CopyEngine:
    """Create the engine with console progress and per-task output."""
    return CopyEngine(
        tool_dir=config.tool_dir,
        retry_base_delay=config.retry_base_delay,
        progress_sink=_print_progress,
        on_task_finished=_print_task,
    )


def sigterm_canceller(engine: CopyEngine):
    """SIGTERM handler that cancels the copy from a separate thread.

    Cancelling takes the dispatcher and runner locks and waits for child
    processes, none of which may happen inside a signal handler.
    """

    def _handler(signum, frame) -> None:
        threading.Thread(target=engine.cancel, name="copy-sigterm", daemon=True).start()

    return _handler


def _print_progress(snapshot: ProgressSnapshot) -> None:
    console.print(f"[dim]Progress: {snapshot.describe()}[/dim]")


def _print_task(task: Task, result: TaskResult) -> None:
    if result.succeeded:
        retries = f" after {result.attempts} attempts" if result.attempts > 1 else ""
        console.ok(f"{task.id} ({result.elapsed:.1f}s){retries}")
    else:
        console.error(f"{task.id}: {result.error}")


def print_plan(prepared: PreparedCopy) -> None:
    """Print the execution plan as a table."""
    request = prepared.request
    console.print_subheader(
        f"Copy plan: {request.source.describe()} → {request.target.describe()} "
        f"({prepared.strategy.value})"
    )

    table = Table(show_header=True, header_style="bold")
    table.add_column("#", justify="right")
    table.add_column("Phase")
    table.add_column("Task")
    table.add_column("Est. rows", justify="right")
    table.add_column("Command", overflow="fold")

    for index, task in enumerate(prepared.plan.tasks, 1):
        rows = f"{task.estimated_rows:,}" if task.estimated_rows is not None else ""
        table.add_row(
            str(index), task.phase.value, task.id, rows, task.command.render()
        )
    console.print(table)

    for warning in prepared.warnings:
        console.warn(warning)


def print_report(result: CopyResult) -> None:
    """Print every task's terminal status and the overall outcome."""
    console.print_subheader("Copy report")

    table = Table(show_header=True, header_style="bold")
    table.add_column("Task")
    table.add_column("Phase")
    table.add_column("Status")
    table.add_column("Attempts", justify="right")
    table.add_column("Time", justify="right")
    table.add_column("Error", overflow="fold")

    for r in result.task_results:
        table.add_row(
            r.task_id,
            r.phase.value,
            _STATUS_STYLE.get(r.status, r.status.value),
            str(r.attempts),
            f"{r.elapsed:.1f}s",
            r.error or "",
        )
    console.print(table)

    for warning in result.warnings:
        console.warn(warning)

    style = _OVERALL_STYLE[result.overall_status]
    status = result.overall_status.value.replace("_", " ")
    if result.sub_status is not None:
        status += f" ({result.sub_status.value.replace('_', ' ')})"
    console.print(
        f"\n[bold {style}]Copy {status}[/bold {style}] in {result.elapsed:.1f}s, "
        f"~{result.rows_copied_estimate:,} rows copied, "
        f"{len(result.failed_tasks)} failed tasks"
    )


def _confirm(prepared: PreparedCopy) -> bool:
    request = prepared.request
    opts = request.options
    details = (
        f"Source:   {request.source.describe()}\n"
        f"Target:   {request.target.describe()}\n"
        f"Strategy: {prepared.strategy.value}\n"
        f"Tasks:    {len(prepared.plan.tasks)}"
    )
    extra = None
    if opts.drop_target:
        extra = f"Target database {request.target.dbname} will be dropped and recreated."
    elif opts.sync and opts.truncate_tables:
        extra = f"Tables in {request.target.dbname} will be truncated before loading."
    return console.confirm_action(
        f"Copy {request.source.dbname} to {request.target.dbname}",
        details=details,
        extra_warning=extra,
    )


# ---------------------------------------------------------------------------
# Command
# ---------------------------------------------------------------------------


@with_error_handling
def copy(
    # Source
    dbname: Annotated[
        str,
        typer.Option("--dbname", "-d", help="Source database name"),
    ],
    target_dbname: Annotated[
        str,
        typer.Option("--target-dbname", help="Target database name"),
    ],
    src_host: Annotated[
        str | None,
        typer.Option("--src-host", "-H", help="Source host (default: $PGHOST or localhost)"),
    ] = None,
    src_port: Annotated[
        int | None,
        typer.Option("--src-port", "-p", help="Source port (default: $PGPORT or 5432)"),
    ] = None,
    src_user: Annotated[
        str | None,
        typer.Option("--src-user", "-U", help="Source user (default: $PGUSER or postgres)"),
    ] = None,
    src_password: Annotated[
        str | None,
        typer.Option("--src-password", help="Source password (prefer --src-password-env)"),
    ] = None,
    src_password_env: Annotated[
        str | None,
        typer.Option("--src-password-env", help="Environment variable holding the source password"),
    ] = None,
    src_password_stdin: Annotated[
        bool,
        typer.Option("--src-password-stdin", help="Read the source password from stdin"),
    ] = False,
    # Target
    target_host: Annotated[
        str | None,
        typer.Option("--target-host", help="Target host (default: source host)"),
    ] = None,
    target_port: Annotated[
        int | None,
        typer.Option("--target-port", help="Target port (default: source port)"),
    ] = None,
    target_user: Annotated[
        str | None,
        typer.Option("--target-user", help="Target user (default: source user)"),
    ] = None,
    target_password: Annotated[
        str | None,
        typer.Option("--target-password", help="Target password (prefer --target-password-env)"),
    ] = None,
    target_password_env: Annotated[
        str | None,
        typer.Option("--target-password-env", help="Environment variable holding the target password"),
    ] = None,
    target_password_stdin: Annotated[
        bool,
        typer.Option("--target-password-stdin", help="Read the target password from stdin"),
    ] = False,
    # TLS
    sslmode: Annotated[
        str | None,
        typer.Option("--sslmode", help="SSL mode for both connections (e.g., require, verify-full)"),
    ] = None,
    sslcert: Annotated[
        Path | None,
        typer.Option("--sslcert", help="Client certificate file"),
    ] = None,
    sslkey: Annotated[
        Path | None,
        typer.Option("--sslkey", help="Client private key file"),
    ] = None,
    # Mode
    fast: Annotated[
        bool,
        typer.Option("--fast", help="Clone with CREATE DATABASE ... TEMPLATE (same server only)"),
    ] = False,
    sync: Annotated[
        bool,
        typer.Option("--sync", help="Update an existing target in place"),
    ] = False,
    drop_target: Annotated[
        bool,
        typer.Option("--drop-target", help="Drop and recreate the target database"),
    ] = False,
    truncate_tables: Annotated[
        bool,
        typer.Option("--truncate-tables", help="Truncate target tables before loading (with --sync)"),
    ] = False,
    schema_only: Annotated[
        bool,
        typer.Option("--schema-only", help="Copy schema objects only"),
    ] = False,
    data_only: Annotated[
        bool,
        typer.Option("--data-only", help="Copy table rows only"),
    ] = False,
    # Filters
    include_table: Annotated[
        list[str] | None,
        typer.Option("--include-table", help="Copy only matching tables (glob, repeatable)"),
    ] = None,
    exclude_table: Annotated[
        list[str] | None,
        typer.Option("--exclude-table", help="Skip matching tables (glob, repeatable)"),
    ] = None,
    include_schema: Annotated[
        list[str] | None,
        typer.Option("--include-schema", help="Copy only matching schemas (glob, repeatable)"),
    ] = None,
    exclude_schema: Annotated[
        list[str] | None,
        typer.Option("--exclude-schema", help="Skip matching schemas (glob, repeatable)"),
    ] = None,
    # Load tuning
    exclude_large_objects: Annotated[
        bool,
        typer.Option("--exclude-large-objects", help="Do not copy large objects"),
    ] = False,
    disable_triggers: Annotated[
        bool,
        typer.Option("--disable-triggers", help="Disable triggers while loading data"),
    ] = False,
    disable_indexes: Annotated[
        bool,
        typer.Option("--disable-indexes", help="Build indexes after the data load"),
    ] = False,
    # Performance
    jobs: Annotated[
        int | None,
        typer.Option("--jobs", "-j", help="Parallel workers (default: 1)"),
    ] = None,
    work_mem: Annotated[
        str | None,
        typer.Option("--work-mem", help="work_mem for loading sessions (e.g., 64MB)"),
    ] = None,
    maintenance_work_mem: Annotated[
        str | None,
        typer.Option("--maintenance-work-mem", help="maintenance_work_mem for index builds (e.g., 1GB)"),
    ] = None,
    # Timeouts and failure policy
    copy_timeout: Annotated[
        int | None,
        typer.Option("--copy-timeout", help="Per-task timeout in seconds"),
    ] = None,
    connection_timeout: Annotated[
        int | None,
        typer.Option("--connection-timeout", help="Connection timeout in seconds"),
    ] = None,
    total_timeout: Annotated[
        int | None,
        typer.Option("--total-timeout", help="Deadline for the whole copy in seconds"),
    ] = None,
    retries: Annotated[
        int | None,
        typer.Option("--retries", help="Attempts per task for transient failures (default: 3)"),
    ] = None,
    force: Annotated[
        bool,
        typer.Option("--force", help="Load data even if a schema task failed"),
    ] = False,
    abort_on_failure: Annotated[
        bool,
        typer.Option("--abort-on-failure", help="Cancel remaining data tasks after the first failure"),
    ] = False,
    progress_interval: Annotated[
        float | None,
        typer.Option("--progress-interval", help="Seconds between progress updates"),
    ] = None,
    validate: Annotated[
        bool,
        typer.Option("--validate", help="Compare row counts after the copy"),
    ] = False,
    # Run control
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", help="Show the plan without executing anything"),
    ] = False,
    skip_confirmation: Annotated[
        bool,
        typer.Option("--skip-confirmation", "-y", help="Do not ask for confirmation"),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Show debug logging"),
    ] = False,
    log_file: Annotated[
        Path | None,
        typer.Option("--log-file", help="Write a debug log to this file"),
    ] = None,
) -> None:
    """Copy a PostgreSQL database.

    Three strategies are chosen automatically:

    --fast: CREATE DATABASE ... TEMPLATE on the same server. Falls back to
    dump/restore when table or schema filters are given.

    --sync: Update an existing target in place (missing tables and columns
    are created, rows are loaded).

    Default: pg_dump | psql, split into schema, per-table data and
    index/constraint steps that run with --jobs workers.

    Examples:
        # Clone on the same server
        dbhelper copy -d appdb --target-dbname appdb_copy --fast

        # Copy two tables to another server with 4 workers
        dbhelper copy -d appdb -H db1 --target-host db2 --target-dbname appdb \\
            --include-table users --include-table orders -j 4

        # Refresh an existing copy
        dbhelper copy -d appdb --target-dbname appdb_copy --sync --truncate-tables

        # Show the plan only
        dbhelper copy -d appdb --target-dbname appdb_copy --dry-run
    """
    config = _load_config()
    configure_logging(
        verbose, log_file or (config.log_dir / LOG_FILE_NAME if config.log_dir else None)
    )

    options = CopyOptions(
        schema_only=schema_only,
        data_only=data_only,
        fast=fast,
        sync=sync,
        drop_target=drop_target,
        truncate_tables=truncate_tables,
        include_tables=tuple(include_table or ()),
        exclude_tables=tuple(exclude_table or ()),
        include_schemas=tuple(include_schema or ()),
        exclude_schemas=tuple(exclude_schema or ()),
        exclude_large_objects=exclude_large_objects,
        disable_triggers=disable_triggers,
        disable_indexes=disable_indexes,
        jobs=jobs if jobs is not None else config.jobs,
        work_mem=work_mem,
        maintenance_work_mem=maintenance_work_mem,
        copy_timeout=copy_timeout if copy_timeout is not None else config.copy_timeout,
        connection_timeout=(
            connection_timeout if connection_timeout is not None else config.connection_timeout
        ),
        total_timeout=total_timeout,
        dry_run=dry_run,
        validate_copy=validate,
        progress_interval=(
            progress_interval if progress_interval is not None else config.progress_interval
        ),
        force=force,
        max_attempts=retries if retries is not None else config.max_attempts,
        abort_on_data_failure=abort_on_failure,
    )

    source = RawConnectionParams(
        dbname=dbname,
        host=src_host,
        port=src_port,
        user=src_user,
        password=_password_source("src", src_password, src_password_env, src_password_stdin),
        sslmode=sslmode,
        sslcert=sslcert,
        sslkey=sslkey,
    )
    target = RawConnectionParams(
        dbname=target_dbname,
        host=target_host,
        port=target_port,
        user=target_user,
        password=_password_source(
            "target", target_password, target_password_env, target_password_stdin
        ),
        sslmode=sslmode,
        sslcert=sslcert,
        sslkey=sslkey,
    )
    request = resolve_request(source, target, options, stdin=sys.stdin)

    engine = build_engine(config)
    with console.status("Inspecting source and target databases..."):
        prepared = engine.prepare(request)
    print_plan(prepared)

    if dry_run:
        console.info("Dry run: no commands were executed")
        return

    if not skip_confirmation and not _confirm(prepared):
        console.warn("Copy cancelled")
        raise typer.Exit(EXIT_FAILURE)

    previous = signal.signal(signal.SIGTERM, sigterm_canceller(engine))
    try:
        result = engine.run(prepared)
    finally:
        signal.signal(signal.SIGTERM, previous)

    print_report(result)
    if not result.succeeded:
        raise typer.Exit(EXIT_FAILURE)
