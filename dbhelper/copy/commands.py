"""PostgreSQL client tool command builders.

Builds ToolCommand descriptors for ``pg_dump``, ``psql``, ``createdb`` and
``dropdb``. Nothing here runs a process; the runner executes the
descriptors and the dispatcher decides when.

Every psql consumer runs with ``ON_ERROR_STOP`` in a single transaction so
a failed load leaves nothing behind and can be retried without duplicating
rows.
"""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path

from dbhelper.infra.postgres.connection import MAINTENANCE_DB

from .catalog import ColumnInfo, quote_ident
from .models import ConnectionSpec, CopyOptions, ToolCommand, ToolStep

def dump_pattern(qualified_name: str) -> str:
    """Exact-match pg_dump pattern for a schema or schema.table name."""
    schema, dot, name = qualified_name.partition(".")
    if not dot:
        return quote_ident(schema)
    return f"{quote_ident(schema)}.{quote_ident(name)}"


def render_memory_setting(value: str) -> str:
    """Render a ``<n>KB|MB|GB`` size in PostgreSQL's unit spelling."""
    return value[:-2] + "kB" if value.endswith("KB") else value


class PgToolCommands:
    """Command builders bound to one source/target pair.

    Args:
        source: Source connection
        target: Target connection
        options: Copy options (memory settings, trigger handling)
        tool_dir: Directory holding the client binaries; PATH lookup if None
    """

    def __init__(
        self,
        source: ConnectionSpec,
        target: ConnectionSpec,
        options: CopyOptions,
        *,
        tool_dir: Path | None = None,
    ) -> None:
        self._source = source
        self._target = target
        self._options = options
        self._tool_dir = tool_dir
        self._same_server = source.server_identity == target.server_identity

    def _tool(self, name: str) -> str:
        return str(self._tool_dir / name) if self._tool_dir else name

    # =========================================================================
    # Steps
    # =========================================================================

    def _pg_dump(self, *args: str) -> ToolStep:
        argv = [
            self._tool("pg_dump"),
            *self._source.connection_args(),
            "--no-password",
        ]
        if not self._same_server:
            argv += ["--no-owner", "--no-privileges"]
        argv += [*args, self._source.dbname]
        return ToolStep(tuple(argv), self._source.libpq_env())

    def _psql(self, *args: str, database: str | None = None) -> ToolStep:
        argv = [
            self._tool("psql"),
            *self._target.connection_args(),
            "--no-password",
            "--no-psqlrc",
            "--quiet",
            "--set",
            "ON_ERROR_STOP=1",
            *args,
            "--dbname",
            database or self._target.dbname,
        ]
        env = self._target.libpq_env()
        pg_options = self._session_options()
        if pg_options:
            env["PGOPTIONS"] = pg_options
        return ToolStep(tuple(argv), env)

    def _session_options(self) -> str:
        settings = []
        if self._options.work_mem:
            settings.append(f"-c work_mem={render_memory_setting(self._options.work_mem)}")
        if self._options.maintenance_work_mem:
            value = render_memory_setting(self._options.maintenance_work_mem)
            settings.append(f"-c maintenance_work_mem={value}")
        return " ".join(settings)

    def _restore(self) -> ToolStep:
        return self._psql("--single-transaction")

    # =========================================================================
    # Target lifecycle
    # =========================================================================

    def drop_target(self) -> ToolCommand:
        """``dropdb --if-exists`` for the target database."""
        argv = [
            self._tool("dropdb"),
            *self._target.connection_args(),
            "--no-password",
            "--if-exists",
            f"--maintenance-db={MAINTENANCE_DB}",
            self._target.dbname,
        ]
        return ToolCommand.single(argv, self._target.libpq_env())

    def create_target(self, template: str | None = None) -> ToolCommand:
        """``createdb`` for the target, optionally cloned from a template.

        With a template this is the whole TemplateClone copy: the server
        duplicates the source at the storage level.
        """
        argv = [
            self._tool("createdb"),
            *self._target.connection_args(),
            "--no-password",
            f"--maintenance-db={MAINTENANCE_DB}",
        ]
        if template:
            argv.append(f"--template={template}")
        argv.append(self._target.dbname)
        return ToolCommand.single(argv, self._target.libpq_env())

    # =========================================================================
    # Dump/restore pipes
    # =========================================================================

    def schema_objects(
        self,
        section: str = "pre-data",
        *,
        exclude_schemas: Sequence[str] = (),
        exclude_tables: Sequence[str] = (),
    ) -> ToolCommand:
        """One schema section of the whole database, minus filtered-out objects.

        ``pre-data`` creates extensions, schemas, types, functions, bare
        tables and views; ``post-data`` adds indexes, constraints and
        triggers once data is in. Both stay a single dump so pg_dump orders
        objects across schemas itself. Selection only ever uses the exclude
        switches: any --schema or --table include would make pg_dump leave
        out extensions. The pre-data dump cleans first so a schema the fresh
        target already has (public) is recreated instead of failing.
        """
        args = [f"--section={section}"]
        if section == "pre-data":
            args += ["--clean", "--if-exists"]
        args += [f"--exclude-schema={dump_pattern(s)}" for s in exclude_schemas]
        args += [f"--exclude-table={dump_pattern(t)}" for t in exclude_tables]
        return ToolCommand.pipe(self._pg_dump(*args), self._restore())

    def table_data(self, qualified_table: str) -> ToolCommand:
        args = ["--data-only", f"--table={dump_pattern(qualified_table)}"]
        if self._options.disable_triggers:
            args.append("--disable-triggers")
        return ToolCommand.pipe(self._pg_dump(*args), self._restore())

    def large_objects(self) -> ToolCommand:
        """Large objects only: every schema's tables are excluded."""
        args = ["--data-only", "--blobs", "--exclude-schema=*"]
        return ToolCommand.pipe(self._pg_dump(*args), self._restore())

    def whole_database(self, section: str) -> ToolCommand:
        """One section of the whole database, filtered by the raw patterns.

        Used when no catalog inventory is available to expand per-object
        tasks (dry-run against an unreachable server).
        """
        opts = self._options
        args = ["--data-only"] if section == "data" else [f"--section={section}"]
        args += [f"--schema={p}" for p in opts.include_schemas]
        args += [f"--exclude-schema={p}" for p in opts.exclude_schemas]
        args += [f"--table={p}" for p in opts.include_tables]
        args += [f"--exclude-table={p}" for p in opts.exclude_tables]
        if section == "data" and opts.disable_triggers:
            args.append("--disable-triggers")
        if section == "data" and opts.exclude_large_objects:
            args.append("--no-blobs")
        return ToolCommand.pipe(self._pg_dump(*args), self._restore())

    def table_ddl(self, qualified_table: str) -> ToolCommand:
        """Full DDL of one table (sync mode, table missing in the target)."""
        args = ["--schema-only", f"--table={dump_pattern(qualified_table)}"]
        return ToolCommand.pipe(self._pg_dump(*args), self._restore())

    # =========================================================================
    # Target-side SQL
    # =========================================================================

    def add_columns(self, qualified_table: str, columns: Sequence[ColumnInfo]) -> ToolCommand:
        """Additive ALTER for columns the target table lacks."""
        schema, _, name = qualified_table.partition(".")
        clauses = ", ".join(
            f"ADD COLUMN IF NOT EXISTS {quote_ident(c.name)} {c.type}" for c in columns
        )
        sql = f"ALTER TABLE {quote_ident(schema)}.{quote_ident(name)} {clauses}"
        return ToolCommand(steps=(self._psql("--single-transaction", "--command", sql),))

    def truncate(self, qualified_tables: Sequence[str]) -> ToolCommand:
        """One TRUNCATE covering every table, so foreign keys between them hold."""
        names = ", ".join(
            f"{quote_ident(s)}.{quote_ident(n)}"
            for s, _, n in (t.partition(".") for t in qualified_tables)
        )
        sql = f"TRUNCATE TABLE {names}"
        return ToolCommand(steps=(self._psql("--single-transaction", "--command", sql),))
