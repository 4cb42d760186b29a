"""Expansion of a copy strategy into an ordered task list.

Phases run in order PREPARE, SCHEMA, DATA, FINALIZE. Tasks inside one phase
never depend on each other, which is what lets the dispatcher run them in
parallel. Dump/restore plans split the schema into a pre-data part (before
the data load) and a post-data part (indexes, constraints and triggers,
after it) so parallel table loads do not trip over foreign keys. Each part
is a single whole-database dump so pg_dump keeps extensions and orders
objects that reference other schemas.
"""

from __future__ import annotations

from fnmatch import fnmatchcase

from loguru import logger

from .catalog import SYSTEM_SCHEMAS, CopyInventory, DatabaseInventory, TableInfo
from .commands import PgToolCommands
from .errors import ConflictError
from .models import (
    CopyOptions,
    CopyPlan,
    CopyRequest,
    Phase,
    Strategy,
    Task,
    TaskKind,
    ToolCommand,
)
from .strategy import StrategyDecision

WHOLE_DATABASE = "*"
LARGE_OBJECTS_SCOPE = "large_objects"


class ObjectFilter:
    """Glob-based schema/table selection.

    Table patterns match either ``schema.table`` or the bare table name.
    Exclusion always wins over inclusion; system schemas are never selected.
    """

    def __init__(self, options: CopyOptions) -> None:
        self._include_schemas = options.include_schemas
        self._exclude_schemas = options.exclude_schemas
        self._include_tables = options.include_tables
        self._exclude_tables = options.exclude_tables

    @property
    def filters_tables(self) -> bool:
        return bool(self._include_tables or self._exclude_tables)

    def schema_selected(self, schema: str) -> bool:
        if schema in SYSTEM_SCHEMAS or schema.startswith("pg_"):
            return False
        if self._include_schemas and not _matches_any(schema, self._include_schemas):
            return False
        return not _matches_any(schema, self._exclude_schemas)

    def table_selected(self, table: TableInfo) -> bool:
        if not self.schema_selected(table.schema):
            return False
        names = (table.qualified_name, table.name)
        if self._include_tables and not any(
            _matches_any(n, self._include_tables) for n in names
        ):
            return False
        return not any(_matches_any(n, self._exclude_tables) for n in names)

    def select_tables(self, inventory: DatabaseInventory) -> list[TableInfo]:
        return [t for t in inventory.tables if self.table_selected(t)]


def _matches_any(name: str, patterns: tuple[str, ...]) -> bool:
    return any(fnmatchcase(name, pattern) for pattern in patterns)


class PlanBuilder:
    """Builds a CopyPlan for a validated request.

    Args:
        request: The validated copy request
        commands: Tool command builders for the request's source/target
    """

    def __init__(self, request: CopyRequest, commands: PgToolCommands) -> None:
        self._request = request
        self._options = request.options
        self._commands = commands
        self._filter = ObjectFilter(request.options)
        self._tasks: list[Task] = []

    def build(
        self,
        decision: StrategyDecision,
        inventory: CopyInventory | None = None,
        *,
        notices: tuple[str, ...] = (),
    ) -> CopyPlan:
        """Expand the strategy into tasks.

        Args:
            decision: Selected strategy
            inventory: Pre-flight catalog snapshot; None builds a coarse plan
                with whole-database tasks
            notices: Extra user-facing notices to carry on the plan

        Raises:
            ConflictError: If the target state does not fit the strategy
        """
        self._tasks = []
        strategy = decision.strategy

        if strategy == Strategy.TEMPLATE_CLONE:
            self._plan_template_clone(inventory)
        elif strategy == Strategy.SYNC_DIFF:
            self._plan_sync_diff(inventory)
        else:
            self._plan_dump_restore(inventory)

        plan_notices = tuple(dict.fromkeys(notices + decision.notices))
        plan = CopyPlan(strategy=strategy, tasks=tuple(self._tasks), notices=plan_notices)
        logger.info(
            f"Built {strategy.value} plan with {len(plan.tasks)} tasks "
            f"across phases {[p.value for p in plan.phases]}"
        )
        return plan

    # =========================================================================
    # Helpers
    # =========================================================================

    def _add(
        self,
        phase: Phase,
        kind: TaskKind,
        scope: str,
        command: ToolCommand,
        *,
        estimated_rows: int | None = None,
        description: str = "",
    ) -> None:
        task_id = f"{kind.value}:{scope}"
        self._tasks.append(
            Task(
                id=task_id,
                phase=phase,
                kind=kind,
                scope=scope,
                command=command,
                estimated_rows=estimated_rows,
                description=description,
            )
        )

    def _target_exists(self, inventory: CopyInventory | None) -> bool | None:
        return inventory.target.exists if inventory is not None else None

    def _prepare_fresh_target(self, inventory: CopyInventory | None) -> None:
        """Drop (if requested) and create the target database."""
        target = self._request.target.dbname
        exists = self._target_exists(inventory)

        if exists and not self._options.drop_target:
            raise ConflictError(
                f"Target database {target} already exists",
                details="Use --drop-target to recreate it or --sync to update it in place",
            )
        if self._options.drop_target and exists is not False:
            self._add(
                Phase.PREPARE,
                TaskKind.DROP_DATABASE,
                target,
                self._commands.drop_target(),
                description=f"Drop target database {target}",
            )

    # =========================================================================
    # Strategies
    # =========================================================================

    def _plan_template_clone(self, inventory: CopyInventory | None) -> None:
        source = self._request.source.dbname
        target = self._request.target.dbname
        self._prepare_fresh_target(inventory)
        self._add(
            Phase.SCHEMA,
            TaskKind.CLONE,
            WHOLE_DATABASE,
            self._commands.create_target(template=source),
            estimated_rows=inventory.source.total_estimated_rows if inventory else None,
            description=f"Clone {source} into {target} (CREATE DATABASE ... TEMPLATE)",
        )

    def _plan_dump_restore(self, inventory: CopyInventory | None) -> None:
        opts = self._options
        target = self._request.target.dbname

        if opts.data_only:
            if inventory is not None and not inventory.target.exists:
                raise ConflictError(
                    f"Target database {target} does not exist",
                    details="--data-only loads into an existing target schema",
                )
        else:
            self._prepare_fresh_target(inventory)
            self._add(
                Phase.PREPARE,
                TaskKind.CREATE_DATABASE,
                target,
                self._commands.create_target(),
                description=f"Create target database {target}",
            )

        if inventory is None:
            self._plan_dump_restore_coarse()
            return

        source = inventory.source
        tables = self._filter.select_tables(source)
        schemas = self._schemas_to_copy(source, tables)
        exclude_schemas = [s for s in source.schemas if s not in schemas]
        exclude_tables = self._excluded_tables(source, schemas)
        copies_schema = bool(schemas) and not opts.data_only

        if copies_schema:
            self._add(
                Phase.SCHEMA,
                TaskKind.SCHEMA,
                WHOLE_DATABASE,
                self._commands.schema_objects(
                    "pre-data", exclude_schemas=exclude_schemas, exclude_tables=exclude_tables
                ),
                description=f"Create schema objects in {', '.join(schemas)}",
            )

        if not opts.schema_only:
            for table in tables:
                self._add(
                    Phase.DATA,
                    TaskKind.DATA,
                    table.qualified_name,
                    self._commands.table_data(table.qualified_name),
                    estimated_rows=table.estimated_rows,
                    description=f"Copy rows of {table.qualified_name}",
                )
            if source.large_object_count and not opts.exclude_large_objects:
                self._add(
                    Phase.DATA,
                    TaskKind.LARGE_OBJECTS,
                    LARGE_OBJECTS_SCOPE,
                    self._commands.large_objects(),
                    description=f"Copy {source.large_object_count} large objects",
                )

        if copies_schema:
            self._add(
                Phase.FINALIZE,
                TaskKind.POST_DATA,
                WHOLE_DATABASE,
                self._commands.schema_objects(
                    "post-data", exclude_schemas=exclude_schemas, exclude_tables=exclude_tables
                ),
                description=f"Create indexes and constraints in {', '.join(schemas)}",
            )

    def _plan_dump_restore_coarse(self) -> None:
        opts = self._options
        if not opts.data_only:
            self._add(
                Phase.SCHEMA,
                TaskKind.SCHEMA,
                WHOLE_DATABASE,
                self._commands.whole_database("pre-data"),
                description="Create schema objects",
            )
        if not opts.schema_only:
            self._add(
                Phase.DATA,
                TaskKind.DATA,
                WHOLE_DATABASE,
                self._commands.whole_database("data"),
                description="Copy rows of all selected tables",
            )
        if not opts.data_only:
            self._add(
                Phase.FINALIZE,
                TaskKind.POST_DATA,
                WHOLE_DATABASE,
                self._commands.whole_database("post-data"),
                description="Create indexes and constraints",
            )

    def _plan_sync_diff(self, inventory: CopyInventory | None) -> None:
        """Derive additive tasks from the source/target catalog difference.

        The read-only comparison already happened in the pre-flight catalog
        probe; what differs decides which Create/Alter/Truncate/Copy tasks
        exist.
        """
        opts = self._options
        target_name = self._request.target.dbname

        if inventory is not None and not inventory.target.exists:
            raise ConflictError(
                f"Target database {target_name} does not exist",
                details="--sync updates an existing target; omit --sync to create it",
            )

        if inventory is None:
            if not opts.schema_only:
                self._add(
                    Phase.DATA,
                    TaskKind.DATA,
                    WHOLE_DATABASE,
                    self._commands.whole_database("data"),
                    description="Copy rows of all selected tables",
                )
            return

        source_tables = self._filter.select_tables(inventory.source)
        target = inventory.target
        existing = [t for t in source_tables if target.table(t.qualified_name)]

        if opts.truncate_tables and existing and not opts.schema_only:
            names = [t.qualified_name for t in existing]
            self._add(
                Phase.PREPARE,
                TaskKind.TRUNCATE,
                WHOLE_DATABASE,
                self._commands.truncate(names),
                description=f"Truncate {len(names)} target tables",
            )

        if not opts.data_only:
            for table in source_tables:
                target_table = target.table(table.qualified_name)
                if target_table is None:
                    self._add(
                        Phase.SCHEMA,
                        TaskKind.CREATE_TABLE,
                        table.qualified_name,
                        self._commands.table_ddl(table.qualified_name),
                        description=f"Create missing table {table.qualified_name}",
                    )
                    continue
                present = {c.name for c in target_table.columns}
                missing = [c for c in table.columns if c.name not in present]
                if missing:
                    self._add(
                        Phase.SCHEMA,
                        TaskKind.ALTER_TABLE,
                        table.qualified_name,
                        self._commands.add_columns(table.qualified_name, missing),
                        description=(
                            f"Add {len(missing)} column(s) to {table.qualified_name}"
                        ),
                    )

        if not opts.schema_only:
            for table in source_tables:
                if opts.data_only and not target.table(table.qualified_name):
                    logger.warning(
                        f"Skipping {table.qualified_name}: missing in target and --data-only set"
                    )
                    continue
                self._add(
                    Phase.DATA,
                    TaskKind.DATA,
                    table.qualified_name,
                    self._commands.table_data(table.qualified_name),
                    estimated_rows=table.estimated_rows,
                    description=f"Copy rows of {table.qualified_name}",
                )

    # =========================================================================
    # Selection
    # =========================================================================

    def _schemas_to_copy(
        self, source: DatabaseInventory, tables: list[TableInfo]
    ) -> list[str]:
        """Selected schemas; with table filters only those holding a selected table."""
        if self._filter.filters_tables:
            with_tables = {t.schema for t in tables}
            return [s for s in source.schemas if s in with_tables]
        return [s for s in source.schemas if self._filter.schema_selected(s)]

    def _excluded_tables(self, source: DatabaseInventory, schemas: list[str]) -> list[str]:
        """Filtered-out tables inside the copied schemas."""
        if not self._filter.filters_tables:
            return []
        return [
            t.qualified_name
            for t in source.tables
            if t.schema in schemas and not self._filter.table_selected(t)
        ]


def build_plan(
    request: CopyRequest,
    decision: StrategyDecision,
    commands: PgToolCommands,
    inventory: CopyInventory | None = None,
    *,
    notices: tuple[str, ...] = (),
) -> CopyPlan:
    """Build a plan for ``request`` with the given strategy."""
    return PlanBuilder(request, commands).build(decision, inventory, notices=notices)
