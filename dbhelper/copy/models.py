"""Data model for copy requests, plans and results.

Request-side models (ConnectionSpec, CopyOptions, CopyRequest) are frozen
pydantic models: they are built once per invocation and passed explicitly
through every component. Plan and result types are dataclasses.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, SecretStr

DEFAULT_PORT = 5432
DEFAULT_PROGRESS_INTERVAL = 10.0
DEFAULT_MAX_ATTEMPTS = 3


class PasswordSourceKind(str, Enum):
    """Where a connection password comes from."""

    LITERAL = "literal"
    ENV = "env"
    STDIN = "stdin"
    NONE = "none"


class PasswordSource(BaseModel):
    """Unresolved password reference.

    For ``LITERAL`` the value is the password itself, for ``ENV`` it is the
    name of the environment variable to read.
    """

    model_config = ConfigDict(frozen=True)

    kind: PasswordSourceKind = PasswordSourceKind.NONE
    value: SecretStr | None = None

    @classmethod
    def literal(cls, password: str) -> PasswordSource:
        return cls(kind=PasswordSourceKind.LITERAL, value=SecretStr(password))

    @classmethod
    def env(cls, var_name: str) -> PasswordSource:
        return cls(kind=PasswordSourceKind.ENV, value=SecretStr(var_name))

    @classmethod
    def stdin(cls) -> PasswordSource:
        return cls(kind=PasswordSourceKind.STDIN)


class ConnectionSpec(BaseModel):
    """Fully resolved connection parameters for one side of a copy."""

    model_config = ConfigDict(frozen=True)

    host: str = "localhost"
    port: int = DEFAULT_PORT
    user: str = "postgres"
    password: SecretStr | None = None
    password_source: PasswordSourceKind = PasswordSourceKind.NONE
    dbname: str
    sslmode: str | None = None
    sslcert: Path | None = None
    sslkey: Path | None = None
    connect_timeout: int | None = None

    @property
    def server_identity(self) -> tuple[str, int, str]:
        """Identity used for same-server detection (host is case-insensitive)."""
        return (self.host.strip().lower(), self.port, self.user)

    def connection_args(self) -> list[str]:
        """Host/port/user arguments shared by all PostgreSQL client tools."""
        return ["-h", self.host, "-p", str(self.port), "-U", self.user]

    def libpq_env(self) -> dict[str, str]:
        """Environment variables understood by libpq.

        Secrets travel in the environment so they never appear in argv or logs.
        """
        env: dict[str, str] = {}
        if self.password is not None:
            env["PGPASSWORD"] = self.password.get_secret_value()
        if self.sslmode:
            env["PGSSLMODE"] = self.sslmode
        if self.sslcert:
            env["PGSSLCERT"] = str(self.sslcert)
        if self.sslkey:
            env["PGSSLKEY"] = str(self.sslkey)
        if self.connect_timeout:
            env["PGCONNECT_TIMEOUT"] = str(self.connect_timeout)
        return env

    def describe(self) -> str:
        return f"{self.user}@{self.host}:{self.port}/{self.dbname}"


class CopyOptions(BaseModel):
    """Mode flags, filters and tuning knobs for a copy.

    Cross-field rules are checked by the OptionValidator so that every
    violation can be reported at once.
    """

    model_config = ConfigDict(frozen=True)

    schema_only: bool = False
    data_only: bool = False
    fast: bool = False
    sync: bool = False
    drop_target: bool = False
    truncate_tables: bool = False
    include_tables: tuple[str, ...] = ()
    exclude_tables: tuple[str, ...] = ()
    include_schemas: tuple[str, ...] = ()
    exclude_schemas: tuple[str, ...] = ()
    exclude_large_objects: bool = False
    disable_triggers: bool = False
    disable_indexes: bool = False
    jobs: int = 1
    work_mem: str | None = None
    maintenance_work_mem: str | None = None
    copy_timeout: int | None = None
    connection_timeout: int | None = None
    total_timeout: int | None = None
    dry_run: bool = False
    validate_copy: bool = False
    progress_interval: float = DEFAULT_PROGRESS_INTERVAL
    force: bool = False
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    abort_on_data_failure: bool = False

    @property
    def has_filters(self) -> bool:
        return bool(
            self.include_tables
            or self.exclude_tables
            or self.include_schemas
            or self.exclude_schemas
        )

    @property
    def phase_restricted(self) -> bool:
        return self.schema_only or self.data_only


class CopyRequest(BaseModel):
    """A copy invocation: source, target and options."""

    model_config = ConfigDict(frozen=True)

    source: ConnectionSpec
    target: ConnectionSpec
    options: CopyOptions = CopyOptions()

    @property
    def same_server(self) -> bool:
        return self.source.server_identity == self.target.server_identity

    @property
    def same_database(self) -> bool:
        return self.same_server and self.source.dbname == self.target.dbname


class Strategy(str, Enum):
    TEMPLATE_CLONE = "template_clone"
    DUMP_RESTORE_PIPE = "dump_restore_pipe"
    SYNC_DIFF = "sync_diff"


class Phase(str, Enum):
    """Ordered stages of a copy plan.

    PREPARE runs sequentially; SCHEMA, DATA and FINALIZE run their tasks
    through the worker pool with a barrier between phases.
    """

    PREPARE = "prepare"
    SCHEMA = "schema"
    DATA = "data"
    FINALIZE = "finalize"

    @property
    def order(self) -> int:
        return PHASE_ORDER.index(self)

    @property
    def required(self) -> bool:
        """Whether a failure in this phase blocks later phases."""
        return self in (Phase.PREPARE, Phase.SCHEMA)


PHASE_ORDER: tuple[Phase, ...] = (
    Phase.PREPARE,
    Phase.SCHEMA,
    Phase.DATA,
    Phase.FINALIZE,
)


class TaskKind(str, Enum):
    DROP_DATABASE = "drop_database"
    CREATE_DATABASE = "create_database"
    CLONE = "clone"
    SCHEMA = "schema"
    DATA = "data"
    LARGE_OBJECTS = "large_objects"
    CREATE_TABLE = "create_table"
    ALTER_TABLE = "alter_table"
    TRUNCATE = "truncate"
    POST_DATA = "post_data"


class TaskStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    RETRIED = "retried"

    @property
    def terminal(self) -> bool:
        return self in (TaskStatus.SUCCEEDED, TaskStatus.FAILED)


class FailureClass(str, Enum):
    TRANSIENT = "transient"
    FATAL = "fatal"


@dataclass(frozen=True)
class ToolStep:
    """One external tool process: argv plus extra environment."""

    argv: tuple[str, ...]
    env: dict[str, str] = field(default_factory=dict, compare=False)

    @property
    def tool(self) -> str:
        return self.argv[0]

    def render(self) -> str:
        return " ".join(self.argv)


@dataclass(frozen=True)
class ToolCommand:
    """An external-tool invocation descriptor.

    A command is a single step, or a pipe where each step's stdout feeds the
    next step's stdin (e.g. ``pg_dump ... | psql ...``).
    """

    steps: tuple[ToolStep, ...]

    @classmethod
    def single(cls, argv: list[str], env: dict[str, str] | None = None) -> ToolCommand:
        return cls(steps=(ToolStep(tuple(argv), dict(env or {})),))

    @classmethod
    def pipe(cls, producer: ToolStep, consumer: ToolStep) -> ToolCommand:
        return cls(steps=(producer, consumer))

    @property
    def tools(self) -> list[str]:
        return [step.tool for step in self.steps]

    def render(self) -> str:
        return " | ".join(step.render() for step in self.steps)


@dataclass
class Task:
    """One externally-invoked unit of work.

    Created by the PlanBuilder; status and attempts are mutated only by the
    worker that executes the task.
    """

    id: str
    phase: Phase
    kind: TaskKind
    scope: str
    command: ToolCommand
    status: TaskStatus = TaskStatus.PENDING
    attempts: int = 0
    estimated_rows: int | None = None
    description: str = ""

    @property
    def required(self) -> bool:
        return self.phase.required


@dataclass(frozen=True)
class CopyPlan:
    """Ordered task list for a strategy. Built once, never mutated."""

    strategy: Strategy
    tasks: tuple[Task, ...]
    notices: tuple[str, ...] = ()

    def tasks_in(self, phase: Phase) -> list[Task]:
        return [task for task in self.tasks if task.phase == phase]

    @property
    def phases(self) -> list[Phase]:
        present = {task.phase for task in self.tasks}
        return [phase for phase in PHASE_ORDER if phase in present]

    @property
    def tools(self) -> set[str]:
        return {tool for task in self.tasks for tool in task.command.tools}


@dataclass(frozen=True)
class TaskResult:
    """Terminal outcome of one task."""

    task_id: str
    phase: Phase
    kind: TaskKind
    scope: str
    status: TaskStatus
    attempts: int = 0
    returncode: int | None = None
    stderr: str = ""
    elapsed: float = 0.0
    failure_class: FailureClass | None = None
    error: str | None = None
    estimated_rows: int | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == TaskStatus.SUCCEEDED


class OverallStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL_FAILURE = "partial_failure"
    FAILED = "failed"


class SubStatus(str, Enum):
    CANCELLED = "cancelled"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True)
class CopyResult:
    """Final outcome of a copy. Produced once, at the end."""

    overall_status: OverallStatus
    strategy: Strategy
    task_results: tuple[TaskResult, ...] = ()
    elapsed: float = 0.0
    rows_copied_estimate: int = 0
    warnings: tuple[str, ...] = ()
    sub_status: SubStatus | None = None
    dry_run: bool = False

    @property
    def succeeded(self) -> bool:
        return self.overall_status == OverallStatus.SUCCESS

    @property
    def failed_tasks(self) -> list[TaskResult]:
        return [r for r in self.task_results if r.status == TaskStatus.FAILED]
