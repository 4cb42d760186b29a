"""End-to-end engine tests with fake runner and catalog."""

import pytest

from dbhelper.copy.catalog import DatabaseInventory
from dbhelper.copy.engine import CopyEngine
from dbhelper.copy.errors import (
    ConflictError,
    ConnectionFailedError,
    ExecutionError,
    ValidationError,
)
from dbhelper.copy.models import OverallStatus, Phase, Strategy, TaskStatus
from tests.fakes import FakeCatalogReader, failure

TOTAL_ROWS = 6060


def _which(tool):
    return f"/usr/bin/{tool}"


@pytest.fixture
def engine(fake_runner, fake_catalog):
    return CopyEngine(
        runner=fake_runner, catalog=fake_catalog, retry_base_delay=0.0, which=_which
    )


class TestPrepare:
    def test_builds_plan_from_inventory(self, engine, make_request, fake_catalog):
        prepared = engine.prepare(make_request())

        assert prepared.strategy == Strategy.DUMP_RESTORE_PIPE
        assert len(prepared.plan.tasks_in(Phase.DATA)) == 7
        assert fake_catalog.reads == ["appdb", "appdb_copy"]

    def test_validation_runs_first(self, engine, make_request, source_spec, fake_catalog):
        with pytest.raises(ValidationError):
            engine.prepare(make_request(target=source_spec))

        assert fake_catalog.reads == []

    def test_missing_source(self, fake_runner, make_request):
        engine = CopyEngine(runner=fake_runner, catalog=FakeCatalogReader(), which=_which)

        with pytest.raises(ConflictError) as excinfo:
            engine.prepare(make_request())

        assert excinfo.value.message == "Source database appdb does not exist"

    def test_existing_target_conflicts(self, fake_runner, make_request, source_inventory):
        catalog = FakeCatalogReader({"appdb": source_inventory, "appdb_copy": DatabaseInventory()})
        engine = CopyEngine(runner=fake_runner, catalog=catalog, which=_which)

        with pytest.raises(ConflictError):
            engine.prepare(make_request())

    def test_probe_failure_propagates(self, fake_runner, make_request):
        catalog = FakeCatalogReader(error=ConnectionFailedError("Could not connect"))
        engine = CopyEngine(runner=fake_runner, catalog=catalog, which=_which)

        with pytest.raises(ConnectionFailedError):
            engine.prepare(make_request())

    def test_notices_become_warnings_once(self, engine, make_request):
        prepared = engine.prepare(make_request(fast=True, include_tables=("users",)))

        notices = [w for w in prepared.warnings if "table filtering" in w]
        assert len(notices) == 1


class TestDryRun:
    """Dry-run plans and reports without any side effect."""

    def test_never_runs_tools(self, engine, make_request, fake_runner):
        result = engine.copy(make_request(dry_run=True))

        assert result.dry_run
        assert result.overall_status == OverallStatus.SUCCESS
        assert all(r.status == TaskStatus.PENDING for r in result.task_results)
        assert len(result.task_results) == 10
        assert fake_runner.calls == []
        assert fake_runner.terminate_calls == 0

    def test_probe_failure_gives_coarse_plan(self, fake_runner, make_request):
        catalog = FakeCatalogReader(error=ConnectionFailedError("Could not connect"))
        engine = CopyEngine(runner=fake_runner, catalog=catalog, which=_which)

        prepared = engine.prepare(make_request(dry_run=True))

        assert [t.scope for t in prepared.plan.tasks_in(Phase.DATA)] == ["*"]
        assert any("Catalog probe failed (Could not connect)" in w for w in prepared.warnings)

    def test_conflict_becomes_warning(self, fake_runner, make_request, source_inventory):
        catalog = FakeCatalogReader({"appdb": source_inventory, "appdb_copy": DatabaseInventory()})
        engine = CopyEngine(runner=fake_runner, catalog=catalog, which=_which)

        result = engine.copy(make_request(dry_run=True))

        assert result.succeeded
        assert (
            "Target database appdb_copy already exists; a real run would stop here"
            in result.warnings
        )
        assert fake_runner.calls == []

    def test_missing_tools_not_checked(self, fake_runner, fake_catalog, make_request):
        engine = CopyEngine(runner=fake_runner, catalog=fake_catalog, which=lambda t: None)

        assert engine.copy(make_request(dry_run=True)).dry_run


class TestRun:
    def test_successful_copy(self, engine, make_request, fake_runner):
        result = engine.copy(make_request(jobs=4))

        assert result.overall_status == OverallStatus.SUCCESS
        assert result.rows_copied_estimate == TOTAL_ROWS
        assert len(result.task_results) == 10
        assert len(fake_runner.calls) == 10

    def test_plan_tasks_are_not_mutated(self, engine, make_request):
        prepared = engine.prepare(make_request())

        engine.run(prepared)

        assert all(t.status == TaskStatus.PENDING for t in prepared.plan.tasks)
        assert all(t.attempts == 0 for t in prepared.plan.tasks)

    def test_missing_tools_fail_before_any_side_effect(
        self, fake_runner, fake_catalog, make_request
    ):
        engine = CopyEngine(runner=fake_runner, catalog=fake_catalog, which=lambda t: None)

        with pytest.raises(ExecutionError) as excinfo:
            engine.copy(make_request())

        assert excinfo.value.message == (
            "Required PostgreSQL client tools not found: createdb, pg_dump, psql"
        )
        assert fake_runner.calls == []

    def test_table_failure_is_partial(self, engine, make_request, fake_runner):
        fake_runner.script('"public"."orders"', failure())

        result = engine.copy(make_request(jobs=2))

        assert result.overall_status == OverallStatus.PARTIAL_FAILURE
        assert [r.task_id for r in result.failed_tasks] == ["data:public.orders"]
        assert result.rows_copied_estimate == TOTAL_ROWS - 1000

    def test_schema_failure_fails_copy(self, engine, make_request, fake_runner):
        fake_runner.script("--section=pre-data", failure())

        result = engine.copy(make_request(jobs=2))

        assert result.overall_status == OverallStatus.FAILED
        assert result.rows_copied_estimate == 0
        assert not any("--data-only" in cmd for cmd in fake_runner.rendered_calls())

    def test_template_clone(self, engine, make_request, fake_runner):
        result = engine.copy(make_request(fast=True))

        assert result.strategy == Strategy.TEMPLATE_CLONE
        assert result.rows_copied_estimate == TOTAL_ROWS
        assert "--template=appdb" in fake_runner.rendered_calls()[0]

    def test_progress_and_task_callbacks(self, fake_runner, fake_catalog, make_request):
        snapshots, finished = [], []
        engine = CopyEngine(
            runner=fake_runner,
            catalog=fake_catalog,
            which=_which,
            progress_sink=snapshots.append,
            on_task_finished=lambda task, result: finished.append(task.id),
        )

        engine.copy(make_request(progress_interval=60))

        assert snapshots[-1].estimated_percent == 100.0
        assert len(finished) == 10

    def test_cancel_without_run_is_noop(self, engine):
        engine.cancel()


class TestRowCountValidation:
    def test_mismatch_reported_as_warning(self, fake_runner, source_inventory, make_request):
        catalog = FakeCatalogReader(
            {"appdb": source_inventory},
            row_counts={"appdb": {"public.users": 100}, "appdb_copy": {"public.users": 99}},
        )
        engine = CopyEngine(runner=fake_runner, catalog=catalog, which=_which)

        result = engine.copy(make_request(validate_copy=True))

        assert result.succeeded
        assert result.warnings == ("Row count mismatch for public.users: source=100 target=99",)

    def test_matching_counts(self, fake_runner, source_inventory, make_request):
        counts = {"public.users": 100}
        catalog = FakeCatalogReader(
            {"appdb": source_inventory},
            row_counts={"appdb": counts, "appdb_copy": counts},
        )
        engine = CopyEngine(runner=fake_runner, catalog=catalog, which=_which)

        assert engine.copy(make_request(validate_copy=True)).warnings == ()
