import os

import pytest

from dbhelper.copy.catalog import ColumnInfo, CopyInventory, DatabaseInventory, TableInfo
from dbhelper.copy.models import ConnectionSpec, CopyOptions, CopyRequest
from tests.fakes import FakeCatalogReader, FakeToolRunner

# Keep tests independent of the developer's libpq environment
for _var in ("PGHOST", "PGPORT", "PGUSER", "PGPASSWORD", "DBHELPER_CONFIG", "LOG_DIR"):
    os.environ.pop(_var, None)


@pytest.fixture
def source_spec() -> ConnectionSpec:
    return ConnectionSpec(host="localhost", port=5432, user="postgres", dbname="appdb")


@pytest.fixture
def target_spec() -> ConnectionSpec:
    return ConnectionSpec(host="localhost", port=5432, user="postgres", dbname="appdb_copy")


@pytest.fixture
def make_request(source_spec, target_spec):
    """Factory for CopyRequest with option overrides."""

    def _make(source=None, target=None, **options) -> CopyRequest:
        return CopyRequest(
            source=source or source_spec,
            target=target or target_spec,
            options=CopyOptions(**options),
        )

    return _make


def _table(schema: str, name: str, rows: int, *columns: str) -> TableInfo:
    cols = tuple(ColumnInfo(c, "integer" if c == "id" else "text") for c in columns)
    return TableInfo(schema=schema, name=name, estimated_rows=rows, columns=cols)


@pytest.fixture
def source_inventory() -> DatabaseInventory:
    """Source database with the tables used by the shell test fixtures."""
    return DatabaseInventory(
        exists=True,
        schemas=("public", "test_schema"),
        tables=(
            _table("public", "cache_data", 50, "id", "payload"),
            _table("public", "order_items", 4000, "id", "order_id", "product_id"),
            _table("public", "orders", 1000, "id", "user_id", "total"),
            _table("public", "products", 200, "id", "name"),
            _table("public", "temp_logs", 700, "id", "message"),
            _table("public", "users", 100, "id", "email"),
            _table("test_schema", "test_table", 10, "id", "value"),
        ),
        large_object_count=0,
    )


@pytest.fixture
def inventory(source_inventory) -> CopyInventory:
    """Source inventory with a missing target."""
    return CopyInventory(source=source_inventory, target=DatabaseInventory.missing())


@pytest.fixture
def fake_runner() -> FakeToolRunner:
    return FakeToolRunner()


@pytest.fixture
def fake_catalog(source_inventory) -> FakeCatalogReader:
    return FakeCatalogReader({"appdb": source_inventory})
