from unittest.mock import MagicMock, patch

import pytest

from dbhelper.copy import catalog
from dbhelper.copy.catalog import PostgresCatalogReader, quote_ident


@pytest.fixture
def conn():
    """Mocked PostgresConnection returned by the context manager."""
    with patch.object(catalog, "PostgresConnection") as conn_cls:
        connection = MagicMock()
        conn_cls.return_value.__enter__.return_value = connection
        yield connection


def test_quote_ident():
    assert quote_ident("users") == '"users"'
    assert quote_ident('we"ird') == '"we""ird"'


def test_read_missing_database(conn, source_spec):
    conn.database_exists.return_value = False

    inventory = PostgresCatalogReader().read(source_spec)

    assert not inventory.exists
    conn.execute.assert_not_called()


def test_read_inventory(conn, source_spec):
    rows = {
        catalog._SCHEMAS_SQL: [{"name": "public"}],
        catalog._COLUMNS_SQL: [
            {"schema": "public", "table_name": "users", "name": "id", "type": "integer"},
            {"schema": "public", "table_name": "users", "name": "email", "type": "text"},
        ],
        catalog._TABLES_SQL: [
            {"schema": "public", "name": "users", "estimated_rows": 42},
            {"schema": "public", "name": "empty", "estimated_rows": None},
        ],
    }
    conn.database_exists.return_value = True
    conn.execute.side_effect = lambda sql, *args, **kwargs: rows[sql]
    conn.scalar.return_value = 2

    inventory = PostgresCatalogReader().read(source_spec)

    assert inventory.exists
    assert inventory.schemas == ("public",)
    assert inventory.large_object_count == 2
    users = inventory.table("public.users")
    assert users.estimated_rows == 42
    assert [c.name for c in users.columns] == ["id", "email"]
    assert inventory.table("public.empty").estimated_rows == 0
    assert inventory.total_estimated_rows == 42


def test_row_counts_quote_identifiers(conn, source_spec):
    conn.scalar.side_effect = [10, 0]

    counts = PostgresCatalogReader().row_counts(source_spec, ["public.users", "audit.Log"])

    assert counts == {"public.users": 10, "audit.Log": 0}
    conn.scalar.assert_any_call('SELECT count(*) FROM "audit"."Log"')


def test_reader_passes_timeout(source_spec):
    with patch.object(catalog, "PostgresConnection") as conn_cls:
        conn_cls.return_value.__enter__.return_value.database_exists.return_value = False

        PostgresCatalogReader(default_timeout=3).read(source_spec)

    conn_cls.assert_called_once_with(source_spec, default_timeout=3)
