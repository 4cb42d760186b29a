"""Read-only catalog inventory of source and target databases.

The inventory drives plan expansion (which schemas and tables exist, how
big they are, which columns the target lacks) and row-weighted progress.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Protocol

from loguru import logger

from dbhelper.infra.postgres.connection import PostgresConnection

from .models import ConnectionSpec

SYSTEM_SCHEMAS = frozenset({"pg_catalog", "information_schema", "pg_toast"})

_SCHEMAS_SQL = """
    SELECT nspname AS name
    FROM pg_catalog.pg_namespace
    WHERE nspname NOT IN ('pg_catalog', 'information_schema', 'pg_toast')
      AND nspname NOT LIKE 'pg_temp_%'
      AND nspname NOT LIKE 'pg_toast_temp_%'
    ORDER BY nspname
"""

_TABLES_SQL = """
    SELECT n.nspname AS schema, c.relname AS name,
           GREATEST(c.reltuples, 0)::bigint AS estimated_rows
    FROM pg_catalog.pg_class c
    JOIN pg_catalog.pg_namespace n ON n.oid = c.relnamespace
    WHERE c.relkind IN ('r', 'p')
      AND NOT c.relispartition
      AND n.nspname NOT IN ('pg_catalog', 'information_schema', 'pg_toast')
    ORDER BY n.nspname, c.relname
"""

_COLUMNS_SQL = """
    SELECT n.nspname AS schema, c.relname AS table_name, a.attname AS name,
           pg_catalog.format_type(a.atttypid, a.atttypmod) AS type
    FROM pg_catalog.pg_attribute a
    JOIN pg_catalog.pg_class c ON c.oid = a.attrelid
    JOIN pg_catalog.pg_namespace n ON n.oid = c.relnamespace
    WHERE c.relkind IN ('r', 'p')
      AND a.attnum > 0
      AND NOT a.attisdropped
      AND n.nspname NOT IN ('pg_catalog', 'information_schema', 'pg_toast')
    ORDER BY n.nspname, c.relname, a.attnum
"""

_LARGE_OBJECTS_SQL = "SELECT count(*) FROM pg_catalog.pg_largeobject_metadata"


@dataclass(frozen=True)
class ColumnInfo:
    name: str
    type: str


@dataclass(frozen=True)
class TableInfo:
    """A user table with its estimated size and column list."""

    schema: str
    name: str
    estimated_rows: int = 0
    columns: tuple[ColumnInfo, ...] = ()

    @property
    def qualified_name(self) -> str:
        return f"{self.schema}.{self.name}"


@dataclass(frozen=True)
class DatabaseInventory:
    """Snapshot of one database's user objects.

    ``exists`` is False for a target that has not been created yet; such an
    inventory has no schemas or tables.
    """

    exists: bool = True
    schemas: tuple[str, ...] = ()
    tables: tuple[TableInfo, ...] = ()
    large_object_count: int = 0

    def table(self, qualified_name: str) -> TableInfo | None:
        for table in self.tables:
            if table.qualified_name == qualified_name:
                return table
        return None

    @property
    def total_estimated_rows(self) -> int:
        return sum(t.estimated_rows for t in self.tables)

    @classmethod
    def missing(cls) -> DatabaseInventory:
        return cls(exists=False)


@dataclass(frozen=True)
class CopyInventory:
    """Pre-flight snapshot of both sides of a copy."""

    source: DatabaseInventory
    target: DatabaseInventory = field(default_factory=DatabaseInventory.missing)


class CatalogReader(Protocol):
    """Reads database inventories. Tests provide in-memory implementations."""

    def read(self, spec: ConnectionSpec) -> DatabaseInventory: ...

    def row_counts(
        self, spec: ConnectionSpec, tables: Iterable[str]
    ) -> dict[str, int]: ...


class PostgresCatalogReader:
    """Catalog reader backed by psycopg2 connections."""

    def __init__(self, default_timeout: int = 10) -> None:
        self._default_timeout = default_timeout

    def read(self, spec: ConnectionSpec) -> DatabaseInventory:
        """Read the inventory of the database named by ``spec``.

        Raises:
            ConnectionFailedError: If the server cannot be reached
        """
        with PostgresConnection(spec, default_timeout=self._default_timeout) as conn:
            if not conn.database_exists():
                logger.debug(f"Database {spec.dbname} does not exist on {spec.host}")
                return DatabaseInventory.missing()

            schemas = tuple(row["name"] for row in conn.execute(_SCHEMAS_SQL))

            columns: dict[str, list[ColumnInfo]] = {}
            for row in conn.execute(_COLUMNS_SQL):
                key = f"{row['schema']}.{row['table_name']}"
                columns.setdefault(key, []).append(ColumnInfo(row["name"], row["type"]))

            tables = tuple(
                TableInfo(
                    schema=row["schema"],
                    name=row["name"],
                    estimated_rows=int(row["estimated_rows"] or 0),
                    columns=tuple(columns.get(f"{row['schema']}.{row['name']}", ())),
                )
                for row in conn.execute(_TABLES_SQL)
            )
            large_objects = int(conn.scalar(_LARGE_OBJECTS_SQL) or 0)

        logger.debug(
            f"Inventory of {spec.dbname}: {len(schemas)} schemas, "
            f"{len(tables)} tables, {large_objects} large objects"
        )
        return DatabaseInventory(
            exists=True,
            schemas=schemas,
            tables=tables,
            large_object_count=large_objects,
        )

    def row_counts(self, spec: ConnectionSpec, tables: Iterable[str]) -> dict[str, int]:
        """Exact row counts for qualified table names."""
        counts: dict[str, int] = {}
        with PostgresConnection(spec, default_timeout=self._default_timeout) as conn:
            for qualified in tables:
                schema, _, name = qualified.partition(".")
                sql = f"SELECT count(*) FROM {quote_ident(schema)}.{quote_ident(name)}"
                counts[qualified] = int(conn.scalar(sql) or 0)
        return counts


def quote_ident(identifier: str) -> str:
    """Quote an SQL identifier."""
    return '"' + identifier.replace('"', '""') + '"'
