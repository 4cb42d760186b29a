"""PostgreSQL connection management.

Thin psycopg2 wrapper used for read-only catalog queries. Data never flows
through this connection; copies are performed by the client tools.
"""

from typing import TYPE_CHECKING, Any

import psycopg2
import psycopg2.extras
from loguru import logger

if TYPE_CHECKING:
    from dbhelper.copy.models import ConnectionSpec

MAINTENANCE_DB = "postgres"


class PostgresConnection:
    """PostgreSQL connection manager for one ConnectionSpec.

    Connections are opened lazily and reopened when a different database
    is requested.
    """

    def __init__(self, spec: "ConnectionSpec", default_timeout: int = 10):
        """PostgreSQL connection manager.

        Args:
            spec: Resolved connection parameters
            default_timeout: connect_timeout used when the connection has none
        """
        self._spec = spec
        self._default_timeout = default_timeout
        self._conn: Any | None = None
        self._current_database: str | None = None

    def get_dsn(self, database: str | None = None) -> dict[str, Any]:
        """Get connection parameters for psycopg2.connect().

        Args:
            database: Override database name

        Returns:
            Dict of connection parameters
        """
        spec = self._spec
        dsn: dict[str, Any] = {
            "host": spec.host,
            "port": spec.port,
            "dbname": database or spec.dbname,
            "user": spec.user,
            "connect_timeout": spec.connect_timeout or self._default_timeout,
            "application_name": "dbhelper",
        }
        if spec.password is not None:
            dsn["password"] = spec.password.get_secret_value()
        if spec.sslmode:
            dsn["sslmode"] = spec.sslmode
        if spec.sslcert:
            dsn["sslcert"] = str(spec.sslcert)
        if spec.sslkey:
            dsn["sslkey"] = str(spec.sslkey)
        return dsn

    def ensure_connected(self, database: str | None = None) -> Any:
        """Ensure a connection exists, creating one if needed.

        Raises:
            ConnectionFailedError: If the server cannot be reached
        """
        from dbhelper.copy.errors import ConnectionFailedError

        target_db = database or self._spec.dbname
        if (
            self._conn is None
            or self._conn.closed
            or self._current_database != target_db
        ):
            self.close()
            try:
                self._conn = psycopg2.connect(**self.get_dsn(target_db))
            except psycopg2.OperationalError as e:
                raise ConnectionFailedError(
                    f"Could not connect to {self._spec.host}:{self._spec.port}/{target_db}",
                    details=str(e).strip(),
                ) from e
            self._conn.set_session(readonly=True, autocommit=True)
            self._current_database = target_db
            logger.debug(f"Connected to {self._spec.host}:{self._spec.port}/{target_db}")
        return self._conn

    def close(self) -> None:
        """Close the current connection if open."""
        if self._conn and not self._conn.closed:
            self._conn.close()
        self._conn = None
        self._current_database = None

    def test_connection(self, database: str | None = None) -> tuple[bool, str]:
        """Test database connectivity.

        Returns:
            Tuple of (success, message)
        """
        from dbhelper.copy.errors import ConnectionFailedError

        try:
            version = self.scalar("SELECT version()", database=database)
        except ConnectionFailedError as e:
            return False, f"Connection failed: {e.details or e.message}"
        except psycopg2.Error as e:
            return False, f"Error: {e}"
        return True, f"Connected: {version}" if version else "Connected"

    def execute(
        self,
        sql: str,
        params: tuple[Any, ...] | None = None,
        database: str | None = None,
    ) -> list[dict[str, Any]]:
        """Execute SQL and return results as list of dicts."""
        conn = self.ensure_connected(database)
        with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
            cur.execute(sql, params)
            if cur.description:
                return [dict(row) for row in cur.fetchall()]
            return []

    def scalar(
        self,
        sql: str,
        params: tuple[Any, ...] | None = None,
        database: str | None = None,
    ) -> Any:
        """Execute SQL and return single scalar value."""
        result = self.execute(sql, params, database)
        if result and result[0]:
            return list(result[0].values())[0]
        return None

    def database_exists(self, name: str | None = None) -> bool:
        """Check for a database via the maintenance database."""
        exists = self.scalar(
            "SELECT COUNT(*) FROM pg_database WHERE datname = %s",
            (name or self._spec.dbname,),
            database=MAINTENANCE_DB,
        )
        return bool(exists)

    @property
    def spec(self) -> "ConnectionSpec":
        return self._spec

    def __enter__(self) -> "PostgresConnection":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()
