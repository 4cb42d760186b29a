"""PostgreSQL infrastructure.

Connection management for the read-only catalog queries made before and
after a copy. Data transfer itself is done by the PostgreSQL client tools.
"""

from .connection import MAINTENANCE_DB, PostgresConnection

__all__ = ["MAINTENANCE_DB", "PostgresConnection"]
