"""
PostgreSQL access for the ERP service.

Thin wrapper over psycopg 3: one connection per call (or per unit of work),
dict rows, NUMERIC columns loaded as float.
"""

from contextlib import contextmanager
from typing import Any, Generator, Sequence

import psycopg
from psycopg.rows import dict_row
from psycopg.types.json import Json
from psycopg.types.numeric import FloatLoader

from erp_api.config import settings
from erp_api.core.errors import ValidationError
from erp_api.core.logging import get_logger
from erp_api.core.schema import SCHEMA_SQL

log = get_logger(__name__)

Params = Sequence[Any] | dict[str, Any] | None


class Database:
    """PostgreSQL database operations."""

    def __init__(self, connection_string: str | None = None):
        """
        Args:
            connection_string: PostgreSQL connection URL. Uses settings if not provided.
        """
        self.connection_string = connection_string or settings.database_url

    @contextmanager
    def get_connection(self) -> Generator[psycopg.Connection, None, None]:
        """Get a database connection as a context manager."""
        conn = psycopg.connect(self.connection_string, row_factory=dict_row)
        conn.adapters.register_loader("numeric", FloatLoader)
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Generator[psycopg.Connection, None, None]:
        """
        Run a multi-statement unit of work atomically.

        Everything executed on the yielded connection is committed when the
        block exits normally and rolled back if it raises.
        """
        with self.get_connection() as conn:
            with conn.transaction():
                yield conn

    def init_schema(self) -> None:
        """Initialize database schema (create tables if not exist)."""
        with self.get_connection() as conn:
            conn.execute(SCHEMA_SQL)
            conn.commit()
            log.info("database_schema_initialized")

    def fetch_all(self, sql: str, params: Params = None) -> list[dict[str, Any]]:
        with self.get_connection() as conn:
            return conn.execute(sql, params).fetchall()

    def fetch_one(self, sql: str, params: Params = None) -> dict[str, Any] | None:
        with self.get_connection() as conn:
            return conn.execute(sql, params).fetchone()

    def execute(self, sql: str, params: Params = None) -> dict[str, Any] | None:
        """Run a single write and commit; returns the RETURNING row if any."""
        with self.get_connection() as conn:
            cursor = conn.execute(sql, params)
            row = cursor.fetchone() if cursor.description else None
            conn.commit()
            return row


def jsonb(value: Any) -> Json:
    """Wrap a Python value for a JSONB parameter."""
    return Json(value)


def build_update(
    table: str,
    values: dict[str, Any],
    allowed: set[str],
    touch: bool = False,
) -> tuple[str, dict[str, Any]]:
    """
    Build ``UPDATE <table> SET ... WHERE id = %(id)s RETURNING *`` for the
    allowed subset of ``values``.

    Column names come only from ``allowed``; values are always bound.
    With ``touch`` the row's updated_at is set to NOW() as well.
    """
    updates = {k: v for k, v in values.items() if k in allowed}
    if not updates:
        raise ValidationError("No updatable fields supplied")
    assignments = ", ".join(f"{column} = %({column})s" for column in sorted(updates))
    if touch:
        assignments += ", updated_at = NOW()"
    sql = f"UPDATE {table} SET {assignments} WHERE id = %(id)s RETURNING *"
    return sql, updates
