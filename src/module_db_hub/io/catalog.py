"""
Live database inspection and statement execution.

``Catalog`` answers structural questions about the live database (does this
schema/table/policy/constraint exist, what columns does a table have) and
``StatementExecutor`` runs rendered DDL. Both are protocols so the
provisioning domain never depends on a concrete driver; the SQLAlchemy
implementations below are what production wiring uses.
"""

from __future__ import annotations

from typing import Dict, List, Optional, Protocol

import sqlalchemy as sa
from sqlalchemy.engine import Engine

from module_db_hub.config.settings import Settings
from module_db_hub.infrastructure.schema.core import ColumnShape
from module_db_hub.infrastructure.sql.operations.ddl import DDLStatement
from module_db_hub.utils.logging import get_logger

logger = get_logger(__name__)

MODULE_SCHEMA_LIKE = "mod\\_%"


class StatementExecutor(Protocol):
    def run(self, statement: DDLStatement, sql: str) -> None:
        """Execute one rendered statement, raising on failure."""
        ...


class Catalog(Protocol):
    def schema_exists(self, schema: str) -> bool: ...

    def table_exists(self, schema: str, table: str) -> bool: ...

    def table_columns(self, schema: str, table: str) -> Dict[str, ColumnShape]: ...

    def policy_exists(self, schema: str, table: str, name: str) -> bool: ...

    def constraint_exists(self, schema: str, table: str, name: str) -> bool: ...

    def list_module_schemas(self) -> List[str]: ...

    def list_tables(self, schema: str) -> List[str]: ...


def create_engine_from_settings(settings: Settings) -> Engine:
    """Create the SQLAlchemy engine used by every component."""
    url = settings.get_database_connection_string()
    kwargs = {"pool_pre_ping": True}
    if url.startswith("postgresql"):
        kwargs["pool_size"] = settings.DB_POOL_SIZE
    return sa.create_engine(url, **kwargs)


class SqlAlchemyExecutor:
    """Runs each statement in its own transaction."""

    def __init__(self, engine: Engine):
        self.engine = engine

    def run(self, statement: DDLStatement, sql: str) -> None:
        # Colons are escaped so literal defaults are never parsed as bind params
        with self.engine.begin() as conn:
            conn.execute(sa.text(sql.replace(":", r"\:")))


class SqlAlchemyCatalog:
    """
    Catalog backed by PostgreSQL's information_schema and pg_catalog.

    Usage:
        catalog = SqlAlchemyCatalog(engine)
        if catalog.table_exists("public", "mod_a1b2c3d4_contacts"):
            columns = catalog.table_columns("public", "mod_a1b2c3d4_contacts")
    """

    def __init__(self, engine: Engine):
        self.engine = engine

    def _scalar(self, query: str, params: Dict[str, str]) -> Optional[object]:
        with self.engine.connect() as conn:
            return conn.execute(sa.text(query), params).scalar()

    def schema_exists(self, schema: str) -> bool:
        return bool(
            self._scalar(
                """
                SELECT EXISTS (
                    SELECT FROM information_schema.schemata
                    WHERE schema_name = :schema
                )
                """,
                {"schema": schema},
            )
        )

    def table_exists(self, schema: str, table: str) -> bool:
        return bool(
            self._scalar(
                """
                SELECT EXISTS (
                    SELECT FROM information_schema.tables
                    WHERE table_schema = :schema AND table_name = :table
                )
                """,
                {"schema": schema, "table": table},
            )
        )

    def table_columns(self, schema: str, table: str) -> Dict[str, ColumnShape]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                sa.text(
                    """
                    SELECT column_name, data_type, is_nullable,
                           character_maximum_length, numeric_precision, numeric_scale
                    FROM information_schema.columns
                    WHERE table_schema = :schema AND table_name = :table
                    ORDER BY ordinal_position
                    """
                ),
                {"schema": schema, "table": table},
            ).fetchall()
        return {
            row[0]: ColumnShape(
                data_type=row[1],
                nullable=row[2] == "YES",
                max_length=row[3],
                precision=row[4],
                scale=row[5],
            )
            for row in rows
        }

    def policy_exists(self, schema: str, table: str, name: str) -> bool:
        return bool(
            self._scalar(
                """
                SELECT EXISTS (
                    SELECT FROM pg_catalog.pg_policies
                    WHERE schemaname = :schema
                      AND tablename = :table
                      AND policyname = :name
                )
                """,
                {"schema": schema, "table": table, "name": name},
            )
        )

    def constraint_exists(self, schema: str, table: str, name: str) -> bool:
        return bool(
            self._scalar(
                """
                SELECT EXISTS (
                    SELECT FROM information_schema.table_constraints
                    WHERE table_schema = :schema
                      AND table_name = :table
                      AND constraint_name = :name
                )
                """,
                {"schema": schema, "table": table, "name": name},
            )
        )

    def list_module_schemas(self) -> List[str]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                sa.text(
                    """
                    SELECT schema_name FROM information_schema.schemata
                    WHERE schema_name LIKE :pattern
                    ORDER BY schema_name
                    """
                ),
                {"pattern": MODULE_SCHEMA_LIKE},
            ).fetchall()
        return [row[0] for row in rows]

    def list_tables(self, schema: str) -> List[str]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                sa.text(
                    """
                    SELECT table_name FROM information_schema.tables
                    WHERE table_schema = :schema AND table_type = 'BASE TABLE'
                    ORDER BY table_name
                    """
                ),
                {"schema": schema},
            ).fetchall()
        return [row[0] for row in rows]


__all__ = [
    "Catalog",
    "SqlAlchemyCatalog",
    "SqlAlchemyExecutor",
    "StatementExecutor",
    "create_engine_from_settings",
]
