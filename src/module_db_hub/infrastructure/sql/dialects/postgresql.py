"""
PostgreSQL-specific SQL dialect implementation.

Renders the structured DDL statement variants to PostgreSQL syntax. Every
identifier goes through ``quote_identifier``; the only literals emitted come
from ``ColumnDefault`` and are quoted with ``quote_literal``.
"""

from typing import Callable, Dict, List, Optional

from ..core.identifier import qualify_table, quote_identifier, quote_literal
from ..operations.ddl import (
    AddForeignKey,
    AttachPolicy,
    ColumnDefault,
    ColumnSpec,
    CreateIndex,
    CreateSchema,
    CreateTable,
    DDLStatement,
    DropForeignKey,
    DropSchema,
    DropTable,
    EnableRowSecurity,
    GrantSchemaUsage,
    GrantTablePrivileges,
)


class UnsupportedStatementError(TypeError):
    """Raised when asked to render something that is not a known variant."""


class PostgreSQLDialect:
    """PostgreSQL SQL dialect implementation."""

    name = "postgresql"

    def __init__(self) -> None:
        self._renderers: Dict[type, Callable[..., str]] = {
            CreateSchema: self.build_create_schema,
            GrantSchemaUsage: self.build_grant_schema_usage,
            DropSchema: self.build_drop_schema,
            CreateTable: self.build_create_table,
            DropTable: self.build_drop_table,
            CreateIndex: self.build_create_index,
            AddForeignKey: self.build_add_foreign_key,
            DropForeignKey: self.build_drop_foreign_key,
            GrantTablePrivileges: self.build_grant_table_privileges,
            EnableRowSecurity: self.build_enable_row_security,
            AttachPolicy: self.build_attach_policy,
        }

    def quote(self, identifier: str) -> str:
        """Quote an identifier using PostgreSQL syntax (double quotes)."""
        return quote_identifier(identifier)

    def qualify(self, table: str, schema: Optional[str] = None) -> str:
        """Create a fully qualified table reference."""
        return qualify_table(table, schema)

    def render(self, statement: DDLStatement) -> str:
        """Render a statement variant, dispatching on its exact type."""
        renderer = self._renderers.get(type(statement))
        if renderer is None:
            raise UnsupportedStatementError(
                f"No renderer for statement type {type(statement).__name__}"
            )
        return renderer(statement)

    # -- schema level ------------------------------------------------------

    def build_create_schema(self, stmt: CreateSchema) -> str:
        return f"CREATE SCHEMA IF NOT EXISTS {self.quote(stmt.schema)}"

    def build_grant_schema_usage(self, stmt: GrantSchemaUsage) -> str:
        return (
            f"GRANT {stmt.privilege} ON SCHEMA {self.quote(stmt.schema)} "
            f"TO {self.quote(stmt.role)}"
        )

    def build_drop_schema(self, stmt: DropSchema) -> str:
        cascade = " CASCADE" if stmt.cascade else ""
        return f"DROP SCHEMA IF EXISTS {self.quote(stmt.schema)}{cascade}"

    # -- tables ------------------------------------------------------------

    def _render_default(self, default: ColumnDefault) -> str:
        if default.kind == "now":
            return "CURRENT_TIMESTAMP"
        if default.kind == "uuid":
            return "gen_random_uuid()"
        return quote_literal(default.value)

    def _render_column(self, col: ColumnSpec) -> str:
        parts: List[str] = [self.quote(col.name), col.sql_type]
        if col.primary_key:
            parts.append("PRIMARY KEY")
        elif col.unique:
            parts.append("UNIQUE")
        if not col.nullable and not col.primary_key:
            parts.append("NOT NULL")
        if col.default is not None:
            parts.append(f"DEFAULT {self._render_default(col.default)}")
        return " ".join(parts)

    def build_create_table(self, stmt: CreateTable) -> str:
        qualified_table = self.qualify(stmt.table, stmt.schema)
        column_lines = ",\n".join(f"  {self._render_column(c)}" for c in stmt.columns)
        return f"CREATE TABLE IF NOT EXISTS {qualified_table} (\n{column_lines}\n)"

    def build_drop_table(self, stmt: DropTable) -> str:
        cascade = " CASCADE" if stmt.cascade else ""
        return f"DROP TABLE IF EXISTS {self.qualify(stmt.table, stmt.schema)}{cascade}"

    def build_create_index(self, stmt: CreateIndex) -> str:
        unique_str = "UNIQUE " if stmt.unique else ""
        cols_str = ", ".join(self.quote(c) for c in stmt.columns)
        return (
            f"CREATE {unique_str}INDEX IF NOT EXISTS {self.quote(stmt.name)} "
            f"ON {self.qualify(stmt.table, stmt.schema)} ({cols_str})"
        )

    def build_add_foreign_key(self, stmt: AddForeignKey) -> str:
        sql = (
            f"ALTER TABLE {self.qualify(stmt.table, stmt.schema)} "
            f"ADD CONSTRAINT {self.quote(stmt.name)} "
            f"FOREIGN KEY ({self.quote(stmt.column)}) "
            f"REFERENCES {self.qualify(stmt.ref_table, stmt.ref_schema)} "
            f"({self.quote(stmt.ref_column)})"
        )
        if stmt.on_delete:
            sql += f" ON DELETE {stmt.on_delete}"
        if stmt.on_update:
            sql += f" ON UPDATE {stmt.on_update}"
        return sql

    def build_drop_foreign_key(self, stmt: DropForeignKey) -> str:
        return (
            f"ALTER TABLE IF EXISTS {self.qualify(stmt.table, stmt.schema)} "
            f"DROP CONSTRAINT IF EXISTS {self.quote(stmt.name)}"
        )

    def build_grant_table_privileges(self, stmt: GrantTablePrivileges) -> str:
        privileges = ", ".join(stmt.privileges)
        return (
            f"GRANT {privileges} ON {self.qualify(stmt.table, stmt.schema)} "
            f"TO {self.quote(stmt.role)}"
        )

    # -- row level security ------------------------------------------------

    def build_enable_row_security(self, stmt: EnableRowSecurity) -> str:
        sql = (
            f"ALTER TABLE {self.qualify(stmt.table, stmt.schema)} "
            "ENABLE ROW LEVEL SECURITY"
        )
        if stmt.force:
            sql += ", FORCE ROW LEVEL SECURITY"
        return sql

    def build_attach_policy(self, stmt: AttachPolicy) -> str:
        sql = (
            f"CREATE POLICY {self.quote(stmt.name)} "
            f"ON {self.qualify(stmt.table, stmt.schema)} "
            f"FOR {stmt.command} TO {self.quote(stmt.role)}"
        )
        if stmt.using:
            sql += f" USING ({stmt.using})"
        if stmt.with_check:
            sql += f" WITH CHECK ({stmt.with_check})"
        return sql
