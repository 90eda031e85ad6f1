"""
SQL module for centralized DDL generation.

This module provides the structured statement variants the provisioning
subsystem is allowed to execute, plus identifier quoting and the PostgreSQL
dialect that renders them.
"""

from .core.identifier import qualify_table, quote_identifier, quote_literal
from .dialects.postgresql import PostgreSQLDialect, UnsupportedStatementError
from .operations.ddl import (
    DESTRUCTIVE_TYPES,
    STATEMENT_TYPES,
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

__all__ = [
    "quote_identifier",
    "qualify_table",
    "quote_literal",
    "PostgreSQLDialect",
    "UnsupportedStatementError",
    "DDLStatement",
    "ColumnDefault",
    "ColumnSpec",
    "CreateSchema",
    "GrantSchemaUsage",
    "DropSchema",
    "CreateTable",
    "DropTable",
    "CreateIndex",
    "AddForeignKey",
    "DropForeignKey",
    "GrantTablePrivileges",
    "EnableRowSecurity",
    "AttachPolicy",
    "STATEMENT_TYPES",
    "DESTRUCTIVE_TYPES",
]
