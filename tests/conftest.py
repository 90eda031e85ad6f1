"""Pytest configuration and shared fixtures.

IMPORTANT: .mdh_env is loaded FIRST so integration runs pick up the test
database from that file rather than from whatever the shell exports.

Unit tests never touch PostgreSQL. The registry runs on an in-memory SQLite
engine and the live database is replaced by ``FakeDatabase``, an in-memory
catalog and statement executor that applies the structured DDL variants.
"""

from __future__ import annotations

from pathlib import Path

from dotenv import load_dotenv

_MDH_ENV_FILE = Path(__file__).parent.parent / ".mdh_env"
if _MDH_ENV_FILE.exists():
    load_dotenv(_MDH_ENV_FILE, override=True)

import os
import re
from dataclasses import dataclass, field
from typing import Callable, Dict, Generator, List, Optional, Set, Tuple, Union

import pytest
import sqlalchemy as sa
from sqlalchemy.engine.url import make_url
from sqlalchemy.pool import StaticPool

# Ensure Settings() can initialize without a bespoke .env file.
os.environ.setdefault("DATABASE_URL", "sqlite://")

from module_db_hub.bootstrap import Services, build_services
from module_db_hub.config.settings import Settings
from module_db_hub.infrastructure.schema.core import ColumnShape, ModuleIdentity
from module_db_hub.infrastructure.schema.reserved import ReservedNames
from module_db_hub.infrastructure.settings.manifest_schema import parse_manifest
from module_db_hub.infrastructure.sql.operations.ddl import (
    AddForeignKey,
    AttachPolicy,
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
from module_db_hub.io.repositories.registry import ModuleRegistry

PLATFORM_SCHEMA = "public"

INTEGRATION_URL_ENV = "MDH_TEST_DATABASE_URL"


def _validate_test_database(dsn: str) -> bool:
    """Ensure we're not connected to a production database.

    Integration tests create and drop module schemas, so the database name
    must look like a throwaway one.

    Raises:
        RuntimeError: If the database name doesn't match the test pattern

    Examples:
        >>> _validate_test_database("postgresql://localhost/platform_test")
        True
    """
    if os.getenv("MDH_SKIP_DB_VALIDATION") == "1":
        return True

    db_name = make_url(dsn).database
    if not db_name:
        raise RuntimeError(
            "Refusing to run tests against empty/missing database name. "
            "Test databases must contain one of: test, tmp, dev, local, sandbox. "
            "Override with MDH_SKIP_DB_VALIDATION=1 (DANGEROUS)."
        )
    if not re.search(r"(test|tmp|dev|local|sandbox)", db_name, re.IGNORECASE):
        raise RuntimeError(
            f"Refusing to run tests against non-test database: {db_name}. "
            "Test databases must contain one of: test, tmp, dev, local, sandbox. "
            "Override with MDH_SKIP_DB_VALIDATION=1 (DANGEROUS)."
        )
    return True


_INFORMATION_SCHEMA_TYPES = (
    ("VARCHAR", "character varying"),
    ("TEXT", "text"),
    ("INTEGER", "integer"),
    ("BIGINT", "bigint"),
    ("DECIMAL", "numeric"),
    ("BOOLEAN", "boolean"),
    ("DATE", "date"),
    ("TIMESTAMP WITH TIME ZONE", "timestamp with time zone"),
    ("UUID", "uuid"),
    ("JSONB", "jsonb"),
)


def _information_schema_type(sql_type: str) -> str:
    base = sql_type.split("(")[0].strip()
    for prefix, data_type in _INFORMATION_SCHEMA_TYPES:
        if base == prefix:
            return data_type
    return sql_type.lower()


def _live_shape(spec: ColumnSpec) -> ColumnShape:
    """What information_schema reports for a column created from ``spec``."""
    data_type = _information_schema_type(spec.sql_type)
    _, _, args = spec.sql_type.partition("(")
    numbers = [int(n) for n in args.rstrip(")").split(",")] if args else []
    max_length = precision = scale = None
    if data_type == "character varying" and numbers:
        max_length = numbers[0]
    elif data_type == "numeric" and numbers:
        precision = numbers[0]
        scale = numbers[1] if len(numbers) > 1 else 0
    return ColumnShape(
        data_type=data_type,
        nullable=spec.nullable and not spec.primary_key,
        max_length=max_length,
        precision=precision,
        scale=scale,
    )


class FakeDatabaseError(Exception):
    """Raised by FakeDatabase where PostgreSQL would raise."""


@dataclass
class FakeDatabase:
    """In-memory catalog plus statement executor.

    Behaves like PostgreSQL for the statement variants the provisioner uses:
    ``IF NOT EXISTS`` / ``IF EXISTS`` are honored, dropping a table removes
    its indexes, constraints and policies, dropping a table that another
    table references needs ``CASCADE``, dropping a schema cascades. Columns
    are stored as the ``ColumnShape`` information_schema would report.

    ``fail_when`` injects failures: a predicate over the statement; when it
    returns True the statement raises instead of being applied.
    """

    schemas: Set[str] = field(default_factory=lambda: {PLATFORM_SCHEMA})
    tables: Dict[Tuple[str, str], Dict[str, ColumnShape]] = field(default_factory=dict)
    indexes: Set[Tuple[str, str, str]] = field(default_factory=set)
    constraints: Set[Tuple[str, str, str]] = field(default_factory=set)
    policies: Set[Tuple[str, str, str]] = field(default_factory=set)
    row_security: Set[Tuple[str, str]] = field(default_factory=set)
    grants: Set[Tuple[str, str, str]] = field(default_factory=set)
    references: Dict[Tuple[str, str, str], Tuple[str, str]] = field(default_factory=dict)
    executed: List[Tuple[DDLStatement, str]] = field(default_factory=list)
    fail_when: Optional[Callable[[DDLStatement], bool]] = None

    # -- helpers for tests -------------------------------------------------

    def add_table(
        self, schema: str, table: str, columns: Dict[str, Union[str, ColumnShape]]
    ) -> None:
        """Add a table; a plain string column is a nullable column of that type."""
        self.schemas.add(schema)
        self.tables[(schema, table)] = {
            name: shape if isinstance(shape, ColumnShape) else ColumnShape(shape)
            for name, shape in columns.items()
        }

    def snapshot(self) -> dict:
        """Structural state, for before/after comparisons."""
        return {
            "schemas": set(self.schemas),
            "tables": {k: dict(v) for k, v in self.tables.items()},
            "indexes": set(self.indexes),
            "constraints": set(self.constraints),
            "policies": set(self.policies),
            "row_security": set(self.row_security),
        }

    def executed_of(self, statement_type: type) -> List[DDLStatement]:
        return [s for s, _ in self.executed if type(s) is statement_type]

    def fail_on_nth(self, statement_type: type, n: int) -> None:
        """Fail the n-th (1-based) statement of ``statement_type`` from now on."""
        seen = {"count": 0}

        def predicate(statement: DDLStatement) -> bool:
            if type(statement) is not statement_type:
                return False
            seen["count"] += 1
            return seen["count"] == n

        self.fail_when = predicate

    # -- StatementExecutor -------------------------------------------------

    def run(self, statement: DDLStatement, sql: str) -> None:
        if self.fail_when is not None and self.fail_when(statement):
            raise FakeDatabaseError(f"injected failure: {statement.kind}")
        self._apply(statement)
        self.executed.append((statement, sql))

    def _require_table(self, schema: str, table: str) -> None:
        if (schema, table) not in self.tables:
            raise FakeDatabaseError(f'relation "{schema}.{table}" does not exist')

    def _drop_table(self, schema: str, table: str, cascade: bool) -> None:
        if (schema, table) not in self.tables:
            return
        dependents = [
            key for key, target in self.references.items()
            if target == (schema, table) and key[:2] != (schema, table)
        ]
        if dependents and not cascade:
            raise FakeDatabaseError(
                f"cannot drop table {schema}.{table} because other objects depend on it"
            )
        self.tables.pop((schema, table), None)
        self.row_security.discard((schema, table))
        for bucket in (self.indexes, self.constraints, self.policies, self.grants):
            for item in [i for i in bucket if i[0] == schema and i[1] == table]:
                bucket.discard(item)
        # CASCADE also removes foreign keys pointing at the table
        for key, target in list(self.references.items()):
            if target == (schema, table) or key[:2] == (schema, table):
                self.references.pop(key)
                self.constraints.discard(key)

    def _apply(self, stmt: DDLStatement) -> None:
        if isinstance(stmt, CreateSchema):
            self.schemas.add(stmt.schema)
        elif isinstance(stmt, GrantSchemaUsage):
            if stmt.schema not in self.schemas:
                raise FakeDatabaseError(f'schema "{stmt.schema}" does not exist')
        elif isinstance(stmt, DropSchema):
            self.schemas.discard(stmt.schema)
            for schema, table in [k for k in self.tables if k[0] == stmt.schema]:
                self._drop_table(schema, table, cascade=stmt.cascade)
        elif isinstance(stmt, CreateTable):
            if stmt.schema not in self.schemas:
                raise FakeDatabaseError(f'schema "{stmt.schema}" does not exist')
            if (stmt.schema, stmt.table) not in self.tables:
                self.tables[(stmt.schema, stmt.table)] = {
                    c.name: _live_shape(c) for c in stmt.columns
                }
        elif isinstance(stmt, DropTable):
            self._drop_table(stmt.schema, stmt.table, cascade=stmt.cascade)
        elif isinstance(stmt, CreateIndex):
            self._require_table(stmt.schema, stmt.table)
            self.indexes.add((stmt.schema, stmt.table, stmt.name))
        elif isinstance(stmt, AddForeignKey):
            self._require_table(stmt.schema, stmt.table)
            self._require_table(stmt.ref_schema, stmt.ref_table)
            key = (stmt.schema, stmt.table, stmt.name)
            if key in self.constraints:
                raise FakeDatabaseError(f'constraint "{stmt.name}" already exists')
            self.constraints.add(key)
            self.references[key] = (stmt.ref_schema, stmt.ref_table)
        elif isinstance(stmt, DropForeignKey):
            self.constraints.discard((stmt.schema, stmt.table, stmt.name))
            self.references.pop((stmt.schema, stmt.table, stmt.name), None)
        elif isinstance(stmt, GrantTablePrivileges):
            self._require_table(stmt.schema, stmt.table)
            self.grants.add((stmt.schema, stmt.table, stmt.role))
        elif isinstance(stmt, EnableRowSecurity):
            self._require_table(stmt.schema, stmt.table)
            self.row_security.add((stmt.schema, stmt.table))
        elif isinstance(stmt, AttachPolicy):
            self._require_table(stmt.schema, stmt.table)
            key = (stmt.schema, stmt.table, stmt.name)
            if key in self.policies:
                raise FakeDatabaseError(f'policy "{stmt.name}" already exists')
            self.policies.add(key)
        else:
            raise FakeDatabaseError(f"unsupported statement {type(stmt).__name__}")

    # -- Catalog -----------------------------------------------------------

    def schema_exists(self, schema: str) -> bool:
        return schema in self.schemas

    def table_exists(self, schema: str, table: str) -> bool:
        return (schema, table) in self.tables

    def table_columns(self, schema: str, table: str) -> Dict[str, ColumnShape]:
        return dict(self.tables.get((schema, table), {}))

    def policy_exists(self, schema: str, table: str, name: str) -> bool:
        return (schema, table, name) in self.policies

    def constraint_exists(self, schema: str, table: str, name: str) -> bool:
        return (schema, table, name) in self.constraints

    def list_module_schemas(self) -> List[str]:
        return sorted(s for s in self.schemas if s.startswith("mod_"))

    def list_tables(self, schema: str) -> List[str]:
        return sorted(t for s, t in self.tables if s == schema)


CRM_MANIFEST = {
    "module_id": "crm-v1",
    "publisher_id": "acme",
    "name": "CRM",
    "version": "1.0.0",
    "tier": "app",
    "dependencies": {"platform_tables": ["sites"]},
    "tables": [
        {
            "name": "companies",
            "columns": [
                {"name": "id", "type": "uuid", "primary_key": True, "default": "uuid"},
                {"name": "site_id", "type": "uuid", "nullable": False},
                {"name": "name", "type": "string", "max_length": 200},
            ],
            "indexes": [{"columns": ["site_id"]}],
            "foreign_keys": [
                {
                    "column": "site_id",
                    "references": {"table": "sites", "platform": True},
                    "on_delete": "CASCADE",
                }
            ],
        },
        {
            "name": "contacts",
            "columns": [
                {"name": "id", "type": "uuid", "primary_key": True, "default": "uuid"},
                {"name": "site_id", "type": "uuid", "nullable": False},
                {"name": "company_id", "type": "uuid"},
                {"name": "email", "type": "string", "max_length": 320},
            ],
            "indexes": [{"columns": ["site_id", "email"], "unique": True}],
            "foreign_keys": [
                {
                    "column": "company_id",
                    "references": {"table": "companies"},
                    "on_delete": "SET NULL",
                }
            ],
        },
    ],
}


@pytest.fixture
def crm_manifest_data() -> dict:
    """A fresh copy of the CRM manifest as parsed YAML."""
    import copy

    return copy.deepcopy(CRM_MANIFEST)


@pytest.fixture
def crm_manifest(crm_manifest_data):
    return parse_manifest(crm_manifest_data)


@pytest.fixture
def crm_identity() -> ModuleIdentity:
    return ModuleIdentity(module_id="crm-v1", publisher_id="acme")


@pytest.fixture
def settings() -> Settings:
    """Settings with short lock timings so contention tests stay fast."""
    return Settings(
        _env_file=None,
        ENVIRONMENT="dev",
        lock_wait_timeout_seconds=0.2,
        lock_poll_interval_seconds=0.01,
    )


@pytest.fixture
def reserved_names(settings) -> ReservedNames:
    return ReservedNames.from_yaml(settings.reserved_names_config)


@pytest.fixture
def sqlite_engine() -> Generator[sa.engine.Engine, None, None]:
    """In-memory SQLite shared across connections of one test."""
    engine = sa.create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture
def registry(sqlite_engine) -> ModuleRegistry:
    registry = ModuleRegistry(
        sqlite_engine,
        lock_poll_interval=0.01,
        lock_stale_after=3600.0,
        default_wait_timeout=0.2,
    )
    registry.ensure_tables()
    return registry


@pytest.fixture
def fake_db() -> FakeDatabase:
    """Live database stand-in with the platform ``sites`` table present."""
    db = FakeDatabase()
    db.add_table(PLATFORM_SCHEMA, "sites", {"id": "uuid", "name": "text"})
    return db


@pytest.fixture
def services(settings, sqlite_engine, fake_db, reserved_names) -> Services:
    """Fully wired components over SQLite (registry) and FakeDatabase (DDL)."""
    return build_services(
        settings,
        engine=sqlite_engine,
        executor=fake_db,
        catalog=fake_db,
        reserved=reserved_names,
    )


@pytest.fixture
def postgres_url() -> str:
    """DSN of a disposable PostgreSQL database, or skip."""
    url = os.environ.get(INTEGRATION_URL_ENV)
    if not url or not url.startswith("postgres"):
        pytest.skip(f"{INTEGRATION_URL_ENV} must point at PostgreSQL for integration tests")
    _validate_test_database(url)
    return url
