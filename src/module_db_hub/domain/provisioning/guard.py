"""
DDL guard: the only path by which provisioning changes database structure.

The guard accepts nothing but the closed set of statement variants from
``infrastructure.sql.operations.ddl`` and dispatches on their type. Each
variant's target must lie inside the owning module's namespace:

- schema ``mod_{short_id}`` (schema isolation), or
- a ``mod_{short_id}_`` prefixed table in the platform schema

Protected schemas can never be created, granted on or dropped, reserved table
names can never be targeted, and grants and policies may only name the
configured roles. Statements are never retried.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Iterable, Optional, cast

from module_db_hub.infrastructure.schema.core import ModuleIdentity
from module_db_hub.infrastructure.schema.reserved import ReservedNames
from module_db_hub.infrastructure.sql.dialects.postgresql import PostgreSQLDialect
from module_db_hub.infrastructure.sql.operations.ddl import (
    STATEMENT_TYPES,
    AddForeignKey,
    AttachPolicy,
    CreateSchema,
    DDLStatement,
    DropSchema,
    GrantSchemaUsage,
    GrantTablePrivileges,
)
from module_db_hub.io.catalog import StatementExecutor
from module_db_hub.utils.logging import get_logger

from .exceptions import ForbiddenOperation
from .naming import derive_short_id

if TYPE_CHECKING:
    from module_db_hub.io.repositories.registry import ModuleRegistry

logger = get_logger(__name__)

SCHEMA_LEVEL_TYPES = (CreateSchema, GrantSchemaUsage, DropSchema)

# Foreign keys may reference platform tables, never system catalogs
SYSTEM_SCHEMAS = frozenset({"pg_catalog", "information_schema", "pg_toast"})


class DDLGuard:
    """Validates and executes structured DDL on behalf of one module at a time."""

    def __init__(
        self,
        executor: StatementExecutor,
        reserved: ReservedNames,
        protected_schemas: Iterable[str],
        allowed_roles: Iterable[str],
        platform_schema: str = "public",
        registry: Optional["ModuleRegistry"] = None,
        dialect: Optional[PostgreSQLDialect] = None,
    ):
        self.executor = executor
        self.reserved = reserved
        self.protected_schemas = frozenset(s.lower() for s in protected_schemas)
        self.allowed_roles = frozenset(allowed_roles)
        self.platform_schema = platform_schema
        self.registry = registry
        self.dialect = dialect or PostgreSQLDialect()

    def _owner_short_id(self, owner: ModuleIdentity) -> str:
        short_id = derive_short_id(owner)
        if self.registry is not None:
            entry = self.registry.lookup(owner.module_id)
            if entry is not None and entry.short_id != short_id:
                raise ForbiddenOperation(
                    "Registered short id does not match the module identity",
                    module_id=owner.module_id,
                    registered=entry.short_id,
                    derived=short_id,
                )
        return short_id

    def check(self, statement: object, owner: ModuleIdentity) -> DDLStatement:
        """
        Validate a statement for ``owner`` without executing it.

        Raises:
            ForbiddenOperation: If the statement is not an allowed variant or
                targets anything outside the owner's namespace
        """
        if type(statement) not in STATEMENT_TYPES:
            raise ForbiddenOperation(
                "Only structured DDL statements may be executed",
                module_id=owner.module_id,
                statement_type=type(statement).__name__,
            )
        statement = cast(DDLStatement, statement)

        short_id = self._owner_short_id(owner)
        owner_schema = f"mod_{short_id}"
        schema = statement.schema.lower()

        if isinstance(statement, SCHEMA_LEVEL_TYPES):
            if schema in self.protected_schemas:
                raise ForbiddenOperation(
                    "Protected schema cannot be targeted",
                    module_id=owner.module_id,
                    schema=statement.schema,
                    kind=statement.kind,
                )
            if schema != owner_schema:
                raise ForbiddenOperation(
                    "Schema is outside the module's namespace",
                    module_id=owner.module_id,
                    schema=statement.schema,
                    kind=statement.kind,
                )
        else:
            self._check_table_target(statement, owner, owner_schema, short_id)

        if isinstance(statement, (GrantSchemaUsage, GrantTablePrivileges, AttachPolicy)):
            if statement.role not in self.allowed_roles:
                raise ForbiddenOperation(
                    "Role is not allowed",
                    module_id=owner.module_id,
                    role=statement.role,
                    kind=statement.kind,
                )

        if isinstance(statement, AddForeignKey):
            if statement.ref_schema.lower() in SYSTEM_SCHEMAS:
                raise ForbiddenOperation(
                    "Foreign keys may not reference system catalogs",
                    module_id=owner.module_id,
                    ref_schema=statement.ref_schema,
                )
        return statement

    def _check_table_target(
        self,
        statement: DDLStatement,
        owner: ModuleIdentity,
        owner_schema: str,
        short_id: str,
    ) -> None:
        table = (statement.target_table or "").lower()
        schema = statement.schema.lower()
        if not table:
            raise ForbiddenOperation(
                "Statement has no target table",
                module_id=owner.module_id,
                kind=statement.kind,
            )
        if table in self.reserved:
            raise ForbiddenOperation(
                "Reserved table cannot be targeted",
                module_id=owner.module_id,
                table=table,
                kind=statement.kind,
            )
        in_own_schema = schema == owner_schema
        in_own_prefix = schema == self.platform_schema.lower() and table.startswith(
            f"mod_{short_id}_"
        )
        if not (in_own_schema or in_own_prefix):
            raise ForbiddenOperation(
                "Table is outside the module's namespace",
                module_id=owner.module_id,
                schema=statement.schema,
                table=table,
                kind=statement.kind,
            )

    def render(self, statement: object, owner: ModuleIdentity) -> str:
        """Guarded rendering without execution (dry-run plans)."""
        return self.dialect.render(self.check(statement, owner))

    def execute(self, statement: object, owner: ModuleIdentity) -> None:
        checked = self.check(statement, owner)
        sql = self.dialect.render(checked)
        try:
            self.executor.run(checked, sql)
        except Exception as e:
            logger.error(
                "ddl.failed",
                module_id=owner.module_id,
                kind=checked.kind,
                target=checked.describe(),
                error=str(e),
                error_type=type(e).__name__,
            )
            raise
        logger.info(
            "ddl.executed",
            module_id=owner.module_id,
            kind=checked.kind,
            target=checked.describe(),
        )


__all__ = ["DDLGuard"]
