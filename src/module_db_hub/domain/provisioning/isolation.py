"""
Tenant isolation policies for module tables.

Every tenant-scoped table gets row level security enabled and forced, plus one
policy per operation restricting rows to the caller's authorized tenants. The
predicate itself comes from the injected ``TenantAuthorizer``; this component
only wires it to tables.

Policies belong to their table and are removed with it, so they carry no
separate compensating action.
"""

from __future__ import annotations

from typing import List, Optional, Tuple

from module_db_hub.infrastructure.schema.core import ModuleIdentity, TableDefinition
from module_db_hub.infrastructure.sql.operations.ddl import (
    AttachPolicy,
    DDLStatement,
    EnableRowSecurity,
    PolicyCommand,
)
from module_db_hub.io.catalog import Catalog
from module_db_hub.utils.logging import get_logger

from .exceptions import InvalidManifest
from .guard import DDLGuard
from .naming import NameAllocator
from .tenancy import TenantAuthorizer

logger = get_logger(__name__)

POLICY_COMMANDS: Tuple[PolicyCommand, ...] = ("SELECT", "INSERT", "UPDATE", "DELETE")


class IsolationPolicyInstaller:
    def __init__(
        self,
        guard: DDLGuard,
        catalog: Catalog,
        authorizer: TenantAuthorizer,
        allocator: NameAllocator,
        app_role: str = "authenticated",
        default_tenant_column: str = "site_id",
    ):
        self.guard = guard
        self.catalog = catalog
        self.authorizer = authorizer
        self.allocator = allocator
        self.app_role = app_role
        self.default_tenant_column = default_tenant_column

    def isolation_plan(
        self, table: TableDefinition, module_id: Optional[str] = None
    ) -> Optional[str]:
        """
        Decide how a table is isolated.

        Returns the tenant column to scope on, or None when the table is
        globally shared (no tenant column and ``security_required`` off).

        Raises:
            InvalidManifest: If a required or explicitly named tenant column
                is not declared
        """
        column = table.tenant_column or self.default_tenant_column
        if column in table.column_names:
            return column
        if table.tenant_column is not None or table.security_required:
            raise InvalidManifest(
                f"Tenant column '{column}' is not declared",
                module_id=module_id,
                table=table.logical_name,
            )
        return None

    def statements(
        self,
        schema: str,
        table_name: str,
        logical_name: str,
        tenant_column: str,
        short_id: str,
    ) -> List[DDLStatement]:
        """All isolation statements for one table, in execution order."""
        predicate = self.authorizer.scope_expression(tenant_column)
        stmts: List[DDLStatement] = [EnableRowSecurity(schema=schema, table=table_name)]
        for command in POLICY_COMMANDS:
            stmts.append(
                AttachPolicy(
                    schema=schema,
                    table=table_name,
                    name=self.allocator.policy_name(short_id, logical_name, command),
                    command=command,
                    role=self.app_role,
                    using=None if command == "INSERT" else predicate,
                    with_check=predicate if command in ("INSERT", "UPDATE") else None,
                )
            )
        return stmts

    def attach_isolation(
        self,
        schema: str,
        table_name: str,
        logical_name: str,
        tenant_column: str,
        owner: ModuleIdentity,
        short_id: str,
    ) -> List[str]:
        """
        Enable row level security and attach the tenant policies.

        Policies already present on the table are left alone, so the call is
        safe to repeat. Returns the names of the policies attached.
        """
        attached: List[str] = []
        for stmt in self.statements(schema, table_name, logical_name, tenant_column, short_id):
            if isinstance(stmt, AttachPolicy) and self.catalog.policy_exists(
                schema, table_name, stmt.name
            ):
                continue
            self.guard.execute(stmt, owner)
            if isinstance(stmt, AttachPolicy):
                attached.append(stmt.name)

        logger.info(
            "isolation.attached",
            module_id=owner.module_id,
            table=f"{schema}.{table_name}",
            tenant_column=tenant_column,
            policies=len(attached),
        )
        return attached


__all__ = ["IsolationPolicyInstaller", "POLICY_COMMANDS"]
