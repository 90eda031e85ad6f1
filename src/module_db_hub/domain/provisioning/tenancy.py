"""
Tenant scoping for module tables.

``TenantAuthorizer`` is the injected capability that decides which tenants a
caller may see. It supplies both sides of the isolation contract:

- ``scope_expression``: the database-side predicate installed in row level
  security policies at provisioning time
- ``predicate_for``: the authorized tenant ids for a caller at access time

``TenantDataAccess`` applies the same contract in the application: every
select, insert, update and delete against a module table is constrained to the
caller's authorized tenants. Tables are resolved only through the registry.
"""

from __future__ import annotations

import re
from typing import (
    TYPE_CHECKING,
    Any,
    Dict,
    FrozenSet,
    List,
    Mapping,
    Optional,
    Protocol,
    Sequence,
)

import sqlalchemy as sa
from sqlalchemy.engine import Connection, Engine

from module_db_hub.infrastructure.sql.core.identifier import quote_identifier
from module_db_hub.utils.logging import get_logger

from .exceptions import ModuleNotRegistered, TenantScopeViolation, UnknownReference
from .models import CallerContext

if TYPE_CHECKING:
    from module_db_hub.io.repositories.registry import ModuleRegistry

logger = get_logger(__name__)

SETTING_NAME_PATTERN = re.compile(r"^[a-z_][a-z0-9_]*\.[a-z_][a-z0-9_]*$")


class TenantAuthorizer(Protocol):
    def scope_expression(self, tenant_column: str) -> str:
        """SQL predicate restricting rows to the current session's tenants."""
        ...

    def predicate_for(self, caller: CallerContext) -> FrozenSet[str]:
        """Tenant ids the caller is authorized for."""
        ...

    def apply(self, conn: Connection, caller: CallerContext) -> None:
        """Bind the caller's scope to a connection's current transaction."""
        ...


class SessionSettingAuthorizer:
    """
    Authorizer backed by a PostgreSQL session setting.

    The caller's tenant ids are published as a comma-separated list in
    ``setting_name`` (transaction-local) and policies compare the tenant column
    against it. Callers with no tenants match no rows.
    """

    def __init__(self, setting_name: str = "app.tenant_ids"):
        if not SETTING_NAME_PATTERN.match(setting_name):
            raise ValueError(f"Invalid session setting name: {setting_name!r}")
        self.setting_name = setting_name

    def scope_expression(self, tenant_column: str) -> str:
        return (
            f"{quote_identifier(tenant_column)}::text = ANY "
            f"(string_to_array(current_setting('{self.setting_name}', true), ','))"
        )

    def predicate_for(self, caller: CallerContext) -> FrozenSet[str]:
        return frozenset(str(t) for t in caller.tenant_ids)

    def session_settings(self, caller: CallerContext) -> Dict[str, str]:
        return {self.setting_name: ",".join(sorted(self.predicate_for(caller)))}

    def apply(self, conn: Connection, caller: CallerContext) -> None:
        if conn.dialect.name != "postgresql":
            return
        for name, value in self.session_settings(caller).items():
            conn.execute(
                sa.text("SELECT set_config(:name, :value, true)"),
                {"name": name, "value": value},
            )


class ScopedTable:
    """A module table seen through one caller's tenant scope."""

    def __init__(
        self,
        engine: Engine,
        table: sa.Table,
        tenant_column: Optional[str],
        caller: CallerContext,
        authorizer: TenantAuthorizer,
        module_id: str,
    ):
        self.engine = engine
        self.table = table
        self.tenant_column = tenant_column
        self.caller = caller
        self.authorizer = authorizer
        self.module_id = module_id
        self.allowed = authorizer.predicate_for(caller)

    @property
    def is_shared(self) -> bool:
        return self.tenant_column is None

    def _scope_clause(self) -> Optional[sa.ColumnElement]:
        if self.tenant_column is None:
            return None
        if not self.allowed:
            return sa.false()
        column = self.table.c[self.tenant_column]
        return sa.cast(column, sa.String).in_(sorted(self.allowed))

    def _where(self, filters: Optional[Mapping[str, Any]]) -> List[sa.ColumnElement]:
        clauses: List[sa.ColumnElement] = []
        scope = self._scope_clause()
        if scope is not None:
            clauses.append(scope)
        for name, value in (filters or {}).items():
            if name not in self.table.c:
                raise UnknownReference(
                    f"Unknown column '{name}'",
                    module_id=self.module_id,
                    table=self.table.name,
                )
            clauses.append(self.table.c[name] == value)
        return clauses

    def _check_tenant_value(self, values: Mapping[str, Any], required: bool) -> None:
        if self.tenant_column is None:
            return
        if self.tenant_column not in values:
            if required:
                raise TenantScopeViolation(
                    f"Row is missing tenant column '{self.tenant_column}'",
                    module_id=self.module_id,
                    table=self.table.name,
                )
            return
        if str(values[self.tenant_column]) not in self.allowed:
            logger.warning(
                "tenancy.scope_violation",
                module_id=self.module_id,
                table=self.table.name,
                user_id=self.caller.user_id,
            )
            raise TenantScopeViolation(
                "Tenant is outside the caller's authorized set",
                module_id=self.module_id,
                table=self.table.name,
            )

    def select(
        self,
        filters: Optional[Mapping[str, Any]] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        query = sa.select(self.table).where(*self._where(filters))
        if limit is not None:
            query = query.limit(limit)
        with self.engine.begin() as conn:
            self.authorizer.apply(conn, self.caller)
            rows = conn.execute(query).fetchall()
        return [dict(row._mapping) for row in rows]

    def insert(self, rows: Sequence[Mapping[str, Any]]) -> int:
        if not rows:
            return 0
        for row in rows:
            self._check_tenant_value(row, required=True)
        with self.engine.begin() as conn:
            self.authorizer.apply(conn, self.caller)
            conn.execute(sa.insert(self.table), [dict(r) for r in rows])
        return len(rows)

    def update(
        self, values: Mapping[str, Any], filters: Optional[Mapping[str, Any]] = None
    ) -> int:
        self._check_tenant_value(values, required=False)
        with self.engine.begin() as conn:
            self.authorizer.apply(conn, self.caller)
            result = conn.execute(
                sa.update(self.table).where(*self._where(filters)).values(**values)
            )
            count = result.rowcount
        return count

    def delete(self, filters: Optional[Mapping[str, Any]] = None) -> int:
        with self.engine.begin() as conn:
            self.authorizer.apply(conn, self.caller)
            result = conn.execute(sa.delete(self.table).where(*self._where(filters)))
            count = result.rowcount
        return count


class TenantDataAccess:
    """
    Resolves module tables through the registry and scopes them per caller.

    Usage:
        access = TenantDataAccess(engine, registry, SessionSettingAuthorizer())
        contacts = access.table("crm-v1", "contacts", caller)
        rows = contacts.select({"email": "a@example.com"})
    """

    def __init__(
        self,
        engine: Engine,
        registry: "ModuleRegistry",
        authorizer: TenantAuthorizer,
    ):
        self.engine = engine
        self.registry = registry
        self.authorizer = authorizer
        self._tables: Dict[tuple, sa.Table] = {}

    def _reflect(self, schema: str, name: str) -> sa.Table:
        key = (schema, name)
        if key not in self._tables:
            self._tables[key] = sa.Table(
                name, sa.MetaData(), schema=schema, autoload_with=self.engine
            )
        return self._tables[key]

    def table(self, module_id: str, logical_name: str, caller: CallerContext) -> ScopedTable:
        """
        Get a tenant-scoped handle on one of a module's tables.

        Raises:
            ModuleNotRegistered: If the module has no registry entry
            UnknownReference: If the module does not own ``logical_name``
        """
        entry = self.registry.lookup(module_id)
        if entry is None:
            raise ModuleNotRegistered(module_id)
        realized = entry.realized_table(logical_name)
        if realized is None:
            raise UnknownReference(
                f"Module does not own table '{logical_name}'",
                module_id=module_id,
                table=logical_name,
            )
        tenant_column = entry.tenant_columns.get(logical_name)
        return ScopedTable(
            engine=self.engine,
            table=self._reflect(entry.table_schema, realized),
            tenant_column=tenant_column,
            caller=caller,
            authorizer=self.authorizer,
            module_id=module_id,
        )


__all__ = [
    "ScopedTable",
    "SessionSettingAuthorizer",
    "TenantAuthorizer",
    "TenantDataAccess",
]
