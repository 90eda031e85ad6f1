"""
Module teardown driven only by registry-recorded ownership.

Targets are taken from the registry entry, never from name patterns:

- schema mode:   one ``DROP SCHEMA ... CASCADE`` of the recorded schema
- prefixed mode: the module's recorded foreign keys, then each recorded
  table newest first, without ``CASCADE``
- shared mode:   nothing to drop

A module that other registered modules recorded as a dependency is refused
before anything runs; their foreign keys point into its tables. Prefixed
drops never cascade, so an unrecorded reference makes PostgreSQL fail the
drop instead of silently removing another module's constraint.

Every drop uses ``IF EXISTS`` so an already-absent object counts as removed.
The entry is deleted only after every drop succeeded; on failure it is left
``migrating`` with ``last_error`` for operator reconciliation.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, List, Optional

from module_db_hub.infrastructure.schema.core import IsolationMode
from module_db_hub.infrastructure.sql.operations.ddl import (
    DDLStatement,
    DropForeignKey,
    DropSchema,
    DropTable,
)
from module_db_hub.utils.logging import bind_module, clear_module, get_logger

from .exceptions import (
    DependentModules,
    ForbiddenOperation,
    ModuleNotRegistered,
    PartialFailure,
)
from .guard import DDLGuard
from .models import DeprovisionResult, RegistryEntry

if TYPE_CHECKING:
    from module_db_hub.io.repositories.registry import ModuleRegistry

logger = get_logger(__name__)


class Deprovisioner:
    def __init__(self, guard: DDLGuard, registry: "ModuleRegistry"):
        self.guard = guard
        self.registry = registry

    @staticmethod
    def drop_statements(entry: RegistryEntry) -> List[DDLStatement]:
        if entry.isolation_mode is IsolationMode.SCHEMA and entry.schema_name:
            return [DropSchema(schema=entry.schema_name, cascade=True)]
        if entry.isolation_mode is IsolationMode.PREFIXED:
            owned = set(entry.table_names)
            statements: List[DDLStatement] = [
                DropForeignKey(schema=entry.table_schema, table=fk["table"], name=fk["name"])
                for fk in entry.foreign_keys
                if fk["table"] in owned
            ]
            statements.extend(
                DropTable(schema=entry.table_schema, table=table)
                for table in reversed(entry.table_names)
            )
            return statements
        return []

    def _refuse_if_referenced(self, entry: RegistryEntry) -> None:
        dependents = [d.module_id for d in self.registry.dependents_of(entry.module_id)]
        if dependents:
            logger.warning(
                "deprovision.refused", module_id=entry.module_id, dependents=dependents
            )
            raise DependentModules(entry.module_id, dependents)

    def deprovision(
        self,
        module_id: str,
        *,
        dry_run: bool = False,
        wait_timeout: Optional[float] = None,
    ) -> DeprovisionResult:
        """
        Remove everything a module owns and its registry entry.

        Raises:
            ModuleNotRegistered: If the module has no registry entry
            DependentModules: If other registered modules depend on it
            ProvisionInProgress: If another operation holds the module's lock
        """
        entry = self.registry.lookup(module_id)
        if entry is None:
            raise ModuleNotRegistered(module_id)

        bind_module(module_id, entry.short_id)
        try:
            return self._deprovision(entry, dry_run, wait_timeout)
        finally:
            clear_module()

    def _deprovision(
        self, entry: RegistryEntry, dry_run: bool, wait_timeout: Optional[float]
    ) -> DeprovisionResult:
        module_id = entry.module_id
        identity = entry.identity
        statements = self.drop_statements(entry)
        log = logger.bind(module_id=module_id, short_id=entry.short_id)

        if dry_run:
            self._refuse_if_referenced(entry)
            rendered = [self.guard.render(s, identity) for s in statements]
            log.info("deprovision.planned", statements=len(rendered))
            return DeprovisionResult(
                success=True, module_id=module_id, statements=rendered, dry_run=True
            )

        with self.registry.module_lock(module_id, wait_timeout):
            self._refuse_if_referenced(entry)
            log.info("deprovision.started", isolation_mode=entry.isolation_mode.value)
            self.registry.mark_migrating(module_id)

            dropped: List[str] = []
            executed: List[str] = []
            for stmt in statements:
                try:
                    sql = self.guard.render(stmt, identity)
                    self.guard.execute(stmt, identity)
                except Exception as e:
                    self.registry.record_error(module_id, f"{stmt.describe()}: {e}")
                    log.error(
                        "deprovision.failed",
                        target=stmt.describe(),
                        error=str(e),
                        dropped=dropped,
                    )
                    error = (
                        e
                        if isinstance(e, ForbiddenOperation)
                        else PartialFailure(e, module_id=module_id, step=stmt.describe())
                    )
                    return DeprovisionResult(
                        success=False,
                        module_id=module_id,
                        dropped=dropped,
                        statements=executed,
                        error=error,
                    )
                dropped.append(stmt.describe())
                executed.append(sql)

            self.registry.delete(module_id)

        log.info("deprovision.succeeded", dropped=len(dropped))
        return DeprovisionResult(
            success=True, module_id=module_id, dropped=dropped, statements=executed
        )


__all__ = ["Deprovisioner"]
