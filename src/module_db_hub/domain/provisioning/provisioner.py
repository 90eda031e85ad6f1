"""
Schema provisioning for modules.

Realizes a module's declared data model in the shared database:

1. Static validation (names, reserved names, manifest structure, references)
   with no database access.
2. Per-module lock from the registry.
3. Validation against live state, still before any DDL (ShortID ownership,
   cross-module references, shape of tables that already exist).
4. Saga execution through the DDL guard: schema, then each table with its
   indexes, grants and isolation policies, then foreign keys. Every forward
   step that creates something pushes its inverse.
5. Registry record as the last step.

Any execution failure unwinds the inverses newest first. Structures that
existed before the run are never dropped.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, List, Optional, Sequence, Set, Tuple

from module_db_hub.infrastructure.schema.core import (
    ForeignKeyDef,
    IsolationMode,
    ModuleDependencies,
    ModuleIdentity,
    ModuleManifest,
    TableDefinition,
)
from module_db_hub.infrastructure.schema.ddl_generator import (
    generate_create_table,
    generate_foreign_key,
    generate_grants,
    generate_indexes,
    shape_differences,
)
from module_db_hub.infrastructure.sql.operations.ddl import (
    CreateSchema,
    DDLStatement,
    DropForeignKey,
    DropSchema,
    DropTable,
    GrantSchemaUsage,
)
from module_db_hub.io.catalog import Catalog
from module_db_hub.utils.logging import bind_module, clear_module, get_logger

from .exceptions import (
    ForbiddenOperation,
    InvalidManifest,
    MigrationRequired,
    ModuleOwnershipConflict,
    PartialFailure,
    ProvisioningError,
    ProvisionInProgress,
    ShortIdCollision,
    UnknownReference,
    ValidationFailure,
)
from .guard import DDLGuard
from .isolation import IsolationPolicyInstaller
from .models import (
    ProvisionOutcome,
    ProvisionResult,
    QualifiedName,
    RegistryEntry,
    RegistryStatus,
)
from .naming import NameAllocator
from .saga import CompensationStack

if TYPE_CHECKING:
    from module_db_hub.io.repositories.registry import ModuleRegistry

logger = get_logger(__name__)


@dataclass
class TablePlan:
    definition: TableDefinition
    name: QualifiedName
    tenant_column: Optional[str]

    @property
    def logical_name(self) -> str:
        return self.definition.logical_name


@dataclass
class ForeignKeyPlan:
    table: TablePlan
    fk: ForeignKeyDef
    ref_schema: str = ""
    ref_table: str = ""


@dataclass
class ProvisionPlan:
    """Everything static validation resolved for one provisioning run."""

    identity: ModuleIdentity
    short_id: str
    mode: IsolationMode
    schema_name: Optional[str]
    table_schema: str
    tables: List[TablePlan] = field(default_factory=list)
    foreign_keys: List[ForeignKeyPlan] = field(default_factory=list)
    dependencies: ModuleDependencies = field(default_factory=ModuleDependencies)
    # registry entry of an earlier run, resolved once the lock is held
    previous: Optional[RegistryEntry] = None

    @property
    def realized_names(self) -> List[str]:
        return [str(t.name) for t in self.tables]

    @property
    def shared_tables(self) -> List[str]:
        return [t.name.table for t in self.tables if t.tenant_column is None]


class SchemaProvisioner:
    """
    Orchestrates the structural operations that realize a module's data model.

    Usage:
        provisioner = SchemaProvisioner(allocator, guard, catalog, registry, isolation)
        result = provisioner.provision_manifest(load_manifest("crm.yml"))
        result.raise_for_error()
    """

    def __init__(
        self,
        allocator: NameAllocator,
        guard: DDLGuard,
        catalog: Catalog,
        registry: "ModuleRegistry",
        isolation: IsolationPolicyInstaller,
        app_role: str = "authenticated",
        service_role: str = "service_role",
    ):
        self.allocator = allocator
        self.guard = guard
        self.catalog = catalog
        self.registry = registry
        self.isolation = isolation
        self.app_role = app_role
        self.service_role = service_role

    @property
    def grant_roles(self) -> Tuple[str, str]:
        return (self.app_role, self.service_role)

    # -- validation --------------------------------------------------------

    def validate(
        self,
        identity: ModuleIdentity,
        isolation_mode: IsolationMode,
        tables: Sequence[TableDefinition],
        dependencies: Optional[ModuleDependencies] = None,
    ) -> ProvisionPlan:
        """
        Static validation; never touches the database.

        Raises:
            InvalidName, ReservedNameConflict, InvalidManifest, UnknownReference
        """
        module_id = identity.module_id
        deps = dependencies or ModuleDependencies()
        short_id = self.allocator.allocate(identity)

        if isolation_mode is IsolationMode.SHARED and tables:
            raise InvalidManifest(
                "Modules in shared isolation mode cannot declare tables",
                module_id=module_id,
            )

        schema_name = (
            self.allocator.schema_name(short_id)
            if isolation_mode is IsolationMode.SCHEMA
            else None
        )
        plan = ProvisionPlan(
            identity=identity,
            short_id=short_id,
            mode=isolation_mode,
            schema_name=schema_name,
            table_schema=schema_name or self.allocator.platform_schema,
            dependencies=deps,
        )

        seen_tables: Set[str] = set()
        for table in tables:
            logical = table.logical_name
            self.allocator.assert_not_reserved(logical, module_id)
            self.allocator.validate_identifier(logical, "table", module_id)
            if logical in seen_tables:
                raise InvalidManifest(
                    f"Table '{logical}' is declared more than once",
                    module_id=module_id,
                    table=logical,
                )
            seen_tables.add(logical)
            self._validate_columns(table, module_id)
            name = self.allocator.build_name(short_id, logical, isolation_mode, module_id)
            tenant_column = self.isolation.isolation_plan(table, module_id)
            plan.tables.append(TablePlan(table, name, tenant_column))

        by_logical: Dict[str, TablePlan] = {t.logical_name: t for t in plan.tables}
        for table_plan in plan.tables:
            for fk in table_plan.definition.foreign_keys:
                plan.foreign_keys.append(
                    self._resolve_static_reference(table_plan, fk, by_logical, deps, module_id)
                )
        return plan

    def _validate_columns(self, table: TableDefinition, module_id: str) -> None:
        logical = table.logical_name
        if not table.columns:
            raise InvalidManifest(
                "Table declares no columns", module_id=module_id, table=logical
            )
        seen: Set[str] = set()
        for col in table.columns:
            self.allocator.validate_identifier(col.name, "column", module_id)
            if col.name in seen:
                raise InvalidManifest(
                    f"Column '{col.name}' is declared more than once",
                    module_id=module_id,
                    table=logical,
                )
            seen.add(col.name)
        if sum(1 for c in table.columns if c.is_primary_key) > 1:
            raise InvalidManifest(
                "Only one primary key column is supported",
                module_id=module_id,
                table=logical,
            )
        for idx in table.indexes:
            if idx.name:
                self.allocator.validate_identifier(idx.name, "index", module_id)
            missing = [c for c in idx.columns if c not in seen]
            if not idx.columns or missing:
                raise InvalidManifest(
                    f"Index references undeclared columns: {', '.join(missing) or '(none)'}",
                    module_id=module_id,
                    table=logical,
                )
        for fk in table.foreign_keys:
            if fk.column not in seen:
                raise InvalidManifest(
                    f"Foreign key column '{fk.column}' is not declared",
                    module_id=module_id,
                    table=logical,
                )
            if fk.ref_module is not None and fk.platform:
                raise InvalidManifest(
                    "A foreign key cannot reference both a module and the platform",
                    module_id=module_id,
                    table=logical,
                )

    def _resolve_static_reference(
        self,
        table_plan: TablePlan,
        fk: ForeignKeyDef,
        by_logical: Dict[str, TablePlan],
        deps: ModuleDependencies,
        module_id: str,
    ) -> ForeignKeyPlan:
        logical = table_plan.logical_name
        if fk.platform:
            if fk.ref_table not in deps.platform_tables:
                raise UnknownReference(
                    "Platform table is not declared in dependencies",
                    module_id=module_id,
                    table=logical,
                    ref_table=fk.ref_table,
                )
            return ForeignKeyPlan(
                table_plan, fk, self.allocator.platform_schema, fk.ref_table
            )
        if fk.ref_module is not None:
            if fk.ref_module not in deps.modules:
                raise UnknownReference(
                    f"Module '{fk.ref_module}' is not declared in dependencies",
                    module_id=module_id,
                    table=logical,
                    ref_table=fk.ref_table,
                )
            # Resolved against the registry once the lock is held
            return ForeignKeyPlan(table_plan, fk)

        target = by_logical.get(fk.ref_table)
        if target is None:
            raise UnknownReference(
                "Referenced table is not declared by this module",
                module_id=module_id,
                table=logical,
                ref_table=fk.ref_table,
            )
        if fk.ref_column not in target.definition.column_names:
            raise UnknownReference(
                f"Referenced column '{fk.ref_column}' is not declared",
                module_id=module_id,
                table=logical,
                ref_table=fk.ref_table,
            )
        return ForeignKeyPlan(table_plan, fk, target.name.schema, target.name.table)

    def _validate_live(self, plan: ProvisionPlan) -> None:
        """
        Validation against live state, before any DDL.

        Raises:
            ShortIdCollision, ModuleOwnershipConflict, UnknownReference,
            InvalidManifest, MigrationRequired
        """
        module_id = plan.identity.module_id
        owner = self.registry.lookup_short_id(plan.short_id)
        if owner is not None and owner.module_id != module_id:
            raise ShortIdCollision(plan.short_id, module_id, owner.module_id)

        existing = self.registry.lookup(module_id)
        if existing is not None and (
            existing.publisher_id != plan.identity.publisher_id
            or existing.short_id != plan.short_id
        ):
            raise ModuleOwnershipConflict(
                module_id,
                plan.identity.publisher_id,
                existing.publisher_id,
                short_id=existing.short_id,
            )
        if existing is not None and existing.isolation_mode is not plan.mode:
            raise InvalidManifest(
                f"Isolation mode cannot change from '{existing.isolation_mode.value}' "
                f"to '{plan.mode.value}'",
                module_id=module_id,
            )

        for fk_plan in plan.foreign_keys:
            fk = fk_plan.fk
            if fk.ref_module is not None:
                entry = self.registry.lookup(fk.ref_module)
                realized = entry.realized_table(fk.ref_table) if entry else None
                if entry is None or entry.status is not RegistryStatus.ACTIVE or not realized:
                    raise UnknownReference(
                        f"Table '{fk.ref_table}' of module '{fk.ref_module}' "
                        "is not provisioned",
                        module_id=module_id,
                        table=fk_plan.table.logical_name,
                        ref_table=fk.ref_table,
                    )
                fk_plan.ref_schema = entry.table_schema
                fk_plan.ref_table = realized
            elif fk.platform and not self.catalog.table_exists(
                fk_plan.ref_schema, fk_plan.ref_table
            ):
                raise UnknownReference(
                    "Platform table does not exist",
                    module_id=module_id,
                    table=fk_plan.table.logical_name,
                    ref_table=fk.ref_table,
                )

        for table_plan in plan.tables:
            schema, table = table_plan.name.schema, table_plan.name.table
            if self.catalog.table_exists(schema, table):
                differences = shape_differences(
                    table_plan.definition, self.catalog.table_columns(schema, table)
                )
                if differences:
                    raise MigrationRequired(str(table_plan.name), differences, module_id)

        plan.previous = existing

    # -- statements --------------------------------------------------------

    def _index_namer(self, plan: ProvisionPlan, table_plan: TablePlan):
        return lambda idx: self.allocator.index_name(
            plan.short_id, table_plan.logical_name, idx.columns, idx.name
        )

    def _foreign_key_statement(self, plan: ProvisionPlan, fk_plan: ForeignKeyPlan):
        table_plan = fk_plan.table
        return generate_foreign_key(
            fk_plan.fk,
            table_plan.name.schema,
            table_plan.name.table,
            self.allocator.constraint_name(
                plan.short_id, table_plan.logical_name, fk_plan.fk.column
            ),
            fk_plan.ref_schema,
            fk_plan.ref_table,
        )

    def _ownership(self, plan: ProvisionPlan) -> Dict[str, object]:
        """
        Registry ownership fields for ``plan``, merged with the earlier entry.

        A table that disappears from the manifest keeps existing, so it stays
        owned (and deprovisionable) until the module is removed. Existing
        tables keep their position; new ones are appended, which keeps
        newest-first teardown ordering.
        """
        table_names = [t.name.table for t in plan.tables]
        logical_names = {t.logical_name: t.name.table for t in plan.tables}
        tenant_columns = {
            t.logical_name: t.tenant_column for t in plan.tables if t.tenant_column
        }
        shared_tables = list(plan.shared_tables)
        foreign_keys = []
        for fk_plan in plan.foreign_keys:
            stmt = self._foreign_key_statement(plan, fk_plan)
            foreign_keys.append({"table": stmt.table, "name": stmt.name})
        depends_on = set(plan.dependencies.modules)

        previous = plan.previous
        if previous is not None:
            declared = set(table_names)
            retained = [t for t in previous.table_names if t not in declared]
            table_names = list(previous.table_names) + [
                t for t in table_names if t not in previous.table_names
            ]
            for logical, realized in previous.logical_names.items():
                if realized in retained:
                    logical_names.setdefault(logical, realized)
                    if logical in previous.tenant_columns:
                        tenant_columns.setdefault(logical, previous.tenant_columns[logical])
            shared_tables.extend(t for t in previous.shared_tables if t in retained)
            known = {(fk["table"], fk["name"]) for fk in foreign_keys}
            foreign_keys.extend(
                fk for fk in previous.foreign_keys if (fk["table"], fk["name"]) not in known
            )
            depends_on.update(previous.depends_on)

        return {
            "table_names": table_names,
            "shared_tables": shared_tables,
            "logical_names": logical_names,
            "tenant_columns": tenant_columns,
            "depends_on": sorted(depends_on),
            "foreign_keys": foreign_keys,
        }

    def _schema_statements(self, schema_name: str) -> List[DDLStatement]:
        return [
            CreateSchema(schema=schema_name),
            GrantSchemaUsage(schema=schema_name, role=self.app_role, privilege="USAGE"),
            GrantSchemaUsage(schema=schema_name, role=self.service_role, privilege="ALL"),
        ]

    def build_statements(self, plan: ProvisionPlan) -> List[DDLStatement]:
        """Every statement a fresh provision of ``plan`` would execute, in order."""
        stmts: List[DDLStatement] = []
        if plan.schema_name:
            stmts.extend(self._schema_statements(plan.schema_name))
        for tp in plan.tables:
            schema, table = tp.name.schema, tp.name.table
            stmts.append(generate_create_table(tp.definition, schema, table))
            stmts.extend(
                generate_indexes(tp.definition, schema, table, self._index_namer(plan, tp))
            )
            stmts.extend(generate_grants(schema, table, self.grant_roles))
            if tp.tenant_column:
                stmts.extend(
                    self.isolation.statements(
                        schema, table, tp.logical_name, tp.tenant_column, plan.short_id
                    )
                )
        for fk_plan in plan.foreign_keys:
            stmts.append(self._foreign_key_statement(plan, fk_plan))
        return stmts

    # -- public API --------------------------------------------------------

    def plan(
        self,
        identity: ModuleIdentity,
        isolation_mode: IsolationMode,
        tables: Sequence[TableDefinition],
        dependencies: Optional[ModuleDependencies] = None,
    ) -> List[str]:
        """
        Dry run: validate and render the SQL a provision would execute.

        Cross-module references are resolved read-only through the registry.
        Nothing is locked or executed.
        """
        plan = self.validate(identity, isolation_mode, tables, dependencies)
        for fk_plan in plan.foreign_keys:
            if fk_plan.fk.ref_module is not None:
                entry = self.registry.lookup(fk_plan.fk.ref_module)
                realized = entry.realized_table(fk_plan.fk.ref_table) if entry else None
                if entry is None or realized is None:
                    raise UnknownReference(
                        f"Table '{fk_plan.fk.ref_table}' of module "
                        f"'{fk_plan.fk.ref_module}' is not provisioned",
                        module_id=identity.module_id,
                        table=fk_plan.table.logical_name,
                        ref_table=fk_plan.fk.ref_table,
                    )
                fk_plan.ref_schema, fk_plan.ref_table = entry.table_schema, realized
        return [self.guard.render(s, identity) for s in self.build_statements(plan)]

    def provision_manifest(
        self, manifest: ModuleManifest, wait_timeout: Optional[float] = None
    ) -> ProvisionResult:
        return self.provision(
            manifest.identity,
            manifest.resolved_isolation_mode(),
            manifest.tables,
            dependencies=manifest.dependencies,
            module_name=manifest.name,
            module_version=manifest.version,
            wait_timeout=wait_timeout,
        )

    def provision(
        self,
        identity: ModuleIdentity,
        isolation_mode: IsolationMode,
        tables: Sequence[TableDefinition],
        *,
        dependencies: Optional[ModuleDependencies] = None,
        module_name: str = "",
        module_version: str = "",
        wait_timeout: Optional[float] = None,
    ) -> ProvisionResult:
        """
        Provision a module's data model.

        Never raises provisioning errors; they are reported on the result.
        Use ``ProvisionResult.raise_for_error`` to turn them into exceptions.
        """
        started = time.perf_counter()
        module_id = identity.module_id
        short_id = self.allocator.allocate(identity)
        log = logger.bind(module_id=module_id, short_id=short_id)
        log.info(
            "provision.started",
            isolation_mode=isolation_mode.value,
            tables=len(tables),
        )

        def finish(outcome: ProvisionOutcome, **kwargs) -> ProvisionResult:
            return ProvisionResult(
                success=outcome is ProvisionOutcome.SUCCEEDED,
                module_id=module_id,
                outcome=outcome,
                short_id=short_id,
                duration_ms=(time.perf_counter() - started) * 1000,
                **kwargs,
            )

        bind_module(module_id, short_id)
        try:
            try:
                plan = self.validate(identity, isolation_mode, tables, dependencies)
            except ValidationFailure as e:
                log.warning("provision.validation_failed", **e.to_dict())
                return finish(ProvisionOutcome.VALIDATION_FAILED, error=e)

            try:
                with self.registry.module_lock(module_id, wait_timeout):
                    try:
                        self._validate_live(plan)
                    except (ValidationFailure, MigrationRequired) as e:
                        log.warning("provision.validation_failed", **e.to_dict())
                        return finish(ProvisionOutcome.VALIDATION_FAILED, error=e)
                    return self._execute(plan, module_name, module_version, finish, log)
            except ProvisionInProgress as e:
                log.info("provision.in_progress", **e.to_dict())
                return finish(ProvisionOutcome.IN_PROGRESS, error=e)
        finally:
            clear_module()

    # -- execution ---------------------------------------------------------

    def _execute(self, plan, module_name, module_version, finish, log) -> ProvisionResult:
        identity = plan.identity
        module_id = identity.module_id
        previous_status = self.registry.mark_migrating(module_id)

        stack = CompensationStack()
        created: List[str] = []
        step = "start"

        def run(statement: DDLStatement) -> None:
            self.guard.execute(statement, identity)

        try:
            if plan.schema_name:
                step = f"schema {plan.schema_name}"
                schema_existed = self.catalog.schema_exists(plan.schema_name)
                create_schema, *grants = self._schema_statements(plan.schema_name)
                run(create_schema)
                if not schema_existed:
                    stack.push(
                        f"drop schema {plan.schema_name}",
                        lambda s=plan.schema_name: run(DropSchema(schema=s, cascade=True)),
                    )
                    created.append(plan.schema_name)
                for grant in grants:
                    run(grant)

            for tp in plan.tables:
                schema, table = tp.name.schema, tp.name.table
                step = f"table {tp.name}"
                existed = self.catalog.table_exists(schema, table)
                run(generate_create_table(tp.definition, schema, table))
                if not existed:
                    stack.push(
                        f"drop table {tp.name}",
                        lambda s=schema, t=table: run(DropTable(schema=s, table=t)),
                    )
                    created.append(str(tp.name))
                for stmt in generate_indexes(
                    tp.definition, schema, table, self._index_namer(plan, tp)
                ):
                    run(stmt)
                for stmt in generate_grants(schema, table, self.grant_roles):
                    run(stmt)
                if tp.tenant_column:
                    step = f"isolation {tp.name}"
                    self.isolation.attach_isolation(
                        schema, table, tp.logical_name, tp.tenant_column, identity, plan.short_id
                    )

            for fk_plan in plan.foreign_keys:
                stmt = self._foreign_key_statement(plan, fk_plan)
                step = f"foreign key {stmt.name}"
                if self.catalog.constraint_exists(stmt.schema, stmt.table, stmt.name):
                    continue
                run(stmt)
                # unwound before any table drop, so drops need no CASCADE
                stack.push(
                    f"drop foreign key {stmt.name}",
                    lambda s=stmt: run(
                        DropForeignKey(schema=s.schema, table=s.table, name=s.name)
                    ),
                )

            step = "registry"
            self.registry.record(
                identity,
                plan.short_id,
                plan.mode,
                schema_name=plan.schema_name,
                table_schema=plan.table_schema,
                module_name=module_name,
                module_version=module_version,
                **self._ownership(plan),
            )
        except Exception as e:
            return self._rollback(
                plan, e, step, stack, previous_status, created, finish, log
            )

        log.info("provision.succeeded", created=len(created), tables=len(plan.tables))
        return finish(
            ProvisionOutcome.SUCCEEDED,
            realized_names=plan.realized_names,
            created=created,
        )

    def _rollback(
        self, plan, error, step, stack, previous_status, created, finish, log
    ) -> ProvisionResult:
        module_id = plan.identity.module_id
        log.error(
            "provision.failed",
            step=step,
            error=str(error),
            error_type=type(error).__name__,
            compensations=len(stack),
        )
        rollback_failures = stack.unwind()
        rollback_errors = [f"{desc}: {err}" for desc, err in rollback_failures]

        if previous_status is not None:
            self.registry.set_status(module_id, previous_status)
            self.registry.record_error(module_id, f"{step}: {error}")

        if isinstance(error, ForbiddenOperation):
            reported: ProvisioningError = error
        else:
            reported = PartialFailure(
                error,
                [err for _, err in rollback_failures],
                module_id=module_id,
                step=step,
            )

        if rollback_errors:
            log.critical(
                "provision.manual_cleanup_required",
                step=step,
                rollback_errors=rollback_errors,
                created=created,
            )
            outcome = ProvisionOutcome.MANUAL_CLEANUP_REQUIRED
        else:
            log.error("provision.rolled_back", step=step, removed=created)
            outcome = ProvisionOutcome.ROLLED_BACK

        return finish(outcome, error=reported, rollback_errors=rollback_errors)


__all__ = ["ProvisionPlan", "SchemaProvisioner", "TablePlan"]
