"""
Wiring of the provisioning components.

``build_services`` is the single place where settings, the engine and the
reserved names file turn into ready-to-use components. The reserved set is
loaded here once and never reloaded.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.engine import Engine

from module_db_hub.config.settings import Settings, get_settings
from module_db_hub.domain.provisioning.deprovisioner import Deprovisioner
from module_db_hub.domain.provisioning.guard import DDLGuard
from module_db_hub.domain.provisioning.isolation import IsolationPolicyInstaller
from module_db_hub.domain.provisioning.naming import NameAllocator
from module_db_hub.domain.provisioning.provisioner import SchemaProvisioner
from module_db_hub.domain.provisioning.tenancy import (
    SessionSettingAuthorizer,
    TenantAuthorizer,
    TenantDataAccess,
)
from module_db_hub.infrastructure.schema.reserved import ReservedNames
from module_db_hub.io.catalog import (
    Catalog,
    SqlAlchemyCatalog,
    SqlAlchemyExecutor,
    StatementExecutor,
    create_engine_from_settings,
)
from module_db_hub.io.repositories.registry import ModuleRegistry
from module_db_hub.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class Services:
    settings: Settings
    engine: Engine
    reserved: ReservedNames
    allocator: NameAllocator
    catalog: Catalog
    registry: ModuleRegistry
    guard: DDLGuard
    authorizer: TenantAuthorizer
    isolation: IsolationPolicyInstaller
    provisioner: SchemaProvisioner
    deprovisioner: Deprovisioner
    data_access: TenantDataAccess


def build_services(
    settings: Optional[Settings] = None,
    *,
    engine: Optional[Engine] = None,
    executor: Optional[StatementExecutor] = None,
    catalog: Optional[Catalog] = None,
    authorizer: Optional[TenantAuthorizer] = None,
    reserved: Optional[ReservedNames] = None,
    ensure_registry: bool = True,
) -> Services:
    """
    Build every component from settings.

    Keyword arguments replace the default implementation of a collaborator,
    which is how tests run against an in-memory catalog.

    Raises:
        ReservedNamesError: If the reserved names file is missing or invalid
    """
    settings = settings or get_settings()
    engine = engine or create_engine_from_settings(settings)
    reserved = reserved or ReservedNames.from_yaml(settings.reserved_names_config)
    executor = executor or SqlAlchemyExecutor(engine)
    catalog = catalog or SqlAlchemyCatalog(engine)
    authorizer = authorizer or SessionSettingAuthorizer(settings.tenant_scope_setting)

    registry_schema = settings.registry_schema
    if engine.dialect.name != "postgresql":
        registry_schema = None
    registry = ModuleRegistry(
        engine,
        schema=registry_schema,
        lock_poll_interval=settings.lock_poll_interval_seconds,
        lock_stale_after=settings.lock_stale_after_seconds,
        default_wait_timeout=settings.lock_wait_timeout_seconds,
    )
    if ensure_registry:
        registry.ensure_tables()

    allocator = NameAllocator(
        reserved,
        platform_schema=settings.platform_schema,
        max_length=settings.identifier_max_length,
    )
    guard = DDLGuard(
        executor,
        reserved,
        protected_schemas=settings.all_protected_schemas,
        allowed_roles=(settings.app_role, settings.service_role),
        platform_schema=settings.platform_schema,
        registry=registry,
    )
    isolation = IsolationPolicyInstaller(
        guard,
        catalog,
        authorizer,
        allocator,
        app_role=settings.app_role,
        default_tenant_column=settings.default_tenant_column,
    )
    provisioner = SchemaProvisioner(
        allocator,
        guard,
        catalog,
        registry,
        isolation,
        app_role=settings.app_role,
        service_role=settings.service_role,
    )

    logger.info(
        "bootstrap.completed",
        environment=settings.ENVIRONMENT,
        platform_schema=settings.platform_schema,
        reserved_names=len(reserved),
    )
    return Services(
        settings=settings,
        engine=engine,
        reserved=reserved,
        allocator=allocator,
        catalog=catalog,
        registry=registry,
        guard=guard,
        authorizer=authorizer,
        isolation=isolation,
        provisioner=provisioner,
        deprovisioner=Deprovisioner(guard, registry),
        data_access=TenantDataAccess(engine, registry, authorizer),
    )


__all__ = ["Services", "build_services"]
