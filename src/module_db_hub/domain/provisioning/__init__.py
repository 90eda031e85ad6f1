"""
Module database provisioning.

Allocates, creates and tears down isolated per-module data structures in the
shared multi-tenant database. Import components from their modules, e.g.
``from module_db_hub.domain.provisioning.provisioner import SchemaProvisioner``.
"""

from .exceptions import (
    ForbiddenOperation,
    InvalidManifest,
    InvalidName,
    MigrationRequired,
    ModuleNotRegistered,
    PartialFailure,
    ProvisioningError,
    ProvisionInProgress,
    ReservedNameConflict,
    ShortIdCollision,
    TenantScopeViolation,
    UnknownReference,
    ValidationFailure,
)
from .models import (
    CallerContext,
    DeprovisionResult,
    ModuleIdentity,
    ProvisionOutcome,
    ProvisionResult,
    RegistryEntry,
    RegistryStatus,
)

__all__ = [
    "CallerContext",
    "DeprovisionResult",
    "ForbiddenOperation",
    "InvalidManifest",
    "InvalidName",
    "MigrationRequired",
    "ModuleIdentity",
    "ModuleNotRegistered",
    "PartialFailure",
    "ProvisionInProgress",
    "ProvisionOutcome",
    "ProvisionResult",
    "ProvisioningError",
    "RegistryEntry",
    "RegistryStatus",
    "ReservedNameConflict",
    "ShortIdCollision",
    "TenantScopeViolation",
    "UnknownReference",
    "ValidationFailure",
]
