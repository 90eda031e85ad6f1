"""Result and ledger types for module provisioning."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional

from module_db_hub.infrastructure.schema.core import IsolationMode, ModuleIdentity

from .exceptions import ProvisioningError


class RegistryStatus(str, Enum):
    ACTIVE = "active"
    MIGRATING = "migrating"
    DEPRECATED = "deprecated"


class ProvisionOutcome(str, Enum):
    """Final outcome of a provisioning run."""

    SUCCEEDED = "succeeded"
    VALIDATION_FAILED = "validation_failed"
    IN_PROGRESS = "in_progress"
    ROLLED_BACK = "rolled_back"
    MANUAL_CLEANUP_REQUIRED = "manual_cleanup_required"


class DatabaseStatus(str, Enum):
    """Registry-versus-catalog health of a module's database objects."""

    NOT_REGISTERED = "not_registered"
    REGISTERED_NO_TABLES = "registered_no_tables"
    HEALTHY = "healthy"
    MISMATCH = "mismatch"


@dataclass(frozen=True)
class QualifiedName:
    """A realized, schema-qualified object name."""

    schema: str
    table: str

    def __str__(self) -> str:
        return f"{self.schema}.{self.table}"


@dataclass(frozen=True)
class CallerContext:
    """The caller of a tenant-scoped data access.

    ``tenant_ids`` is supplied by the platform's membership system.
    """

    user_id: str
    tenant_ids: FrozenSet[str] = frozenset()


@dataclass
class RegistryEntry:
    """Registry record of what a module owns."""

    module_id: str
    publisher_id: str
    short_id: str
    isolation_mode: IsolationMode
    table_schema: str
    schema_name: Optional[str] = None
    table_names: List[str] = field(default_factory=list)
    shared_tables: List[str] = field(default_factory=list)
    logical_names: Dict[str, str] = field(default_factory=dict)
    tenant_columns: Dict[str, str] = field(default_factory=dict)
    depends_on: List[str] = field(default_factory=list)
    foreign_keys: List[Dict[str, str]] = field(default_factory=list)
    module_name: str = ""
    module_version: str = ""
    status: RegistryStatus = RegistryStatus.ACTIVE
    last_error: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def identity(self) -> ModuleIdentity:
        return ModuleIdentity(module_id=self.module_id, publisher_id=self.publisher_id)

    @property
    def realized_names(self) -> List[str]:
        return [f"{self.table_schema}.{t}" for t in self.table_names]

    def realized_table(self, logical_name: str) -> Optional[str]:
        """Realized table name for a logical name, if the module owns one."""
        return self.logical_names.get(logical_name)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "module_id": self.module_id,
            "publisher_id": self.publisher_id,
            "short_id": self.short_id,
            "isolation_mode": self.isolation_mode.value,
            "schema_name": self.schema_name,
            "table_schema": self.table_schema,
            "table_names": list(self.table_names),
            "shared_tables": list(self.shared_tables),
            "tenant_columns": dict(self.tenant_columns),
            "depends_on": list(self.depends_on),
            "foreign_keys": [dict(fk) for fk in self.foreign_keys],
            "module_name": self.module_name,
            "module_version": self.module_version,
            "status": self.status.value,
            "last_error": self.last_error,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


@dataclass
class ProvisionResult:
    """Result of a provisioning run."""

    success: bool
    module_id: str
    outcome: ProvisionOutcome
    short_id: Optional[str] = None
    realized_names: List[str] = field(default_factory=list)
    created: List[str] = field(default_factory=list)
    error: Optional[ProvisioningError] = None
    rollback_errors: List[str] = field(default_factory=list)
    duration_ms: float = 0.0

    def raise_for_error(self) -> None:
        if self.error is not None:
            raise self.error

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "module_id": self.module_id,
            "outcome": self.outcome.value,
            "short_id": self.short_id,
            "realized_names": list(self.realized_names),
            "created": list(self.created),
            "error": self.error.to_dict() if self.error else None,
            "rollback_errors": list(self.rollback_errors),
            "duration_ms": round(self.duration_ms, 2),
        }


@dataclass
class DeprovisionResult:
    """Result of a deprovisioning run (or its dry-run plan)."""

    success: bool
    module_id: str
    dropped: List[str] = field(default_factory=list)
    statements: List[str] = field(default_factory=list)
    dry_run: bool = False
    error: Optional[ProvisioningError] = None

    @property
    def outcome(self) -> str:
        if self.dry_run:
            return "planned"
        return "deprovisioned" if self.success else "failed"

    def raise_for_error(self) -> None:
        if self.error is not None:
            raise self.error

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "module_id": self.module_id,
            "outcome": self.outcome,
            "dropped": list(self.dropped),
            "statements": list(self.statements),
            "error": self.error.to_dict() if self.error else None,
        }


__all__ = [
    "CallerContext",
    "DatabaseStatus",
    "DeprovisionResult",
    "ModuleIdentity",
    "ProvisionOutcome",
    "ProvisionResult",
    "QualifiedName",
    "RegistryEntry",
    "RegistryStatus",
]
