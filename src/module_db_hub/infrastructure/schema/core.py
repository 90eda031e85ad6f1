"""Core schema types for module data models.

A module declares its data model as a list of ``TableDefinition`` objects
inside a ``ModuleManifest``. These types are plain dataclasses; names are
logical (unqualified, unprefixed) until the name allocator realizes them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from module_db_hub.infrastructure.sql.operations.ddl import (
    ColumnDefault,
    ReferentialAction,
)


class ColumnType(Enum):
    """Supported column types for module tables."""

    STRING = "string"
    TEXT = "text"
    INTEGER = "integer"
    BIGINT = "bigint"
    DECIMAL = "decimal"
    BOOLEAN = "boolean"
    DATE = "date"
    DATETIME = "datetime"
    UUID = "uuid"
    JSON = "json"

    @property
    def information_schema_type(self) -> str:
        """The ``data_type`` PostgreSQL reports for this column type."""
        return _INFORMATION_SCHEMA_TYPES[self]


_INFORMATION_SCHEMA_TYPES: Dict[ColumnType, str] = {
    ColumnType.STRING: "character varying",
    ColumnType.TEXT: "text",
    ColumnType.INTEGER: "integer",
    ColumnType.BIGINT: "bigint",
    ColumnType.DECIMAL: "numeric",
    ColumnType.BOOLEAN: "boolean",
    ColumnType.DATE: "date",
    ColumnType.DATETIME: "timestamp with time zone",
    ColumnType.UUID: "uuid",
    ColumnType.JSON: "jsonb",
}


@dataclass(frozen=True)
class ColumnShape:
    """A column as ``information_schema.columns`` describes it.

    ``max_length`` is ``character_maximum_length``; ``precision`` and
    ``scale`` are ``numeric_precision`` and ``numeric_scale``.
    """

    data_type: str
    nullable: bool = True
    max_length: Optional[int] = None
    precision: Optional[int] = None
    scale: Optional[int] = None


class IsolationMode(Enum):
    """How a module's tables are separated from other modules."""

    SCHEMA = "schema"
    PREFIXED = "prefixed"
    SHARED = "shared"


class ModuleTier(Enum):
    """Module tier; each tier implies a default isolation mode."""

    SYSTEM = "system"
    APP = "app"
    WIDGET = "widget"
    INTEGRATION = "integration"

    @property
    def default_isolation(self) -> IsolationMode:
        if self is ModuleTier.SYSTEM:
            return IsolationMode.SCHEMA
        if self is ModuleTier.APP:
            return IsolationMode.PREFIXED
        return IsolationMode.SHARED


@dataclass(frozen=True)
class ModuleIdentity:
    """Globally unique identity of a module: who published it and its id."""

    module_id: str
    publisher_id: str

    def __str__(self) -> str:
        return f"{self.publisher_id}/{self.module_id}"


@dataclass
class ColumnDef:
    """Definition of a single column in a module table."""

    name: str
    column_type: ColumnType
    nullable: bool = True
    max_length: Optional[int] = None
    precision: Optional[int] = None
    scale: Optional[int] = None
    description: str = ""
    is_primary_key: bool = False
    unique: bool = False
    default: Optional[ColumnDefault] = None


@dataclass
class IndexDef:
    """Definition of a database index."""

    columns: List[str]
    unique: bool = False
    name: Optional[str] = None


@dataclass
class ForeignKeyDef:
    """A foreign key from one column of a module table.

    ``ref_table`` is a logical name in the same module unless ``ref_module``
    names another module (resolved through the registry) or ``platform`` is
    set (a platform table in the platform schema). Both cases must also be
    declared in the manifest's dependencies.
    """

    column: str
    ref_table: str
    ref_column: str = "id"
    ref_module: Optional[str] = None
    platform: bool = False
    on_delete: Optional[ReferentialAction] = None
    on_update: Optional[ReferentialAction] = None

    @property
    def is_internal(self) -> bool:
        return self.ref_module is None and not self.platform


@dataclass
class TableDefinition:
    """Complete definition of one logical table owned by a module."""

    logical_name: str
    columns: List[ColumnDef] = field(default_factory=list)
    indexes: List[IndexDef] = field(default_factory=list)
    foreign_keys: List[ForeignKeyDef] = field(default_factory=list)
    security_required: bool = True
    tenant_column: Optional[str] = None

    @property
    def column_names(self) -> List[str]:
        return [c.name for c in self.columns]

    def get_column(self, name: str) -> Optional[ColumnDef]:
        return next((c for c in self.columns if c.name == name), None)


@dataclass
class ModuleDependencies:
    """Explicitly declared objects outside the module's own namespace."""

    platform_tables: List[str] = field(default_factory=list)
    modules: List[str] = field(default_factory=list)


@dataclass
class ModuleManifest:
    """A module's declared data model."""

    module_id: str
    publisher_id: str
    name: str = ""
    version: str = "0.0.0"
    tier: Optional[ModuleTier] = None
    isolation_mode: Optional[IsolationMode] = None
    tables: List[TableDefinition] = field(default_factory=list)
    dependencies: ModuleDependencies = field(default_factory=ModuleDependencies)

    @property
    def identity(self) -> ModuleIdentity:
        return ModuleIdentity(module_id=self.module_id, publisher_id=self.publisher_id)

    def resolved_isolation_mode(self) -> IsolationMode:
        """Explicit mode wins over the tier default; ``app`` when neither is set."""
        if self.isolation_mode is not None:
            return self.isolation_mode
        return (self.tier or ModuleTier.APP).default_isolation


__all__ = [
    "ColumnShape",
    "ColumnType",
    "IsolationMode",
    "ModuleTier",
    "ModuleIdentity",
    "ColumnDef",
    "IndexDef",
    "ForeignKeyDef",
    "TableDefinition",
    "ModuleDependencies",
    "ModuleManifest",
]
