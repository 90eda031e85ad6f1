"""Schema types, reserved names and DDL generation for module tables."""

from .core import (
    ColumnDef,
    ColumnShape,
    ColumnType,
    ForeignKeyDef,
    IndexDef,
    IsolationMode,
    ModuleDependencies,
    ModuleIdentity,
    ModuleManifest,
    ModuleTier,
    TableDefinition,
)
from .reserved import ReservedNames, ReservedNamesError

__all__ = [
    "ColumnDef",
    "ColumnShape",
    "ColumnType",
    "ForeignKeyDef",
    "IndexDef",
    "IsolationMode",
    "ModuleDependencies",
    "ModuleIdentity",
    "ModuleManifest",
    "ModuleTier",
    "TableDefinition",
    "ReservedNames",
    "ReservedNamesError",
]
