"""
Schema validation for module manifests.

A module manifest is a YAML file declaring a module's identity and data model.
This module provides Pydantic models that validate its structure and convert
it into the dataclasses in ``infrastructure.schema.core``. Structural checks
that need the whole model (duplicate tables, undeclared index columns, etc.)
belong to the provisioner and are not repeated here.

Example:
    module_id: crm-v1
    publisher_id: acme
    tier: app
    tables:
      - name: companies
        columns:
          - {name: id, type: uuid, primary_key: true, default: uuid}
          - {name: site_id, type: uuid, nullable: false}
"""

from pathlib import Path
from typing import List, Literal, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from module_db_hub.infrastructure.schema.core import (
    ColumnDef,
    ColumnType,
    ForeignKeyDef,
    IndexDef,
    IsolationMode,
    ModuleDependencies,
    ModuleManifest,
    ModuleTier,
    TableDefinition,
)
from module_db_hub.infrastructure.sql.operations.ddl import ColumnDefault
from module_db_hub.utils.logging import get_logger

logger = get_logger(__name__)

ReferentialActionName = Literal["CASCADE", "SET NULL", "RESTRICT", "NO ACTION"]

# String defaults with a special meaning; any other scalar is a literal.
DEFAULT_KEYWORDS = {"now": ColumnDefault.now, "uuid": ColumnDefault.uuid}


class ManifestValidationError(Exception):
    """Raised when a module manifest cannot be loaded or is malformed."""

    pass


class ColumnConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1, description="Logical column name")
    type: ColumnType = Field(..., description="Column type")
    nullable: bool = True
    max_length: Optional[int] = Field(None, gt=0)
    precision: Optional[int] = Field(None, gt=0)
    scale: Optional[int] = Field(None, ge=0)
    primary_key: bool = False
    unique: bool = False
    default: Optional[Union[bool, int, float, str]] = Field(
        None, description="'now', 'uuid' or a literal scalar"
    )
    description: str = ""

    def to_column_def(self) -> ColumnDef:
        default = None
        if self.default is not None:
            if isinstance(self.default, str) and self.default in DEFAULT_KEYWORDS:
                default = DEFAULT_KEYWORDS[self.default]()
            else:
                default = ColumnDefault.literal(self.default)
        return ColumnDef(
            name=self.name,
            column_type=self.type,
            nullable=self.nullable and not self.primary_key,
            max_length=self.max_length,
            precision=self.precision,
            scale=self.scale,
            description=self.description,
            is_primary_key=self.primary_key,
            unique=self.unique,
            default=default,
        )


class IndexConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    columns: List[str] = Field(..., min_length=1)
    unique: bool = False
    name: Optional[str] = None


class ReferenceConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    table: str = Field(..., min_length=1)
    column: str = "id"
    module: Optional[str] = Field(None, description="Module id owning the table")
    platform: bool = Field(False, description="Reference a platform table")


class ForeignKeyConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    column: str = Field(..., min_length=1)
    references: ReferenceConfig
    on_delete: Optional[ReferentialActionName] = None
    on_update: Optional[ReferentialActionName] = None


class TableConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1, description="Logical table name")
    columns: List[ColumnConfig] = Field(..., min_length=1)
    indexes: List[IndexConfig] = Field(default_factory=list)
    foreign_keys: List[ForeignKeyConfig] = Field(default_factory=list)
    security_required: bool = True
    tenant_column: Optional[str] = None

    def to_table_definition(self) -> TableDefinition:
        return TableDefinition(
            logical_name=self.name,
            columns=[c.to_column_def() for c in self.columns],
            indexes=[
                IndexDef(columns=list(i.columns), unique=i.unique, name=i.name)
                for i in self.indexes
            ],
            foreign_keys=[
                ForeignKeyDef(
                    column=fk.column,
                    ref_table=fk.references.table,
                    ref_column=fk.references.column,
                    ref_module=fk.references.module,
                    platform=fk.references.platform,
                    on_delete=fk.on_delete,
                    on_update=fk.on_update,
                )
                for fk in self.foreign_keys
            ],
            security_required=self.security_required,
            tenant_column=self.tenant_column,
        )


class DependenciesConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    platform_tables: List[str] = Field(default_factory=list)
    modules: List[str] = Field(default_factory=list)


class ManifestConfig(BaseModel):
    """Schema for a complete module manifest."""

    model_config = ConfigDict(extra="forbid")

    module_id: str = Field(..., min_length=1)
    publisher_id: str = Field(..., min_length=1)
    name: str = ""
    version: str = "0.0.0"
    tier: Optional[ModuleTier] = None
    isolation_mode: Optional[IsolationMode] = None
    tables: List[TableConfig] = Field(default_factory=list)
    dependencies: DependenciesConfig = Field(default_factory=DependenciesConfig)

    def to_manifest(self) -> ModuleManifest:
        return ModuleManifest(
            module_id=self.module_id,
            publisher_id=self.publisher_id,
            name=self.name or self.module_id,
            version=self.version,
            tier=self.tier,
            isolation_mode=self.isolation_mode,
            tables=[t.to_table_definition() for t in self.tables],
            dependencies=ModuleDependencies(
                platform_tables=list(self.dependencies.platform_tables),
                modules=list(self.dependencies.modules),
            ),
        )


def parse_manifest(data: object) -> ModuleManifest:
    """
    Validate already-parsed manifest data.

    Raises:
        ManifestValidationError: If the structure is invalid
    """
    if not isinstance(data, dict):
        raise ManifestValidationError("Manifest must be a mapping")
    try:
        return ManifestConfig.model_validate(data).to_manifest()
    except ValidationError as e:
        raise ManifestValidationError(f"Manifest validation failed: {e}") from e


def load_manifest(path: Union[str, Path]) -> ModuleManifest:
    """
    Load and validate a module manifest YAML file.

    Args:
        path: Path to the manifest file

    Returns:
        Parsed ModuleManifest

    Raises:
        ManifestValidationError: If the file is missing, not YAML or invalid
    """
    manifest_path = Path(path)
    if not manifest_path.exists():
        raise ManifestValidationError(f"Manifest file not found: {path}")

    try:
        with open(manifest_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ManifestValidationError(f"Invalid YAML in manifest {path}: {e}") from e

    manifest = parse_manifest(data)
    logger.debug(
        "manifest.loaded",
        path=str(manifest_path),
        module_id=manifest.module_id,
        tables=len(manifest.tables),
    )
    return manifest


__all__ = [
    "ManifestConfig",
    "ManifestValidationError",
    "load_manifest",
    "parse_manifest",
]
