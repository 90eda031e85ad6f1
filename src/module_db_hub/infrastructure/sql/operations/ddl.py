"""
Structured DDL statement variants.

Every structural change the provisioning subsystem makes is expressed as one
of the frozen dataclasses below. They are produced by the DDL generator and
the isolation installer, checked by the DDL guard by type, and rendered to SQL
text only by a dialect. No variant carries free-form SQL.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import ClassVar, Literal, Optional, Tuple, Union

ReferentialAction = Literal["CASCADE", "SET NULL", "RESTRICT", "NO ACTION"]
PolicyCommand = Literal["SELECT", "INSERT", "UPDATE", "DELETE"]


@dataclass(frozen=True)
class ColumnDefault:
    """Closed set of column defaults.

    ``kind`` is ``now`` (current timestamp), ``uuid`` (random UUID) or
    ``literal`` (a scalar rendered with quoting).
    """

    kind: Literal["now", "uuid", "literal"]
    value: Union[str, int, float, bool, None] = None

    @classmethod
    def now(cls) -> "ColumnDefault":
        return cls("now")

    @classmethod
    def uuid(cls) -> "ColumnDefault":
        return cls("uuid")

    @classmethod
    def literal(cls, value: Union[str, int, float, bool]) -> "ColumnDefault":
        return cls("literal", value)


@dataclass(frozen=True)
class ColumnSpec:
    """A rendered column: name, SQL type and constraints."""

    name: str
    sql_type: str
    nullable: bool = True
    primary_key: bool = False
    unique: bool = False
    default: Optional[ColumnDefault] = None


@dataclass(frozen=True)
class DDLStatement:
    """Base class for every statement variant."""

    kind: ClassVar[str] = "ddl"

    schema: str

    @property
    def target_table(self) -> Optional[str]:
        return getattr(self, "table", None)

    def describe(self) -> str:
        """Short human-readable target, used in logs."""
        if self.target_table:
            return f"{self.schema}.{self.target_table}"
        return self.schema


@dataclass(frozen=True)
class CreateSchema(DDLStatement):
    kind: ClassVar[str] = "create_schema"


@dataclass(frozen=True)
class GrantSchemaUsage(DDLStatement):
    kind: ClassVar[str] = "grant_schema"

    role: str = ""
    privilege: Literal["USAGE", "ALL"] = "USAGE"


@dataclass(frozen=True)
class DropSchema(DDLStatement):
    kind: ClassVar[str] = "drop_schema"

    cascade: bool = True


@dataclass(frozen=True)
class CreateTable(DDLStatement):
    kind: ClassVar[str] = "create_table"

    table: str = ""
    columns: Tuple[ColumnSpec, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class DropTable(DDLStatement):
    kind: ClassVar[str] = "drop_table"

    table: str = ""
    cascade: bool = False


@dataclass(frozen=True)
class CreateIndex(DDLStatement):
    kind: ClassVar[str] = "create_index"

    table: str = ""
    name: str = ""
    columns: Tuple[str, ...] = field(default_factory=tuple)
    unique: bool = False


@dataclass(frozen=True)
class AddForeignKey(DDLStatement):
    kind: ClassVar[str] = "add_foreign_key"

    table: str = ""
    name: str = ""
    column: str = ""
    ref_schema: str = ""
    ref_table: str = ""
    ref_column: str = ""
    on_delete: Optional[ReferentialAction] = None
    on_update: Optional[ReferentialAction] = None


@dataclass(frozen=True)
class DropForeignKey(DDLStatement):
    kind: ClassVar[str] = "drop_foreign_key"

    table: str = ""
    name: str = ""

    def describe(self) -> str:
        return f"{self.schema}.{self.table} constraint {self.name}"


@dataclass(frozen=True)
class GrantTablePrivileges(DDLStatement):
    kind: ClassVar[str] = "grant_table"

    table: str = ""
    role: str = ""
    privileges: Tuple[str, ...] = ("SELECT", "INSERT", "UPDATE", "DELETE")


@dataclass(frozen=True)
class EnableRowSecurity(DDLStatement):
    kind: ClassVar[str] = "enable_row_security"

    table: str = ""
    force: bool = True


@dataclass(frozen=True)
class AttachPolicy(DDLStatement):
    """A row level security policy.

    ``using`` and ``with_check`` hold the tenant predicate supplied by the
    platform's tenant authorizer; manifests never reach these fields.
    """

    kind: ClassVar[str] = "attach_policy"

    table: str = ""
    name: str = ""
    command: PolicyCommand = "SELECT"
    role: str = ""
    using: Optional[str] = None
    with_check: Optional[str] = None


STATEMENT_TYPES: Tuple[type, ...] = (
    CreateSchema,
    GrantSchemaUsage,
    DropSchema,
    CreateTable,
    DropTable,
    CreateIndex,
    AddForeignKey,
    DropForeignKey,
    GrantTablePrivileges,
    EnableRowSecurity,
    AttachPolicy,
)

DESTRUCTIVE_TYPES: Tuple[type, ...] = (DropSchema, DropTable, DropForeignKey)

__all__ = [
    "ColumnDefault",
    "ColumnSpec",
    "DDLStatement",
    "CreateSchema",
    "GrantSchemaUsage",
    "DropSchema",
    "CreateTable",
    "DropTable",
    "CreateIndex",
    "AddForeignKey",
    "DropForeignKey",
    "GrantTablePrivileges",
    "EnableRowSecurity",
    "AttachPolicy",
    "STATEMENT_TYPES",
    "DESTRUCTIVE_TYPES",
    "PolicyCommand",
    "ReferentialAction",
]
