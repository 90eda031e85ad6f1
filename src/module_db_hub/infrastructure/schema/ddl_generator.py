"""DDL statement generation for module tables.

Translates ``TableDefinition`` objects into structured statement variants.
Realized (allocated) names are passed in; this module never derives names.
"""

from __future__ import annotations

from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from module_db_hub.infrastructure.sql.operations.ddl import (
    AddForeignKey,
    ColumnSpec,
    CreateIndex,
    CreateTable,
    GrantTablePrivileges,
)

from .core import (
    ColumnDef,
    ColumnShape,
    ColumnType,
    ForeignKeyDef,
    IndexDef,
    TableDefinition,
)

DEFAULT_STRING_LENGTH = 255
DEFAULT_DECIMAL_PRECISION = 18
DEFAULT_DECIMAL_SCALE = 4


def _string_length(col: ColumnDef) -> int:
    return col.max_length or DEFAULT_STRING_LENGTH


def _decimal_precision(col: ColumnDef) -> tuple:
    return (
        col.precision or DEFAULT_DECIMAL_PRECISION,
        col.scale or DEFAULT_DECIMAL_SCALE,
    )


def _column_type_to_sql(col: ColumnDef) -> str:
    """Convert a ColumnDef to SQL type definition."""
    if col.column_type == ColumnType.STRING:
        return f"VARCHAR({_string_length(col)})"
    if col.column_type == ColumnType.TEXT:
        return "TEXT"
    if col.column_type == ColumnType.INTEGER:
        return "INTEGER"
    if col.column_type == ColumnType.BIGINT:
        return "BIGINT"
    if col.column_type == ColumnType.DECIMAL:
        precision, scale = _decimal_precision(col)
        return f"DECIMAL({precision}, {scale})"
    if col.column_type == ColumnType.BOOLEAN:
        return "BOOLEAN"
    if col.column_type == ColumnType.DATE:
        return "DATE"
    if col.column_type == ColumnType.DATETIME:
        return "TIMESTAMP WITH TIME ZONE"
    if col.column_type == ColumnType.UUID:
        return "UUID"
    if col.column_type == ColumnType.JSON:
        return "JSONB"
    return "VARCHAR(255)"


def build_column_specs(table: TableDefinition) -> tuple:
    return tuple(
        ColumnSpec(
            name=col.name,
            sql_type=_column_type_to_sql(col),
            nullable=col.nullable,
            primary_key=col.is_primary_key,
            unique=col.unique,
            default=col.default,
        )
        for col in table.columns
    )


def expected_column_shape(col: ColumnDef) -> ColumnShape:
    """The shape PostgreSQL reports for a column created from ``col``."""
    max_length: Optional[int] = None
    precision: Optional[int] = None
    scale: Optional[int] = None
    if col.column_type == ColumnType.STRING:
        max_length = _string_length(col)
    elif col.column_type == ColumnType.DECIMAL:
        precision, scale = _decimal_precision(col)
    return ColumnShape(
        data_type=col.column_type.information_schema_type,
        # PRIMARY KEY implies NOT NULL
        nullable=col.nullable and not col.is_primary_key,
        max_length=max_length,
        precision=precision,
        scale=scale,
    )


def expected_column_shapes(table: TableDefinition) -> Dict[str, ColumnShape]:
    return {col.name: expected_column_shape(col) for col in table.columns}


def generate_create_table(
    table: TableDefinition, schema: str, table_name: str
) -> CreateTable:
    return CreateTable(schema=schema, table=table_name, columns=build_column_specs(table))


def generate_indexes(
    table: TableDefinition,
    schema: str,
    table_name: str,
    index_name: Callable[[IndexDef], str],
) -> List[CreateIndex]:
    """Generate index statements; ``index_name`` realizes each index's name."""
    return [
        CreateIndex(
            schema=schema,
            table=table_name,
            name=index_name(idx),
            columns=tuple(idx.columns),
            unique=idx.unique,
        )
        for idx in table.indexes
    ]


def generate_foreign_key(
    fk: ForeignKeyDef,
    schema: str,
    table_name: str,
    constraint_name: str,
    ref_schema: str,
    ref_table: str,
) -> AddForeignKey:
    return AddForeignKey(
        schema=schema,
        table=table_name,
        name=constraint_name,
        column=fk.column,
        ref_schema=ref_schema,
        ref_table=ref_table,
        ref_column=fk.ref_column,
        on_delete=fk.on_delete,
        on_update=fk.on_update,
    )


def generate_grants(
    schema: str, table_name: str, roles: Iterable[str]
) -> List[GrantTablePrivileges]:
    return [
        GrantTablePrivileges(schema=schema, table=table_name, role=role)
        for role in roles
    ]


def _nullability(shape: ColumnShape) -> str:
    return "NULL" if shape.nullable else "NOT NULL"


def shape_differences(
    table: TableDefinition, live_columns: Mapping[str, ColumnShape]
) -> List[str]:
    """Describe how a live table differs from its declaration.

    Compares column sets, ``data_type``, character length, numeric precision
    and scale, and nullability. An empty list means the shapes match.
    """
    expected = expected_column_shapes(table)
    problems: List[str] = []
    missing: Sequence[str] = sorted(set(expected) - set(live_columns))
    extra: Sequence[str] = sorted(set(live_columns) - set(expected))
    if missing:
        problems.append(f"missing columns: {', '.join(missing)}")
    if extra:
        problems.append(f"undeclared columns: {', '.join(extra)}")
    for name, want in expected.items():
        have = live_columns.get(name)
        if have is None:
            continue
        if have.data_type.lower() != want.data_type:
            problems.append(f"column {name}: expected {want.data_type}, found {have.data_type}")
            continue
        if want.max_length is not None and have.max_length != want.max_length:
            problems.append(
                f"column {name}: expected length {want.max_length}, found {have.max_length}"
            )
        if want.precision is not None and (have.precision, have.scale) != (
            want.precision,
            want.scale,
        ):
            problems.append(
                f"column {name}: expected numeric({want.precision}, {want.scale}), "
                f"found numeric({have.precision}, {have.scale})"
            )
        if have.nullable != want.nullable:
            problems.append(
                f"column {name}: expected {_nullability(want)}, found {_nullability(have)}"
            )
    return problems


__all__ = [
    "build_column_specs",
    "expected_column_shape",
    "expected_column_shapes",
    "generate_create_table",
    "generate_indexes",
    "generate_foreign_key",
    "generate_grants",
    "shape_differences",
]
