"""
Deterministic name allocation for module database objects.

Every module gets an 8-character hex ShortID derived from its identity. All
realized names embed it:

- schema mode:   schema ``mod_{short_id}``, tables keep their logical name
- prefixed mode: tables ``mod_{short_id}_{logical}`` in the platform schema

Derived names (indexes, constraints, policies) that would exceed the database
identifier limit are shortened with a stable hash suffix.
"""

from __future__ import annotations

import hashlib
import re
from typing import Optional, Sequence

from module_db_hub.infrastructure.schema.core import IsolationMode, ModuleIdentity
from module_db_hub.infrastructure.schema.reserved import ReservedNames

from .exceptions import InvalidManifest, InvalidName, ReservedNameConflict
from .models import QualifiedName

SHORT_ID_LENGTH = 8
MODULE_PREFIX = "mod_"

SAFE_NAME_PATTERN = re.compile(r"^[a-z][a-z0-9_]*$")
SHORT_ID_PATTERN = re.compile(r"^[a-f0-9]{8}$")
MODULE_OBJECT_PATTERN = re.compile(r"^mod_([a-f0-9]{8})(?:_|$)")


def derive_short_id(identity: ModuleIdentity) -> str:
    """First 8 hex characters of SHA-256 over ``publisher_id/module_id``."""
    digest = hashlib.sha256(
        f"{identity.publisher_id}/{identity.module_id}".encode("utf-8")
    ).hexdigest()
    return digest[:SHORT_ID_LENGTH]


def is_valid_short_id(value: Optional[str]) -> bool:
    return bool(value) and SHORT_ID_PATTERN.match(value) is not None


def extract_short_id(name: str) -> Optional[str]:
    """Return the ShortID embedded in a ``mod_{short_id}[_...]`` name, if any."""
    match = MODULE_OBJECT_PATTERN.match(name.lower())
    return match.group(1) if match else None


class NameAllocator:
    """Allocates ShortIDs and builds collision-free realized names."""

    def __init__(
        self,
        reserved: ReservedNames,
        platform_schema: str = "public",
        max_length: int = 63,
    ):
        self.reserved = reserved
        self.platform_schema = platform_schema
        self.max_length = max_length

    def allocate(self, identity: ModuleIdentity) -> str:
        return derive_short_id(identity)

    # -- validation --------------------------------------------------------

    def validate_identifier(
        self, name: str, kind: str = "table", module_id: Optional[str] = None
    ) -> str:
        """Check a logical identifier against the safe-character pattern."""
        if not name:
            raise InvalidName(name, f"{kind} name is empty", module_id=module_id)
        if not SAFE_NAME_PATTERN.match(name):
            raise InvalidName(
                name,
                f"{kind} name must start with a letter and contain only "
                "lowercase letters, digits and underscores",
                module_id=module_id,
            )
        if len(name) > self.max_length:
            raise InvalidName(
                name,
                f"{kind} name exceeds {self.max_length} characters",
                module_id=module_id,
            )
        return name

    def assert_not_reserved(self, name: str, module_id: Optional[str] = None) -> None:
        if name in self.reserved:
            raise ReservedNameConflict(
                name,
                module_id=module_id,
                category=self.reserved.category_for(name),
                reason=self.reserved.reason_for(name),
            )

    def _check_short_id(self, short_id: str) -> None:
        if not is_valid_short_id(short_id):
            raise InvalidName(short_id, "short id must be 8 lowercase hex characters")

    # -- realized names ----------------------------------------------------

    def schema_name(self, short_id: str) -> str:
        self._check_short_id(short_id)
        return f"{MODULE_PREFIX}{short_id}"

    def table_prefix(self, short_id: str) -> str:
        self._check_short_id(short_id)
        return f"{MODULE_PREFIX}{short_id}_"

    def build_name(
        self,
        short_id: str,
        logical_name: str,
        mode: IsolationMode,
        module_id: Optional[str] = None,
    ) -> QualifiedName:
        """Realize a logical table name for the given isolation mode.

        Raises:
            InvalidName: If the logical name is malformed or the realized
                identifier would exceed the configured limit
        """
        self.validate_identifier(logical_name, module_id=module_id)
        if mode is IsolationMode.SCHEMA:
            return QualifiedName(self.schema_name(short_id), logical_name)
        if mode is IsolationMode.PREFIXED:
            table = f"{self.table_prefix(short_id)}{logical_name}"
            if len(table) > self.max_length:
                raise InvalidName(
                    logical_name,
                    f"realized table name '{table}' exceeds "
                    f"{self.max_length} characters",
                    module_id=module_id,
                )
            return QualifiedName(self.platform_schema, table)
        raise InvalidManifest(
            "Modules in shared isolation mode cannot own tables",
            module_id=module_id,
            table=logical_name,
        )

    def _fit(self, name: str) -> str:
        if len(name) <= self.max_length:
            return name
        suffix = hashlib.sha256(name.encode("utf-8")).hexdigest()[:SHORT_ID_LENGTH]
        return f"{name[: self.max_length - SHORT_ID_LENGTH - 1]}_{suffix}"

    def index_name(
        self,
        short_id: str,
        logical_name: str,
        columns: Sequence[str],
        name: Optional[str] = None,
    ) -> str:
        self._check_short_id(short_id)
        suffix = name or "_".join(columns)
        return self._fit(f"idx_{short_id}_{logical_name}_{suffix}")

    def constraint_name(self, short_id: str, logical_name: str, column: str) -> str:
        self._check_short_id(short_id)
        return self._fit(f"fk_{short_id}_{logical_name}_{column}")

    def policy_name(self, short_id: str, logical_name: str, command: str) -> str:
        self._check_short_id(short_id)
        return self._fit(f"tenant_{command.lower()}_{short_id}_{logical_name}")


__all__ = [
    "MODULE_PREFIX",
    "NameAllocator",
    "derive_short_id",
    "extract_short_id",
    "is_valid_short_id",
]
