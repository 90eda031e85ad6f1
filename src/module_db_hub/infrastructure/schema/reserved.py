"""
Reserved platform names.

The reserved set is loaded once at bootstrap from ``reserved_names.yml`` and is
immutable afterwards. Lookups are case-insensitive.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Iterable, Mapping, Optional, Tuple, Union

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from module_db_hub.utils.logging import get_logger

logger = get_logger(__name__)


class ReservedNamesError(Exception):
    """Raised when the reserved names configuration cannot be loaded."""

    pass


class ReservedNamesFile(BaseModel):
    """Schema for reserved_names.yml."""

    schema_version: str = Field(..., description="Configuration schema version")
    reserved: Dict[str, Dict[str, str]] = Field(
        ..., min_length=1, description="category -> {name: reason}"
    )

    @field_validator("reserved")
    @classmethod
    def _names_are_identifiers(
        cls, value: Dict[str, Dict[str, str]]
    ) -> Dict[str, Dict[str, str]]:
        for category, names in value.items():
            for name in names:
                if not name or not name.replace("_", "").isalnum():
                    raise ValueError(
                        f"reserved name {name!r} in category {category!r} "
                        "is not a plain identifier"
                    )
        return value


@dataclass(frozen=True)
class ReservedNames:
    """Immutable set of platform-owned names with their category and reason."""

    entries: Mapping[str, Tuple[str, str]] = field(
        default_factory=lambda: MappingProxyType({})
    )

    @classmethod
    def from_names(
        cls, names: Iterable[str], category: str = "custom"
    ) -> "ReservedNames":
        return cls(
            MappingProxyType({n.lower(): (category, "reserved") for n in names})
        )

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "ReservedNames":
        """
        Load and validate the reserved names file.

        Raises:
            ReservedNamesError: If the file is missing, unparsable or invalid
        """
        config_path = Path(path)
        if not config_path.exists():
            raise ReservedNamesError(f"Reserved names file not found: {path}")

        try:
            with open(config_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ReservedNamesError(f"Invalid YAML in {path}: {e}") from e

        try:
            parsed = ReservedNamesFile.model_validate(data)
        except ValidationError as e:
            raise ReservedNamesError(f"Invalid reserved names file {path}: {e}") from e

        entries: Dict[str, Tuple[str, str]] = {}
        for category, names in parsed.reserved.items():
            for name, reason in names.items():
                entries[name.lower()] = (category, reason)

        logger.info(
            "reserved_names.loaded",
            path=str(config_path),
            count=len(entries),
            categories=len(parsed.reserved),
        )
        return cls(MappingProxyType(entries))

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.lower() in self.entries

    def __len__(self) -> int:
        return len(self.entries)

    def reason_for(self, name: str) -> Optional[str]:
        entry = self.entries.get(name.lower())
        return entry[1] if entry else None

    def category_for(self, name: str) -> Optional[str]:
        entry = self.entries.get(name.lower())
        return entry[0] if entry else None


__all__ = ["ReservedNames", "ReservedNamesError", "ReservedNamesFile"]
