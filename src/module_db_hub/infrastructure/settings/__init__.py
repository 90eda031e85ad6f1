"""Loading of configuration-driven YAML inputs."""

from .manifest_schema import (
    ManifestConfig,
    ManifestValidationError,
    load_manifest,
    parse_manifest,
)

__all__ = [
    "ManifestConfig",
    "ManifestValidationError",
    "load_manifest",
    "parse_manifest",
]
