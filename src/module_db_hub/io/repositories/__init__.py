"""Repositories for registry persistence."""

from .registry import ModuleRegistry, build_registry_metadata

__all__ = ["ModuleRegistry", "build_registry_metadata"]
