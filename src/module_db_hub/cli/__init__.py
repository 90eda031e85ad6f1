"""Command-line interface for ModuleDbHub."""
