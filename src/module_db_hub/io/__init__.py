"""I/O layer: live catalog access, statement execution and the module registry."""
