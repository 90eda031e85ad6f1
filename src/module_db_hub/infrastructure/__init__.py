"""
Infrastructure Layer

Reusable services that support the provisioning domain without containing its
rules themselves.

Components:
- sql: Statement variants, identifier quoting and the PostgreSQL dialect
- schema: Table definition types, reserved names and the DDL generator
- settings: Module manifest schema and loader
"""

__all__: list[str] = []
