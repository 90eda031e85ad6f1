"""
ModuleDbHub - Module database provisioning for a shared multi-tenant platform.

Allocates collision-free namespaces for installed modules, creates their
declared tables behind a guarded DDL gateway, attaches tenant isolation
policies and keeps an authoritative ownership registry for teardown.
"""

__version__ = "0.1.0"
