"""
Command handlers for the ModuleDbHub CLI.

Each handler takes the parsed arguments and the wired services, prints a JSON
document to stdout and returns the process exit code.
"""

from __future__ import annotations

import argparse
import json
from typing import Any, Dict

from module_db_hub.bootstrap import Services
from module_db_hub.domain.provisioning.exceptions import ProvisioningError
from module_db_hub.domain.provisioning.models import RegistryStatus
from module_db_hub.infrastructure.settings.manifest_schema import load_manifest


def emit(payload: Dict[str, Any]) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False, default=str))


def cmd_provision(args: argparse.Namespace, services: Services) -> int:
    manifest = load_manifest(args.manifest)
    provisioner = services.provisioner
    if args.dry_run:
        statements = provisioner.plan(
            manifest.identity,
            manifest.resolved_isolation_mode(),
            manifest.tables,
            manifest.dependencies,
        )
        emit(
            {
                "module_id": manifest.module_id,
                "short_id": services.allocator.allocate(manifest.identity),
                "dry_run": True,
                "statements": statements,
            }
        )
        return 0

    result = provisioner.provision_manifest(manifest, wait_timeout=args.wait)
    emit(result.to_dict())
    return 0 if result.success else 1


def cmd_deprovision(args: argparse.Namespace, services: Services) -> int:
    result = services.deprovisioner.deprovision(
        args.module_id, dry_run=args.dry_run, wait_timeout=args.wait
    )
    emit(result.to_dict())
    return 0 if result.success else 1


def cmd_lookup(args: argparse.Namespace, services: Services) -> int:
    entry = services.registry.lookup(args.module_id)
    if entry is None:
        emit({"module_id": args.module_id, "registered": False})
        return 1
    emit(entry.to_dict())
    return 0


def cmd_list(args: argparse.Namespace, services: Services) -> int:
    status = RegistryStatus(args.status) if args.status else None
    entries = services.registry.list_all(status)
    emit({"count": len(entries), "modules": [e.to_dict() for e in entries]})
    return 0


def cmd_orphans(args: argparse.Namespace, services: Services) -> int:
    orphans = services.registry.find_orphans(
        services.catalog, services.settings.platform_schema
    )
    emit({"count": len(orphans), "orphans": orphans})
    return 0


def cmd_status(args: argparse.Namespace, services: Services) -> int:
    status = services.registry.database_status(args.module_id, services.catalog)
    emit(status)
    return 0 if status["status"] in ("healthy", "registered_no_tables") else 1


def cmd_unlock(args: argparse.Namespace, services: Services) -> int:
    released = services.registry.force_unlock(args.module_id)
    emit({"module_id": args.module_id, "released": released})
    return 0


COMMANDS = {
    "provision": cmd_provision,
    "deprovision": cmd_deprovision,
    "lookup": cmd_lookup,
    "list": cmd_list,
    "orphans": cmd_orphans,
    "status": cmd_status,
    "unlock": cmd_unlock,
}


def dispatch(args: argparse.Namespace, services: Services) -> int:
    try:
        return COMMANDS[args.command](args, services)
    except ProvisioningError as e:
        emit({"success": False, "error": e.to_dict()})
        return 1
