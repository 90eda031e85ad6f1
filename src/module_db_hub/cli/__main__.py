"""
Unified CLI entry point for ModuleDbHub.

Usage:
    python -m module_db_hub.cli <command> [options]

Available commands:
    provision    - Provision a module from its manifest
    deprovision  - Remove everything a module owns
    lookup       - Show a module's registry entry
    list         - List registered modules
    orphans      - List module objects with no registry entry
    status       - Compare a module's registry entry with the database
    unlock       - Release a stuck provisioning lock

Every command prints JSON and exits 0 on success, 1 on failure.
"""

import argparse
import sys
from typing import Callable, List, Optional

from module_db_hub.infrastructure.schema.reserved import ReservedNamesError
from module_db_hub.infrastructure.settings.manifest_schema import (
    ManifestValidationError,
)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="module_db_hub.cli",
        description="ModuleDbHub CLI - module database provisioning",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Preview the SQL for a manifest
  python -m module_db_hub.cli provision config/manifests/crm.yml --dry-run

  # Provision and tear down
  python -m module_db_hub.cli provision config/manifests/crm.yml
  python -m module_db_hub.cli deprovision crm-v1

  # Audit
  python -m module_db_hub.cli orphans
  python -m module_db_hub.cli status crm-v1
        """,
    )

    subparsers = parser.add_subparsers(
        title="commands",
        description="Available commands",
        dest="command",
        required=True,
        help="Command to execute",
    )

    provision_parser = subparsers.add_parser(
        "provision", help="Provision a module from its manifest"
    )
    provision_parser.add_argument("manifest", help="Path to the module manifest YAML")
    provision_parser.add_argument(
        "--dry-run", action="store_true", help="Print the SQL without executing it"
    )
    provision_parser.add_argument(
        "--wait", type=float, default=None, help="Seconds to wait for the module lock"
    )

    deprovision_parser = subparsers.add_parser(
        "deprovision", help="Remove everything a module owns"
    )
    deprovision_parser.add_argument("module_id", help="Module id")
    deprovision_parser.add_argument(
        "--dry-run", action="store_true", help="Print the SQL without executing it"
    )
    deprovision_parser.add_argument(
        "--wait", type=float, default=None, help="Seconds to wait for the module lock"
    )

    lookup_parser = subparsers.add_parser("lookup", help="Show a module's registry entry")
    lookup_parser.add_argument("module_id", help="Module id")

    list_parser = subparsers.add_parser("list", help="List registered modules")
    list_parser.add_argument(
        "--status",
        choices=["active", "migrating", "deprecated"],
        default=None,
        help="Only list modules with this status",
    )

    subparsers.add_parser("orphans", help="List module objects with no registry entry")

    status_parser = subparsers.add_parser(
        "status", help="Compare a module's registry entry with the database"
    )
    status_parser.add_argument("module_id", help="Module id")

    unlock_parser = subparsers.add_parser(
        "unlock", help="Release a stuck provisioning lock"
    )
    unlock_parser.add_argument("module_id", help="Module id")

    return parser


def main(
    argv: Optional[List[str]] = None,
    services_factory: Optional[Callable[[], object]] = None,
) -> int:
    """
    Main CLI entry point with subcommand routing.

    Args:
        argv: Command line arguments (defaults to sys.argv[1:])
        services_factory: Builds the wired services (defaults to bootstrap)

    Returns:
        Exit code (0 for success, 1 for failure)
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    from module_db_hub.cli.commands import dispatch, emit

    if services_factory is None:
        from module_db_hub.bootstrap import build_services

        services_factory = build_services

    try:
        services = services_factory()
        return dispatch(args, services)
    except (ManifestValidationError, ReservedNamesError) as e:
        emit(
            {
                "success": False,
                "error": {"error_type": type(e).__name__, "message": str(e)},
            }
        )
        return 1


if __name__ == "__main__":
    sys.exit(main())
