"""
Unit tests for the ModuleDbHub CLI.

Commands run against the in-memory services fixture; output is parsed as JSON.
"""

import json
from pathlib import Path

import pytest

from module_db_hub.cli.__main__ import build_parser, main

CRM_MANIFEST_PATH = Path(__file__).parents[3] / "config" / "manifests" / "crm.yml"


@pytest.fixture
def run_cli(services, capsys):
    def run(*argv):
        code = main(list(argv), services_factory=lambda: services)
        return code, json.loads(capsys.readouterr().out)

    return run


@pytest.mark.unit
class TestParser:
    """Tests for argument parsing."""

    def test_command_is_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_provision_options(self):
        args = build_parser().parse_args(["provision", "m.yml", "--dry-run", "--wait", "5"])

        assert args.command == "provision"
        assert args.dry_run is True
        assert args.wait == 5.0

    def test_list_status_choices(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["list", "--status", "broken"])


@pytest.mark.unit
class TestProvisionCommand:
    """Tests for provision and deprovision from the command line."""

    def test_dry_run_prints_statements(self, run_cli, fake_db):
        code, output = run_cli("provision", str(CRM_MANIFEST_PATH), "--dry-run")

        assert code == 0
        assert output["dry_run"] is True
        assert output["module_id"] == "crm-v1"
        assert output["statements"][0].startswith("CREATE TABLE IF NOT EXISTS")
        assert any("ROW LEVEL SECURITY" in s for s in output["statements"])
        assert fake_db.executed == []

    def test_provision_then_deprovision(self, run_cli, services):
        code, output = run_cli("provision", str(CRM_MANIFEST_PATH))

        assert code == 0
        assert output["outcome"] == "succeeded"
        assert len(output["created"]) == 2

        code, output = run_cli("deprovision", "crm-v1")

        assert code == 0
        assert output["outcome"] == "deprovisioned"
        assert services.registry.lookup("crm-v1") is None

    def test_invalid_manifest_reports_error(self, run_cli, tmp_path):
        manifest = tmp_path / "bad.yml"
        manifest.write_text(
            "module_id: bad-v1\n"
            "publisher_id: acme\n"
            "tables:\n"
            "  - name: users\n"
            "    security_required: false\n"
            "    columns:\n"
            "      - {name: id, type: uuid, primary_key: true}\n",
            encoding="utf-8",
        )

        code, output = run_cli("provision", str(manifest))

        assert code == 1
        assert output["outcome"] == "validation_failed"
        assert output["error"]["error_type"] == "ReservedNameConflict"

    def test_missing_manifest_file(self, run_cli, tmp_path):
        code, output = run_cli("provision", str(tmp_path / "missing.yml"))

        assert code == 1
        assert output["success"] is False
        assert output["error"]["error_type"] == "ManifestValidationError"

    def test_deprovision_unknown_module(self, run_cli):
        code, output = run_cli("deprovision", "ghost-v1")

        assert code == 1
        assert output["error"]["error_type"] == "ModuleNotRegistered"

    def test_deprovision_refused_while_referenced(self, run_cli, services, tmp_path):
        deals = tmp_path / "deals.yml"
        deals.write_text(
            "module_id: deals-v1\n"
            "publisher_id: acme\n"
            "dependencies: {modules: [crm-v1]}\n"
            "tables:\n"
            "  - name: deals\n"
            "    columns:\n"
            "      - {name: id, type: uuid, primary_key: true}\n"
            "      - {name: site_id, type: uuid}\n"
            "      - {name: contact_id, type: uuid}\n"
            "    foreign_keys:\n"
            "      - {column: contact_id, references: {table: contacts, module: crm-v1}}\n",
            encoding="utf-8",
        )
        run_cli("provision", str(CRM_MANIFEST_PATH))
        code, _ = run_cli("provision", str(deals))
        assert code == 0

        code, output = run_cli("deprovision", "crm-v1")

        assert code == 1
        assert output["error"]["error_type"] == "DependentModules"
        assert output["error"]["dependents"] == "deals-v1"
        assert services.registry.lookup("crm-v1") is not None


@pytest.mark.unit
class TestRegistryCommands:
    """Tests for lookup, list, status, orphans and unlock."""

    def test_lookup(self, run_cli):
        code, output = run_cli("lookup", "crm-v1")
        assert code == 1
        assert output == {"module_id": "crm-v1", "registered": False}

        run_cli("provision", str(CRM_MANIFEST_PATH))
        code, output = run_cli("lookup", "crm-v1")

        assert code == 0
        assert output["status"] == "active"
        assert output["isolation_mode"] == "prefixed"

    def test_list(self, run_cli):
        run_cli("provision", str(CRM_MANIFEST_PATH))

        code, output = run_cli("list")
        assert code == 0
        assert output["count"] == 1

        code, output = run_cli("list", "--status", "deprecated")
        assert output["count"] == 0

    def test_status(self, run_cli, fake_db, services, crm_identity):
        code, output = run_cli("status", "crm-v1")
        assert code == 1
        assert output["status"] == "not_registered"

        run_cli("provision", str(CRM_MANIFEST_PATH))
        code, output = run_cli("status", "crm-v1")
        assert code == 0
        assert output["status"] == "healthy"

        short_id = services.allocator.allocate(crm_identity)
        del fake_db.tables[("public", f"mod_{short_id}_contacts")]
        code, output = run_cli("status", "crm-v1")
        assert code == 1
        assert output["status"] == "mismatch"

    def test_orphans(self, run_cli, fake_db):
        fake_db.schemas.add("mod_deadbeef")

        code, output = run_cli("orphans")

        assert code == 0
        assert output == {"count": 1, "orphans": ["mod_deadbeef"]}

    def test_unlock(self, run_cli, services):
        with services.registry.module_lock("crm-v1"):
            code, output = run_cli("unlock", "crm-v1")

        assert code == 0
        assert output == {"module_id": "crm-v1", "released": True}
