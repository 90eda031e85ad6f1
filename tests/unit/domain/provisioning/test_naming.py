"""
Unit tests for ShortID derivation and realized name allocation.
"""

import hashlib
import random
import string

import pytest

from module_db_hub.domain.provisioning.exceptions import (
    InvalidManifest,
    InvalidName,
    ReservedNameConflict,
)
from module_db_hub.domain.provisioning.models import QualifiedName
from module_db_hub.domain.provisioning.naming import (
    NameAllocator,
    derive_short_id,
    extract_short_id,
    is_valid_short_id,
)
from module_db_hub.infrastructure.schema.core import IsolationMode, ModuleIdentity
from module_db_hub.infrastructure.schema.reserved import ReservedNames


@pytest.fixture
def allocator() -> NameAllocator:
    return NameAllocator(ReservedNames.from_names(["users", "sites"]))


@pytest.mark.unit
class TestShortId:
    """Tests for ShortID derivation."""

    def test_matches_sha256_prefix(self):
        identity = ModuleIdentity("crm-v1", "acme")
        expected = hashlib.sha256(b"acme/crm-v1").hexdigest()[:8]

        assert derive_short_id(identity) == expected

    def test_is_deterministic(self, allocator):
        identity = ModuleIdentity("crm-v1", "acme")
        assert allocator.allocate(identity) == allocator.allocate(
            ModuleIdentity("crm-v1", "acme")
        )

    def test_publisher_is_part_of_identity(self):
        assert derive_short_id(ModuleIdentity("crm", "acme")) != derive_short_id(
            ModuleIdentity("crm", "globex")
        )

    def test_distinct_for_random_identities(self):
        rng = random.Random(20260101)
        identities = {
            ModuleIdentity(
                "".join(rng.choices(string.ascii_lowercase, k=10)),
                "".join(rng.choices(string.ascii_lowercase, k=6)),
            )
            for _ in range(500)
        }
        short_ids = {derive_short_id(i) for i in identities}

        assert len(short_ids) == len(identities)
        assert all(is_valid_short_id(s) for s in short_ids)

    @pytest.mark.parametrize("value", [None, "", "A1B2C3D4", "a1b2c3d", "a1b2c3d4e", "zzzzzzzz"])
    def test_invalid_short_ids(self, value):
        assert not is_valid_short_id(value)

    @pytest.mark.parametrize(
        "name, expected",
        [
            ("mod_a1b2c3d4", "a1b2c3d4"),
            ("mod_a1b2c3d4_contacts", "a1b2c3d4"),
            ("MOD_A1B2C3D4_contacts", "a1b2c3d4"),
            ("mod_a1b2c3d4x", None),
            ("contacts", None),
        ],
    )
    def test_extract_short_id(self, name, expected):
        assert extract_short_id(name) == expected


@pytest.mark.unit
class TestBuildName:
    """Tests for realized table names."""

    def test_schema_mode(self, allocator):
        name = allocator.build_name("a1b2c3d4", "contacts", IsolationMode.SCHEMA)
        assert name == QualifiedName("mod_a1b2c3d4", "contacts")
        assert str(name) == "mod_a1b2c3d4.contacts"

    def test_prefixed_mode(self, allocator):
        name = allocator.build_name("a1b2c3d4", "contacts", IsolationMode.PREFIXED)
        assert name == QualifiedName("public", "mod_a1b2c3d4_contacts")

    def test_prefixed_mode_uses_platform_schema(self):
        allocator = NameAllocator(ReservedNames(), platform_schema="platform")
        name = allocator.build_name("a1b2c3d4", "contacts", IsolationMode.PREFIXED)
        assert name.schema == "platform"

    def test_shared_mode_owns_no_tables(self, allocator):
        with pytest.raises(InvalidManifest):
            allocator.build_name("a1b2c3d4", "contacts", IsolationMode.SHARED)

    def test_distinct_modules_never_collide(self, allocator):
        a = allocator.build_name(
            derive_short_id(ModuleIdentity("crm", "acme")), "contacts", IsolationMode.PREFIXED
        )
        b = allocator.build_name(
            derive_short_id(ModuleIdentity("crm", "globex")), "contacts", IsolationMode.PREFIXED
        )
        assert a != b

    def test_realized_prefixed_name_too_long(self, allocator):
        logical = "x" * 55
        allocator.validate_identifier(logical)

        with pytest.raises(InvalidName, match="exceeds"):
            allocator.build_name("a1b2c3d4", logical, IsolationMode.PREFIXED)

    def test_bad_short_id_rejected(self, allocator):
        with pytest.raises(InvalidName):
            allocator.build_name("not-hex!", "contacts", IsolationMode.SCHEMA)


@pytest.mark.unit
class TestValidation:
    """Tests for identifier and reserved name checks."""

    @pytest.mark.parametrize(
        "name", ["", "Contacts", "1contacts", "contacts-list", "contacts;drop", 'a"b', "x" * 64]
    )
    def test_invalid_identifiers(self, allocator, name):
        with pytest.raises(InvalidName):
            allocator.validate_identifier(name, "table", "crm-v1")

    def test_valid_identifier(self, allocator):
        assert allocator.validate_identifier("contact_notes_2") == "contact_notes_2"

    def test_reserved_name(self, allocator):
        with pytest.raises(ReservedNameConflict) as exc_info:
            allocator.assert_not_reserved("Users", "crm-v1")

        assert exc_info.value.module_id == "crm-v1"
        assert "reserved" in str(exc_info.value)

    def test_unreserved_name(self, allocator):
        allocator.assert_not_reserved("contacts")


@pytest.mark.unit
class TestDerivedNames:
    """Tests for index, constraint and policy names."""

    def test_index_name_from_columns(self, allocator):
        assert (
            allocator.index_name("a1b2c3d4", "contacts", ["site_id", "email"])
            == "idx_a1b2c3d4_contacts_site_id_email"
        )

    def test_index_name_explicit(self, allocator):
        assert (
            allocator.index_name("a1b2c3d4", "contacts", ["email"], name="by_email")
            == "idx_a1b2c3d4_contacts_by_email"
        )

    def test_constraint_and_policy_names(self, allocator):
        assert (
            allocator.constraint_name("a1b2c3d4", "contacts", "company_id")
            == "fk_a1b2c3d4_contacts_company_id"
        )
        assert (
            allocator.policy_name("a1b2c3d4", "contacts", "SELECT")
            == "tenant_select_a1b2c3d4_contacts"
        )

    def test_long_names_are_shortened_stably(self, allocator):
        columns = ["a_really_long_column_name", "another_really_long_column_name"]

        first = allocator.index_name("a1b2c3d4", "contact_activities", columns)
        second = allocator.index_name("a1b2c3d4", "contact_activities", columns)

        assert first == second
        assert len(first) == 63
        assert first.startswith("idx_a1b2c3d4_contact_activities_")

    def test_shortened_names_stay_distinct(self, allocator):
        a = allocator.index_name("a1b2c3d4", "t", ["c" * 40, "first_column_x"])
        b = allocator.index_name("a1b2c3d4", "t", ["c" * 40, "first_column_y"])

        assert a != b
        assert len(a) <= 63 and len(b) <= 63
