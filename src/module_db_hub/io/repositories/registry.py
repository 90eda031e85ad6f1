"""
Module Registry repository.

The registry is the authoritative ledger of which module owns which schema and
tables. It is the only source of truth for lookups, conflict detection and
teardown; nothing is ever inferred from name patterns except orphan audits.

Two tables are managed here:
- ``module_database_registry``: one row per provisioned module
- ``module_provision_locks``: one row per module while a provision or
  deprovision is running, serializing them per module

Usage:
    registry = ModuleRegistry(engine, schema="public")
    registry.ensure_tables()

    with registry.module_lock("crm-v1", wait_timeout=30):
        ...
        registry.record(identity, short_id, ...)

    entry = registry.lookup("crm-v1")
"""

from __future__ import annotations

import time
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterator, List, Optional, Sequence

import sqlalchemy as sa
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from module_db_hub.domain.provisioning.exceptions import (
    ModuleOwnershipConflict,
    ProvisionInProgress,
    ShortIdCollision,
)
from module_db_hub.domain.provisioning.models import (
    DatabaseStatus,
    RegistryEntry,
    RegistryStatus,
)
from module_db_hub.domain.provisioning.naming import extract_short_id
from module_db_hub.infrastructure.schema.core import IsolationMode, ModuleIdentity
from module_db_hub.io.catalog import Catalog
from module_db_hub.utils.logging import get_logger

logger = get_logger(__name__)

REGISTRY_TABLE = "module_database_registry"
LOCKS_TABLE = "module_provision_locks"

ERROR_MAX_LENGTH = 4000


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def build_registry_metadata(schema: Optional[str] = None) -> sa.MetaData:
    """Build the SQLAlchemy Core table definitions for the registry."""
    metadata = sa.MetaData(schema=schema)
    sa.Table(
        REGISTRY_TABLE,
        metadata,
        sa.Column("module_id", sa.String(255), primary_key=True),
        sa.Column("publisher_id", sa.String(255), nullable=False),
        sa.Column("short_id", sa.String(8), nullable=False, unique=True),
        sa.Column("isolation_mode", sa.String(16), nullable=False),
        sa.Column("schema_name", sa.String(63), nullable=True),
        sa.Column("table_schema", sa.String(63), nullable=False),
        sa.Column("table_names", sa.JSON, nullable=False),
        sa.Column("shared_tables", sa.JSON, nullable=False),
        sa.Column("logical_names", sa.JSON, nullable=False),
        sa.Column("tenant_columns", sa.JSON, nullable=False),
        sa.Column("depends_on", sa.JSON, nullable=False, default=list),
        sa.Column("foreign_keys", sa.JSON, nullable=False, default=list),
        sa.Column("module_name", sa.String(255), nullable=False, default=""),
        sa.Column("module_version", sa.String(64), nullable=False, default=""),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("last_error", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    sa.Table(
        LOCKS_TABLE,
        metadata,
        sa.Column("module_id", sa.String(255), primary_key=True),
        sa.Column("holder", sa.String(64), nullable=False),
        sa.Column("acquired_at", sa.DateTime(timezone=True), nullable=False),
    )
    return metadata


class ModuleRegistry:
    """
    Repository for module ownership records and per-module provisioning locks.

    Each public method runs in its own transaction.
    """

    def __init__(
        self,
        engine: Engine,
        schema: Optional[str] = None,
        lock_poll_interval: float = 0.5,
        lock_stale_after: float = 3600.0,
        default_wait_timeout: float = 30.0,
    ):
        self.engine = engine
        self.schema = schema
        self.lock_poll_interval = lock_poll_interval
        self.lock_stale_after = lock_stale_after
        self.default_wait_timeout = default_wait_timeout
        self.metadata = build_registry_metadata(schema)
        prefix = f"{schema}." if schema else ""
        self.entries = self.metadata.tables[f"{prefix}{REGISTRY_TABLE}"]
        self.locks = self.metadata.tables[f"{prefix}{LOCKS_TABLE}"]

    def ensure_tables(self) -> None:
        """Create the registry tables if they do not exist."""
        self.metadata.create_all(self.engine, checkfirst=True)
        logger.info("registry.tables_ready", schema=self.schema)

    # -- mapping -----------------------------------------------------------

    @staticmethod
    def _row_to_entry(row: Any) -> RegistryEntry:
        m = row._mapping
        return RegistryEntry(
            module_id=m["module_id"],
            publisher_id=m["publisher_id"],
            short_id=m["short_id"],
            isolation_mode=IsolationMode(m["isolation_mode"]),
            schema_name=m["schema_name"],
            table_schema=m["table_schema"],
            table_names=list(m["table_names"] or []),
            shared_tables=list(m["shared_tables"] or []),
            logical_names=dict(m["logical_names"] or {}),
            tenant_columns=dict(m["tenant_columns"] or {}),
            depends_on=list(m["depends_on"] or []),
            foreign_keys=[dict(fk) for fk in m["foreign_keys"] or []],
            module_name=m["module_name"],
            module_version=m["module_version"],
            status=RegistryStatus(m["status"]),
            last_error=m["last_error"],
            created_at=m["created_at"],
            updated_at=m["updated_at"],
        )

    # -- queries -----------------------------------------------------------

    def lookup(self, module_id: str) -> Optional[RegistryEntry]:
        with self.engine.connect() as conn:
            row = conn.execute(
                sa.select(self.entries).where(self.entries.c.module_id == module_id)
            ).fetchone()
        return self._row_to_entry(row) if row is not None else None

    def lookup_short_id(self, short_id: str) -> Optional[RegistryEntry]:
        with self.engine.connect() as conn:
            row = conn.execute(
                sa.select(self.entries).where(self.entries.c.short_id == short_id)
            ).fetchone()
        return self._row_to_entry(row) if row is not None else None

    def list_all(self, status: Optional[RegistryStatus] = None) -> List[RegistryEntry]:
        query = sa.select(self.entries).order_by(self.entries.c.module_id)
        if status is not None:
            query = query.where(self.entries.c.status == status.value)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [self._row_to_entry(row) for row in rows]

    def dependents_of(self, module_id: str) -> List[RegistryEntry]:
        """Entries, in any status, that recorded ``module_id`` as a dependency."""
        return [
            entry
            for entry in self.list_all()
            if entry.module_id != module_id and module_id in entry.depends_on
        ]

    def find_orphans(self, catalog: Catalog, platform_schema: str) -> List[str]:
        """
        List live module objects whose ShortID has no registry entry.

        Looks at ``mod_{short_id}`` schemas and ``mod_{short_id}_*`` tables in
        the platform schema. Audit only; nothing is dropped.
        """
        with self.engine.connect() as conn:
            known = {row[0] for row in conn.execute(sa.select(self.entries.c.short_id))}

        orphans: List[str] = []
        for schema in catalog.list_module_schemas():
            short_id = extract_short_id(schema)
            if short_id and short_id not in known and schema == f"mod_{short_id}":
                orphans.append(schema)
        for table in catalog.list_tables(platform_schema):
            short_id = extract_short_id(table)
            if short_id and short_id not in known:
                orphans.append(f"{platform_schema}.{table}")

        if orphans:
            logger.warning("registry.orphans_found", count=len(orphans), orphans=orphans)
        return orphans

    def database_status(self, module_id: str, catalog: Catalog) -> Dict[str, Any]:
        """Compare a module's registry entry with the live catalog."""
        entry = self.lookup(module_id)
        if entry is None:
            return {"module_id": module_id, "status": DatabaseStatus.NOT_REGISTERED.value}

        result: Dict[str, Any] = {
            "module_id": module_id,
            "short_id": entry.short_id,
            "registry_status": entry.status.value,
            "registered_tables": len(entry.table_names),
        }
        if not entry.table_names:
            result["status"] = DatabaseStatus.REGISTERED_NO_TABLES.value
            return result

        missing = [
            t for t in entry.table_names if not catalog.table_exists(entry.table_schema, t)
        ]
        result["actual_tables"] = len(entry.table_names) - len(missing)
        result["missing_tables"] = missing
        result["status"] = (
            DatabaseStatus.MISMATCH.value if missing else DatabaseStatus.HEALTHY.value
        )
        return result

    # -- writes ------------------------------------------------------------

    def record(
        self,
        identity: ModuleIdentity,
        short_id: str,
        isolation_mode: IsolationMode,
        schema_name: Optional[str],
        table_schema: str,
        table_names: Sequence[str],
        shared_tables: Sequence[str] = (),
        logical_names: Optional[Dict[str, str]] = None,
        tenant_columns: Optional[Dict[str, str]] = None,
        module_name: str = "",
        module_version: str = "",
        depends_on: Sequence[str] = (),
        foreign_keys: Sequence[Dict[str, str]] = (),
    ) -> RegistryEntry:
        """
        Upsert a module's entry as ``active``.

        Called only after every structural operation and isolation policy has
        been applied. ``created_at`` of an existing entry is preserved, and an
        existing entry keeps its publisher and ShortID for life.

        Raises:
            ShortIdCollision: If another module already owns ``short_id``
            ModuleOwnershipConflict: If the entry belongs to another publisher
        """
        now = _utcnow()
        values = {
            "publisher_id": identity.publisher_id,
            "short_id": short_id,
            "isolation_mode": isolation_mode.value,
            "schema_name": schema_name,
            "table_schema": table_schema,
            "table_names": list(table_names),
            "shared_tables": list(shared_tables),
            "logical_names": dict(logical_names or {}),
            "tenant_columns": dict(tenant_columns or {}),
            "depends_on": sorted(set(depends_on)),
            "foreign_keys": [dict(fk) for fk in foreign_keys],
            "module_name": module_name,
            "module_version": module_version,
            "status": RegistryStatus.ACTIVE.value,
            "last_error": None,
            "updated_at": now,
        }
        try:
            with self.engine.begin() as conn:
                existing = conn.execute(
                    sa.select(self.entries.c.publisher_id, self.entries.c.short_id).where(
                        self.entries.c.module_id == identity.module_id
                    )
                ).fetchone()
                if existing is not None:
                    if (existing.publisher_id, existing.short_id) != (
                        identity.publisher_id,
                        short_id,
                    ):
                        raise ModuleOwnershipConflict(
                            identity.module_id,
                            identity.publisher_id,
                            existing.publisher_id,
                            short_id=existing.short_id,
                        )
                    conn.execute(
                        sa.update(self.entries)
                        .where(self.entries.c.module_id == identity.module_id)
                        .values(**values)
                    )
                else:
                    conn.execute(
                        sa.insert(self.entries).values(
                            module_id=identity.module_id, created_at=now, **values
                        )
                    )
        except IntegrityError as e:
            owner = self.lookup_short_id(short_id)
            if owner is not None and owner.module_id != identity.module_id:
                raise ShortIdCollision(short_id, identity.module_id, owner.module_id) from e
            raise

        logger.info(
            "registry.recorded",
            module_id=identity.module_id,
            short_id=short_id,
            isolation_mode=isolation_mode.value,
            tables=len(table_names),
        )
        entry = self.lookup(identity.module_id)
        if entry is None:
            raise RuntimeError(f"Registry entry for {identity.module_id} vanished")
        return entry

    def _update(self, module_id: str, **values: Any) -> bool:
        values["updated_at"] = _utcnow()
        with self.engine.begin() as conn:
            result = conn.execute(
                sa.update(self.entries)
                .where(self.entries.c.module_id == module_id)
                .values(**values)
            )
            updated = result.rowcount > 0
        return updated

    def set_status(self, module_id: str, status: RegistryStatus) -> bool:
        updated = self._update(module_id, status=status.value)
        if updated:
            logger.info("registry.status_changed", module_id=module_id, status=status.value)
        return updated

    def mark_migrating(self, module_id: str) -> Optional[RegistryStatus]:
        """Mark an existing entry ``migrating``; return its previous status."""
        entry = self.lookup(module_id)
        if entry is None:
            return None
        self.set_status(module_id, RegistryStatus.MIGRATING)
        return entry.status

    def record_error(self, module_id: str, message: str) -> bool:
        return self._update(module_id, last_error=message[:ERROR_MAX_LENGTH])

    def deprecate(self, module_id: str) -> bool:
        return self.set_status(module_id, RegistryStatus.DEPRECATED)

    def delete(self, module_id: str) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(
                sa.delete(self.entries).where(self.entries.c.module_id == module_id)
            )
            deleted = result.rowcount > 0
        if deleted:
            logger.info("registry.deleted", module_id=module_id)
        return deleted

    # -- locking -----------------------------------------------------------

    def _try_acquire(self, module_id: str, token: str) -> bool:
        try:
            with self.engine.begin() as conn:
                conn.execute(
                    sa.insert(self.locks).values(
                        module_id=module_id, holder=token, acquired_at=_utcnow()
                    )
                )
        except IntegrityError:
            return False
        return True

    def _take_over_stale(self, module_id: str, token: str) -> bool:
        now = _utcnow()
        cutoff = now - timedelta(seconds=self.lock_stale_after)
        with self.engine.begin() as conn:
            result = conn.execute(
                sa.update(self.locks)
                .where(self.locks.c.module_id == module_id)
                .where(self.locks.c.acquired_at < cutoff)
                .values(holder=token, acquired_at=now)
            )
            taken = result.rowcount > 0
        if taken:
            logger.warning("registry.stale_lock_taken_over", module_id=module_id)
            return True
        return False

    def _release(self, module_id: str, token: str) -> None:
        with self.engine.begin() as conn:
            conn.execute(
                sa.delete(self.locks)
                .where(self.locks.c.module_id == module_id)
                .where(self.locks.c.holder == token)
            )

    def is_locked(self, module_id: str) -> bool:
        with self.engine.connect() as conn:
            row = conn.execute(
                sa.select(self.locks.c.module_id).where(
                    self.locks.c.module_id == module_id
                )
            ).fetchone()
        return row is not None

    @contextmanager
    def module_lock(
        self, module_id: str, wait_timeout: Optional[float] = None
    ) -> Iterator[str]:
        """
        Hold the module's provisioning lock for the duration of the block.

        Waits up to ``wait_timeout`` seconds (settings default when None) for
        a concurrent holder to finish, then gives up.

        Raises:
            ProvisionInProgress: If the lock could not be acquired in time
        """
        timeout = self.default_wait_timeout if wait_timeout is None else wait_timeout
        token = uuid.uuid4().hex
        started = time.monotonic()

        while not (
            self._try_acquire(module_id, token)
            or self._take_over_stale(module_id, token)
        ):
            waited = time.monotonic() - started
            if waited >= timeout:
                logger.info(
                    "registry.lock_busy", module_id=module_id, waited_seconds=waited
                )
                raise ProvisionInProgress(module_id, waited_seconds=round(waited, 3))
            time.sleep(min(self.lock_poll_interval, max(timeout - waited, 0.0)))

        logger.debug("registry.lock_acquired", module_id=module_id)
        try:
            yield token
        finally:
            self._release(module_id, token)
            logger.debug("registry.lock_released", module_id=module_id)

    def force_unlock(self, module_id: str) -> bool:
        """Remove a module's lock regardless of holder (operator recovery)."""
        with self.engine.begin() as conn:
            result = conn.execute(
                sa.delete(self.locks).where(self.locks.c.module_id == module_id)
            )
            released = result.rowcount > 0
        logger.warning("registry.force_unlocked", module_id=module_id, released=released)
        return released


__all__ = ["ModuleRegistry", "build_registry_metadata", "REGISTRY_TABLE", "LOCKS_TABLE"]
