"""
Exception hierarchy for module database provisioning.

Every error carries the module it concerns plus structured context, and can be
converted to a dict for structured logging. Validation failures are raised
before any database access; execution failures are raised after rollback.
"""

from typing import Any, Dict, List, Optional


class ProvisioningError(Exception):
    """Base exception for all provisioning-related errors."""

    retryable = False

    def __init__(self, message: str, module_id: Optional[str] = None, **context: Any):
        self.message = message
        self.module_id = module_id
        self.context = context

        # Build contextual error message
        context_parts = []
        if module_id:
            context_parts.append(f"module='{module_id}'")
        context_parts.extend(
            f"{key}='{value}'" for key, value in context.items() if value is not None
        )

        if context_parts:
            full_message = f"{message} ({', '.join(context_parts)})"
        else:
            full_message = message

        super().__init__(full_message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to structured dict for logging."""
        data: Dict[str, Any] = {
            "error_type": type(self).__name__,
            "message": self.message,
            "module_id": self.module_id,
            "retryable": self.retryable,
        }
        data.update({k: v for k, v in self.context.items() if v is not None})
        return data


class ValidationFailure(ProvisioningError):
    """Base for caller-correctable errors detected before any DDL runs."""

    pass


class InvalidName(ValidationFailure):
    """A logical or realized name is empty, malformed or too long."""

    def __init__(self, name: str, reason: str, module_id: Optional[str] = None):
        self.name = name
        self.reason = reason
        super().__init__(f"Invalid name: {reason}", module_id=module_id, name=name)


class ReservedNameConflict(ValidationFailure):
    """A declared name collides with a platform-reserved name."""

    def __init__(
        self,
        name: str,
        module_id: Optional[str] = None,
        category: Optional[str] = None,
        reason: Optional[str] = None,
    ):
        self.name = name
        self.category = category
        self.reason = reason
        super().__init__(
            f"Table name '{name}' is reserved by the platform",
            module_id=module_id,
            category=category,
            reason=reason,
        )


class InvalidManifest(ValidationFailure):
    """The declared data model is structurally inconsistent."""

    def __init__(
        self, message: str, module_id: Optional[str] = None, table: Optional[str] = None
    ):
        self.table = table
        super().__init__(message, module_id=module_id, table=table)


class UnknownReference(ValidationFailure):
    """A foreign key points at a table that is not declared or not reachable."""

    def __init__(
        self,
        message: str,
        module_id: Optional[str] = None,
        table: Optional[str] = None,
        ref_table: Optional[str] = None,
    ):
        self.table = table
        self.ref_table = ref_table
        super().__init__(message, module_id=module_id, table=table, ref_table=ref_table)


class ShortIdCollision(ValidationFailure):
    """The derived ShortID is already bound to a different module."""

    def __init__(self, short_id: str, module_id: str, owner_module_id: str):
        self.short_id = short_id
        self.owner_module_id = owner_module_id
        super().__init__(
            f"Short id '{short_id}' is already owned by module '{owner_module_id}'",
            module_id=module_id,
            short_id=short_id,
        )


class ModuleOwnershipConflict(ValidationFailure):
    """The module id is registered to a different publisher or ShortID."""

    def __init__(
        self,
        module_id: str,
        publisher_id: str,
        owner_publisher_id: str,
        short_id: Optional[str] = None,
    ):
        self.publisher_id = publisher_id
        self.owner_publisher_id = owner_publisher_id
        super().__init__(
            f"Module is registered to publisher '{owner_publisher_id}'",
            module_id=module_id,
            publisher_id=publisher_id,
            short_id=short_id,
        )

class ForbiddenOperation(ProvisioningError):
    """A statement was refused by the DDL guard. Always fatal."""

    def __init__(self, message: str, module_id: Optional[str] = None, **context: Any):
        super().__init__(message, module_id=module_id, **context)


class MigrationRequired(ProvisioningError):
    """An existing table's live shape differs from its declaration."""

    def __init__(self, table: str, differences: List[str], module_id: Optional[str] = None):
        self.table = table
        self.differences = list(differences)
        super().__init__(
            f"Table '{table}' exists with a different shape: {'; '.join(differences)}",
            module_id=module_id,
            table=table,
        )


class ProvisionInProgress(ProvisioningError):
    """Another provision or deprovision holds the module's lock."""

    retryable = True

    def __init__(self, module_id: str, waited_seconds: Optional[float] = None):
        self.waited_seconds = waited_seconds
        super().__init__(
            "Another provisioning operation is in progress",
            module_id=module_id,
            waited_seconds=waited_seconds,
        )


class PartialFailure(ProvisioningError):
    """A statement failed mid-sequence; rollback was attempted.

    ``rollback_errors`` lists every secondary failure raised while running the
    compensating operations. When it is non-empty manual cleanup is required.
    """

    def __init__(
        self,
        original_error: BaseException,
        rollback_errors: Optional[List[BaseException]] = None,
        module_id: Optional[str] = None,
        step: Optional[str] = None,
    ):
        self.original_error = original_error
        self.rollback_errors = list(rollback_errors or [])
        self.step = step
        super().__init__(
            f"Provisioning failed: {original_error}",
            module_id=module_id,
            step=step,
        )

    @property
    def requires_manual_cleanup(self) -> bool:
        return bool(self.rollback_errors)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["original_error_type"] = type(self.original_error).__name__
        data["original_error_message"] = str(self.original_error)
        data["rollback_errors"] = [str(e) for e in self.rollback_errors]
        return data


class ModuleNotRegistered(ProvisioningError):
    """No registry entry exists for the module."""

    def __init__(self, module_id: str):
        super().__init__("Module is not registered", module_id=module_id)


class DependentModules(ProvisioningError):
    """Other registered modules hold foreign keys into this module's tables."""

    def __init__(self, module_id: str, dependents: List[str]):
        self.dependents = list(dependents)
        super().__init__(
            "Module is referenced by other modules; deprovision them first",
            module_id=module_id,
            dependents=", ".join(self.dependents),
        )


class TenantScopeViolation(ProvisioningError):
    """A data access touched a tenant outside the caller's authorized set."""

    def __init__(
        self, message: str, module_id: Optional[str] = None, table: Optional[str] = None
    ):
        self.table = table
        super().__init__(message, module_id=module_id, table=table)


__all__ = [
    "ProvisioningError",
    "ValidationFailure",
    "InvalidName",
    "ReservedNameConflict",
    "InvalidManifest",
    "UnknownReference",
    "ShortIdCollision",
    "ModuleOwnershipConflict",
    "ForbiddenOperation",
    "MigrationRequired",
    "ProvisionInProgress",
    "PartialFailure",
    "ModuleNotRegistered",
    "DependentModules",
    "TenantScopeViolation",
]
