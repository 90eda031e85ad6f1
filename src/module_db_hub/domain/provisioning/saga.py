"""Compensating actions for multi-step provisioning."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, List, Tuple

from module_db_hub.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class Compensation:
    description: str
    action: Callable[[], None]


class CompensationStack:
    """
    Stack of inverse operations, one per successful forward step.

    ``unwind`` runs them newest first. A failing inverse does not stop the
    unwind; its error is collected and returned so the caller can report that
    manual cleanup is needed.
    """

    def __init__(self) -> None:
        self._items: List[Compensation] = []

    def push(self, description: str, action: Callable[[], None]) -> None:
        self._items.append(Compensation(description, action))

    def __len__(self) -> int:
        return len(self._items)

    @property
    def descriptions(self) -> List[str]:
        return [item.description for item in self._items]

    def unwind(self) -> List[Tuple[str, Exception]]:
        errors: List[Tuple[str, Exception]] = []
        while self._items:
            item = self._items.pop()
            try:
                item.action()
                logger.info("rollback.step_completed", step=item.description)
            except Exception as e:
                logger.error(
                    "rollback.step_failed",
                    step=item.description,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                errors.append((item.description, e))
        return errors

    def clear(self) -> None:
        self._items.clear()


__all__ = ["Compensation", "CompensationStack"]
