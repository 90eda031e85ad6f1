"""Shared utilities."""

from .logging import (
    bind_context,
    bind_module,
    clear_module,
    configure_logging,
    get_logger,
    mask_dsn,
    sanitize_for_logging,
)

__all__ = [
    "bind_context",
    "bind_module",
    "clear_module",
    "configure_logging",
    "get_logger",
    "mask_dsn",
    "sanitize_for_logging",
]
