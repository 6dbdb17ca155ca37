"""Core module for logging, reconcile context, settings and startup checks."""

from .logging_config import configure_logging, get_controller_logger, get_logger
from .context import reconcile_context, get_reconcile_id, bind_context, unbind_context
from .config import OperatorSettings, get_settings, reset_settings

__all__ = [
    "configure_logging",
    "get_logger",
    "get_controller_logger",
    "reconcile_context",
    "get_reconcile_id",
    "bind_context",
    "unbind_context",
    "OperatorSettings",
    "get_settings",
    "reset_settings",
]
