"""
Controllers - Schema and SchemaVersion reconcilers and the runtime driving them.
"""

from .common import ReconcileResult, Reconciler, resolve_registry_instance
from .schema_controller import SchemaReconciler, SCHEMA_DEPLOYED_SUCCESS
from .schemaversion_controller import SchemaVersionReconciler
from .manager import Controller, ControllerManager, WorkQueue

__all__ = [
    "ReconcileResult",
    "Reconciler",
    "resolve_registry_instance",
    "SchemaReconciler",
    "SCHEMA_DEPLOYED_SUCCESS",
    "SchemaVersionReconciler",
    "Controller",
    "ControllerManager",
    "WorkQueue",
]
