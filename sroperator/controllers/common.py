"""
Shared reconcile building blocks.

Reconcile results, registry instance lookup, and the small metadata/status
write helpers both reconcilers use. All writes go through the resource store
with the manifest's resourceVersion, so a concurrent writer surfaces as
ResourceConflictError and the whole reconcile is retried.
"""

import copy
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional

from sroperator.core import get_logger
from sroperator.core.config import OperatorSettings
from sroperator.exceptions import (
    InstanceLabelNotFoundError,
    InstanceNotFoundError,
    ResourceNotFoundError,
)
from sroperator.models import (
    FINALIZER,
    INSTANCE_LABEL,
    SCHEMA_REGISTRY_KIND,
    ResourceKind,
    SchemaRegistryInstance,
)
from sroperator.services.registry_client import RegistryClientFactory, SchemaRegistryClient
from sroperator.services.store import Manifest, ResourceStore

logger = get_logger(__name__)


@dataclass
class ReconcileResult:
    """Outcome of one reconcile: done, or run again after requeue_after seconds"""
    requeue_after: Optional[float] = None

    @classmethod
    def done(cls) -> "ReconcileResult":
        return cls()

    @classmethod
    def after(cls, seconds: float) -> "ReconcileResult":
        return cls(requeue_after=float(seconds))

    @property
    def requeue(self) -> bool:
        return self.requeue_after is not None


class Reconciler(ABC):
    """One controller's reconcile loop body"""

    controller_name: str = ""
    resource: ResourceKind

    @abstractmethod
    async def reconcile(
        self,
        namespace: str,
        name: str,
        tombstone: Optional[Manifest] = None,
    ) -> ReconcileResult:
        """
        Converge one object.

        Args:
            namespace, name: object key
            tombstone: last known state when the object was already removed

        Returns:
            ReconcileResult; raising means "retry with backoff"
        """
        pass


def default_client_factory(settings: OperatorSettings) -> RegistryClientFactory:
    """Registry clients with the configured timeout"""
    def factory(endpoint: str) -> SchemaRegistryClient:
        return SchemaRegistryClient(endpoint, timeout=settings.registry_timeout_seconds)
    return factory


async def resolve_registry_instance(
    store: ResourceStore,
    namespace: str,
    labels: Dict[str, str],
    name: str = "",
) -> SchemaRegistryInstance:
    """
    Find the SchemaRegistry an object is associated with.

    Raises:
        InstanceLabelNotFoundError: no instance label on the object
        InstanceNotFoundError: label names an unknown SchemaRegistry
    """
    instance = labels.get(INSTANCE_LABEL)
    if not instance:
        raise InstanceLabelNotFoundError(INSTANCE_LABEL, namespace, name)

    try:
        manifest = await store.get(SCHEMA_REGISTRY_KIND, namespace, instance)
    except ResourceNotFoundError:
        raise InstanceNotFoundError(instance, namespace)
    return SchemaRegistryInstance.from_dict(manifest)


def registry_endpoint(instance: SchemaRegistryInstance, settings: OperatorSettings) -> str:
    return instance.endpoint(settings.registry_url_template, settings.registry_service_port)


# ============================================
# Metadata writes
# ============================================

async def ensure_finalizer(store: ResourceStore, kind: ResourceKind, manifest: Manifest) -> Manifest:
    """Add the operator finalizer if missing; returns the stored manifest"""
    finalizers = manifest.get("metadata", {}).get("finalizers") or []
    if FINALIZER in finalizers:
        return manifest

    body = copy.deepcopy(manifest)
    body["metadata"]["finalizers"] = list(finalizers) + [FINALIZER]
    logger.debug("Adding finalizer", kind=kind.kind)
    return await store.update(kind, body)


async def remove_finalizer(store: ResourceStore, kind: ResourceKind, manifest: Manifest) -> None:
    """Drop the operator finalizer, letting a pending deletion complete"""
    finalizers = manifest.get("metadata", {}).get("finalizers") or []
    if FINALIZER not in finalizers:
        return

    body = copy.deepcopy(manifest)
    body["metadata"]["finalizers"] = [f for f in finalizers if f != FINALIZER]
    try:
        await store.update(kind, body)
    except ResourceNotFoundError:
        # Already gone
        return
    logger.debug("Finalizer removed", kind=kind.kind)


async def set_labels(
    store: ResourceStore,
    kind: ResourceKind,
    manifest: Manifest,
    labels: Dict[str, str],
) -> Manifest:
    """Merge labels into the object; no write when nothing changes"""
    current = manifest.get("metadata", {}).get("labels") or {}
    if all(current.get(k) == v for k, v in labels.items()):
        return manifest

    body = copy.deepcopy(manifest)
    body["metadata"]["labels"] = {**current, **labels}
    return await store.update(kind, body)


async def write_status(
    store: ResourceStore,
    kind: ResourceKind,
    manifest: Manifest,
    status: Dict[str, Any],
) -> Manifest:
    """Replace the status subresource; no write when it is unchanged"""
    if manifest.get("status") == status:
        return manifest

    body = copy.deepcopy(manifest)
    body["status"] = status
    return await store.update_status(kind, body)
