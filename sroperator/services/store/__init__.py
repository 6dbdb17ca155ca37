"""
Resource Store - where Schema / SchemaVersion / SchemaRegistry objects live

Usage:
    from sroperator.services.store import create_store

    store = await create_store(settings)
    manifest = await store.get(SCHEMA_KIND, "default", "orders")
"""

from sroperator.core.config import OperatorSettings
from .base import (
    Manifest,
    ResourceStore,
    WatchEvent,
    WatchEventType,
    matches_labels,
    format_label_selector,
)
from .memory import InMemoryStore


async def create_store(settings: OperatorSettings) -> ResourceStore:
    """Build the store selected by STORE_BACKEND"""
    if settings.store_backend == "memory":
        return InMemoryStore()

    from .kubernetes import KubernetesStore
    return await KubernetesStore.connect(settings.kubeconfig)


__all__ = [
    "Manifest",
    "ResourceStore",
    "WatchEvent",
    "WatchEventType",
    "InMemoryStore",
    "create_store",
    "matches_labels",
    "format_label_selector",
]
