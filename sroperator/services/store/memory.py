"""
In-memory resource store.

Implements the full ResourceStore contract (optimistic concurrency,
finalizers, owner cascade, watch streams) inside one process. Used by the
test-suite and by STORE_BACKEND=memory for local runs without a cluster.
"""

import asyncio
import copy
import itertools
import uuid
from typing import AsyncIterator, Dict, List, Optional, Set, Tuple

from sroperator.core import get_logger
from sroperator.exceptions import (
    ResourceAlreadyExistsError,
    ResourceConflictError,
    ResourceNotFoundError,
)
from sroperator.models import ResourceKind, utcnow_iso
from .base import Manifest, ResourceStore, WatchEvent, WatchEventType, matches_labels

logger = get_logger(__name__)

_ObjectKey = Tuple[str, str, str]  # (plural, namespace, name)


class InMemoryStore(ResourceStore):
    """
    Dictionary backed store.

    Example:
        store = InMemoryStore()
        await store.create(SCHEMA_KIND, schema.to_dict())
        async for event in store.watch(SCHEMA_KIND):
            ...
    """

    def __init__(self):
        self._objects: Dict[_ObjectKey, Manifest] = {}
        self._kinds: Dict[str, ResourceKind] = {}
        self._watchers: Dict[str, Set[asyncio.Queue]] = {}
        self._versions = itertools.count(1)
        self._lock = asyncio.Lock()

    # ============================================
    # Reads
    # ============================================

    async def get(self, kind: ResourceKind, namespace: str, name: str) -> Manifest:
        obj = self._objects.get((kind.plural, namespace, name))
        if obj is None:
            raise ResourceNotFoundError(kind.kind, namespace, name)
        return copy.deepcopy(obj)

    async def list(
        self,
        kind: ResourceKind,
        namespace: Optional[str] = None,
        label_selector: Optional[Dict[str, str]] = None,
    ) -> List[Manifest]:
        result = []
        for (plural, ns, _), obj in sorted(self._objects.items()):
            if plural != kind.plural:
                continue
            if namespace and ns != namespace:
                continue
            if not matches_labels(obj, label_selector):
                continue
            result.append(copy.deepcopy(obj))
        return result

    # ============================================
    # Writes
    # ============================================

    async def create(self, kind: ResourceKind, manifest: Manifest) -> Manifest:
        async with self._lock:
            obj = copy.deepcopy(manifest)
            metadata = obj.setdefault("metadata", {})
            namespace = metadata.get("namespace") or "default"
            name = metadata.get("name", "")
            key = (kind.plural, namespace, name)

            if key in self._objects:
                raise ResourceAlreadyExistsError(kind.kind, namespace, name)

            obj["apiVersion"] = kind.api_version
            obj["kind"] = kind.kind
            metadata["namespace"] = namespace
            metadata["uid"] = str(uuid.uuid4())
            metadata["creationTimestamp"] = utcnow_iso()
            metadata["generation"] = 1
            metadata["resourceVersion"] = self._next_version()
            metadata.pop("deletionTimestamp", None)
            obj.setdefault("status", {})

            self._kinds[kind.plural] = kind
            self._objects[key] = obj
            self._emit(kind, WatchEventType.ADDED, obj)
            return copy.deepcopy(obj)

    async def update(self, kind: ResourceKind, manifest: Manifest) -> Manifest:
        async with self._lock:
            current = self._checked_current(kind, manifest)
            incoming = manifest.get("metadata") or {}
            metadata = current["metadata"]

            for field_name in ("labels", "annotations", "finalizers", "ownerReferences"):
                if field_name in incoming:
                    metadata[field_name] = copy.deepcopy(incoming[field_name])

            if "spec" in manifest and manifest["spec"] != current.get("spec"):
                current["spec"] = copy.deepcopy(manifest["spec"])
                metadata["generation"] = int(metadata.get("generation") or 0) + 1

            metadata["resourceVersion"] = self._next_version()

            if metadata.get("deletionTimestamp") and not metadata.get("finalizers"):
                await self._remove(kind, current)
            else:
                self._emit(kind, WatchEventType.MODIFIED, current)
            return copy.deepcopy(current)

    async def update_status(self, kind: ResourceKind, manifest: Manifest) -> Manifest:
        async with self._lock:
            current = self._checked_current(kind, manifest)
            current["status"] = copy.deepcopy(manifest.get("status") or {})
            current["metadata"]["resourceVersion"] = self._next_version()
            self._emit(kind, WatchEventType.MODIFIED, current)
            return copy.deepcopy(current)

    async def delete(self, kind: ResourceKind, namespace: str, name: str) -> None:
        async with self._lock:
            obj = self._objects.get((kind.plural, namespace, name))
            if obj is None:
                raise ResourceNotFoundError(kind.kind, namespace, name)
            await self._delete_object(kind, obj)

    # ============================================
    # Watch
    # ============================================

    async def watch(self, kind: ResourceKind, namespace: Optional[str] = None) -> AsyncIterator[WatchEvent]:
        queue: asyncio.Queue = asyncio.Queue()
        self._kinds.setdefault(kind.plural, kind)
        self._watchers.setdefault(kind.plural, set()).add(queue)

        # Snapshot and subscription happen without a suspension point in between
        for obj in await self.list(kind, namespace):
            queue.put_nowait(WatchEvent(WatchEventType.ADDED, kind, obj))

        try:
            while True:
                event = await queue.get()
                if namespace and event.key[0] != namespace:
                    continue
                yield event
        finally:
            self._watchers.get(kind.plural, set()).discard(queue)

    async def ping(self) -> None:
        return None

    async def close(self) -> None:
        self._watchers.clear()

    # ============================================
    # Internals
    # ============================================

    def _next_version(self) -> str:
        return str(next(self._versions))

    def _checked_current(self, kind: ResourceKind, manifest: Manifest) -> Manifest:
        metadata = manifest.get("metadata") or {}
        namespace = metadata.get("namespace") or "default"
        name = metadata.get("name", "")
        current = self._objects.get((kind.plural, namespace, name))
        if current is None:
            raise ResourceNotFoundError(kind.kind, namespace, name)

        expected = metadata.get("resourceVersion")
        if expected and str(expected) != current["metadata"]["resourceVersion"]:
            raise ResourceConflictError(
                kind.kind, namespace, name,
                reason=f"resourceVersion {expected} is stale",
            )
        return current

    async def _delete_object(self, kind: ResourceKind, obj: Manifest) -> None:
        metadata = obj["metadata"]
        if metadata.get("finalizers"):
            if not metadata.get("deletionTimestamp"):
                metadata["deletionTimestamp"] = utcnow_iso()
                metadata["resourceVersion"] = self._next_version()
                self._emit(kind, WatchEventType.MODIFIED, obj)
            return
        await self._remove(kind, obj)

    async def _remove(self, kind: ResourceKind, obj: Manifest) -> None:
        metadata = obj["metadata"]
        self._objects.pop((kind.plural, metadata["namespace"], metadata["name"]), None)
        self._emit(kind, WatchEventType.DELETED, obj)
        logger.debug("Object removed", kind=kind.kind, namespace=metadata["namespace"], name=metadata["name"])

        # Garbage collect dependents
        uid = metadata.get("uid")
        dependents = [
            (self._kinds[plural], child)
            for (plural, _, _), child in list(self._objects.items())
            if any(ref.get("uid") == uid for ref in child["metadata"].get("ownerReferences") or [])
        ]
        for child_kind, child in dependents:
            await self._delete_object(child_kind, child)

    def _emit(self, kind: ResourceKind, event_type: WatchEventType, obj: Manifest) -> None:
        for queue in list(self._watchers.get(kind.plural, ())):
            queue.put_nowait(WatchEvent(event_type, kind, copy.deepcopy(obj)))
