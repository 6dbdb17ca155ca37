"""
Resource Store - abstract interface over the declarative object store.

The reconcilers only talk to this interface. Objects are plain manifests
(camelCase dictionaries with metadata/spec/status), exactly as the cluster API
returns them, so the Kubernetes adapter can pass them through untouched and
the in-memory store can be used in tests.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

from sroperator.models import ResourceKind

Manifest = Dict[str, Any]


class WatchEventType(str, Enum):
    """Watch event types"""
    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"


@dataclass
class WatchEvent:
    """
    One change notification.

    For DELETED events, object holds the last known state of the removed
    object (the tombstone).
    """
    type: WatchEventType
    kind: ResourceKind
    object: Manifest

    @property
    def key(self) -> Tuple[str, str]:
        metadata = self.object.get("metadata") or {}
        return metadata.get("namespace") or "default", metadata.get("name", "")


def matches_labels(manifest: Manifest, label_selector: Optional[Dict[str, str]]) -> bool:
    """Equality-based label selector match"""
    if not label_selector:
        return True
    labels = (manifest.get("metadata") or {}).get("labels") or {}
    return all(labels.get(k) == v for k, v in label_selector.items())


def format_label_selector(label_selector: Optional[Dict[str, str]]) -> Optional[str]:
    """Render a selector dict as the 'k=v,k2=v2' query form"""
    if not label_selector:
        return None
    return ",".join(f"{k}={v}" for k, v in sorted(label_selector.items()))


class ResourceStore(ABC):
    """
    Declarative object store.

    Semantics every implementation honours:
    - update/update_status reject a stale metadata.resourceVersion with
      ResourceConflictError
    - update replaces metadata and spec, update_status replaces status only
    - delete of an object with finalizers only sets metadata.deletionTimestamp;
      the object disappears once an update leaves its finalizer list empty
    - removing an object deletes its dependents (ownerReferences by uid)
    - watch starts with a synthetic ADDED event per existing object
    """

    @abstractmethod
    async def get(self, kind: ResourceKind, namespace: str, name: str) -> Manifest:
        """
        Fetch one object.

        Raises:
            ResourceNotFoundError: object does not exist
        """

    @abstractmethod
    async def list(
        self,
        kind: ResourceKind,
        namespace: Optional[str] = None,
        label_selector: Optional[Dict[str, str]] = None,
    ) -> List[Manifest]:
        """List objects, optionally in one namespace and filtered by labels"""

    @abstractmethod
    async def create(self, kind: ResourceKind, manifest: Manifest) -> Manifest:
        """
        Create an object.

        Raises:
            ResourceAlreadyExistsError: name already taken in the namespace
        """

    @abstractmethod
    async def update(self, kind: ResourceKind, manifest: Manifest) -> Manifest:
        """
        Replace metadata and spec of an existing object.

        Raises:
            ResourceNotFoundError, ResourceConflictError
        """

    @abstractmethod
    async def update_status(self, kind: ResourceKind, manifest: Manifest) -> Manifest:
        """
        Replace the status of an existing object.

        Raises:
            ResourceNotFoundError, ResourceConflictError
        """

    @abstractmethod
    async def delete(self, kind: ResourceKind, namespace: str, name: str) -> None:
        """
        Request deletion of an object.

        Raises:
            ResourceNotFoundError: object does not exist
        """

    @abstractmethod
    def watch(self, kind: ResourceKind, namespace: Optional[str] = None) -> AsyncIterator[WatchEvent]:
        """
        Stream change events for kind.

        The stream may end (server timeout); callers re-open it.

        Raises:
            StoreUnavailableError: stream broke
        """

    async def ping(self) -> None:
        """Raise StoreUnavailableError when the store cannot be reached"""

    async def close(self) -> None:
        """Release connections"""
