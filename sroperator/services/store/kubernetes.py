"""
Kubernetes resource store.

ResourceStore adapter over the custom objects API of a cluster, built on
kubernetes_asyncio. API errors are mapped onto the store exception taxonomy
so the reconcilers never see ApiException.
"""

from typing import AsyncIterator, Dict, List, Optional

from kubernetes_asyncio import client, config, watch
from kubernetes_asyncio.client.exceptions import ApiException

from sroperator.core import get_logger
from sroperator.exceptions import (
    ResourceAlreadyExistsError,
    ResourceConflictError,
    ResourceNotFoundError,
    StoreUnavailableError,
)
from sroperator.models import ResourceKind
from .base import Manifest, ResourceStore, WatchEvent, WatchEventType, format_label_selector

logger = get_logger(__name__)

# Server side watch timeout; the manager re-opens the stream afterwards
WATCH_TIMEOUT_SECONDS = 300


class KubernetesStore(ResourceStore):
    """
    Store backed by the Kubernetes API server.

    Example:
        store = await KubernetesStore.connect(kubeconfig=None)
        manifest = await store.get(SCHEMA_KIND, "default", "orders")
    """

    def __init__(self, api_client: client.ApiClient):
        self._api_client = api_client
        self._api = client.CustomObjectsApi(api_client)

    @classmethod
    async def connect(cls, kubeconfig: Optional[str] = None) -> "KubernetesStore":
        """Load in-cluster config, falling back to a kubeconfig file"""
        try:
            if kubeconfig:
                await config.load_kube_config(config_file=kubeconfig)
            else:
                config.load_incluster_config()
        except config.ConfigException:
            logger.info("In-cluster config not available, using kubeconfig")
            await config.load_kube_config(config_file=kubeconfig)
        return cls(client.ApiClient())

    # ============================================
    # ResourceStore
    # ============================================

    async def get(self, kind: ResourceKind, namespace: str, name: str) -> Manifest:
        try:
            return await self._api.get_namespaced_custom_object(
                kind.group, kind.version, namespace, kind.plural, name
            )
        except ApiException as e:
            raise self._map_error(e, "get", kind, namespace, name) from e

    async def list(
        self,
        kind: ResourceKind,
        namespace: Optional[str] = None,
        label_selector: Optional[Dict[str, str]] = None,
    ) -> List[Manifest]:
        kwargs = {}
        selector = format_label_selector(label_selector)
        if selector:
            kwargs["label_selector"] = selector
        try:
            if namespace:
                result = await self._api.list_namespaced_custom_object(
                    kind.group, kind.version, namespace, kind.plural, **kwargs
                )
            else:
                result = await self._api.list_cluster_custom_object(
                    kind.group, kind.version, kind.plural, **kwargs
                )
        except ApiException as e:
            raise self._map_error(e, "list", kind, namespace or "", "") from e
        return list(result.get("items") or [])

    async def create(self, kind: ResourceKind, manifest: Manifest) -> Manifest:
        namespace, name = self._identity(manifest)
        body = dict(manifest)
        body["apiVersion"] = kind.api_version
        body["kind"] = kind.kind
        # status is a subresource and ignored on create
        body.pop("status", None)
        try:
            return await self._api.create_namespaced_custom_object(
                kind.group, kind.version, namespace, kind.plural, body
            )
        except ApiException as e:
            raise self._map_error(e, "create", kind, namespace, name) from e

    async def update(self, kind: ResourceKind, manifest: Manifest) -> Manifest:
        namespace, name = self._identity(manifest)
        try:
            return await self._api.replace_namespaced_custom_object(
                kind.group, kind.version, namespace, kind.plural, name, manifest
            )
        except ApiException as e:
            raise self._map_error(e, "update", kind, namespace, name) from e

    async def update_status(self, kind: ResourceKind, manifest: Manifest) -> Manifest:
        namespace, name = self._identity(manifest)
        try:
            return await self._api.replace_namespaced_custom_object_status(
                kind.group, kind.version, namespace, kind.plural, name, manifest
            )
        except ApiException as e:
            raise self._map_error(e, "update_status", kind, namespace, name) from e

    async def delete(self, kind: ResourceKind, namespace: str, name: str) -> None:
        try:
            await self._api.delete_namespaced_custom_object(
                kind.group,
                kind.version,
                namespace,
                kind.plural,
                name,
                body=client.V1DeleteOptions(propagation_policy="Background"),
            )
        except ApiException as e:
            raise self._map_error(e, "delete", kind, namespace, name) from e

    async def watch(self, kind: ResourceKind, namespace: Optional[str] = None) -> AsyncIterator[WatchEvent]:
        if namespace:
            func = self._api.list_namespaced_custom_object
            args = (kind.group, kind.version, namespace, kind.plural)
        else:
            func = self._api.list_cluster_custom_object
            args = (kind.group, kind.version, kind.plural)

        try:
            async with watch.Watch().stream(func, *args, timeout_seconds=WATCH_TIMEOUT_SECONDS) as stream:
                async for event in stream:
                    event_type = event.get("type")
                    obj = event.get("object")
                    if event_type == "ERROR":
                        # 410 Gone and friends: the caller re-opens the stream
                        reason = obj.get("message", "watch error") if isinstance(obj, dict) else str(obj)
                        raise StoreUnavailableError("watch", reason)
                    if event_type not in WatchEventType.__members__:
                        continue
                    yield WatchEvent(WatchEventType(event_type), kind, obj)
        except ApiException as e:
            raise self._map_error(e, "watch", kind, namespace or "", "") from e

    async def ping(self) -> None:
        try:
            await client.VersionApi(self._api_client).get_code()
        except (ApiException, OSError) as e:
            raise StoreUnavailableError("ping", str(e), cause=e) from e

    async def close(self) -> None:
        await self._api_client.close()

    # ============================================
    # Helpers
    # ============================================

    @staticmethod
    def _identity(manifest: Manifest):
        metadata = manifest.get("metadata") or {}
        return metadata.get("namespace") or "default", metadata.get("name", "")

    @staticmethod
    def _map_error(e: ApiException, operation: str, kind: ResourceKind, namespace: str, name: str) -> Exception:
        if e.status == 404 and name:
            return ResourceNotFoundError(kind.kind, namespace, name)
        if e.status == 409:
            if operation == "create":
                return ResourceAlreadyExistsError(kind.kind, namespace, name)
            return ResourceConflictError(kind.kind, namespace, name, reason=e.reason or "")
        return StoreUnavailableError(operation, f"HTTP {e.status}: {e.reason}", cause=e)
