"""
SchemaVersion Controller - version-history activation and registry cleanup.

A new SchemaVersion becomes the active one unless a later version of the
same subject already exists; activating deactivates every other live
version of that subject. When a SchemaVersion goes away, the matching
registry version is soft deleted and then permanently deleted.
"""

from typing import List, Optional

from sroperator.core import get_logger
from sroperator.core.config import OperatorSettings, get_settings
from sroperator.exceptions import (
    AssociationException,
    InvalidSchemaVersionModificationError,
    RegistryNotFoundError,
    RegistryTransientError,
    ResourceNotFoundError,
    SchemaVersionSoftDeletedError,
)
from sroperator.models import (
    FINALIZER,
    INSTANCE_LABEL,
    SCHEMA_VERSION_KIND,
    SUBJECT_LABEL,
    SchemaVersion,
    SchemaVersionStatus,
    sanitize_label_value,
)
from sroperator.services.registry_client import RegistryClientFactory, SchemaRegistryClient
from sroperator.services.store import Manifest, ResourceStore
from .common import (
    ReconcileResult,
    Reconciler,
    default_client_factory,
    registry_endpoint,
    remove_finalizer,
    resolve_registry_instance,
    write_status,
)

logger = get_logger(__name__)


class SchemaVersionReconciler(Reconciler):
    """Reconciler for SchemaVersion objects"""

    controller_name = "schemaversion"
    resource = SCHEMA_VERSION_KIND

    def __init__(
        self,
        store: ResourceStore,
        settings: Optional[OperatorSettings] = None,
        client_factory: Optional[RegistryClientFactory] = None,
    ):
        self.store = store
        self.settings = settings or get_settings()
        self.client_factory = client_factory or default_client_factory(self.settings)

    async def reconcile(
        self,
        namespace: str,
        name: str,
        tombstone: Optional[Manifest] = None,
    ) -> ReconcileResult:
        try:
            manifest = await self.store.get(SCHEMA_VERSION_KIND, namespace, name)
        except ResourceNotFoundError:
            if tombstone is None:
                logger.debug("SchemaVersion not found, ignoring since object must be deleted")
                return ReconcileResult.done()
            version = SchemaVersion.from_dict(tombstone)
            if version.metadata.is_deleting:
                # Removed through the finalizer; cleanup already ran
                return ReconcileResult.done()
            return await self._delete_from_registry(version, manifest=None)

        version = SchemaVersion.from_dict(manifest)

        if version.metadata.is_deleting:
            if not version.metadata.has_finalizer(FINALIZER):
                return ReconcileResult.done()
            return await self._delete_from_registry(version, manifest=manifest)

        if version.status.ready:
            return ReconcileResult.done()

        return await self._activate(manifest, version)

    # ============================================
    # Activation
    # ============================================

    async def _activate(self, manifest: Manifest, version: SchemaVersion) -> ReconcileResult:
        previous = version.previous_version

        if previous is None:
            error = InvalidSchemaVersionModificationError(version.metadata.namespace, version.metadata.name)
            logger.error(
                "Previous version annotation missing",
                error_code=error.error_code,
                error=error.message,
            )
            await self._set_status(manifest, active=True, message=error.message)
            return ReconcileResult.done()

        siblings = await self._siblings(version)
        newer = [s.spec.version for s in siblings if s.spec.version > version.spec.version]
        if newer:
            # A later version exists; this one only enters the history
            await self._set_status(manifest, active=False)
            logger.info(
                "SchemaVersion superseded",
                subject=version.spec.subject,
                version=version.spec.version,
                latest_version=max(newer),
            )
            return ReconcileResult.done()

        for sibling in siblings:
            if sibling.spec.version != version.spec.version:
                await self._deactivate(sibling)

        if previous > 0 and previous != version.spec.version:
            if not any(s.spec.version == previous for s in siblings):
                await self._deactivate_by_name(version, previous)

        await self._set_status(manifest, active=True)
        logger.info(
            "SchemaVersion activated",
            subject=version.spec.subject,
            version=version.spec.version,
            previous_version=previous,
        )
        return ReconcileResult.done()

    async def _siblings(self, version: SchemaVersion) -> List[SchemaVersion]:
        """Other live SchemaVersions of the same subject on the same instance"""
        selector = {SUBJECT_LABEL: sanitize_label_value(version.spec.subject)}
        if version.instance:
            selector[INSTANCE_LABEL] = version.instance

        items = await self.store.list(
            SCHEMA_VERSION_KIND,
            namespace=version.metadata.namespace,
            label_selector=selector,
        )
        siblings = []
        for item in items:
            other = SchemaVersion.from_dict(item)
            if other.metadata.name == version.metadata.name or other.metadata.is_deleting:
                continue
            if other.spec.subject != version.spec.subject:
                continue
            siblings.append(other)
        return siblings

    async def _deactivate(self, sibling: SchemaVersion) -> None:
        if sibling.status.ready and not sibling.status.active:
            return

        await self._set_status(sibling.to_dict(), active=False, message=sibling.status.message)
        logger.info("SchemaVersion deactivated", schema_version=sibling.metadata.name)

    async def _deactivate_by_name(self, version: SchemaVersion, previous: int) -> None:
        sibling_name = version.sibling_name(previous)
        try:
            manifest = await self.store.get(SCHEMA_VERSION_KIND, version.metadata.namespace, sibling_name)
        except ResourceNotFoundError:
            logger.warning("Previous SchemaVersion not found", schema_version=sibling_name)
            return
        await self._deactivate(SchemaVersion.from_dict(manifest))

    async def _set_status(self, manifest: Manifest, active: bool, message: str = "") -> Manifest:
        status = SchemaVersionStatus(ready=True, active=active, message=message)
        return await write_status(self.store, SCHEMA_VERSION_KIND, manifest, status.to_dict())

    # ============================================
    # Deletion
    # ============================================

    async def _delete_from_registry(
        self,
        version: SchemaVersion,
        manifest: Optional[Manifest],
    ) -> ReconcileResult:
        """Soft then permanent delete of (subject, version); finalizer released afterwards"""
        subject = version.spec.subject
        number = version.spec.version

        try:
            instance = await resolve_registry_instance(
                self.store, version.metadata.namespace, version.metadata.labels, version.metadata.name
            )
        except AssociationException as e:
            logger.warning(
                "Registry instance unresolvable, skipping registry cleanup",
                subject=subject,
                version=number,
                error=e.message,
            )
            if manifest is not None:
                await remove_finalizer(self.store, SCHEMA_VERSION_KIND, manifest)
            return ReconcileResult.done()

        try:
            async with self.client_factory(registry_endpoint(instance, self.settings)) as registry:
                await self._delete_version(registry, subject, number, permanent=False)
                await self._delete_version(registry, subject, number, permanent=True)
        except RegistryTransientError as e:
            logger.error("Failed to delete schema version", subject=subject, version=number, error=e.message)
            return ReconcileResult.after(self.settings.error_requeue_seconds)

        logger.info("Schema version deleted from registry", subject=subject, version=number)

        if manifest is not None:
            await remove_finalizer(self.store, SCHEMA_VERSION_KIND, manifest)
        return ReconcileResult.done()

    @staticmethod
    async def _delete_version(
        registry: SchemaRegistryClient,
        subject: str,
        number: int,
        permanent: bool,
    ) -> None:
        try:
            await registry.delete_version(subject, number, permanent=permanent)
        except (RegistryNotFoundError, SchemaVersionSoftDeletedError) as e:
            logger.debug(
                "Schema version already removed",
                subject=subject,
                version=number,
                permanent=permanent,
                error_code=e.registry_error_code,
            )
