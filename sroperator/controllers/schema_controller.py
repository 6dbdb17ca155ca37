"""
Schema Controller - keeps one registry subject in sync with a Schema object.

Flow per reconcile:
    fetch -> resolve instance -> (deleting? teardown)
    -> uniqueness (first registration only) -> finalizer -> change detection
    -> register + fetch latest -> compatibility -> SchemaVersion child
    -> hash label + status

The content hash label is written only after everything else succeeded, so a
failed reconcile is always retried in full on the next pass.
"""

from typing import List, Optional

from sroperator.core import get_logger
from sroperator.core.config import OperatorSettings, get_settings
from sroperator.exceptions import (
    AssociationException,
    RegistryDomainError,
    RegistryException,
    RegistryNotFoundError,
    RegistryTransientError,
    ResourceAlreadyExistsError,
    ResourceNotFoundError,
    SubjectNotUniqueError,
)
from sroperator.models import (
    CONTENT_HASH_LABEL,
    FINALIZER,
    INSTANCE_LABEL,
    SCHEMA_KIND,
    SCHEMA_VERSION_KIND,
    Schema,
    SchemaStatus,
    SchemaVersion,
    utcnow_iso,
)
from sroperator.services.registry_client import RegisteredSchema, RegistryClientFactory, SchemaRegistryClient
from sroperator.services.store import Manifest, ResourceStore
from .common import (
    ReconcileResult,
    Reconciler,
    default_client_factory,
    ensure_finalizer,
    registry_endpoint,
    remove_finalizer,
    resolve_registry_instance,
    set_labels,
    write_status,
)

logger = get_logger(__name__)

SCHEMA_DEPLOYED_SUCCESS = "Schema deployed successfully"


class SchemaReconciler(Reconciler):
    """
    Reconciler for Schema objects.

    Args:
        store: resource store holding Schema / SchemaVersion / SchemaRegistry objects
        settings: requeue timings and registry endpoint resolution
        client_factory: builds a registry client for a resolved endpoint
    """

    controller_name = "schema"
    resource = SCHEMA_KIND

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
            manifest = await self.store.get(SCHEMA_KIND, namespace, name)
        except ResourceNotFoundError:
            logger.debug("Schema not found, ignoring since object must be deleted")
            return ReconcileResult.done()

        schema = Schema.from_dict(manifest)

        if schema.metadata.is_deleting and not schema.metadata.has_finalizer(FINALIZER):
            return ReconcileResult.done()

        try:
            instance = await resolve_registry_instance(
                self.store, namespace, schema.metadata.labels, name
            )
        except AssociationException as e:
            if schema.metadata.is_deleting:
                logger.warning(
                    "Registry instance unresolvable during deletion, releasing finalizer",
                    error=e.message,
                )
                await remove_finalizer(self.store, SCHEMA_KIND, manifest)
                return ReconcileResult.done()

            logger.warning("Schema is not associated with a registry instance", error=e.message)
            await self._update_status(manifest, schema, ready=False, message=e.message)
            return ReconcileResult.after(self.settings.instance_requeue_seconds)

        async with self.client_factory(registry_endpoint(instance, self.settings)) as registry:
            if schema.metadata.is_deleting:
                return await self._finalize(manifest, schema, registry)
            return await self._sync(manifest, schema, instance.name, registry)

    # ============================================
    # Deletion
    # ============================================

    async def _finalize(
        self,
        manifest: Manifest,
        schema: Schema,
        registry: SchemaRegistryClient,
    ) -> ReconcileResult:
        """Soft then permanent subject delete, then release the finalizer"""
        subject = schema.effective_subject
        if schema.is_first_registration():
            # Never registered: the subject, if any, belongs to another Schema
            logger.info("Schema never registered, skipping subject delete", subject=subject)
            await remove_finalizer(self.store, SCHEMA_KIND, manifest)
            return ReconcileResult.done()

        logger.info("Deleting subject from registry", subject=subject)

        soft_error = await self._delete_subject(registry, subject, permanent=False)
        permanent_error = await self._delete_subject(registry, subject, permanent=True)

        if permanent_error is not None:
            logger.error(
                "Permanent subject delete failed",
                subject=subject,
                error=permanent_error.message,
            )

        if soft_error is not None and permanent_error is not None:
            # Nothing was removed; keep the finalizer and try again
            return ReconcileResult.after(self.settings.error_requeue_seconds)

        await remove_finalizer(self.store, SCHEMA_KIND, manifest)
        logger.info("Schema finalized", subject=subject)
        return ReconcileResult.done()

    @staticmethod
    async def _delete_subject(
        registry: SchemaRegistryClient,
        subject: str,
        permanent: bool,
    ) -> Optional[RegistryTransientError]:
        try:
            await registry.delete_subject(subject, permanent=permanent)
        except RegistryNotFoundError:
            logger.debug("Subject already absent", subject=subject, permanent=permanent)
        except RegistryTransientError as e:
            return e
        return None

    # ============================================
    # Convergence
    # ============================================

    async def _sync(
        self,
        manifest: Manifest,
        schema: Schema,
        instance_name: str,
        registry: SchemaRegistryClient,
    ) -> ReconcileResult:
        if schema.is_first_registration():
            conflicting = await self._conflicting_schemas(schema)
            if conflicting:
                error = SubjectNotUniqueError(schema.effective_subject, schema.instance, conflicting)
                logger.warning("Subject is not unique", subject=schema.effective_subject, conflicting=conflicting)
                await self._update_status(manifest, schema, ready=False, message=error.message)
                return ReconcileResult.after(self.settings.instance_requeue_seconds)

        manifest = await ensure_finalizer(self.store, SCHEMA_KIND, manifest)
        schema = Schema.from_dict(manifest)
        sync_interval = schema.spec.sync_interval or self.settings.default_sync_interval

        if not schema.content_changed() and schema.status.ready:
            logger.debug("Content unchanged, skipping registry")
            await self._update_status(
                manifest, schema,
                ready=True,
                message=schema.status.message or SCHEMA_DEPLOYED_SUCCESS,
            )
            return ReconcileResult.after(sync_interval)

        subject = schema.effective_subject
        try:
            schema_id = await registry.register(
                subject,
                schema.spec.content,
                schema.spec.type.value,
                normalize=schema.spec.normalize,
            )
            latest = await registry.fetch_latest(subject)
        except RegistryDomainError as e:
            logger.warning(
                "Registry rejected schema",
                subject=subject,
                error_code=e.error_code,
                registry_message=e.registry_message,
            )
            await self._update_status(
                manifest, schema,
                ready=False,
                message=f"Failed to deploy schema to Schema Registry: {instance_name}",
                registry_error=e.registry_message,
            )
            return ReconcileResult.after(self.settings.error_requeue_seconds)
        except (RegistryNotFoundError, RegistryTransientError) as e:
            logger.error("Failed to deploy schema", subject=subject, error=e.message)
            await self._update_status(manifest, schema, ready=False, message=e.message)
            return ReconcileResult.after(self.settings.error_requeue_seconds)

        logger.info("Schema registered", subject=subject, version=latest.version, schema_id=schema_id)

        message = SCHEMA_DEPLOYED_SUCCESS
        compatibility_error = await self._apply_compatibility(registry, schema)
        if compatibility_error:
            message = f"{message}; compatibility level not applied: {compatibility_error}"

        await self._create_version(schema, latest)

        manifest = await set_labels(
            self.store, SCHEMA_KIND, manifest,
            {CONTENT_HASH_LABEL: schema.content_hash()},
        )
        await self._update_status(
            manifest,
            Schema.from_dict(manifest),
            ready=True,
            message=message,
            latest_version=latest.version,
        )
        return ReconcileResult.after(sync_interval)

    async def _conflicting_schemas(self, schema: Schema) -> List[str]:
        """Names of sibling Schemas that own the same effective subject first"""
        siblings = await self.store.list(
            SCHEMA_KIND,
            namespace=schema.metadata.namespace,
            label_selector={INSTANCE_LABEL: schema.instance},
        )

        own_rank = (schema.metadata.creation_timestamp or "", schema.metadata.name)
        conflicting = []
        for item in siblings:
            other = Schema.from_dict(item)
            if other.metadata.name == schema.metadata.name:
                continue
            if other.effective_subject != schema.effective_subject:
                continue

            registered = other.status.latest_version > 0 or CONTENT_HASH_LABEL in other.metadata.labels
            older = (other.metadata.creation_timestamp or "", other.metadata.name) < own_rank
            if registered or older:
                conflicting.append(other.metadata.name)
        return conflicting

    async def _apply_compatibility(self, registry: SchemaRegistryClient, schema: Schema) -> str:
        """Set the subject compatibility level when it differs; returns an error text or ''"""
        subject = schema.effective_subject
        desired = schema.spec.compatibility_level.value
        try:
            current = await registry.get_compatibility(subject)
            if current != desired:
                await registry.set_compatibility(subject, desired)
                logger.info("Compatibility level updated", subject=subject, previous=current, level=desired)
        except RegistryException as e:
            logger.error("Failed to set compatibility level", subject=subject, level=desired, error=e.message)
            return e.message
        return ""

    async def _create_version(self, schema: Schema, latest: RegisteredSchema) -> None:
        """Record a newly registered version as a SchemaVersion child"""
        if latest.version == schema.status.latest_version:
            return

        child = SchemaVersion.for_schema(schema, latest.version, latest.id)
        try:
            await self.store.create(SCHEMA_VERSION_KIND, child.to_dict())
            logger.info(
                "SchemaVersion created",
                schema_version=child.metadata.name,
                version=latest.version,
                previous_version=schema.status.latest_version,
            )
        except ResourceAlreadyExistsError:
            logger.info("SchemaVersion already exists", schema_version=child.metadata.name)

    # ============================================
    # Status
    # ============================================

    async def _update_status(
        self,
        manifest: Manifest,
        schema: Schema,
        ready: bool,
        message: str,
        registry_error: str = "",
        latest_version: Optional[int] = None,
    ) -> Manifest:
        current = schema.status
        status = SchemaStatus(
            latest_version=current.latest_version if latest_version is None else latest_version,
            message=message,
            schema_registry_error=registry_error,
            ready=ready,
            last_transition_time=current.last_transition_time,
        )
        if status.ready != current.ready or status.message != current.message or not status.last_transition_time:
            status.last_transition_time = utcnow_iso()

        if status == current:
            return manifest
        return await write_status(self.store, SCHEMA_KIND, manifest, status.to_dict())
