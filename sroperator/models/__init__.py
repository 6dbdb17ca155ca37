"""Resource models shared by the store and the controllers."""

from .resources import (
    API_GROUP,
    API_VERSION,
    INSTANCE_LABEL,
    CONTENT_HASH_LABEL,
    SUBJECT_LABEL,
    PREVIOUS_VERSION_ANNOTATION,
    FINALIZER,
    DEFAULT_SYNC_INTERVAL,
    ResourceKind,
    SCHEMA_KIND,
    SCHEMA_VERSION_KIND,
    SCHEMA_REGISTRY_KIND,
    SchemaTarget,
    SchemaType,
    CompatibilityLevel,
    OwnerReference,
    ObjectMeta,
    SchemaSpec,
    SchemaStatus,
    Schema,
    SchemaVersionSpec,
    SchemaVersionStatus,
    SchemaVersion,
    SchemaRegistryInstance,
    schema_version_name,
    sanitize_name,
    sanitize_label_value,
    utcnow_iso,
)

__all__ = [
    "API_GROUP",
    "API_VERSION",
    "INSTANCE_LABEL",
    "CONTENT_HASH_LABEL",
    "SUBJECT_LABEL",
    "PREVIOUS_VERSION_ANNOTATION",
    "FINALIZER",
    "DEFAULT_SYNC_INTERVAL",
    "ResourceKind",
    "SCHEMA_KIND",
    "SCHEMA_VERSION_KIND",
    "SCHEMA_REGISTRY_KIND",
    "SchemaTarget",
    "SchemaType",
    "CompatibilityLevel",
    "OwnerReference",
    "ObjectMeta",
    "SchemaSpec",
    "SchemaStatus",
    "Schema",
    "SchemaVersionSpec",
    "SchemaVersionStatus",
    "SchemaVersion",
    "SchemaRegistryInstance",
    "schema_version_name",
    "sanitize_name",
    "sanitize_label_value",
    "utcnow_iso",
]
