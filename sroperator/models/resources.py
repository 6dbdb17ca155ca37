"""
Resource Models - Schema, SchemaVersion and SchemaRegistry objects

Typed views over the declarative objects kept in the resource store.
Objects travel through the store as plain manifests (camelCase dictionaries,
the shape the cluster API uses); from_dict/to_dict convert at the boundary.
"""

import copy
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from sroperator.utils.hashing import content_hash


API_GROUP = "client.sroperator.io"
API_VERSION = "v1alpha1"

# Labels / annotations / finalizer
INSTANCE_LABEL = f"{API_GROUP}/instance"
CONTENT_HASH_LABEL = f"{API_GROUP}/content-hash"
SUBJECT_LABEL = f"{API_GROUP}/subject"
PREVIOUS_VERSION_ANNOTATION = f"{API_GROUP}/previous-version"
FINALIZER = f"{API_GROUP}/finalizer"

DEFAULT_SYNC_INTERVAL = 300

_NAME_INVALID_CHARS = re.compile(r"[^a-z0-9.-]+")
_LABEL_INVALID_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def utcnow_iso() -> str:
    """RFC 3339 timestamp with second precision, as the cluster API writes them"""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def sanitize_name(value: str, max_length: int = 253) -> str:
    """Reduce an arbitrary string to a valid RFC 1123 object name"""
    name = _NAME_INVALID_CHARS.sub("-", value.lower())
    name = name[:max_length]
    return name.strip("-.") or "schema"


def sanitize_label_value(value: str) -> str:
    """Reduce an arbitrary string to a valid label value (max 63 chars)"""
    label = _LABEL_INVALID_CHARS.sub("-", value)[:63]
    return label.strip("-._")


class SchemaTarget(str, Enum):
    """Part of the record the schema describes"""
    VALUE = "VALUE"
    KEY = "KEY"


class SchemaType(str, Enum):
    """Schema language"""
    AVRO = "AVRO"
    PROTOBUF = "PROTOBUF"
    JSON = "JSON"


class CompatibilityLevel(str, Enum):
    """
    Registry compatibility level

    - NONE: no compatibility checks
    - BACKWARD: new schema can read data written with the previous one
    - FORWARD: previous schema can read data written with the new one
    - FULL: both directions
    - *_TRANSITIVE: against all registered versions, not only the latest
    """
    NONE = "NONE"
    BACKWARD = "BACKWARD"
    BACKWARD_TRANSITIVE = "BACKWARD_TRANSITIVE"
    FORWARD = "FORWARD"
    FORWARD_TRANSITIVE = "FORWARD_TRANSITIVE"
    FULL = "FULL"
    FULL_TRANSITIVE = "FULL_TRANSITIVE"


@dataclass(frozen=True)
class ResourceKind:
    """Identifies one resource type in the store"""
    kind: str
    plural: str
    group: str = API_GROUP
    version: str = API_VERSION

    @property
    def api_version(self) -> str:
        return f"{self.group}/{self.version}"


SCHEMA_KIND = ResourceKind(kind="Schema", plural="schemas")
SCHEMA_VERSION_KIND = ResourceKind(kind="SchemaVersion", plural="schemaversions")
SCHEMA_REGISTRY_KIND = ResourceKind(kind="SchemaRegistry", plural="schemaregistries")


@dataclass
class OwnerReference:
    """Ownership link from a child object to its parent"""
    api_version: str
    kind: str
    name: str
    uid: str
    controller: bool = True
    block_owner_deletion: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "apiVersion": self.api_version,
            "kind": self.kind,
            "name": self.name,
            "uid": self.uid,
            "controller": self.controller,
            "blockOwnerDeletion": self.block_owner_deletion,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OwnerReference":
        return cls(
            api_version=data.get("apiVersion", ""),
            kind=data.get("kind", ""),
            name=data.get("name", ""),
            uid=data.get("uid", ""),
            controller=bool(data.get("controller", False)),
            block_owner_deletion=bool(data.get("blockOwnerDeletion", False)),
        )


@dataclass
class ObjectMeta:
    """Object identity, labels and lifecycle markers"""
    name: str
    namespace: str = "default"
    uid: str = ""
    resource_version: str = ""
    generation: int = 0
    creation_timestamp: Optional[str] = None
    deletion_timestamp: Optional[str] = None
    labels: Dict[str, str] = field(default_factory=dict)
    annotations: Dict[str, str] = field(default_factory=dict)
    finalizers: List[str] = field(default_factory=list)
    owner_references: List[OwnerReference] = field(default_factory=list)

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"

    @property
    def is_deleting(self) -> bool:
        return self.deletion_timestamp is not None

    def has_finalizer(self, finalizer: str) -> bool:
        return finalizer in self.finalizers

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "name": self.name,
            "namespace": self.namespace,
            "labels": dict(self.labels),
            "annotations": dict(self.annotations),
            "finalizers": list(self.finalizers),
            "ownerReferences": [o.to_dict() for o in self.owner_references],
        }
        if self.uid:
            result["uid"] = self.uid
        if self.resource_version:
            result["resourceVersion"] = self.resource_version
        if self.generation:
            result["generation"] = self.generation
        if self.creation_timestamp:
            result["creationTimestamp"] = self.creation_timestamp
        if self.deletion_timestamp:
            result["deletionTimestamp"] = self.deletion_timestamp
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ObjectMeta":
        return cls(
            name=data.get("name", ""),
            namespace=data.get("namespace") or "default",
            uid=data.get("uid") or "",
            resource_version=str(data.get("resourceVersion") or ""),
            generation=int(data.get("generation") or 0),
            creation_timestamp=data.get("creationTimestamp"),
            deletion_timestamp=data.get("deletionTimestamp"),
            labels=dict(data.get("labels") or {}),
            annotations=dict(data.get("annotations") or {}),
            finalizers=list(data.get("finalizers") or []),
            owner_references=[
                OwnerReference.from_dict(o) for o in (data.get("ownerReferences") or [])
            ],
        )


# ============================================
# Schema
# ============================================

@dataclass
class SchemaSpec:
    """Desired schema definition"""
    content: str
    subject: str = ""
    target: SchemaTarget = SchemaTarget.VALUE
    type: SchemaType = SchemaType.AVRO
    compatibility_level: CompatibilityLevel = CompatibilityLevel.NONE
    normalize: bool = False
    sync_interval: int = DEFAULT_SYNC_INTERVAL

    def to_dict(self) -> Dict[str, Any]:
        return {
            "subject": self.subject,
            "target": self.target.value,
            "type": self.type.value,
            "content": self.content,
            "compatibilityLevel": self.compatibility_level.value,
            "normalize": self.normalize,
            "schemaRegistryConfig": {"syncInterval": self.sync_interval},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SchemaSpec":
        registry_config = data.get("schemaRegistryConfig") or {}
        return cls(
            content=data.get("content", ""),
            subject=data.get("subject") or "",
            target=SchemaTarget((data.get("target") or "VALUE").upper()),
            type=SchemaType((data.get("type") or "AVRO").upper()),
            compatibility_level=CompatibilityLevel(
                (data.get("compatibilityLevel") or "NONE").upper()
            ),
            normalize=bool(data.get("normalize", False)),
            sync_interval=int(registry_config.get("syncInterval") or DEFAULT_SYNC_INTERVAL),
        )


@dataclass
class SchemaStatus:
    """Observed state of a Schema"""
    latest_version: int = 0
    message: str = ""
    schema_registry_error: str = ""
    ready: bool = False
    last_transition_time: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "latestVersion": self.latest_version,
            "message": self.message,
            "schemaRegistryError": self.schema_registry_error,
            "ready": self.ready,
        }
        if self.last_transition_time:
            result["lastTransitionTime"] = self.last_transition_time
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SchemaStatus":
        return cls(
            latest_version=int(data.get("latestVersion") or 0),
            message=data.get("message") or "",
            schema_registry_error=data.get("schemaRegistryError") or "",
            ready=bool(data.get("ready", False)),
            last_transition_time=data.get("lastTransitionTime"),
        )


@dataclass
class Schema:
    """
    Schema resource

    One registry subject whose content is kept in sync with spec.content.
    """
    metadata: ObjectMeta
    spec: SchemaSpec
    status: SchemaStatus = field(default_factory=SchemaStatus)

    RESOURCE = SCHEMA_KIND

    @property
    def subject(self) -> str:
        """Subject without the target suffix (defaults to the object name)"""
        return self.spec.subject or self.metadata.name

    @property
    def effective_subject(self) -> str:
        """Registry subject: subject + '-' + lowercase target"""
        return f"{self.subject}-{self.spec.target.value.lower()}"

    @property
    def instance(self) -> Optional[str]:
        return self.metadata.labels.get(INSTANCE_LABEL)

    def content_hash(self) -> str:
        return content_hash(self.spec.content)

    def content_changed(self) -> bool:
        """True for new objects and when content differs from the last converged hash"""
        recorded = self.metadata.labels.get(CONTENT_HASH_LABEL)
        return recorded is None or recorded != self.content_hash()

    def is_first_registration(self) -> bool:
        return self.status.latest_version == 0 and CONTENT_HASH_LABEL not in self.metadata.labels

    def owner_reference(self) -> OwnerReference:
        return OwnerReference(
            api_version=SCHEMA_KIND.api_version,
            kind=SCHEMA_KIND.kind,
            name=self.metadata.name,
            uid=self.metadata.uid,
            controller=True,
            block_owner_deletion=True,
        )

    def copy(self) -> "Schema":
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "apiVersion": SCHEMA_KIND.api_version,
            "kind": SCHEMA_KIND.kind,
            "metadata": self.metadata.to_dict(),
            "spec": self.spec.to_dict(),
            "status": self.status.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Schema":
        return cls(
            metadata=ObjectMeta.from_dict(data.get("metadata") or {}),
            spec=SchemaSpec.from_dict(data.get("spec") or {}),
            status=SchemaStatus.from_dict(data.get("status") or {}),
        )


# ============================================
# SchemaVersion
# ============================================

def schema_version_name(effective_subject: str, version: int) -> str:
    """Object name of the SchemaVersion holding one registered revision"""
    suffix = f"-v{version}"
    return sanitize_name(effective_subject, 253 - len(suffix)) + suffix


@dataclass
class SchemaVersionSpec:
    """Immutable record of one registered revision"""
    subject: str
    version: int
    content: str = ""
    schema_registry_schema_id: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "subject": self.subject,
            "version": self.version,
            "content": self.content,
            "schemaRegistrySchemaId": self.schema_registry_schema_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SchemaVersionSpec":
        return cls(
            subject=data.get("subject", ""),
            version=int(data.get("version") or 0),
            content=data.get("content", ""),
            schema_registry_schema_id=int(data.get("schemaRegistrySchemaId") or 0),
        )


@dataclass
class SchemaVersionStatus:
    """Activation state of a SchemaVersion"""
    ready: bool = False
    active: bool = False
    message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"ready": self.ready, "active": self.active, "message": self.message}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SchemaVersionStatus":
        return cls(
            ready=bool(data.get("ready", False)),
            active=bool(data.get("active", False)),
            message=data.get("message") or "",
        )


@dataclass
class SchemaVersion:
    """SchemaVersion resource (child of a Schema)"""
    metadata: ObjectMeta
    spec: SchemaVersionSpec
    status: SchemaVersionStatus = field(default_factory=SchemaVersionStatus)

    RESOURCE = SCHEMA_VERSION_KIND

    @property
    def instance(self) -> Optional[str]:
        return self.metadata.labels.get(INSTANCE_LABEL)

    @property
    def previous_version(self) -> Optional[int]:
        """Previous active version recorded at creation, None when the annotation is missing"""
        raw = self.metadata.annotations.get(PREVIOUS_VERSION_ANNOTATION)
        if raw is None:
            return None
        try:
            return int(raw)
        except ValueError:
            return None

    def sibling_name(self, version: int) -> str:
        return schema_version_name(self.spec.subject, version)

    def copy(self) -> "SchemaVersion":
        return copy.deepcopy(self)

    @classmethod
    def for_schema(cls, schema: Schema, version: int, schema_id: int) -> "SchemaVersion":
        """Build the next version-history child of schema"""
        subject = schema.effective_subject
        labels = {SUBJECT_LABEL: sanitize_label_value(subject)}
        if schema.instance:
            labels[INSTANCE_LABEL] = schema.instance

        return cls(
            metadata=ObjectMeta(
                name=schema_version_name(subject, version),
                namespace=schema.metadata.namespace,
                labels=labels,
                annotations={PREVIOUS_VERSION_ANNOTATION: str(schema.status.latest_version)},
                finalizers=[FINALIZER],
                owner_references=[schema.owner_reference()],
            ),
            spec=SchemaVersionSpec(
                subject=subject,
                version=version,
                content=schema.spec.content,
                schema_registry_schema_id=schema_id,
            ),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "apiVersion": SCHEMA_VERSION_KIND.api_version,
            "kind": SCHEMA_VERSION_KIND.kind,
            "metadata": self.metadata.to_dict(),
            "spec": self.spec.to_dict(),
            "status": self.status.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SchemaVersion":
        return cls(
            metadata=ObjectMeta.from_dict(data.get("metadata") or {}),
            spec=SchemaVersionSpec.from_dict(data.get("spec") or {}),
            status=SchemaVersionStatus.from_dict(data.get("status") or {}),
        )


# ============================================
# SchemaRegistry (read only)
# ============================================

@dataclass
class SchemaRegistryInstance:
    """The registry endpoint a Schema is associated with"""
    metadata: ObjectMeta
    port: Optional[int] = None
    url: Optional[str] = None

    RESOURCE = SCHEMA_REGISTRY_KIND

    @property
    def name(self) -> str:
        return self.metadata.name

    def endpoint(self, url_template: str, default_port: int) -> str:
        """Base URL of the registry REST API"""
        if self.url:
            return self.url.rstrip("/")
        return url_template.format(
            name=self.metadata.name,
            namespace=self.metadata.namespace,
            port=self.port or default_port,
        ).rstrip("/")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SchemaRegistryInstance":
        spec = data.get("spec") or {}
        port = spec.get("port")
        return cls(
            metadata=ObjectMeta.from_dict(data.get("metadata") or {}),
            port=int(port) if port else None,
            url=spec.get("url") or None,
        )
