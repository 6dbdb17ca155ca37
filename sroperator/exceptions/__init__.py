"""
Operator exception hierarchy.
Every failure the reconcilers can observe maps onto one of these classes.
"""
from typing import Optional, Dict, Any, List
from datetime import datetime
from enum import Enum


class ErrorSeverity(str, Enum):
    """Error severity"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class OperatorException(Exception):
    """Root of all operator exceptions"""

    def __init__(
        self,
        message: str,
        error_code: str = "E000",
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = False,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        retry_after: Optional[int] = None,
        cause: Optional[Exception] = None
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        self.recoverable = recoverable
        self.severity = severity
        self.retry_after = retry_after
        self.cause = cause
        self.timestamp = datetime.utcnow()
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert the exception to a dictionary"""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
            "severity": self.severity.value,
            "retry_after": self.retry_after,
            "timestamp": self.timestamp.isoformat(),
            "cause": str(self.cause) if self.cause else None
        }

    def __str__(self):
        return f"[{self.error_code}] {self.message}"

    def __repr__(self):
        return f"{self.__class__.__name__}(code={self.error_code}, message={self.message})"


# ============================================
# Instance association errors (A001-A099)
# ============================================

class AssociationException(OperatorException):
    """Schema cannot be associated with a registry instance"""
    pass


class InstanceLabelNotFoundError(AssociationException):
    """Instance label missing on the object"""
    def __init__(self, label: str, namespace: str = "", name: str = ""):
        super().__init__(
            message=f"Instance label: {label} not found",
            error_code="A001",
            details={"label": label, "namespace": namespace, "name": name},
            recoverable=True,
            severity=ErrorSeverity.MEDIUM
        )


class InstanceNotFoundError(AssociationException):
    """Instance label names an unknown SchemaRegistry"""
    def __init__(self, instance: str, namespace: str = ""):
        super().__init__(
            message="Schema Registry instance not found",
            error_code="A002",
            details={"instance": instance, "namespace": namespace},
            recoverable=True,
            severity=ErrorSeverity.MEDIUM
        )


class SubjectNotUniqueError(AssociationException):
    """Another Schema already owns the effective subject"""
    def __init__(self, subject: str, instance: str, conflicting: List[str]):
        super().__init__(
            message=(
                f"Subject '{subject}' is already used by Schema "
                f"{', '.join(conflicting)} on instance '{instance}'"
            ),
            error_code="A003",
            details={"subject": subject, "instance": instance, "conflicting": conflicting},
            recoverable=False,
            severity=ErrorSeverity.HIGH
        )


# ============================================
# Registry errors (R001-R099)
# ============================================

class RegistryException(OperatorException):
    """Errors returned by (or while talking to) the schema registry"""

    def __init__(self, message: str, status_code: Optional[int] = None,
                 registry_error_code: Optional[int] = None, **kwargs):
        self.status_code = status_code
        self.registry_error_code = registry_error_code
        details = kwargs.pop("details", {}) or {}
        details.setdefault("status_code", status_code)
        details.setdefault("registry_error_code", registry_error_code)
        super().__init__(message=message, details=details, **kwargs)


class RegistryDomainError(RegistryException):
    """The registry rejected the content; only a spec edit can clear it"""

    @property
    def registry_message(self) -> str:
        """Message exactly as the registry returned it"""
        return self.details.get("registry_message", self.message)


class IncompatibleSchemaError(RegistryDomainError):
    """HTTP 409 on register"""
    def __init__(self, registry_message: str, subject: str = ""):
        super().__init__(
            message=registry_message,
            status_code=409,
            error_code="R001",
            details={"registry_message": registry_message, "subject": subject},
            recoverable=False,
            severity=ErrorSeverity.HIGH
        )


class InvalidSchemaOrTypeError(RegistryDomainError):
    """HTTP 422 on register"""
    def __init__(self, registry_message: str, subject: str = ""):
        super().__init__(
            message=registry_message,
            status_code=422,
            error_code="R002",
            details={"registry_message": registry_message, "subject": subject},
            recoverable=False,
            severity=ErrorSeverity.HIGH
        )


class RegistryNotFoundError(RegistryException):
    """Subject or version does not exist in the registry"""
    def __init__(self, subject: str, version: Optional[int] = None,
                 registry_error_code: Optional[int] = None, registry_message: str = ""):
        target = f"{subject} v{version}" if version is not None else subject
        super().__init__(
            message=registry_message or f"Not found in registry: {target}",
            status_code=404,
            registry_error_code=registry_error_code,
            error_code="R003",
            details={"subject": subject, "version": version},
            recoverable=False,
            severity=ErrorSeverity.LOW
        )


class SchemaVersionSoftDeletedError(RegistryException):
    """Version was already soft deleted; only a permanent delete is possible"""
    def __init__(self, subject: str, version: int, registry_message: str = ""):
        super().__init__(
            message=registry_message or f"Subject '{subject}' version {version} was soft deleted",
            status_code=404,
            registry_error_code=40406,
            error_code="R004",
            details={"subject": subject, "version": version},
            recoverable=False,
            severity=ErrorSeverity.LOW
        )


class RegistryTransientError(RegistryException):
    """Network failure or unexpected registry response"""
    def __init__(self, operation: str, reason: str, status_code: Optional[int] = None,
                 registry_error_code: Optional[int] = None, cause: Optional[Exception] = None):
        super().__init__(
            message=f"Registry {operation} failed: {reason}",
            status_code=status_code,
            registry_error_code=registry_error_code,
            error_code="R005",
            details={"operation": operation, "reason": reason},
            recoverable=True,
            severity=ErrorSeverity.MEDIUM,
            retry_after=60,
            cause=cause
        )


# ============================================
# Version history errors (C001-C099)
# ============================================

class VersionHistoryException(OperatorException):
    """Version-history chain invariants broken"""
    pass


class InvalidSchemaVersionModificationError(VersionHistoryException):
    """SchemaVersion without previous-version annotation (created or edited by hand)"""
    def __init__(self, namespace: str, name: str):
        super().__init__(
            message=(
                "no previous active schema version found, "
                "SchemaVersion has been modified manually"
            ),
            error_code="C001",
            details={"namespace": namespace, "name": name},
            recoverable=False,
            severity=ErrorSeverity.HIGH
        )


# ============================================
# Resource store errors (K001-K099)
# ============================================

class StoreException(OperatorException):
    """Resource store errors"""
    pass


class ResourceNotFoundError(StoreException):
    """Object does not exist"""
    def __init__(self, kind: str, namespace: str, name: str):
        super().__init__(
            message=f"{kind} {namespace}/{name} not found",
            error_code="K001",
            details={"kind": kind, "namespace": namespace, "name": name},
            recoverable=False,
            severity=ErrorSeverity.LOW
        )


class ResourceConflictError(StoreException):
    """Optimistic concurrency check failed (stale resourceVersion)"""
    def __init__(self, kind: str, namespace: str, name: str, reason: str = ""):
        super().__init__(
            message=f"Conflict updating {kind} {namespace}/{name}: {reason or 'object has been modified'}",
            error_code="K002",
            details={"kind": kind, "namespace": namespace, "name": name},
            recoverable=True,
            severity=ErrorSeverity.LOW
        )


class ResourceAlreadyExistsError(StoreException):
    """Create of an object that already exists"""
    def __init__(self, kind: str, namespace: str, name: str):
        super().__init__(
            message=f"{kind} {namespace}/{name} already exists",
            error_code="K003",
            details={"kind": kind, "namespace": namespace, "name": name},
            recoverable=False,
            severity=ErrorSeverity.LOW
        )


class StoreUnavailableError(StoreException):
    """Store could not be reached"""
    def __init__(self, operation: str, reason: str, cause: Optional[Exception] = None):
        super().__init__(
            message=f"Store {operation} failed: {reason}",
            error_code="K004",
            details={"operation": operation, "reason": reason},
            recoverable=True,
            severity=ErrorSeverity.HIGH,
            cause=cause
        )


# ============================================
# Error code mapping
# ============================================

ERROR_CODE_MAPPING = {
    "A001": InstanceLabelNotFoundError,
    "A002": InstanceNotFoundError,
    "A003": SubjectNotUniqueError,
    "R001": IncompatibleSchemaError,
    "R002": InvalidSchemaOrTypeError,
    "R003": RegistryNotFoundError,
    "R004": SchemaVersionSoftDeletedError,
    "R005": RegistryTransientError,
    "C001": InvalidSchemaVersionModificationError,
    "K001": ResourceNotFoundError,
    "K002": ResourceConflictError,
    "K003": ResourceAlreadyExistsError,
    "K004": StoreUnavailableError,
}


def get_exception_class(error_code: str) -> type:
    """Return the exception class for an error code"""
    return ERROR_CODE_MAPPING.get(error_code, OperatorException)


def is_recoverable(error_code: str) -> bool:
    """Whether errors with this code clear up without a spec edit"""
    recoverable_codes = {"A001", "A002", "R005", "K002", "K004"}
    return error_code in recoverable_codes


__all__ = [
    "ErrorSeverity",
    "OperatorException",
    "AssociationException",
    "InstanceLabelNotFoundError",
    "InstanceNotFoundError",
    "SubjectNotUniqueError",
    "RegistryException",
    "RegistryDomainError",
    "IncompatibleSchemaError",
    "InvalidSchemaOrTypeError",
    "RegistryNotFoundError",
    "SchemaVersionSoftDeletedError",
    "RegistryTransientError",
    "VersionHistoryException",
    "InvalidSchemaVersionModificationError",
    "StoreException",
    "ResourceNotFoundError",
    "ResourceConflictError",
    "ResourceAlreadyExistsError",
    "StoreUnavailableError",
    "ERROR_CODE_MAPPING",
    "get_exception_class",
    "is_recoverable",
]
