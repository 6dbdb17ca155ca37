"""
Registry wire models

Response shapes of the Confluent-compatible schema registry REST API and the
registry-side error codes the operator distinguishes.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional


CONTENT_TYPE = "application/vnd.schemaregistry.v1+json"

# Registry error codes (body field "error_code")
SUBJECT_NOT_FOUND = 40401
VERSION_NOT_FOUND = 40402
SCHEMA_NOT_FOUND = 40403
SUBJECT_SOFT_DELETED = 40404
SUBJECT_NOT_SOFT_DELETED = 40405
SCHEMA_VERSION_SOFT_DELETED = 40406
SCHEMA_VERSION_NOT_SOFT_DELETED = 40407
SUBJECT_LEVEL_COMPATIBILITY_NOT_CONFIGURED = 40408
INVALID_SCHEMA = 42201
INVALID_VERSION = 42202
INVALID_COMPATIBILITY_LEVEL = 42203
INCOMPATIBLE_SCHEMA = 409

NOT_FOUND_CODES = frozenset({
    SUBJECT_NOT_FOUND,
    VERSION_NOT_FOUND,
    SCHEMA_NOT_FOUND,
    SUBJECT_SOFT_DELETED,
    SUBJECT_LEVEL_COMPATIBILITY_NOT_CONFIGURED,
})


@dataclass
class RegistryError:
    """Error body returned by the registry"""
    error_code: Optional[int] = None
    message: str = ""

    @classmethod
    def from_dict(cls, data: Any) -> "RegistryError":
        if not isinstance(data, dict):
            return cls(message=str(data) if data else "")
        code = data.get("error_code")
        return cls(
            error_code=int(code) if code is not None else None,
            message=data.get("message") or "",
        )


@dataclass
class RegisteredSchema:
    """One registered revision of a subject"""
    subject: str
    version: int
    id: int
    schema: str = ""
    schema_type: str = "AVRO"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RegisteredSchema":
        return cls(
            subject=data.get("subject", ""),
            version=int(data.get("version") or 0),
            id=int(data.get("id") or 0),
            schema=data.get("schema", ""),
            # AVRO is the default and omitted by the registry
            schema_type=data.get("schemaType") or "AVRO",
        )
