"""
Registry Client - facade over the schema registry REST API

Usage:
    from sroperator.services.registry_client import SchemaRegistryClient

    async with SchemaRegistryClient(endpoint) as client:
        schema_id = await client.register(subject, content, "AVRO")
"""

from typing import Callable

from .client import SchemaRegistryClient
from .models import (
    CONTENT_TYPE,
    RegisteredSchema,
    RegistryError,
    SUBJECT_NOT_FOUND,
    VERSION_NOT_FOUND,
    SUBJECT_SOFT_DELETED,
    SCHEMA_VERSION_SOFT_DELETED,
    SCHEMA_VERSION_NOT_SOFT_DELETED,
    SUBJECT_LEVEL_COMPATIBILITY_NOT_CONFIGURED,
)

# Builds a client for a resolved endpoint URL
RegistryClientFactory = Callable[[str], SchemaRegistryClient]

__all__ = [
    "SchemaRegistryClient",
    "RegistryClientFactory",
    "RegisteredSchema",
    "RegistryError",
    "CONTENT_TYPE",
    "SUBJECT_NOT_FOUND",
    "VERSION_NOT_FOUND",
    "SUBJECT_SOFT_DELETED",
    "SCHEMA_VERSION_SOFT_DELETED",
    "SCHEMA_VERSION_NOT_SOFT_DELETED",
    "SUBJECT_LEVEL_COMPATIBILITY_NOT_CONFIGURED",
]
