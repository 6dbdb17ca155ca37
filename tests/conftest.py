"""
Common pytest fixtures for the schema registry operator test suite.

Provides shared fixtures for:
- Operator settings
- In-memory resource store
- A fake Confluent-compatible schema registry (httpx.MockTransport)
- Schema / SchemaRegistry manifest builders
"""

import json
import os
from typing import Any, Dict, List, Optional, Tuple

import httpx
import pytest

from sroperator.core.config import OperatorSettings, reset_settings
from sroperator.models import INSTANCE_LABEL, SCHEMA_REGISTRY_KIND
from sroperator.services.observability.prometheus import get_registry
from sroperator.services.registry_client import SchemaRegistryClient
from sroperator.services.store import InMemoryStore


# ============================================
# Environment Setup
# ============================================

@pytest.fixture(scope="session", autouse=True)
def setup_test_environment():
    """Set up test environment variables."""
    os.environ.setdefault("STORE_BACKEND", "memory")
    os.environ.setdefault("LOG_LEVEL", "WARNING")
    reset_settings()
    yield


@pytest.fixture(autouse=True)
def reset_metrics():
    """Start every test with empty metric samples."""
    get_registry().clear()
    yield


@pytest.fixture
def settings():
    """Settings with the production requeue timings."""
    return OperatorSettings(
        store_backend="memory",
        max_concurrent_reconciles=2,
        default_sync_interval=300,
        error_requeue_seconds=60,
        instance_requeue_seconds=600,
    )


@pytest.fixture
def store():
    """Empty in-memory resource store."""
    return InMemoryStore()


# ============================================
# Fake schema registry
# ============================================

class FakeSchemaRegistry:
    """
    Minimal Confluent-compatible registry served through httpx.MockTransport.

    Supports register, latest version lookup, subject config, and soft /
    permanent deletes of subjects and versions with the real error codes.
    """

    def __init__(self):
        self.subjects: Dict[str, List[Dict[str, Any]]] = {}
        self.config: Dict[str, str] = {}
        self.ids: Dict[Tuple[str, str], int] = {}
        self.requests: List[httpx.Request] = []
        self.endpoints: List[str] = []
        self.incompatible: set = set()
        self.fail_with: Optional[Tuple[int, Dict[str, Any]]] = None

    # -- helpers used by tests --

    def client_factory(self, endpoint: str) -> SchemaRegistryClient:
        self.endpoints.append(endpoint)
        return SchemaRegistryClient(endpoint, transport=httpx.MockTransport(self.handler))

    def active_versions(self, subject: str) -> List[int]:
        return [v["version"] for v in self.subjects.get(subject, []) if not v["deleted"]]

    def calls(self, method: str = None) -> List[str]:
        return [
            f"{r.method} {r.url.path}"
            for r in self.requests
            if method is None or r.method == method
        ]

    # -- wire --

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_with is not None:
            status, body = self.fail_with
            return httpx.Response(status, json=body)

        parts = request.url.path.strip("/").split("/")
        permanent = request.url.params.get("permanent") == "true"

        if parts[0] == "config" and len(parts) == 2:
            return self._config(request, parts[1])
        if parts[0] != "subjects" or len(parts) < 2:
            return self._error(404, 404, "HTTP 404 Not Found")

        subject = parts[1]
        if len(parts) == 2 and request.method == "DELETE":
            return self._delete_subject(subject, permanent)
        if len(parts) == 3 and request.method == "POST":
            return self._register(subject, json.loads(request.content))
        if len(parts) == 4 and parts[3] == "latest" and request.method == "GET":
            return self._latest(subject)
        if len(parts) == 4 and request.method == "DELETE":
            return self._delete_version(subject, int(parts[3]), permanent)
        return self._error(405, 405, "Method not allowed")

    def _register(self, subject: str, body: Dict[str, Any]) -> httpx.Response:
        content = body["schema"]
        schema_type = body.get("schemaType", "AVRO")
        if content.startswith("invalid"):
            return self._error(422, 42201, f"Invalid schema {content}")
        if subject in self.incompatible:
            return self._error(409, 409, "Schema being registered is incompatible with an earlier schema")

        versions = self.subjects.setdefault(subject, [])
        for v in versions:
            if not v["deleted"] and v["schema"] == content:
                return httpx.Response(200, json={"id": v["id"]})

        schema_id = self.ids.setdefault((content, schema_type), len(self.ids) + 1)
        number = max([v["version"] for v in versions], default=0) + 1
        versions.append({
            "version": number,
            "id": schema_id,
            "schema": content,
            "schemaType": schema_type,
            "deleted": False,
        })
        return httpx.Response(200, json={"id": schema_id})

    def _latest(self, subject: str) -> httpx.Response:
        active = [v for v in self.subjects.get(subject, []) if not v["deleted"]]
        if not active:
            return self._error(404, 40401, f"Subject '{subject}' not found.")
        latest = active[-1]
        body = {"subject": subject, "version": latest["version"], "id": latest["id"], "schema": latest["schema"]}
        if latest["schemaType"] != "AVRO":
            body["schemaType"] = latest["schemaType"]
        return httpx.Response(200, json=body)

    def _config(self, request: httpx.Request, subject: str) -> httpx.Response:
        if request.method == "PUT":
            level = json.loads(request.content)["compatibility"]
            self.config[subject] = level
            return httpx.Response(200, json={"compatibility": level})
        if subject not in self.config:
            return self._error(404, 40408, f"Subject '{subject}' does not have subject-level compatibility configured")
        return httpx.Response(200, json={"compatibilityLevel": self.config[subject]})

    def _delete_subject(self, subject: str, permanent: bool) -> httpx.Response:
        versions = self.subjects.get(subject)
        if not versions:
            return self._error(404, 40401, f"Subject '{subject}' not found.")
        numbers = [v["version"] for v in versions]
        if permanent:
            if any(not v["deleted"] for v in versions):
                return self._error(404, 40405, f"Subject '{subject}' was not deleted first before being permanently deleted")
            del self.subjects[subject]
            return httpx.Response(200, json=numbers)
        if all(v["deleted"] for v in versions):
            return self._error(404, 40404, f"Subject '{subject}' was soft deleted.")
        for v in versions:
            v["deleted"] = True
        return httpx.Response(200, json=numbers)

    def _delete_version(self, subject: str, number: int, permanent: bool) -> httpx.Response:
        versions = self.subjects.get(subject)
        if not versions:
            return self._error(404, 40401, f"Subject '{subject}' not found.")
        match = [v for v in versions if v["version"] == number]
        if not match:
            return self._error(404, 40402, f"Version {number} not found.")
        version = match[0]
        if permanent:
            if not version["deleted"]:
                return self._error(404, 40407, f"Subject '{subject}' Version {number} was not deleted first")
            versions.remove(version)
            if not versions:
                del self.subjects[subject]
            return httpx.Response(200, json=number)
        if version["deleted"]:
            return self._error(404, 40406, f"Subject '{subject}' Version {number} was soft deleted.")
        version["deleted"] = True
        return httpx.Response(200, json=number)

    @staticmethod
    def _error(status: int, code: int, message: str) -> httpx.Response:
        return httpx.Response(status, json={"error_code": code, "message": message})


@pytest.fixture
def fake_registry():
    """Fake registry; pass fake_registry.client_factory to the reconcilers."""
    return FakeSchemaRegistry()


# ============================================
# Manifest builders
# ============================================

@pytest.fixture
def make_schema():
    """Build a Schema manifest."""
    def _make(
        name: str = "orders",
        content: str = '{"type": "string"}',
        subject: str = "",
        target: str = "VALUE",
        instance: Optional[str] = "registry",
        compatibility_level: str = "NONE",
        namespace: str = "default",
        schema_type: str = "AVRO",
    ) -> Dict[str, Any]:
        labels = {INSTANCE_LABEL: instance} if instance else {}
        return {
            "metadata": {"name": name, "namespace": namespace, "labels": labels},
            "spec": {
                "subject": subject,
                "target": target,
                "type": schema_type,
                "content": content,
                "compatibilityLevel": compatibility_level,
            },
        }
    return _make


@pytest.fixture
def registry_instance(store):
    """Coroutine factory creating a SchemaRegistry object in the store."""
    async def _create(name: str = "registry", namespace: str = "default", url: str = None):
        spec = {"url": url} if url else {}
        return await store.create(
            SCHEMA_REGISTRY_KIND,
            {"metadata": {"name": name, "namespace": namespace}, "spec": spec},
        )
    return _create
