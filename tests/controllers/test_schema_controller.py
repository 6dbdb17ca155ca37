"""
Tests for the Schema reconciler.

Covers:
- Registry instance association errors
- First registration, version chaining and the idempotent fast path
- Subject uniqueness
- Registry error mapping into status
- Compatibility level handling
- Two-phase subject teardown
"""

import httpx
import pytest

from sroperator.controllers import SCHEMA_DEPLOYED_SUCCESS, SchemaReconciler
from sroperator.models import (
    CONTENT_HASH_LABEL,
    FINALIZER,
    PREVIOUS_VERSION_ANNOTATION,
    SCHEMA_KIND,
    SCHEMA_REGISTRY_KIND,
    SCHEMA_VERSION_KIND,
)
from sroperator.exceptions import ResourceNotFoundError
from sroperator.utils.hashing import content_hash


@pytest.fixture
def reconciler(store, settings, fake_registry):
    return SchemaReconciler(store, settings, fake_registry.client_factory)


async def _get(store, name="orders", kind=SCHEMA_KIND):
    return await store.get(kind, "default", name)


class TestInstanceAssociation:
    """Resolving the SchemaRegistry instance."""

    @pytest.mark.asyncio
    async def test_missing_instance_label(self, store, reconciler, make_schema, fake_registry):
        await store.create(SCHEMA_KIND, make_schema(instance=None))

        result = await reconciler.reconcile("default", "orders")

        schema = await _get(store)
        assert schema["status"]["ready"] is False
        assert schema["status"]["message"] == "Instance label: client.sroperator.io/instance not found"
        assert schema["status"]["lastTransitionTime"]
        assert result.requeue_after == 600
        assert fake_registry.requests == []

    @pytest.mark.asyncio
    async def test_unknown_instance(self, store, reconciler, make_schema, fake_registry):
        await store.create(SCHEMA_KIND, make_schema(instance="nope"))

        result = await reconciler.reconcile("default", "orders")

        schema = await _get(store)
        assert schema["status"]["ready"] is False
        assert schema["status"]["message"] == "Schema Registry instance not found"
        assert result.requeue_after == 600
        assert fake_registry.requests == []

    @pytest.mark.asyncio
    async def test_absent_schema_is_done(self, reconciler):
        result = await reconciler.reconcile("default", "missing")
        assert result.requeue is False


class TestRegistration:
    """Register, version chaining and commit."""

    @pytest.mark.asyncio
    async def test_first_registration(self, store, reconciler, make_schema, registry_instance, fake_registry):
        await registry_instance()
        await store.create(SCHEMA_KIND, make_schema())

        result = await reconciler.reconcile("default", "orders")

        assert result.requeue_after == 300
        assert fake_registry.endpoints == ["http://registry.default.svc:8082"]
        assert fake_registry.active_versions("orders-value") == [1]

        schema = await _get(store)
        assert FINALIZER in schema["metadata"]["finalizers"]
        assert schema["metadata"]["labels"][CONTENT_HASH_LABEL] == content_hash(schema["spec"]["content"])
        assert schema["status"]["ready"] is True
        assert schema["status"]["latestVersion"] == 1
        assert schema["status"]["message"] == SCHEMA_DEPLOYED_SUCCESS
        assert schema["status"]["schemaRegistryError"] == ""

        version = await _get(store, "orders-value-v1", SCHEMA_VERSION_KIND)
        assert version["spec"]["version"] == 1
        assert version["spec"]["subject"] == "orders-value"
        assert version["metadata"]["annotations"][PREVIOUS_VERSION_ANNOTATION] == "0"
        assert version["metadata"]["ownerReferences"][0]["uid"] == schema["metadata"]["uid"]

    @pytest.mark.asyncio
    async def test_unchanged_content_makes_no_registry_calls(self, store, reconciler, make_schema, registry_instance, fake_registry):
        await registry_instance()
        await store.create(SCHEMA_KIND, make_schema())
        await reconciler.reconcile("default", "orders")
        before = await _get(store)
        fake_registry.requests.clear()

        result = await reconciler.reconcile("default", "orders")

        assert fake_registry.requests == []
        assert result.requeue_after == 300
        after = await _get(store)
        assert after["metadata"]["resourceVersion"] == before["metadata"]["resourceVersion"]
        assert after["status"]["lastTransitionTime"] == before["status"]["lastTransitionTime"]

    @pytest.mark.asyncio
    async def test_sync_interval_from_spec(self, store, reconciler, make_schema, registry_instance):
        await registry_instance()
        manifest = make_schema()
        manifest["spec"]["schemaRegistryConfig"] = {"syncInterval": 45}
        await store.create(SCHEMA_KIND, manifest)

        result = await reconciler.reconcile("default", "orders")

        assert result.requeue_after == 45

    @pytest.mark.asyncio
    async def test_content_update_creates_next_version(self, store, reconciler, make_schema, registry_instance, fake_registry):
        await registry_instance()
        await store.create(SCHEMA_KIND, make_schema(content='{"type": "string"}'))
        await reconciler.reconcile("default", "orders")

        schema = await _get(store)
        schema["spec"]["content"] = '{"type": "int"}'
        await store.update(SCHEMA_KIND, schema)
        await reconciler.reconcile("default", "orders")

        schema = await _get(store)
        assert schema["status"]["latestVersion"] == 2
        assert schema["metadata"]["labels"][CONTENT_HASH_LABEL] == content_hash('{"type": "int"}')
        version = await _get(store, "orders-value-v2", SCHEMA_VERSION_KIND)
        assert version["metadata"]["annotations"][PREVIOUS_VERSION_ANNOTATION] == "1"
        assert version["spec"]["content"] == '{"type": "int"}'
        assert fake_registry.active_versions("orders-value") == [1, 2]

    @pytest.mark.asyncio
    async def test_existing_version_child_counts_as_success(self, store, reconciler, make_schema, registry_instance):
        await registry_instance()
        await store.create(SCHEMA_KIND, make_schema())
        await store.create(SCHEMA_VERSION_KIND, {
            "metadata": {"name": "orders-value-v1", "namespace": "default"},
            "spec": {"subject": "orders-value", "version": 1},
        })

        result = await reconciler.reconcile("default", "orders")

        assert result.requeue_after == 300
        assert (await _get(store))["status"]["ready"] is True

    @pytest.mark.asyncio
    async def test_subject_and_key_target(self, store, reconciler, make_schema, registry_instance, fake_registry):
        await registry_instance()
        await store.create(SCHEMA_KIND, make_schema(subject="payments", target="KEY"))

        await reconciler.reconcile("default", "orders")

        assert fake_registry.active_versions("payments-key") == [1]
        await _get(store, "payments-key-v1", SCHEMA_VERSION_KIND)


class TestRegistryErrors:
    """Registry failures are reported in status and retried."""

    @pytest.mark.asyncio
    async def test_incompatible_schema(self, store, reconciler, make_schema, registry_instance, fake_registry):
        await registry_instance()
        fake_registry.incompatible.add("orders-value")
        await store.create(SCHEMA_KIND, make_schema())

        result = await reconciler.reconcile("default", "orders")

        schema = await _get(store)
        assert result.requeue_after == 60
        assert schema["status"]["ready"] is False
        assert schema["status"]["message"] == "Failed to deploy schema to Schema Registry: registry"
        assert schema["status"]["schemaRegistryError"] == "Schema being registered is incompatible with an earlier schema"
        assert CONTENT_HASH_LABEL not in schema["metadata"]["labels"]
        assert await store.list(SCHEMA_VERSION_KIND) == []

    @pytest.mark.asyncio
    async def test_invalid_schema(self, store, reconciler, make_schema, registry_instance):
        await registry_instance()
        await store.create(SCHEMA_KIND, make_schema(content="invalid {"))

        result = await reconciler.reconcile("default", "orders")

        schema = await _get(store)
        assert result.requeue_after == 60
        assert schema["status"]["ready"] is False
        assert schema["status"]["schemaRegistryError"] == "Invalid schema invalid {"

    @pytest.mark.asyncio
    async def test_fixing_content_clears_registry_error(self, store, reconciler, make_schema, registry_instance):
        await registry_instance()
        await store.create(SCHEMA_KIND, make_schema(content="invalid {"))
        await reconciler.reconcile("default", "orders")

        schema = await _get(store)
        schema["spec"]["content"] = '{"type": "string"}'
        await store.update(SCHEMA_KIND, schema)
        await reconciler.reconcile("default", "orders")

        schema = await _get(store)
        assert schema["status"]["ready"] is True
        assert schema["status"]["schemaRegistryError"] == ""

    @pytest.mark.asyncio
    async def test_transient_failure(self, store, reconciler, make_schema, registry_instance, fake_registry):
        await registry_instance()
        fake_registry.fail_with = (500, {"error_code": 50001, "message": "backend down"})
        await store.create(SCHEMA_KIND, make_schema())

        result = await reconciler.reconcile("default", "orders")

        schema = await _get(store)
        assert result.requeue_after == 60
        assert schema["status"]["ready"] is False
        assert "backend down" in schema["status"]["message"]
        assert schema["status"]["schemaRegistryError"] == ""


class TestUniqueness:
    """Effective subject uniqueness per instance and namespace."""

    @pytest.mark.asyncio
    async def test_second_schema_for_same_subject_is_rejected(self, store, reconciler, make_schema, registry_instance, fake_registry):
        await registry_instance()
        await store.create(SCHEMA_KIND, make_schema(name="alpha", subject="shared"))
        await store.create(SCHEMA_KIND, make_schema(name="beta", subject="shared"))

        result = await reconciler.reconcile("default", "beta")

        beta = await _get(store, "beta")
        assert result.requeue_after == 600
        assert beta["status"]["ready"] is False
        assert "alpha" in beta["status"]["message"]
        assert "shared-value" in beta["status"]["message"]
        assert fake_registry.requests == []

        await reconciler.reconcile("default", "alpha")
        await reconciler.reconcile("default", "beta")

        assert (await _get(store, "alpha"))["status"]["ready"] is True
        assert (await _get(store, "beta"))["status"]["ready"] is False

    @pytest.mark.asyncio
    async def test_registered_schema_wins_over_older_name(self, store, reconciler, make_schema, registry_instance):
        await registry_instance()
        await store.create(SCHEMA_KIND, make_schema(name="zeta", subject="shared"))
        await reconciler.reconcile("default", "zeta")
        await store.create(SCHEMA_KIND, make_schema(name="alpha", subject="shared"))

        await reconciler.reconcile("default", "alpha")

        assert (await _get(store, "alpha"))["status"]["ready"] is False
        assert (await _get(store, "zeta"))["status"]["ready"] is True

    @pytest.mark.asyncio
    async def test_other_target_is_not_a_conflict(self, store, reconciler, make_schema, registry_instance):
        await registry_instance()
        await store.create(SCHEMA_KIND, make_schema(name="alpha", subject="shared", target="KEY"))
        await store.create(SCHEMA_KIND, make_schema(name="beta", subject="shared", target="VALUE"))

        await reconciler.reconcile("default", "beta")

        assert (await _get(store, "beta"))["status"]["ready"] is True

    @pytest.mark.asyncio
    async def test_other_instance_is_not_a_conflict(self, store, reconciler, make_schema, registry_instance):
        await registry_instance("registry")
        await registry_instance("registry-2")
        await store.create(SCHEMA_KIND, make_schema(name="alpha", subject="shared", instance="registry-2"))
        await store.create(SCHEMA_KIND, make_schema(name="beta", subject="shared", instance="registry"))

        await reconciler.reconcile("default", "beta")

        assert (await _get(store, "beta"))["status"]["ready"] is True


class TestCompatibility:
    """Subject compatibility level."""

    @pytest.mark.asyncio
    async def test_level_is_applied(self, store, reconciler, make_schema, registry_instance, fake_registry):
        await registry_instance()
        await store.create(SCHEMA_KIND, make_schema(compatibility_level="FULL"))

        await reconciler.reconcile("default", "orders")

        assert fake_registry.config["orders-value"] == "FULL"

    @pytest.mark.asyncio
    async def test_matching_level_is_not_rewritten(self, store, reconciler, make_schema, registry_instance, fake_registry):
        await registry_instance()
        fake_registry.config["orders-value"] = "BACKWARD"
        await store.create(SCHEMA_KIND, make_schema(compatibility_level="BACKWARD"))

        await reconciler.reconcile("default", "orders")

        assert fake_registry.calls("PUT") == []

    @pytest.mark.asyncio
    async def test_failure_is_reported_without_rollback(self, store, reconciler, make_schema, registry_instance, fake_registry):
        await registry_instance()
        fake_registry._config = lambda request, subject: httpx.Response(
            500, json={"error_code": 50001, "message": "config store down"}
        )
        await store.create(SCHEMA_KIND, make_schema(compatibility_level="FULL"))

        await reconciler.reconcile("default", "orders")

        schema = await _get(store)
        assert schema["status"]["ready"] is True
        assert schema["status"]["latestVersion"] == 1
        assert "compatibility level not applied" in schema["status"]["message"]
        assert fake_registry.active_versions("orders-value") == [1]

    @pytest.mark.asyncio
    async def test_level_only_edit_waits_for_content_change(self, store, reconciler, make_schema, registry_instance, fake_registry):
        await registry_instance()
        await store.create(SCHEMA_KIND, make_schema(compatibility_level="NONE"))
        await reconciler.reconcile("default", "orders")
        schema = await _get(store)
        schema["spec"]["compatibilityLevel"] = "FULL"
        await store.update(SCHEMA_KIND, schema)
        fake_registry.requests.clear()

        await reconciler.reconcile("default", "orders")
        assert fake_registry.requests == []

        schema = await _get(store)
        schema["spec"]["content"] = '{"type": "int"}'
        await store.update(SCHEMA_KIND, schema)
        await reconciler.reconcile("default", "orders")
        assert fake_registry.config["orders-value"] == "FULL"


class TestDeletion:
    """Finalizer driven subject teardown."""

    async def _registered(self, store, reconciler, make_schema, registry_instance):
        await registry_instance()
        await store.create(SCHEMA_KIND, make_schema())
        await reconciler.reconcile("default", "orders")
        await store.delete(SCHEMA_KIND, "default", "orders")

    @pytest.mark.asyncio
    async def test_subject_soft_then_permanently_deleted(self, store, reconciler, make_schema, registry_instance, fake_registry):
        await self._registered(store, reconciler, make_schema, registry_instance)
        fake_registry.requests.clear()

        result = await reconciler.reconcile("default", "orders")

        assert result.requeue is False
        assert "orders-value" not in fake_registry.subjects
        assert fake_registry.calls("DELETE") == ["DELETE /subjects/orders-value", "DELETE /subjects/orders-value"]
        assert [r.url.params["permanent"] for r in fake_registry.requests] == ["false", "true"]
        with pytest.raises(ResourceNotFoundError):
            await _get(store)

    @pytest.mark.asyncio
    async def test_absent_subject_still_releases_finalizer(self, store, reconciler, make_schema, registry_instance, fake_registry):
        await self._registered(store, reconciler, make_schema, registry_instance)
        fake_registry.subjects.clear()

        result = await reconciler.reconcile("default", "orders")

        assert result.requeue is False
        with pytest.raises(ResourceNotFoundError):
            await _get(store)

    @pytest.mark.asyncio
    async def test_both_steps_failing_keeps_finalizer(self, store, reconciler, make_schema, registry_instance, fake_registry):
        await self._registered(store, reconciler, make_schema, registry_instance)
        fake_registry.fail_with = (500, {"error_code": 50001, "message": "backend down"})

        result = await reconciler.reconcile("default", "orders")

        assert result.requeue_after == 60
        schema = await _get(store)
        assert FINALIZER in schema["metadata"]["finalizers"]

    @pytest.mark.asyncio
    async def test_unresolvable_instance_releases_finalizer(self, store, reconciler, make_schema, registry_instance, fake_registry):
        await self._registered(store, reconciler, make_schema, registry_instance)
        await store.delete(SCHEMA_REGISTRY_KIND, "default", "registry")
        fake_registry.requests.clear()

        await reconciler.reconcile("default", "orders")

        assert fake_registry.requests == []
        with pytest.raises(ResourceNotFoundError):
            await _get(store)

    @pytest.mark.asyncio
    async def test_children_are_marked_for_deletion(self, store, reconciler, make_schema, registry_instance):
        await self._registered(store, reconciler, make_schema, registry_instance)

        await reconciler.reconcile("default", "orders")

        child = await _get(store, "orders-value-v1", SCHEMA_VERSION_KIND)
        assert child["metadata"]["deletionTimestamp"]

    @pytest.mark.asyncio
    async def test_rejected_duplicate_gets_no_finalizer(self, store, reconciler, make_schema, registry_instance):
        await registry_instance()
        await store.create(SCHEMA_KIND, make_schema())
        await reconciler.reconcile("default", "orders")
        await store.create(SCHEMA_KIND, make_schema(name="dup", subject="orders"))

        await reconciler.reconcile("default", "dup")

        dup = await _get(store, "dup")
        assert dup["status"]["ready"] is False
        assert FINALIZER not in dup["metadata"].get("finalizers", [])

    @pytest.mark.asyncio
    async def test_deleting_duplicate_keeps_owner_subject(self, store, reconciler, make_schema, registry_instance, fake_registry):
        await registry_instance()
        await store.create(SCHEMA_KIND, make_schema())
        await reconciler.reconcile("default", "orders")
        dup = make_schema(name="dup", subject="orders")
        dup["metadata"]["finalizers"] = [FINALIZER]
        await store.create(SCHEMA_KIND, dup)
        await reconciler.reconcile("default", "dup")
        await store.delete(SCHEMA_KIND, "default", "dup")
        fake_registry.requests.clear()

        result = await reconciler.reconcile("default", "dup")

        assert result.requeue is False
        assert fake_registry.calls("DELETE") == []
        assert fake_registry.active_versions("orders-value") == [1]
        assert (await _get(store))["status"]["ready"] is True
        with pytest.raises(ResourceNotFoundError):
            await _get(store, "dup")

    @pytest.mark.asyncio
    async def test_never_registered_schema_skips_subject_delete(self, store, reconciler, make_schema, registry_instance, fake_registry):
        await registry_instance()
        fake_registry.incompatible.add("orders-value")
        await store.create(SCHEMA_KIND, make_schema())
        await reconciler.reconcile("default", "orders")
        assert FINALIZER in (await _get(store))["metadata"]["finalizers"]
        await store.delete(SCHEMA_KIND, "default", "orders")
        fake_registry.requests.clear()

        await reconciler.reconcile("default", "orders")

        assert fake_registry.calls("DELETE") == []
        with pytest.raises(ResourceNotFoundError):
            await _get(store)
