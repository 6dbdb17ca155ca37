"""Tests for operator settings."""

from sroperator.core.config import OperatorSettings, get_settings, reset_settings


class TestFromEnv:
    def test_defaults(self, monkeypatch):
        for name in ("WATCH_NAMESPACE", "STORE_BACKEND", "DEFAULT_SYNC_INTERVAL", "REGISTRY_SERVICE_PORT"):
            monkeypatch.delenv(name, raising=False)

        settings = OperatorSettings.from_env()

        assert settings.watch_namespace == ""
        assert settings.store_backend == "kubernetes"
        assert settings.default_sync_interval == 300
        assert settings.error_requeue_seconds == 60
        assert settings.instance_requeue_seconds == 600
        assert settings.registry_service_port == 8082

    def test_overrides(self, monkeypatch):
        monkeypatch.setenv("WATCH_NAMESPACE", "team-a")
        monkeypatch.setenv("STORE_BACKEND", "MEMORY")
        monkeypatch.setenv("MAX_CONCURRENT_RECONCILES", "8")
        monkeypatch.setenv("REGISTRY_TIMEOUT_SECONDS", "2.5")
        monkeypatch.setenv("DEFAULT_SYNC_INTERVAL", "")

        settings = OperatorSettings.from_env()

        assert settings.watch_namespace == "team-a"
        assert settings.store_backend == "memory"
        assert settings.max_concurrent_reconciles == 8
        assert settings.registry_timeout_seconds == 2.5
        assert settings.default_sync_interval == 300

    def test_cached_until_reset(self, monkeypatch):
        reset_settings()
        monkeypatch.setenv("WATCH_NAMESPACE", "first")
        assert get_settings().watch_namespace == "first"

        monkeypatch.setenv("WATCH_NAMESPACE", "second")
        assert get_settings().watch_namespace == "first"

        reset_settings()
        assert get_settings().watch_namespace == "second"
        reset_settings()


class TestValidate:
    def test_valid(self):
        assert OperatorSettings(store_backend="memory").validate() == []

    def test_problems_reported(self):
        settings = OperatorSettings(
            store_backend="etcd",
            max_concurrent_reconciles=0,
            error_requeue_seconds=0,
            registry_url_template="http://registry:8081",
        )

        problems = settings.validate()

        assert any("STORE_BACKEND" in p for p in problems)
        assert any("MAX_CONCURRENT_RECONCILES" in p for p in problems)
        assert any("ERROR_REQUEUE_SECONDS" in p for p in problems)
        assert any("REGISTRY_URL_TEMPLATE" in p for p in problems)
