"""Tests for settings loading and production guards."""

import pytest

from pharmatrace.common.config import PharmaTraceSettings


class TestSettings:
    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("PHARMATRACE_DEPLOYMENT_BLOCKS", '{"31337": 0, "11155111": 5120000}')
        monkeypatch.setenv("PHARMATRACE_SYNC_BATCH_SIZE", "500")
        monkeypatch.setenv("PHARMATRACE_DISPOSABLE_CHAIN_IDS", "[31337]")
        settings = PharmaTraceSettings()
        assert settings.deployment_blocks == {31337: 0, 11155111: 5120000}
        assert settings.sync_batch_size == 500
        assert settings.is_disposable_chain(31337)
        assert not settings.is_disposable_chain(1337)

    def test_deployment_block_lookup(self):
        settings = PharmaTraceSettings(deployment_blocks={11155111: 5120000})
        assert settings.deployment_block_for(11155111) == 5120000
        assert settings.deployment_block_for(1) == 0

    def test_defaults(self):
        settings = PharmaTraceSettings()
        assert settings.trace_max_depth == 50
        assert settings.alert_max_attempts == 3
        assert settings.metadata_max_attempts == 5
        assert settings.metadata_initial_backoff == 2.0


class TestProductionGuard:
    def test_insecure_key_rejected_outside_development(self):
        settings = PharmaTraceSettings(environment="production")
        with pytest.raises(RuntimeError, match="PHARMATRACE_API_KEY"):
            settings.validate_for_production()

    def test_insecure_key_warns_in_development(self):
        settings = PharmaTraceSettings()
        with pytest.warns(UserWarning, match="insecure default admin key"):
            settings.validate_for_production()

    def test_secure_key_passes(self):
        settings = PharmaTraceSettings(environment="production", api_key="a" * 48)
        settings.validate_for_production()
