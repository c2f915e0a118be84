"""Unit tests for the CredentialBroker — registration, demo key, quota."""

from __future__ import annotations

import pytest

from pwaforge.bridge.crypto_bridge import generate_hmac
from pwaforge.config import AppConfig
from pwaforge.core.credential_broker import (
    KEY_DEMO_API_KEY,
    KEY_DEVICE_ID,
    KEY_USAGE_COUNT,
    CredentialBroker,
)
from pwaforge.core.state_store import StateStore

DAY_MS = 24 * 60 * 60 * 1000


# ---------------------------------------------------------------------------
# Test: Device registration
# ---------------------------------------------------------------------------


class TestRegisterDevice:
    def test_registers_and_persists(self, broker, demo_service, state_store):
        assert broker.register_device() is True
        assert state_store.get(KEY_DEVICE_ID) == "device-0001"
        path, payload = demo_service.calls[0]
        assert path == "/api/register-device"
        assert payload == {"appSecret": "test-app-secret", "deviceInfo": {"model": "pwaforge-cli"}}

    def test_existing_identity_short_circuits(self, broker, demo_service, state_store):
        state_store.set(KEY_DEVICE_ID, "already")
        assert broker.register_device() is True
        assert demo_service.calls == []

    def test_http_error_is_soft_failure(self, broker, demo_service):
        demo_service.register_status = 500
        assert broker.register_device() is False
        assert broker.get_device_id() is None

    def test_network_error_is_soft_failure(self, broker, demo_service):
        demo_service.network_down = True
        assert broker.register_device() is False

    def test_clear_device_id(self, broker):
        broker.register_device()
        broker.clear_device_id()
        assert broker.get_device_id() is None


# ---------------------------------------------------------------------------
# Test: Demo key
# ---------------------------------------------------------------------------


class TestFetchDemoApiKey:
    def test_hmac_uses_configured_psk(self, broker, app_config):
        assert broker.generate_hmac("dev") == generate_hmac(app_config.demo_psk, "dev")

    def test_requires_device(self, broker, demo_service):
        assert broker.fetch_demo_api_key() is None
        assert demo_service.calls == []

    def test_fetch_decrypts_and_caches(self, broker, demo_service, state_store):
        broker.register_device()
        key = broker.fetch_demo_api_key()
        assert key == demo_service.api_key
        assert state_store.get(KEY_DEMO_API_KEY) == demo_service.api_key
        path, payload = demo_service.calls[-1]
        assert path == "/api/get-api-key"
        assert payload["deviceId"] == "device-0001"
        assert payload["hmac"] == generate_hmac(demo_service.psk, "device-0001")

    def test_malformed_envelope_returns_none(self, broker, demo_service, state_store):
        demo_service.envelope_override = "not-an-envelope"
        broker.register_device()
        assert broker.fetch_demo_api_key() is None
        assert state_store.get(KEY_DEMO_API_KEY) is None

    def test_three_part_envelope_returns_none(self, broker, demo_service):
        demo_service.envelope_override = "00:11:22"
        broker.register_device()
        assert broker.fetch_demo_api_key() is None

    def test_missing_psk_returns_none(self, app_config, state_store, demo_service, clock):
        cfg = app_config.model_copy(update={"demo_psk": ""})
        broker = CredentialBroker(cfg, state_store, session=demo_service, clock=clock)
        state_store.set(KEY_DEVICE_ID, "device-0001")
        assert broker.fetch_demo_api_key() is None

    def test_server_rejection_returns_none(self, broker, demo_service):
        broker.register_device()
        demo_service.key_status = 403
        assert broker.fetch_demo_api_key() is None


class TestAcquireDemoCredential:
    def test_first_use_registers_then_fetches(self, broker, demo_service):
        assert broker.acquire_demo_credential() == demo_service.api_key
        assert demo_service.paths() == ["/api/register-device", "/api/get-api-key"]

    def test_cached_key_avoids_network(self, broker, demo_service, state_store):
        state_store.set(KEY_DEMO_API_KEY, "cached-key")
        assert broker.acquire_demo_credential() == "cached-key"
        assert demo_service.calls == []

    def test_stale_device_is_re_registered(self, broker, demo_service, state_store):
        state_store.set(KEY_DEVICE_ID, "forgotten-by-server")
        assert broker.acquire_demo_credential() == demo_service.api_key
        assert broker.get_device_id() == "device-0001"
        assert demo_service.paths() == [
            "/api/get-api-key",
            "/api/register-device",
            "/api/get-api-key",
        ]

    def test_unreachable_service_returns_none(self, broker, demo_service):
        demo_service.network_down = True
        assert broker.acquire_demo_credential() is None


# ---------------------------------------------------------------------------
# Test: Quota
# ---------------------------------------------------------------------------


class TestQuota:
    def test_fresh_state_allows_use(self, broker):
        assert broker.can_use_demo_key() is True

    def test_five_uses_exhaust_quota(self, broker):
        for expected in range(1, 6):
            assert broker.increment_usage() == expected
        assert broker.can_use_demo_key() is False

    def test_window_resets_after_24h(self, broker, clock):
        for _ in range(5):
            broker.increment_usage()
        clock.advance(DAY_MS)
        assert broker.can_use_demo_key() is True
        assert broker.quota_status().usage_count == 0

    def test_window_does_not_reset_early(self, broker, clock):
        for _ in range(5):
            broker.increment_usage()
        clock.advance(DAY_MS - 1)
        assert broker.can_use_demo_key() is False

    def test_increment_after_window_starts_new_count(self, broker, clock, state_store):
        for _ in range(3):
            broker.increment_usage()
        clock.advance(DAY_MS + 5)
        assert broker.increment_usage() == 1
        assert state_store.get_int(KEY_USAGE_COUNT) == 1

    def test_quota_status(self, broker, clock):
        broker.increment_usage()
        status = broker.quota_status()
        assert status.usage_count == 1
        assert status.window_start_ms == clock()
        assert status.remaining == 4
        assert status.exhausted is False

    def test_limit_follows_config(self, app_config, state_store, demo_service, clock):
        cfg = app_config.model_copy(update={"max_daily_demo_uses": 1})
        broker = CredentialBroker(cfg, state_store, session=demo_service, clock=clock)
        broker.increment_usage()
        assert broker.can_use_demo_key() is False


class TestReservation:
    def test_reserve_counts_immediately(self, broker, clock):
        assert broker.reserve_demo_use() == clock()
        assert broker.quota_status().usage_count == 1

    def test_last_slot_goes_to_one_reservation(self, broker):
        for _ in range(4):
            broker.increment_usage()
        assert broker.reserve_demo_use() is not None
        assert broker.reserve_demo_use() is None
        assert broker.quota_status().usage_count == 5

    def test_release_frees_the_slot(self, broker):
        for _ in range(4):
            broker.increment_usage()
        window = broker.reserve_demo_use()
        broker.release_demo_use(window)
        assert broker.quota_status().usage_count == 4
        assert broker.reserve_demo_use() is not None

    def test_release_after_rollover_is_ignored(self, broker, clock):
        window = broker.reserve_demo_use()
        clock.advance(DAY_MS)
        broker.increment_usage()
        broker.release_demo_use(window)
        assert broker.quota_status().usage_count == 1


# ---------------------------------------------------------------------------
# Test: User key
# ---------------------------------------------------------------------------


class TestUserApiKey:
    def test_absent_by_default(self, broker):
        assert broker.get_user_api_key() is None

    def test_set_and_clear(self, broker):
        broker.set_user_api_key("  sk-user  ")
        assert broker.get_user_api_key() == "sk-user"
        broker.set_user_api_key(None)
        assert broker.get_user_api_key() is None

    def test_falls_back_to_config(self, app_config: AppConfig, state_store: StateStore, demo_service, clock):
        cfg = app_config.model_copy(update={"user_api_key": "sk-from-env"})
        broker = CredentialBroker(cfg, state_store, session=demo_service, clock=clock)
        assert broker.get_user_api_key() == "sk-from-env"
        broker.set_user_api_key("sk-stored")
        assert broker.get_user_api_key() == "sk-stored"

    @pytest.mark.parametrize("blank", ["", "   "])
    def test_blank_key_removes(self, broker, blank):
        broker.set_user_api_key("sk-user")
        broker.set_user_api_key(blank)
        assert broker.get_user_api_key() is None
