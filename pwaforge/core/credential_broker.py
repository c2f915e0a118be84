"""Credential broker — anonymous device registration and the demo API key.

Flow on first use of the demo credential::

    register_device()      POST /api/register-device  -> deviceId
    generate_hmac(id)      HMAC-SHA256(PSK, deviceId), base64
    fetch_demo_api_key()   POST /api/get-api-key      -> "ivHex:cipherHex"
                           AES-256-CBC decrypt with SHA-256(PSK)

The decrypted key is cached in the StateStore.  Use of the demo key is
limited to ``max_daily_uses`` successful calls per rolling window.  The
pipeline reserves a slot before calling and releases it unless the call
returned choices, so only confirmed successes stay counted.

Every public operation degrades to a sentinel (``False`` / ``None``) on
network, protocol or crypto failure.  Nothing here raises into the
pipeline.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any

import requests

from pwaforge.bridge import crypto_bridge
from pwaforge.config import AppConfig
from pwaforge.core.state_store import StateStore, StateTransaction
from pwaforge.models.quota import QuotaWindow

logger = logging.getLogger(__name__)

# StateStore keys
KEY_DEVICE_ID = "device_id"
KEY_DEMO_API_KEY = "demo_api_key"
KEY_USAGE_COUNT = "quota.usage_count"
KEY_WINDOW_START = "quota.window_start_ms"
KEY_USER_API_KEY = "user_api_key"

REGISTER_PATH = "/api/register-device"
GET_KEY_PATH = "/api/get-api-key"


def _now_ms() -> int:
    return int(time.time() * 1000)


class CredentialBroker:
    """Owns the device identity, the cached demo key and the quota window.

    Parameters
    ----------
    config:
        Application configuration (demo URL, PSK, app secret, quota).
    store:
        Durable state.
    session:
        HTTP session used for the demo service. Tests inject a fake.
    clock:
        Returns the current time in epoch milliseconds.
    """

    def __init__(
        self,
        config: AppConfig,
        store: StateStore,
        *,
        session: requests.Session | None = None,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self._config = config
        self._store = store
        self._session = session or requests.Session()
        self._clock = clock

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _post_json(self, path: str, payload: dict[str, Any]) -> dict[str, Any] | None:
        """POST to the demo service; return the JSON object body or None."""
        url = self._config.demo_api_url.rstrip("/") + path
        try:
            response = self._session.post(
                url,
                json=payload,
                timeout=self._config.demo_request_timeout_seconds,
            )
        except requests.RequestException as exc:
            logger.warning("Demo service request to %s failed: %s", path, exc)
            return None

        if not response.ok:
            logger.warning("Demo service %s returned HTTP %d", path, response.status_code)
            return None
        try:
            body = response.json()
        except ValueError:
            logger.warning("Demo service %s returned a non-JSON body", path)
            return None
        if not isinstance(body, dict):
            logger.warning("Demo service %s returned %s, expected an object", path, type(body).__name__)
            return None
        return body

    # ------------------------------------------------------------------
    # Device identity
    # ------------------------------------------------------------------

    def get_device_id(self) -> str | None:
        return self._store.get(KEY_DEVICE_ID) or None

    def register_device(self) -> bool:
        """Obtain a device identity from the demo service.

        Returns ``True`` immediately when one is already stored.  A second
        concurrent registration keeps whichever identity was stored first.
        """
        if self.get_device_id():
            return True

        body = self._post_json(
            REGISTER_PATH,
            {
                "appSecret": self._config.demo_app_secret,
                "deviceInfo": {"model": self._config.device_model},
            },
        )
        if body is None:
            return False
        device_id = body.get("deviceId")
        if not isinstance(device_id, str) or not device_id:
            logger.warning("Device registration response carried no deviceId")
            return False

        with self._store.transaction() as tx:
            if not tx.get(KEY_DEVICE_ID):
                tx.set(KEY_DEVICE_ID, device_id)
        logger.info("Device registered")
        return True

    def clear_device_id(self) -> None:
        """Forget the device identity so the next use re-registers."""
        self._store.delete(KEY_DEVICE_ID)
        logger.info("Device identity cleared")

    # ------------------------------------------------------------------
    # Demo key
    # ------------------------------------------------------------------

    def generate_hmac(self, device_id: str) -> str:
        """Base64 HMAC-SHA256 of *device_id* under the configured PSK.

        Raises
        ------
        CryptoConfigError
            If no PSK is configured.
        """
        return crypto_bridge.generate_hmac(self._config.demo_psk, device_id)

    def get_demo_api_key(self) -> str | None:
        return self._store.get(KEY_DEMO_API_KEY) or None

    def clear_demo_api_key(self) -> None:
        self._store.delete(KEY_DEMO_API_KEY)

    def fetch_demo_api_key(self) -> str | None:
        """Exchange the signed device identity for the shared API key.

        Caches and returns the decrypted key, or returns ``None`` on any
        failure (no device id, transport, HTTP status, malformed or
        undecryptable envelope, missing PSK).
        """
        device_id = self.get_device_id()
        if not device_id:
            logger.warning("Cannot fetch demo key: device is not registered")
            return None

        try:
            signature = self.generate_hmac(device_id)
        except crypto_bridge.CryptoConfigError:
            logger.exception("Cannot sign device identity")
            return None

        body = self._post_json(GET_KEY_PATH, {"deviceId": device_id, "hmac": signature})
        if body is None:
            return None
        envelope = body.get("encryptedKey")
        if not isinstance(envelope, str) or not envelope:
            logger.warning("Demo key response carried no encryptedKey")
            return None

        try:
            api_key = crypto_bridge.decrypt_envelope(envelope, self._config.demo_psk)
        except crypto_bridge.CryptoConfigError:
            logger.exception("Cannot decrypt demo key")
            return None
        if not api_key:
            return None

        self._store.set(KEY_DEMO_API_KEY, api_key)
        logger.info("Demo API key fetched and cached")
        return api_key

    def acquire_demo_credential(self) -> str | None:
        """Return the cached demo key, provisioning it on first use.

        If the fetch fails for an already-registered device, the identity
        is assumed stale: it is cleared and provisioning is retried once.
        """
        cached = self.get_demo_api_key()
        if cached:
            return cached

        had_device = self.get_device_id() is not None
        if self.register_device():
            api_key = self.fetch_demo_api_key()
            if api_key:
                return api_key

        if had_device:
            logger.info("Re-registering device after failed demo key fetch")
            self.clear_device_id()
            if self.register_device():
                return self.fetch_demo_api_key()
        return None

    # ------------------------------------------------------------------
    # Quota
    # ------------------------------------------------------------------

    def _apply_window(self, tx: StateTransaction) -> tuple[int, int]:
        """Reset the window in *tx* if it has elapsed; return (count, start)."""
        now = self._clock()
        start = tx.get_int(KEY_WINDOW_START, 0)
        count = tx.get_int(KEY_USAGE_COUNT, 0)
        if now - start >= self._config.demo_window_ms:
            start, count = now, 0
            tx.set(KEY_WINDOW_START, start)
            tx.set(KEY_USAGE_COUNT, count)
        return count, start

    def can_use_demo_key(self) -> bool:
        """True while fewer than ``max_daily_demo_uses`` calls are recorded."""
        with self._store.transaction() as tx:
            count, _ = self._apply_window(tx)
        return count < self._config.max_daily_demo_uses

    def increment_usage(self) -> int:
        """Record one successful demo call; return the new count."""
        with self._store.transaction() as tx:
            count, _ = self._apply_window(tx)
            count += 1
            tx.set(KEY_USAGE_COUNT, count)
        logger.debug("Demo usage now %d/%d", count, self._config.max_daily_demo_uses)
        return count

    def reserve_demo_use(self) -> int | None:
        """Claim one quota slot for an in-flight call.

        The check and the increment share a transaction, so overlapping
        jobs cannot both take the last slot.  Returns the start of the
        window the slot was taken from, or ``None`` when the quota is
        exhausted.  A reservation that is never released counts as a use.
        """
        with self._store.transaction() as tx:
            count, start = self._apply_window(tx)
            if count >= self._config.max_daily_demo_uses:
                return None
            tx.set(KEY_USAGE_COUNT, count + 1)
        logger.debug("Demo slot reserved (%d/%d)", count + 1, self._config.max_daily_demo_uses)
        return start

    def release_demo_use(self, window_start: int) -> None:
        """Return a slot taken by :meth:`reserve_demo_use`.

        Does nothing if the window has rolled over since the reservation.
        """
        with self._store.transaction() as tx:
            count, start = self._apply_window(tx)
            if start != window_start or count <= 0:
                return
            tx.set(KEY_USAGE_COUNT, count - 1)
        logger.debug("Demo slot released (%d/%d)", count - 1, self._config.max_daily_demo_uses)

    def quota_status(self) -> QuotaWindow:
        with self._store.transaction() as tx:
            count, start = self._apply_window(tx)
        return QuotaWindow(
            usage_count=count,
            window_start_ms=start,
            max_uses=self._config.max_daily_demo_uses,
        )

    # ------------------------------------------------------------------
    # User key
    # ------------------------------------------------------------------

    def get_user_api_key(self) -> str | None:
        """The user's own key: stored value first, then configuration."""
        stored = self._store.get(KEY_USER_API_KEY)
        if stored:
            return stored
        return self._config.user_api_key or None

    def set_user_api_key(self, api_key: str | None) -> None:
        if api_key and api_key.strip():
            self._store.set(KEY_USER_API_KEY, api_key.strip())
        else:
            self._store.delete(KEY_USER_API_KEY)
