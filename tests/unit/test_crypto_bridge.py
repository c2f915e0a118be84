"""Unit tests for the crypto bridge — HMAC signing and AES envelopes."""

from __future__ import annotations

import base64
import hashlib
import hmac

import pytest

from pwaforge.bridge.crypto_bridge import (
    CryptoConfigError,
    EnvelopeError,
    decrypt_envelope,
    derive_aes_key,
    encrypt_envelope,
    generate_hmac,
    parse_envelope,
    verify_hmac,
)

PSK = "unit-test-psk"


# ---------------------------------------------------------------------------
# Test: HMAC
# ---------------------------------------------------------------------------


class TestGenerateHmac:
    """HMAC-SHA256 keyed by the PSK's UTF-8 bytes, base64 with padding."""

    def test_matches_rfc4231_vector(self):
        """RFC 4231 test case 2: key 'Jefe'."""
        expected_hex = "5bdcc146bf60754e6a042426089575c75a003f089d2739839dec58b964ec3843"
        expected = base64.b64encode(bytes.fromhex(expected_hex)).decode()
        assert generate_hmac("Jefe", "what do ya want for nothing?") == expected

    def test_matches_independent_hmac(self):
        device_id = "3f2b8c1e-device"
        mac = hmac.new(PSK.encode("utf-8"), device_id.encode("utf-8"), hashlib.sha256).digest()
        assert generate_hmac(PSK, device_id) == base64.b64encode(mac).decode()

    def test_deterministic(self):
        assert generate_hmac(PSK, "abc") == generate_hmac(PSK, "abc")

    def test_output_is_padded_base64_of_32_bytes(self):
        sig = generate_hmac(PSK, "abc")
        assert len(sig) == 44
        assert sig.endswith("=")
        assert len(base64.b64decode(sig)) == 32

    def test_psk_is_not_base64_decoded(self):
        """A PSK that happens to be valid base64 is still used as raw text."""
        psk = "c2VjcmV0"
        raw = hmac.new(psk.encode(), b"id", hashlib.sha256).digest()
        assert generate_hmac(psk, "id") == base64.b64encode(raw).decode()

    def test_different_keys_differ(self):
        assert generate_hmac("k1", "id") != generate_hmac("k2", "id")

    def test_empty_psk_raises(self):
        with pytest.raises(CryptoConfigError):
            generate_hmac("", "id")

    def test_verify_hmac(self):
        sig = generate_hmac(PSK, "id")
        assert verify_hmac(PSK, "id", sig) is True
        assert verify_hmac(PSK, "other", sig) is False
        assert verify_hmac("", "id", sig) is False


# ---------------------------------------------------------------------------
# Test: Envelope
# ---------------------------------------------------------------------------


class TestEnvelope:
    """AES-256-CBC/PKCS7 with key SHA-256(PSK), 'ivHex:cipherHex'."""

    def test_aes_key_is_sha256_of_psk(self):
        assert derive_aes_key(PSK) == hashlib.sha256(PSK.encode()).digest()
        assert len(derive_aes_key(PSK)) == 32

    def test_round_trip(self):
        envelope = encrypt_envelope("sk-or-v1-abcdef", PSK)
        assert decrypt_envelope(envelope, PSK) == "sk-or-v1-abcdef"

    def test_round_trip_non_ascii(self):
        envelope = encrypt_envelope("clé-ключ", PSK)
        assert decrypt_envelope(envelope, PSK) == "clé-ключ"

    def test_fixed_iv_is_deterministic(self):
        iv = bytes(range(16))
        a = encrypt_envelope("secret", PSK, iv=iv)
        b = encrypt_envelope("secret", PSK, iv=iv)
        assert a == b
        assert a.split(":")[0] == iv.hex()

    def test_block_aligned_plaintext_gets_full_padding_block(self):
        envelope = encrypt_envelope("x" * 16, PSK)
        _, cipher_hex = envelope.split(":")
        assert len(bytes.fromhex(cipher_hex)) == 32
        assert decrypt_envelope(envelope, PSK) == "x" * 16

    def test_wrong_key_fails_closed(self):
        envelope = encrypt_envelope("secret-value-long-enough", PSK)
        # Wrong key almost always breaks padding; if it happens to unpad,
        # the plaintext still must not match.
        assert decrypt_envelope(envelope, "other-psk") != "secret-value-long-enough"

    def test_parse_envelope_splits_parts(self):
        iv, cipher = parse_envelope("00" * 16 + ":" + "ff" * 32)
        assert iv == bytes(16)
        assert cipher == b"\xff" * 32

    def test_empty_psk_raises_on_decrypt(self):
        with pytest.raises(CryptoConfigError):
            decrypt_envelope("00" * 16 + ":" + "00" * 16, "")

    def test_encrypt_rejects_short_iv(self):
        with pytest.raises(EnvelopeError):
            encrypt_envelope("x", PSK, iv=b"short")
