"""Crypto bridge — HMAC signing and AES envelope decryption for the demo key.

Bridge boundary
---------------
The demo credential service and this client share a pre-shared key (PSK).
The PSK is used in two ways, both starting from the UTF-8 bytes of the PSK
string (it is never base64- or hex-decoded):

1. **HMAC-SHA256 key** for signing the device identity.  The signature is
   sent as standard base64 with padding.

2. **AES-256 key** after SHA-256 hashing.  The server returns the shared
   API key as an envelope ``"<ivHex>:<cipherHex>"`` encrypted with
   AES-256-CBC and PKCS7 padding.

Decryption fails closed: any malformed envelope, wrong key or bad padding
yields ``None`` rather than an exception.  An empty PSK is a configuration
error and raises ``CryptoConfigError``.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import logging
import os

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

logger = logging.getLogger(__name__)

AES_BLOCK_BYTES = 16
ENVELOPE_SEPARATOR = ":"


class CryptoConfigError(RuntimeError):
    """Raised when the pre-shared key is missing or unusable."""


class EnvelopeError(ValueError):
    """Raised by ``parse_envelope`` for a structurally invalid envelope."""


# ---------------------------------------------------------------------------
# Key material
# ---------------------------------------------------------------------------


def _psk_bytes(psk: str) -> bytes:
    if not psk:
        raise CryptoConfigError(
            "Pre-shared key is empty. Set PWAFORGE_DEMO_PSK to enable the demo key."
        )
    return psk.encode("utf-8")


def derive_aes_key(psk: str) -> bytes:
    """Return the 32-byte AES key: SHA-256 of the PSK's UTF-8 bytes."""
    return hashlib.sha256(_psk_bytes(psk)).digest()


# ---------------------------------------------------------------------------
# HMAC
# ---------------------------------------------------------------------------


def generate_hmac(psk: str, message: str) -> str:
    """Sign *message* with HMAC-SHA256 keyed by *psk*.

    Parameters
    ----------
    psk:
        The pre-shared key string.
    message:
        Text to sign (the device identity).

    Returns
    -------
    str
        Standard base64 (with padding) of the 32-byte MAC.

    Raises
    ------
    CryptoConfigError
        If *psk* is empty.
    """
    mac = hmac.new(_psk_bytes(psk), message.encode("utf-8"), hashlib.sha256)
    return base64.b64encode(mac.digest()).decode("ascii")


def verify_hmac(psk: str, message: str, signature_b64: str) -> bool:
    """Constant-time check of a base64 HMAC produced by ``generate_hmac``."""
    try:
        expected = generate_hmac(psk, message)
    except CryptoConfigError:
        return False
    return hmac.compare_digest(expected, signature_b64)


# ---------------------------------------------------------------------------
# Envelope
# ---------------------------------------------------------------------------


def parse_envelope(envelope: str) -> tuple[bytes, bytes]:
    """Split ``"<ivHex>:<cipherHex>"`` into ``(iv, ciphertext)``.

    Raises
    ------
    EnvelopeError
        Wrong part count, invalid hex, IV not 16 bytes, or ciphertext
        empty or not a whole number of blocks.
    """
    parts = envelope.strip().split(ENVELOPE_SEPARATOR)
    if len(parts) != 2:
        raise EnvelopeError(f"expected 2 envelope parts, got {len(parts)}")
    try:
        iv = bytes.fromhex(parts[0])
        ciphertext = bytes.fromhex(parts[1])
    except ValueError as exc:
        raise EnvelopeError("envelope is not valid hex") from exc
    if len(iv) != AES_BLOCK_BYTES:
        raise EnvelopeError(f"IV must be {AES_BLOCK_BYTES} bytes, got {len(iv)}")
    if not ciphertext or len(ciphertext) % AES_BLOCK_BYTES:
        raise EnvelopeError("ciphertext is not a whole number of AES blocks")
    return iv, ciphertext


def decrypt_envelope(envelope: str, psk: str) -> str | None:
    """Decrypt a server-issued key envelope.

    Returns the plaintext, or ``None`` if the envelope is malformed, the
    padding is wrong, or the plaintext is not UTF-8.

    Raises
    ------
    CryptoConfigError
        If *psk* is empty.
    """
    key = derive_aes_key(psk)
    try:
        iv, ciphertext = parse_envelope(envelope)
    except EnvelopeError as exc:
        logger.warning("Rejected demo key envelope: %s", exc)
        return None

    decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
    padded = decryptor.update(ciphertext) + decryptor.finalize()

    unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
    try:
        plaintext = unpadder.update(padded) + unpadder.finalize()
    except ValueError:
        logger.warning("Rejected demo key envelope: invalid padding")
        return None

    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError:
        logger.warning("Rejected demo key envelope: plaintext is not UTF-8")
        return None


def encrypt_envelope(plaintext: str, psk: str, *, iv: bytes | None = None) -> str:
    """Produce an envelope that ``decrypt_envelope`` accepts.

    The client never encrypts; this exists for the key-issuing side,
    local tooling, and tests.
    """
    if iv is None:
        iv = os.urandom(AES_BLOCK_BYTES)
    if len(iv) != AES_BLOCK_BYTES:
        raise EnvelopeError(f"IV must be {AES_BLOCK_BYTES} bytes, got {len(iv)}")

    padder = padding.PKCS7(algorithms.AES.block_size).padder()
    padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()

    encryptor = Cipher(algorithms.AES(derive_aes_key(psk)), modes.CBC(iv)).encryptor()
    ciphertext = encryptor.update(padded) + encryptor.finalize()
    return f"{binascii.hexlify(iv).decode()}{ENVELOPE_SEPARATOR}{ciphertext.hex()}"
