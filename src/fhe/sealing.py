"""
Sealed-box style transport encryption for values that leave this process.

Format: ephemeral X25519 public key (32 bytes) || AES-GCM nonce (12 bytes) ||
AES-GCM ciphertext+tag. The AES key is HKDF-SHA256 over the X25519 shared
secret, salted with both public keys.
"""

from __future__ import annotations

import base64
import os
from typing import Tuple

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey, X25519PublicKey
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF


KEY_LEN = 32
NONCE_LEN = 12
DEFAULT_INFO = b"mutual-match/seal/v1"


class SealingError(ValueError):
    """Raised for malformed keys or sealed payloads that fail authentication."""


def _raw_public(key: X25519PublicKey) -> bytes:
    return key.public_bytes(encoding=serialization.Encoding.Raw, format=serialization.PublicFormat.Raw)


def _derive(shared: bytes, eph_pub: bytes, recipient_pub: bytes, info: bytes) -> bytes:
    return HKDF(
        algorithm=hashes.SHA256(),
        length=32,
        salt=eph_pub + recipient_pub,
        info=info,
    ).derive(shared)


def load_public_key(encoded: str) -> X25519PublicKey:
    """Accept a 0x-hex or base64 encoded raw X25519 public key."""
    try:
        if encoded.startswith("0x"):
            raw = bytes.fromhex(encoded[2:])
        else:
            raw = base64.b64decode(encoded, validate=True)
        if len(raw) != KEY_LEN:
            raise ValueError(f"expected {KEY_LEN} bytes, got {len(raw)}")
        return X25519PublicKey.from_public_bytes(raw)
    except ValueError as exc:
        raise SealingError(f"Invalid X25519 public key: {exc}") from exc


def load_private_key(hex_key: str) -> X25519PrivateKey:
    try:
        raw = bytes.fromhex(hex_key[2:] if hex_key.startswith("0x") else hex_key)
        return X25519PrivateKey.from_private_bytes(raw)
    except ValueError as exc:
        raise SealingError(f"Invalid X25519 private key: {exc}") from exc


def generate_keypair() -> Tuple[str, str]:
    """Fresh X25519 key pair as `(public_hex, private_hex)`, both 0x-prefixed."""
    priv = X25519PrivateKey.generate()
    priv_raw = priv.private_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PrivateFormat.Raw,
        encryption_algorithm=serialization.NoEncryption(),
    )
    return ("0x" + _raw_public(priv.public_key()).hex(), "0x" + priv_raw.hex())


def seal(recipient: X25519PublicKey, plaintext: bytes, *, info: bytes = DEFAULT_INFO) -> bytes:
    eph = X25519PrivateKey.generate()
    eph_pub = _raw_public(eph.public_key())
    key = _derive(eph.exchange(recipient), eph_pub, _raw_public(recipient), info)
    nonce = os.urandom(NONCE_LEN)
    return eph_pub + nonce + AESGCM(key).encrypt(nonce, plaintext, None)


def unseal(private_key: X25519PrivateKey, sealed: bytes, *, info: bytes = DEFAULT_INFO) -> bytes:
    if len(sealed) < KEY_LEN + NONCE_LEN + 16:
        raise SealingError("Sealed payload too short")
    eph_pub = sealed[:KEY_LEN]
    nonce = sealed[KEY_LEN : KEY_LEN + NONCE_LEN]
    body = sealed[KEY_LEN + NONCE_LEN :]
    try:
        shared = private_key.exchange(X25519PublicKey.from_public_bytes(eph_pub))
    except ValueError as exc:
        raise SealingError("Invalid ephemeral key in sealed payload") from exc
    key = _derive(shared, eph_pub, _raw_public(private_key.public_key()), info)
    try:
        return AESGCM(key).decrypt(nonce, body, None)
    except InvalidTag as exc:
        raise SealingError("Sealed payload failed authentication") from exc


__all__ = [
    "SealingError",
    "generate_keypair",
    "load_private_key",
    "load_public_key",
    "seal",
    "unseal",
]
