from __future__ import annotations

import base64

import pytest

from fhe.sealing import SealingError, generate_keypair, load_private_key, load_public_key, seal, unseal


def test_sealed_value_opens_only_with_recipient_key():
    pub, priv = generate_keypair()
    other_pub, other_priv = generate_keypair()

    sealed = seal(load_public_key(pub), b"\x01")

    assert unseal(load_private_key(priv), sealed) == b"\x01"
    with pytest.raises(SealingError):
        unseal(load_private_key(other_priv), sealed)


def test_info_binds_the_payload_to_its_purpose():
    pub, priv = generate_keypair()
    sealed = seal(load_public_key(pub), b"\x00", info=b"one")

    with pytest.raises(SealingError):
        unseal(load_private_key(priv), sealed, info=b"two")


def test_each_seal_is_randomized():
    pub, _ = generate_keypair()
    key = load_public_key(pub)
    assert seal(key, b"\x01") != seal(key, b"\x01")


def test_public_key_accepts_hex_and_base64():
    pub, _ = generate_keypair()
    raw = bytes.fromhex(pub[2:])
    b64 = base64.b64encode(raw).decode("ascii")

    assert load_public_key(b64).public_bytes_raw() == raw


@pytest.mark.parametrize("bad", ["0x1234", "not-base64!", "0xzz"])
def test_malformed_public_key(bad):
    with pytest.raises(SealingError):
        load_public_key(bad)


def test_truncated_payload():
    _, priv = generate_keypair()
    with pytest.raises(SealingError, match="too short"):
        unseal(load_private_key(priv), b"\x00" * 40)
