"""Tests for payload encryption."""

import pytest

from audit_vault.backup import crypto
from audit_vault.backup.errors import BadParameters, CorruptArchive, Unauthorized

ITERATIONS = 1000


def test_encrypt_decrypt():
    payload = b"records" * 100
    encrypted = crypto.encrypt(payload, "s3cret", ITERATIONS)

    assert encrypted.ciphertext != payload
    assert crypto.decrypt(encrypted.ciphertext, encrypted.params, "s3cret") == payload


def test_decrypt_with_verified_key():
    encrypted = crypto.encrypt(b"records", "s3cret", ITERATIONS)
    key = crypto.verify_password(encrypted.params, "s3cret")

    assert crypto.decrypt(encrypted.ciphertext, encrypted.params, key=key) == b"records"


def test_fresh_salt_and_nonce_per_payload():
    first = crypto.encrypt(b"data", "s3cret", ITERATIONS)
    second = crypto.encrypt(b"data", "s3cret", ITERATIONS)

    assert first.params.salt != second.params.salt
    assert first.params.nonce != second.params.nonce
    assert first.ciphertext != second.ciphertext


def test_wrong_password():
    encrypted = crypto.encrypt(b"data", "s3cret", ITERATIONS)

    with pytest.raises(Unauthorized, match="Wrong password"):
        crypto.decrypt(encrypted.ciphertext, encrypted.params, "guess")


def test_missing_password():
    encrypted = crypto.encrypt(b"data", "s3cret", ITERATIONS)

    with pytest.raises(Unauthorized, match="password is required"):
        crypto.verify_password(encrypted.params, None)


def test_tampered_ciphertext_is_corruption():
    encrypted = crypto.encrypt(b"data" * 10, "s3cret", ITERATIONS)
    tampered = bytearray(encrypted.ciphertext)
    tampered[0] ^= 0xFF

    with pytest.raises(CorruptArchive):
        crypto.decrypt(bytes(tampered), encrypted.params, "s3cret")


def test_empty_password_rejected():
    with pytest.raises(BadParameters):
        crypto.encrypt(b"data", "", ITERATIONS)


def test_header_round_trip():
    params = crypto.encrypt(b"data", "s3cret", ITERATIONS).params
    header = params.to_header()

    assert "s3cret" not in str(header)
    assert crypto.EncryptionParams.from_header(header) == params


@pytest.mark.parametrize("mutate", [
    lambda h: h.pop("salt"),
    lambda h: h.update(salt="not base64!"),
    lambda h: h.update(iterations=0),
    lambda h: h.update(cipher="rot13"),
])
def test_invalid_header(mutate):
    header = crypto.encrypt(b"data", "s3cret", ITERATIONS).params.to_header()
    mutate(header)

    with pytest.raises(BadParameters):
        crypto.EncryptionParams.from_header(header)


def test_header_must_be_mapping():
    with pytest.raises(BadParameters):
        crypto.EncryptionParams.from_header(None)
