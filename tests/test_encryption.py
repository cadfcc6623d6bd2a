import base64

import pytest

from core.encryption import IV_LENGTH, ApiKeyCipher
from core.exceptions import DecryptionError
from schemas.storage import EncryptedBlob


def test_encrypt_then_decrypt_returns_plaintext(cipher):
    blob = cipher.encrypt("sk-test-123")

    assert cipher.decrypt(blob) == "sk-test-123"
    assert blob.data != "sk-test-123"
    assert "sk-test-123" not in blob.data


def test_each_encryption_uses_a_fresh_iv(cipher):
    first = cipher.encrypt("same-key")
    second = cipher.encrypt("same-key")

    assert first.iv != second.iv
    assert first.data != second.data
    assert len(base64.b64decode(first.iv)) == IV_LENGTH


def test_decrypt_accepts_stored_dict_form(cipher):
    stored = cipher.encrypt("sk-äöü").to_storage()

    assert set(stored) == {"iv", "data"}
    assert cipher.decrypt(stored) == "sk-äöü"


def test_empty_string_is_encryptable(cipher):
    assert cipher.decrypt(cipher.encrypt("")) == ""


def test_tampered_ciphertext_raises(cipher):
    blob = cipher.encrypt("sk-test-123")
    raw = bytearray(base64.b64decode(blob.data))
    raw[0] ^= 0xFF
    tampered = EncryptedBlob(iv=blob.iv, data=base64.b64encode(bytes(raw)).decode("ascii"))

    with pytest.raises(DecryptionError):
        cipher.decrypt(tampered)


def test_key_from_other_secret_raises(cipher):
    other = ApiKeyCipher(secret="another-secret")
    blob = other.encrypt("sk-test-123")

    with pytest.raises(DecryptionError):
        cipher.decrypt(blob)


@pytest.mark.parametrize(
    "blob",
    [
        {"iv": "not base64!", "data": "AAAA"},
        {"iv": base64.b64encode(b"short").decode("ascii"), "data": "AAAA"},
        {"iv": "AAAAAAAAAAAAAAAA"},
    ],
)
def test_malformed_blob_raises(cipher, blob):
    with pytest.raises(DecryptionError):
        cipher.decrypt(blob)


@pytest.mark.parametrize("length", [1, 2, 255, 500])
@pytest.mark.parametrize("alphabet", ["a", "ключ-", "密钥🔑"])
def test_round_trip_across_lengths(cipher, length, alphabet):
    plaintext = (alphabet * length)[:length]

    assert cipher.decrypt(cipher.encrypt(plaintext)) == plaintext
