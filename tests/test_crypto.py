"""Tests for the credential cipher."""

import base64

import pytest

from rebaser.errors import CryptoError
from rebaser.services import crypto
from rebaser.services.crypto import CredentialCipher, derive_key, get_cipher
from rebaser.settings import ReplicatorSettings


class TestCredentialCipher:

    @pytest.mark.parametrize("plaintext", [
        "",
        "password",
        "Server=db1;Password=p@ss;",
        "пароль-密码-🔑",
        "x" * 10_000,
    ])
    def test_decrypt_reverses_encrypt(self, cipher, plaintext):
        assert cipher.decrypt(cipher.encrypt(plaintext)) == plaintext

    def test_encryptions_of_same_value_differ(self, cipher):
        assert cipher.encrypt("same") != cipher.encrypt("same")

    def test_altered_last_byte_is_rejected(self, cipher):
        raw = bytearray(base64.b64decode(cipher.encrypt("secret")))
        raw[-1] ^= 0x01
        tampered = base64.b64encode(bytes(raw)).decode("ascii")

        with pytest.raises(CryptoError):
            cipher.decrypt(tampered)

    def test_other_key_cannot_decrypt(self, cipher):
        token = cipher.encrypt("secret")

        with pytest.raises(CryptoError):
            CredentialCipher("another-key").decrypt(token)

    @pytest.mark.parametrize("token", [
        "not base64!",
        base64.b64encode(b"short").decode("ascii"),
        "",
    ])
    def test_malformed_tokens_are_rejected(self, cipher, token):
        with pytest.raises(CryptoError):
            cipher.decrypt(token)

    def test_missing_secret_uses_fallback_key(self):
        token = CredentialCipher(None).encrypt("value")
        assert CredentialCipher("default-key-change-in-production").decrypt(token) == "value"

    def test_key_derivation_is_deterministic(self):
        assert derive_key("abc") == derive_key("abc")
        assert len(derive_key("abc")) == 32
        assert derive_key("abc") != derive_key("abd")

    def test_process_wide_cipher_follows_settings(self, monkeypatch):
        monkeypatch.setattr(crypto, "_ciphers", {})
        settings = ReplicatorSettings(encryption_key="settings-key")

        cipher = get_cipher(settings)

        assert get_cipher(ReplicatorSettings(encryption_key="settings-key")) is cipher
        assert get_cipher(ReplicatorSettings(encryption_key="other")) is not cipher
        assert CredentialCipher("settings-key").decrypt(cipher.encrypt("v")) == "v"

    def test_process_wide_cipher_defaults_to_environment(self, monkeypatch):
        monkeypatch.setattr(crypto, "_ciphers", {})
        monkeypatch.setenv("REBASER_ENCRYPTION_KEY", "env-key")

        token = get_cipher().encrypt("v")

        assert CredentialCipher("env-key").decrypt(token) == "v"
