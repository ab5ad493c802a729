"""Symmetric encryption of connection secrets at rest."""

import base64
import binascii
import logging
import os
import threading
from typing import Dict, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from ..errors import CryptoError
from ..settings import DEFAULT_ENCRYPTION_KEY, ReplicatorSettings

logger = logging.getLogger(__name__)

KEY_LENGTH = 32
NONCE_LENGTH = 12
TAG_LENGTH = 16
KDF_SALT = b"rebaser-credential-salt"
KDF_ITERATIONS = 100_000


def derive_key(secret: str) -> bytes:
    """Derive the AES-256 key from a secret with PBKDF2-HMAC-SHA256."""
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=KDF_SALT,
        iterations=KDF_ITERATIONS,
    )
    return kdf.derive(secret.encode("utf-8"))


class CredentialCipher:
    """
    AES-256-GCM encryption of short secrets.

    Tokens are ``base64(nonce || ciphertext || tag)``. A fresh random nonce
    is used for every call, so two encryptions of the same text differ.
    The GCM tag makes any modification of a token fail decryption.
    """

    def __init__(self, secret: Optional[str] = None):
        if not secret:
            logger.warning("No encryption key configured, using the built-in fallback key")
            secret = DEFAULT_ENCRYPTION_KEY
        self._aead = AESGCM(derive_key(secret))

    def encrypt(self, plaintext: str) -> str:
        nonce = os.urandom(NONCE_LENGTH)
        ciphertext = self._aead.encrypt(nonce, plaintext.encode("utf-8"), None)
        return base64.b64encode(nonce + ciphertext).decode("ascii")

    def decrypt(self, token: str) -> str:
        try:
            combined = base64.b64decode(token.encode("ascii"), validate=True)
        except (binascii.Error, ValueError, UnicodeEncodeError, AttributeError) as e:
            raise CryptoError(f"Malformed encrypted token: {e}") from e

        if len(combined) < NONCE_LENGTH + TAG_LENGTH:
            raise CryptoError("Malformed encrypted token: too short")

        nonce, ciphertext = combined[:NONCE_LENGTH], combined[NONCE_LENGTH:]
        try:
            plaintext = self._aead.decrypt(nonce, ciphertext, None)
        except InvalidTag as e:
            raise CryptoError("Encrypted token failed authentication") from e

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as e:
            raise CryptoError(f"Decrypted token is not valid UTF-8: {e}") from e


_ciphers: Dict[str, CredentialCipher] = {}
_cipher_lock = threading.Lock()


def get_cipher(settings: Optional[ReplicatorSettings] = None) -> CredentialCipher:
    """
    Process-wide cipher for the configured encryption key.

    The key is derived once per distinct secret; settings default to the
    REBASER_* environment.
    """
    secret = (settings or ReplicatorSettings.from_env()).encryption_key
    with _cipher_lock:
        if secret not in _ciphers:
            _ciphers[secret] = CredentialCipher(secret)
        return _ciphers[secret]
