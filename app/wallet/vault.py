# app/wallet/vault.py
"""
Password-based encryption of agent private keys.

Keys are sealed with AES-256-GCM under a scrypt-derived key. A fresh random
salt and IV are drawn for every encryption, so encrypting the same key twice
yields different blobs. Any decryption failure surfaces as one generic
`DecryptionError` so callers cannot tell a wrong password from tampering.
"""
import base64
import binascii
import logging
import secrets

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from app.storage.records import EncryptedKey

logger = logging.getLogger(__name__)

SALT_BYTES = 16
IV_BYTES = 12
KEY_BYTES = 32
GCM_TAG_BYTES = 16

SCRYPT_N = 2 ** 14
SCRYPT_R = 8
SCRYPT_P = 1


class DecryptionError(Exception):
    """The blob could not be opened with the given password."""

    def __init__(self):
        super().__init__("decryption failed")


def _derive_key(password: str, salt: bytes) -> bytes:
    kdf = Scrypt(salt=salt, length=KEY_BYTES, n=SCRYPT_N, r=SCRYPT_R, p=SCRYPT_P)
    return kdf.derive(password.encode("utf-8"))


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


class KeyVault:
    """Encrypts and decrypts private keys with a user password."""

    def encrypt(self, private_key: bytes, password: str) -> EncryptedKey:
        if not password:
            raise ValueError("Password must not be empty")
        salt = secrets.token_bytes(SALT_BYTES)
        iv = secrets.token_bytes(IV_BYTES)
        ciphertext = AESGCM(_derive_key(password, salt)).encrypt(iv, private_key, None)
        return EncryptedKey(ciphertext=_b64(ciphertext), salt=_b64(salt), iv=_b64(iv))

    def decrypt(self, blob: EncryptedKey, password: str) -> bytes:
        """
        Recover the private key.

        Raises:
            DecryptionError: Wrong password, tampered or malformed blob
        """
        try:
            salt = base64.b64decode(blob.salt, validate=True)
            iv = base64.b64decode(blob.iv, validate=True)
            ciphertext = base64.b64decode(blob.ciphertext, validate=True)
        except (binascii.Error, ValueError, TypeError):
            raise DecryptionError() from None

        if len(salt) != SALT_BYTES or len(iv) != IV_BYTES or len(ciphertext) <= GCM_TAG_BYTES:
            raise DecryptionError()

        try:
            return AESGCM(_derive_key(password or "", salt)).decrypt(iv, ciphertext, None)
        except InvalidTag:
            raise DecryptionError() from None
