"""
Secret Codec
============

Passphrase encryption for secrets kept in the project file (private keys,
provider URIs, API keys).

Format: base64(salt[16] || nonce[12] || AES-GCM ciphertext), key derived
with PBKDF2-HMAC-SHA256. Ciphertexts written by the earlier JavaScript
tool (OpenSSL "Salted__" envelope, AES-256-CBC) can still be decrypted.
"""

import base64
import binascii
import hashlib
import os
import re
from typing import Tuple

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .errors import DecryptionError

SALT_SIZE = 16
NONCE_SIZE = 12
KDF_ITERATIONS = 100_000

OPENSSL_MAGIC = b"Salted__"

PASSWORD_PATTERN = re.compile(r"^(?=.*\d)(?=.*[a-z])(?=.*[A-Z]).{8,}$")
PASSWORD_HINT = (
    "Password must consist of a minimum of eight characters, "
    "at least one lower-case letter, one upper-case letter and one number"
)


def is_strong_password(value: str) -> bool:
    return PASSWORD_PATTERN.match(value or "") is not None


def _derive_key(passphrase: str, salt: bytes) -> bytes:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=salt,
        iterations=KDF_ITERATIONS,
    )
    return kdf.derive(passphrase.encode("utf-8"))


def encrypt(plaintext: str, passphrase: str) -> str:
    """
    Encrypt a string under a passphrase

    Args:
        plaintext: Secret to protect
        passphrase: User supplied passphrase

    Returns:
        Base64 encoded ciphertext
    """
    salt = os.urandom(SALT_SIZE)
    nonce = os.urandom(NONCE_SIZE)
    key = _derive_key(passphrase, salt)
    ciphertext = AESGCM(key).encrypt(nonce, plaintext.encode("utf-8"), None)
    return base64.b64encode(salt + nonce + ciphertext).decode("ascii")


def decrypt(ciphertext: str, passphrase: str) -> str:
    """
    Decrypt a string produced by encrypt() (or by the legacy tool)

    Raises:
        DecryptionError: wrong passphrase, tampered data, or empty result
    """
    try:
        raw = base64.b64decode(ciphertext.encode("ascii"), validate=True)
    except (binascii.Error, ValueError, AttributeError):
        raise DecryptionError("Unable to decrypt")

    if raw.startswith(OPENSSL_MAGIC):
        plaintext = _decrypt_legacy(raw, passphrase)
    else:
        plaintext = _decrypt_aead(raw, passphrase)

    if plaintext == "":
        raise DecryptionError("Unable to decrypt: decrypted data is empty")
    return plaintext


def _decrypt_aead(raw: bytes, passphrase: str) -> str:
    if len(raw) < SALT_SIZE + NONCE_SIZE + 16:
        raise DecryptionError("Unable to decrypt")

    salt = raw[:SALT_SIZE]
    nonce = raw[SALT_SIZE:SALT_SIZE + NONCE_SIZE]
    key = _derive_key(passphrase, salt)
    try:
        data = AESGCM(key).decrypt(nonce, raw[SALT_SIZE + NONCE_SIZE:], None)
        return data.decode("utf-8")
    except (InvalidTag, UnicodeDecodeError):
        raise DecryptionError("Unable to decrypt")


# ==================== LEGACY FORMAT ====================

def evp_bytes_to_key(passphrase: bytes, salt: bytes, key_len: int = 32, iv_len: int = 16) -> Tuple[bytes, bytes]:
    """OpenSSL EVP_BytesToKey with MD5, one iteration"""
    derived = b""
    block = b""
    while len(derived) < key_len + iv_len:
        block = hashlib.md5(block + passphrase + salt).digest()
        derived += block
    return derived[:key_len], derived[key_len:key_len + iv_len]


def _decrypt_legacy(raw: bytes, passphrase: str) -> str:
    salt = raw[8:16]
    body = raw[16:]
    if len(salt) != 8 or not body or len(body) % 16:
        raise DecryptionError("Unable to decrypt")

    key, iv = evp_bytes_to_key(passphrase.encode("utf-8"), salt)
    decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
    padded = decryptor.update(body) + decryptor.finalize()

    unpadder = padding.PKCS7(128).unpadder()
    try:
        data = unpadder.update(padded) + unpadder.finalize()
        return data.decode("utf-8")
    except (ValueError, UnicodeDecodeError):
        raise DecryptionError("Unable to decrypt")
