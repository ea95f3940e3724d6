"""
Secret Codec Tests
==================
"""

import base64
import os

import pytest
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from orgid_cli.errors import DecryptionError
from orgid_cli.secret_codec import decrypt, encrypt, evp_bytes_to_key, is_strong_password


def legacy_encrypt(plaintext: str, passphrase: str) -> str:
    """CryptoJS AES.encrypt(data, passphrase) equivalent"""
    salt = os.urandom(8)
    key, iv = evp_bytes_to_key(passphrase.encode("utf-8"), salt)
    padder = padding.PKCS7(128).padder()
    padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()
    encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
    body = encryptor.update(padded) + encryptor.finalize()
    return base64.b64encode(b"Salted__" + salt + body).decode("ascii")


class TestSecretCodec:
    """Test passphrase encryption"""

    def test_round_trip(self):
        """Decrypting with the same passphrase returns the plaintext"""
        for plaintext in ("0x" + "ab" * 32, "https://goerli.infura.io/v3/key", "ключ 🔑"):
            assert decrypt(encrypt(plaintext, "Abcdef12"), "Abcdef12") == plaintext
        print("✅ Round trip works")

    def test_ciphertexts_are_salted(self):
        """Same input encrypts differently every time"""
        assert encrypt("secret", "Abcdef12") != encrypt("secret", "Abcdef12")

    def test_wrong_passphrase(self):
        """A different passphrase fails loudly"""
        ciphertext = encrypt("secret", "Abcdef12")
        with pytest.raises(DecryptionError):
            decrypt(ciphertext, "wrong")
        print("✅ Wrong passphrase rejected")

    def test_tampered_ciphertext(self):
        """Flipped bits are detected by the authentication tag"""
        raw = bytearray(base64.b64decode(encrypt("secret", "Abcdef12")))
        raw[-1] ^= 0x01
        with pytest.raises(DecryptionError):
            decrypt(base64.b64encode(bytes(raw)).decode("ascii"), "Abcdef12")

    def test_empty_plaintext_is_an_error(self):
        """An empty result is reported as a decryption failure"""
        with pytest.raises(DecryptionError):
            decrypt(encrypt("", "Abcdef12"), "Abcdef12")

    def test_garbage_input(self):
        """Malformed base64 and short payloads are rejected"""
        for ciphertext in ("not base64!!", "", base64.b64encode(b"short").decode("ascii")):
            with pytest.raises(DecryptionError):
                decrypt(ciphertext, "Abcdef12")

    def test_legacy_ciphertext(self):
        """Secrets written by the JavaScript tool are still readable"""
        private_key = "0x" + "11" * 32
        assert decrypt(legacy_encrypt(private_key, "Abcdef12"), "Abcdef12") == private_key
        print("✅ Legacy ciphertext decrypted")

    def test_password_policy(self):
        """Passwords need 8+ characters with digits and both letter cases"""
        assert is_strong_password("Abcdef12")
        assert not is_strong_password("abcdef12")
        assert not is_strong_password("ABCDEF12")
        assert not is_strong_password("Abcdefgh")
        assert not is_strong_password("Abc12")
