"""
AWS KMS backed Ethereum signer

The private key never leaves KMS. The signer:
- reads the DER SubjectPublicKeyInfo once and derives the Ethereum address
- sends 32-byte digests to KMS and decodes the DER (r, s) reply
- normalizes s to the lower half of the curve order
- picks v (27 or 28) by recovering the signer address
"""

import logging
from typing import Any, Dict, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import decode_dss_signature
from eth_keys import keys
from eth_keys.exceptions import BadSignature, ValidationError
from eth_utils import keccak, to_checksum_address

from .errors import NetworkError, RemoteSigningError
from .keys import KeyType, Signer, join_signature

logger = logging.getLogger(__name__)

SECP256K1_N = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141
SECP256K1_HALF_N = SECP256K1_N // 2


def address_from_public_key_der(public_key_der: bytes) -> str:
    """Ethereum address of a DER encoded SubjectPublicKeyInfo (secp256k1)"""
    try:
        public_key = serialization.load_der_public_key(public_key_der)
    except (ValueError, TypeError) as e:
        raise RemoteSigningError(f"Unable to decode KMS public key: {e}")

    if not isinstance(public_key, ec.EllipticCurvePublicKey) or public_key.curve.name != "secp256k1":
        raise RemoteSigningError("KMS key is not a secp256k1 key")

    point = public_key.public_bytes(
        serialization.Encoding.X962,
        serialization.PublicFormat.UncompressedPoint,
    )
    # Drop the 0x04 prefix of the uncompressed point
    return to_checksum_address(keccak(point[1:])[-20:])


def normalize_s(s: int) -> int:
    """Canonical low-S form"""
    return SECP256K1_N - s if s > SECP256K1_HALF_N else s


def recovery_v(digest: bytes, r: int, s: int, address: str) -> int:
    """
    Find the parity (27 or 28) under which (r, s) recovers to address

    Raises:
        RemoteSigningError: neither parity reproduces the address
    """
    for v in (27, 28):
        try:
            signature = keys.Signature(vrs=(v - 27, r, s))
            recovered = signature.recover_public_key_from_msg_hash(digest).to_checksum_address()
        except (BadSignature, ValidationError):
            continue
        if recovered.lower() == address.lower():
            return v
    raise RemoteSigningError(f"Signature does not recover to the key address {address}")


class KmsEthereumSigner(Signer):
    """
    Signer for an asymmetric ECC_SECG_P256K1 key held by AWS KMS

    Args:
        key_id: KMS key id or ARN
        client: boto3 KMS client
        public_key_der: SubjectPublicKeyInfo returned by GetPublicKey
    """

    key_type = KeyType.KMS_ETHEREUM

    def __init__(self, key_id: str, client: Any, public_key_der: bytes):
        self.key_id = key_id
        self.client = client
        self.public_key_der = public_key_der
        self.address = address_from_public_key_der(public_key_der)

    @classmethod
    def connect(cls, key_id: str, client: Any) -> "KmsEthereumSigner":
        """Fetch the public key from KMS and build the signer"""
        try:
            response = client.get_public_key(KeyId=key_id)
        except (BotoCoreError, ClientError) as e:
            raise NetworkError(f"KMS GetPublicKey failed: {e}")

        public_key = response.get("PublicKey")
        if not public_key:
            raise RemoteSigningError("KMS returned no public key")
        return cls(key_id, client, bytes(public_key))

    def get_address(self) -> str:
        return self.address

    def sign_digest(self, digest: bytes) -> bytes:
        if len(digest) != 32:
            raise ValueError("Digest must be 32 bytes long")

        try:
            response = self.client.sign(
                KeyId=self.key_id,
                Message=digest,
                MessageType="DIGEST",
                SigningAlgorithm="ECDSA_SHA_256",
            )
        except (BotoCoreError, ClientError) as e:
            raise NetworkError(f"KMS Sign failed: {e}")

        der_signature = response.get("Signature")
        if not der_signature:
            raise RemoteSigningError("KMS returned no signature")

        try:
            r, s = decode_dss_signature(bytes(der_signature))
        except ValueError as e:
            raise RemoteSigningError(f"Unable to decode KMS signature: {e}")

        s = normalize_s(s)
        v = recovery_v(digest, r, s, self.address)
        logger.debug("KMS signature for %s recovered with v=%d", self.address, v)
        return join_signature(r, s, v)


def create_kms_client(config: Dict[str, Optional[str]]):
    """boto3 KMS client from the stored key config"""
    return boto3.client(
        "kms",
        region_name=config.get("region"),
        aws_access_key_id=config.get("accessKeyId"),
        aws_secret_access_key=config.get("secretAccessKey"),
    )
