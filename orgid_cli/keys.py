"""
Key Manager - Signers behind the registered key pairs

Supports:
- ethereum: raw secp256k1 private key (eth_account)
- pem: PEM key pair converted to JWK (JWT issuance, VC proofs)
- kmsEthereum: secp256k1 key held by AWS KMS
- multisig: Safe wallet reference, proposals only
"""

import json
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple

from eth_account import Account
from eth_account.messages import SignableMessage, encode_defunct
from eth_account.typed_transactions import TypedTransaction
from eth_utils import keccak, to_checksum_address
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import Prehashed, decode_dss_signature

from . import jwk as jwk_utils
from .errors import ConfigurationError, OwnershipMismatchError
from .project import KeyRecord
from .secret_codec import decrypt

logger = logging.getLogger(__name__)


class KeyType(str, Enum):
    """Supported key pair types"""
    ETHEREUM = "ethereum"
    PEM = "pem"
    KMS_ETHEREUM = "kmsEthereum"
    MULTISIG = "multisig"

    def __str__(self) -> str:
        return self.value


# Key types able to sign Ethereum transactions directly
DIRECT_SIGNERS = (KeyType.ETHEREUM, KeyType.KMS_ETHEREUM)
# Key types able to own an ORGiD
OWNER_KEYS = (KeyType.ETHEREUM, KeyType.KMS_ETHEREUM, KeyType.MULTISIG)


def join_signature(r: int, s: int, v: int) -> bytes:
    """Compact 65-byte signature r || s || v"""
    return r.to_bytes(32, "big") + s.to_bytes(32, "big") + bytes([v])


def split_signature(signature: bytes) -> Tuple[int, int, int]:
    if len(signature) != 65:
        raise ValueError("Signature must be 65 bytes long")
    return (
        int.from_bytes(signature[:32], "big"),
        int.from_bytes(signature[32:64], "big"),
        signature[64],
    )


def signable_hash(message: SignableMessage) -> bytes:
    """EIP-191 digest of a signable message (also used for EIP-712)"""
    return keccak(b"\x19" + message.version + message.header + message.body)


class Signer(ABC):
    """
    Capability shared by all key pair types

    sign_digest() returns r || s || v with v in {27, 28}.
    """

    key_type: KeyType

    @abstractmethod
    def get_address(self) -> str:
        """Ethereum address controlled by this key"""

    @abstractmethod
    def sign_digest(self, digest: bytes) -> bytes:
        """Sign a 32-byte digest"""

    def sign_message(self, message: str) -> bytes:
        return self.sign_digest(signable_hash(encode_defunct(text=message)))

    def sign_transaction(self, transaction: Dict[str, Any]) -> bytes:
        """
        Sign a transaction built by web3 and return the raw bytes

        Only typed transactions (EIP-2930 / EIP-1559) are produced.
        """
        tx = {k: v for k, v in transaction.items() if k != "from"}
        tx.setdefault("type", 2 if "maxFeePerGas" in tx else 1)
        tx.setdefault("accessList", [])

        unsigned = TypedTransaction.from_dict(tx)
        r, s, v = split_signature(self.sign_digest(unsigned.hash()))
        signed = {**unsigned.as_dict(), "v": v - 27, "r": r, "s": s}
        return TypedTransaction.from_dict(signed).encode()


class EthereumSigner(Signer):
    """Local secp256k1 private key"""

    key_type = KeyType.ETHEREUM

    def __init__(self, private_key: str):
        try:
            self._account = Account.from_key(private_key)
        except (ValueError, TypeError) as e:
            raise ConfigurationError(f"Invalid Ethereum private key: {e}")

    def get_address(self) -> str:
        return self._account.address

    def sign_digest(self, digest: bytes) -> bytes:
        return bytes(self._account.unsafe_sign_hash(digest).signature)

    def sign_transaction(self, transaction: Dict[str, Any]) -> bytes:
        tx = {k: v for k, v in transaction.items() if k != "from"}
        return bytes(self._account.sign_transaction(tx).raw_transaction)


class PemSigner(Signer):
    """
    Key pair imported from PEM and kept as JWK

    Ethereum-style operations are available for secp256k1 keys only.
    """

    key_type = KeyType.PEM

    def __init__(self, private_jwk: Dict[str, Any]):
        self.private_jwk = private_jwk
        self.public_jwk = jwk_utils.public_jwk(private_jwk)
        self.algorithm = jwk_utils.jws_algorithm(private_jwk)
        self._private_key = jwk_utils.private_key_from_jwk(private_jwk)

    def _require_secp256k1(self) -> ec.EllipticCurvePrivateKey:
        if self.public_jwk.get("crv") != "secp256k1":
            raise ConfigurationError(
                f'PEM key on curve "{self.public_jwk.get("crv")}" has no Ethereum address'
            )
        return self._private_key

    def get_address(self) -> str:
        public_numbers = self._require_secp256k1().public_key().public_numbers()
        point = public_numbers.x.to_bytes(32, "big") + public_numbers.y.to_bytes(32, "big")
        return to_checksum_address(keccak(point)[-20:])

    def sign_digest(self, digest: bytes) -> bytes:
        from .kms import normalize_s, recovery_v

        der = self._require_secp256k1().sign(digest, ec.ECDSA(Prehashed(hashes.SHA256())))
        r, s = decode_dss_signature(der)
        s = normalize_s(s)
        return join_signature(r, s, recovery_v(digest, r, s, self.get_address()))

    def sign_jws(self, signing_input: bytes) -> bytes:
        return jwk_utils.sign_jws_input(self._private_key, signing_input)


class MultisigSigner(Signer):
    """
    Safe wallet reference (e.g. "gor:0x...")

    Holds no private material; transactions are proposed to the Safe
    relay and signed by one of the owners.
    """

    key_type = KeyType.MULTISIG

    def __init__(self, multisig_address: str):
        from .safe import parse_safe_address

        self.multisig_address = multisig_address
        self.safe = parse_safe_address(multisig_address)

    def get_address(self) -> str:
        return self.safe.address

    def sign_digest(self, digest: bytes) -> bytes:
        raise ConfigurationError("Multisig keys cannot sign directly, transactions must be proposed")


# ==================== LOADING ====================

KmsClientFactory = Callable[[Dict[str, Any]], Any]


def load_signer(
    record: KeyRecord,
    passphrase: Optional[str] = None,
    kms_client_factory: Optional[KmsClientFactory] = None
) -> Signer:
    """
    Build the signer for a registered key pair

    Args:
        record: Key record from the project
        passphrase: Password protecting the private material
        kms_client_factory: Builds a KMS client from the stored AWS config

    Returns:
        Signer of the record's type
    """
    try:
        key_type = KeyType(record.type)
    except ValueError:
        raise ConfigurationError(f'Unknown key pair type: "{record.type}"')

    if key_type is KeyType.MULTISIG:
        if not record.multisig_address:
            raise ConfigurationError(f'Invalid multisig keys config for "{record.tag}"')
        return MultisigSigner(record.multisig_address)

    if passphrase is None:
        raise ConfigurationError(f'Password for the key pair "{record.tag}" is required')
    secret = decrypt(record.private_key, passphrase)

    if key_type is KeyType.ETHEREUM:
        signer = EthereumSigner(secret)
    elif key_type is KeyType.PEM:
        return PemSigner(json.loads(secret))
    else:
        from .kms import KmsEthereumSigner, create_kms_client

        try:
            config = json.loads(secret)
            key_id = config["keyId"]
        except (ValueError, TypeError, KeyError):
            raise ConfigurationError(f'Invalid kmsEthereum config for "{record.tag}"')
        client = (kms_client_factory or create_kms_client)(config)
        signer = KmsEthereumSigner.connect(key_id, client)

    check_address(signer.get_address(), record.public_key, f'key pair "{record.tag}"')
    return signer


def check_address(actual: str, expected: str, what: str):
    """Raise OwnershipMismatchError when two addresses differ"""
    if not expected or to_checksum_address(actual) != to_checksum_address(expected):
        raise OwnershipMismatchError(
            f'The {what} has a different address "{actual}" than expected "{expected}"'
        )
