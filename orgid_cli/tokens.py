"""
Authentication JWTs signed by an ORGiD verification method

The issuer is a verification method id ("did:orgid:...#key"). The token is
signed with the local key that matches the method declared in the
resolved ORG.JSON:
- blockchainAccountId: ethereum / kmsEthereum key (ES256K-R)
- publicKeyJwk: pem key (ES256K, ES256, ES384 or EdDSA)
"""

import logging
import time
from typing import Any, Dict, List, Optional

from eth_utils import to_checksum_address

from . import jwk as jwk_utils
from .credentials import jws_signing
from .did import parse_blockchain_account_id
from .errors import ConfigurationError, NotFoundError, OwnershipMismatchError
from .keys import DIRECT_SIGNERS, EthereumSigner, KeyType, PemSigner, Signer, check_address

logger = logging.getLogger(__name__)


def create_auth_jwt(
    signer: Signer,
    issuer: str,
    audience: str,
    scope: Optional[List[str]] = None,
    expiration: Optional[int] = None,
    lifetime: int = 3600
) -> str:
    """
    Build and sign a compact JWT

    Args:
        signer: Key behind the issuer verification method
        issuer: Verification method id
        audience: Audience DID
        scope: Optional list of scopes
        expiration: Unix time (seconds) the token expires at
        lifetime: Token lifetime when no expiration is given

    Returns:
        Compact JWT
    """
    alg, sign = jws_signing(signer)
    issued_at = int(time.time())
    payload: Dict[str, Any] = {
        "iss": issuer,
        "aud": audience,
        "iat": issued_at,
        "exp": expiration if expiration is not None else issued_at + lifetime,
    }
    if scope:
        payload["scope"] = scope

    return jwk_utils.compact_jws({"alg": alg, "typ": "JWT"}, payload, sign)


def parse_expiration(value: Optional[str]) -> Optional[int]:
    """--expiration as Unix seconds in the future"""
    if not value:
        return None
    try:
        expiration = int(value)
    except ValueError:
        raise ConfigurationError(f'Invalid "--expiration" value: {value}')
    if expiration <= int(time.time()):
        raise ConfigurationError('Invalid "--expiration" value provided. Expiration cannot be in the past')
    return expiration


def parse_scope(value: Optional[str]) -> Optional[List[str]]:
    if not value:
        return None
    scope = [s.strip() for s in value.split(",") if s.strip()]
    if not scope:
        raise ConfigurationError('Invalid "--scope" value')
    return scope


def _account_signer(service, address: str) -> Optional[Signer]:
    """Local key of a blockchain account, or a private key typed in"""
    for record in service.store.get_keys(DIRECT_SIGNERS):
        if record.public_key and to_checksum_address(record.public_key) == address:
            return service.unlock(record)

    service.info(f"A key associated with blockchainAccountId {address} not found")
    if not service.prompter.confirm("Do you want to enter a custom key?"):
        service.info("Unable to create JWT without a key. Process terminated.")
        return None
    return EthereumSigner(service.prompter.password(f"Please enter a private key for the account {address}"))


def _jwk_signer(service, public_jwk: Dict[str, Any]) -> Signer:
    for record in service.store.get_keys([KeyType.PEM]):
        if isinstance(record.public_key, dict) and jwk_utils.same_public_key(record.public_key, public_jwk):
            signer = service.unlock(record)
            if not isinstance(signer, PemSigner) or not jwk_utils.same_public_key(signer.public_jwk, public_jwk):
                raise OwnershipMismatchError(
                    f'The key pair "{record.tag}" does not match the verification method public key'
                )
            return signer
    raise NotFoundError("A pem key matching the verification method publicKeyJwk not found")


def create_jwt(
    service,
    issuer: Optional[str],
    audience: Optional[str],
    expiration: Optional[str] = None,
    scope: Optional[str] = None
) -> Optional[str]:
    """
    Issue a JWT for an ORGiD verification method

    Raises:
        NotFoundError: the DID cannot be resolved or has no such verification method
        OwnershipMismatchError: the local key differs from the declared one
    """
    if not issuer:
        raise ConfigurationError('A token issuer did must be provided using "--issuer" option')
    if not audience:
        raise ConfigurationError('A token audience did must be provided using "--audience" option')
    expires = parse_expiration(expiration)
    scopes = parse_scope(scope)

    response = service.resolver.resolve(issuer)
    document = response["didDocument"]
    if document is None:
        metadata = response["didResolutionMetadata"]
        raise NotFoundError(
            f'ORGiD with DID: "{issuer}" has been resolved with the error: '
            f'{metadata.get("message") or metadata.get("error") or "Unknown error"}'
        )

    method = next((v for v in document.get("verificationMethod", []) if v.get("id") == issuer), None)
    if method is None:
        raise NotFoundError(f"Verification method {issuer} not found")

    if method.get("blockchainAccountId"):
        address = parse_blockchain_account_id(method["blockchainAccountId"])["address"]
        signer = _account_signer(service, address)
        if signer is None:
            return None
        check_address(signer.get_address(), address, "signer of the blockchainAccountId")
    elif method.get("publicKeyJwk"):
        signer = _jwk_signer(service, method["publicKeyJwk"])
    else:
        raise ConfigurationError(f"Verification method {issuer} has neither blockchainAccountId nor publicKeyJwk")

    token = create_auth_jwt(signer, issuer, audience, scopes, expires, service.settings.JWT_LIFETIME)
    logger.info("JWT issued by %s for %s", issuer, audience)
    service.info(f"JWT: {token}")
    return token
