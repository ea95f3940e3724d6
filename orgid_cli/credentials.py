"""
ORGiD Verifiable Credentials
============================

An ORGiD VC carries the ORG.JSON of an organization as its
credentialSubject and is signed by one of the organization's verification
methods (the owner's account or a delegate) with a detached JWS proof.

Optional NFT metadata (name, description, image) is kept at the top level
so marketplaces can display the ORGiD token.

Reference: https://www.w3.org/TR/vc-data-model/
"""

import hashlib
import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List, Callable, Tuple

from eth_keys import keys
from eth_keys.exceptions import BadSignature, ValidationError
from eth_utils import to_checksum_address

from . import jwk as jwk_utils
from .did import normalize_delegates, parse_blockchain_account_id
from .errors import ConfigurationError, NotFoundError
from .keys import PemSigner, Signer, split_signature
from .project import now_iso

RECOVERY_ALG = "ES256K-R"
RECOVERY_PROOF_TYPE = "EcdsaSecp256k1RecoverySignature2020"
JWK_PROOF_TYPE = "JsonWebSignature2020"


@dataclass
class CredentialProof:
    """Detached JWS proof attached to a credential"""
    type: str
    created: str
    verification_method: str
    proof_purpose: str
    jws: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "created": self.created,
            "verificationMethod": self.verification_method,
            "proofPurpose": self.proof_purpose,
            "jws": self.jws
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CredentialProof":
        return cls(
            type=data.get("type", ""),
            created=data.get("created", ""),
            verification_method=data.get("verificationMethod", ""),
            proof_purpose=data.get("proofPurpose", ""),
            jws=data.get("jws", "")
        )


@dataclass
class VerifiableCredential:
    """
    W3C Verifiable Credential holding an ORG.JSON
    """
    context: List[str] = field(default_factory=lambda: [
        "https://www.w3.org/2018/credentials/v1",
        "https://raw.githubusercontent.com/windingtree/org.json-schema/feat/new-orgid/src/orgVc-context.json"
    ])
    id: str = ""
    type: List[str] = field(default_factory=lambda: ["VerifiableCredential", "OrgJson"])
    issuer: str = ""
    issuance_date: str = ""
    expiration_date: Optional[str] = None
    credential_subject: Dict[str, Any] = field(default_factory=dict)
    proof: Optional[Dict[str, Any]] = None

    # NFT metadata
    name: Optional[str] = None
    description: Optional[str] = None
    image: Optional[str] = None

    def __post_init__(self):
        if not self.id:
            self.id = f"urn:uuid:{uuid.uuid4()}"
        if not self.issuance_date:
            self.issuance_date = now_iso()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to W3C VC JSON format"""
        vc = {
            "@context": self.context,
            "id": self.id,
            "type": self.type,
            "issuer": self.issuer,
            "issuanceDate": self.issuance_date,
            "credentialSubject": self.credential_subject
        }

        if self.expiration_date:
            vc["expirationDate"] = self.expiration_date
        for name in ("name", "description", "image"):
            if getattr(self, name):
                vc[name] = getattr(self, name)
        if self.proof:
            vc["proof"] = self.proof

        return vc

    def signing_payload(self) -> bytes:
        """Canonical JSON of the credential without its proof"""
        vc_dict = self.to_dict()
        vc_dict.pop("proof", None)
        return json.dumps(vc_dict, sort_keys=True, separators=(",", ":")).encode("utf-8")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VerifiableCredential":
        return cls(
            context=data.get("@context", []),
            id=data.get("id", ""),
            type=data.get("type", []),
            issuer=data.get("issuer", ""),
            issuance_date=data.get("issuanceDate", ""),
            expiration_date=data.get("expirationDate"),
            credential_subject=data.get("credentialSubject", {}),
            proof=data.get("proof"),
            name=data.get("name"),
            description=data.get("description"),
            image=data.get("image")
        )


# ==================== JWS ====================

def jws_signing(signer: Signer) -> Tuple[str, Callable[[bytes], bytes]]:
    """
    JWS algorithm and signing function for a signer

    PEM keys sign with their own JWS algorithm. Ethereum and KMS keys use
    ES256K-R: sha256 of the signing input, r || s || recovery id (0/1).
    """
    if isinstance(signer, PemSigner):
        return signer.algorithm, signer.sign_jws

    def sign(signing_input: bytes) -> bytes:
        r, s, v = split_signature(signer.sign_digest(hashlib.sha256(signing_input).digest()))
        return r.to_bytes(32, "big") + s.to_bytes(32, "big") + bytes([v - 27])

    return RECOVERY_ALG, sign


def recover_jws_address(signing_input: bytes, signature: bytes) -> Optional[str]:
    """Address that produced an ES256K-R signature, None if unrecoverable"""
    if len(signature) != 65:
        return None
    try:
        sig = keys.Signature(vrs=(
            signature[64],
            int.from_bytes(signature[:32], "big"),
            int.from_bytes(signature[32:64], "big"),
        ))
        public_key = sig.recover_public_key_from_msg_hash(hashlib.sha256(signing_input).digest())
    except (BadSignature, ValidationError):
        return None
    return public_key.to_checksum_address()


def _detached_signing_input(protected: str, payload: bytes) -> bytes:
    return f"{protected}.{jwk_utils.b64u(payload)}".encode("ascii")


# ==================== ISSUANCE ====================

def find_verification_method(org_json: Dict[str, Any], signer: Signer) -> Dict[str, Any]:
    """
    Verification method of the ORG.JSON that belongs to the signer

    Raises:
        NotFoundError: the key is not listed in the ORG.JSON
    """
    for method in org_json.get("verificationMethod", []):
        if isinstance(signer, PemSigner):
            if method.get("publicKeyJwk") and jwk_utils.same_public_key(method["publicKeyJwk"], signer.public_jwk):
                return method
            continue
        if method.get("blockchainAccountId"):
            address = parse_blockchain_account_id(method["blockchainAccountId"])["address"]
            if address == to_checksum_address(signer.get_address()):
                return method

    raise NotFoundError(
        f'The key is not a verification method of {org_json.get("id")}. '
        f'Add it using operation "keys:import" with "--addToOrgId"'
    )


def issue_org_id_vc(
    org_json: Dict[str, Any],
    signer: Signer,
    nft_name: Optional[str] = None,
    nft_description: Optional[str] = None,
    nft_image: Optional[str] = None,
    expiration_date: Optional[str] = None
) -> VerifiableCredential:
    """
    Sign an ORG.JSON into an ORGiD VC

    Args:
        org_json: ORG.JSON document
        signer: Unlocked key listed in the ORG.JSON verification methods
        nft_name: NFT name metadata
        nft_description: NFT description metadata
        nft_image: NFT image URI

    Returns:
        Signed VerifiableCredential
    """
    if not org_json.get("id"):
        raise ConfigurationError("ORG.JSON has no id")

    method = find_verification_method(org_json, signer)
    alg, sign = jws_signing(signer)

    vc = VerifiableCredential(
        issuer=method["id"],
        expiration_date=expiration_date,
        credential_subject=org_json,
        name=nft_name,
        description=nft_description,
        image=nft_image
    )

    protected = jwk_utils.b64u(json.dumps({"alg": alg}, separators=(",", ":")).encode("utf-8"))
    signature = sign(_detached_signing_input(protected, vc.signing_payload()))

    proof = CredentialProof(
        type=RECOVERY_PROOF_TYPE if alg == RECOVERY_ALG else JWK_PROOF_TYPE,
        created=now_iso(),
        verification_method=method["id"],
        proof_purpose="assertionMethod",
        jws=f"{protected}..{jwk_utils.b64u(signature)}"
    )
    vc.proof = proof.to_dict()
    return vc


# ==================== VERIFICATION ====================

def verify_org_id_vc(vc_data: Dict[str, Any], owner: Optional[str] = None) -> Tuple[bool, Optional[str]]:
    """
    Verify an ORGiD VC

    Checks structure, expiration, that the signing method is the owner's
    account or a delegate, and the proof signature. The VC comes from
    IPFS, so malformed content is reported as a failure, never raised.

    Args:
        vc_data: ORGiD VC JSON
        owner: ORGiD owner address from the registry

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not isinstance(vc_data, dict):
        return False, "ORGiD VC must be a JSON object"

    vc = VerifiableCredential.from_dict(vc_data)
    subject = vc.credential_subject
    if not isinstance(subject, dict) or not subject.get("id"):
        return False, "credentialSubject must contain an ORG.JSON with id"
    if not isinstance(vc.proof, dict) or not isinstance(vc.proof.get("jws"), str):
        return False, "Credential has no proof"

    if vc.expiration_date:
        if not isinstance(vc.expiration_date, str):
            return False, f"Invalid expirationDate: {vc.expiration_date}"
        try:
            expires = datetime.fromisoformat(vc.expiration_date.replace("Z", "+00:00"))
        except ValueError:
            return False, f"Invalid expirationDate: {vc.expiration_date}"
        if expires.tzinfo is None:
            expires = expires.replace(tzinfo=timezone.utc)
        if expires <= datetime.now(timezone.utc):
            return False, "Credential has expired"

    proof = CredentialProof.from_dict(vc.proof)
    methods = subject.get("verificationMethod")
    method = next(
        (
            m for m in (methods if isinstance(methods, list) else [])
            if isinstance(m, dict) and m.get("id") == proof.verification_method
        ),
        None
    )
    if method is None:
        return False, f"Verification method {proof.verification_method} not found"

    address = None
    if method.get("blockchainAccountId"):
        try:
            address = parse_blockchain_account_id(method["blockchainAccountId"])["address"]
        except (ConfigurationError, TypeError) as e:
            return False, str(e)

    is_owner = owner is not None and address is not None and address == to_checksum_address(owner)
    if not is_owner and method["id"] not in normalize_delegates(subject.get("capabilityDelegation")):
        return False, f"Verification method {method['id']} is neither the owner nor a delegate"

    try:
        protected, _, encoded_signature = proof.jws.split(".")
        header = json.loads(jwk_utils.b64u_decode(protected))
        signature = jwk_utils.b64u_decode(encoded_signature)
    except ValueError:
        return False, "Malformed proof jws"
    if not isinstance(header, dict):
        return False, "Malformed proof jws header"

    signing_input = _detached_signing_input(protected, vc.signing_payload())

    if header.get("alg") == RECOVERY_ALG:
        if address is None or recover_jws_address(signing_input, signature) != address:
            return False, "Invalid proof signature"
    elif isinstance(method.get("publicKeyJwk"), dict):
        try:
            valid = jwk_utils.verify_jws_input(method["publicKeyJwk"], signing_input, signature)
        except (ConfigurationError, ValueError, TypeError, KeyError) as e:
            return False, f"Invalid publicKeyJwk: {e}"
        if not valid:
            return False, "Invalid proof signature"
    else:
        return False, f"Unsupported proof algorithm: {header.get('alg')}"

    return True, None
