"""
ORGiD identifiers and ORG.JSON documents

DID Format: did:orgid:<network>:<orgId>

The orgId is keccak256(owner || salt), the value the registry contract
derives from the creating account and the salt.
"""

import re
import secrets
from dataclasses import dataclass, field
from typing import Optional, List, Dict, Any

from eth_utils import is_address, keccak, to_canonical_address, to_checksum_address

from .errors import ConfigurationError
from .project import now_iso

DID_PATTERN = re.compile(
    r"^(?P<did>did:(?P<method>orgid):(?:(?P<network>[a-zA-Z0-9]+):)?(?P<id>0x[a-fA-F0-9]{64}))"
    r"(?P<query>\?[^#]*)?(?:#(?P<fragment>.+))?$"
)

BLOCKCHAIN_ACCOUNT_PATTERN = re.compile(r"^(?P<namespace>[-a-z0-9]{3,8}):(?P<chain>[-a-zA-Z0-9]{1,32}):(?P<address>0x[a-fA-F0-9]{40})$")
LEGACY_ACCOUNT_PATTERN = re.compile(r"^(?P<address>0x[a-fA-F0-9]{40})@(?P<namespace>[-a-z0-9]{3,8}):(?P<chain>[-a-zA-Z0-9]{1,32})$")

DEFAULT_NETWORK = "1"


@dataclass
class ParsedDid:
    did: str
    method: str
    network: str
    org_id: str
    query: Optional[str] = None
    fragment: Optional[str] = None


def parse_did(did: str) -> ParsedDid:
    """Split an ORGiD DID (optionally with query and fragment) into parts"""
    match = DID_PATTERN.match(did or "")
    if not match:
        raise ConfigurationError(f"Invalid DID format: {did}")
    return ParsedDid(
        did=match.group("did"),
        method=match.group("method"),
        network=match.group("network") or DEFAULT_NETWORK,
        org_id=match.group("id"),
        query=match.group("query"),
        fragment=match.group("fragment"),
    )


def generate_salt() -> str:
    return "0x" + secrets.token_hex(32)


def org_id_hash(owner: str, salt: str) -> str:
    """orgId as computed by the registry: keccak256(abi.encodePacked(owner, salt))"""
    salt_bytes = bytes.fromhex(salt[2:] if salt.startswith("0x") else salt)
    if len(salt_bytes) != 32:
        raise ConfigurationError("Salt must be 32 bytes long")
    return "0x" + keccak(to_canonical_address(owner) + salt_bytes).hex()


def make_did(network: str, org_id: str) -> str:
    return f"did:orgid:{network}:{org_id}"


def parse_blockchain_account_id(account_id: str) -> Dict[str, str]:
    """
    Parse blockchainAccountId in CAIP-10 ("eip155:5:0x...") or the
    legacy ("0x...@eip155:5") form
    """
    match = BLOCKCHAIN_ACCOUNT_PATTERN.match(account_id or "") or LEGACY_ACCOUNT_PATTERN.match(account_id or "")
    if not match:
        raise ConfigurationError(f"Invalid blockchainAccountId: {account_id}")
    return {
        "namespace": match.group("namespace"),
        "chain_id": match.group("chain"),
        "address": to_checksum_address(match.group("address")),
    }


def checksum_address(value: str) -> str:
    if not is_address(value or ""):
        raise ConfigurationError(f"Invalid Ethereum address: {value}")
    return to_checksum_address(value)


# ==================== VERIFICATION METHODS ====================

def blockchain_account_method(method_id: str, controller: str, network: str, address: str) -> Dict[str, Any]:
    return {
        "id": method_id,
        "controller": controller,
        "type": "EcdsaSecp256k1RecoveryMethod2020",
        "blockchainAccountId": f"eip155:{network}:{to_checksum_address(address)}",
    }


def jwk_method(method_id: str, controller: str, public_jwk: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": method_id,
        "controller": controller,
        "type": "JsonWebKey2020",
        "publicKeyJwk": dict(public_jwk),
    }


@dataclass
class OrgJson:
    """
    ORG.JSON document: the DID document of an organization

    Unknown top-level properties are preserved in `extra`.
    """
    id: str
    verification_method: List[Dict] = field(default_factory=list)
    capability_delegation: List[Any] = field(default_factory=list)
    service: List[Dict] = field(default_factory=list)
    legal_entity: Optional[Dict[str, Any]] = None
    organizational_unit: Optional[Dict[str, Any]] = None
    created: str = ""
    updated: str = ""
    extra: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not self.created:
            self.created = now_iso()
        if not self.updated:
            self.updated = self.created

    def to_dict(self) -> Dict[str, Any]:
        """Convert to ORG.JSON format"""
        doc = {
            "@context": [
                "https://www.w3.org/ns/did/v1",
                "https://raw.githubusercontent.com/windingtree/org.json-schema/feat/new-orgid/src/context.json",
            ],
            "id": self.id,
            "created": self.created,
            "updated": self.updated,
            "verificationMethod": self.verification_method,
        }

        if self.capability_delegation:
            doc["capabilityDelegation"] = self.capability_delegation
        if self.service:
            doc["service"] = self.service
        if self.legal_entity:
            doc["legalEntity"] = self.legal_entity
        if self.organizational_unit:
            doc["organizationalUnit"] = self.organizational_unit

        doc.update(self.extra)
        return doc

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OrgJson":
        known = {
            "@context", "id", "created", "updated", "verificationMethod",
            "capabilityDelegation", "service", "legalEntity", "organizationalUnit",
        }
        return cls(
            id=data["id"],
            verification_method=list(data.get("verificationMethod", [])),
            capability_delegation=list(data.get("capabilityDelegation", [])),
            service=list(data.get("service", [])),
            legal_entity=data.get("legalEntity"),
            organizational_unit=data.get("organizationalUnit"),
            created=data.get("created", ""),
            updated=data.get("updated", ""),
            extra={k: v for k, v in data.items() if k not in known},
        )

    def upsert_verification_method(self, method: Dict[str, Any], delegated: bool = False):
        """Add a verification method, replacing one with the same id"""
        self.verification_method = [
            vm for vm in self.verification_method if vm.get("id") != method["id"]
        ]
        self.verification_method.append(method)

        if delegated and method["id"] not in self.delegates():
            self.capability_delegation.append(method["id"])

        self.updated = now_iso()

    def delegates(self) -> List[str]:
        return normalize_delegates(self.capability_delegation)


def normalize_delegates(capability_delegation: Optional[List[Any]]) -> List[str]:
    """Delegates may be listed as ids or as embedded verification methods"""
    if not isinstance(capability_delegation, list):
        return []
    return [
        c if isinstance(c, str) else c.get("id")
        for c in capability_delegation
        if c and isinstance(c, (str, dict))
    ]
