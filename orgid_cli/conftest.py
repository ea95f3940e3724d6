"""
Shared fixtures and fakes for the ORGiD CLI tests
"""

import json
from collections import deque
from typing import Any, Dict, List, Optional

import pytest
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import Prehashed, decode_dss_signature, encode_dss_signature
from eth_account import Account
from eth_utils import to_checksum_address

from orgid_cli.config import CliSettings
from orgid_cli.credentials import issue_org_id_vc
from orgid_cli.did import OrgJson, blockchain_account_method, make_did, org_id_hash
from orgid_cli.errors import NetworkError, NotFoundError
from orgid_cli.keys import EthereumSigner
from orgid_cli.kms import SECP256K1_HALF_N, SECP256K1_N
from orgid_cli.prompts import Prompter
from orgid_cli.safe import SafeRelayClient
from orgid_cli.service import OrgIdService

OWNER_KEY = "0x" + "11" * 32
OTHER_KEY = "0x" + "22" * 32
PASSWORD = "Abcdef12"
REGISTRY_ADDRESS = "0xe02dF24d8dFdd37B21690DB30F4813cf6c4D9D93"
SAFE_ADDRESS = to_checksum_address("0x5aa6e4f0b6c0d9f6a7fc2e0c6b9d3a4e1c2b3d4f")


SALT = "0x" + "01" * 32


def address_of(private_key: str) -> str:
    return Account.from_key(private_key).address


def build_org_id_vc(private_key: str = OWNER_KEY, network: str = "5", delegates: Optional[List[str]] = None):
    """
    Signed ORGiD VC of an ORGiD owned by the private key's account

    Returns:
        Tuple of (did, vc_dict)
    """
    owner = address_of(private_key)
    did = make_did(network, org_id_hash(owner, SALT))
    org_json = OrgJson(
        id=did,
        verification_method=[blockchain_account_method(f"{did}#key1", did, network, owner)],
        legal_entity={"legalName": "ACME Hotels"},
    )
    for index, key in enumerate(delegates or [], start=2):
        org_json.upsert_verification_method(
            blockchain_account_method(f"{did}#key{index}", did, network, address_of(key)),
            delegated=True,
        )
    vc = issue_org_id_vc(org_json.to_dict(), EthereumSigner(private_key))
    return did, vc.to_dict()


# ==================== PROMPTS ====================

class ScriptedPrompter(Prompter):
    """Answers prompts (text and password alike) from a fixed script"""

    def __init__(self, answers: Optional[List[str]] = None):
        self.answers = deque(answers or [])
        self.asked: List[str] = []
        self.printed: List[str] = []
        super().__init__(
            input_func=self._next,
            password_func=self._next,
            output=self.printed.append,
            max_attempts=1,
        )

    def _next(self, message: str) -> str:
        self.asked.append(message)
        if not self.answers:
            raise AssertionError(f"Unexpected prompt: {message}")
        return self.answers.popleft()


# ==================== REMOTE FAKES ====================

class FakeKmsClient:
    """KMS client backed by a local secp256k1 key"""

    def __init__(self, private_key: Optional[ec.EllipticCurvePrivateKey] = None, force_high_s: bool = False):
        self.private_key = private_key or ec.generate_private_key(ec.SECP256K1())
        self.force_high_s = force_high_s
        self.sign_calls = 0
        self.raw_s: List[int] = []

    def get_public_key(self, KeyId: str) -> Dict[str, Any]:
        return {
            "KeyId": KeyId,
            "PublicKey": self.private_key.public_key().public_bytes(
                serialization.Encoding.DER,
                serialization.PublicFormat.SubjectPublicKeyInfo,
            ),
        }

    def sign(self, KeyId: str, Message: bytes, MessageType: str, SigningAlgorithm: str) -> Dict[str, Any]:
        assert MessageType == "DIGEST"
        assert SigningAlgorithm == "ECDSA_SHA_256"
        self.sign_calls += 1
        der = self.private_key.sign(Message, ec.ECDSA(Prehashed(hashes.SHA256())))
        r, s = decode_dss_signature(der)
        if self.force_high_s and s <= SECP256K1_HALF_N:
            s = SECP256K1_N - s
        self.raw_s.append(s)
        return {"KeyId": KeyId, "Signature": encode_dss_signature(r, s)}


class FakeResponse:
    def __init__(self, status_code: int = 200, payload: Any = None):
        self.status_code = status_code
        self.content = b"" if payload is None else json.dumps(payload).encode("utf-8")
        self.text = self.content.decode("utf-8")

    def json(self):
        return json.loads(self.content)


class FakeSafeSession:
    """requests.Session stand-in for the Safe transaction service"""

    def __init__(self, nonce: int = 3, safe_tx_gas: str = "50000"):
        self.nonce = nonce
        self.safe_tx_gas = safe_tx_gas
        self.calls: List[tuple] = []
        self.proposals: List[Dict[str, Any]] = []

    def get(self, url, **kwargs):
        self.calls.append(("GET", url))
        return FakeResponse(200, {"address": SAFE_ADDRESS, "nonce": self.nonce})

    def post(self, url, json=None, **kwargs):
        self.calls.append(("POST", url))
        if url.endswith("/estimations/"):
            return FakeResponse(200, {"safeTxGas": self.safe_tx_gas})
        self.proposals.append(json)
        return FakeResponse(201)


class FakeRegistry:
    """Registry contract stand-in recording every call"""

    def __init__(self, owner: Optional[str] = None, org_json_uri: str = "ipfs://bafyvc", token_id: int = 1):
        self.address = REGISTRY_ADDRESS
        self.owner = owner
        self.org_json_uri = org_json_uri
        self.token_id = token_id
        self.sent: List[tuple] = []
        self.built: List[tuple] = []

    def build_call(self, fn_name: str, *args) -> Dict[str, Any]:
        self.built.append((fn_name, args))
        return {"to": self.address, "data": "0x" + fn_name.encode("utf-8").hex(), "value": 0}

    def send(self, signer, fn_name, *args, gas_price=None, on_tx_hash=None):
        self.sent.append((fn_name, args, signer.get_address(), gas_price))
        if on_tx_hash:
            on_tx_hash("0x" + "ab" * 32)
        return {"status": 1, "logs": []}

    def token_id_from_receipt(self, receipt):
        return self.token_id

    def get_org_id(self, org_id: str) -> Dict[str, Any]:
        if self.owner is None:
            raise NotFoundError(f"ORGiD {org_id} not found in the registry")
        return {
            "orgId": org_id,
            "tokenId": str(self.token_id),
            "orgJsonUri": self.org_json_uri,
            "owner": self.owner,
            "delegates": [],
        }


class FakeIpfs:
    """IPFS client stand-in serving documents from memory"""

    def __init__(self, documents: Optional[Dict[str, Dict[str, Any]]] = None):
        self.documents = documents or {}
        self.api_token = "token"
        self.added: List[str] = []
        self.removed: List[str] = []

    def add(self, file_path: str) -> str:
        self.added.append(file_path)
        return f"bafy{len(self.added)}"

    def remove(self, cid: str):
        self.removed.append(cid)

    def fetch_json(self, uri: str) -> Dict[str, Any]:
        if uri not in self.documents:
            raise NetworkError(f"Unable to fetch {uri}")
        return self.documents[uri]


# ==================== FIXTURES ====================

@pytest.fixture
def cli_settings() -> CliSettings:
    return CliSettings(PROJECT_FILE="orgid.json", JWT_LIFETIME=600)


@pytest.fixture
def make_service(tmp_path, cli_settings):
    """Build an OrgIdService over a temporary project with fakes"""

    def factory(
        answers: Optional[List[str]] = None,
        registry: Optional[FakeRegistry] = None,
        ipfs: Optional[FakeIpfs] = None,
        safe_session: Optional[FakeSafeSession] = None,
        kms_client: Optional[FakeKmsClient] = None
    ) -> OrgIdService:
        prompter = ScriptedPrompter(answers)
        registry = registry or FakeRegistry()
        service = OrgIdService(
            str(tmp_path),
            prompter=prompter,
            settings=cli_settings,
            registry_factory=lambda network: registry,
            safe_client=SafeRelayClient(cli_settings.SAFE_SERVICE_URL, session=safe_session or FakeSafeSession()),
            ipfs=ipfs or FakeIpfs(),
            kms_client_factory=lambda config: kms_client or FakeKmsClient(),
            output=prompter.printed.append,
        )
        service.fake_registry = registry
        return service

    return factory
