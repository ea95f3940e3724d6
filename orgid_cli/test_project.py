"""
Project Store and DID Tests
===========================
"""

import json

import pytest
from eth_utils import keccak, to_canonical_address

from orgid_cli.conftest import OWNER_KEY, address_of
from orgid_cli.did import OrgJson, make_did, org_id_hash, parse_blockchain_account_id, parse_did
from orgid_cli.errors import ConfigurationError, NotFoundError
from orgid_cli.project import ConfigRecord, DeploymentRecord, KeyRecord, OrgIdRecord, ProjectStore

ORG_ID = "0x" + "aa" * 32
DID = f"did:orgid:5:{ORG_ID}"


class TestProjectStore:
    """Test the project file"""

    def make_store(self, tmp_path) -> ProjectStore:
        return ProjectStore(str(tmp_path), "orgid.json")

    def test_empty_project(self, tmp_path):
        store = self.make_store(tmp_path)
        data = store.load()
        assert data["keys"] == [] and data["orgIds"] == []
        assert data["config"] == {"networkProviders": [], "apisKeys": []}

    def test_unique_key_tags(self, tmp_path):
        store = self.make_store(tmp_path)
        store.add_key(KeyRecord(tag="k1", type="ethereum", public_key="0x1", private_key="enc"))
        with pytest.raises(ConfigurationError):
            store.add_key(KeyRecord(tag="k1", type="pem"))
        assert [k.tag for k in store.get_keys(["ethereum"])] == ["k1"]
        assert store.get_keys(["pem"]) == []
        with pytest.raises(NotFoundError):
            store.get_key("k2")

    def test_records_are_camel_case_on_disk(self, tmp_path):
        store = self.make_store(tmp_path)
        store.add_key(KeyRecord(tag="safe", type="multisig", multisig_address="gor:0x1"))
        store.add_org_id(OrgIdRecord(did=DID, salt="0x01", owner="0x2", org_json_path="org.json"))

        raw = json.loads((tmp_path / "orgid.json").read_text())
        assert raw["keys"][0]["multisigAddress"] == "gor:0x1"
        assert "createdAt" in raw["keys"][0]
        assert raw["orgIds"][0]["orgJson"] == "org.json"
        assert raw["orgIds"][0]["created"] is False

    def test_legacy_record_fields(self, tmp_path):
        """Records written by the JavaScript tool are readable"""
        (tmp_path / "orgid.json").write_text(json.dumps({
            "keys": [{"tag": "s", "type": "multisig", "publicKey": "", "privateKey": "", "multisig": "gor:0x1", "date": "2022-01-01"}],
            "config": {"networkProviders": [{"id": "5", "uri": "enc", "encrypted": True}]},
        }))
        store = self.make_store(tmp_path)
        assert store.get_key("s").multisig_address == "gor:0x1"
        assert store.get_key("s").created_at == "2022-01-01"
        assert store.get_config_record("networkProviders", "5").value == "enc"

    def test_update_org_id(self, tmp_path):
        store = self.make_store(tmp_path)
        store.add_org_id(OrgIdRecord(did=DID, salt="0x01", owner="0x2"))
        store.update_org_id(DID, created=True, tx_hash="0xabc")

        record = store.get_org_id(DID)
        assert record.created and record.tx_hash == "0xabc"
        assert store.get_org_ids(created=False) == []
        with pytest.raises(ConfigurationError):
            store.update_org_id(DID, unknown=1)

    def test_token_id_persisted(self, tmp_path):
        store = self.make_store(tmp_path)
        store.add_org_id(OrgIdRecord(did=DID, salt="0x01", owner="0x2"))
        raw = json.loads((tmp_path / "orgid.json").read_text())
        assert "tokenId" not in raw["orgIds"][0]

        store.update_org_id(DID, created=True, token_id="7")

        raw = json.loads((tmp_path / "orgid.json").read_text())
        assert raw["orgIds"][0]["tokenId"] == "7"
        assert self.make_store(tmp_path).get_org_id(DID).token_id == "7"

    def test_config_records_upsert(self, tmp_path):
        store = self.make_store(tmp_path)
        store.add_config_record("apisKeys", ConfigRecord(id="w3s", value="a"))
        store.add_config_record("apisKeys", ConfigRecord(id="w3s", value="b"))
        assert store.get_config_record("apisKeys", "w3s").value == "b"
        assert len(store.load()["config"]["apisKeys"]) == 1
        with pytest.raises(NotFoundError):
            store.get_config_record("networkProviders", "5")
        with pytest.raises(ConfigurationError):
            store.add_config_record("passwords", ConfigRecord(id="x", value="y"))

    def test_deployment_links_org_id_vc(self, tmp_path):
        store = self.make_store(tmp_path)
        store.add_org_id(OrgIdRecord(did=DID, salt="0x01", owner="0x2"))

        assert store.add_deployment(DeploymentRecord("ipfs", "vc.json", "ipfs://bafy1"), DID) is None
        replaced = store.add_deployment(DeploymentRecord("ipfs", "vc.json", "ipfs://bafy2"), DID)

        assert replaced.uri == "ipfs://bafy1"
        assert [d.uri for d in store.get_deployments()] == ["ipfs://bafy2"]
        assert store.get_org_id(DID).org_id_vc == "ipfs://bafy2"


class TestDid:
    """Test DID helpers"""

    def test_parse_did(self):
        parsed = parse_did(f"{DID}#key1")
        assert parsed.did == DID
        assert parsed.network == "5"
        assert parsed.org_id == ORG_ID
        assert parsed.fragment == "key1"

    def test_default_network(self):
        assert parse_did(f"did:orgid:{ORG_ID}").network == "1"

    def test_invalid_did(self):
        for did in ("did:web:example.com", "did:orgid:5:0x1234", ""):
            with pytest.raises(ConfigurationError):
                parse_did(did)

    def test_org_id_hash(self):
        """orgId is keccak256(owner || salt)"""
        owner = address_of(OWNER_KEY)
        salt = "0x" + "01" * 32
        expected = "0x" + keccak(to_canonical_address(owner) + bytes.fromhex("01" * 32)).hex()
        assert org_id_hash(owner, salt) == expected
        assert parse_did(make_did("5", expected)).org_id == expected

    def test_blockchain_account_id_forms(self):
        owner = address_of(OWNER_KEY)
        assert parse_blockchain_account_id(f"eip155:5:{owner.lower()}")["address"] == owner
        legacy = parse_blockchain_account_id(f"{owner}@eip155:5")
        assert legacy["address"] == owner and legacy["chain_id"] == "5"

    def test_org_json_round_trip(self):
        org_json = OrgJson(id=DID, legal_entity={"legalName": "ACME"}, extra={"custom": 1})
        org_json.upsert_verification_method({"id": f"{DID}#k", "type": "X"}, delegated=True)
        org_json.upsert_verification_method({"id": f"{DID}#k", "type": "Y"}, delegated=True)

        doc = org_json.to_dict()
        assert doc["verificationMethod"] == [{"id": f"{DID}#k", "type": "Y"}]
        assert doc["capabilityDelegation"] == [f"{DID}#k"]

        restored = OrgJson.from_dict(doc)
        assert restored.extra == {"custom": 1}
        assert restored.legal_entity == {"legalName": "ACME"}
