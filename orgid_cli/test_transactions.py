"""
Registry Transaction Tests
==========================

create, update and transfer with direct keys and Safe multisig proposals
"""

import pytest

from orgid_cli.conftest import (
    OTHER_KEY,
    OWNER_KEY,
    PASSWORD,
    SAFE_ADDRESS,
    SALT,
    FakeIpfs,
    FakeRegistry,
    FakeSafeSession,
    address_of,
    build_org_id_vc,
)
from orgid_cli.did import parse_did
from orgid_cli.errors import ConfigurationError, NetworkError, OwnershipMismatchError
from orgid_cli.project import KeyRecord, OrgIdRecord
from orgid_cli.secret_codec import encrypt
from orgid_cli.transactions import create_org_id, transfer_org_id, update_org_id

VC_URI = "ipfs://bafyvc"
TX_HASH = "0x" + "ab" * 32


class FailingRegistry(FakeRegistry):
    """Registry whose transactions of one function fail"""

    def __init__(self, failing: str, **kwargs):
        super().__init__(**kwargs)
        self.failing = failing

    def send(self, signer, fn_name, *args, gas_price=None, on_tx_hash=None):
        if fn_name == self.failing:
            raise NetworkError(f'Transaction "{fn_name}" reverted')
        return super().send(signer, fn_name, *args, gas_price=gas_price, on_tx_hash=on_tx_hash)


class TransactionTestBase:

    def setup_method(self):
        self.owner = address_of(OWNER_KEY)
        self.did, self.vc = build_org_id_vc(OWNER_KEY, delegates=[OTHER_KEY])
        self.org_id = parse_did(self.did).org_id
        self.safe_session = FakeSafeSession(nonce=3)

    def make(self, make_service, answers, owner=None, created=False, registry=None, org_id_vc=VC_URI):
        service = make_service(
            answers,
            registry=registry or FakeRegistry(owner=self.owner, token_id=7),
            ipfs=FakeIpfs({VC_URI: self.vc}),
            safe_session=self.safe_session,
        )
        service.store.add_key(KeyRecord(
            tag="k1",
            type="ethereum",
            public_key=self.owner,
            private_key=encrypt(OWNER_KEY, PASSWORD),
        ))
        service.store.add_key(KeyRecord(tag="safe", type="multisig", multisig_address=f"gor:{SAFE_ADDRESS}"))
        service.store.add_org_id(OrgIdRecord(
            did=self.did,
            salt=SALT,
            owner=owner or self.owner,
            org_id_vc=org_id_vc,
            created=created,
        ))
        return service


class TestCreate(TransactionTestBase):
    """Test the create operation"""

    def test_direct_create(self, make_service):
        """createOrgId then addDelegates; the record is marked created"""
        service = self.make(make_service, ["1", "1", PASSWORD, ""])

        data = create_org_id(service)

        assert [(fn, args) for fn, args, _, _ in service.fake_registry.sent] == [
            ("createOrgId", (SALT, VC_URI)),
            ("addDelegates", (self.org_id, [f"{self.did}#key2"])),
        ]
        assert all(sender == self.owner for _, _, sender, _ in service.fake_registry.sent)
        record = service.store.get_org_id(self.did)
        assert record.created
        assert record.tx_hash == TX_HASH
        assert record.token_id == "7"
        assert data["owner"] == self.owner
        print(f"✅ ORGiD {self.did} created")

    def test_failed_delegates_keep_created(self, make_service):
        """A minted ORGiD stays created when addDelegates fails afterwards"""
        registry = FailingRegistry("addDelegates", owner=self.owner, token_id=7)
        service = self.make(make_service, ["1", "1", PASSWORD, ""], registry=registry)

        with pytest.raises(NetworkError):
            create_org_id(service)

        assert [fn for fn, _, _, _ in registry.sent] == ["createOrgId"]
        record = service.store.get_org_id(self.did)
        assert record.created
        assert record.tx_hash == TX_HASH
        assert record.token_id == "7"

        # the delegates are added by update
        registry.failing = None
        service.prompter.answers.extend(["1", "1", PASSWORD, ""])
        update_org_id(service)
        assert [fn for fn, _, _, _ in registry.sent] == ["createOrgId", "addDelegates", "setOrgJson"]
        print("✅ Minted ORGiD stays registered after a failed addDelegates")

    def test_custom_gas_price(self, make_service):
        service = self.make(make_service, ["1", "1", PASSWORD, "y", "20"])
        create_org_id(service)
        assert {gas_price for _, _, _, gas_price in service.fake_registry.sent} == {20_000_000_000}

    def test_vc_must_be_deployed(self, make_service):
        service = self.make(make_service, ["1"], org_id_vc=None)
        with pytest.raises(ConfigurationError):
            create_org_id(service)
        assert service.fake_registry.sent == []

    def test_multisig_create(self, make_service):
        """Dependent proposals chain nonces; created waits for execution"""
        service = self.make(make_service, ["1", "2", "1", PASSWORD], owner=SAFE_ADDRESS)

        result = create_org_id(service)

        proposals = self.safe_session.proposals
        assert [p["nonce"] for p in proposals] == [3, 4]
        assert proposals[0]["safeTxGas"] == "50000"
        assert proposals[1]["safeTxGas"] == "179545"
        assert all(p["sender"] == self.owner for p in proposals)
        assert [fn for fn, _ in service.fake_registry.built] == ["createOrgId", "addDelegates"]
        assert result["nonce"] == 4
        assert service.fake_registry.sent == []
        assert not service.store.get_org_id(self.did).created
        print("✅ Multisig proposals chained with nonces 3 and 4")

    def test_multisig_owner_mismatch(self, make_service):
        service = self.make(make_service, ["1", "2"])
        with pytest.raises(OwnershipMismatchError):
            create_org_id(service)
        assert self.safe_session.proposals == []


class TestUpdate(TransactionTestBase):
    """Test the update operation"""

    def test_direct_update(self, make_service):
        service = self.make(make_service, ["1", "1", PASSWORD, ""], created=True)

        update_org_id(service)

        assert [fn for fn, _, _, _ in service.fake_registry.sent] == ["addDelegates", "setOrgJson"]
        assert service.fake_registry.sent[1][1] == (self.org_id, VC_URI)

    def test_tx_hash_write_failure_is_ignored(self, make_service, monkeypatch):
        """An unwritable project file does not stop the transactions"""
        service = self.make(make_service, ["1", "1", PASSWORD, ""], created=True)

        def fail(did, **fields):
            raise OSError("disk full")

        monkeypatch.setattr(service.store, "update_org_id", fail)

        data = update_org_id(service)

        assert [fn for fn, _, _, _ in service.fake_registry.sent] == ["addDelegates", "setOrgJson"]
        assert data["orgJsonUri"] == VC_URI
        assert f"Transaction hash: {TX_HASH}" in service.prompter.printed

    def test_owner_mismatch_sends_nothing(self, make_service):
        """A key of another account is rejected before any transaction"""
        service = self.make(make_service, ["1", "1", PASSWORD], owner=address_of(OTHER_KEY), created=True)

        with pytest.raises(OwnershipMismatchError):
            update_org_id(service)

        assert service.fake_registry.sent == []
        assert service.store.get_org_id(self.did).tx_hash is None

    def test_multisig_update(self, make_service):
        service = self.make(make_service, ["1", "2", "1", PASSWORD], owner=SAFE_ADDRESS, created=True)
        update_org_id(service)
        assert [fn for fn, _ in service.fake_registry.built] == ["addDelegates", "setOrgJson"]
        assert [p["nonce"] for p in self.safe_session.proposals] == [3, 4]


class TestTransfer(TransactionTestBase):
    """Test the transfer operation"""

    def test_direct_transfer(self, make_service):
        new_owner = address_of(OTHER_KEY)
        service = self.make(make_service, ["1", "1", PASSWORD, ""], created=True)

        transfer_org_id(service, new_owner.lower())

        assert service.fake_registry.sent[0][:2] == ("transferFrom", (self.owner, new_owner, 7))
        assert service.store.get_org_id(self.did).owner == new_owner
        print(f"✅ ORGiD transferred to {new_owner}")

    def test_on_chain_owner_differs(self, make_service):
        """The local record may be stale; the registry owner is checked too"""
        registry = FakeRegistry(owner=address_of(OTHER_KEY), token_id=7)
        service = self.make(make_service, ["1", "1", PASSWORD], created=True, registry=registry)

        with pytest.raises(OwnershipMismatchError):
            transfer_org_id(service, address_of(OTHER_KEY))
        assert registry.sent == []

    def test_multisig_transfer_keeps_owner(self, make_service):
        registry = FakeRegistry(owner=SAFE_ADDRESS, token_id=7)
        service = self.make(make_service, ["1", "2", "1", PASSWORD], owner=SAFE_ADDRESS, created=True, registry=registry)

        transfer_org_id(service, address_of(OTHER_KEY))

        assert registry.built == [("transferFrom", (SAFE_ADDRESS, address_of(OTHER_KEY), 7))]
        assert [p["nonce"] for p in self.safe_session.proposals] == [3]
        assert service.store.get_org_id(self.did).owner == SAFE_ADDRESS

    def test_new_owner_required(self, make_service):
        service = self.make(make_service, [], created=True)
        for value in (None, "0x1234"):
            with pytest.raises(ConfigurationError):
                transfer_org_id(service, value)
