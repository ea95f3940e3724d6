"""
ORGiD registry transactions: create, update, transfer

Direct signers (ethereum, kmsEthereum) broadcast and wait for the receipt.
Multisig keys only propose the calls to the Safe; co-signers confirm and
execute them outside of this tool, so the project record is not marked as
created or transferred.

Any failure aborts the operation. Transactions already sent stay on chain.
"""

import logging
from typing import Any, Dict, List, Optional

from .did import checksum_address, normalize_delegates, parse_did
from .errors import ConfigurationError
from .keys import KeyType, MultisigSigner, OWNER_KEYS, Signer, check_address
from .project import OrgIdRecord
from .registry import OrgIdRegistry
from .safe import propose_transaction

logger = logging.getLogger(__name__)


def _vc_delegates(org_id_vc: Dict[str, Any]) -> List[str]:
    subject = org_id_vc.get("credentialSubject") or {}
    return normalize_delegates(subject.get("capabilityDelegation"))


def _prepare(service, org_id: OrgIdRecord):
    """
    Load the ORGiD VC and the owner key

    The key must control the ORGiD owner address; this is checked before
    anything is sent.
    """
    if not org_id.org_id_vc:
        raise ConfigurationError(
            f"ORGiD VC not deployed for this ORGiD ({org_id.did}) yet. "
            f'Please create it using operation "orgIdVc" and deploy it with "deploy:ipfs"'
        )

    org_id_vc = service.fetch_json(org_id.org_id_vc)
    record = service.select_key(OWNER_KEYS, "Choose the ORGiD owner key")
    signer = service.unlock(record)
    check_address(signer.get_address(), org_id.owner, f'ORGiD owner key "{record.tag}"')
    return org_id_vc, signer


class Proposer:
    """Chains dependent Safe proposals (each next nonce is previous + 1)"""

    def __init__(self, service, multisig: MultisigSigner):
        self.service = service
        self.multisig = multisig
        self.owner_signer = service.select_owner_signer()
        self.nonce: Optional[int] = None

    def propose(self, registry: OrgIdRegistry, fn_name: str, *args):
        override_gas = None if self.nonce is None else self.service.settings.DEPENDENT_TX_GAS
        self.service.info(f'Proposing "{fn_name}" transaction to the multisig {self.multisig.multisig_address}...')
        self.nonce = propose_transaction(
            self.service.safe_client,
            self.multisig.multisig_address,
            registry.build_call(fn_name, *args),
            self.owner_signer,
            override_gas=override_gas,
            nonce=self.nonce,
        )
        self.service.info(f'Transaction "{fn_name}" proposed with nonce {self.nonce}')


def _send(service, registry: OrgIdRegistry, signer: Signer, did: str, gas_price: Optional[int], fn_name: str, *args):
    service.info(f'Sending transaction "{fn_name}"...')
    return registry.send(
        signer,
        fn_name,
        *args,
        gas_price=gas_price,
        on_tx_hash=lambda tx_hash: service.record_tx_hash(did, tx_hash),
    )


# ==================== OPERATIONS ====================

def create_org_id(service) -> Dict[str, Any]:
    """
    Register a bootstrapped ORGiD with its deployed ORGiD VC

    Delegates listed in the VC are registered with addDelegates.
    """
    org_id = service.select_org_id(created=False)
    org_id_vc, signer = _prepare(service, org_id)
    delegates = _vc_delegates(org_id_vc)

    parsed = parse_did(org_id.did)
    registry = service.get_registry(parsed.network)

    if signer.key_type is KeyType.MULTISIG:
        proposer = Proposer(service, signer)
        proposer.propose(registry, "createOrgId", org_id.salt, org_id.org_id_vc)
        if delegates:
            proposer.propose(registry, "addDelegates", parsed.org_id, delegates)
        service.info(f"ORGiD creation for {org_id.did} has been proposed to the multisig")
        return {"did": org_id.did, "nonce": proposer.nonce}

    gas_price = service.prompt_gas_price()
    receipt = _send(service, registry, signer, org_id.did, gas_price, "createOrgId", org_id.salt, org_id.org_id_vc)
    token_id = registry.token_id_from_receipt(receipt)
    logger.info("ORGiD %s minted with token id %s", org_id.did, token_id)
    # Registered from here on; failed delegates are added again by "update"
    service.store.update_org_id(
        org_id.did,
        created=True,
        token_id=None if token_id is None else str(token_id),
    )

    if delegates:
        _send(service, registry, signer, org_id.did, gas_price, "addDelegates", parsed.org_id, delegates)

    data = registry.get_org_id(parsed.org_id)
    service.info(f'ORGiD with DID: "{org_id.did}" has been successfully created')
    service.print_object(data)
    return data


def update_org_id(service) -> Dict[str, Any]:
    """
    Point a registered ORGiD to its current ORGiD VC

    addDelegates (when the VC lists delegates) then setOrgJson.
    """
    org_id = service.select_org_id(created=True)
    org_id_vc, signer = _prepare(service, org_id)
    delegates = _vc_delegates(org_id_vc)

    parsed = parse_did(org_id.did)
    registry = service.get_registry(parsed.network)

    if signer.key_type is KeyType.MULTISIG:
        proposer = Proposer(service, signer)
        if delegates:
            proposer.propose(registry, "addDelegates", parsed.org_id, delegates)
        proposer.propose(registry, "setOrgJson", parsed.org_id, org_id.org_id_vc)
        service.info(f"ORGiD update for {org_id.did} has been proposed to the multisig")
        return {"did": org_id.did, "nonce": proposer.nonce}

    gas_price = service.prompt_gas_price()
    if delegates:
        _send(service, registry, signer, org_id.did, gas_price, "addDelegates", parsed.org_id, delegates)
    _send(service, registry, signer, org_id.did, gas_price, "setOrgJson", parsed.org_id, org_id.org_id_vc)

    data = registry.get_org_id(parsed.org_id)
    service.info(f'ORGiD with DID: "{org_id.did}" has been successfully updated')
    service.print_object(data)
    return data


def transfer_org_id(service, new_owner: Optional[str]) -> Dict[str, Any]:
    """Transfer the ORGiD token to a new owner"""
    if not new_owner:
        raise ConfigurationError('New owner address must be provided using "--newOwner" option')
    new_owner = checksum_address(new_owner)

    org_id = service.select_org_id(created=True)
    record = service.select_key(OWNER_KEYS, "Choose the ORGiD owner key")
    signer = service.unlock(record)
    check_address(signer.get_address(), org_id.owner, f'ORGiD owner key "{record.tag}"')

    parsed = parse_did(org_id.did)
    registry = service.get_registry(parsed.network)
    data = registry.get_org_id(parsed.org_id)
    check_address(signer.get_address(), data["owner"], f'ORGiD owner key "{record.tag}"')
    args = (data["owner"], new_owner, int(data["tokenId"]))

    if signer.key_type is KeyType.MULTISIG:
        proposer = Proposer(service, signer)
        proposer.propose(registry, "transferFrom", *args)
        service.info(f"Ownership transfer of {org_id.did} to {new_owner} has been proposed to the multisig")
        return {"did": org_id.did, "nonce": proposer.nonce}

    gas_price = service.prompt_gas_price()
    _send(service, registry, signer, org_id.did, gas_price, "transferFrom", *args)
    service.store.update_org_id(org_id.did, owner=new_owner)

    data = registry.get_org_id(parsed.org_id)
    service.info(f'ORGiD with DID: "{org_id.did}" has been transferred to {new_owner}')
    service.print_object(data)
    return data
