"""
Safe (Gnosis Safe) multisig proposals

A proposal is a SafeTx signed (EIP-712) by one owner and registered with
the Safe transaction service. Nothing is broadcast; co-signers confirm and
execute the transaction outside of this tool.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests
from eth_account.messages import encode_typed_data
from eth_utils import to_checksum_address

from .config import settings
from .errors import ConfigurationError, NetworkError, RemoteSigningError
from .keys import Signer, signable_hash

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# Address prefix -> (chain id, transaction service name)
SAFE_CHAINS: Dict[str, tuple] = {
    "eth": (1, "mainnet"),
    "gor": (5, "goerli"),
    "sep": (11155111, "sepolia"),
    "gno": (100, "gnosis-chain"),
    "matic": (137, "polygon"),
}

SAFE_TX_TYPES = {
    "EIP712Domain": [
        {"type": "uint256", "name": "chainId"},
        {"type": "address", "name": "verifyingContract"},
    ],
    "SafeTx": [
        {"type": "address", "name": "to"},
        {"type": "uint256", "name": "value"},
        {"type": "bytes", "name": "data"},
        {"type": "uint8", "name": "operation"},
        {"type": "uint256", "name": "safeTxGas"},
        {"type": "uint256", "name": "baseGas"},
        {"type": "uint256", "name": "gasPrice"},
        {"type": "address", "name": "gasToken"},
        {"type": "address", "name": "refundReceiver"},
        {"type": "uint256", "name": "nonce"},
    ],
}


@dataclass
class SafeAddress:
    address: str
    chain_id: int
    name: str


def parse_safe_address(raw_address: str) -> SafeAddress:
    """Parse a chain-qualified Safe address such as "gor:0x..." """
    network, _, address = (raw_address or "").partition(":")
    if network not in SAFE_CHAINS:
        raise ConfigurationError(f'Unsupported network "{network}"')
    try:
        checksum = to_checksum_address(address)
    except ValueError:
        raise ConfigurationError(f"Invalid Safe address: {raw_address}")

    chain_id, name = SAFE_CHAINS[network]
    return SafeAddress(address=checksum, chain_id=chain_id, name=name)


@dataclass
class SafeTransaction:
    """Transaction proposed to a Safe"""
    to: str
    value: int
    data: str
    operation: int
    safe_tx_gas: int
    base_gas: int
    gas_price: int
    gas_token: str
    refund_receiver: str
    nonce: int

    def to_message(self) -> Dict[str, Any]:
        """EIP-712 message (also the relay payload)"""
        return {
            "to": to_checksum_address(self.to),
            "value": int(self.value),
            "data": self.data,
            "operation": self.operation,
            "safeTxGas": int(self.safe_tx_gas),
            "baseGas": int(self.base_gas),
            "gasPrice": int(self.gas_price),
            "gasToken": self.gas_token,
            "refundReceiver": self.refund_receiver,
            "nonce": int(self.nonce),
        }


def safe_tx_hash(tx: SafeTransaction, chain_id: int, safe_address: str) -> bytes:
    """EIP-712 hash of a SafeTx"""
    message = tx.to_message()
    message["data"] = bytes.fromhex(tx.data[2:] if tx.data.startswith("0x") else tx.data)
    signable = encode_typed_data(full_message={
        "types": SAFE_TX_TYPES,
        "primaryType": "SafeTx",
        "domain": {"chainId": chain_id, "verifyingContract": to_checksum_address(safe_address)},
        "message": message,
    })
    return signable_hash(signable)


class SafeRelayClient:
    """
    Client of the Safe transaction service

    Args:
        base_url: URL template with a {chain} placeholder
        session: requests session
    """

    def __init__(self, base_url: Optional[str] = None, session: Optional[requests.Session] = None):
        self.base_url = base_url or settings.SAFE_SERVICE_URL
        self.session = session or requests.Session()

    def _url(self, chain: str, path: str) -> str:
        return self.base_url.format(chain=chain).rstrip("/") + path

    def _request(self, method: str, url: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        logger.debug("%s %s", method, url)
        try:
            if method == "GET":
                response = self.session.get(url)
            else:
                response = self.session.post(url, json=payload)
        except requests.RequestException as e:
            raise NetworkError(f"Safe transaction service request failed: {e}")

        if response.status_code >= 400:
            raise NetworkError(f"Safe transaction service error {response.status_code}: {response.text}")

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            raise RemoteSigningError(f"Safe transaction service returned invalid JSON: {response.text}")

    def get_nonce(self, safe: SafeAddress) -> int:
        data = self._request("GET", self._url(safe.name, f"/safes/{safe.address}/"))
        if data.get("nonce") is None:
            raise RemoteSigningError(f"Safe transaction service returned no nonce for {safe.address}")
        return int(data["nonce"])

    def estimate(self, safe: SafeAddress, call: Dict[str, Any]) -> int:
        data = self._request(
            "POST",
            self._url(safe.name, f"/safes/{safe.address}/multisig-transactions/estimations/"),
            call,
        )
        if data.get("safeTxGas") is None:
            raise RemoteSigningError("Safe transaction service returned no gas estimation")
        return int(data["safeTxGas"])

    def propose(self, safe: SafeAddress, payload: Dict[str, Any]):
        self._request(
            "POST",
            self._url(safe.name, f"/safes/{safe.address}/multisig-transactions/"),
            payload,
        )


def propose_transaction(
    client: SafeRelayClient,
    multisig_address: str,
    call: Dict[str, Any],
    signer: Signer,
    override_gas: Optional[int] = None,
    nonce: Optional[int] = None
) -> int:
    """
    Propose a contract call to a Safe

    Args:
        client: Safe transaction service client
        multisig_address: Chain-qualified Safe address
        call: {"to", "data", "value"} of the contract call
        signer: Key of one of the Safe owners
        override_gas: safeTxGas to use instead of the relay estimation
        nonce: Nonce of the previous proposal of the same batch

    Returns:
        Nonce used by this proposal
    """
    safe = parse_safe_address(multisig_address)
    base_tx = {
        "to": to_checksum_address(call["to"]),
        "value": str(int(call.get("value") or 0)),
        "data": call["data"],
        "operation": 0,
    }

    if nonce is None:
        nonce = client.get_nonce(safe)
    else:
        nonce = nonce + 1

    safe_tx_gas = override_gas if override_gas is not None else client.estimate(safe, base_tx)

    tx = SafeTransaction(
        to=base_tx["to"],
        value=int(base_tx["value"]),
        data=base_tx["data"],
        operation=0,
        safe_tx_gas=safe_tx_gas,
        base_gas=0,
        gas_price=0,
        gas_token=ZERO_ADDRESS,
        refund_receiver=ZERO_ADDRESS,
        nonce=nonce,
    )

    tx_hash = safe_tx_hash(tx, safe.chain_id, safe.address)
    signature = signer.sign_digest(tx_hash)

    payload = tx.to_message()
    payload.update({
        "value": str(tx.value),
        "safeTxGas": str(tx.safe_tx_gas),
        "baseGas": "0",
        "gasPrice": "0",
        "sender": signer.get_address(),
        "contractTransactionHash": "0x" + tx_hash.hex(),
        "signature": "0x" + signature.hex(),
    })
    client.propose(safe, payload)

    logger.info("Proposed Safe transaction 0x%s with nonce %d to %s", tx_hash.hex(), nonce, safe.address)
    return nonce
