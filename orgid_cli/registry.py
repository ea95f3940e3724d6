"""
ORGiD registry contract (ERC-721 based) over web3
"""

import logging
from typing import Any, Callable, Dict, List, Optional

from web3 import Web3
from web3.exceptions import Web3Exception
from web3.logs import DISCARD
import requests

from .errors import NetworkError, NotFoundError
from .keys import Signer

logger = logging.getLogger(__name__)


def _fn(name: str, inputs: List[tuple], outputs: List[tuple] = (), mutability: str = "nonpayable") -> Dict[str, Any]:
    return {
        "type": "function",
        "name": name,
        "stateMutability": mutability,
        "inputs": [{"name": n, "type": t} for n, t in inputs],
        "outputs": [{"name": n, "type": t} for n, t in outputs],
    }


ORGID_ABI = [
    _fn("createOrgId", [("salt", "bytes32"), ("orgJsonUri", "string")], [("tokenId", "uint256")]),
    _fn("setOrgJson", [("orgId", "bytes32"), ("orgJsonUri", "string")]),
    _fn("addDelegates", [("orgId", "bytes32"), ("delegates", "string[]")]),
    _fn("transferFrom", [("from", "address"), ("to", "address"), ("tokenId", "uint256")]),
    _fn(
        "getOrgId",
        [("orgId", "bytes32")],
        [("exists", "bool"), ("tokenId", "uint256"), ("orgJsonUri", "string"), ("owner", "address")],
        "view",
    ),
    _fn("getDelegates", [("orgId", "bytes32")], [("delegates", "string[]")], "view"),
    {
        "type": "event",
        "name": "Transfer",
        "anonymous": False,
        "inputs": [
            {"name": "from", "type": "address", "indexed": True},
            {"name": "to", "type": "address", "indexed": True},
            {"name": "tokenId", "type": "uint256", "indexed": True},
        ],
    },
]


def _bytes32(value: str) -> bytes:
    return Web3.to_bytes(hexstr=value)


class OrgIdRegistry:
    """
    Wrapper around the ORGiD registry contract

    Args:
        web3: Connected Web3 instance
        address: Registry contract address
    """

    def __init__(self, web3: Web3, address: str):
        self.web3 = web3
        self.address = Web3.to_checksum_address(address)
        self.contract = web3.eth.contract(address=self.address, abi=ORGID_ABI)

    @classmethod
    def from_uri(cls, provider_uri: str, address: str) -> "OrgIdRegistry":
        return cls(Web3(Web3.HTTPProvider(provider_uri)), address)

    @staticmethod
    def _args(fn_name: str, args: tuple) -> list:
        # bytes32 arguments are passed around as hex strings
        if fn_name in ("createOrgId", "setOrgJson", "addDelegates", "getOrgId", "getDelegates"):
            return [_bytes32(args[0])] + list(args[1:])
        return list(args)

    # ==================== TRANSACTIONS ====================

    def build_call(self, fn_name: str, *args) -> Dict[str, Any]:
        """Unsigned contract call for a multisig proposal"""
        data = self.contract.encode_abi(fn_name, args=self._args(fn_name, args))
        return {"to": self.address, "data": data, "value": 0}

    def send(
        self,
        signer: Signer,
        fn_name: str,
        *args,
        gas_price: Optional[int] = None,
        on_tx_hash: Optional[Callable[[str], None]] = None
    ) -> Dict[str, Any]:
        """
        Sign and broadcast a contract call, wait for the receipt

        Args:
            signer: Direct signer (ethereum or kmsEthereum)
            fn_name: Contract function
            gas_price: Legacy gas price in wei (EIP-1559 fees otherwise)
            on_tx_hash: Called with the hash right after broadcasting

        Returns:
            Transaction receipt
        """
        sender = signer.get_address()
        try:
            params: Dict[str, Any] = {
                "from": sender,
                "nonce": self.web3.eth.get_transaction_count(sender),
                "chainId": self.web3.eth.chain_id,
            }
            if gas_price is not None:
                params["gasPrice"] = gas_price

            function = self.contract.get_function_by_name(fn_name)(*self._args(fn_name, args))
            tx = function.build_transaction(params)
            raw = signer.sign_transaction(tx)
            tx_hash = self.web3.eth.send_raw_transaction(raw)
        except (Web3Exception, requests.RequestException) as e:
            raise NetworkError(f'Transaction "{fn_name}" failed: {e}')

        tx_hash_hex = Web3.to_hex(tx_hash)
        logger.info('Transaction "%s" sent: %s', fn_name, tx_hash_hex)
        if on_tx_hash:
            on_tx_hash(tx_hash_hex)

        try:
            receipt = self.web3.eth.wait_for_transaction_receipt(tx_hash)
        except (Web3Exception, requests.RequestException) as e:
            raise NetworkError(f"Unable to get receipt of {tx_hash_hex}: {e}")

        if receipt.get("status") == 0:
            raise NetworkError(f'Transaction "{fn_name}" reverted: {tx_hash_hex}')
        return receipt

    def token_id_from_receipt(self, receipt: Dict[str, Any]) -> Optional[int]:
        """Token id minted by createOrgId"""
        events = self.contract.events.Transfer().process_receipt(receipt, errors=DISCARD)
        for event in events:
            if int(event["args"]["from"], 16) == 0:
                return int(event["args"]["tokenId"])
        return None

    # ==================== QUERIES ====================

    def get_org_id(self, org_id: str) -> Dict[str, Any]:
        """
        Registry data of an ORGiD

        Raises:
            NotFoundError: ORGiD is not registered
        """
        try:
            exists, token_id, org_json_uri, owner = self.contract.functions.getOrgId(_bytes32(org_id)).call()
            delegates = self.contract.functions.getDelegates(_bytes32(org_id)).call() if exists else []
        except (Web3Exception, requests.RequestException) as e:
            raise NetworkError(f"Unable to fetch ORGiD {org_id}: {e}")

        if not exists:
            raise NotFoundError(f"ORGiD {org_id} not found in the registry")

        return {
            "orgId": org_id,
            "tokenId": str(token_id),
            "orgJsonUri": org_json_uri,
            "owner": owner,
            "delegates": list(delegates),
        }
