"""
config.py - Centralized settings for the ORGiD CLI
"""
from dataclasses import dataclass
from typing import List

from pydantic_settings import BaseSettings

from .errors import ConfigurationError


class CliSettings(BaseSettings):
    # Project storage
    PROJECT_FILE: str = "orgid.json"

    # Remote services
    SAFE_SERVICE_URL: str = "https://safe-transaction-{chain}.safe.global/api/v1"
    IPFS_GATEWAY: str = "https://w3s.link"
    IPFS_TIMEOUT: float = 10.0
    WEB3_STORAGE_URL: str = "https://api.web3.storage"
    WEB3_STORAGE_KEY_ID: str = "w3s"

    # Transactions
    DEPENDENT_TX_GAS: int = 179545

    # Tokens
    JWT_LIFETIME: int = 3600

    LOG_LEVEL: str = "WARNING"

    class Config:
        env_prefix = "ORGID_"
        env_file = ".env"


settings = CliSettings()


@dataclass(frozen=True)
class BlockchainNetwork:
    """Network where the ORGiD registry contract is deployed"""
    name: str
    id: str
    address: str


BLOCKCHAIN_NETWORKS: List[BlockchainNetwork] = [
    BlockchainNetwork("Sokol xDAI Testnet", "77", "0xDd1231c0FD9083DA42eDd2BD4f041d0a54EF7BeE"),
    BlockchainNetwork("Columbus", "502", "0xd8b75be9a47ffab0b5c27a143b911af7a7bf4076"),
    BlockchainNetwork("Goerli", "5", "0xe02dF24d8dFdd37B21690DB30F4813cf6c4D9D93"),
    BlockchainNetwork("Polygon", "137", "0x8a093Cb94663994d19a778c7EA9161352a434c64"),
    BlockchainNetwork("Gnosis Chain", "100", "0xb63d48e9d1e51305a17F4d95aCa3637BBC181b44"),
]


def get_supported_network(network_id: str) -> BlockchainNetwork:
    """Look up the registry deployment for a network id"""
    for network in BLOCKCHAIN_NETWORKS:
        if network.id == str(network_id):
            return network
    raise ConfigurationError(f"Network #{network_id} not supported by ORGiD protocol yet")
