"""
ORGiD Command Line Tool
=======================

Manages ORGiD decentralized identities of organizations

Components:
- ProjectStore: Local project file (keys, ORGiDs, config, deployments)
- Signer: ethereum, pem, kmsEthereum and multisig key pairs
- OrgIdRegistry: ORGiD registry smart contract
- OrgIdResolver: ORGiD DID resolution
- OrgIdService: Service behind the CLI operations

Standards:
- W3C DID Core 1.0: https://www.w3.org/TR/did-core/
- W3C Verifiable Credentials: https://www.w3.org/TR/vc-data-model/
"""

from .errors import (
    OrgIdError,
    ConfigurationError,
    NotFoundError,
    DecryptionError,
    OwnershipMismatchError,
    RemoteSigningError,
    NetworkError,
)
from .project import ProjectStore, KeyRecord, OrgIdRecord, ConfigRecord, DeploymentRecord
from .keys import KeyType, Signer, EthereumSigner, PemSigner, MultisigSigner, load_signer
from .kms import KmsEthereumSigner
from .registry import OrgIdRegistry
from .resolver import OrgIdResolver
from .service import OrgIdService

__version__ = "1.0.0"
__all__ = [
    # Errors
    "OrgIdError",
    "ConfigurationError",
    "NotFoundError",
    "DecryptionError",
    "OwnershipMismatchError",
    "RemoteSigningError",
    "NetworkError",

    # Project
    "ProjectStore",
    "KeyRecord",
    "OrgIdRecord",
    "ConfigRecord",
    "DeploymentRecord",

    # Keys
    "KeyType",
    "Signer",
    "EthereumSigner",
    "PemSigner",
    "MultisigSigner",
    "KmsEthereumSigner",
    "load_signer",

    # Registry
    "OrgIdRegistry",
    "OrgIdResolver",

    # Service
    "OrgIdService"
]
