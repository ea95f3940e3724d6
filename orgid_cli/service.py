"""
ORGiD Service
=============

Unified entry point for the CLI operations:
- project configuration (network providers, API keys)
- key import and ORG.JSON verification methods
- ORG.JSON bootstrap and ORGiD VC signing
- IPFS deployment and DID resolution

Transactions (create, update, transfer) live in transactions.py and JWT
issuance in tokens.py; both use the helpers of this service.
"""

import json
import logging
from pathlib import Path
from typing import Optional, Dict, Any, List, Callable, Iterable

import requests
from web3 import Web3

from .config import BLOCKCHAIN_NETWORKS, BlockchainNetwork, CliSettings, get_supported_network, settings as default_settings
from .credentials import issue_org_id_vc
from .did import (
    OrgJson,
    blockchain_account_method,
    checksum_address,
    generate_salt,
    jwk_method,
    make_did,
    org_id_hash,
    parse_did,
)
from .errors import ConfigurationError, NotFoundError, OrgIdError
from .ipfs import IpfsClient
from .jwk import load_pem_key_pair
from .keys import DIRECT_SIGNERS, EthereumSigner, KeyType, OWNER_KEYS, Signer, check_address, load_signer
from .kms import KmsEthereumSigner, create_kms_client
from .project import CONFIG_KINDS, ConfigRecord, DeploymentRecord, KeyRecord, OrgIdRecord, ProjectStore
from .prompts import Prompter, required
from .registry import OrgIdRegistry
from .resolver import OrgIdResolver
from .safe import SafeRelayClient, parse_safe_address
from .secret_codec import PASSWORD_HINT, decrypt, encrypt, is_strong_password

logger = logging.getLogger(__name__)

RegistryFactory = Callable[[BlockchainNetwork], OrgIdRegistry]


def _password_rule(value: str) -> Optional[str]:
    return None if is_strong_password(value) else PASSWORD_HINT


class OrgIdService:
    """
    Main service class for ORGiD operations

    Args:
        base_path: Project directory
        prompter: Interactive input
        settings: CLI settings
        registry_factory: Builds the registry for a network (web3 provider by default)
        safe_client: Safe transaction service client
        ipfs: IPFS client
        kms_client_factory: Builds a KMS client from the stored AWS config
        output: Where results are printed
    """

    def __init__(
        self,
        base_path: str,
        prompter: Optional[Prompter] = None,
        settings: Optional[CliSettings] = None,
        registry_factory: Optional[RegistryFactory] = None,
        safe_client: Optional[SafeRelayClient] = None,
        ipfs: Optional[IpfsClient] = None,
        kms_client_factory: Optional[Callable[[Dict[str, Any]], Any]] = None,
        output: Callable[[str], None] = print
    ):
        self.base_path = Path(base_path)
        self.settings = settings or default_settings
        self.store = ProjectStore(base_path, self.settings.PROJECT_FILE)
        self.prompter = prompter or Prompter(output=output)
        self.registry_factory = registry_factory
        self.safe_client = safe_client or SafeRelayClient(self.settings.SAFE_SERVICE_URL)
        self.ipfs = ipfs or IpfsClient(session=requests.Session(), settings=self.settings)
        self.kms_client_factory = kms_client_factory or create_kms_client
        self.output = output

    # ==================== OUTPUT ====================

    def info(self, message: str):
        self.output(message)

    def print_object(self, obj: Any):
        self.output(json.dumps(obj, indent=2, default=str))

    # ==================== FILES ====================

    def resolve_path(self, path: str) -> Path:
        return self.base_path / path

    def read_json(self, path: str) -> Dict[str, Any]:
        file_path = self.resolve_path(path)
        try:
            return json.loads(file_path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            raise NotFoundError(f"File not found: {file_path}")
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Unable to parse {file_path}: {e}")

    def write_json(self, path: str, data: Dict[str, Any]) -> str:
        file_path = self.resolve_path(path)
        file_path.parent.mkdir(parents=True, exist_ok=True)
        file_path.write_text(json.dumps(data, indent=2), encoding="utf-8")
        return path

    # ==================== SELECTION ====================

    def select_org_id(self, created: Optional[bool] = None) -> OrgIdRecord:
        """Let the operator choose one of the project ORGiDs"""
        records = self.store.get_org_ids(created)
        if not records:
            raise NotFoundError("No suitable ORGiDs found in the project")
        return self.prompter.select("Choose a registered ORGiD DID", [(r.did, r) for r in records])

    def select_key(self, types: Iterable[str], message: str = "Choose a key") -> KeyRecord:
        """Let the operator choose one of the registered key pairs"""
        types = list(types)
        records = self.store.get_keys(types)
        if not records:
            raise NotFoundError(
                f'No key pairs of type {", ".join(str(t) for t in types)} found. '
                f'Please import one using operation "keys:import"'
            )
        return self.prompter.select(message, [(f"{r.tag} ({r.type})", r) for r in records])

    def unlock(self, record: KeyRecord) -> Signer:
        """Ask for the key password (if any) and build the signer"""
        passphrase = None
        if record.type != KeyType.MULTISIG.value:
            passphrase = self.prompter.password(f'Enter the password for the key pair "{record.tag}"')
        return load_signer(record, passphrase, self.kms_client_factory)

    def select_owner_signer(self) -> Signer:
        """
        Signer of one of the Safe owners

        A registered ethereum/kmsEthereum key or a private key entered on
        the spot.
        """
        choices: List = [(f"{r.tag} ({r.type})", r) for r in self.store.get_keys(DIRECT_SIGNERS)]
        choices.append(("Enter a private key", None))
        record = self.prompter.select("Choose a key of one of the Safe owners", choices)
        if record is not None:
            return self.unlock(record)
        private_key = self.prompter.password("Please enter the Safe owner private key", required("Private key is required"))
        return EthereumSigner(private_key)

    def prompt_gas_price(self) -> Optional[int]:
        """Custom gas price in wei, None to let the node decide"""
        if not self.prompter.confirm("Do you want to define your own gas price for transaction?", default=False):
            return None

        def check(value: str) -> Optional[str]:
            try:
                return None if float(value) > 0 else "Gas price must be positive"
            except ValueError:
                return "Gas price must be a number"

        value = self.prompter.text("Set gas price (GWEI)", check)
        return Web3.to_wei(value, "gwei")

    # ==================== CONFIG RECORDS ====================

    def get_config_value(self, kind: str, record_id: str) -> str:
        """Config record value, decrypted when stored encrypted"""
        record = self.store.get_config_record(kind, record_id)
        if not record.encrypted:
            return record.value
        password = self.prompter.password(f'Enter the password for the encrypted config record "{record_id}"')
        return decrypt(record.value, password)

    def manage_config_records(self, record_type: Optional[str]) -> ConfigRecord:
        """
        Add (or replace) a network provider or API key

        Args:
            record_type: networkProviders or apisKeys
        """
        if not record_type:
            raise ConfigurationError('Config record type must be provided using "--record" option')
        if record_type not in CONFIG_KINDS:
            raise ConfigurationError(f'Unknown config record type: "{record_type}"')

        if record_type == "networkProviders":
            record_id = self.prompter.text("Please enter a network Id", required("Network Id is required"))
            label = "the provider URI"
        else:
            record_id = self.prompter.text(
                "Please enter an API key Id",
                required("API key Id is required"),
                default=self.settings.WEB3_STORAGE_KEY_ID,
            )
            label = "the API key"

        encrypted = self.prompter.confirm(f"Do you want to encrypt {label}?")
        if encrypted:
            value = self.prompter.password(f"Please enter {label}", required("Value is required"))
            password = self.prompter.password("Please provide a password", _password_rule)
            value = encrypt(value, password)
        else:
            value = self.prompter.text(f"Please enter {label}", required("Value is required"))

        record = self.store.add_config_record(record_type, ConfigRecord(id=record_id, value=value, encrypted=encrypted))
        self.info(f'Config record "{record_id}" of type "{record_type}" has been saved')
        return record

    # ==================== NETWORK ====================

    def get_registry(self, network_id: str) -> OrgIdRegistry:
        network = get_supported_network(network_id)
        if self.registry_factory is not None:
            return self.registry_factory(network)
        provider_uri = self.get_config_value("networkProviders", network.id)
        return OrgIdRegistry.from_uri(provider_uri, network.address)

    @property
    def resolver(self) -> OrgIdResolver:
        return OrgIdResolver(self.get_registry, self.ipfs.fetch_json)

    def fetch_json(self, uri: str) -> Dict[str, Any]:
        return self.ipfs.fetch_json(uri)

    def record_tx_hash(self, did: str, tx_hash: str):
        """Best-effort annotation of a broadcast transaction"""
        self.info(f"Transaction hash: {tx_hash}")
        try:
            self.store.update_org_id(did, tx_hash=tx_hash)
        except (OSError, OrgIdError) as e:
            logger.error("Unable to update project file with tx %s: %s", tx_hash, e)

    # ==================== KEYS ====================

    def _prompt_tag(self) -> str:
        existing = {k.tag for k in self.store.get_keys()}
        return self.prompter.text(
            "Please enter an unique key tag",
            lambda v: "Tag is required" if not v else ("Tag already exists" if v in existing else None),
        )

    def _prompt_new_password(self) -> str:
        return self.prompter.password("Please provide an encryption password for keys storage", _password_rule)

    def import_ethereum(self) -> KeyRecord:
        tag = self._prompt_tag()
        address = self.prompter.text(
            "Please enter an Ethereum account address",
            lambda v: None if Web3.is_address(v) else "Value must be a valid Ethereum address",
        )
        private_key = self.prompter.password(
            "Please enter a private key for the Ethereum account",
            required("Private key is required"),
        )
        check_address(EthereumSigner(private_key).get_address(), address, "private key")

        password = self._prompt_new_password()
        record = self.store.add_key(KeyRecord(
            tag=tag,
            type=KeyType.ETHEREUM.value,
            public_key=checksum_address(address),
            private_key=encrypt(private_key, password),
        ))
        self.info(f'Key pair of type "ethereum" with tag "{tag}" has been successfully imported')
        return record

    def import_pem(self, pub_pem: Optional[str], priv_pem: Optional[str]) -> KeyRecord:
        if not pub_pem or not priv_pem:
            raise ConfigurationError(
                'Both paths to pem-formatted keys must be provided using "--pubPem" and "--privPem" options'
            )
        try:
            public_pem = self.resolve_path(pub_pem).read_bytes()
            private_pem = self.resolve_path(priv_pem).read_bytes()
        except FileNotFoundError as e:
            raise NotFoundError(f"PEM file not found: {e.filename}")

        public_jwk, private_jwk = load_pem_key_pair(public_pem, private_pem)

        tag = self._prompt_tag()
        password = self._prompt_new_password()
        record = self.store.add_key(KeyRecord(
            tag=tag,
            type=KeyType.PEM.value,
            public_key=public_jwk,
            private_key=encrypt(json.dumps(private_jwk), password),
        ))
        self.info(
            f'Key pair of type "{public_jwk.get("crv")}" (converted from PEM format) '
            f'with tag "{tag}" has been successfully imported'
        )
        return record

    def import_multisig(self) -> KeyRecord:
        tag = self._prompt_tag()

        def check(value: str) -> Optional[str]:
            try:
                parse_safe_address(value)
            except ConfigurationError as e:
                return str(e)
            return None

        multisig_address = self.prompter.text("Please enter Safe wallet address (with net prefix)", check)
        record = self.store.add_key(KeyRecord(
            tag=tag,
            type=KeyType.MULTISIG.value,
            multisig_address=multisig_address,
        ))
        self.info(f'Multisig "key" with tag "{tag}" has been successfully imported')
        return record

    def import_kms(self) -> KeyRecord:
        tag = self._prompt_tag()
        config = {
            "keyId": self.prompter.text("Please enter the AWS KMS key Id", required("Key Id is required")),
            "region": self.prompter.text("Please enter the AWS region", required("Region is required")),
            "accessKeyId": self.prompter.text("Please enter the AWS access key Id", required("Access key Id is required")),
            "secretAccessKey": self.prompter.password(
                "Please enter the AWS secret access key",
                required("Secret access key is required"),
            ),
        }
        signer = KmsEthereumSigner.connect(config["keyId"], self.kms_client_factory(config))

        password = self._prompt_new_password()
        record = self.store.add_key(KeyRecord(
            tag=tag,
            type=KeyType.KMS_ETHEREUM.value,
            public_key=signer.get_address(),
            private_key=encrypt(json.dumps(config), password),
        ))
        self.info(f'Key pair of type "kmsEthereum" with tag "{tag}" and address {signer.get_address()} has been successfully imported')
        return record

    def import_keys(
        self,
        key_type: Optional[str],
        pub_pem: Optional[str] = None,
        priv_pem: Optional[str] = None,
        add_to_org_id: bool = False,
        controller: Optional[str] = None,
        is_delegated: bool = False
    ) -> Any:
        """
        Import a key pair (or API key) into the project

        With add_to_org_id an already registered key is added as a
        verification method of a chosen ORG.JSON instead.
        """
        if not key_type:
            raise ConfigurationError('Key pair type must be provided using "--keyType" option')

        if add_to_org_id:
            return self.add_to_org_json(key_type, controller, is_delegated)

        if key_type == KeyType.ETHEREUM.value:
            return self.import_ethereum()
        if key_type == KeyType.PEM.value:
            return self.import_pem(pub_pem, priv_pem)
        if key_type == KeyType.MULTISIG.value:
            return self.import_multisig()
        if key_type == KeyType.KMS_ETHEREUM.value:
            return self.import_kms()
        if key_type == "api":
            return self.manage_config_records("apisKeys")
        raise ConfigurationError(f'Unknown key pair type: "{key_type}"')

    def add_to_org_json(self, key_type: str, controller: Optional[str] = None, is_delegated: bool = False) -> Dict[str, Any]:
        """Add a registered key as verification method of an ORG.JSON"""
        org_id = self.select_org_id()
        if not org_id.org_json_path:
            raise ConfigurationError(f"Link to the ORG.JSON file not found for the selected {org_id.did}")

        org_json = OrgJson.from_dict(self.read_json(org_id.org_json_path))
        controller = controller or org_id.did
        network = parse_did(controller).network

        record = self.select_key([key_type])
        method_id = f"{org_id.did}#{record.tag}"

        if key_type in (KeyType.ETHEREUM.value, KeyType.KMS_ETHEREUM.value):
            method = blockchain_account_method(method_id, controller, network, record.public_key)
        elif key_type == KeyType.PEM.value:
            method = jwk_method(method_id, controller, record.public_key)
        else:
            raise ConfigurationError(
                f'It is not possible to create verification method using "{key_type}" type of key'
            )

        org_json.upsert_verification_method(method, delegated=is_delegated)
        self.write_json(org_id.org_json_path, org_json.to_dict())

        self.info(
            f'"verificationMethod" with Id {method_id} has been added.\n'
            f"ORG.JSON file for {org_id.did} has been successfully updated in the project."
        )
        return method

    # ==================== ORG.JSON ====================

    def _select_owner(self) -> str:
        records = self.store.get_keys(OWNER_KEYS)
        choices: List = [(f"{r.tag} ({r.type})", r) for r in records]
        choices.append(("Enter an owner address", None))
        record = self.prompter.select("Choose the ORGiD owner", choices)

        if record is None:
            return checksum_address(self.prompter.text(
                "Please enter the owner address",
                lambda v: None if Web3.is_address(v) else "Value must be a valid Ethereum address",
            ))
        if record.type == KeyType.MULTISIG.value:
            return parse_safe_address(record.multisig_address).address
        return checksum_address(record.public_key)

    def bootstrap(self, output: Optional[str] = None) -> OrgIdRecord:
        """
        Create an ORG.JSON template for a new ORGiD

        The DID is computed locally from the owner and a random salt, the
        ORGiD is registered later by the "create" operation.
        """
        network = self.prompter.select(
            "Choose the network",
            [(f"{n.name} (#{n.id})", n) for n in BLOCKCHAIN_NETWORKS],
        )
        owner = self._select_owner()
        legal_name = self.prompter.text("Please enter the organization legal name", required("Legal name is required"))

        salt = generate_salt()
        org_id = org_id_hash(owner, salt)
        did = make_did(network.id, org_id)

        org_json = OrgJson(
            id=did,
            verification_method=[blockchain_account_method(f"{did}#key1", did, network.id, owner)],
            legal_entity={"legalName": legal_name},
        )
        output = output or f"orgJson-{org_id[2:10]}.json"
        self.write_json(output, org_json.to_dict())

        record = self.store.add_org_id(OrgIdRecord(
            did=did,
            salt=salt,
            owner=owner,
            org_json_path=output,
        ))
        self.info(f"ORG.JSON template for {did} has been saved to {output}")
        return record

    def create_org_id_vc(
        self,
        output: Optional[str] = None,
        nft_name: Optional[str] = None,
        nft_description: Optional[str] = None,
        nft_image: Optional[str] = None
    ) -> Dict[str, Any]:
        """Sign the ORG.JSON of a chosen ORGiD into an ORGiD VC"""
        org_id = self.select_org_id()
        if not org_id.org_json_path:
            raise ConfigurationError(f"Link to the ORG.JSON file not found for the selected {org_id.did}")
        org_json = self.read_json(org_id.org_json_path)

        record = self.select_key(
            [KeyType.ETHEREUM, KeyType.KMS_ETHEREUM, KeyType.PEM],
            "Choose a key to sign the ORGiD VC",
        )
        signer = self.unlock(record)

        vc = issue_org_id_vc(
            org_json,
            signer,
            nft_name=nft_name,
            nft_description=nft_description,
            nft_image=nft_image,
        )
        output = output or f"orgIdVc-{parse_did(org_id.did).org_id[2:10]}.json"
        self.write_json(output, vc.to_dict())

        self.info(f"ORGiD VC for {org_id.did} has been saved to {output}")
        return vc.to_dict()

    # ==================== DEPLOYMENT ====================

    def deploy_ipfs(self, path: Optional[str], filetype: Optional[str] = None) -> DeploymentRecord:
        """
        Upload a file to IPFS and register the deployment

        With filetype "orgIdVc" the resulting URI is linked to the ORGiD
        named by the VC's credentialSubject.id.
        """
        if not path:
            raise ConfigurationError('Path to the file must be provided using "--path" option')

        org_id_did = None
        if filetype == "orgIdVc":
            org_id_did = self.read_json(path).get("credentialSubject", {}).get("id")
            if not org_id_did:
                raise ConfigurationError(f"ORGiD VC {path} has no credentialSubject.id")
            self.store.get_org_id(org_id_did)

        if not self.ipfs.api_token:
            self.ipfs.api_token = self.get_config_value("apisKeys", self.settings.WEB3_STORAGE_KEY_ID)

        cid = self.ipfs.add(str(self.resolve_path(path)))
        record = DeploymentRecord(type="ipfs", path=path, uri=f"ipfs://{cid}")
        replaced = self.store.add_deployment(record, org_id_did)

        if replaced is not None and replaced.uri != record.uri:
            self.ipfs.remove(replaced.uri[len("ipfs://"):])

        self.info(f"File {path} has been deployed to IPFS: {record.uri}")
        self.print_object(record.to_dict())
        return record

    # ==================== RESOLUTION ====================

    def resolve(self, did: Optional[str]) -> Dict[str, Any]:
        if not did:
            raise ConfigurationError('ORGiD DID must be provided using "--did" option')

        response = self.resolver.resolve(did)
        if response["didDocument"] is None:
            self.info(f'ORGiD with DID: "{did}" has been resolved with the error:')
            self.info(response["didResolutionMetadata"].get("message") or response["didResolutionMetadata"].get("error"))
        else:
            self.info(f'ORGiD with DID: "{did}" has been successfully resolved')
        self.print_object(response)
        return response
