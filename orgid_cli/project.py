"""
Project Store - Local JSON file with keys, ORGiDs, deployments and config

File layout:
{
    "keys": [...],
    "orgIds": [...],
    "deployments": [...],
    "config": {"networkProviders": [...], "apisKeys": [...]}
}

The file is read, mutated in memory and rewritten wholesale on every change.
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Dict, Any, List, Iterable

from .config import settings
from .errors import ConfigurationError, NotFoundError

logger = logging.getLogger(__name__)

CONFIG_KINDS = ("networkProviders", "apisKeys")


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass
class KeyRecord:
    """Registered key pair (private material is always encrypted)"""
    tag: str
    type: str  # ethereum, pem, kmsEthereum, multisig
    public_key: Any = ""  # checksum address or public JWK
    private_key: str = ""  # encrypted key, encrypted JWK or encrypted KMS config
    multisig_address: Optional[str] = None
    created_at: str = ""

    def __post_init__(self):
        if not self.created_at:
            self.created_at = now_iso()

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "tag": self.tag,
            "type": self.type,
            "publicKey": self.public_key,
            "privateKey": self.private_key,
            "createdAt": self.created_at,
        }
        if self.multisig_address:
            result["multisigAddress"] = self.multisig_address
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "KeyRecord":
        return cls(
            tag=data["tag"],
            type=data["type"],
            public_key=data.get("publicKey", ""),
            private_key=data.get("privateKey", ""),
            multisig_address=data.get("multisigAddress") or data.get("multisig"),
            created_at=data.get("createdAt") or data.get("date", ""),
        )


@dataclass
class OrgIdRecord:
    """ORGiD known to the project; created flips after on-chain confirmation"""
    did: str
    salt: str
    owner: str
    org_json_path: Optional[str] = None
    org_id_vc: Optional[str] = None
    created: bool = False
    tx_hash: Optional[str] = None
    token_id: Optional[str] = None
    created_at: str = ""

    def __post_init__(self):
        if not self.created_at:
            self.created_at = now_iso()

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "did": self.did,
            "salt": self.salt,
            "owner": self.owner,
            "created": self.created,
            "createdAt": self.created_at,
        }
        if self.org_json_path:
            result["orgJson"] = self.org_json_path
        if self.org_id_vc:
            result["orgIdVc"] = self.org_id_vc
        if self.tx_hash:
            result["txHash"] = self.tx_hash
        if self.token_id is not None:
            result["tokenId"] = self.token_id
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OrgIdRecord":
        return cls(
            did=data["did"],
            salt=data["salt"],
            owner=data["owner"],
            org_json_path=data.get("orgJson"),
            org_id_vc=data.get("orgIdVc"),
            created=bool(data.get("created", False)),
            tx_hash=data.get("txHash"),
            token_id=data.get("tokenId"),
            created_at=data.get("createdAt") or data.get("date", ""),
        )


@dataclass
class ConfigRecord:
    """Network provider URI or API key"""
    id: str
    value: str
    encrypted: bool = False
    created_at: str = ""

    def __post_init__(self):
        if not self.created_at:
            self.created_at = now_iso()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "value": self.value,
            "encrypted": self.encrypted,
            "createdAt": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConfigRecord":
        return cls(
            id=str(data["id"]),
            value=data.get("value") or data.get("uri") or data.get("key", ""),
            encrypted=bool(data.get("encrypted", False)),
            created_at=data.get("createdAt") or data.get("date", ""),
        )


@dataclass
class DeploymentRecord:
    """File published to IPFS"""
    type: str
    path: str
    uri: str
    created_at: str = ""

    def __post_init__(self):
        if not self.created_at:
            self.created_at = now_iso()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "path": self.path,
            "uri": self.uri,
            "createdAt": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DeploymentRecord":
        return cls(
            type=data["type"],
            path=data["path"],
            uri=data["uri"],
            created_at=data.get("createdAt") or data.get("date", ""),
        )


class ProjectStore:
    """
    Reads and writes the project file

    No locking: concurrent invocations against the same file may
    overwrite each other's changes.
    """

    def __init__(self, base_path: str, filename: Optional[str] = None):
        self.base_path = Path(base_path)
        self.path = self.base_path / (filename or settings.PROJECT_FILE)

    # ==================== FILE I/O ====================

    def load(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        if self.path.exists():
            try:
                data = json.loads(self.path.read_text(encoding="utf-8") or "{}")
            except json.JSONDecodeError as e:
                raise ConfigurationError(f"Unable to parse project file {self.path}: {e}")

        data.setdefault("keys", [])
        data.setdefault("orgIds", [])
        data.setdefault("deployments", [])
        config = data.setdefault("config", {})
        for kind in CONFIG_KINDS:
            config.setdefault(kind, [])
        return data

    def save(self, data: Dict[str, Any]):
        self.path.write_text(json.dumps(data, indent=2), encoding="utf-8")
        logger.debug("Project file %s saved", self.path)

    # ==================== KEYS ====================

    def add_key(self, record: KeyRecord) -> KeyRecord:
        data = self.load()
        if any(k["tag"] == record.tag for k in data["keys"]):
            raise ConfigurationError(f'Key pair with tag "{record.tag}" already exists')
        data["keys"].append(record.to_dict())
        self.save(data)
        return record

    def get_keys(self, types: Optional[Iterable[str]] = None) -> List[KeyRecord]:
        records = [KeyRecord.from_dict(k) for k in self.load()["keys"]]
        if types is not None:
            allowed = {str(t) for t in types}
            records = [r for r in records if r.type in allowed]
        return records

    def get_key(self, tag: str) -> KeyRecord:
        for record in self.get_keys():
            if record.tag == tag:
                return record
        raise NotFoundError(f'Key pair with tag "{tag}" not found')

    # ==================== ORGIDS ====================

    def add_org_id(self, record: OrgIdRecord) -> OrgIdRecord:
        data = self.load()
        data["orgIds"] = [o for o in data["orgIds"] if o["did"] != record.did]
        data["orgIds"].append(record.to_dict())
        self.save(data)
        return record

    def get_org_ids(self, created: Optional[bool] = None) -> List[OrgIdRecord]:
        records = [OrgIdRecord.from_dict(o) for o in self.load()["orgIds"]]
        if created is not None:
            records = [r for r in records if r.created == created]
        return records

    def get_org_id(self, did: str) -> OrgIdRecord:
        for record in self.get_org_ids():
            if record.did == did:
                return record
        raise NotFoundError(f"ORGiD {did} not found in the project")

    def update_org_id(self, did: str, **changes) -> OrgIdRecord:
        record = self.get_org_id(did)
        for name, value in changes.items():
            if not hasattr(record, name):
                raise ConfigurationError(f"Unknown ORGiD record field: {name}")
            setattr(record, name, value)
        return self.add_org_id(record)

    # ==================== CONFIG ====================

    def add_config_record(self, kind: str, record: ConfigRecord) -> ConfigRecord:
        if kind not in CONFIG_KINDS:
            raise ConfigurationError(f'Unknown config record type: "{kind}"')
        data = self.load()
        records = [r for r in data["config"][kind] if str(r["id"]) != record.id]
        records.append(record.to_dict())
        data["config"][kind] = records
        self.save(data)
        return record

    def get_config_record(self, kind: str, record_id: str) -> ConfigRecord:
        if kind not in CONFIG_KINDS:
            raise ConfigurationError(f'Unknown config record type: "{kind}"')
        for raw in self.load()["config"][kind]:
            if str(raw["id"]) == str(record_id):
                return ConfigRecord.from_dict(raw)
        raise NotFoundError(
            f'Config record "{record_id}" not found. Please add it to the project '
            f'config using operation "config --record {kind}"'
        )

    # ==================== DEPLOYMENTS ====================

    def get_deployments(self) -> List[DeploymentRecord]:
        return [DeploymentRecord.from_dict(d) for d in self.load()["deployments"]]

    def add_deployment(
        self,
        record: DeploymentRecord,
        org_id_did: Optional[str] = None
    ) -> Optional[DeploymentRecord]:
        """
        Register a deployment

        Args:
            record: New deployment
            org_id_did: ORGiD to link the deployed VC URI to

        Returns:
            Previous deployment of the same file, if any
        """
        data = self.load()
        replaced = None
        kept = []
        for raw in data["deployments"]:
            if raw["path"] == record.path:
                replaced = DeploymentRecord.from_dict(raw)
            else:
                kept.append(raw)
        kept.append(record.to_dict())
        data["deployments"] = kept

        if org_id_did:
            for raw in data["orgIds"]:
                if raw["did"] == org_id_did:
                    raw["orgIdVc"] = record.uri
                    break
            else:
                raise NotFoundError(f"ORGiD {org_id_did} not found in the project")

        self.save(data)
        return replaced
