"""
IPFS publishing (web3.storage) and ORG.JSON / VC fetching
"""

import logging
from pathlib import Path
from typing import Any, Dict, Optional

import requests

from .config import CliSettings, settings as default_settings
from .errors import ConfigurationError, NetworkError

logger = logging.getLogger(__name__)


def parse_uri(uri: str) -> Dict[str, str]:
    """
    Classify a document URI

    Returns:
        {"type": "ipfs" | "http", "uri": cid or url}
    """
    if not uri:
        raise ConfigurationError("Empty document URI")
    if uri.startswith("ipfs://"):
        return {"type": "ipfs", "uri": uri[len("ipfs://"):].strip("/")}
    if uri.startswith(("http://", "https://")):
        return {"type": "http", "uri": uri}
    # Bare CIDs are stored by deploy:ipfs
    if uri.startswith(("Qm", "bafy", "bafk")):
        return {"type": "ipfs", "uri": uri}
    raise ConfigurationError(f"Unknown URI type: {uri}")


class IpfsClient:
    """
    web3.storage upload and gateway retrieval

    Args:
        api_token: web3.storage API token (only needed for uploads)
        session: requests session
        settings: CLI settings
    """

    def __init__(
        self,
        api_token: Optional[str] = None,
        session: Optional[requests.Session] = None,
        settings: Optional[CliSettings] = None
    ):
        self.api_token = api_token
        self.session = session or requests.Session()
        self.settings = settings or default_settings

    def add(self, file_path: str) -> str:
        """
        Upload a file, return its CID
        """
        if not self.api_token:
            raise ConfigurationError(
                f'API key "{self.settings.WEB3_STORAGE_KEY_ID}" is required to deploy files to IPFS'
            )

        path = Path(file_path)
        if not path.is_file():
            raise ConfigurationError(f"File not found: {file_path}")

        url = self.settings.WEB3_STORAGE_URL.rstrip("/") + "/upload"
        try:
            response = self.session.post(
                url,
                data=path.read_bytes(),
                headers={
                    "Authorization": f"Bearer {self.api_token}",
                    "X-NAME": path.name,
                },
            )
        except requests.RequestException as e:
            raise NetworkError(f"IPFS upload failed: {e}")

        if response.status_code >= 400:
            raise NetworkError(f"IPFS upload failed with status {response.status_code}: {response.text}")

        try:
            cid = response.json()["cid"]
        except (ValueError, KeyError):
            raise NetworkError(f"Unexpected IPFS upload response: {response.text}")

        logger.info("File %s uploaded to IPFS: %s", path, cid)
        return cid

    def remove(self, cid: str):
        # web3.storage keeps uploads pinned, nothing to unpin
        logger.warning("Unpinning of %s is not supported, the old deployment stays on IPFS", cid)

    def fetch_json(self, uri: str) -> Dict[str, Any]:
        """Fetch a JSON document by ipfs:// (gateway) or http(s) URI"""
        parsed = parse_uri(uri)
        if parsed["type"] == "ipfs":
            url = f'{self.settings.IPFS_GATEWAY.rstrip("/")}/ipfs/{parsed["uri"]}'
            timeout = self.settings.IPFS_TIMEOUT
        else:
            url = parsed["uri"]
            timeout = None

        logger.debug("GET %s", url)
        try:
            response = self.session.get(url, timeout=timeout)
        except requests.RequestException as e:
            raise NetworkError(f"Unable to fetch {uri}: {e}")

        if response.status_code >= 400:
            raise NetworkError(f"Unable to fetch {uri}: status {response.status_code}")

        try:
            return response.json()
        except ValueError:
            raise NetworkError(f"Document at {uri} is not valid JSON")
