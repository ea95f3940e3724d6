"""
ORGiD DID resolution

did:orgid:<network>:<orgId> -> registry record -> ORGiD VC URI -> ORG.JSON

Failures are reported in didResolutionMetadata.error instead of raised:
- invalidDid: malformed DID or unsupported network
- notFound: the ORGiD is not registered
- invalidOrgJson: the ORGiD VC cannot be fetched or does not verify
"""

import logging
from typing import Any, Callable, Dict, Optional

from .credentials import verify_org_id_vc
from .did import parse_did
from .errors import ConfigurationError, NetworkError, NotFoundError
from .project import now_iso
from .registry import OrgIdRegistry

logger = logging.getLogger(__name__)

RegistryFactory = Callable[[str], OrgIdRegistry]
Fetcher = Callable[[str], Dict[str, Any]]


class OrgIdResolver:
    """
    Resolves ORGiD DIDs into DID documents

    Args:
        registry_factory: Builds the registry for a network id
        fetcher: Fetches a JSON document by URI
    """

    def __init__(self, registry_factory: RegistryFactory, fetcher: Fetcher):
        self.registry_factory = registry_factory
        self.fetcher = fetcher

    @staticmethod
    def _response(
        did: str,
        document: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
        message: Optional[str] = None,
        document_metadata: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        resolution_metadata: Dict[str, Any] = {
            "contentType": "application/did+ld+json",
            "retrieved": now_iso(),
            "did": did,
        }
        if error:
            resolution_metadata["error"] = error
            resolution_metadata["message"] = message
        return {
            "@context": "https://w3id.org/did-resolution/v1",
            "didDocument": document,
            "didResolutionMetadata": resolution_metadata,
            "didDocumentMetadata": document_metadata,
        }

    def resolve(self, did: str) -> Dict[str, Any]:
        """
        Resolve an ORGiD DID

        Returns:
            DID resolution response; didDocument is None on error
        """
        try:
            parsed = parse_did(did)
            registry = self.registry_factory(parsed.network)
        except ConfigurationError as e:
            return self._response(did, error="invalidDid", message=str(e))

        try:
            record = registry.get_org_id(parsed.org_id)
        except NotFoundError as e:
            return self._response(did, error="notFound", message=str(e))

        try:
            org_id_vc = self.fetcher(record["orgJsonUri"])
        except (NetworkError, ConfigurationError) as e:
            return self._response(did, error="invalidOrgJson", message=str(e))

        metadata = {
            "created": None,
            "updated": None,
            "data": {**record, "orgIdVc": org_id_vc},
        }

        valid, error = verify_org_id_vc(org_id_vc, record["owner"])
        if not valid:
            logger.warning("ORGiD VC of %s rejected: %s", did, error)
            return self._response(did, error="invalidOrgJson", message=error, document_metadata=metadata)

        org_json = org_id_vc["credentialSubject"]
        if org_json.get("id") != parsed.did:
            return self._response(
                did,
                error="invalidOrgJson",
                message=f'ORG.JSON id "{org_json.get("id")}" does not match {parsed.did}',
                document_metadata=metadata,
            )

        metadata["created"] = org_json.get("created")
        metadata["updated"] = org_json.get("updated")
        return self._response(did, document=org_json, document_metadata=metadata)
