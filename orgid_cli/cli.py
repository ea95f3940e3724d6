"""
Command line dispatcher

    orgid --operation <name> [options]
"""

import argparse
import logging
import os
import sys
from typing import Callable, Dict, List, Optional

from .config import settings
from .errors import ConfigurationError, OrgIdError
from .service import OrgIdService
from .tokens import create_jwt
from .transactions import create_org_id, transfer_org_id, update_org_id

logger = logging.getLogger(__name__)


def _flag(value: Optional[str]) -> bool:
    return value is not None and value.lower() not in ("", "0", "false", "no")


OPERATIONS: Dict[str, Callable[[OrgIdService, argparse.Namespace], object]] = {
    "config": lambda s, a: s.manage_config_records(a.record),
    "orgIdVc": lambda s, a: s.create_org_id_vc(a.output, a.nftName, a.nftDescription, a.nftImage),
    "deploy:ipfs": lambda s, a: s.deploy_ipfs(a.path, a.filetype),
    "bootstrap": lambda s, a: s.bootstrap(a.output),
    "keys:import": lambda s, a: s.import_keys(
        a.keyType,
        pub_pem=a.pubPem,
        priv_pem=a.privPem,
        add_to_org_id=_flag(a.addToOrgId),
        controller=a.controller,
        is_delegated=_flag(a.isDelegated),
    ),
    "create": lambda s, a: create_org_id(s),
    "update": lambda s, a: update_org_id(s),
    "resolve": lambda s, a: s.resolve(a.did),
    "transfer": lambda s, a: transfer_org_id(s, a.newOwner),
    "jwt": lambda s, a: create_jwt(s, a.issuer, a.audience, a.expiration, a.scope),
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="orgid", description="ORGiD command line tool")
    parser.add_argument("--operation", help=f'One of: {", ".join(OPERATIONS)}')
    parser.add_argument("--output", help="Output file path")
    parser.add_argument("--nftName", help="ORGiD VC NFT name")
    parser.add_argument("--nftDescription", help="ORGiD VC NFT description")
    parser.add_argument("--nftImage", help="ORGiD VC NFT image URI")
    parser.add_argument("--path", help="File to deploy")
    parser.add_argument("--keyType", help="ethereum, pem, multisig, kmsEthereum or api")
    parser.add_argument("--record", help="networkProviders or apisKeys")
    parser.add_argument("--filetype", help='Type of the deployed file ("orgIdVc")')
    parser.add_argument("--did", help="ORGiD DID")
    parser.add_argument("--newOwner", help="Address of the new ORGiD owner")
    parser.add_argument("--issuer", help="JWT issuer (verification method id)")
    parser.add_argument("--audience", help="JWT audience DID")
    parser.add_argument("--expiration", help="JWT expiration, Unix time in seconds")
    parser.add_argument("--scope", help="JWT scope, comma separated")
    parser.add_argument("--pubPem", help="Path to the public PEM key")
    parser.add_argument("--privPem", help="Path to the private PEM key")
    parser.add_argument("--addToOrgId", help="Add a registered key to an ORG.JSON")
    parser.add_argument("--isDelegated", help="Add the verification method to capabilityDelegation")
    parser.add_argument("--controller", help="Verification method controller DID")
    return parser


def run(args: argparse.Namespace, service: OrgIdService):
    """Invoke the selected operation"""
    if not args.operation:
        raise ConfigurationError('Operation type must be provided using "--operation" parameter')
    operation = OPERATIONS.get(args.operation)
    if operation is None:
        raise ConfigurationError(f'Unknown operation type "{args.operation}"')
    logger.debug("Running operation %s", args.operation)
    return operation(service, args)


def main(argv: Optional[List[str]] = None, base_path: Optional[str] = None, service: Optional[OrgIdService] = None) -> int:
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    args = build_parser().parse_args(argv)

    try:
        run(args, service or OrgIdService(base_path or os.getcwd()))
    except OrgIdError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("Error: Process interrupted", file=sys.stderr)
        return 1
    except Exception as e:
        logger.debug("Unexpected failure", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
