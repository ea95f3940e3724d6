"""
Error taxonomy for the ORGiD CLI.

Every error is fatal to the current invocation; the CLI prints the message
and exits with status 1.
"""


class OrgIdError(Exception):
    """Base class for all CLI errors"""


class ConfigurationError(OrgIdError):
    """Missing or invalid flag, option or project record"""


class NotFoundError(OrgIdError):
    """DID, key or project record is absent"""


class DecryptionError(OrgIdError):
    """Wrong passphrase or corrupted ciphertext"""


class OwnershipMismatchError(OrgIdError):
    """Derived signer address differs from the expected owner"""


class RemoteSigningError(OrgIdError):
    """KMS or Safe relay returned no usable payload"""


class NetworkError(OrgIdError):
    """RPC or HTTP failure surfaced from the transport layer"""
