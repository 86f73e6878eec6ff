"""
Error types raised while loading CA material, issuing certificates and
talking to the secret store.
"""
from typing import Optional


class TLSSyncError(Exception):
    """Base class for all certificate sync errors."""


class DecodeError(TLSSyncError):
    """Input did not contain a usable PEM block."""


class ParseError(TLSSyncError):
    """A DER structure could not be parsed as a certificate or key."""


class CAMaterialError(TLSSyncError):
    """CA certificate or key is missing, undecodable or unusable."""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path


class GenerationError(TLSSyncError):
    """Key generation or certificate signing failed."""


class StoreError(TLSSyncError):
    """Communication with the secret store failed."""

    def __init__(self, message: str, operation: str = "", identifier=None,
                 status_code: Optional[int] = None):
        super().__init__(message)
        self.operation = operation
        self.identifier = identifier
        self.status_code = status_code


class SecretAlreadyExistsError(StoreError):
    """Create was rejected because the secret already exists."""


class SecretNotFoundError(StoreError):
    """Update was rejected because the secret no longer exists."""
