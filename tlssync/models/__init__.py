"""
Models package for the TLS secret sync application.
"""

from .certificate import (
    CertificateSpec, CASigner, ParsedCertificate, IssuedCertificate,
    SecretIdentifier, StoredArtifact, DriftReason, DriftDecision,
    SyncAction, SyncResult
)
from .config import Config, ConfigValidationError, ConfigValidationResult
from .errors import (
    TLSSyncError, DecodeError, ParseError, CAMaterialError, GenerationError,
    StoreError, SecretAlreadyExistsError, SecretNotFoundError
)

__all__ = [
    'CertificateSpec',
    'CASigner',
    'ParsedCertificate',
    'IssuedCertificate',
    'SecretIdentifier',
    'StoredArtifact',
    'DriftReason',
    'DriftDecision',
    'SyncAction',
    'SyncResult',
    'Config',
    'ConfigValidationError',
    'ConfigValidationResult',
    'TLSSyncError',
    'DecodeError',
    'ParseError',
    'CAMaterialError',
    'GenerationError',
    'StoreError',
    'SecretAlreadyExistsError',
    'SecretNotFoundError'
]
