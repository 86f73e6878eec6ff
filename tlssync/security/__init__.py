"""
Security package for CA material, PEM handling and certificate issuance.
"""
from .ca_loader import load_signer, validate_signer
from .certificate_service import CertificateService, parse_certificate

__all__ = [
    'load_signer',
    'validate_signer',
    'CertificateService',
    'parse_certificate'
]
