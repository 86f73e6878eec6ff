"""
Loading of the CA certificate and private key used to sign leaf certificates.
"""
import logging
from datetime import datetime, timezone
from typing import Optional

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization

from ..models.certificate import CASigner
from ..models.errors import CAMaterialError, DecodeError
from . import pem

logger = logging.getLogger(__name__)


def _read_pem(path: str) -> bytes:
    """Read a file and return the DER bytes of its first PEM block."""
    try:
        with open(path, "rb") as f:
            content = f.read()
    except OSError as e:
        raise CAMaterialError(f"unable to read {path}: {e}", path=path) from e

    try:
        return pem.decode(content)
    except DecodeError as e:
        raise CAMaterialError(f"unable to decode {path}: {e}", path=path) from e


def _public_key_der(key) -> bytes:
    return key.public_bytes(
        serialization.Encoding.DER,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    )


def load_signer(cert_path: str, key_path: str, validate: bool = False,
                now: Optional[datetime] = None) -> CASigner:
    """
    Load a CA certificate and its private key from PEM files.

    Args:
        cert_path: Path to the PEM-encoded CA certificate
        key_path: Path to the PEM-encoded, unencrypted CA private key
        validate: Also check the CA's validity window and CA usage flags
        now: Reference time for validation (defaults to current UTC time)

    Returns:
        CASigner holding the parsed certificate and key

    Raises:
        CAMaterialError: If either file is unreadable, undecodable, unparsable,
            or the key does not belong to the certificate
    """
    cert_der = _read_pem(cert_path)
    key_der = _read_pem(key_path)

    try:
        certificate = x509.load_der_x509_certificate(cert_der)
    except ValueError as e:
        raise CAMaterialError(f"unable to parse CA certificate {cert_path}: {e}", path=cert_path) from e

    try:
        private_key = serialization.load_der_private_key(key_der, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise CAMaterialError(f"unable to parse CA private key {key_path}: {e}", path=key_path) from e

    if _public_key_der(private_key.public_key()) != _public_key_der(certificate.public_key()):
        raise CAMaterialError(
            f"CA private key {key_path} does not match certificate {cert_path}", path=key_path
        )

    signer = CASigner(certificate=certificate, private_key=private_key)
    if validate:
        validate_signer(signer, now=now)

    logger.debug(f"Loaded CA signer {certificate.subject.rfc4514_string()} from {cert_path}")
    return signer


def validate_signer(signer: CASigner, now: Optional[datetime] = None) -> None:
    """
    Check that a CA certificate is currently valid and allowed to sign certificates.

    Raises:
        CAMaterialError: If the certificate is expired, not yet valid, or not a CA
    """
    now = now or datetime.now(timezone.utc)
    cert = signer.certificate
    subject = cert.subject.rfc4514_string()

    if now < cert.not_valid_before_utc or now > cert.not_valid_after_utc:
        raise CAMaterialError(
            f"CA certificate {subject} is not valid at {now.isoformat()} "
            f"(valid {cert.not_valid_before_utc.isoformat()} to {cert.not_valid_after_utc.isoformat()})"
        )

    try:
        constraints = cert.extensions.get_extension_for_class(x509.BasicConstraints).value
    except x509.ExtensionNotFound:
        constraints = None
    if constraints is None or not constraints.ca:
        raise CAMaterialError(f"CA certificate {subject} is not marked as a CA")

    try:
        key_usage = cert.extensions.get_extension_for_class(x509.KeyUsage).value
    except x509.ExtensionNotFound:
        return
    if not key_usage.key_cert_sign:
        raise CAMaterialError(f"CA certificate {subject} is not allowed to sign certificates")
