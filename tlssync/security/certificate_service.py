"""
Certificate service for issuing CA-signed leaf certificates and reading them back.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ed448, ed25519, rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from ..models.certificate import CASigner, CertificateSpec, IssuedCertificate, ParsedCertificate
from ..models.errors import GenerationError, ParseError
from . import pem

DEFAULT_KEY_SIZE = 2048
DEFAULT_CLOCK_SKEW = timedelta(minutes=5)
PUBLIC_EXPONENT = 65537


def parse_certificate(certificate_pem: bytes) -> ParsedCertificate:
    """
    Parse the subject, SANs and validity window out of a PEM certificate.

    Raises:
        DecodeError: If the input contains no PEM block
        ParseError: If the PEM block is not a valid X.509 certificate
    """
    der = pem.decode(certificate_pem)
    try:
        cert = x509.load_der_x509_certificate(der)
        # Extensions are decoded lazily, so a malformed SAN only fails here.
        return _parsed_from_x509(cert)
    except (ValueError, x509.DuplicateExtension) as e:
        raise ParseError(f"invalid certificate: {e}") from e


def _parsed_from_x509(cert: x509.Certificate) -> ParsedCertificate:
    cn_attributes = cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
    subject = cn_attributes[0].value if cn_attributes else ""

    try:
        san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
        dns_names = san.get_values_for_type(x509.DNSName)
        ip_addresses = san.get_values_for_type(x509.IPAddress)
    except x509.ExtensionNotFound:
        dns_names, ip_addresses = [], []

    return ParsedCertificate(
        subject=subject,
        dns_names=list(dns_names),
        ip_addresses=list(ip_addresses),
        not_before=cert.not_valid_before_utc,
        not_after=cert.not_valid_after_utc,
        serial_number=cert.serial_number,
    )


class CertificateService:
    """Service for generating key pairs and signing leaf certificates with a CA."""

    def __init__(self,
                 key_size: int = DEFAULT_KEY_SIZE,
                 clock_skew: timedelta = DEFAULT_CLOCK_SKEW,
                 clock: Optional[Callable[[], datetime]] = None):
        """
        Initialize the certificate service.

        Args:
            key_size: RSA modulus size for generated keys
            clock_skew: How far notBefore is backdated to tolerate skewed clocks
            clock: Returns the current UTC time (overridable in tests)
        """
        self.key_size = key_size
        self.clock_skew = clock_skew
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.logger = logging.getLogger(__name__)

    def generate(self, spec: CertificateSpec, signer: CASigner) -> IssuedCertificate:
        """
        Generate a new private key and a certificate for it signed by the CA.

        Args:
            spec: Desired subject, SANs and validity
            signer: CA certificate and key used to sign

        Returns:
            IssuedCertificate with PEM-encoded certificate and key

        Raises:
            GenerationError: If key generation or signing fails
        """
        try:
            private_key = rsa.generate_private_key(
                public_exponent=PUBLIC_EXPONENT,
                key_size=self.key_size,
            )
        except (ValueError, UnsupportedAlgorithm) as e:
            raise GenerationError(f"unable to generate private key: {e}") from e

        now = self.clock()
        builder = (
            x509.CertificateBuilder()
            .subject_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, spec.subject)]))
            .issuer_name(signer.certificate.subject)
            .public_key(private_key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now - self.clock_skew)
            .not_valid_after(now + timedelta(days=spec.days_valid))
            .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
            .add_extension(
                x509.KeyUsage(
                    digital_signature=True,
                    content_commitment=False,
                    key_encipherment=True,
                    data_encipherment=False,
                    key_agreement=False,
                    key_cert_sign=False,
                    crl_sign=False,
                    encipher_only=False,
                    decipher_only=False,
                ),
                critical=True,
            )
            .add_extension(
                x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH, ExtendedKeyUsageOID.CLIENT_AUTH]),
                critical=False,
            )
            .add_extension(x509.SubjectKeyIdentifier.from_public_key(private_key.public_key()), critical=False)
        )

        try:
            alt_names = [x509.DNSName(name) for name in spec.dns_names]
            alt_names += [x509.IPAddress(ip) for ip in spec.ip_addresses]
            if alt_names:
                builder = builder.add_extension(x509.SubjectAlternativeName(alt_names), critical=False)

            builder = builder.add_extension(
                x509.AuthorityKeyIdentifier.from_issuer_public_key(signer.certificate.public_key()),
                critical=False,
            )
            cert = builder.sign(signer.private_key, self._signature_hash(signer.private_key))
        except (ValueError, TypeError, UnsupportedAlgorithm) as e:
            raise GenerationError(
                f"unable to sign certificate for {spec.subject} with CA "
                f"{signer.certificate.subject.rfc4514_string()}: {e}"
            ) from e

        key_der = private_key.private_bytes(
            encoding=serialization.Encoding.DER,
            format=serialization.PrivateFormat.TraditionalOpenSSL,
            encryption_algorithm=serialization.NoEncryption(),
        )
        parsed = _parsed_from_x509(cert)

        self.logger.info(
            f"Issued certificate for {spec.subject} (serial {cert.serial_number:x}, "
            f"expires {parsed.not_after.isoformat()})"
        )
        return IssuedCertificate(
            certificate_pem=pem.encode(pem.KIND_CERTIFICATE, cert.public_bytes(serialization.Encoding.DER)),
            private_key_pem=pem.encode(pem.KIND_RSA_PRIVATE_KEY, key_der),
            subject=parsed.subject,
            dns_names=parsed.dns_names,
            ip_addresses=parsed.ip_addresses,
            not_before=parsed.not_before,
            not_after=parsed.not_after,
            serial_number=parsed.serial_number,
        )

    def _signature_hash(self, ca_key):
        """Ed25519 and Ed448 keys sign without a separate digest."""
        if isinstance(ca_key, (ed25519.Ed25519PrivateKey, ed448.Ed448PrivateKey)):
            return None
        return hashes.SHA256()
