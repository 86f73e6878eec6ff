"""
Tests for PEM encoding and decoding.
"""
import unittest

from cryptography.hazmat.primitives import serialization

from tlssync.models.errors import DecodeError
from tlssync.security import pem
from certificate_fixtures import create_test_ca, cert_to_pem, key_to_pem


class TestPemCodec(unittest.TestCase):
    """Test cases for the PEM codec."""

    @classmethod
    def setUpClass(cls):
        cls.ca_cert, cls.ca_key = create_test_ca()

    def test_decode_certificate_matches_der(self):
        """Test decoding a PEM certificate yields its DER encoding."""
        der = self.ca_cert.public_bytes(serialization.Encoding.DER)

        self.assertEqual(pem.decode(cert_to_pem(self.ca_cert)), der)

    def test_decode_block_reports_kind(self):
        """Test the block label is returned with the payload."""
        block = pem.decode_block(key_to_pem(self.ca_key))

        self.assertEqual(block.kind, pem.KIND_RSA_PRIVATE_KEY)

        pkcs8 = key_to_pem(self.ca_key, serialization.PrivateFormat.PKCS8)
        self.assertEqual(pem.decode_block(pkcs8).kind, pem.KIND_PRIVATE_KEY)

    def test_encode_then_decode_is_byte_identical(self):
        """Test PEM round trip of certificate and key DER."""
        cert_der = self.ca_cert.public_bytes(serialization.Encoding.DER)
        key_der = self.ca_key.private_bytes(
            serialization.Encoding.DER,
            serialization.PrivateFormat.TraditionalOpenSSL,
            serialization.NoEncryption()
        )

        self.assertEqual(pem.decode(pem.encode(pem.KIND_CERTIFICATE, cert_der)), cert_der)
        self.assertEqual(pem.decode(pem.encode(pem.KIND_RSA_PRIVATE_KEY, key_der)), key_der)

    def test_encode_wraps_lines_and_labels(self):
        """Test encoded output uses 64 column lines and the given label."""
        encoded = pem.encode(pem.KIND_CERTIFICATE, bytes(range(256)))
        lines = encoded.decode("ascii").splitlines()

        self.assertEqual(lines[0], "-----BEGIN CERTIFICATE-----")
        self.assertEqual(lines[-1], "-----END CERTIFICATE-----")
        self.assertTrue(all(len(line) <= 64 for line in lines[1:-1]))
        self.assertTrue(encoded.endswith(b"\n"))

    def test_encode_is_deterministic(self):
        """Test encoding the same input twice gives the same bytes."""
        der = self.ca_cert.public_bytes(serialization.Encoding.DER)

        self.assertEqual(pem.encode(pem.KIND_CERTIFICATE, der), pem.encode(pem.KIND_CERTIFICATE, der))

    def test_decode_ignores_surrounding_text(self):
        """Test leading text and trailing blocks are ignored."""
        data = b"subject=Test CA\n" + cert_to_pem(self.ca_cert) + key_to_pem(self.ca_key)

        self.assertEqual(pem.decode_block(data).kind, pem.KIND_CERTIFICATE)

    def test_decode_invalid_input(self):
        """Test inputs without a usable PEM block are rejected."""
        invalid_inputs = [
            b"",
            b"not a pem file",
            b"-----BEGIN CERTIFICATE-----\n!!!!\n-----END CERTIFICATE-----\n",
            b"-----BEGIN CERTIFICATE-----\n-----END CERTIFICATE-----\n",
            b"-----BEGIN CERTIFICATE-----\nAAAA\n-----END PRIVATE KEY-----\n",
        ]

        for data in invalid_inputs:
            with self.subTest(data=data):
                with self.assertRaises(DecodeError):
                    pem.decode(data)


if __name__ == '__main__':
    unittest.main()
