"""
PEM encoding and decoding of raw DER blocks.
"""
import base64
import binascii
import re
from dataclasses import dataclass

from ..models.errors import DecodeError

KIND_CERTIFICATE = "CERTIFICATE"
KIND_RSA_PRIVATE_KEY = "RSA PRIVATE KEY"
KIND_PRIVATE_KEY = "PRIVATE KEY"

_LINE_LENGTH = 64
_PEM_BLOCK = re.compile(
    rb"-----BEGIN (?P<kind>[A-Z0-9 ]+)-----\r?\n"
    rb"(?P<body>.*?)"
    rb"-----END (?P=kind)-----",
    re.DOTALL,
)


@dataclass
class PemBlock:
    """A single decoded PEM block."""
    kind: str
    der: bytes


def decode_block(data: bytes) -> PemBlock:
    """
    Decode the first PEM block found in data.

    Text before the block and any following blocks are ignored.

    Raises:
        DecodeError: If data contains no valid PEM block
    """
    if isinstance(data, str):
        data = data.encode("ascii", errors="replace")

    match = _PEM_BLOCK.search(data or b"")
    if match is None:
        raise DecodeError("no PEM block found in input")

    body = match.group("body")
    if b":" in body:
        # Encrypted keys carry RFC 1421 headers we do not handle.
        raise DecodeError("PEM block with headers is not supported")

    try:
        der = base64.b64decode(b"".join(body.split()), validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecodeError(f"invalid base64 in PEM block: {e}") from e

    if not der:
        raise DecodeError("PEM block is empty")

    return PemBlock(kind=match.group("kind").decode("ascii"), der=der)


def decode(data: bytes) -> bytes:
    """Return the DER bytes of the first PEM block in data."""
    return decode_block(data).der


def encode(kind: str, der: bytes) -> bytes:
    """PEM-encode DER bytes under the given block label."""
    body = base64.b64encode(der)
    lines = [body[i:i + _LINE_LENGTH] for i in range(0, len(body), _LINE_LENGTH)]
    return (
        f"-----BEGIN {kind}-----\n".encode("ascii")
        + b"".join(line + b"\n" for line in lines)
        + f"-----END {kind}-----\n".encode("ascii")
    )
