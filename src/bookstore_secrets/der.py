"""Minimal DER traversal for RSA private keys.

Only the structure Google issues for service-account keys is understood:

    PrivateKeyInfo ::= SEQUENCE {            -- PKCS#8
        version              INTEGER,
        privateKeyAlgorithm  AlgorithmIdentifier,
        privateKey           OCTET STRING    -- wraps RSAPrivateKey
    }

    RSAPrivateKey ::= SEQUENCE {             -- PKCS#1
        version INTEGER,
        modulus, publicExponent, privateExponent,
        prime1, prime2, exponent1, exponent2, coefficient INTEGER
    }

This is not a general ASN.1 decoder: elements are read in the fixed order
above and anything that does not match raises ``KeyFormatError``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Final

from .exceptions import KeyFormatError

TAG_INTEGER: Final[int] = 0x02
TAG_OCTET_STRING: Final[int] = 0x04
TAG_SEQUENCE: Final[int] = 0x30

# Four length bytes already describe a 4 GiB element.
MAX_LENGTH_OCTETS: Final[int] = 4


@dataclass(frozen=True, slots=True)
class RSAKeyMaterial:
    """Raw big-endian RSA private key integers."""

    modulus: bytes = field(repr=False)
    public_exponent: bytes = field(repr=False)
    private_exponent: bytes = field(repr=False)
    prime1: bytes = field(repr=False)
    prime2: bytes = field(repr=False)
    exponent1: bytes = field(repr=False)
    exponent2: bytes = field(repr=False)
    coefficient: bytes = field(repr=False)


class DerReader:
    """Forward-only cursor over a DER byte string."""

    def __init__(self, data: bytes) -> None:
        self._data = bytes(data)
        self._position = 0

    @property
    def remaining(self) -> int:
        return len(self._data) - self._position

    def read_byte(self) -> int:
        if self._position >= len(self._data):
            raise KeyFormatError("Unexpected end of DER data")
        value = self._data[self._position]
        self._position += 1
        return value

    def read_bytes(self, count: int) -> bytes:
        if count > self.remaining:
            raise KeyFormatError(
                f"DER element declares {count} bytes but only {self.remaining} remain"
            )
        chunk = self._data[self._position : self._position + count]
        self._position += count
        return chunk

    def read_length(self) -> int:
        """Decode a short-form or long-form DER length."""

        first = self.read_byte()
        if not first & 0x80:
            return first

        octets = first & 0x7F
        if octets == 0:
            raise KeyFormatError("Indefinite DER lengths are not allowed")
        if octets > MAX_LENGTH_OCTETS:
            raise KeyFormatError(f"DER length uses {octets} bytes, at most {MAX_LENGTH_OCTETS} supported")

        length = 0
        for _ in range(octets):
            length = (length << 8) | self.read_byte()
        return length

    def read_header(self, expected_tag: int) -> int:
        """Consume a tag and length, returning the content length."""

        tag = self.read_byte()
        if tag != expected_tag:
            raise KeyFormatError(f"Expected DER tag 0x{expected_tag:02x}, found 0x{tag:02x}")
        length = self.read_length()
        if length > self.remaining:
            raise KeyFormatError(
                f"DER element declares {length} bytes but only {self.remaining} remain"
            )
        return length

    def read_element(self, expected_tag: int) -> bytes:
        return self.read_bytes(self.read_header(expected_tag))

    def skip_element(self, expected_tag: int) -> None:
        self.read_element(expected_tag)

    def read_integer(self) -> bytes:
        """Read an INTEGER, dropping leading zero bytes but keeping at least one."""

        value = self.read_element(TAG_INTEGER)
        if not value:
            raise KeyFormatError("DER INTEGER has no content")
        start = 0
        while start < len(value) - 1 and value[start] == 0:
            start += 1
        return value[start:]


def parse_pkcs1(data: bytes) -> RSAKeyMaterial:
    """Parse a PKCS#1 ``RSAPrivateKey`` structure."""

    reader = DerReader(data)
    reader.read_header(TAG_SEQUENCE)
    reader.skip_element(TAG_INTEGER)
    return RSAKeyMaterial(
        modulus=reader.read_integer(),
        public_exponent=reader.read_integer(),
        private_exponent=reader.read_integer(),
        prime1=reader.read_integer(),
        prime2=reader.read_integer(),
        exponent1=reader.read_integer(),
        exponent2=reader.read_integer(),
        coefficient=reader.read_integer(),
    )


def parse_pkcs8(data: bytes) -> RSAKeyMaterial:
    """Parse a PKCS#8 ``PrivateKeyInfo`` wrapping an RSA private key."""

    reader = DerReader(data)
    reader.read_header(TAG_SEQUENCE)
    reader.skip_element(TAG_INTEGER)
    reader.skip_element(TAG_SEQUENCE)
    return parse_pkcs1(reader.read_element(TAG_OCTET_STRING))
