"""Tests for the DER/PKCS#8 RSA key parser."""

from __future__ import annotations

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from bookstore_secrets.der import (
    TAG_INTEGER,
    TAG_OCTET_STRING,
    TAG_SEQUENCE,
    DerReader,
    RSAKeyMaterial,
    parse_pkcs1,
    parse_pkcs8,
)
from bookstore_secrets.exceptions import KeyFormatError

RSA_ENCRYPTION_OID = bytes.fromhex("2a864886f70d010101")

# modulus, publicExponent, privateExponent, prime1, prime2, exponent1, exponent2, coefficient
SYNTHETIC_INTEGERS = (
    0xC3A5_17F0_9B2E_44D1_8A6C_0F3B_7E59_D2A1,  # high bit set: DER adds a sign byte
    65537,
    0x1F2E_3D4C_5B6A_7988,
    0xF00D,
    0x0BEEF,
    0x80,
    0x7F,
    1,
)


def der_length(length: int) -> bytes:
    if length < 0x80:
        return bytes([length])
    body = length.to_bytes((length.bit_length() + 7) // 8, "big")
    return bytes([0x80 | len(body)]) + body


def tlv(tag: int, content: bytes) -> bytes:
    return bytes([tag]) + der_length(len(content)) + content


def der_integer(value: int) -> bytes:
    return tlv(TAG_INTEGER, value.to_bytes(max(1, (value.bit_length() + 8) // 8), "big"))


def minimal_bytes(value: int) -> bytes:
    return value.to_bytes(max(1, (value.bit_length() + 7) // 8), "big")


def build_pkcs1(values: tuple[int, ...]) -> bytes:
    return tlv(TAG_SEQUENCE, der_integer(0) + b"".join(der_integer(v) for v in values))


def build_pkcs8(pkcs1: bytes) -> bytes:
    algorithm = tlv(TAG_SEQUENCE, tlv(0x06, RSA_ENCRYPTION_OID) + b"\x05\x00")
    return tlv(TAG_SEQUENCE, der_integer(0) + algorithm + tlv(TAG_OCTET_STRING, pkcs1))


def material_as_ints(material: RSAKeyMaterial) -> tuple[int, ...]:
    return tuple(
        int.from_bytes(value, "big")
        for value in (
            material.modulus,
            material.public_exponent,
            material.private_exponent,
            material.prime1,
            material.prime2,
            material.exponent1,
            material.exponent2,
            material.coefficient,
        )
    )


class TestDerReader:
    """Low-level cursor behaviour."""

    def test_short_form_length(self):
        assert DerReader(b"\x7f").read_length() == 0x7F

    def test_long_form_length(self):
        assert DerReader(b"\x82\x01\x00").read_length() == 256

    def test_indefinite_length_rejected(self):
        with pytest.raises(KeyFormatError):
            DerReader(b"\x80").read_length()

    def test_oversized_length_prefix_rejected(self):
        with pytest.raises(KeyFormatError):
            DerReader(b"\x85\x01\x00\x00\x00\x00").read_length()

    def test_integer_strips_leading_zeros(self):
        assert DerReader(b"\x02\x03\x00\x00\x80").read_integer() == b"\x80"

    def test_zero_integer_keeps_one_byte(self):
        assert DerReader(b"\x02\x01\x00").read_integer() == b"\x00"

    def test_integer_tag_is_checked(self):
        with pytest.raises(KeyFormatError, match="0x02"):
            DerReader(b"\x04\x01\x05").read_integer()

    def test_declared_length_beyond_data(self):
        with pytest.raises(KeyFormatError):
            DerReader(b"\x02\x05\x01\x02").read_integer()


class TestParsePkcs8:
    """Parsing full PKCS#8 and PKCS#1 structures."""

    def test_synthetic_fixture_round_trips_exactly(self):
        material = parse_pkcs8(build_pkcs8(build_pkcs1(SYNTHETIC_INTEGERS)))

        assert material_as_ints(material) == SYNTHETIC_INTEGERS
        assert material.modulus == minimal_bytes(SYNTHETIC_INTEGERS[0])
        assert material.exponent1 == b"\x80"
        assert material.coefficient == b"\x01"

    def test_generated_key_matches_private_numbers(self, rsa_private_key: rsa.RSAPrivateKey):
        der = rsa_private_key.private_bytes(
            encoding=serialization.Encoding.DER,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
        numbers = rsa_private_key.private_numbers()

        material = parse_pkcs8(der)

        assert material_as_ints(material) == (
            numbers.public_numbers.n,
            numbers.public_numbers.e,
            numbers.d,
            numbers.p,
            numbers.q,
            numbers.dmp1,
            numbers.dmq1,
            numbers.iqmp,
        )
        assert material.modulus == minimal_bytes(numbers.public_numbers.n)
        assert len(material.modulus) == 256

    def test_pkcs1_parser_reads_traditional_keys(self, rsa_private_key: rsa.RSAPrivateKey):
        der = rsa_private_key.private_bytes(
            encoding=serialization.Encoding.DER,
            format=serialization.PrivateFormat.TraditionalOpenSSL,
            encryption_algorithm=serialization.NoEncryption(),
        )

        material = parse_pkcs1(der)

        assert int.from_bytes(material.modulus, "big") == rsa_private_key.private_numbers().public_numbers.n

    def test_material_repr_hides_key_bytes(self):
        material = parse_pkcs8(build_pkcs8(build_pkcs1(SYNTHETIC_INTEGERS)))

        assert "c3a5" not in repr(material).lower()


class TestMalformedInput:
    """Malformed DER never yields partial key material."""

    @pytest.mark.parametrize("keep", [0, 1, 2, 10, 40, -1])
    def test_truncated_input(self, keep: int):
        der = build_pkcs8(build_pkcs1(SYNTHETIC_INTEGERS))

        with pytest.raises(KeyFormatError):
            parse_pkcs8(der[:keep])

    def test_wrong_outer_tag(self):
        der = bytearray(build_pkcs8(build_pkcs1(SYNTHETIC_INTEGERS)))
        der[0] = TAG_OCTET_STRING

        with pytest.raises(KeyFormatError):
            parse_pkcs8(bytes(der))

    def test_non_integer_key_component(self):
        elements = der_integer(0) + b"".join(der_integer(v) for v in SYNTHETIC_INTEGERS[:3])
        elements += tlv(TAG_OCTET_STRING, b"\x01\x02")
        elements += b"".join(der_integer(v) for v in SYNTHETIC_INTEGERS[4:])
        der = build_pkcs8(tlv(TAG_SEQUENCE, elements))

        with pytest.raises(KeyFormatError, match="Expected DER tag 0x02"):
            parse_pkcs8(der)

    def test_missing_key_components(self):
        der = build_pkcs8(build_pkcs1(SYNTHETIC_INTEGERS[:5]))

        with pytest.raises(KeyFormatError):
            parse_pkcs8(der)

    def test_pkcs1_bytes_are_not_pkcs8(self):
        # A bare RSAPrivateKey has INTEGERs where PKCS#8 expects an AlgorithmIdentifier
        with pytest.raises(KeyFormatError):
            parse_pkcs8(build_pkcs1(SYNTHETIC_INTEGERS))
