"""Tests for multihash digests."""

import base64
import hashlib

import pytest

from artifact_ingest.core.digest import (
    DEFAULT_ALGORITHM,
    SHA2_256,
    SHA2_512,
    Digest,
    HashAlgorithm,
    decode,
    encode,
    hash_bytes,
    hash_file,
    parse_repr_digest,
    register_algorithm,
)
from artifact_ingest.errors import MalformedDigestError, UnsupportedAlgorithmError

EMPTY_SHA256 = "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"


def test_encode_uses_multihash_layout():
    """Encoded digests are code, length, then the raw digest in hex"""
    digest = hash_bytes(b"")
    assert encode(digest) == "1220" + EMPTY_SHA256
    assert digest.encode() == encode(digest)
    assert digest.hex() == EMPTY_SHA256


def test_decode_round_trip():
    digest = hash_bytes(b"hello world")
    assert decode(digest.encode()) == digest


def test_default_algorithm_is_sha2_256():
    assert DEFAULT_ALGORITHM is SHA2_256
    assert hash_bytes(b"x").code == 0x12


def test_sha2_512_is_supported():
    digest = hash_bytes(b"hello", SHA2_512)
    assert digest.encode().startswith("1340")
    assert decode(digest.encode()) == digest
    assert digest.algorithm.name == "sha2-512"


def test_digests_from_different_algorithms_never_equal():
    assert hash_bytes(b"data", SHA2_256) != hash_bytes(b"data", SHA2_512)


def test_decode_unsupported_code_fails_closed():
    """An unknown code is an error, never a fallback to the default"""
    with pytest.raises(UnsupportedAlgorithmError) as excinfo:
        decode("1102abcd")
    assert excinfo.value.code == 0x11
    assert "0x11" in str(excinfo.value)


@pytest.mark.parametrize(
    "text",
    [
        "",
        "zz",
        "1220abcd",
        "12",
        "1202abcd",
    ],
)
def test_decode_rejects_malformed_text(text):
    with pytest.raises(MalformedDigestError):
        decode(text)


def test_debug_form_names_the_algorithm():
    digest = hash_bytes(b"")
    assert digest.debug() == f"sha2-256:{EMPTY_SHA256}"
    assert str(digest) == digest.debug()


def test_debug_form_for_unknown_code_uses_hex_code():
    assert Digest(code=0x99, digest=b"\x01").debug() == "0x99:01"


def test_repr_digest_header_value():
    digest = hash_bytes(b"hello")
    token = base64.b64encode(hashlib.sha256(b"hello").digest()).decode("ascii")
    assert digest.repr_digest() == f"sha-256=:{token}:"


def test_parse_repr_digest_with_several_algorithms():
    sha256 = hash_bytes(b"hello")
    sha512 = hash_bytes(b"hello", SHA2_512)
    header = f"{sha512.repr_digest()}, {sha256.repr_digest()}, broken=nope"
    values = parse_repr_digest(header)
    assert values["sha-256"] == sha256.digest
    assert values["sha-512"] == sha512.digest
    assert "broken" not in values


def test_hash_file_matches_hash_bytes(tmp_path):
    path = tmp_path / "data.bin"
    data = b"0123456789" * 20000
    path.write_bytes(data)
    assert hash_file(path) == hash_bytes(data)


def test_register_algorithm_rejects_code_conflict():
    with pytest.raises(ValueError):
        register_algorithm(
            HashAlgorithm(
                name="not-sha2-256",
                code=0x12,
                repr_name="x",
                factory=hashlib.sha256,
                size=32,
            )
        )
