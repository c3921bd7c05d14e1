"""
Self-describing content digests (multihash).

A digest pairs a numeric algorithm code with the raw hash bytes. The textual
form used in submissions is the hex encoding of the multihash byte layout:

    varint(code) ++ varint(len(digest)) ++ digest

Definitions for multihash codes live in the multicodec table:
https://github.com/multiformats/multicodec/blob/master/table.csv

Algorithms are looked up in a small registry keyed by code. Unknown codes
fail closed with ``UnsupportedAlgorithmError``; nothing silently falls back
to the default algorithm.
"""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass
import hashlib
from pathlib import Path
from typing import Any, Callable

from ..errors import MalformedDigestError, UnsupportedAlgorithmError

_HASH_CHUNK_SIZE = 1024 * 64


@dataclass(frozen=True)
class HashAlgorithm:
    """A registered hash algorithm.

    Attributes:
        name: Multicodec name, e.g. "sha2-256"
        code: Multicodec numeric code
        repr_name: Algorithm token used in the ``Repr-Digest`` header
        factory: Callable returning a fresh hashlib-style hasher
        size: Digest length in bytes
    """

    name: str
    code: int
    repr_name: str
    factory: Callable[[], Any]
    size: int

    def hasher(self) -> Any:
        return self.factory()


_REGISTRY: dict[int, HashAlgorithm] = {}


def register_algorithm(algorithm: HashAlgorithm) -> HashAlgorithm:
    """Register an algorithm under its multihash code."""
    existing = _REGISTRY.get(algorithm.code)
    if existing is not None and existing.name != algorithm.name:
        raise ValueError(
            f"Multihash code 0x{algorithm.code:x} is already registered as {existing.name}"
        )
    _REGISTRY[algorithm.code] = algorithm
    return algorithm


def algorithm_by_code(code: int) -> HashAlgorithm:
    algorithm = _REGISTRY.get(code)
    if algorithm is None:
        raise UnsupportedAlgorithmError(code)
    return algorithm


def algorithm_name(code: int) -> str:
    return algorithm_by_code(code).name


SHA2_256 = register_algorithm(
    HashAlgorithm(name="sha2-256", code=0x12, repr_name="sha-256", factory=hashlib.sha256, size=32)
)
SHA2_512 = register_algorithm(
    HashAlgorithm(name="sha2-512", code=0x13, repr_name="sha-512", factory=hashlib.sha512, size=64)
)

# Used whenever the pipeline computes a digest itself rather than verifying one.
DEFAULT_ALGORITHM = SHA2_256


@dataclass(frozen=True)
class Digest:
    """An immutable content identifier.

    Equality is structural over ``(code, digest)``, so two digests produced
    by different algorithms never compare equal.

    Attributes:
        code: Multihash algorithm code
        digest: Raw hash bytes
    """

    code: int
    digest: bytes

    @property
    def algorithm(self) -> HashAlgorithm:
        return algorithm_by_code(self.code)

    @property
    def bytes(self) -> bytes:
        """Full multihash byte layout (code, length, digest)."""
        return _encode_varint(self.code) + _encode_varint(len(self.digest)) + self.digest

    def hex(self) -> str:
        """Lowercase hex of the raw digest bytes, without the multihash prefix."""
        return self.digest.hex()

    def encode(self) -> str:
        return encode(self)

    def repr_digest(self) -> str:
        """Value for the ``Repr-Digest`` HTTP header (RFC 9530)."""
        token = base64.b64encode(self.digest).decode("ascii")
        return f"{self.algorithm.repr_name}=:{token}:"

    def debug(self) -> str:
        """Human-readable ``algorithm:hex`` form used in error messages."""
        try:
            name = algorithm_name(self.code)
        except UnsupportedAlgorithmError:
            name = f"0x{self.code:x}"
        return f"{name}:{self.hex()}"

    def __str__(self) -> str:
        return self.debug()


def encode(digest: Digest) -> str:
    """Encode a digest to its hex multihash string."""
    return digest.bytes.hex()


def decode(text: str) -> Digest:
    """Decode a hex multihash string.

    Raises:
        MalformedDigestError: The text is not hex, is truncated, or its
            declared length does not match the payload.
        UnsupportedAlgorithmError: The code is not registered.
    """
    if not isinstance(text, str) or not text:
        raise MalformedDigestError("Digest must be a non-empty hex string")
    try:
        raw = bytes.fromhex(text)
    except ValueError as exc:
        raise MalformedDigestError(f"Digest is not valid hex: {text!r}") from exc

    code, offset = _decode_varint(raw, 0)
    length, offset = _decode_varint(raw, offset)
    payload = raw[offset:]
    if len(payload) != length:
        raise MalformedDigestError(
            f"Digest declares {length} bytes but carries {len(payload)}: {text!r}"
        )

    algorithm = algorithm_by_code(code)
    if length != algorithm.size:
        raise MalformedDigestError(
            f"A {algorithm.name} digest must be {algorithm.size} bytes, got {length}: {text!r}"
        )
    return Digest(code=code, digest=payload)


def create(algorithm: HashAlgorithm, digest: bytes) -> Digest:
    return Digest(code=algorithm.code, digest=bytes(digest))


def hash_bytes(data: bytes, algorithm: HashAlgorithm = DEFAULT_ALGORITHM) -> Digest:
    hasher = algorithm.hasher()
    hasher.update(data)
    return create(algorithm, hasher.digest())


def hash_file(path: Path, algorithm: HashAlgorithm = DEFAULT_ALGORITHM) -> Digest:
    """Hash a file on disk in fixed-size chunks."""
    hasher = algorithm.hasher()
    with open(path, "rb") as handle:
        for chunk in iter(lambda: handle.read(_HASH_CHUNK_SIZE), b""):
            hasher.update(chunk)
    return create(algorithm, hasher.digest())


def parse_repr_digest(header: str) -> dict[str, bytes]:
    """Parse a ``Repr-Digest`` header into ``{algorithm token: raw bytes}``.

    Entries that are not well-formed byte sequences are skipped.
    """
    values: dict[str, bytes] = {}
    for item in header.split(","):
        token, sep, value = item.strip().partition("=")
        value = value.strip()
        if not sep or len(value) < 2 or value[0] != ":" or value[-1] != ":":
            continue
        try:
            values[token.strip().lower()] = base64.b64decode(value[1:-1], validate=True)
        except binascii.Error:
            continue
    return values


def _encode_varint(value: int) -> bytes:
    if value < 0:
        raise ValueError("varint must be non-negative")
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def _decode_varint(data: bytes, offset: int) -> tuple[int, int]:
    result = 0
    shift = 0
    # Multihash caps varints at 9 bytes.
    for index in range(offset, min(len(data), offset + 9)):
        byte = data[index]
        result |= (byte & 0x7F) << shift
        if not byte & 0x80:
            return result, index + 1
        shift += 7
    raise MalformedDigestError("Digest has a truncated or oversized varint prefix")
