"""Digest service: one-shot SHA-512 hashing of byte buffers."""

from __future__ import annotations

import hashlib
from pathlib import Path

DIGEST_ALGORITHM = "sha512"

# Hex length of a SHA-512 digest
DIGEST_HEX_LENGTH = 128
_HEX_DIGITS = frozenset("0123456789abcdef")


def digest(data: bytes | bytearray | memoryview) -> str:
    """Compute the lower-case hex SHA-512 digest of ``data``."""
    return hashlib.sha512(bytes(data)).hexdigest()


def digest_text(text: str) -> str:
    """Compute the digest of the UTF-8 encoding of ``text``."""
    return digest(text.encode("utf-8"))


def digest_file(path: Path) -> str:
    """Compute the digest of a file's content.

    Reads in chunks so large evidence files are not held in memory twice.
    I/O errors propagate to the caller.
    """
    hasher = hashlib.sha512()
    with open(path, "rb") as f:
        while chunk := f.read(8192):
            hasher.update(chunk)
    return hasher.hexdigest()


def is_digest(value: str) -> bool:
    """Check that ``value`` is a lower-case hex SHA-512 digest."""
    return len(value) == DIGEST_HEX_LENGTH and set(value) <= _HEX_DIGITS
