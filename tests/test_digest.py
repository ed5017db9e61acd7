"""Tests for the digest service and integrity stamping."""

from __future__ import annotations

from pathlib import Path

from verumseal.digest import DIGEST_HEX_LENGTH, digest, digest_file, digest_text, is_digest
from verumseal.stamp import stamp, verify_stamp

ABC_SHA512 = (
    "ddaf35a193617abacc417349ae20413112e6fa4e89a97ea20a9eeee64b55d39a"
    "2192992a274fc1a836ba3c23a3feebbd454d4423643ce80e2a9ac94fa54ca49f"
)
EMPTY_SHA512 = (
    "cf83e1357eefb8bdf1542850d66d8007d620e4050b5715dc83f4a921d36ce9ce"
    "47d0d13c5d85f2b0ff8318d2877eec2f63b931bd47417a81a538327af927da3e"
)


class TestDigest:
    """Test SHA-512 digests."""

    def test_known_vector(self):
        assert digest(b"abc") == ABC_SHA512

    def test_empty_input(self):
        assert digest(b"") == EMPTY_SHA512

    def test_lowercase_fixed_length(self):
        value = digest(b"\x00\xff" * 1000)
        assert len(value) == DIGEST_HEX_LENGTH
        assert value == value.lower()

    def test_accepts_buffer_types(self):
        assert digest(bytearray(b"abc")) == ABC_SHA512
        assert digest(memoryview(b"abc")) == ABC_SHA512

    def test_digest_text_is_utf8(self):
        assert digest_text("abc") == ABC_SHA512
        assert digest_text("café") == digest("café".encode("utf-8"))

    def test_digest_file_matches_bytes(self, tmp_path: Path):
        data = bytes(range(256)) * 100
        path = tmp_path / "evidence.bin"
        path.write_bytes(data)
        assert digest_file(path) == digest(data)

    def test_is_digest(self):
        assert is_digest(ABC_SHA512)
        assert not is_digest(ABC_SHA512.upper())
        assert not is_digest(ABC_SHA512[:-1])
        assert not is_digest("z" * DIGEST_HEX_LENGTH)
        assert not is_digest("0x" + ABC_SHA512[2:])
        assert not is_digest(" " + ABC_SHA512[1:])


class TestStamp:
    """Test document stamping."""

    def test_stamp_is_digest_of_bytes(self):
        assert stamp(b"abc") == ABC_SHA512

    def test_verify_stamp(self):
        assert verify_stamp(b"abc", ABC_SHA512)
        assert verify_stamp(b"abc", ABC_SHA512.upper() + "\n")

    def test_single_byte_change_detected(self):
        document = b"%PDF-1.3 some document"
        expected = stamp(document)
        altered = document[:-1] + b"X"
        assert not verify_stamp(altered, expected)

    def test_non_ascii_digest_rejected(self):
        assert not verify_stamp(b"abc", "é" * DIGEST_HEX_LENGTH)
