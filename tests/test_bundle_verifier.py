"""Tests for sealed bundles and offline verification."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from verumseal.bundle import (
    BUNDLE_FILES,
    DIGEST_FILENAME,
    MANIFEST_FILENAME,
    PUBLIC_KEY_FILENAME,
    REPORT_FILENAME,
    SIGNATURE_FILENAME,
    load_bundle,
    parse_digest_file,
    write_bundle,
)
from verumseal.canonical import canonical_manifest_bytes
from verumseal.keys import generate_key_pair
from verumseal.verifier import SealVerifier, document_references


@pytest.fixture
def report(engine, evidence_files):
    return engine.seal("Bundle narrative.", evidence_files)


@pytest.fixture
def bundle_dir(report, tmp_path: Path) -> Path:
    out = tmp_path / "bundle"
    write_bundle(report, out)
    return out


@pytest.fixture
def evidence_dir(tmp_path: Path) -> Path:
    directory = tmp_path / "evidence"
    directory.mkdir()
    (directory / "a.txt").write_bytes(b"abc")
    (directory / "b.txt").write_bytes(b"xyz")
    return directory


class TestBundle:
    """Test bundle writing and loading."""

    def test_writes_all_files(self, bundle_dir):
        assert sorted(p.name for p in bundle_dir.iterdir()) == sorted(BUNDLE_FILES)

    def test_manifest_file_is_signed_bytes(self, report, bundle_dir):
        assert (bundle_dir / MANIFEST_FILENAME).read_bytes() == canonical_manifest_bytes(report.manifest)

    def test_digest_file_format(self, report, bundle_dir):
        content = (bundle_dir / DIGEST_FILENAME).read_text()
        assert content == f"{report.document_digest}  {REPORT_FILENAME}\n"

    def test_no_private_key_written(self, bundle_dir):
        for path in bundle_dir.iterdir():
            assert b"PRIVATE KEY" not in path.read_bytes()

    def test_load_bundle(self, report, bundle_dir):
        bundle = load_bundle(bundle_dir)
        assert bundle.signature == report.signature
        assert bundle.public_key_pem == report.manifest.device_public_key
        assert bundle.document_bytes == report.document_bytes
        assert bundle.declared_digest == report.document_digest

    def test_load_bundle_missing_file(self, bundle_dir):
        (bundle_dir / SIGNATURE_FILENAME).unlink()
        with pytest.raises(FileNotFoundError):
            load_bundle(bundle_dir)

    def test_load_bundle_invalid_json(self, bundle_dir):
        (bundle_dir / MANIFEST_FILENAME).write_text("{not json")
        with pytest.raises(ValueError):
            load_bundle(bundle_dir)

    def test_parse_digest_file(self):
        assert parse_digest_file("ABCDEF  report.pdf\n") == "abcdef"
        with pytest.raises(ValueError):
            parse_digest_file("  \n")


class TestSealVerifier:
    """Test offline verification."""

    def test_valid_bundle(self, bundle_dir):
        result = SealVerifier().verify(bundle_dir)
        assert result.valid, result.errors
        assert result.signature_valid
        assert result.fingerprint_valid
        assert result.document_digest_valid
        assert result.document_references_valid
        assert result.canonical_form_valid

    def test_valid_with_evidence(self, bundle_dir, evidence_dir):
        result = SealVerifier().verify(bundle_dir, evidence_dir)
        assert result.valid, result.errors
        assert result.files_checked == 2
        assert result.files_valid == 2

    def test_tampered_evidence(self, bundle_dir, evidence_dir):
        (evidence_dir / "b.txt").write_bytes(b"xyZ")
        result = SealVerifier().verify(bundle_dir, evidence_dir)
        assert not result.valid
        assert [item["file_name"] for item in result.files_tampered] == ["b.txt"]

    def test_missing_evidence(self, bundle_dir, evidence_dir):
        (evidence_dir / "a.txt").unlink()
        result = SealVerifier().verify(bundle_dir, evidence_dir)
        assert not result.valid
        assert result.files_missing == ["a.txt"]

    def test_tampered_document(self, bundle_dir):
        path = bundle_dir / REPORT_FILENAME
        data = bytearray(path.read_bytes())
        data[-10] ^= 0x01
        path.write_bytes(bytes(data))
        result = SealVerifier().verify(bundle_dir)
        assert not result.valid
        assert result.document_digest_valid is False
        assert result.signature_valid is True

    def test_tampered_manifest(self, bundle_dir):
        path = bundle_dir / MANIFEST_FILENAME
        path.write_bytes(path.read_bytes().replace(b"a.txt", b"c.txt"))
        result = SealVerifier().verify(bundle_dir)
        assert not result.valid
        assert result.signature_valid is False

    def test_non_canonical_manifest(self, bundle_dir):
        path = bundle_dir / MANIFEST_FILENAME
        path.write_text(json.dumps(json.loads(path.read_bytes()), indent=2))
        result = SealVerifier().verify(bundle_dir)
        assert result.canonical_form_valid is False
        assert not result.valid

    def test_substituted_key(self, bundle_dir):
        (bundle_dir / PUBLIC_KEY_FILENAME).write_text(generate_key_pair().public_key_pem)
        result = SealVerifier().verify(bundle_dir)
        assert not result.valid
        assert result.signature_valid is False
        assert result.key_matches_manifest is False

    def test_malformed_key(self, bundle_dir):
        (bundle_dir / PUBLIC_KEY_FILENAME).write_text("garbage")
        result = SealVerifier().verify(bundle_dir)
        assert not result.valid
        assert any("Signature verification error" in e for e in result.errors)

    def test_expected_fingerprint(self, report, bundle_dir):
        assert SealVerifier(report.manifest.device_id_fingerprint).verify(bundle_dir).valid
        result = SealVerifier("0" * 128).verify(bundle_dir)
        assert not result.valid
        assert result.fingerprint_valid is False

    def test_missing_bundle_file(self, bundle_dir):
        (bundle_dir / DIGEST_FILENAME).unlink()
        result = SealVerifier().verify(bundle_dir)
        assert not result.valid
        assert "Bundle file not found" in result.errors[0]

    def test_malformed_manifest(self, bundle_dir):
        (bundle_dir / MANIFEST_FILENAME).write_text('{"version": "x"}')
        result = SealVerifier().verify(bundle_dir)
        assert not result.valid
        assert result.manifest_valid is False

    def test_verify_report_in_memory(self, report):
        assert SealVerifier().verify_report(report).valid

    def test_verify_and_report(self, bundle_dir, tmp_path: Path):
        result, paths = SealVerifier().verify_and_report(bundle_dir, tmp_path / "reports")
        assert result.valid
        data = json.loads(paths["json"].read_text())
        assert data["valid"] is True
        assert "# Seal Verification Report" in paths["markdown"].read_text()

    def test_document_references(self, report):
        assert document_references(report.document_bytes, report.manifest, report.signature) == []
        assert document_references(b"%PDF-empty", report.manifest, report.signature)
