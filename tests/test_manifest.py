"""Tests for the data model and manifest builder."""

from __future__ import annotations

import base64
import re
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from verumseal import ENGINE_VERSION
from verumseal.digest import digest
from verumseal.errors import StagingError
from verumseal.manifest import ManifestBuilder, format_utc_timestamp, new_manifest_id
from verumseal.models import (
    GEOLOCATION_UNAVAILABLE,
    EvidenceFile,
    EvidenceRecord,
    Geolocation,
    Manifest,
)
from verumseal.security import SecurityLimits

from conftest import FIXED_ID, FIXED_TIME

FP = "f" * 128


class TestEvidenceFile:
    """Test evidence staging."""

    def test_digest_computed_at_construction(self):
        evidence = EvidenceFile(name="a.txt", mime_type="text/plain", original_bytes=b"abc")
        assert evidence.digest_original == digest(b"abc")
        assert evidence.size == 3

    def test_empty_file_allowed(self):
        evidence = EvidenceFile(name="empty.bin", mime_type="application/octet-stream", original_bytes=b"")
        assert evidence.digest_original == digest(b"")

    def test_empty_name_rejected(self):
        with pytest.raises(StagingError):
            EvidenceFile(name="", mime_type="text/plain", original_bytes=b"abc")

    def test_from_path(self, tmp_path: Path):
        path = tmp_path / "photo.png"
        path.write_bytes(b"\x89PNG fake")
        evidence = EvidenceFile.from_path(path)
        assert evidence.name == "photo.png"
        assert evidence.mime_type == "image/png"
        assert evidence.original_bytes == b"\x89PNG fake"

    def test_from_path_unknown_type(self, tmp_path: Path):
        path = tmp_path / "blob.zzz-unknown"
        path.write_bytes(b"x")
        assert EvidenceFile.from_path(path).mime_type == "application/octet-stream"

    def test_from_path_missing(self, tmp_path: Path):
        with pytest.raises(StagingError):
            EvidenceFile.from_path(tmp_path / "missing.txt")

    def test_from_path_too_large(self, tmp_path: Path):
        path = tmp_path / "big.bin"
        path.write_bytes(b"x" * 100)
        with pytest.raises(StagingError, match="too large"):
            EvidenceFile.from_path(path, SecurityLimits(max_file_size=10))

    def test_from_base64(self):
        data = base64.b64encode(b"xyz").decode("ascii")
        evidence = EvidenceFile.from_base64("b.txt", "text/plain", data)
        assert evidence.original_bytes == b"xyz"

    def test_from_base64_invalid(self):
        with pytest.raises(StagingError, match="base64"):
            EvidenceFile.from_base64("b.txt", "text/plain", "!!not base64!!")


class TestGeolocation:
    """Test geolocation validation."""

    def test_valid(self):
        geo = Geolocation(51.5, -0.125)
        assert geo.to_dict() == {"latitude": 51.5, "longitude": -0.125}
        assert geo.display() == "51.5000, -0.1250"

    @pytest.mark.parametrize("lat,lon", [(91, 0), (-91, 0), (0, 181), (0, -181)])
    def test_out_of_range(self, lat, lon):
        with pytest.raises(ValueError):
            Geolocation(lat, lon)

    def test_non_finite(self):
        with pytest.raises(ValueError, match="finite"):
            Geolocation(float("nan"), 0.0)


class TestManifestModel:
    """Test the Manifest record."""

    def test_rejects_missing_geolocation(self):
        with pytest.raises(TypeError):
            Manifest("v", "id", "ts", "pem", FP, (), None)

    def test_rejects_unknown_sentinel(self):
        with pytest.raises(ValueError):
            Manifest("v", "id", "ts", "pem", FP, (), "unknown")

    def test_coerces_geolocation_mapping(self):
        manifest = Manifest("v", "id", "ts", "pem", FP, (), {"latitude": 51.5, "longitude": -0.12})
        assert manifest.geolocation == Geolocation(51.5, -0.12)
        assert manifest.geolocation_display() == "51.5000, -0.1200"

    @pytest.mark.parametrize("value", [(51.5, -0.12), [51.5, -0.12], 51.5])
    def test_rejects_other_geolocation_types(self, value):
        with pytest.raises(TypeError):
            Manifest("v", "id", "ts", "pem", FP, (), value)

    def test_rejects_geolocation_mapping_with_extra_keys(self):
        with pytest.raises(ValueError):
            Manifest("v", "id", "ts", "pem", FP, (), {"latitude": 1, "longitude": 2, "altitude": 3})

    def test_rejects_malformed_fingerprint(self):
        with pytest.raises(ValueError, match="device_id_fingerprint"):
            Manifest("v", "id", "ts", "pem", "F" * 128, (), GEOLOCATION_UNAVAILABLE)

    @pytest.mark.parametrize("value", ["abc", "A" * 128, "g" * 128])
    def test_rejects_malformed_evidence_digest(self, value):
        with pytest.raises(ValueError, match="sha512_original"):
            EvidenceRecord("a.txt", value)

    def test_rejects_non_string_fields(self):
        with pytest.raises(TypeError):
            Manifest("v", 1, "ts", "pem", FP, (), GEOLOCATION_UNAVAILABLE)

    def test_geolocation_display(self):
        manifest = Manifest("v", "id", "ts", "pem", FP, (), GEOLOCATION_UNAVAILABLE)
        assert manifest.geolocation_display() == "Not available"

    def test_dict_round_trip(self):
        manifest = Manifest(
            "v", "id", "ts", "pem", FP,
            (EvidenceRecord("a.txt", "a" * 128),),
            Geolocation(1.0, 2.0),
        )
        assert Manifest.from_dict(manifest.to_dict()) == manifest

    def test_immutable(self):
        manifest = Manifest("v", "id", "ts", "pem", FP, (), GEOLOCATION_UNAVAILABLE)
        with pytest.raises(AttributeError):
            manifest.manifest_id = "other"  # type: ignore[misc]


class TestTimestamps:
    """Test timestamp and id formatting."""

    def test_millisecond_utc(self):
        assert format_utc_timestamp(FIXED_TIME) == "2026-01-31T10:00:00.123Z"

    def test_converts_to_utc(self):
        local = FIXED_TIME.astimezone(timezone(timedelta(hours=2)))
        assert format_utc_timestamp(local) == "2026-01-31T10:00:00.123Z"

    def test_naive_is_utc(self):
        assert format_utc_timestamp(datetime(2026, 1, 1)) == "2026-01-01T00:00:00.000Z"

    def test_manifest_ids_unique(self):
        ids = {new_manifest_id() for _ in range(100)}
        assert len(ids) == 100
        assert all(re.fullmatch(r"urn:uuid:[0-9a-f-]{36}", i) for i in ids)


class TestManifestBuilder:
    """Test manifest assembly."""

    def test_build(self, key_pair, evidence_files):
        builder = ManifestBuilder(clock=lambda: FIXED_TIME, id_factory=lambda: FIXED_ID)
        manifest = builder.build(evidence_files, key_pair)

        assert manifest.version == ENGINE_VERSION
        assert manifest.manifest_id == FIXED_ID
        assert manifest.sealed_timestamp_utc == "2026-01-31T10:00:00.123Z"
        assert manifest.device_public_key == key_pair.public_key_pem
        assert manifest.device_id_fingerprint == key_pair.fingerprint
        assert manifest.geolocation == GEOLOCATION_UNAVAILABLE
        assert [e.file_name for e in manifest.evidence_files] == ["a.txt", "b.txt"]
        assert manifest.evidence_files[0].sha512_original == digest(b"abc")
        assert manifest.evidence_files[1].sha512_original == digest(b"xyz")

    def test_build_with_geolocation(self, key_pair):
        manifest = ManifestBuilder().build([], key_pair, Geolocation(10.0, 20.0))
        assert manifest.geolocation == Geolocation(10.0, 20.0)
        assert manifest.evidence_files == ()

    def test_accepts_records(self, key_pair):
        record = EvidenceRecord("a.txt", digest(b"abc"))
        manifest = ManifestBuilder().build([record], key_pair)
        assert manifest.evidence_files == (record,)

    def test_fresh_id_per_build(self, key_pair):
        builder = ManifestBuilder()
        assert builder.build([], key_pair).manifest_id != builder.build([], key_pair).manifest_id

    def test_custom_engine_version(self, key_pair):
        manifest = ManifestBuilder(engine_version="verum_test").build([], key_pair)
        assert manifest.version == "verum_test"
