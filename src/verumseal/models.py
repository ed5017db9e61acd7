"""Data model for sealed evidence.

Every record here is immutable. A manifest that needs to change is rebuilt
and re-signed, never edited in place.
"""

from __future__ import annotations

import base64
import binascii
import math
import mimetypes
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Union

from verumseal.digest import digest, is_digest
from verumseal.errors import StagingError
from verumseal.security import SecurityError, SecurityLimits, safe_read_file

# Explicit sentinel written to the manifest when no location was supplied
GEOLOCATION_UNAVAILABLE = "not available"

DEFAULT_MIME_TYPE = "application/octet-stream"


@dataclass(frozen=True)
class EvidenceFile:
    """A staged evidence file.

    The digest is computed once from ``original_bytes`` at construction.
    """

    name: str
    mime_type: str
    original_bytes: bytes = field(repr=False)
    digest_original: str = field(init=False)

    def __post_init__(self) -> None:
        if not self.name:
            raise StagingError("Evidence file name must not be empty")
        object.__setattr__(self, "original_bytes", bytes(self.original_bytes))
        object.__setattr__(self, "digest_original", digest(self.original_bytes))

    @property
    def size(self) -> int:
        return len(self.original_bytes)

    @classmethod
    def from_path(
        cls,
        path: Path,
        limits: SecurityLimits | None = None,
        name: str | None = None,
    ) -> EvidenceFile:
        """Stage a file from disk.

        Raises:
            StagingError: If the file is unreadable or exceeds the limits
        """
        try:
            data = safe_read_file(path, limits)
        except SecurityError as e:
            raise StagingError(str(e)) from e
        except OSError as e:
            raise StagingError(f"Cannot read evidence file {path}: {e}") from e

        mime_type, _ = mimetypes.guess_type(str(path))
        return cls(
            name=name or path.name,
            mime_type=mime_type or DEFAULT_MIME_TYPE,
            original_bytes=data,
        )

    @classmethod
    def from_base64(
        cls,
        name: str,
        mime_type: str,
        data: str,
        limits: SecurityLimits | None = None,
    ) -> EvidenceFile:
        """Stage a file delivered as base64 text by an upstream client."""
        limits = limits or SecurityLimits()
        try:
            raw = base64.b64decode(data, validate=True)
        except (binascii.Error, ValueError) as e:
            raise StagingError(f"Invalid base64 content for evidence file {name!r}") from e

        if len(raw) > limits.max_file_size:
            raise StagingError(
                f"File too large: {name} ({len(raw)} bytes > {limits.max_file_size})"
            )

        return cls(name=name, mime_type=mime_type or DEFAULT_MIME_TYPE, original_bytes=raw)


@dataclass(frozen=True)
class EvidenceRecord:
    """Per-file entry of a manifest."""

    file_name: str
    sha512_original: str

    def __post_init__(self) -> None:
        if not isinstance(self.file_name, str) or not isinstance(self.sha512_original, str):
            raise TypeError("Evidence record fields must be strings")
        if not is_digest(self.sha512_original):
            raise ValueError(f"sha512_original of {self.file_name!r} is not a hex SHA-512 digest")

    def to_dict(self) -> dict[str, Any]:
        return {
            "file_name": self.file_name,
            "sha512_original": self.sha512_original,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EvidenceRecord:
        return cls(file_name=data["file_name"], sha512_original=data["sha512_original"])

    @classmethod
    def from_evidence(cls, evidence: EvidenceFile) -> EvidenceRecord:
        return cls(file_name=evidence.name, sha512_original=evidence.digest_original)


@dataclass(frozen=True)
class Geolocation:
    """Latitude/longitude pair in decimal degrees."""

    latitude: float
    longitude: float

    def __post_init__(self) -> None:
        lat = float(self.latitude)
        lon = float(self.longitude)
        if not (math.isfinite(lat) and math.isfinite(lon)):
            raise ValueError("Geolocation coordinates must be finite")
        if not -90.0 <= lat <= 90.0:
            raise ValueError(f"latitude must be within [-90, 90], got {lat}")
        if not -180.0 <= lon <= 180.0:
            raise ValueError(f"longitude must be within [-180, 180], got {lon}")
        object.__setattr__(self, "latitude", lat)
        object.__setattr__(self, "longitude", lon)

    def to_dict(self) -> dict[str, float]:
        return {"latitude": self.latitude, "longitude": self.longitude}

    def display(self) -> str:
        return f"{self.latitude:.4f}, {self.longitude:.4f}"


GeolocationValue = Union[Geolocation, str]


def geolocation_from_dict(value: Any) -> GeolocationValue:
    """Parse the manifest ``geolocation`` field."""
    if value == GEOLOCATION_UNAVAILABLE:
        return GEOLOCATION_UNAVAILABLE
    if isinstance(value, dict):
        if set(value) != {"latitude", "longitude"}:
            raise ValueError(f"geolocation must have exactly latitude and longitude, got {sorted(value)}")
        return Geolocation(latitude=value["latitude"], longitude=value["longitude"])
    raise ValueError(f"Invalid geolocation value: {value!r}")


@dataclass(frozen=True)
class Manifest:
    """Canonical record of what was sealed, by which device, and when."""

    version: str
    manifest_id: str
    sealed_timestamp_utc: str
    device_public_key: str
    device_id_fingerprint: str
    evidence_files: tuple[EvidenceRecord, ...]
    geolocation: GeolocationValue

    def __post_init__(self) -> None:
        for name in ("version", "manifest_id", "sealed_timestamp_utc",
                     "device_public_key", "device_id_fingerprint"):
            if not isinstance(getattr(self, name), str):
                raise TypeError(f"Manifest field {name} must be a string")
        if not is_digest(self.device_id_fingerprint):
            raise ValueError("device_id_fingerprint is not a hex SHA-512 digest")
        object.__setattr__(self, "evidence_files", tuple(self.evidence_files))

        geolocation = self.geolocation
        if isinstance(geolocation, dict):
            geolocation = geolocation_from_dict(geolocation)
        elif isinstance(geolocation, str) and geolocation != GEOLOCATION_UNAVAILABLE:
            raise ValueError(f"Invalid geolocation sentinel: {geolocation!r}")
        elif not isinstance(geolocation, (Geolocation, str)):
            raise TypeError(
                "geolocation must be a Geolocation, a latitude/longitude mapping, "
                f"or {GEOLOCATION_UNAVAILABLE!r}, got {type(geolocation).__name__}"
            )
        object.__setattr__(self, "geolocation", geolocation)

    def geolocation_display(self) -> str:
        if isinstance(self.geolocation, Geolocation):
            return self.geolocation.display()
        return "Not available"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary, keys in canonical order."""
        geolocation: Any = self.geolocation
        if isinstance(geolocation, Geolocation):
            geolocation = geolocation.to_dict()
        return {
            "version": self.version,
            "manifest_id": self.manifest_id,
            "sealed_timestamp_utc": self.sealed_timestamp_utc,
            "device_public_key": self.device_public_key,
            "device_id_fingerprint": self.device_id_fingerprint,
            "evidence_files": [e.to_dict() for e in self.evidence_files],
            "geolocation": geolocation,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Manifest:
        """Create from dictionary.

        Raises:
            KeyError: If a required field is missing
            ValueError: If the geolocation field is malformed
        """
        return cls(
            version=data["version"],
            manifest_id=data["manifest_id"],
            sealed_timestamp_utc=data["sealed_timestamp_utc"],
            device_public_key=data["device_public_key"],
            device_id_fingerprint=data["device_id_fingerprint"],
            evidence_files=tuple(EvidenceRecord.from_dict(e) for e in data["evidence_files"]),
            geolocation=geolocation_from_dict(data["geolocation"]),
        )


@dataclass(frozen=True)
class SealedReport:
    """Terminal artifact of a seal.

    ``document_digest`` is the out-of-band stamp over ``document_bytes``; it
    is never embedded in the document.
    """

    narrative_text: str
    manifest: Manifest
    signature: str
    document_bytes: bytes = field(repr=False)
    document_digest: str
    page_count: int = 0
    verification_image_embedded: bool = False

    def summary(self) -> dict[str, Any]:
        """Metadata view without the document bytes."""
        return {
            "manifest": self.manifest.to_dict(),
            "signature": self.signature,
            "document_digest": self.document_digest,
            "document_size": len(self.document_bytes),
            "page_count": self.page_count,
            "verification_image_embedded": self.verification_image_embedded,
        }
