"""Manifest builder."""

from __future__ import annotations

import uuid
from collections.abc import Callable, Iterable
from datetime import datetime, timezone

from verumseal import ENGINE_VERSION
from verumseal.digest import digest_text
from verumseal.keys import KeyPair, export_public_key_pem
from verumseal.models import (
    GEOLOCATION_UNAVAILABLE,
    EvidenceFile,
    EvidenceRecord,
    GeolocationValue,
    Manifest,
)


def format_utc_timestamp(ts: datetime) -> str:
    """Format a timestamp as ISO-8601 UTC with milliseconds.

    Format: 2026-01-31T10:00:00.000Z
    """
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    else:
        ts = ts.astimezone(timezone.utc)
    return ts.strftime("%Y-%m-%dT%H:%M:%S.") + f"{ts.microsecond // 1000:03d}Z"


def new_manifest_id() -> str:
    """Generate a globally unique manifest id (random UUID v4, URN form)."""
    return f"urn:uuid:{uuid.uuid4()}"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ManifestBuilder:
    """Assembles manifests binding evidence digests to a device key.

    Clock and id source are injectable so tests can pin them; production
    code uses the wall clock and random UUIDs.
    """

    def __init__(
        self,
        engine_version: str = ENGINE_VERSION,
        clock: Callable[[], datetime] | None = None,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        self.engine_version = engine_version
        self._clock = clock or _utc_now
        self._id_factory = id_factory or new_manifest_id

    def build(
        self,
        evidence_files: Iterable[EvidenceFile | EvidenceRecord],
        key_pair: KeyPair,
        geolocation: GeolocationValue | None = None,
    ) -> Manifest:
        """Build a manifest.

        Args:
            evidence_files: Staged files (or their precomputed records), in
                the order they should appear in the manifest
            key_pair: Session key pair whose public key is embedded
            geolocation: Location, or None/sentinel when unavailable

        Returns:
            Immutable Manifest with every field determined
        """
        records = tuple(
            item if isinstance(item, EvidenceRecord) else EvidenceRecord.from_evidence(item)
            for item in evidence_files
        )

        public_key_pem = export_public_key_pem(key_pair)

        return Manifest(
            version=self.engine_version,
            manifest_id=self._id_factory(),
            sealed_timestamp_utc=format_utc_timestamp(self._clock()),
            device_public_key=public_key_pem,
            device_id_fingerprint=digest_text(public_key_pem),
            evidence_files=records,
            geolocation=GEOLOCATION_UNAVAILABLE if geolocation is None else geolocation,
        )
