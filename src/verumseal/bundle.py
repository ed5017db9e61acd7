"""Sealed bundle I/O.

A bundle is the distributable artifact set of one seal:

- ``Verum-Omnis-Sealed-Report.pdf``: the certified document
- ``seal.manifest.json``: canonical manifest serialization (the signed bytes)
- ``seal.sig``: base64 signature
- ``seal.pem``: declared device public key
- ``seal.digest``: out-of-band document stamp, ``sha512sum`` format

No private key material is ever written.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from verumseal.canonical import canonical_manifest_bytes
from verumseal.models import SealedReport

REPORT_FILENAME = "Verum-Omnis-Sealed-Report.pdf"
MANIFEST_FILENAME = "seal.manifest.json"
SIGNATURE_FILENAME = "seal.sig"
PUBLIC_KEY_FILENAME = "seal.pem"
DIGEST_FILENAME = "seal.digest"

BUNDLE_FILES = (
    REPORT_FILENAME,
    MANIFEST_FILENAME,
    SIGNATURE_FILENAME,
    PUBLIC_KEY_FILENAME,
    DIGEST_FILENAME,
)


@dataclass(frozen=True)
class LoadedBundle:
    """Raw bundle content as read from disk."""

    manifest_bytes: bytes
    manifest_data: dict[str, Any]
    signature: str
    public_key_pem: str
    document_bytes: bytes
    declared_digest: str


def write_bundle(report: SealedReport, out_dir: Path) -> dict[str, Path]:
    """Write a sealed report as a bundle directory.

    Returns:
        Mapping of bundle file name to written path
    """
    out_dir.mkdir(parents=True, exist_ok=True)
    paths = {name: out_dir / name for name in BUNDLE_FILES}

    paths[REPORT_FILENAME].write_bytes(report.document_bytes)
    paths[MANIFEST_FILENAME].write_bytes(canonical_manifest_bytes(report.manifest))
    paths[SIGNATURE_FILENAME].write_text(report.signature + "\n", encoding="ascii")
    paths[PUBLIC_KEY_FILENAME].write_text(report.manifest.device_public_key + "\n", encoding="ascii")
    paths[DIGEST_FILENAME].write_text(
        f"{report.document_digest}  {REPORT_FILENAME}\n", encoding="ascii"
    )

    return paths


def parse_digest_file(content: str) -> str:
    """Read the digest from a ``sha512sum``-style line."""
    line = content.strip().splitlines()[0] if content.strip() else ""
    token = line.split()[0] if line.split() else ""
    if not token:
        raise ValueError("Digest file is empty")
    return token.lower()


def load_bundle(bundle_dir: Path) -> LoadedBundle:
    """Read a bundle directory.

    Raises:
        FileNotFoundError: If a bundle file is missing
        ValueError: If the manifest is not valid JSON or the digest file is empty
    """
    manifest_bytes = (bundle_dir / MANIFEST_FILENAME).read_bytes()
    try:
        manifest_data = json.loads(manifest_bytes.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ValueError(f"Invalid manifest JSON: {e}") from e
    if not isinstance(manifest_data, dict):
        raise ValueError("Manifest must be a JSON object")

    return LoadedBundle(
        manifest_bytes=manifest_bytes,
        manifest_data=manifest_data,
        signature=(bundle_dir / SIGNATURE_FILENAME).read_text(encoding="ascii").strip(),
        public_key_pem=(bundle_dir / PUBLIC_KEY_FILENAME).read_text(encoding="ascii").strip(),
        document_bytes=(bundle_dir / REPORT_FILENAME).read_bytes(),
        declared_digest=parse_digest_file(
            (bundle_dir / DIGEST_FILENAME).read_text(encoding="ascii")
        ),
    )
