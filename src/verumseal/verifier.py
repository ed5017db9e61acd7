"""Offline verification of sealed reports and bundles."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from verumseal.bundle import load_bundle
from verumseal.canonical import canonical_manifest_bytes
from verumseal.digest import digest_file, digest_text
from verumseal.errors import VerificationError
from verumseal.models import Manifest, SealedReport
from verumseal.security import SecurityError, check_path_safety
from verumseal.signing import verify_manifest
from verumseal.stamp import verify_stamp


@dataclass
class VerificationResult:
    """Result of seal verification."""

    valid: bool
    manifest_valid: bool
    manifest_id: str | None = None
    canonical_form_valid: bool | None = None
    signature_valid: bool | None = None
    fingerprint_valid: bool | None = None
    key_matches_manifest: bool | None = None
    document_digest_valid: bool | None = None
    document_references_valid: bool | None = None
    files_checked: int = 0
    files_valid: int = 0
    files_tampered: list[dict[str, Any]] = field(default_factory=list)
    files_missing: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "valid": self.valid,
            "manifest_valid": self.manifest_valid,
            "manifest_id": self.manifest_id,
            "canonical_form_valid": self.canonical_form_valid,
            "signature_valid": self.signature_valid,
            "fingerprint_valid": self.fingerprint_valid,
            "key_matches_manifest": self.key_matches_manifest,
            "document_digest_valid": self.document_digest_valid,
            "document_references_valid": self.document_references_valid,
            "files_checked": self.files_checked,
            "files_valid": self.files_valid,
            "files_tampered": self.files_tampered,
            "files_missing": self.files_missing,
            "errors": self.errors,
            "timestamp": self.timestamp,
        }

    def write_json(self, path: Path) -> None:
        """Write to JSON file."""
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, indent=2, sort_keys=True)

    def write_markdown(self, path: Path) -> None:
        """Write to Markdown file."""
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            f.write(self._generate_markdown())

    def _generate_markdown(self) -> str:
        """Generate markdown report."""

        def mark(value: bool | None) -> str:
            if value is None:
                return "- Not checked"
            return "✅ Yes" if value else "❌ No"

        lines = [
            "# Seal Verification Report",
            "",
            f"**Status:** {'✅ VALID' if self.valid else '❌ INVALID'}",
            f"**Manifest:** {self.manifest_id or 'unknown'}",
            f"**Timestamp:** {self.timestamp}",
            "",
            "## Summary",
            "",
            f"- **Manifest Valid:** {mark(self.manifest_valid)}",
            f"- **Canonical Form:** {mark(self.canonical_form_valid)}",
            f"- **Signature Valid:** {mark(self.signature_valid)}",
            f"- **Device Fingerprint:** {mark(self.fingerprint_valid)}",
            f"- **Declared Key Matches Manifest:** {mark(self.key_matches_manifest)}",
            f"- **Document Digest:** {mark(self.document_digest_valid)}",
            f"- **Document References Manifest:** {mark(self.document_references_valid)}",
            f"- **Evidence Files Checked:** {self.files_checked}",
            f"- **Evidence Files Valid:** {self.files_valid}",
            "",
        ]

        if self.files_tampered:
            lines.extend(["## Tampered Evidence", ""])
            for item in self.files_tampered:
                lines.append(f"- **{item['file_name']}**")
                lines.append(f"  - Expected: `{item['expected_hash']}`")
                lines.append(f"  - Actual: `{item['actual_hash']}`")
            lines.append("")

        if self.files_missing:
            lines.extend(["## Missing Evidence", ""])
            for name in self.files_missing:
                lines.append(f"- `{name}`")
            lines.append("")

        if self.errors:
            lines.extend(["## Errors", ""])
            for error in self.errors:
                lines.append(f"- {error}")
            lines.append("")

        return "\n".join(lines)


def document_references(document_bytes: bytes, manifest: Manifest, signature: str) -> list[str]:
    """List manifest values that are missing from the rendered document."""
    expected = [
        manifest.manifest_id,
        manifest.device_id_fingerprint,
        signature,
        *(record.sha512_original for record in manifest.evidence_files),
    ]
    return [value for value in expected if value.encode("ascii", errors="replace") not in document_bytes]


class SealVerifier:
    """Verifier for sealed reports and bundles.

    Needs only the document, the manifest, the signature and the declared
    public key. ``expected_fingerprint`` pins the device identity when the
    verifier already knows which device should have sealed.
    """

    def __init__(self, expected_fingerprint: str | None = None) -> None:
        self.expected_fingerprint = expected_fingerprint

    def verify_report(self, report: SealedReport, public_key_pem: str | None = None) -> VerificationResult:
        """Verify an in-memory sealed report."""
        result = VerificationResult(
            valid=False, manifest_valid=True, manifest_id=report.manifest.manifest_id,
        )
        result.canonical_form_valid = True
        self._check_seal(
            result,
            report.manifest,
            report.signature,
            public_key_pem or report.manifest.device_public_key,
            report.document_bytes,
            report.document_digest,
        )
        return self._finish(result)

    def verify(self, bundle_dir: Path, evidence_dir: Path | None = None) -> VerificationResult:
        """Verify a bundle directory.

        Args:
            bundle_dir: Directory written by ``write_bundle``
            evidence_dir: Optional directory holding the original evidence
                files by name; each is re-hashed against the manifest

        Returns:
            VerificationResult
        """
        result = VerificationResult(valid=False, manifest_valid=False)

        try:
            bundle = load_bundle(bundle_dir)
        except FileNotFoundError as e:
            result.errors.append(f"Bundle file not found: {e.filename}")
            return result
        except ValueError as e:
            result.errors.append(str(e))
            return result

        try:
            manifest = Manifest.from_dict(bundle.manifest_data)
        except (KeyError, ValueError, TypeError) as e:
            result.errors.append(f"Malformed manifest: {e}")
            return result
        result.manifest_valid = True
        result.manifest_id = manifest.manifest_id

        # The stored bytes must be exactly the canonical form that was signed
        result.canonical_form_valid = canonical_manifest_bytes(manifest) == bundle.manifest_bytes
        if not result.canonical_form_valid:
            result.errors.append("Manifest file is not in canonical form")

        self._check_seal(
            result,
            manifest,
            bundle.signature,
            bundle.public_key_pem,
            bundle.document_bytes,
            bundle.declared_digest,
        )

        if evidence_dir is not None:
            self._check_evidence(result, manifest, evidence_dir)

        return self._finish(result)

    def verify_and_report(
        self,
        bundle_dir: Path,
        output_dir: Path,
        evidence_dir: Path | None = None,
    ) -> tuple[VerificationResult, dict[str, Path]]:
        """Verify and write reports.

        Returns:
            Tuple of (result, report_paths)
        """
        result = self.verify(bundle_dir, evidence_dir)

        output_dir.mkdir(parents=True, exist_ok=True)
        paths = {}

        json_path = output_dir / "verification_report.json"
        result.write_json(json_path)
        paths["json"] = json_path

        md_path = output_dir / "verification_report.md"
        result.write_markdown(md_path)
        paths["markdown"] = md_path

        return result, paths

    def _check_seal(
        self,
        result: VerificationResult,
        manifest: Manifest,
        signature: str,
        public_key_pem: str,
        document_bytes: bytes,
        declared_digest: str,
    ) -> None:
        try:
            result.signature_valid = verify_manifest(manifest, signature, public_key_pem)
        except VerificationError as e:
            result.signature_valid = False
            result.errors.append(f"Signature verification error: {e}")
        else:
            if not result.signature_valid:
                result.errors.append("Signature verification failed")

        result.key_matches_manifest = public_key_pem.strip() == manifest.device_public_key.strip()
        if not result.key_matches_manifest:
            result.errors.append("Declared public key differs from the manifest's device key")

        fingerprint = digest_text(manifest.device_public_key)
        result.fingerprint_valid = fingerprint == manifest.device_id_fingerprint
        if self.expected_fingerprint is not None:
            result.fingerprint_valid = result.fingerprint_valid and fingerprint == self.expected_fingerprint.lower()
        if not result.fingerprint_valid:
            result.errors.append("Device fingerprint mismatch")

        result.document_digest_valid = verify_stamp(document_bytes, declared_digest)
        if not result.document_digest_valid:
            result.errors.append("Document digest mismatch - document may have been altered")

        missing = document_references(document_bytes, manifest, signature)
        result.document_references_valid = not missing
        if missing:
            result.errors.append(f"Document does not carry {len(missing)} manifest value(s)")

    def _check_evidence(self, result: VerificationResult, manifest: Manifest, evidence_dir: Path) -> None:
        for record in manifest.evidence_files:
            result.files_checked += 1
            try:
                path = check_path_safety(evidence_dir / record.file_name, evidence_dir)
            except SecurityError as e:
                result.errors.append(str(e))
                continue

            if not path.is_file():
                result.files_missing.append(record.file_name)
                continue

            try:
                actual_hash = digest_file(path)
            except OSError as e:
                result.errors.append(f"Error checking {record.file_name}: {e}")
                continue

            if actual_hash == record.sha512_original:
                result.files_valid += 1
            else:
                result.files_tampered.append({
                    "file_name": record.file_name,
                    "expected_hash": record.sha512_original,
                    "actual_hash": actual_hash,
                })

    def _finish(self, result: VerificationResult) -> VerificationResult:
        result.valid = (
            result.manifest_valid
            and result.canonical_form_valid is not False
            and bool(result.signature_valid)
            and bool(result.fingerprint_valid)
            and bool(result.key_matches_manifest)
            and bool(result.document_digest_valid)
            and bool(result.document_references_valid)
            and result.files_valid == result.files_checked
            and not result.files_missing
            and not result.files_tampered
        )
        return result
