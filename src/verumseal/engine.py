"""Sealing pipeline.

Stages run strictly in order: stage/digest evidence (in parallel with key
generation), build manifest, sign, render, stamp. A seal either completes
and returns a SealedReport or raises a SealError naming the failing stage;
nothing partial is ever returned.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from pathlib import Path

from verumseal.config import SealConfig
from verumseal.errors import CryptoError, SealError, StagingError
from verumseal.keys import KeyManager, KeyPair
from verumseal.manifest import ManifestBuilder
from verumseal.models import EvidenceFile, GeolocationValue, Manifest, SealedReport
from verumseal.qr import VerificationImageProvider, create_image_provider
from verumseal.render import CertifiedDocumentRenderer
from verumseal.security import SecurityError, check_file_count, check_narrative
from verumseal.signing import sign_manifest, verify_manifest
from verumseal.stamp import stamp

logger = logging.getLogger(__name__)


class SealingEngine:
    """Produces sealed reports for one session.

    The engine owns the session KeyManager; every seal made through the
    same engine is signed by the same device key.
    """

    def __init__(
        self,
        config: SealConfig | None = None,
        key_manager: KeyManager | None = None,
        image_provider: VerificationImageProvider | None = None,
        clock: Callable[[], datetime] | None = None,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        self.config = config or SealConfig()
        self.key_manager = key_manager or KeyManager()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.manifest_builder = ManifestBuilder(
            engine_version=self.config.engine_version,
            clock=self._clock,
            id_factory=id_factory,
        )
        if image_provider is None:
            image_provider = create_image_provider(
                self.config.qr_provider,
                endpoint=self.config.qr_endpoint,
                size=self.config.qr_size,
                timeout=self.config.qr_timeout,
            )
        self.renderer = CertifiedDocumentRenderer(
            image_provider=image_provider,
            strict_text=self.config.strict_text,
            timezone_label=self.config.timezone_label,
        )

    @property
    def public_key_pem(self) -> str:
        return self.key_manager.export_public_key_pem()

    def seal(
        self,
        narrative_text: str,
        evidence_files: Sequence[EvidenceFile],
        geolocation: GeolocationValue | None = None,
        generated_at: datetime | None = None,
    ) -> SealedReport:
        """Seal already-staged evidence with a narrative.

        Args:
            narrative_text: Opaque narrative to seal
            evidence_files: Staged files in manifest order
            geolocation: Location or None when unavailable
            generated_at: Footer timestamp (default: now)

        Raises:
            SealError: Subclass naming the stage that failed
        """
        evidence_files = list(evidence_files)
        self._check_inputs(narrative_text, len(evidence_files))
        key_pair = self._ensure_key_pair()
        return self._seal_staged(narrative_text, evidence_files, key_pair, geolocation, generated_at)

    def seal_paths(
        self,
        narrative_text: str,
        paths: Iterable[Path],
        geolocation: GeolocationValue | None = None,
        generated_at: datetime | None = None,
    ) -> SealedReport:
        """Stage files from disk and seal them.

        Files are read and digested in parallel with key generation; all of
        them complete before the manifest is built. Manifest order follows
        ``paths``.
        """
        paths = list(paths)
        self._check_inputs(narrative_text, len(paths))
        limits = self.config.limits

        with ThreadPoolExecutor(max_workers=self.config.digest_workers) as pool:
            key_future = pool.submit(self._ensure_key_pair)
            file_futures = [pool.submit(EvidenceFile.from_path, p, limits) for p in paths]
            # Collect every result so no worker is left running on failure
            errors: list[BaseException] = []
            evidence_files: list[EvidenceFile] = []
            for future in file_futures:
                exc = future.exception()
                if exc is not None:
                    errors.append(exc)
                else:
                    evidence_files.append(future.result())
            key_pair = key_future.result()

        if errors:
            raise errors[0]

        return self._seal_staged(narrative_text, evidence_files, key_pair, geolocation, generated_at)

    def discard_session(self) -> None:
        """End the session: drop the device key pair."""
        self.key_manager.discard()

    def _check_inputs(self, narrative_text: str, file_count: int) -> None:
        if not isinstance(narrative_text, str):
            raise StagingError("Narrative text must be a string")
        limits = self.config.limits
        try:
            check_narrative(narrative_text, limits)
            check_file_count(file_count, limits)
        except SecurityError as e:
            raise StagingError(str(e)) from e

    def _ensure_key_pair(self) -> KeyPair:
        try:
            return self.key_manager.ensure_key_pair()
        except CryptoError:
            raise
        except Exception as e:
            raise CryptoError(f"Key generation failed: {e}", stage="keygen") from e

    def _build_manifest(
        self,
        evidence_files: Sequence[EvidenceFile],
        key_pair: KeyPair,
        geolocation: GeolocationValue | None,
    ) -> Manifest:
        try:
            return self.manifest_builder.build(evidence_files, key_pair, geolocation)
        except (ValueError, TypeError) as e:
            raise SealError(f"Manifest construction failed: {e}", stage="manifest") from e

    def _seal_staged(
        self,
        narrative_text: str,
        evidence_files: Sequence[EvidenceFile],
        key_pair: KeyPair,
        geolocation: GeolocationValue | None,
        generated_at: datetime | None,
    ) -> SealedReport:
        manifest = self._build_manifest(evidence_files, key_pair, geolocation)

        signature = sign_manifest(manifest, key_pair)
        if not verify_manifest(manifest, signature, key_pair.public_key):
            raise CryptoError("Signature does not verify against the session key", stage="sign")

        result = self.renderer.render(
            narrative_text,
            evidence_files,
            manifest,
            signature,
            generated_at or self._clock(),
        )
        document_digest = stamp(result.document_bytes)

        logger.info(
            "Sealed %s: %d evidence file(s), %d page(s), document digest %s...",
            manifest.manifest_id,
            len(manifest.evidence_files),
            result.page_count,
            document_digest[:16],
        )

        return SealedReport(
            narrative_text=narrative_text,
            manifest=manifest,
            signature=signature,
            document_bytes=result.document_bytes,
            document_digest=document_digest,
            page_count=result.page_count,
            verification_image_embedded=result.verification_image_embedded,
        )
