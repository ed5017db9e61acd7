"""Certified document renderer.

Lays out the narrative and a certification page into a fixed-geometry PDF.
Rendering is a pure function of its inputs: the generation timestamp is a
parameter and the PDF creation date is pinned to it, so identical inputs give
byte-identical documents.
"""

from __future__ import annotations

import io
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timezone

from fpdf import FPDF  # type: ignore[import-untyped]
from fpdf.enums import Align, MethodReturnValue, WrapMode  # type: ignore[import-untyped]
from fpdf.errors import FPDFException  # type: ignore[import-untyped]
from PIL import Image, UnidentifiedImageError

from verumseal import __version__
from verumseal.errors import RenderError, VerificationImageUnavailable
from verumseal.models import EvidenceFile, Manifest
from verumseal.qr import NullImageProvider, VerificationImageProvider, verification_payload

logger = logging.getLogger(__name__)

# Core PDF fonts only cover Latin-1; common typographic characters are mapped
# to their closest Latin-1 form before layout.
_TYPOGRAPHIC_REPLACEMENTS = {
    "\u2018": "'", "\u2019": "'", "\u201a": ",", "\u201b": "'",
    "\u201c": '"', "\u201d": '"', "\u201e": '"',
    "\u2013": "-", "\u2014": "-", "\u2015": "-", "\u2212": "-",
    "\u2026": "...", "\u2022": "*", "\u202f": " ", "\u2009": " ", "\u200b": "",
    "\u2122": "(TM)", "\u20ac": "EUR", "\t": "    ",
}

VERIFY_NOTE = (
    "The SHA-512 hash of this PDF can be computed and verified externally "
    "against the records provided during online review."
)
IMAGE_PLACEHOLDER = "Verification code unavailable"


@dataclass(frozen=True)
class PageGeometry:
    """Fixed page geometry and typography (millimetres and points)."""

    page_format: str = "A4"
    page_width: float = 210.0
    page_height: float = 297.0
    margin: float = 20.0
    title: str = "Verum Omnis: Forensic Analysis"
    certification_title: str = "Certification of Analysis"
    title_size: int = 18
    body_size: int = 11
    body_pitch: float = 7.0
    heading_size: int = 12
    mono_size: int = 8
    mono_pitch: float = 4.0
    # Small enough for a 128-character hex digest to fit on one line
    digest_size: int = 6
    digest_pitch: float = 3.5
    footer_size: int = 9
    image_size: float = 40.0
    producer_name: str = "Verum Omnis"

    @property
    def content_width(self) -> float:
        return self.page_width - 2 * self.margin

    @property
    def bottom_limit(self) -> float:
        return self.page_height - self.margin


@dataclass(frozen=True)
class RenderResult:
    """Rendered document and layout facts."""

    document_bytes: bytes
    page_count: int
    verification_image_embedded: bool


class _CertifiedPDF(FPDF):
    """FPDF with the certified-document footer on every page."""

    def __init__(self, geometry: PageGeometry, footer_text: str) -> None:
        super().__init__(orientation="P", unit="mm", format=geometry.page_format)
        self.geometry = geometry
        self.footer_text = footer_text

    def footer(self) -> None:
        g = self.geometry
        self.set_font("Helvetica", size=g.footer_size)
        self.set_text_color(150)
        # Page number centred, provenance line below it at the left margin
        self.set_xy(g.margin, g.page_height - 16)
        self.cell(g.content_width, 5, f"Page {self.page_no()} of {{nb}}", align=Align.C)
        self.set_xy(g.margin, g.page_height - 11)
        self.cell(g.content_width, 5, self.footer_text)
        self.set_text_color(0)


class CertifiedDocumentRenderer:
    """Renders narrative + certification page into a paginated PDF."""

    def __init__(
        self,
        image_provider: VerificationImageProvider | None = None,
        geometry: PageGeometry | None = None,
        strict_text: bool = True,
        timezone_label: str | None = None,
    ) -> None:
        self.image_provider = image_provider or NullImageProvider()
        self.geometry = geometry or PageGeometry()
        self.strict_text = strict_text
        self.timezone_label = timezone_label

    def render(
        self,
        narrative_text: str,
        evidence_files: Sequence[EvidenceFile],
        manifest: Manifest,
        signature: str,
        generated_at: datetime,
    ) -> RenderResult:
        """Render the certified document.

        Args:
            narrative_text: Opaque narrative to seal
            evidence_files: Staged files, same order as the manifest entries
            manifest: Signed manifest
            signature: Base64 signature over the manifest
            generated_at: Timestamp printed in every footer

        Raises:
            RenderError: If the layout cannot be completed
        """
        self._check_evidence(evidence_files, manifest)
        image = self._load_verification_image(manifest)

        try:
            pdf = self._new_document(manifest, generated_at)
            self._render_narrative(pdf, narrative_text)
            self._render_certification(pdf, evidence_files, manifest, signature, image)
            document_bytes = bytes(pdf.output())
        except FPDFException as e:
            raise RenderError(f"Layout failed: {e}") from e

        return RenderResult(
            document_bytes=document_bytes,
            page_count=pdf.page_no(),
            verification_image_embedded=image is not None,
        )

    def _check_evidence(self, evidence_files: Sequence[EvidenceFile], manifest: Manifest) -> None:
        if len(evidence_files) != len(manifest.evidence_files):
            raise RenderError(
                f"Evidence count mismatch: {len(evidence_files)} files, "
                f"{len(manifest.evidence_files)} manifest entries"
            )
        for staged, record in zip(evidence_files, manifest.evidence_files):
            if staged.digest_original != record.sha512_original:
                raise RenderError(f"Evidence file {staged.name!r} does not match its manifest entry")

    def _load_verification_image(self, manifest: Manifest) -> bytes | None:
        payload = verification_payload(manifest)
        try:
            data = self.image_provider.fetch(payload)
            with Image.open(io.BytesIO(data)) as img:
                img.verify()
        except VerificationImageUnavailable as e:
            logger.warning("Verification image unavailable, using placeholder: %s", e)
            return None
        except (UnidentifiedImageError, OSError, SyntaxError) as e:
            logger.warning("Verification image unreadable, using placeholder: %s", e)
            return None
        return data

    def _clean(self, text: str) -> str:
        for src, dst in _TYPOGRAPHIC_REPLACEMENTS.items():
            text = text.replace(src, dst)
        text = text.replace("\r\n", "\n").replace("\r", "\n")
        try:
            text.encode("latin-1")
        except UnicodeEncodeError as e:
            if self.strict_text:
                raise RenderError(f"Text contains characters the document fonts cannot encode: {e}") from e
            logger.warning("Substituting characters outside Latin-1 in rendered text")
            text = text.encode("latin-1", errors="replace").decode("latin-1")
        return text

    def _new_document(self, manifest: Manifest, generated_at: datetime) -> _CertifiedPDF:
        g = self.geometry
        if generated_at.tzinfo is None:
            generated_at = generated_at.replace(tzinfo=timezone.utc)
        zone = self.timezone_label or generated_at.tzname() or "UTC"
        footer = f"Generated by {g.producer_name} on {generated_at.strftime('%Y-%m-%d %H:%M:%S')} ({zone})"

        pdf = _CertifiedPDF(g, self._clean(footer))
        pdf.set_auto_page_break(False)
        # Uncompressed content streams keep digests and ids searchable in the bytes
        pdf.set_compression(False)
        pdf.set_margins(g.margin, g.margin, g.margin)
        pdf.creation_date = generated_at
        pdf.set_title(g.title)
        pdf.set_subject(manifest.manifest_id)
        pdf.set_creator(f"verumseal {__version__}")
        pdf.set_producer(f"verumseal {__version__}")
        pdf.add_page()
        return pdf

    def _split(self, pdf: FPDF, text: str, width: float, wrap: WrapMode = WrapMode.WORD) -> list[str]:
        return pdf.multi_cell(
            width, 1, text, dry_run=True, output=MethodReturnValue.LINES, wrapmode=wrap,
        )

    def _write_lines(
        self, pdf: FPDF, lines: Sequence[str], x: float, y: float, pitch: float,
    ) -> float:
        """Write lines at a fixed pitch, continuing on new pages as needed."""
        for line in lines:
            if y > self.geometry.bottom_limit:
                pdf.add_page()
                y = self.geometry.margin
            if line:
                pdf.text(x, y, line)
            y += pitch
        return y

    def _render_narrative(self, pdf: FPDF, narrative_text: str) -> None:
        g = self.geometry
        y = g.margin
        pdf.set_font("Helvetica", "B", g.title_size)
        pdf.set_xy(g.margin, y - 6)
        pdf.cell(g.content_width, 8, g.title, align=Align.C)
        y += 20

        pdf.set_font("Helvetica", size=g.body_size)
        lines = self._split(pdf, self._clean(narrative_text), g.content_width)
        self._write_lines(pdf, lines, g.margin, y, g.body_pitch)

    def _heading(self, pdf: FPDF, text: str, y: float) -> float:
        g = self.geometry
        if y > g.bottom_limit - 10:
            pdf.add_page()
            y = g.margin
        pdf.set_font("Helvetica", "B", g.heading_size)
        pdf.text(g.margin, y, text)
        pdf.set_font("Courier", size=g.mono_size)
        return y + 5

    def _mono_block(self, pdf: FPDF, text: str, y: float, width: float | None = None, indent: float = 0) -> float:
        g = self.geometry
        width = width or g.content_width - indent
        lines = self._split(pdf, self._clean(text), width, WrapMode.CHAR)
        return self._write_lines(pdf, lines, g.margin + indent, y, g.mono_pitch)

    def _digest_line(self, pdf: FPDF, hex_digest: str, y: float, indent: float = 0) -> float:
        """Write a hex digest unbroken on a single line."""
        g = self.geometry
        pdf.set_font("Courier", size=g.digest_size)
        y = self._write_lines(pdf, [hex_digest], g.margin + indent, y, g.digest_pitch)
        pdf.set_font("Courier", size=g.mono_size)
        return y

    def _render_certification(
        self,
        pdf: FPDF,
        evidence_files: Sequence[EvidenceFile],
        manifest: Manifest,
        signature: str,
        image: bytes | None,
    ) -> None:
        g = self.geometry
        pdf.add_page()
        y = g.margin
        pdf.set_font("Helvetica", "B", g.title_size)
        pdf.set_xy(g.margin, y - 6)
        pdf.cell(g.content_width, 8, g.certification_title, align=Align.C)
        y += 15

        image_x = g.page_width - g.margin - g.image_size
        image_bottom = y + g.image_size
        if image is not None:
            pdf.image(io.BytesIO(image), x=image_x, y=y, w=g.image_size, h=g.image_size)
        else:
            pdf.set_draw_color(150)
            pdf.rect(image_x, y, g.image_size, g.image_size)
            pdf.set_font("Helvetica", "I", g.mono_size)
            pdf.set_text_color(150)
            pdf.set_xy(image_x, y + g.image_size / 2 - 6)
            pdf.multi_cell(g.image_size, 4, IMAGE_PLACEHOLDER, align=Align.C)
            pdf.set_text_color(0)
            pdf.set_draw_color(0)

        # Manifest fields sit beside the verification image
        y = self._heading(pdf, "Document Manifest", y + 5) + 1
        side_width = g.content_width - g.image_size - 5
        for line in (
            f"Manifest ID: {manifest.manifest_id}",
            f"Sealed Timestamp (UTC): {manifest.sealed_timestamp_utc}",
            f"Verum Omnis Version: {manifest.version}",
            f"Geolocation: {manifest.geolocation_display()}",
        ):
            y = self._mono_block(pdf, line, y, width=side_width)
        y = max(y + 4, image_bottom + 6)

        y = self._heading(pdf, "Evidence Files", y)
        for index, (record, staged) in enumerate(zip(manifest.evidence_files, evidence_files), 1):
            y = self._mono_block(
                pdf, f"{index}. {record.file_name} ({staged.mime_type}, {staged.size} bytes) SHA-512:", y, indent=5,
            )
            y = self._digest_line(pdf, record.sha512_original, y, indent=5) + 1
        y += 4

        y = self._heading(pdf, "Cryptographic Seals", y)
        y = self._mono_block(pdf, "Device Public Key (fingerprint, SHA-512 of PEM):", y)
        y = self._digest_line(pdf, manifest.device_id_fingerprint, y)
        y = self._mono_block(pdf, "Device Public Key (PEM):", y)
        y = self._write_lines(pdf, manifest.device_public_key.split("\n"), g.margin, y, g.mono_pitch)
        y = self._mono_block(pdf, "ECDSA Signature (base64):", y)
        y = self._mono_block(pdf, signature, y) + 8

        pdf.set_font("Helvetica", "I", g.mono_size)
        pdf.set_text_color(150)
        lines = self._split(pdf, VERIFY_NOTE, g.content_width)
        self._write_lines(pdf, lines, g.margin, y, g.mono_pitch)
        pdf.set_text_color(0)
