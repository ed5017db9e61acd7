"""Verification-payload image collaborators.

The certification page carries a scannable code holding
``{manifest_id, device_fp}``. Producing the bitmap is delegated to a
provider; providers raise VerificationImageUnavailable on any failure and the
renderer degrades to a placeholder.
"""

from __future__ import annotations

import io
import logging
from typing import Protocol
from urllib.error import HTTPError, URLError
from urllib.parse import quote
from urllib.request import Request, urlopen

import qrcode  # type: ignore[import-untyped]
from qrcode.exceptions import DataOverflowError  # type: ignore[import-untyped]

from verumseal.canonical import canonical_json
from verumseal.errors import VerificationImageUnavailable
from verumseal.models import Manifest

logger = logging.getLogger(__name__)

DEFAULT_QR_ENDPOINT = "https://api.qrserver.com/v1/create-qr-code/"
DEFAULT_QR_SIZE = 120
DEFAULT_TIMEOUT = 10  # seconds

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"


def verification_payload(manifest: Manifest) -> str:
    """Build the scannable payload for a manifest.

    The document digest is deliberately absent: it only exists after
    rendering completes.
    """
    return canonical_json({
        "manifest_id": manifest.manifest_id,
        "device_fp": manifest.device_id_fingerprint,
    })


class VerificationImageProvider(Protocol):
    """Turns a UTF-8 payload into PNG image bytes."""

    def fetch(self, payload: str) -> bytes:
        ...


class QRServerImageProvider:
    """Fetches the code image from a remote QR rendering service."""

    def __init__(
        self,
        endpoint: str = DEFAULT_QR_ENDPOINT,
        size: int = DEFAULT_QR_SIZE,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.endpoint = endpoint
        self.size = size
        self.timeout = timeout

    def build_url(self, payload: str) -> str:
        return f"{self.endpoint}?size={self.size}x{self.size}&format=png&data={quote(payload, safe='')}"

    def fetch(self, payload: str) -> bytes:
        url = self.build_url(payload)
        request = Request(url, headers={"User-Agent": "verumseal", "Accept": "image/png"})
        try:
            with urlopen(request, timeout=self.timeout) as response:
                data = response.read()
        except HTTPError as e:
            raise VerificationImageUnavailable(f"QR service returned HTTP {e.code}") from e
        except (URLError, TimeoutError, OSError) as e:
            raise VerificationImageUnavailable(f"QR service unreachable: {e}") from e

        if not data.startswith(PNG_SIGNATURE):
            raise VerificationImageUnavailable("QR service did not return a PNG image")
        return data


class LocalQRImageProvider:
    """Renders the code image in-process with the qrcode library."""

    def __init__(self, box_size: int = 4, border: int = 4) -> None:
        self.box_size = box_size
        self.border = border

    def fetch(self, payload: str) -> bytes:
        qr = qrcode.QRCode(
            version=None,  # Auto-determine version
            error_correction=qrcode.constants.ERROR_CORRECT_M,
            box_size=self.box_size,
            border=self.border,
        )
        qr.add_data(payload)
        try:
            qr.make(fit=True)
        except (ValueError, DataOverflowError) as e:
            raise VerificationImageUnavailable(f"Cannot encode payload: {e}") from e

        img = qr.make_image(fill_color="black", back_color="white")
        buffer = io.BytesIO()
        img.save(buffer, format="PNG")
        return buffer.getvalue()


class NullImageProvider:
    """Provider for offline operation: never produces an image."""

    def fetch(self, payload: str) -> bytes:
        raise VerificationImageUnavailable("Verification image rendering is disabled")


def create_image_provider(
    kind: str,
    endpoint: str = DEFAULT_QR_ENDPOINT,
    size: int = DEFAULT_QR_SIZE,
    timeout: float = DEFAULT_TIMEOUT,
) -> VerificationImageProvider:
    """Create a provider by configuration name (remote, local, none)."""
    if kind == "remote":
        return QRServerImageProvider(endpoint=endpoint, size=size, timeout=timeout)
    if kind == "local":
        return LocalQRImageProvider()
    if kind == "none":
        return NullImageProvider()
    raise ValueError(f"Unknown QR provider: {kind}")
