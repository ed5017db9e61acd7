"""Shared fixtures for the sealing tests."""

from __future__ import annotations

import io
from datetime import datetime, timezone

import pytest
from PIL import Image

from verumseal.config import SealConfig
from verumseal.engine import SealingEngine
from verumseal.errors import VerificationImageUnavailable
from verumseal.keys import KeyManager
from verumseal.models import EvidenceFile

FIXED_TIME = datetime(2026, 1, 31, 10, 0, 0, 123000, tzinfo=timezone.utc)
FIXED_ID = "urn:uuid:00000000-0000-4000-8000-000000000001"


def make_png(size: int = 29) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (size, size), "white").save(buffer, format="PNG")
    return buffer.getvalue()


class StaticImageProvider:
    """Returns a fixed PNG and records the payloads it was asked for."""

    def __init__(self, data: bytes | None = None) -> None:
        self.data = data if data is not None else make_png()
        self.payloads: list[str] = []

    def fetch(self, payload: str) -> bytes:
        self.payloads.append(payload)
        return self.data


class FailingImageProvider:
    """Simulates an unreachable QR service."""

    def __init__(self) -> None:
        self.calls = 0

    def fetch(self, payload: str) -> bytes:
        self.calls += 1
        raise VerificationImageUnavailable("service unreachable")


@pytest.fixture
def image_provider() -> StaticImageProvider:
    return StaticImageProvider()


@pytest.fixture
def key_manager() -> KeyManager:
    return KeyManager()


@pytest.fixture
def key_pair(key_manager):
    return key_manager.ensure_key_pair()


@pytest.fixture
def engine(key_manager, image_provider) -> SealingEngine:
    """Engine with a pinned clock and manifest id, and a stub QR provider."""
    return SealingEngine(
        config=SealConfig(qr_provider="none"),
        key_manager=key_manager,
        image_provider=image_provider,
        clock=lambda: FIXED_TIME,
        id_factory=lambda: FIXED_ID,
    )


@pytest.fixture
def evidence_files() -> list[EvidenceFile]:
    return [
        EvidenceFile(name="a.txt", mime_type="text/plain", original_bytes=b"abc"),
        EvidenceFile(name="b.txt", mime_type="text/plain", original_bytes=b"xyz"),
    ]
