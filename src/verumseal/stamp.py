"""Integrity stamping of rendered documents.

The stamp is the digest of the exact bytes handed to the caller. It is
delivered out-of-band and never written back into the document.
"""

from __future__ import annotations

import hmac

from verumseal.digest import digest


def stamp(document_bytes: bytes) -> str:
    """Compute the integrity stamp of a rendered document."""
    return digest(document_bytes)


def verify_stamp(document_bytes: bytes, expected_digest: str) -> bool:
    """Check a document against a previously disclosed stamp."""
    expected = expected_digest.strip().lower()
    if not expected.isascii():
        return False
    return hmac.compare_digest(stamp(document_bytes), expected)
