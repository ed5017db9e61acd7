"""Manifest signing and verification.

ECDSA P-256 over SHA-256 of the canonical manifest bytes. Signatures are
the fixed-width IEEE P1363 encoding (``r || s``, 32 bytes each) in base64,
the form WebCrypto and JOSE verifiers consume directly.
"""

from __future__ import annotations

import base64
import binascii

from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import (
    decode_dss_signature,
    encode_dss_signature,
)

from verumseal.canonical import canonical_manifest_bytes
from verumseal.errors import CryptoError, VerificationError
from verumseal.keys import KeyPair, load_public_key_pem
from verumseal.models import Manifest

# P-256 scalar width in bytes
COORDINATE_SIZE = 32
SIGNATURE_SIZE = 2 * COORDINATE_SIZE

ALGORITHM = "ECDSA-P256-SHA256"

# Order of the P-256 base point; signatures carry s <= n // 2 (low-S)
CURVE_ORDER = 0xFFFFFFFF00000000FFFFFFFFFFFFFFFFBCE6FAADA7179E84F3B9CAC2FC632551
HALF_ORDER = CURVE_ORDER // 2


def der_to_raw(der_signature: bytes) -> bytes:
    """Convert a DER ECDSA signature to ``r || s``."""
    r, s = decode_dss_signature(der_signature)
    return r.to_bytes(COORDINATE_SIZE, "big") + s.to_bytes(COORDINATE_SIZE, "big")


def normalize_low_s(raw_signature: bytes) -> bytes:
    """Replace ``s`` with ``n - s`` when ``s`` is in the upper half of the order.

    ``(r, s)`` and ``(r, n - s)`` both verify, so only the low form is
    ever issued or accepted.
    """
    s = int.from_bytes(raw_signature[COORDINATE_SIZE:], "big")
    if s <= HALF_ORDER:
        return raw_signature
    return raw_signature[:COORDINATE_SIZE] + (CURVE_ORDER - s).to_bytes(COORDINATE_SIZE, "big")


def raw_to_der(raw_signature: bytes) -> bytes:
    """Convert an ``r || s`` signature to DER."""
    if len(raw_signature) != SIGNATURE_SIZE:
        raise ValueError(f"Expected {SIGNATURE_SIZE} signature bytes, got {len(raw_signature)}")
    r = int.from_bytes(raw_signature[:COORDINATE_SIZE], "big")
    s = int.from_bytes(raw_signature[COORDINATE_SIZE:], "big")
    return encode_dss_signature(r, s)


def sign_manifest(
    manifest: Manifest,
    private_key: KeyPair | ec.EllipticCurvePrivateKey,
) -> str:
    """Sign the canonical serialization of a manifest.

    Returns:
        Base64-encoded ``r || s`` signature

    Raises:
        CryptoError: If the manifest cannot be canonicalized or signing fails
    """
    if isinstance(private_key, KeyPair):
        private_key = private_key.private_key

    try:
        message = canonical_manifest_bytes(manifest)
    except (ValueError, TypeError) as e:
        raise CryptoError(f"Manifest is not canonicalizable: {e}", stage="sign") from e

    try:
        der = private_key.sign(message, ec.ECDSA(hashes.SHA256()))
    except (ValueError, UnsupportedAlgorithm) as e:
        raise CryptoError(f"Signing failed: {e}", stage="sign") from e

    return base64.b64encode(normalize_low_s(der_to_raw(der))).decode("ascii")


def _decode_signature(signature: str | bytes) -> bytes | None:
    if isinstance(signature, str):
        signature = signature.strip().encode("ascii", errors="replace")
    try:
        raw = base64.b64decode(signature, validate=True)
    except (binascii.Error, ValueError):
        return None
    if len(raw) != SIGNATURE_SIZE:
        return None
    return raw


def verify_manifest(
    manifest: Manifest | dict,
    signature: str | bytes,
    public_key: str | ec.EllipticCurvePublicKey,
) -> bool:
    """Check a signature against a manifest and public key.

    Returns False for any mismatch: wrong key, altered manifest field,
    corrupted signature bytes, or a high-S signature.

    Raises:
        VerificationError: If the public key or manifest structure is malformed
    """
    if isinstance(public_key, str):
        public_key = load_public_key_pem(public_key)

    try:
        message = canonical_manifest_bytes(manifest)
    except (KeyError, ValueError, TypeError) as e:
        raise VerificationError(f"Malformed manifest: {e}") from e

    raw = _decode_signature(signature)
    if raw is None:
        return False
    if int.from_bytes(raw[COORDINATE_SIZE:], "big") > HALF_ORDER:
        return False

    try:
        public_key.verify(raw_to_der(raw), message, ec.ECDSA(hashes.SHA256()))
    except InvalidSignature:
        return False
    return True
