"""Ephemeral device key management.

One P-256 key pair per session, generated on first use and held in process
memory only. The private key is never serialized, logged, or written to disk;
the device identity is the digest of the exported public key rather than a
certificate.
"""

from __future__ import annotations

import base64
import logging
import threading
from dataclasses import dataclass, field

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from verumseal.digest import digest_text
from verumseal.errors import CryptoError, VerificationError

logger = logging.getLogger(__name__)

PEM_HEADER = "-----BEGIN PUBLIC KEY-----"
PEM_FOOTER = "-----END PUBLIC KEY-----"
PEM_LINE_WIDTH = 64

CURVE_NAME = "P-256"


@dataclass(frozen=True)
class KeyPair:
    """Session signing key pair."""

    private_key: ec.EllipticCurvePrivateKey = field(repr=False)
    public_key: ec.EllipticCurvePublicKey = field(repr=False)

    def __reduce__(self):
        raise TypeError("KeyPair holds private key material and cannot be serialized")

    @property
    def public_key_pem(self) -> str:
        return export_public_key_pem(self)

    @property
    def fingerprint(self) -> str:
        return digest_text(self.public_key_pem)


def generate_key_pair() -> KeyPair:
    """Generate a fresh P-256 key pair.

    Raises:
        CryptoError: If the backend cannot generate the key
    """
    try:
        private_key = ec.generate_private_key(ec.SECP256R1())
    except (UnsupportedAlgorithm, ValueError) as e:
        raise CryptoError(f"Key generation failed: {e}", stage="keygen") from e
    return KeyPair(private_key=private_key, public_key=private_key.public_key())


def export_public_key_pem(key: KeyPair | ec.EllipticCurvePublicKey) -> str:
    """Export a public key as SPKI PEM.

    Base64 body wrapped at 64 columns, lines joined with ``\\n``, no
    trailing newline. The device fingerprint is computed over exactly
    this string, so the framing must not change.
    """
    public_key = key.public_key if isinstance(key, KeyPair) else key
    der = public_key.public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    body = base64.b64encode(der).decode("ascii")
    lines = [body[i:i + PEM_LINE_WIDTH] for i in range(0, len(body), PEM_LINE_WIDTH)]
    return "\n".join([PEM_HEADER, *lines, PEM_FOOTER])


def load_public_key_pem(pem: str) -> ec.EllipticCurvePublicKey:
    """Parse a PEM public key and require a P-256 key.

    Raises:
        VerificationError: If the PEM cannot be parsed or is not P-256
    """
    try:
        public_key = serialization.load_pem_public_key(pem.strip().encode("ascii"))
    except (ValueError, UnsupportedAlgorithm, UnicodeEncodeError) as e:
        raise VerificationError(f"Unparsable public key: {e}") from e

    if not isinstance(public_key, ec.EllipticCurvePublicKey):
        raise VerificationError("Public key is not an elliptic-curve key")
    if not isinstance(public_key.curve, ec.SECP256R1):
        raise VerificationError(f"Unsupported curve: {public_key.curve.name}")
    return public_key


class KeyManager:
    """Holds the session key pair.

    Concurrent first callers are serialized so exactly one key pair is
    generated per manager.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._key_pair: KeyPair | None = None

    def ensure_key_pair(self) -> KeyPair:
        """Return the session key pair, generating it on first call."""
        with self._lock:
            if self._key_pair is None:
                self._key_pair = generate_key_pair()
                logger.info(
                    "Generated session key pair (%s, fingerprint %s...)",
                    CURVE_NAME,
                    self._key_pair.fingerprint[:16],
                )
            return self._key_pair

    def has_key_pair(self) -> bool:
        with self._lock:
            return self._key_pair is not None

    def export_public_key_pem(self) -> str:
        return export_public_key_pem(self.ensure_key_pair())

    def discard(self) -> None:
        """Drop the session key pair (end of session)."""
        with self._lock:
            self._key_pair = None
