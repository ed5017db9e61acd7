"""Error taxonomy for the sealing pipeline.

Fatal errors carry the pipeline stage they were raised from so callers can
tell a key generation failure from a layout failure. Sealing is
all-or-nothing: any of these propagating out of ``SealingEngine.seal`` means
no report was produced.
"""

from __future__ import annotations


class SealError(Exception):
    """Fatal failure while producing a sealed report."""

    stage = "seal"

    def __init__(self, message: str, stage: str | None = None) -> None:
        super().__init__(message)
        if stage is not None:
            self.stage = stage

    def __str__(self) -> str:
        return f"[{self.stage}] {super().__str__()}"


class StagingError(SealError):
    """Evidence could not be staged (unreadable, oversized, malformed)."""

    stage = "staging"


class CryptoError(SealError):
    """Key generation or signing could not complete."""

    stage = "sign"


class RenderError(SealError):
    """The certified document could not be laid out."""

    stage = "render"


class VerificationImageUnavailable(Exception):
    """The verification-image collaborator could not supply an image.

    Always recoverable: the renderer falls back to a placeholder.
    """
    pass


class VerificationError(Exception):
    """Structurally malformed input handed to a verifier.

    A signature that simply does not match is not an error; verifiers
    return False for that.
    """
    pass
