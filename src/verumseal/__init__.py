"""Verum Seal - evidence sealing and forensic certification engine.

Binds user-supplied evidence and a narrative into a signed, paginated
certified document that a third party can verify offline.
"""

from __future__ import annotations

__version__ = "0.1.0"

# Version tag written into every manifest
ENGINE_VERSION = "verum_v5.2.6"

__all__ = ["ENGINE_VERSION", "__version__"]
