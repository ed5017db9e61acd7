"""Online review request.

After a seal, the user may ask the upstream reasoning service for a
high-level expert review. Only the manifest and a short redacted preview of
the narrative leave the device; building the request text is all this module
does.
"""

from __future__ import annotations

import json

from verumseal.models import Manifest

PREVIEW_LIMIT = 500

_REVIEW_TEMPLATE = """\
An on-device forensic analysis has been completed and sealed.
Your task is to provide a high-level expert review based on the provided manifest and a redacted preview of the findings.
DO NOT analyze the manifest's structure itself, but use its contents to inform your review of the redacted text.
Provide a human-readable summary, assess potential legal implications based on the preview, and suggest next steps for a legal professional.

**Manifest:**
```json
{manifest}
```

**Redacted Preview:**
---
{preview}
---
"""


def redacted_preview(text: str, limit: int = PREVIEW_LIMIT) -> str:
    """First ``limit`` characters of the narrative, ``...`` if truncated."""
    if limit < 0:
        raise ValueError(f"limit must be >= 0, got {limit}")
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


def build_review_request(narrative_text: str, manifest: Manifest, limit: int = PREVIEW_LIMIT) -> str:
    """Build the review prompt for a sealed narrative."""
    manifest_json = json.dumps(manifest.to_dict(), indent=2, ensure_ascii=False)
    return _REVIEW_TEMPLATE.format(
        manifest=manifest_json,
        preview=redacted_preview(narrative_text, limit),
    )
