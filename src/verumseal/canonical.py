"""Canonical JSON serialization.

The manifest serialization is the byte sequence that gets signed, so any
independent verifier must be able to reproduce it exactly from the same
logical manifest.

Manifest contract:
- Top-level keys in MANIFEST_FIELD_ORDER, nested keys in the orders below
- No whitespace, ``,`` and ``:`` separators
- ASCII-only output, non-ASCII escaped as \\uXXXX, encoded as UTF-8
- Arrays keep their order (evidence order is significant)
- Numbers: ECMAScript ``Number.prototype.toString`` form, the number
  serialization of RFC 8785 (JCS). ``51`` and ``51.0`` are the same number
  and both serialize as ``51``; ``0.00001`` stays in fixed notation and
  exponents look like ``1e+21``/``1e-7``. -0 is written as ``0``, NaN/Inf
  are rejected.

Generic ``canonical_json`` (used for payloads other than the manifest)
sorts keys instead.
"""

from __future__ import annotations

import json
import math
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from verumseal.models import Manifest

MANIFEST_FIELD_ORDER = (
    "version",
    "manifest_id",
    "sealed_timestamp_utc",
    "device_public_key",
    "device_id_fingerprint",
    "evidence_files",
    "geolocation",
)
EVIDENCE_FIELD_ORDER = ("file_name", "sha512_original")
GEOLOCATION_FIELD_ORDER = ("latitude", "longitude")

# Integers above this are not exactly representable as IEEE-754 doubles
MAX_SAFE_INTEGER = 2**53 - 1


def format_number(value: int | float) -> str:
    """Serialize a number the way ECMAScript ``String(number)`` does.

    Raises:
        ValueError: If the value is non-finite or an integer that has no
            exact double representation
    """
    if isinstance(value, int):
        if abs(value) > MAX_SAFE_INTEGER:
            raise ValueError(f"Cannot canonicalize integer outside the double-safe range: {value}")
        value = float(value)
    if math.isnan(value) or math.isinf(value):
        raise ValueError(f"Cannot canonicalize non-finite float: {value}")
    if value == 0.0:
        return "0"

    sign = "-" if value < 0 else ""
    # repr gives the shortest digit string that round-trips
    text = repr(abs(value))
    mantissa, _, exponent = text.partition("e")
    whole, _, fraction = mantissa.partition(".")
    digits = whole + fraction
    # point sits after ``point`` digits of ``digits``
    point = len(whole) + int(exponent or 0)

    stripped = digits.lstrip("0")
    point -= len(digits) - len(stripped)
    digits = stripped.rstrip("0")
    k = len(digits)

    if k <= point <= 21:
        return sign + digits + "0" * (point - k)
    if 0 < point <= 21:
        return sign + digits[:point] + "." + digits[point:]
    if -6 < point <= 0:
        return sign + "0." + "0" * -point + digits
    exp = point - 1
    exp_text = f"e+{exp}" if exp >= 0 else f"e-{-exp}"
    if k == 1:
        return sign + digits + exp_text
    return sign + digits[0] + "." + digits[1:] + exp_text


def _normalize(obj: Any, sort_keys: bool) -> Any:
    """Recursively normalize values for canonical representation."""
    if obj is None or isinstance(obj, (bool, str)):
        return obj
    if isinstance(obj, (int, float)):
        # Validated here, formatted in _encode
        format_number(obj)
        return obj
    if isinstance(obj, dict):
        items = sorted(obj.items()) if sort_keys else obj.items()
        return {k: _normalize(v, sort_keys) for k, v in items}
    if isinstance(obj, (list, tuple)):
        return [_normalize(item, sort_keys) for item in obj]
    if hasattr(obj, "to_dict"):
        return _normalize(obj.to_dict(), sort_keys)
    raise TypeError(f"Cannot canonicalize object of type {type(obj).__name__}")


def _encode(obj: Any) -> str:
    if obj is None:
        return "null"
    if obj is True:
        return "true"
    if obj is False:
        return "false"
    if isinstance(obj, str):
        return json.dumps(obj, ensure_ascii=True)
    if isinstance(obj, (int, float)):
        return format_number(obj)
    if isinstance(obj, dict):
        return "{" + ",".join(f"{_encode(str(k))}:{_encode(v)}" for k, v in obj.items()) + "}"
    return "[" + ",".join(_encode(item) for item in obj) + "]"


def _ordered(data: dict[str, Any], order: tuple[str, ...], what: str) -> dict[str, Any]:
    missing = [k for k in order if k not in data]
    extra = [k for k in data if k not in order]
    if missing or extra:
        raise ValueError(f"Non-canonical {what}: missing={missing} extra={extra}")
    return {k: data[k] for k in order}


def manifest_to_canonical_dict(manifest: Manifest | dict[str, Any]) -> dict[str, Any]:
    """Arrange manifest fields in the fixed canonical order."""
    data = manifest if isinstance(manifest, dict) else manifest.to_dict()
    result = _ordered(data, MANIFEST_FIELD_ORDER, "manifest")
    result["evidence_files"] = [
        _ordered(entry, EVIDENCE_FIELD_ORDER, "evidence entry")
        for entry in result["evidence_files"]
    ]
    if isinstance(result["geolocation"], dict):
        result["geolocation"] = _ordered(
            result["geolocation"], GEOLOCATION_FIELD_ORDER, "geolocation"
        )
    return _normalize(result, sort_keys=False)


def canonical_manifest_json(manifest: Manifest | dict[str, Any]) -> str:
    """Produce the canonical JSON text of a manifest.

    Raises:
        ValueError: If fields are missing, unexpected, or non-finite
    """
    return _encode(manifest_to_canonical_dict(manifest))


def canonical_manifest_bytes(manifest: Manifest | dict[str, Any]) -> bytes:
    """Produce the byte sequence that is signed and verified."""
    return canonical_manifest_json(manifest).encode("utf-8")


def canonical_json(data: Any) -> str:
    """Produce compact, sorted-key, ASCII-only JSON from data.

    Raises:
        ValueError: If data contains NaN or Infinity floats
    """
    return _encode(_normalize(data, sort_keys=True))
