"""
Canonical JSON encoding for property values.

Property values are compared byte-for-byte in their encoded form to decide
whether a write changes anything. Encoding is canonical (sorted keys, compact
separators) so the comparison is stable across engines that normalize JSON.
"""

from __future__ import annotations

import json
from typing import Any

from ..errors import ValidationError


def encode_value(value: Any) -> str:
    """Encode a property value as canonical JSON.

    Args:
        value: Any JSON-compatible value

    Returns:
        Canonical JSON text

    Raises:
        ValidationError: If the value cannot be represented as JSON
    """
    try:
        return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False, allow_nan=False)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Property value is not valid JSON: {e}", field_name="properties") from e


def same_value(stored: Any, encoded_new: str) -> bool:
    """Check whether a stored value equals a new, already encoded, value."""
    return encode_value(stored) == encoded_new
