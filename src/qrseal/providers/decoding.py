"""Decoders from provider-native response bodies to integer lists.

Decoders only parse. Length checks and masking to 0..255 happen in the
adapter so every provider enforces them identically.
"""

from __future__ import annotations

import base64
import binascii
from typing import Any, Optional, Sequence


class DecodeError(ValueError):
    """The response body does not have the expected shape."""


def _dig(body: Any, path: Sequence[str]) -> Any:
    node = body
    for key in path:
        if not isinstance(node, dict):
            return None
        node = node.get(key)
    return node


def decode_hex_string(body: Any, field: str = "qrn") -> list[int]:
    """``{"qrn": "a1b2c3"}`` → ``[0xa1, 0xb2, 0xc3]``."""
    text = _dig(body, (field,))
    if not isinstance(text, str):
        raise DecodeError("bad_shape")
    text = text.strip()
    if not text or len(text) % 2 != 0:
        raise DecodeError("hex_length")
    try:
        return list(bytes.fromhex(text))
    except ValueError:
        raise DecodeError("hex_parse") from None


def decode_integer_array(body: Any, path: Sequence[str]) -> list[int]:
    """Integer array at *path*, e.g. ``("result", "random", "data")``."""
    values = _dig(body, path)
    if not isinstance(values, list):
        raise DecodeError("bad_shape")
    out: list[int] = []
    for value in values:
        if isinstance(value, bool) or not isinstance(value, int):
            raise DecodeError("non_integer")
        out.append(value)
    return out


# Older deployments of the base64-decimal service answered with plain
# arrays in one of several places; the documented shape is tried first.
_LEGACY_ROOTS: tuple[tuple[str, ...], ...] = (
    ("data",),
    ("data", "numbers"),
    ("random_numbers",),
    ("numbers",),
    (),
    ("result",),
)


def decode_base64_decimal_rows(body: Any) -> list[int]:
    """``{"random_numbers": [{"decimal": "NDI="}, ...]}`` → ``[42, ...]``.

    Each ``decimal`` is the base64 encoding of a decimal string.
    """
    rows = _dig(body, ("random_numbers",))
    if isinstance(rows, list):
        out: list[int] = []
        for row in rows:
            encoded = row.get("decimal") if isinstance(row, dict) else None
            if encoded is None:
                continue
            out.append(_b64_decimal(encoded))
        return out

    legacy = _legacy_array(body)
    if legacy is None:
        raise DecodeError("bad_shape")
    return legacy


def _b64_decimal(encoded: Any) -> int:
    try:
        text = base64.b64decode(str(encoded), validate=True).decode("utf-8")
        return int(text.strip(), 10)
    except (binascii.Error, UnicodeDecodeError, ValueError):
        raise DecodeError("b64_decimal_parse") from None


def _legacy_array(body: Any) -> Optional[list[int]]:
    for fmt, base in (("decimal", 10), ("hex", 16), ("binary", 2)):
        for root in _LEGACY_ROOTS:
            values = _dig(body, (*root, fmt))
            if isinstance(values, list):
                return [_parse_legacy(v, base) for v in values]
    return None


def _parse_legacy(value: Any, base: int) -> int:
    if base == 10 and isinstance(value, int) and not isinstance(value, bool):
        return value
    text = str(value).strip()
    if base == 16 and text.lower().startswith("0x"):
        text = text[2:]
    try:
        return int(text, base)
    except ValueError:
        raise DecodeError("legacy_parse") from None
