"""Keyed primitives shared by the commit, derive and reveal phases.

K = HMAC-SHA256(master_secret, "K-derivation|v1|<session>|<block>|<nonce>")

K is a pure function of its four inputs, so no per-session key table
exists anywhere. The nonce is the only input unknown before commit time.
"""

from __future__ import annotations

import hashlib
import hmac


KEY_DERIVATION_TAG = "K-derivation|v1"


def _as_bytes(value: bytes | str) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else value


def hmac_sha256(key: bytes | str, data: bytes | str) -> bytes:
    """Raw HMAC-SHA256 digest. String keys and messages are UTF-8 encoded."""
    return hmac.new(_as_bytes(key), _as_bytes(data), hashlib.sha256).digest()


def derive_key(master_secret: str, session_id: str, block_id: str, nonce: str) -> bytes:
    """Derive the committed per-block key K."""
    message = f"{KEY_DERIVATION_TAG}|{session_id}|{block_id}|{nonce}"
    return hmac_sha256(master_secret, message)


def commit_hash(key: bytes) -> str:
    """Binding commitment to K: hex SHA-256 of the raw key bytes."""
    return hashlib.sha256(key).hexdigest()


def constant_time_equal(a: str, b: str) -> bool:
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))
