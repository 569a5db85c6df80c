"""Commit token wire format.

    token = base64url(JSON(claims)) + "." + hex(HMAC-SHA256(master, base64url part))

Padding is stripped from the base64url part. The token is self-validating:
any holder of the master secret can check authenticity and integrity
without a lookup table. Verification is fail-closed and reports exactly
one rejection reason, checked in this order:

1. bad_token        — not of the form ``<b64>.<hex>``
2. bad_signature    — HMAC does not match (constant-time comparison)
3. bad_payload      — signed part is not decodable JSON
4. missing_claims   — wrong version or a required claim is absent
5. claims_mismatch  — session/block differ from what the caller claims
6. token_expired    — deadline has passed
"""

from __future__ import annotations

import base64
import binascii
import json
from datetime import datetime, timezone
from typing import Any, Optional

from qrseal.crypto.keys import constant_time_equal, hmac_sha256
from qrseal.errors import TokenError, TokenRejection
from qrseal.models.commit import PROTOCOL_VERSION, CommitPayload, canonical_json


def to_epoch_ms(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


def _now_ms(now: Optional[datetime]) -> int:
    return to_epoch_ms(now or datetime.now(timezone.utc))


def _b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64url_decode(text: str) -> bytes:
    padded = text + "=" * (-len(text) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii"))


def sign(master_secret: str, encoded_payload: str) -> str:
    return hmac_sha256(master_secret, encoded_payload).hex()


def encode_token(payload: CommitPayload, master_secret: str) -> str:
    """Serialize and sign a commit payload."""
    encoded = _b64url_encode(canonical_json(payload.to_claims()).encode("utf-8"))
    return f"{encoded}.{sign(master_secret, encoded)}"


def verify_token(
    token: Any,
    master_secret: str,
    *,
    expected_session: Optional[str] = None,
    expected_block: Optional[str] = None,
    check_expiry: bool = True,
    now: Optional[datetime] = None,
) -> CommitPayload:
    """Verify a commit token and return its payload.

    Claims are compared against *expected_session* / *expected_block*
    whenever they are given. Offline audits pass ``check_expiry=False``
    because they run long after the token's lifetime.

    Raises:
        TokenError: with the first failing TokenRejection.
    """
    if not isinstance(token, str) or token.count(".") != 1:
        raise TokenError(TokenRejection.BAD_TOKEN)
    encoded, signature = token.split(".")
    if not encoded or not signature:
        raise TokenError(TokenRejection.BAD_TOKEN)

    if not constant_time_equal(signature, sign(master_secret, encoded)):
        raise TokenError(TokenRejection.BAD_SIGNATURE)

    try:
        claims = json.loads(_b64url_decode(encoded).decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, ValueError):
        raise TokenError(TokenRejection.BAD_PAYLOAD) from None
    if not isinstance(claims, dict):
        raise TokenError(TokenRejection.BAD_PAYLOAD)

    payload = _payload_from_claims(claims)

    if expected_session is not None and payload.session_id != expected_session:
        raise TokenError(TokenRejection.CLAIMS_MISMATCH)
    if expected_block is not None and payload.block_id != expected_block:
        raise TokenError(TokenRejection.CLAIMS_MISMATCH)

    if check_expiry and _now_ms(now) > payload.expiry_ms:
        raise TokenError(TokenRejection.EXPIRED)

    return payload


def _payload_from_claims(claims: dict[str, Any]) -> CommitPayload:
    version = claims.get("v")
    session_id = claims.get("session_id")
    block_id = claims.get("block")
    nonce = claims.get("nonce")
    expiry = claims.get("exp")

    if version != PROTOCOL_VERSION or isinstance(version, bool):
        raise TokenError(TokenRejection.MISSING_CLAIMS)
    for value in (session_id, block_id, nonce):
        if not isinstance(value, str) or not value:
            raise TokenError(TokenRejection.MISSING_CLAIMS)
    if isinstance(expiry, bool) or not isinstance(expiry, (int, float)) or expiry <= 0:
        raise TokenError(TokenRejection.MISSING_CLAIMS)

    return CommitPayload(
        version=PROTOCOL_VERSION,
        session_id=session_id,
        block_id=block_id,
        nonce=nonce,
        expiry_ms=int(expiry),
    )
