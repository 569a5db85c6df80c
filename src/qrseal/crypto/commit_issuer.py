"""Commit issuer — binds a block to a future key before any outcome exists.

The issuer is stateless. It generates a fresh nonce, signs the claims,
derives K only long enough to hash it, and returns the token plus
commit_hash = SHA-256(K). K is never returned, stored or logged here.
"""

from __future__ import annotations

import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

from qrseal.crypto.keys import commit_hash, derive_key
from qrseal.crypto.token import encode_token, to_epoch_ms
from qrseal.errors import ConfigurationError
from qrseal.models.commit import PROTOCOL_VERSION, CommitPayload, IssuedCommit


DEFAULT_TTL_SECONDS = 2 * 60 * 60


class CommitIssuer:
    """Issues signed commit tokens.

    Usage:
        issuer = CommitIssuer(master_secret, ttl_seconds=7200)
        issued = issuer.issue("session-123", "spoon_love")
        issued.commit_token, issued.commit_hash
    """

    NONCE_BYTES = 16  # 128 bits

    def __init__(self, master_secret: Optional[str], ttl_seconds: int = DEFAULT_TTL_SECONDS) -> None:
        if not master_secret:
            raise ConfigurationError("HMAC_MASTER_SECRET missing")
        if ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be positive, got {ttl_seconds}")
        self._master = master_secret
        self._ttl = timedelta(seconds=ttl_seconds)

    def issue(
        self,
        session_id: str,
        block_id: str,
        *,
        now: Optional[datetime] = None,
    ) -> IssuedCommit:
        """Issue a commit token for one (session, block).

        Raises:
            ValueError: If session_id or block_id is blank.
        """
        if not session_id or not block_id:
            raise ValueError("missing session_id or block")

        now_utc = now or datetime.now(timezone.utc)
        expires = now_utc + self._ttl
        payload = CommitPayload(
            version=PROTOCOL_VERSION,
            session_id=session_id,
            block_id=block_id,
            nonce=secrets.token_hex(self.NONCE_BYTES),
            expiry_ms=to_epoch_ms(expires),
        )
        token = encode_token(payload, self._master)

        key = derive_key(self._master, session_id, block_id, payload.nonce)
        digest = commit_hash(key)
        del key

        return IssuedCommit(commit_token=token, commit_hash=digest, expires_utc=expires)
