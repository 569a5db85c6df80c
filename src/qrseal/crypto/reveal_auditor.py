"""Reveal auditor — the only path that discloses K in cleartext.

Revealing is idempotent: the same token always yields the same K. No
"revealed" or "closed" flag is recorded at this layer, so nothing here
stops a reveal before the block's last derive. Callers own that timing.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from qrseal.crypto.keys import commit_hash, derive_key
from qrseal.crypto.token import verify_token
from qrseal.errors import ConfigurationError
from qrseal.models.commit import RevealedKey


class RevealAuditor:
    """Re-validates a commit token and returns the committed key."""

    def __init__(self, master_secret: Optional[str]) -> None:
        if not master_secret:
            raise ConfigurationError("HMAC_MASTER_SECRET missing")
        self._master = master_secret

    def reveal(
        self,
        commit_token: str,
        session_id: str,
        block_id: str,
        *,
        now: Optional[datetime] = None,
    ) -> RevealedKey:
        """Reveal K for a (session, block) commit.

        Raises:
            TokenError: On the same conditions as OutcomeDeriver.derive.
        """
        payload = verify_token(
            commit_token,
            self._master,
            expected_session=session_id,
            expected_block=block_id,
            now=now,
        )
        key = derive_key(self._master, payload.session_id, payload.block_id, payload.nonce)
        return RevealedKey(key_hex=key.hex(), commit_hash=commit_hash(key))
