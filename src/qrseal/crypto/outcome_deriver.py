"""Outcome deriver — keyed remap index and proof tag for one trial.

    r     = HMAC(K, ctx)[0] mod 5
    proof = hex(HMAC(K, ctx + "|r=" + r)[:8])

where ctx is the canonical TrialContext. Both values are pure functions
of (K, ctx); all unpredictability entered earlier through the commit
nonce and the raw provider byte.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from qrseal.crypto.keys import derive_key, hmac_sha256
from qrseal.crypto.token import verify_token
from qrseal.errors import ConfigurationError
from qrseal.models.commit import OPTION_COUNT, DerivedOutcome, TrialContext


PROOF_TAG_BYTES = 8


def remap_index(key: bytes, context: TrialContext) -> int:
    return hmac_sha256(key, context.canonical())[0] % OPTION_COUNT


def proof_tag(key: bytes, context: TrialContext, r: int) -> str:
    message = f"{context.canonical()}|r={r}"
    return hmac_sha256(key, message)[:PROOF_TAG_BYTES].hex()


def compute_outcome(key: bytes, context: TrialContext) -> DerivedOutcome:
    """Compute (r, proof) from an already-derived key."""
    r = remap_index(key, context)
    return DerivedOutcome(r=r, proof_hmac=proof_tag(key, context, r))


class OutcomeDeriver:
    """Verifies a commit token and derives the trial outcome it binds.

    Usage:
        deriver = OutcomeDeriver(master_secret)
        outcome = deriver.derive(token, context)
        outcome.r, outcome.proof_hmac
    """

    def __init__(self, master_secret: Optional[str]) -> None:
        if not master_secret:
            raise ConfigurationError("HMAC_MASTER_SECRET missing")
        self._master = master_secret

    def derive(
        self,
        commit_token: str,
        context: TrialContext,
        *,
        now: Optional[datetime] = None,
    ) -> DerivedOutcome:
        """Derive (r, proof) for a trial under the block's commit token.

        Raises:
            TokenError: If the token is forged, malformed, issued for
                another session/block, or expired.
        """
        payload = verify_token(
            commit_token,
            self._master,
            expected_session=context.session_id,
            expected_block=context.block_id,
            now=now,
        )
        key = derive_key(self._master, payload.session_id, payload.block_id, payload.nonce)
        return compute_outcome(key, context)
