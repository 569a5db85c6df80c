"""Batch envelope builder — pre-draws every trial's bytes for a block.

A block's subject and ghost bytes come from one sourcing call of
``2 * total`` bytes: the first half is the subject stream, the second
half the ghost stream. Drawing once up front means the bytes exist
before any trial is shown, and nothing about the subject's presses can
influence which bytes are used.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from qrseal.errors import ShapeError
from qrseal.models.commit import BlockBatch, Envelope
from qrseal.sourcing.failover import FailoverSourcer


logger = logging.getLogger(__name__)


def split_envelopes(data: bytes, total: int) -> tuple[Envelope, ...]:
    """Pair byte ``i`` with byte ``total + i`` for each 1-based trial.

    Raises:
        ShapeError: Fewer than ``2 * total`` bytes.
    """
    need = 2 * total
    if len(data) < need:
        raise ShapeError(len(data), need)
    return tuple(
        Envelope(trial_index=i + 1, raw_byte=data[i], ghost_raw_byte=data[total + i])
        for i in range(total)
    )


class BatchEnvelopeBuilder:
    """Builds BlockBatches from a single failover draw."""

    def __init__(
        self,
        sourcer: FailoverSourcer,
        *,
        min_trials: int = 1,
        max_trials: int = 100,
    ) -> None:
        self._sourcer = sourcer
        self._min_trials = min_trials
        self._max_trials = max_trials

    def build_block(
        self,
        block_id: str,
        total_trials: int,
        *,
        session_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> BlockBatch:
        """Draw and split the envelopes for one block.

        Raises:
            ValueError: Blank block id or total outside the trial bounds.
            SourcingExhaustedError: No provider could serve the draw.
            ShapeError: The draw came back short; the block is not built.
        """
        if not block_id:
            raise ValueError("missing block")
        if not self._min_trials <= total_trials <= self._max_trials:
            raise ValueError(
                f"total_trials must be in [{self._min_trials}, {self._max_trials}], got {total_trials}"
            )

        acquired = self._sourcer.acquire(2 * total_trials)
        envelopes = split_envelopes(acquired.data, total_trials)

        server_time = (now or datetime.now(timezone.utc)).isoformat()
        batch = BlockBatch(
            batch_id=f"{block_id}-{server_time}",
            block_id=block_id,
            source=acquired.source,
            server_time=server_time,
            envelopes=envelopes,
            session_id=session_id,
        )
        logger.info("Built block %s: %d envelopes from %s", block_id, batch.total, batch.source)
        return batch
