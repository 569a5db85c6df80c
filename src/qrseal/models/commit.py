"""Commit-reveal records and block envelopes.

All records here are immutable. The protocol is stateless: nothing in
this module is persisted by the core. Consumers may store the trial
context and outcome alongside their own trial records.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional


PROTOCOL_VERSION = 1
OPTION_COUNT = 5


def canonical_json(obj: Any) -> str:
    """Compact, insertion-ordered JSON. Key order is part of the contract."""
    return json.dumps(obj, separators=(",", ":"), ensure_ascii=False)


@dataclass(frozen=True)
class CommitPayload:
    """Claims carried inside a commit token.

    The wire form uses the short keys ``v``, ``block`` and ``exp`` so that
    tokens stay compatible with trial records already collected.
    """
    version: int
    session_id: str
    block_id: str
    nonce: str
    expiry_ms: int  # absolute deadline, milliseconds since the Unix epoch

    def to_claims(self) -> dict[str, Any]:
        return {
            "v": self.version,
            "session_id": self.session_id,
            "block": self.block_id,
            "nonce": self.nonce,
            "exp": self.expiry_ms,
        }


@dataclass(frozen=True)
class TrialContext:
    """Every value that determines one trial's outcome.

    Serialized canonically for HMAC input; the order of fields below is
    the order they appear on the wire.
    """
    session_id: str
    block_id: str
    trial_index: int
    press_bucket_ms: int
    selected_index: int
    options: tuple[str, ...]
    raw_byte: int
    purpose: str = "target"

    def __post_init__(self) -> None:
        if not self.session_id or not self.block_id:
            raise ValueError("session_id and block_id are required")
        if self.trial_index < 1:
            raise ValueError(f"trial_index must be >= 1, got {self.trial_index}")
        if len(self.options) != OPTION_COUNT:
            raise ValueError(f"options must be {OPTION_COUNT} ids, got {len(self.options)}")
        if not 0 <= self.selected_index < OPTION_COUNT:
            raise ValueError(f"selected_index must be in [0, {OPTION_COUNT}), got {self.selected_index}")
        if not 0 <= self.raw_byte <= 255:
            raise ValueError(f"raw_byte must be in [0, 255], got {self.raw_byte}")

    def canonical(self) -> str:
        return canonical_json({
            "v": PROTOCOL_VERSION,
            "session_id": self.session_id,
            "block": self.block_id,
            "trial_index": self.trial_index,
            "press_bucket_ms": self.press_bucket_ms,
            "selected_index": self.selected_index,
            "options": list(self.options),
            "raw_byte": self.raw_byte,
            "purpose": self.purpose,
        })


@dataclass(frozen=True)
class IssuedCommit:
    """Result of the commit phase. K itself is never part of it."""
    commit_token: str
    commit_hash: str
    expires_utc: datetime


@dataclass(frozen=True)
class DerivedOutcome:
    """Remap index and its proof tag for one trial."""
    r: int
    proof_hmac: str


@dataclass(frozen=True)
class RevealedKey:
    """The committed key, disclosed after the block, with its hash."""
    key_hex: str
    commit_hash: str


@dataclass(frozen=True)
class Envelope:
    """One pre-drawn (subject, ghost) byte pair for a single trial."""
    trial_index: int  # 1-based
    raw_byte: int
    ghost_raw_byte: int

    def to_dict(self) -> dict[str, int]:
        return {
            "trial_index": self.trial_index,
            "raw_byte": self.raw_byte,
            "ghost_raw_byte": self.ghost_raw_byte,
        }


@dataclass(frozen=True)
class BlockBatch:
    """All envelopes for one block, drawn in a single sourcing call."""
    batch_id: str
    block_id: str
    source: str
    server_time: str
    envelopes: tuple[Envelope, ...] = field(default_factory=tuple)
    session_id: Optional[str] = None

    @property
    def total(self) -> int:
        return len(self.envelopes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "batch_id": self.batch_id,
            "session_id": self.session_id,
            "block": self.block_id,
            "source": self.source,
            # older trial records read the source under this name
            "rng_source": self.source,
            "server_time": self.server_time,
            "total": self.total,
            "envelopes": [e.to_dict() for e in self.envelopes],
        }
