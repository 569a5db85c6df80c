"""Data models — provider specs, circuit state, commit records, envelopes."""

from qrseal.models.commit import (
    BlockBatch,
    CommitPayload,
    DerivedOutcome,
    Envelope,
    IssuedCommit,
    RevealedKey,
    TrialContext,
)
from qrseal.models.provider import (
    AcquiredBytes,
    CircuitState,
    Decoding,
    ProviderSpec,
)

__all__ = [
    "AcquiredBytes",
    "BlockBatch",
    "CircuitState",
    "CommitPayload",
    "Decoding",
    "DerivedOutcome",
    "Envelope",
    "IssuedCommit",
    "ProviderSpec",
    "RevealedKey",
    "TrialContext",
]
