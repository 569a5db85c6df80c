"""Error taxonomy for the sourcing and commit-reveal layers.

Four families, each handled at a different layer:
- ConfigurationError: missing master secret or provider credential.
  Disables the affected capability only, never the whole process.
- ProviderError: one provider attempt failed. Recovered by the failover
  sourcer; surfaced only as SourcingExhaustedError when every provider
  has failed.
- TokenError: a commit token was rejected. Always surfaced verbatim
  with a machine-readable reason.
- ShapeError: a batch draw came back short. The whole batch fails.
"""

from __future__ import annotations

import enum


class QrsealError(Exception):
    """Base class for all qrseal errors."""


class ConfigurationError(QrsealError):
    """Raised when required configuration is missing or invalid."""


# ---------------------------------------------------------------------------
# Provider failures
# ---------------------------------------------------------------------------

class FailureKind(str, enum.Enum):
    """Classification decided by the provider adapter, never from text."""
    TRANSIENT = "transient"        # timeout, connection error, 5xx, short read
    RATE_LIMITED = "rate_limited"  # quota exhausted (HTTP 429)
    PERMANENT = "permanent"        # other 4xx, malformed response body
    UNCONFIGURED = "unconfigured"  # required credential absent


class ProviderError(QrsealError):
    """A single provider attempt failed."""

    def __init__(self, provider: str, kind: FailureKind, reason: str) -> None:
        super().__init__(f"{provider}:{reason}")
        self.provider = provider
        self.kind = kind
        self.reason = reason

    @property
    def retryable(self) -> bool:
        return self.kind == FailureKind.TRANSIENT


class SourcingExhaustedError(QrsealError):
    """Every provider in the chain failed or was skipped.

    ``failures`` keeps one ``(provider, reason)`` entry per attempt or skip,
    in the order they happened.
    """

    def __init__(self, failures: list[tuple[str, str]]) -> None:
        self.failures = list(failures)
        detail = "; ".join(f"{name}:{reason}" for name, reason in self.failures)
        super().__init__(detail or "no providers configured")


class SourcingCancelledError(QrsealError):
    """The caller abandoned an acquisition between provider attempts."""


# ---------------------------------------------------------------------------
# Token rejection
# ---------------------------------------------------------------------------

class TokenRejection(str, enum.Enum):
    """Machine-readable reasons a commit token is refused."""
    BAD_TOKEN = "bad_token"
    BAD_SIGNATURE = "bad_signature"
    BAD_PAYLOAD = "bad_payload"
    MISSING_CLAIMS = "missing_claims"
    CLAIMS_MISMATCH = "claims_mismatch"
    EXPIRED = "token_expired"


class TokenError(QrsealError):
    """A commit token failed verification."""

    def __init__(self, reason: TokenRejection) -> None:
        super().__init__(reason.value)
        self.reason = reason


# ---------------------------------------------------------------------------
# Batch shape
# ---------------------------------------------------------------------------

class ShapeError(QrsealError):
    """A batch draw returned fewer bytes than the block needs."""

    def __init__(self, have: int, need: int) -> None:
        super().__init__(f"rng_short: have {have}, need {need}")
        self.have = have
        self.need = need
