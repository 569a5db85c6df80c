"""qrseal service — unified facade over sourcing and commit-reveal.

This is the primary interface for programmatic access. It wires:
- Failover sourcing per source profile (quantum, baseline)
- Block envelope pre-draws
- Commit issue, outcome derivation and key reveal
- Randomness probes
- The audit trail (optional)

Every operation returns a ServiceResult. Core exceptions never leave
this layer: rejections carry a machine-readable ``reason`` in ``data``
and the same string in ``errors``. Exhausted sourcing is reported to
callers only as ``randomness_unavailable``; the per-provider detail
goes to the log and the audit trail.
"""

from __future__ import annotations

import logging
import secrets as _secrets
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional, Sequence

import requests

from qrseal.crypto import CommitIssuer, OutcomeDeriver, RevealAuditor
from qrseal.errors import (
    ConfigurationError,
    ShapeError,
    SourcingCancelledError,
    SourcingExhaustedError,
    TokenError,
)
from qrseal.models.commit import BlockBatch, TrialContext
from qrseal.models.provider import AcquiredBytes
from qrseal.persistence.event_log import AuditEventKind, AuditLog
from qrseal.policy.resolver import PolicyResolver
from qrseal.policy.secrets import Secrets
from qrseal.sourcing.envelopes import BatchEnvelopeBuilder, split_envelopes
from qrseal.sourcing.failover import FailoverSourcer
from qrseal.sourcing.probe import analyze_pairs, symbol_distribution


logger = logging.getLogger(__name__)

FALLBACK_SOURCE = "fallback_prng"
RANDOMNESS_UNAVAILABLE = "randomness_unavailable"
MASTER_SECRET_MISSING = "master_secret_missing"
BAD_REQUEST = "bad_request"
RNG_SHORT = "rng_short"


@dataclass
class ServiceResult:
    """Result of a service operation."""
    success: bool
    errors: list[str] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def reason(self) -> Optional[str]:
        return self.data.get("reason")


def _rejected(reason: str, detail: Optional[str] = None) -> ServiceResult:
    data: dict[str, Any] = {"reason": reason}
    if detail:
        data["detail"] = detail
    return ServiceResult(success=False, errors=[reason], data=data)


class SealService:
    """Sealed-randomness facade.

    Usage:
        resolver = PolicyResolver.from_config_dir(config_dir)
        service = SealService(resolver, Secrets.from_environment(env_file))

        commit = service.issue_commit("session-1", "spoon_love")
        block = service.build_block("spoon_love", session_id="session-1")
        outcome = service.derive_outcome(
            "session-1", "spoon_love", 1, commit.data["commit_token"],
            selected_index=2, options=[...], raw_byte=17, press_bucket_ms=1200,
        )
        key = service.reveal_key("session-1", "spoon_love", commit.data["commit_token"])

    Injection (tests):
        service = SealService(resolver, secrets, sourcers={"quantum": fake})
    """

    def __init__(
        self,
        resolver: PolicyResolver,
        secrets: Secrets,
        audit_log: Optional[AuditLog] = None,
        session: Optional[requests.Session] = None,
        sourcers: Optional[dict[str, FailoverSourcer]] = None,
    ) -> None:
        self._resolver = resolver
        self._secrets = secrets
        self._audit_log = audit_log

        if sourcers is None:
            sourcers = {
                profile: FailoverSourcer.from_policy(resolver, secrets, profile, session)
                for profile in resolver.profile_names()
            }
        self._sourcers = sourcers

        min_trials, max_trials = resolver.trial_bounds()
        self._trial_bounds = (min_trials, max_trials)
        self._builders = {
            profile: BatchEnvelopeBuilder(sourcer, min_trials=min_trials, max_trials=max_trials)
            for profile, sourcer in sourcers.items()
        }

        # Commit-reveal is disabled, not fatal, without a master secret.
        self._issuer: Optional[CommitIssuer] = None
        self._deriver: Optional[OutcomeDeriver] = None
        self._auditor: Optional[RevealAuditor] = None
        if secrets.has_master_secret:
            master = secrets.require_master_secret()
            self._issuer = CommitIssuer(master, ttl_seconds=resolver.token_ttl_seconds())
            self._deriver = OutcomeDeriver(master)
            self._auditor = RevealAuditor(master)
        else:
            logger.warning("HMAC_MASTER_SECRET not set; commit, derive and reveal are disabled")

    # ------------------------------------------------------------------
    # Commit-reveal
    # ------------------------------------------------------------------

    def issue_commit(
        self,
        session_id: str,
        block_id: str,
        *,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        if self._issuer is None:
            return _rejected(MASTER_SECRET_MISSING)
        try:
            issued = self._issuer.issue(session_id, block_id, now=now)
        except ValueError as e:
            return _rejected(BAD_REQUEST, str(e))

        self._record(AuditEventKind.COMMIT_ISSUED, session_id, {
            "block": block_id,
            "commit_hash": issued.commit_hash,
        })
        return ServiceResult(success=True, data={
            "commit_token": issued.commit_token,
            "commit_hash": issued.commit_hash,
            "expires_utc": issued.expires_utc.isoformat(),
        })

    def derive_outcome(
        self,
        session_id: str,
        block_id: str,
        trial_index: int,
        commit_token: str,
        selected_index: int,
        options: Sequence[str],
        raw_byte: int,
        press_bucket_ms: int,
        *,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        if self._deriver is None:
            return _rejected(MASTER_SECRET_MISSING)
        try:
            context = TrialContext(
                session_id=session_id,
                block_id=block_id,
                trial_index=int(trial_index),
                press_bucket_ms=int(press_bucket_ms),
                selected_index=int(selected_index),
                options=tuple(str(o) for o in options),
                raw_byte=int(raw_byte),
            )
        except (TypeError, ValueError) as e:
            return _rejected(BAD_REQUEST, str(e))

        try:
            outcome = self._deriver.derive(commit_token, context, now=now)
        except TokenError as e:
            return self._token_rejected(e, "derive", session_id, block_id)

        self._record(AuditEventKind.OUTCOME_DERIVED, session_id, {
            "block": block_id,
            "trial_index": context.trial_index,
            "r": outcome.r,
            "proof_hmac": outcome.proof_hmac,
        })
        return ServiceResult(success=True, data={
            "r": outcome.r,
            "proof_hmac": outcome.proof_hmac,
            "server_time": (now or datetime.now(timezone.utc)).isoformat(),
        })

    def reveal_key(
        self,
        session_id: str,
        block_id: str,
        commit_token: str,
        *,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        if self._auditor is None:
            return _rejected(MASTER_SECRET_MISSING)
        if not session_id or not block_id:
            return _rejected(BAD_REQUEST, "missing session_id or block")
        try:
            revealed = self._auditor.reveal(commit_token, session_id, block_id, now=now)
        except TokenError as e:
            return self._token_rejected(e, "reveal", session_id, block_id)

        self._record(AuditEventKind.KEY_REVEALED, session_id, {
            "block": block_id,
            "commit_hash": revealed.commit_hash,
        })
        return ServiceResult(success=True, data={
            "K": revealed.key_hex,
            "commit_hash": revealed.commit_hash,
        })

    # ------------------------------------------------------------------
    # Sourcing
    # ------------------------------------------------------------------

    def acquire_bytes(
        self,
        n: int,
        profile: Optional[str] = None,
        validation: bool = False,
        allow_fallback: bool = False,
    ) -> ServiceResult:
        """Draw raw bytes. *n* is clamped to [1, max_bytes_per_call]."""
        try:
            profile, sourcer = self._sourcer_for(profile)
        except ConfigurationError as e:
            return _rejected(BAD_REQUEST, str(e))
        n = max(1, min(sourcer.max_bytes, int(n)))

        try:
            acquired = sourcer.acquire(n, validation=validation)
        except (SourcingExhaustedError, SourcingCancelledError) as e:
            self._sourcing_failed(profile, n, e)
            if not allow_fallback:
                return _rejected(RANDOMNESS_UNAVAILABLE)
            data = self._fallback_bytes(profile, n)
            return ServiceResult(success=False, errors=[RANDOMNESS_UNAVAILABLE], data={
                "reason": RANDOMNESS_UNAVAILABLE,
                "fallback": True,
                "source": FALLBACK_SOURCE,
                "bytes": list(data),
            })

        self._bytes_acquired(profile, acquired)
        return ServiceResult(success=True, data={
            "source": acquired.source,
            "bytes": acquired.as_list(),
            "attempts": acquired.attempts,
        })

    def build_block(
        self,
        block_id: str,
        total_trials: Optional[int] = None,
        session_id: Optional[str] = None,
        allow_fallback: bool = False,
    ) -> ServiceResult:
        """Pre-draw a block's envelopes from the block's source profile."""
        if not block_id:
            return _rejected(BAD_REQUEST, "missing block")
        if total_trials is None:
            total_trials = self._resolver.default_trials(block_id)
        low, high = self._trial_bounds
        total = max(low, min(high, int(total_trials)))
        try:
            profile, _ = self._sourcer_for(self._resolver.profile_for_block(block_id))
        except ConfigurationError as e:
            return _rejected(BAD_REQUEST, str(e))

        try:
            batch = self._builders[profile].build_block(block_id, total, session_id=session_id)
        except ShapeError as e:
            logger.error("Block %s draw came back short: %s", block_id, e)
            return _rejected(RNG_SHORT, str(e))
        except (SourcingExhaustedError, SourcingCancelledError) as e:
            self._sourcing_failed(profile, 2 * total, e)
            if not allow_fallback:
                return _rejected(RANDOMNESS_UNAVAILABLE)
            batch = self._fallback_batch(profile, block_id, total, session_id)
            data = batch.to_dict()
            data.update({"reason": RANDOMNESS_UNAVAILABLE, "fallback": True})
            return ServiceResult(success=False, errors=[RANDOMNESS_UNAVAILABLE], data=data)

        self._record(AuditEventKind.BLOCK_BUILT, block_id, {
            "batch_id": batch.batch_id,
            "session_id": session_id,
            "profile": profile,
            "source": batch.source,
            "total": batch.total,
        })
        return ServiceResult(success=True, data=batch.to_dict())

    def probe(self, pairs: Optional[int] = None, profile: Optional[str] = None) -> ServiceResult:
        """Draw ``2 * pairs`` bytes with validation timeouts and summarize them."""
        try:
            profile, sourcer = self._sourcer_for(profile)
        except ConfigurationError as e:
            return _rejected(BAD_REQUEST, str(e))
        pairs = self._resolver.probe_pairs(pairs)

        remaining = 2 * pairs
        chunks: list[bytes] = []
        sources: list[str] = []
        try:
            while remaining > 0:
                n = min(remaining, sourcer.max_bytes)
                acquired = sourcer.acquire(n, validation=True)
                self._bytes_acquired(profile, acquired)
                chunks.append(acquired.data)
                if acquired.source not in sources:
                    sources.append(acquired.source)
                remaining -= n
        except (SourcingExhaustedError, SourcingCancelledError) as e:
            self._sourcing_failed(profile, remaining, e)
            return _rejected(RANDOMNESS_UNAVAILABLE)

        data = b"".join(chunks)
        return ServiceResult(success=True, data={
            "profile": profile,
            "sources": sources,
            "pairs": analyze_pairs(data).to_dict(),
            "symbols": symbol_distribution(data).to_dict(),
        })

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def status(self) -> ServiceResult:
        """Configured providers and breaker state. Never secret values."""
        specs = self._resolver.provider_specs(self._secrets)
        providers = {
            name: {
                "configured": spec.is_configured,
                "credential_env": spec.credential_env,
                "endpoint": spec.endpoint,
            }
            for name, spec in specs.items()
        }
        return ServiceResult(success=True, data={
            "commit_reveal_enabled": self._issuer is not None,
            "secrets": self._secrets.summary(),
            "providers": providers,
            "profiles": {p: self._resolver.profile_chain(p) for p in self._resolver.profile_names()},
            "default_profile": self._resolver.default_profile(),
            "circuits": {p: s.circuit_snapshot() for p, s in self._sourcers.items()},
        })

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _sourcer_for(self, profile: Optional[str]) -> tuple[str, FailoverSourcer]:
        name = profile or self._resolver.default_profile()
        sourcer = self._sourcers.get(name)
        if sourcer is None:
            raise ConfigurationError(f"Unknown source profile: {name}")
        return name, sourcer

    def _token_rejected(
        self,
        error: TokenError,
        operation: str,
        session_id: str,
        block_id: str,
    ) -> ServiceResult:
        reason = error.reason.value
        logger.info("Rejected %s for %s/%s: %s", operation, session_id, block_id, reason)
        self._record(AuditEventKind.TOKEN_REJECTED, session_id or "-", {
            "block": block_id,
            "operation": operation,
            "reason": reason,
        })
        return _rejected(reason)

    def _bytes_acquired(self, profile: str, acquired: AcquiredBytes) -> None:
        self._record(AuditEventKind.BYTES_ACQUIRED, profile, {
            "source": acquired.source,
            "n": len(acquired.data),
            "attempts": acquired.attempts,
            "failures": [f"{p}:{r}" for p, r in acquired.failures],
        })

    def _sourcing_failed(self, profile: str, n: int, error: Exception) -> None:
        failures = getattr(error, "failures", [])
        self._record(AuditEventKind.SOURCING_EXHAUSTED, profile, {
            "n": n,
            "failures": [f"{p}:{r}" for p, r in failures],
            "cancelled": isinstance(error, SourcingCancelledError),
        })

    def _fallback_bytes(self, profile: str, n: int) -> bytes:
        logger.warning("Serving %d fallback bytes for profile %s", n, profile)
        self._record(AuditEventKind.FALLBACK_USED, profile, {"n": n})
        return _secrets.token_bytes(n)

    def _fallback_batch(
        self,
        profile: str,
        block_id: str,
        total: int,
        session_id: Optional[str],
    ) -> BlockBatch:
        data = self._fallback_bytes(profile, 2 * total)
        server_time = datetime.now(timezone.utc).isoformat()
        return BlockBatch(
            batch_id=f"{block_id}-{server_time}",
            block_id=block_id,
            source=FALLBACK_SOURCE,
            server_time=server_time,
            envelopes=split_envelopes(data, total),
            session_id=session_id,
        )

    def _record(self, kind: AuditEventKind, subject: str, payload: dict[str, Any]) -> None:
        if self._audit_log is not None:
            self._audit_log.record(kind, subject, payload)
