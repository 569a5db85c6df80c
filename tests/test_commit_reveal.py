"""Tests for commit issue, outcome derivation and key reveal.

Proves the commit binds the key before any trial, that derivation is a
deterministic function of (key, context), and that the revealed key
lets anyone recompute every outcome.
"""

import hashlib
import random
from datetime import datetime, timedelta, timezone

import pytest

from qrseal.crypto import CommitIssuer, OutcomeDeriver, RevealAuditor
from qrseal.crypto.keys import commit_hash, derive_key
from qrseal.crypto.outcome_deriver import compute_outcome, remap_index
from qrseal.errors import ConfigurationError, TokenError, TokenRejection
from qrseal.models.commit import TrialContext
from qrseal.sourcing.probe import chi_square_uniform


MASTER = "unit-test-master-secret"
T0 = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)
OPTIONS = ("circle", "plus", "waves", "square", "star")


def _context(**overrides) -> TrialContext:
    fields = dict(
        session_id="S1",
        block_id="spoon_love",
        trial_index=1,
        press_bucket_ms=1200,
        selected_index=2,
        options=OPTIONS,
        raw_byte=17,
    )
    fields.update(overrides)
    return TrialContext(**fields)


@pytest.fixture
def issuer() -> CommitIssuer:
    return CommitIssuer(MASTER, ttl_seconds=7200)


@pytest.fixture
def deriver() -> OutcomeDeriver:
    return OutcomeDeriver(MASTER)


@pytest.fixture
def auditor() -> RevealAuditor:
    return RevealAuditor(MASTER)


class TestCommitIssuer:
    def test_requires_master_secret(self) -> None:
        with pytest.raises(ConfigurationError):
            CommitIssuer(None)
        with pytest.raises(ConfigurationError):
            CommitIssuer("")

    def test_rejects_non_positive_ttl(self) -> None:
        with pytest.raises(ValueError):
            CommitIssuer(MASTER, ttl_seconds=0)

    @pytest.mark.parametrize("session_id,block_id", [("", "b"), ("s", ""), ("", "")])
    def test_rejects_blank_ids(self, issuer: CommitIssuer, session_id: str, block_id: str) -> None:
        with pytest.raises(ValueError):
            issuer.issue(session_id, block_id)

    def test_expiry_is_issue_time_plus_ttl(self, issuer: CommitIssuer) -> None:
        issued = issuer.issue("S1", "spoon_love", now=T0)
        assert issued.expires_utc == T0 + timedelta(hours=2)

    def test_fresh_nonce_per_issue(self, issuer: CommitIssuer) -> None:
        a = issuer.issue("S1", "spoon_love", now=T0)
        b = issuer.issue("S1", "spoon_love", now=T0)
        assert a.commit_token != b.commit_token
        assert a.commit_hash != b.commit_hash

    def test_commit_hash_is_hex_sha256(self, issuer: CommitIssuer) -> None:
        issued = issuer.issue("S1", "spoon_love", now=T0)
        assert len(issued.commit_hash) == 64
        int(issued.commit_hash, 16)


class TestOutcomeDeriver:
    def test_round_trip(self, issuer: CommitIssuer, deriver: OutcomeDeriver) -> None:
        issued = issuer.issue("S1", "spoon_love", now=T0)
        outcome = deriver.derive(issued.commit_token, _context(), now=T0)
        assert 0 <= outcome.r < 5
        assert len(outcome.proof_hmac) == 16
        int(outcome.proof_hmac, 16)

    def test_deterministic(self, issuer: CommitIssuer, deriver: OutcomeDeriver) -> None:
        token = issuer.issue("S1", "spoon_love", now=T0).commit_token
        first = deriver.derive(token, _context(), now=T0)
        second = deriver.derive(token, _context(), now=T0 + timedelta(minutes=30))
        assert first == second

    def test_session_mismatch(self, issuer: CommitIssuer, deriver: OutcomeDeriver) -> None:
        token = issuer.issue("S1", "spoon_love", now=T0).commit_token
        with pytest.raises(TokenError) as info:
            deriver.derive(token, _context(session_id="S2"), now=T0)
        assert info.value.reason == TokenRejection.CLAIMS_MISMATCH

    def test_block_mismatch(self, issuer: CommitIssuer, deriver: OutcomeDeriver) -> None:
        token = issuer.issue("S1", "spoon_love", now=T0).commit_token
        with pytest.raises(TokenError) as info:
            deriver.derive(token, _context(block_id="full_stack"), now=T0)
        assert info.value.reason == TokenRejection.CLAIMS_MISMATCH

    def test_expired(self, issuer: CommitIssuer, deriver: OutcomeDeriver) -> None:
        token = issuer.issue("S1", "spoon_love", now=T0).commit_token
        with pytest.raises(TokenError) as info:
            deriver.derive(token, _context(), now=T0 + timedelta(hours=2, seconds=1))
        assert info.value.reason == TokenRejection.EXPIRED

    def test_signature_bit_flip(self, issuer: CommitIssuer, deriver: OutcomeDeriver) -> None:
        token = issuer.issue("S1", "spoon_love", now=T0).commit_token
        encoded, signature = token.split(".")
        flipped = bytearray(bytes.fromhex(signature))
        flipped[-1] ^= 0x80
        with pytest.raises(TokenError) as info:
            deriver.derive(f"{encoded}.{flipped.hex()}", _context(), now=T0)
        assert info.value.reason == TokenRejection.BAD_SIGNATURE

    def test_context_tamper_changes_proof(self) -> None:
        key = derive_key(MASTER, "S1", "spoon_love", "ab" * 16)
        base = compute_outcome(key, _context())
        for tampered in (
            _context(raw_byte=18),
            _context(trial_index=2),
            _context(press_bucket_ms=1300),
            _context(selected_index=3),
            _context(options=("plus", "circle", "waves", "square", "star")),
        ):
            assert compute_outcome(key, tampered).proof_hmac != base.proof_hmac

    def test_requires_master_secret(self) -> None:
        with pytest.raises(ConfigurationError):
            OutcomeDeriver(None)


class TestTrialContext:
    def test_canonical_key_order(self) -> None:
        canonical = _context().canonical()
        assert canonical.startswith('{"v":1,"session_id":"S1","block":"spoon_love","trial_index":1,')
        assert canonical.endswith('"raw_byte":17,"purpose":"target"}')
        assert " " not in canonical

    @pytest.mark.parametrize("overrides", [
        {"session_id": ""},
        {"trial_index": 0},
        {"options": ("circle", "plus", "waves", "square")},
        {"selected_index": 5},
        {"raw_byte": 256},
        {"raw_byte": -1},
    ])
    def test_invalid(self, overrides) -> None:
        with pytest.raises(ValueError):
            _context(**overrides)


class TestUniformity:
    def test_remap_index_is_uniform(self) -> None:
        rng = random.Random(20260301)
        key = derive_key(MASTER, "S-uniform", "spoon_love", "cd" * 16)
        counts = [0] * 5
        for trial in range(10_000):
            options = list(OPTIONS)
            rng.shuffle(options)
            context = _context(
                session_id="S-uniform",
                trial_index=trial + 1,
                press_bucket_ms=rng.randrange(0, 5000, 50),
                selected_index=rng.randrange(5),
                options=tuple(options),
                raw_byte=rng.randrange(256),
            )
            counts[remap_index(key, context)] += 1
        _, p_value = chi_square_uniform(counts)
        assert p_value > 0.01


class TestRevealAuditor:
    def test_hash_of_revealed_key_matches_commit(
        self, issuer: CommitIssuer, auditor: RevealAuditor,
    ) -> None:
        issued = issuer.issue("S1", "spoon_love", now=T0)
        revealed = auditor.reveal(issued.commit_token, "S1", "spoon_love", now=T0)
        assert hashlib.sha256(bytes.fromhex(revealed.key_hex)).hexdigest() == issued.commit_hash
        assert revealed.commit_hash == issued.commit_hash

    def test_revealed_key_reproduces_outcomes(
        self, issuer: CommitIssuer, deriver: OutcomeDeriver, auditor: RevealAuditor,
    ) -> None:
        token = issuer.issue("S1", "spoon_love", now=T0).commit_token
        contexts = [_context(trial_index=i, raw_byte=i * 7 % 256) for i in range(1, 11)]
        outcomes = [deriver.derive(token, c, now=T0) for c in contexts]
        key = bytes.fromhex(auditor.reveal(token, "S1", "spoon_love", now=T0).key_hex)
        assert [compute_outcome(key, c) for c in contexts] == outcomes
        assert commit_hash(key) == auditor.reveal(token, "S1", "spoon_love", now=T0).commit_hash

    def test_idempotent(self, issuer: CommitIssuer, auditor: RevealAuditor) -> None:
        token = issuer.issue("S1", "spoon_love", now=T0).commit_token
        assert auditor.reveal(token, "S1", "spoon_love", now=T0) == auditor.reveal(
            token, "S1", "spoon_love", now=T0 + timedelta(hours=1),
        )

    def test_mismatch(self, issuer: CommitIssuer, auditor: RevealAuditor) -> None:
        token = issuer.issue("S1", "spoon_love", now=T0).commit_token
        with pytest.raises(TokenError) as info:
            auditor.reveal(token, "S1", "full_stack", now=T0)
        assert info.value.reason == TokenRejection.CLAIMS_MISMATCH

    def test_expired(self, issuer: CommitIssuer, auditor: RevealAuditor) -> None:
        token = issuer.issue("S1", "spoon_love", now=T0).commit_token
        with pytest.raises(TokenError) as info:
            auditor.reveal(token, "S1", "spoon_love", now=T0 + timedelta(hours=3))
        assert info.value.reason == TokenRejection.EXPIRED
