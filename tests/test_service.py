"""Tests for SealService — proves results, reasons and audit events per operation."""

import hashlib
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from fakes import FakeAdapter, make_sourcer
from qrseal.errors import FailureKind
from qrseal.persistence.event_log import AuditEventKind, AuditLog
from qrseal.policy.resolver import PolicyResolver
from qrseal.policy.secrets import Secrets
from qrseal.service import SealService


CONFIG_DIR = Path(__file__).resolve().parents[1] / "config"
MASTER = "service-test-master"
OPTIONS = ["circle", "plus", "waves", "square", "star"]
T0 = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def _service(
    quantum=None,
    baseline=None,
    master=MASTER,
    audit_log=None,
) -> SealService:
    resolver = PolicyResolver.from_config_dir(CONFIG_DIR)
    sourcers = {
        "quantum": make_sourcer(*(quantum or [FakeAdapter("lfdr")])),
        "baseline": make_sourcer(*(baseline or [FakeAdapter("random_org")])),
    }
    return SealService(
        resolver,
        Secrets(master_secret=master),
        audit_log=audit_log,
        sourcers=sourcers,
    )


def _failing(name: str) -> FakeAdapter:
    return FakeAdapter(name, [FailureKind.PERMANENT] * 10)


def _derive(service: SealService, token: str, **overrides):
    fields = dict(
        session_id="S1",
        block_id="spoon_love",
        trial_index=1,
        commit_token=token,
        selected_index=2,
        options=OPTIONS,
        raw_byte=17,
        press_bucket_ms=1200,
    )
    fields.update(overrides)
    return service.derive_outcome(**fields)


@pytest.fixture
def audit_log() -> AuditLog:
    return AuditLog()


class TestCommitReveal:
    def test_issue(self, audit_log: AuditLog) -> None:
        result = _service(audit_log=audit_log).issue_commit("S1", "spoon_love")
        assert result.success
        assert set(result.data) == {"commit_token", "commit_hash", "expires_utc"}
        event = audit_log.events(AuditEventKind.COMMIT_ISSUED)[0]
        assert event.subject == "S1"
        assert event.payload["commit_hash"] == result.data["commit_hash"]

    def test_issue_blank_ids(self) -> None:
        result = _service().issue_commit("", "spoon_love")
        assert not result.success
        assert result.reason == "bad_request"

    def test_derive_and_reveal(self, audit_log: AuditLog) -> None:
        service = _service(audit_log=audit_log)
        commit = service.issue_commit("S1", "spoon_love").data
        derived = _derive(service, commit["commit_token"])
        assert derived.success
        assert 0 <= derived.data["r"] < 5
        assert len(derived.data["proof_hmac"]) == 16
        assert "server_time" in derived.data

        revealed = service.reveal_key("S1", "spoon_love", commit["commit_token"])
        assert revealed.success
        assert revealed.data["commit_hash"] == commit["commit_hash"]
        assert hashlib.sha256(bytes.fromhex(revealed.data["K"])).hexdigest() == commit["commit_hash"]

        kinds = [e.kind for e in audit_log.events()]
        assert kinds == [
            AuditEventKind.COMMIT_ISSUED,
            AuditEventKind.OUTCOME_DERIVED,
            AuditEventKind.KEY_REVEALED,
        ]
        # K itself never reaches the trail
        assert all(revealed.data["K"] not in str(e.payload) for e in audit_log.events())

    def test_derive_mismatch(self, audit_log: AuditLog) -> None:
        service = _service(audit_log=audit_log)
        token = service.issue_commit("S1", "spoon_love").data["commit_token"]
        result = _derive(service, token, block_id="full_stack")
        assert not result.success
        assert result.errors == ["claims_mismatch"]
        assert result.reason == "claims_mismatch"
        event = audit_log.events(AuditEventKind.TOKEN_REJECTED)[0]
        assert event.payload == {"block": "full_stack", "operation": "derive", "reason": "claims_mismatch"}

    def test_derive_bad_options(self) -> None:
        service = _service()
        token = service.issue_commit("S1", "spoon_love").data["commit_token"]
        result = _derive(service, token, options=OPTIONS[:4])
        assert result.reason == "bad_request"

    def test_derive_expired(self) -> None:
        service = _service()
        token = service.issue_commit("S1", "spoon_love", now=T0).data["commit_token"]
        result = _derive(service, token, now=T0 + timedelta(hours=2, seconds=1))
        assert result.reason == "token_expired"

    def test_reveal_forged_token(self) -> None:
        service = _service()
        token = service.issue_commit("S1", "spoon_love").data["commit_token"]
        forged = token[:-1] + ("0" if token[-1] != "0" else "1")
        assert service.reveal_key("S1", "spoon_love", forged).reason == "bad_signature"

    def test_master_secret_missing(self) -> None:
        service = _service(master=None)
        assert service.issue_commit("S1", "b").reason == "master_secret_missing"
        assert _derive(service, "x.y").reason == "master_secret_missing"
        assert service.reveal_key("S1", "b", "x.y").reason == "master_secret_missing"
        # sourcing keeps working without the master secret
        assert service.acquire_bytes(4).success


class TestAcquireBytes:
    def test_success(self, audit_log: AuditLog) -> None:
        result = _service(audit_log=audit_log).acquire_bytes(16)
        assert result.success
        assert result.data["source"] == "lfdr"
        assert len(result.data["bytes"]) == 16
        assert all(0 <= b <= 255 for b in result.data["bytes"])
        assert audit_log.events(AuditEventKind.BYTES_ACQUIRED)[0].payload["n"] == 16

    def test_n_clamped(self) -> None:
        adapter = FakeAdapter("lfdr")
        service = _service(quantum=[adapter])
        service.acquire_bytes(5000)
        service.acquire_bytes(0)
        assert [n for n, _ in adapter.calls] == [1024, 1]

    def test_profile_selects_chain(self) -> None:
        result = _service().acquire_bytes(4, profile="baseline")
        assert result.data["source"] == "random_org"

    def test_unknown_profile(self) -> None:
        assert _service().acquire_bytes(4, profile="classical").reason == "bad_request"

    def test_exhausted_is_generic(self, audit_log: AuditLog) -> None:
        service = _service(quantum=[_failing("outshift"), _failing("lfdr")], audit_log=audit_log)
        result = service.acquire_bytes(4)
        assert not result.success
        assert result.errors == ["randomness_unavailable"]
        assert result.data == {"reason": "randomness_unavailable"}
        event = audit_log.events(AuditEventKind.SOURCING_EXHAUSTED)[0]
        assert event.payload["failures"] == ["outshift:http_404", "lfdr:http_404"]

    def test_fallback_only_when_allowed(self, audit_log: AuditLog) -> None:
        service = _service(quantum=[_failing("lfdr")], audit_log=audit_log)
        result = service.acquire_bytes(8, allow_fallback=True)
        assert not result.success
        assert result.data["fallback"] is True
        assert result.data["source"] == "fallback_prng"
        assert len(result.data["bytes"]) == 8
        assert len(audit_log.events(AuditEventKind.FALLBACK_USED)) == 1


class TestBuildBlock:
    def test_default_total_and_profile(self, audit_log: AuditLog) -> None:
        quantum = FakeAdapter("lfdr")
        service = _service(quantum=[quantum], audit_log=audit_log)
        result = service.build_block("spoon_love", session_id="S1")
        assert result.success
        assert result.data["total"] == 36
        assert result.data["source"] == "lfdr"
        assert result.data["session_id"] == "S1"
        assert quantum.calls[0][0] == 72
        assert audit_log.events(AuditEventKind.BLOCK_BUILT)[0].payload["total"] == 36

    def test_full_stack_uses_baseline(self) -> None:
        result = _service().build_block("full_stack")
        assert result.data["source"] == "random_org"
        assert result.data["total"] == 18

    def test_total_clamped(self) -> None:
        assert _service().build_block("spoon_love", total_trials=500).data["total"] == 100
        assert _service().build_block("spoon_love", total_trials=-3).data["total"] == 1

    def test_short_draw(self) -> None:
        result = _service(quantum=[FakeAdapter("lfdr", [bytes(5)])]).build_block("spoon_love", 10)
        assert result.reason == "rng_short"

    def test_exhausted(self) -> None:
        result = _service(quantum=[_failing("lfdr")]).build_block("spoon_love", 10)
        assert result.reason == "randomness_unavailable"

    def test_fallback_batch_flagged(self) -> None:
        result = _service(quantum=[_failing("lfdr")]).build_block(
            "spoon_love", 10, allow_fallback=True,
        )
        assert not result.success
        assert result.data["fallback"] is True
        assert result.data["source"] == "fallback_prng"
        assert len(result.data["envelopes"]) == 10

    def test_blank_block(self) -> None:
        assert _service().build_block("").reason == "bad_request"


class TestProbe:
    def test_large_probe_chunks_draws(self) -> None:
        adapter = FakeAdapter("lfdr")
        result = _service(quantum=[adapter]).probe(600)
        assert result.success
        assert [n for n, _ in adapter.calls] == [1024, 176]
        assert all(timeout == 10.0 for _, timeout in adapter.calls)
        assert result.data["pairs"]["n"] == 600
        assert sum(result.data["symbols"]["counts"]) == 1200
        assert result.data["sources"] == ["lfdr"]

    def test_probe_unavailable(self) -> None:
        assert _service(quantum=[_failing("lfdr")]).probe(10).reason == "randomness_unavailable"


class TestStatus:
    def test_reports_presence_not_values(self) -> None:
        result = _service().status()
        assert result.success
        data = result.data
        assert data["commit_reveal_enabled"] is True
        assert data["secrets"]["HMAC_MASTER_SECRET"]["present"] is True
        assert MASTER not in str(data)
        assert data["profiles"]["quantum"] == ["outshift", "lfdr", "anu"]
        assert set(data["circuits"]) == {"quantum", "baseline"}
        assert data["providers"]["lfdr"]["configured"] is True
        assert data["providers"]["anu"]["configured"] is False
