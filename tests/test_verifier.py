"""Tests for the offline remap verifier and its record loaders."""

import csv
import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from qrseal.audit.verifier import RemapVerifier, flatten_records, load_records
from qrseal.crypto import CommitIssuer, OutcomeDeriver
from qrseal.crypto.remap import resolve_indices
from qrseal.errors import ConfigurationError
from qrseal.models.commit import TrialContext
from verify_remap import main as verify_remap_main


MASTER = "unit-test-master-secret"
T0 = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)
OPTIONS = ["star", "circle", "square", "plus", "waves"]


def _trial_rows(session_id="S1", block="spoon_love", count=5) -> list[dict]:
    """Rows as the presentation layer would store them."""
    token = CommitIssuer(MASTER).issue(session_id, block, now=T0).commit_token
    deriver = OutcomeDeriver(MASTER)
    rows = []
    for i in range(1, count + 1):
        raw, ghost = (i * 53) % 256, (i * 91 + 7) % 256
        context = TrialContext(
            session_id=session_id,
            block_id=block,
            trial_index=i,
            press_bucket_ms=1000 + 50 * i,
            selected_index=i % 5,
            options=tuple(OPTIONS),
            raw_byte=raw,
        )
        outcome = deriver.derive(token, context, now=T0)
        resolved = resolve_indices(raw, ghost, OPTIONS, outcome.r)
        rows.append({
            "session_id": session_id,
            "block": block,
            "trial_index": i,
            "commit_token": token,
            "press_bucket_ms": context.press_bucket_ms,
            "selected_index": context.selected_index,
            "options": list(OPTIONS),
            "raw_byte": raw,
            "ghost_raw_byte": ghost,
            "remap_proof": outcome.proof_hmac,
            "target_index_0based": resolved.target_index,
            "ghost_index_0based": resolved.ghost_index,
        })
    return rows


@pytest.fixture
def verifier() -> RemapVerifier:
    return RemapVerifier(MASTER)


class TestVerifyRecord:
    def test_valid_rows_pass(self, verifier: RemapVerifier) -> None:
        report = verifier.verify_records(_trial_rows())
        assert report.audited == 5
        assert report.all_passed
        assert all(v.proof_ok and v.index_ok for v in report.verdicts)

    def test_expiry_not_applied(self, verifier: RemapVerifier) -> None:
        # tokens issued in the past are long expired by the time of the audit
        old = _trial_rows()
        assert datetime.now(timezone.utc) > T0 + timedelta(hours=2)
        assert verifier.verify_records(old).all_passed

    def test_proof_tamper(self, verifier: RemapVerifier) -> None:
        row = _trial_rows(count=1)[0]
        row["remap_proof"] = "0" * 16
        verdict = verifier.verify_record(row)
        assert not verdict.ok
        assert verdict.reason == "proof_mismatch"
        assert verdict.index_ok

    def test_raw_byte_tamper(self, verifier: RemapVerifier) -> None:
        row = _trial_rows(count=1)[0]
        row["raw_byte"] = (row["raw_byte"] + 1) % 256
        verdict = verifier.verify_record(row)
        assert not verdict.ok
        assert not verdict.proof_ok

    def test_index_tamper(self, verifier: RemapVerifier) -> None:
        row = _trial_rows(count=1)[0]
        row["target_index_0based"] = (row["target_index_0based"] + 1) % 5
        verdict = verifier.verify_record(row)
        assert verdict.proof_ok
        assert verdict.reason == "index_mismatch"

    def test_wrong_secret(self) -> None:
        verdict = RemapVerifier("other-secret").verify_record(_trial_rows(count=1)[0])
        assert verdict.reason == "bad_signature"

    def test_wrong_session(self, verifier: RemapVerifier) -> None:
        row = _trial_rows(count=1)[0]
        row["session_id"] = "S2"
        assert verifier.verify_record(row).reason == "claims_mismatch"

    def test_missing_field(self, verifier: RemapVerifier) -> None:
        row = _trial_rows(count=1)[0]
        del row["ghost_raw_byte"]
        assert verifier.verify_record(row).reason == "bad_record"

    def test_accepts_proof_hmac_and_block_id_names(self, verifier: RemapVerifier) -> None:
        row = _trial_rows(count=1)[0]
        row["proof_hmac"] = row.pop("remap_proof")
        row["block_id"] = row.pop("block")
        assert verifier.verify_record(row).ok

    def test_block_filter(self, verifier: RemapVerifier) -> None:
        rows = _trial_rows(block="spoon_love", count=3) + _trial_rows(block="full_stack", count=2)
        assert verifier.verify_records(rows, block_id="full_stack").audited == 2

    def test_requires_secret(self) -> None:
        with pytest.raises(ConfigurationError):
            RemapVerifier(None)

    def test_report_dict(self, verifier: RemapVerifier) -> None:
        rows = _trial_rows(count=3)
        rows[1]["remap_proof"] = "ff" * 8
        data = verifier.verify_records(rows).to_dict()
        assert (data["audited"], data["passed"], data["failed"]) == (3, 2, 1)
        assert data["failures"][0]["trial_index"] == 2


class TestLoaders:
    def test_session_documents_flattened(self) -> None:
        rows = _trial_rows(count=2)
        for row in rows:
            del row["session_id"]
            del row["block"]
        doc = {"session_id": "S1", "spoon_love_trials": rows, "details": {"trialDetails": {}}}
        flat = flatten_records([doc])
        assert len(flat) == 2
        assert flat[0]["session_id"] == "S1"
        assert flat[0]["block"] == "spoon_love"
        assert RemapVerifier(MASTER).verify_records(flat).all_passed

    def test_nested_trial_details(self) -> None:
        rows = _trial_rows(count=2)
        doc = {"session_id": "S1", "details": {"trialDetails": {"spoon_love_trials": rows}}}
        assert len(flatten_records([doc])) == 2

    @pytest.mark.parametrize("details", ["exported", ["x"], {"trialDetails": "none"}, None])
    def test_odd_details_ignored(self, details) -> None:
        doc = {"session_id": "S1", "spoon_love_trials": _trial_rows(count=2), "details": details}
        assert len(flatten_records([doc])) == 2

    def test_malformed_csv_options_fail_one_row(self, tmp_path: Path) -> None:
        rows = _trial_rows(count=3)
        path = tmp_path / "export.csv"
        with path.open("w", encoding="utf-8", newline="") as handle:
            writer = csv.DictWriter(handle, fieldnames=list(rows[0]))
            writer.writeheader()
            for i, row in enumerate(rows):
                options = "[circle, plus" if i == 1 else json.dumps(row["options"])
                writer.writerow({**row, "options": options})

        report = RemapVerifier(MASTER).verify_records(load_records(path))
        assert (report.audited, report.passed, report.failed) == (3, 2, 1)
        assert report.failures()[0].reason == "bad_record"
        assert report.failures()[0].trial_index == 2

    def test_flat_rows_pass_through(self) -> None:
        rows = _trial_rows(count=3)
        assert flatten_records(rows) == rows

    def test_json_file(self, tmp_path: Path) -> None:
        path = tmp_path / "export.json"
        path.write_text(json.dumps({"session_id": "S1", "spoon_love_trials": _trial_rows(count=2)}))
        assert len(load_records(path)) == 2

    def test_csv_file(self, tmp_path: Path) -> None:
        rows = _trial_rows(count=3)
        path = tmp_path / "export.csv"
        with path.open("w", encoding="utf-8", newline="") as handle:
            writer = csv.DictWriter(handle, fieldnames=list(rows[0]))
            writer.writeheader()
            for row in rows:
                writer.writerow({**row, "options": json.dumps(row["options"])})
        loaded = load_records(path)
        assert loaded[0]["options"] == OPTIONS
        assert RemapVerifier(MASTER).verify_records(loaded).all_passed


class TestVerifyRemapTool:
    def test_all_pass_exit_zero(self, tmp_path: Path, capsys) -> None:
        path = tmp_path / "export.json"
        path.write_text(json.dumps(_trial_rows(count=4)))
        assert verify_remap_main(["--json", str(path), "--secret", MASTER]) == 0
        assert "Pass: 4  Fail: 0" in capsys.readouterr().out

    def test_failure_exit_two(self, tmp_path: Path) -> None:
        rows = _trial_rows(count=2)
        rows[0]["ghost_index_0based"] = (rows[0]["ghost_index_0based"] + 2) % 5
        path = tmp_path / "export.json"
        path.write_text(json.dumps(rows))
        assert verify_remap_main(["--json", str(path), "--secret", MASTER]) == 2
