"""Independent remap verifier — re-checks stored trials after the fact.

Given exported trial records and the master secret, recompute every
trial's remap index and proof tag from its commit token and context,
resolve the on-screen indices, and compare against what was stored.
Token expiry is not applied: audits run long after a block's lifetime.

Accepted inputs:
- a flat list of trial rows;
- session documents carrying ``<block>_trials`` arrays, either at the
  top level or under ``details.trialDetails``;
- CSV exports with one trial per row (``options`` as a JSON array).
"""

from __future__ import annotations

import csv
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Optional

from qrseal.crypto.keys import constant_time_equal, derive_key
from qrseal.crypto.outcome_deriver import compute_outcome
from qrseal.crypto.remap import resolve_indices
from qrseal.crypto.token import verify_token
from qrseal.errors import ConfigurationError, TokenError
from qrseal.models.commit import TrialContext


TRIALS_SUFFIX = "_trials"


@dataclass(frozen=True)
class TrialVerdict:
    session_id: str
    block_id: str
    trial_index: Optional[int]
    ok: bool
    reason: Optional[str] = None
    r: Optional[int] = None
    proof_ok: bool = False
    index_ok: bool = False
    target_index: Optional[int] = None
    ghost_index: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "block": self.block_id,
            "trial_index": self.trial_index,
            "ok": self.ok,
            "reason": self.reason,
            "r": self.r,
            "proof_ok": self.proof_ok,
            "index_ok": self.index_ok,
            "target_index_0based": self.target_index,
            "ghost_index_0based": self.ghost_index,
        }


@dataclass(frozen=True)
class VerificationReport:
    verdicts: tuple[TrialVerdict, ...] = field(default_factory=tuple)

    @property
    def audited(self) -> int:
        return len(self.verdicts)

    @property
    def passed(self) -> int:
        return sum(1 for v in self.verdicts if v.ok)

    @property
    def failed(self) -> int:
        return self.audited - self.passed

    @property
    def all_passed(self) -> bool:
        return self.failed == 0

    def failures(self) -> list[TrialVerdict]:
        return [v for v in self.verdicts if not v.ok]

    def to_dict(self, max_failures: int = 10) -> dict[str, Any]:
        return {
            "audited": self.audited,
            "passed": self.passed,
            "failed": self.failed,
            "failures": [v.to_dict() for v in self.failures()[:max_failures]],
        }


class RemapVerifier:
    """Verifies stored trial records against the master secret.

    Usage:
        verifier = RemapVerifier(master_secret)
        report = verifier.verify_records(load_records(Path("export.json")))
        report.all_passed
    """

    def __init__(self, master_secret: Optional[str]) -> None:
        if not master_secret:
            raise ConfigurationError("HMAC_MASTER_SECRET missing")
        self._master = master_secret

    def verify_records(
        self,
        records: Iterable[dict[str, Any]],
        block_id: Optional[str] = None,
    ) -> VerificationReport:
        """Verify every record, optionally only those of one block."""
        verdicts = []
        for record in records:
            if block_id is not None and _block_of(record) != block_id:
                continue
            verdicts.append(self.verify_record(record))
        return VerificationReport(verdicts=tuple(verdicts))

    def verify_record(self, record: dict[str, Any]) -> TrialVerdict:
        session_id = str(record.get("session_id") or "")
        block_id = _block_of(record)
        trial_index = _as_int(record.get("trial_index"))

        def fail(reason: str, **extra: Any) -> TrialVerdict:
            return TrialVerdict(session_id, block_id, trial_index, ok=False, reason=reason, **extra)

        try:
            context = TrialContext(
                session_id=session_id,
                block_id=block_id,
                trial_index=_require_int(record, "trial_index"),
                press_bucket_ms=_require_int(record, "press_bucket_ms"),
                selected_index=_require_int(record, "selected_index"),
                options=tuple(_options_of(record)),
                raw_byte=_require_int(record, "raw_byte"),
            )
            ghost_raw_byte = _require_int(record, "ghost_raw_byte")
        except (KeyError, TypeError, ValueError):
            return fail("bad_record")

        try:
            payload = verify_token(
                record.get("commit_token"),
                self._master,
                expected_session=session_id,
                expected_block=block_id,
                check_expiry=False,
            )
        except TokenError as exc:
            return fail(exc.reason.value)

        key = derive_key(self._master, payload.session_id, payload.block_id, payload.nonce)
        outcome = compute_outcome(key, context)
        stored_proof = str(record.get("proof_hmac") or record.get("remap_proof") or "").lower()
        proof_ok = bool(stored_proof) and constant_time_equal(stored_proof, outcome.proof_hmac)

        try:
            resolved = resolve_indices(context.raw_byte, ghost_raw_byte, context.options, outcome.r)
        except ValueError as exc:
            return fail(str(exc), r=outcome.r, proof_ok=proof_ok)

        index_ok = (
            _as_int(record.get("target_index_0based")) == resolved.target_index
            and _as_int(record.get("ghost_index_0based")) == resolved.ghost_index
        )
        reason = None
        if not proof_ok:
            reason = "proof_mismatch"
        elif not index_ok:
            reason = "index_mismatch"
        return TrialVerdict(
            session_id,
            block_id,
            trial_index,
            ok=proof_ok and index_ok,
            reason=reason,
            r=outcome.r,
            proof_ok=proof_ok,
            index_ok=index_ok,
            target_index=resolved.target_index,
            ghost_index=resolved.ghost_index,
        )


# ------------------------------------------------------------------
# Record loading
# ------------------------------------------------------------------

def load_records(path: Path) -> list[dict[str, Any]]:
    """Load trial rows from a .csv file or a JSON export."""
    path = Path(path)
    with path.open("r", encoding="utf-8", newline="") as handle:
        if path.suffix.lower() == ".csv":
            return [_normalize_csv_row(row) for row in csv.DictReader(handle)]
        data = json.load(handle)
    return flatten_records(data if isinstance(data, list) else [data])


def flatten_records(documents: Iterable[dict[str, Any]]) -> list[dict[str, Any]]:
    """Pull trial rows out of session documents; pass flat rows through."""
    rows: list[dict[str, Any]] = []
    for doc in documents:
        if not isinstance(doc, dict):
            continue
        details = doc.get("details")
        nested = details.get("trialDetails") if isinstance(details, dict) else None
        if not isinstance(nested, dict):
            nested = {}
        for source in (doc, nested):
            for key, value in source.items():
                if key.endswith(TRIALS_SUFFIX) and isinstance(value, list):
                    block = key[: -len(TRIALS_SUFFIX)]
                    for trial in value:
                        if isinstance(trial, dict):
                            rows.append(_inherit(trial, doc, block))
        if "trial_index" in doc and _block_of(doc):
            rows.append(doc)
    return rows


def _inherit(trial: dict[str, Any], doc: dict[str, Any], block: str) -> dict[str, Any]:
    """Trials nested in a session doc may omit the session and block ids."""
    row = dict(trial)
    if not row.get("session_id") and doc.get("session_id"):
        row["session_id"] = doc["session_id"]
    if not _block_of(row):
        row["block"] = block
    return row


def _normalize_csv_row(row: dict[str, Any]) -> dict[str, Any]:
    out = {k.strip(): (v.strip() if isinstance(v, str) else v) for k, v in row.items() if k}
    for key in ("options", "option_ids"):
        value = out.get(key)
        if isinstance(value, str) and value.startswith("["):
            try:
                out[key] = json.loads(value)
            except ValueError:
                # left as text; the row then fails on its own as bad_record
                continue
    return out


def _block_of(record: dict[str, Any]) -> str:
    return str(record.get("block") or record.get("block_id") or record.get("block_type") or "")


def _options_of(record: dict[str, Any]) -> list[str]:
    options = record.get("options") or record.get("option_ids")
    if not isinstance(options, list):
        raise ValueError("options missing")
    return [str(o) for o in options]


def _require_int(record: dict[str, Any], key: str) -> int:
    value = _as_int(record.get(key))
    if value is None:
        raise KeyError(key)
    return value


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool) or value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
