"""Append-only audit trail of sourcing and commit-reveal activity.

One record per commit issued, outcome derived, token rejected, key
revealed, byte draw served or exhausted, block built and fallback used.
Records are hash-chained: each record's hash covers the previous
record's hash, so deleting or reordering lines is detected on load as
well as editing them.

Payloads never carry the derived key K, the master secret or provider
credentials.
"""

from __future__ import annotations

import enum
import hashlib
import json
import secrets
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional


GENESIS_HASH = "sha256:" + "0" * 64

# Payload keys that must never reach the log.
FORBIDDEN_PAYLOAD_KEYS = frozenset({"K", "key", "key_hex", "master_secret", "api_key", "credential"})


class AuditEventKind(str, enum.Enum):
    COMMIT_ISSUED = "commit_issued"
    OUTCOME_DERIVED = "outcome_derived"
    TOKEN_REJECTED = "token_rejected"
    KEY_REVEALED = "key_revealed"
    BYTES_ACQUIRED = "bytes_acquired"
    SOURCING_EXHAUSTED = "sourcing_exhausted"
    BLOCK_BUILT = "block_built"
    FALLBACK_USED = "fallback_used"


def _record_hash(
    event_id: str,
    kind: str,
    timestamp_utc: str,
    subject: str,
    payload: dict[str, Any],
    prev_hash: str,
) -> str:
    canonical = json.dumps(
        {
            "event_id": event_id,
            "kind": kind,
            "timestamp_utc": timestamp_utc,
            "subject": subject,
            "payload": payload,
            "prev_hash": prev_hash,
        },
        sort_keys=True,
        ensure_ascii=False,
    ).encode("utf-8")
    return f"sha256:{hashlib.sha256(canonical).hexdigest()}"


@dataclass(frozen=True)
class AuditEvent:
    """One immutable audit record.

    ``subject`` is whatever the event is about: a session id for
    commit-reveal events, a block id for batches, a profile for raw draws.
    """
    event_id: str
    kind: AuditEventKind
    timestamp_utc: str
    subject: str
    payload: dict[str, Any]
    prev_hash: str
    event_hash: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "kind": self.kind.value,
            "timestamp_utc": self.timestamp_utc,
            "subject": self.subject,
            "payload": self.payload,
            "prev_hash": self.prev_hash,
            "event_hash": self.event_hash,
        }


class AuditLog:
    """Append-only, hash-chained event log with optional JSONL persistence.

    Safe to share between request threads.
    """

    def __init__(self, storage_path: Optional[Path] = None) -> None:
        self._events: list[AuditEvent] = []
        self._storage_path = Path(storage_path) if storage_path else None
        self._lock = threading.Lock()

        if self._storage_path and self._storage_path.exists():
            self._load_from_file(self._storage_path)

    def record(
        self,
        kind: AuditEventKind,
        subject: str,
        payload: Optional[dict[str, Any]] = None,
        *,
        now: Optional[datetime] = None,
    ) -> AuditEvent:
        """Append a new event and return it.

        Raises:
            ValueError: The payload names a secret-bearing key.
            OSError: The trail file could not be written; the event is not kept.
        """
        payload = dict(payload or {})
        leaked = FORBIDDEN_PAYLOAD_KEYS.intersection(payload)
        if leaked:
            raise ValueError(f"Refusing to log secret-bearing keys: {sorted(leaked)}")

        ts = (now or datetime.now(timezone.utc)).strftime("%Y-%m-%dT%H:%M:%S.%fZ")
        event_id = f"{kind.value}-{secrets.token_hex(8)}"

        with self._lock:
            prev_hash = self._events[-1].event_hash if self._events else GENESIS_HASH
            event = AuditEvent(
                event_id=event_id,
                kind=kind,
                timestamp_utc=ts,
                subject=subject,
                payload=payload,
                prev_hash=prev_hash,
                event_hash=_record_hash(event_id, kind.value, ts, subject, payload, prev_hash),
            )
            # the chain only advances once the line is on disk
            if self._storage_path:
                with self._storage_path.open("a", encoding="utf-8") as handle:
                    handle.write(json.dumps(event.to_dict(), sort_keys=True, ensure_ascii=False) + "\n")
            self._events.append(event)
        return event

    def events(
        self,
        kind: Optional[AuditEventKind] = None,
        subject: Optional[str] = None,
    ) -> list[AuditEvent]:
        with self._lock:
            result = list(self._events)
        if kind is not None:
            result = [e for e in result if e.kind == kind]
        if subject is not None:
            result = [e for e in result if e.subject == subject]
        return result

    @property
    def count(self) -> int:
        return len(self._events)

    @property
    def last_event(self) -> Optional[AuditEvent]:
        return self._events[-1] if self._events else None

    def _load_from_file(self, path: Path) -> None:
        """Load and verify a JSONL trail.

        Fail-closed: any hash mismatch or broken chain link aborts the load.
        """
        prev_hash = GENESIS_HASH
        with path.open("r", encoding="utf-8") as handle:
            for line_num, line in enumerate(handle, 1):
                line = line.strip()
                if not line:
                    continue
                data = json.loads(line)

                if data["prev_hash"] != prev_hash:
                    raise ValueError(
                        f"Broken chain (line {line_num}): event {data['event_id']} "
                        f"follows {data['prev_hash']}, expected {prev_hash}"
                    )
                expected = _record_hash(
                    data["event_id"],
                    data["kind"],
                    data["timestamp_utc"],
                    data["subject"],
                    data["payload"],
                    data["prev_hash"],
                )
                if data["event_hash"] != expected:
                    raise ValueError(
                        f"Integrity check failed (line {line_num}): event {data['event_id']}"
                    )

                self._events.append(AuditEvent(
                    event_id=data["event_id"],
                    kind=AuditEventKind(data["kind"]),
                    timestamp_utc=data["timestamp_utc"],
                    subject=data["subject"],
                    payload=data["payload"],
                    prev_hash=data["prev_hash"],
                    event_hash=data["event_hash"],
                ))
                prev_hash = data["event_hash"]
