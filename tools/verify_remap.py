#!/usr/bin/env python3
"""Audit exported trials: recompute remap index and proof tag per trial.

Usage:
    python tools/verify_remap.py --json export.json [--block spoon_love]
    python tools/verify_remap.py --csv export.csv --secret "$HMAC_MASTER_SECRET"

The master secret is read from --secret, else HMAC_MASTER_SECRET (a
.env file at the repository root is loaded first). Exit code 0 when
every audited trial passes, 2 when any fails, 1 on usage errors.
"""

import argparse
import json
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT / "src"))

from dotenv import load_dotenv
from qrseal.audit.verifier import RemapVerifier, load_records
from qrseal.policy.secrets import MASTER_SECRET_ENV


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--json", type=Path, help="JSON export (trial rows or session docs)")
    source.add_argument("--csv", type=Path, help="CSV export, one trial per row")
    parser.add_argument("--secret", help=f"Master secret (default: ${MASTER_SECRET_ENV})")
    parser.add_argument("--block", help="Only audit trials of this block")
    parser.add_argument("--show", type=int, default=10, help="Failures to print (default: 10)")
    args = parser.parse_args(argv)

    load_dotenv(ROOT / ".env")
    secret = args.secret or os.getenv(MASTER_SECRET_ENV)
    if not secret:
        print(f"Missing master secret: pass --secret or set {MASTER_SECRET_ENV}", file=sys.stderr)
        return 1

    records = load_records(args.json or args.csv)
    report = RemapVerifier(secret).verify_records(records, block_id=args.block)

    print(f"Trials audited: {report.audited}")
    print(f"Pass: {report.passed}  Fail: {report.failed}")
    if not report.all_passed:
        print("First failures:")
        print(json.dumps(report.to_dict(max_failures=args.show)["failures"], indent=2))
        return 2
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
