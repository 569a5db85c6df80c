"""qrseal CLI — command-line interface for sealed randomness.

Usage:
    qrseal status
    qrseal commit --session S1 --block spoon_love
    qrseal derive --session S1 --block spoon_love --trial 1 --token TOKEN \\
        --selected 2 --options circle plus waves square star --raw-byte 17 --press-bucket-ms 1200
    qrseal reveal --session S1 --block spoon_love --token TOKEN
    qrseal envelopes --block spoon_love --total 36
    qrseal bytes --n 16 --profile quantum
    qrseal probe --pairs 500
    qrseal verify --input export.json --block spoon_love
    qrseal serve --port 8000
    qrseal check-invariants
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from qrseal.audit.verifier import RemapVerifier, load_records
from qrseal.errors import ConfigurationError
from qrseal.persistence.event_log import AuditLog
from qrseal.policy.resolver import PolicyResolver
from qrseal.policy.secrets import Secrets
from qrseal.service import SealService, ServiceResult


DEFAULT_CONFIG = Path(__file__).resolve().parents[2] / "config"
DEFAULT_ENV_FILE = Path(".env")

VERIFY_FAILED_EXIT = 2


def _make_service(args: argparse.Namespace) -> SealService:
    resolver = PolicyResolver.from_config_dir(args.config)
    secrets = Secrets.from_environment(args.env_file)
    audit_log = AuditLog(storage_path=args.audit_log) if args.audit_log else None
    return SealService(resolver, secrets, audit_log=audit_log)


def _emit(result: ServiceResult) -> int:
    if result.success:
        print(json.dumps(result.data, indent=2, default=str))
        return 0
    if result.data.get("fallback"):
        # flagged fallback data is still printed so the caller can inspect it
        print(json.dumps(result.data, indent=2, default=str))
    print(f"Failed: {'; '.join(result.errors)}", file=sys.stderr)
    return 1


def cmd_status(args: argparse.Namespace) -> int:
    return _emit(_make_service(args).status())


def cmd_commit(args: argparse.Namespace) -> int:
    return _emit(_make_service(args).issue_commit(args.session, args.block))


def cmd_derive(args: argparse.Namespace) -> int:
    service = _make_service(args)
    result = service.derive_outcome(
        session_id=args.session,
        block_id=args.block,
        trial_index=args.trial,
        commit_token=args.token,
        selected_index=args.selected,
        options=args.options,
        raw_byte=args.raw_byte,
        press_bucket_ms=args.press_bucket_ms,
    )
    return _emit(result)


def cmd_reveal(args: argparse.Namespace) -> int:
    return _emit(_make_service(args).reveal_key(args.session, args.block, args.token))


def cmd_envelopes(args: argparse.Namespace) -> int:
    service = _make_service(args)
    result = service.build_block(
        args.block,
        total_trials=args.total,
        session_id=args.session,
        allow_fallback=args.allow_fallback,
    )
    return _emit(result)


def cmd_bytes(args: argparse.Namespace) -> int:
    service = _make_service(args)
    result = service.acquire_bytes(
        args.n,
        profile=args.profile,
        validation=args.validation,
        allow_fallback=args.allow_fallback,
    )
    return _emit(result)


def cmd_probe(args: argparse.Namespace) -> int:
    return _emit(_make_service(args).probe(args.pairs, profile=args.profile))


def cmd_verify(args: argparse.Namespace) -> int:
    """Audit exported trials. Exit 0 when all pass, 2 on any failure."""
    secrets = Secrets.from_environment(args.env_file)
    try:
        verifier = RemapVerifier(secrets.master_secret)
        records = load_records(args.input)
    except (ConfigurationError, OSError, ValueError) as e:
        print(f"Failed: {e}", file=sys.stderr)
        return 1

    report = verifier.verify_records(records, block_id=args.block)
    print(json.dumps(report.to_dict(), indent=2))
    return 0 if report.all_passed else VERIFY_FAILED_EXIT


def cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    from qrseal.api import create_app

    app = create_app(_make_service(args))
    uvicorn.run(app, host=args.host, port=args.port, log_level=args.log_level.lower())
    return 0


def cmd_check_invariants(args: argparse.Namespace) -> int:
    """Run policy invariant checks against the config directory."""
    tools_dir = Path(__file__).resolve().parents[2] / "tools"
    sys.path.insert(0, str(tools_dir))
    from check_invariants import check
    return check(Path(args.config) / "runtime_policy.json")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="qrseal",
        description="qrseal — sealed randomness and commit-reveal CLI",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG,
        help="Path to config directory (default: config/)",
    )
    parser.add_argument(
        "--env-file",
        type=Path,
        default=DEFAULT_ENV_FILE,
        help="Optional .env file with secrets (default: .env)",
    )
    parser.add_argument(
        "--audit-log",
        type=Path,
        help="Append audit events to this JSONL file",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
    )
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("status", help="Show providers, credentials present and circuit state")

    p_commit = sub.add_parser("commit", help="Issue a commit token for a block")
    p_commit.add_argument("--session", required=True, help="Session ID")
    p_commit.add_argument("--block", required=True, help="Block ID")

    p_derive = sub.add_parser("derive", help="Derive a trial's remap index")
    p_derive.add_argument("--session", required=True, help="Session ID")
    p_derive.add_argument("--block", required=True, help="Block ID")
    p_derive.add_argument("--trial", type=int, required=True, help="1-based trial index")
    p_derive.add_argument("--token", required=True, help="Commit token")
    p_derive.add_argument("--selected", type=int, required=True, help="Selected option, 0-4")
    p_derive.add_argument("--options", nargs=5, required=True, help="Five option ids in display order")
    p_derive.add_argument("--raw-byte", type=int, required=True)
    p_derive.add_argument("--press-bucket-ms", type=int, required=True)

    p_reveal = sub.add_parser("reveal", help="Reveal the committed key for a block")
    p_reveal.add_argument("--session", required=True, help="Session ID")
    p_reveal.add_argument("--block", required=True, help="Block ID")
    p_reveal.add_argument("--token", required=True, help="Commit token")

    p_env = sub.add_parser("envelopes", help="Pre-draw a block's envelopes")
    p_env.add_argument("--block", required=True, help="Block ID")
    p_env.add_argument("--total", type=int, help="Trials in the block (default: per policy)")
    p_env.add_argument("--session", help="Session ID to stamp on the batch")
    p_env.add_argument("--allow-fallback", action="store_true")

    p_bytes = sub.add_parser("bytes", help="Draw raw bytes")
    p_bytes.add_argument("--n", type=int, default=2, help="Byte count (default: 2)")
    p_bytes.add_argument("--profile", help="Source profile (default: per policy)")
    p_bytes.add_argument("--validation", action="store_true", help="Use validation timeouts")
    p_bytes.add_argument("--allow-fallback", action="store_true")

    p_probe = sub.add_parser("probe", help="Parity and symbol statistics on fresh bytes")
    p_probe.add_argument("--pairs", type=int, help="Byte pairs to draw")
    p_probe.add_argument("--profile", help="Source profile (default: per policy)")

    p_verify = sub.add_parser("verify", help="Audit exported trials offline")
    p_verify.add_argument("--input", type=Path, required=True, help="JSON or CSV export")
    p_verify.add_argument("--block", help="Only audit trials of this block")

    p_serve = sub.add_parser("serve", help="Run the HTTP API")
    p_serve.add_argument("--host", default="127.0.0.1")
    p_serve.add_argument("--port", type=int, default=8000)

    sub.add_parser("check-invariants", help="Check runtime policy invariants")

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    commands = {
        "status": cmd_status,
        "commit": cmd_commit,
        "derive": cmd_derive,
        "reveal": cmd_reveal,
        "envelopes": cmd_envelopes,
        "bytes": cmd_bytes,
        "probe": cmd_probe,
        "verify": cmd_verify,
        "serve": cmd_serve,
        "check-invariants": cmd_check_invariants,
    }

    handler = commands.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 1

    try:
        return handler(args)
    except ConfigurationError as e:
        print(f"Failed: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
