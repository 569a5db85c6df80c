#!/usr/bin/env python3
"""qrseal invariant checks against the runtime policy file."""

import json
import sys
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]
POLICY_PATH = ROOT / "config" / "runtime_policy.json"

QUANTUM_PROVIDERS = {"outshift", "lfdr", "anu"}
VALID_DECODINGS = {"hex_string", "base64_decimal_rows", "integer_array"}


def load_json(path: Path) -> dict:
    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)


def check_providers(providers: dict, errors: list[str]) -> None:
    """Every provider needs a bounded timeout and a known decoding."""
    for name, spec in providers.items():
        timeout = spec.get("timeout_seconds", 0)
        if timeout <= 0:
            errors.append(f"provider {name}: timeout_seconds must be > 0")
        if spec.get("validation_timeout_seconds", timeout) < timeout:
            errors.append(f"provider {name}: validation timeout cannot be shorter than the live timeout")
        if spec.get("retries", 0) < 0:
            errors.append(f"provider {name}: retries must be >= 0")
        if spec.get("decoding") not in VALID_DECODINGS:
            errors.append(f"provider {name}: unknown decoding {spec.get('decoding')!r}")
        if not str(spec.get("endpoint", "")).startswith("https://"):
            errors.append(f"provider {name}: endpoint must be https")


def check(policy_path: Path = POLICY_PATH) -> int:
    policy = load_json(policy_path)
    errors: list[str] = []

    # --- Commit protocol ---
    if policy.get("commit", {}).get("token_ttl_seconds", 0) <= 0:
        errors.append("commit.token_ttl_seconds must be > 0")

    # --- Sourcing ---
    sourcing = policy["sourcing"]
    providers = policy["providers"]
    profiles = sourcing.get("profiles", {})
    if sourcing.get("circuit_failure_threshold", 0) < 1:
        errors.append("circuit_failure_threshold must be >= 1")
    if sourcing.get("circuit_cooldown_seconds", 0) <= 0:
        errors.append("circuit_cooldown_seconds must be > 0")
    if sourcing.get("retry_delay_seconds", 0) < 0:
        errors.append("retry_delay_seconds must be >= 0")
    if sourcing.get("default_profile") not in profiles:
        errors.append("default_profile must name a defined profile")
    for profile, chain in profiles.items():
        if not chain:
            errors.append(f"profile {profile} has no providers")
        if len(set(chain)) != len(chain):
            errors.append(f"profile {profile} lists a provider twice")
        for name in chain:
            if name not in providers:
                errors.append(f"profile {profile} names unknown provider {name}")
    leaked = set(profiles.get("quantum", [])) - QUANTUM_PROVIDERS
    if leaked:
        errors.append(f"quantum profile must not mix in non-quantum providers: {sorted(leaked)}")

    check_providers(providers, errors)

    # --- Blocks ---
    blocks = policy["blocks"]
    low, high = blocks.get("min_trials", 1), blocks.get("max_trials", 100)
    if not 1 <= low <= high:
        errors.append("blocks: require 1 <= min_trials <= max_trials")
    if 2 * high > sourcing.get("max_bytes_per_call", 0):
        errors.append("max_bytes_per_call must cover a full block in one draw (2 * max_trials)")
    for block, total in {"default": blocks.get("default_trials", 18), **blocks.get("trials", {})}.items():
        if not low <= total <= high:
            errors.append(f"block {block}: {total} trials outside [{low}, {high}]")
    for block, profile in blocks.get("profiles", {}).items():
        if profile not in profiles:
            errors.append(f"block {block} maps to undefined profile {profile}")

    # --- Probe ---
    probe = policy.get("probe", {})
    if not 1 <= probe.get("default_pairs", 1000) <= probe.get("max_pairs", 10000):
        errors.append("probe: require 1 <= default_pairs <= max_pairs")

    if errors:
        print("Invariant check failed:")
        for err in errors:
            print(f"- {err}")
        return 1

    print("Invariant check passed.")
    return 0


if __name__ == "__main__":
    raise SystemExit(check())
