"""Policy resolver — typed access to runtime_policy.json.

Every tunable the sourcing and commit layers need (timeouts, retry
counts, breaker thresholds, token lifetime, block sizes, provider
chains) is read through this class. Callers never index the raw
policy dict themselves.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Optional

from qrseal.errors import ConfigurationError
from qrseal.models.provider import Decoding, ProviderSpec
from qrseal.policy.secrets import Secrets


POLICY_FILENAME = "runtime_policy.json"

_DEFAULT_TOKEN_TTL_SECONDS = 2 * 60 * 60
_DEFAULT_RETRY_DELAY_SECONDS = 0.2
_DEFAULT_FAILURE_THRESHOLD = 3
_DEFAULT_COOLDOWN_SECONDS = 30.0
_DEFAULT_MAX_BYTES = 1024


class PolicyResolver:
    """Resolves runtime policy values with built-in defaults.

    Usage:
        resolver = PolicyResolver.from_config_dir(Path("config"))
        chain = resolver.profile_chain("quantum")
        specs = resolver.provider_specs(secrets)
    """

    def __init__(self, policy: dict[str, Any]) -> None:
        self._policy = policy
        self._validate()

    @classmethod
    def from_config_dir(cls, config_dir: Path) -> PolicyResolver:
        path = Path(config_dir) / POLICY_FILENAME
        if not path.exists():
            raise ConfigurationError(f"Policy file not found: {path}")
        with path.open("r", encoding="utf-8") as handle:
            return cls(json.load(handle))

    # ------------------------------------------------------------------
    # Commit protocol
    # ------------------------------------------------------------------

    def token_ttl_seconds(self) -> int:
        return int(self._section("commit").get("token_ttl_seconds", _DEFAULT_TOKEN_TTL_SECONDS))

    # ------------------------------------------------------------------
    # Sourcing
    # ------------------------------------------------------------------

    def retry_delay_seconds(self) -> float:
        return float(self._section("sourcing").get("retry_delay_seconds", _DEFAULT_RETRY_DELAY_SECONDS))

    def circuit_failure_threshold(self) -> int:
        return int(self._section("sourcing").get("circuit_failure_threshold", _DEFAULT_FAILURE_THRESHOLD))

    def circuit_cooldown_seconds(self) -> float:
        return float(self._section("sourcing").get("circuit_cooldown_seconds", _DEFAULT_COOLDOWN_SECONDS))

    def max_bytes_per_call(self) -> int:
        return int(self._section("sourcing").get("max_bytes_per_call", _DEFAULT_MAX_BYTES))

    def default_profile(self) -> str:
        return str(self._section("sourcing").get("default_profile", "quantum"))

    def profile_names(self) -> list[str]:
        return sorted(self._profiles())

    def profile_chain(self, profile: str) -> list[str]:
        """Provider names for a source profile, in priority order."""
        profiles = self._profiles()
        if profile not in profiles:
            raise ConfigurationError(f"Unknown source profile: {profile}")
        return list(profiles[profile])

    def provider_specs(self, secrets: Secrets) -> dict[str, ProviderSpec]:
        """Build immutable ProviderSpecs, resolving credentials from secrets."""
        specs: dict[str, ProviderSpec] = {}
        for name, raw in self._section("providers").items():
            credential_env = raw.get("credential_env")
            specs[name] = ProviderSpec(
                name=name,
                endpoint=raw["endpoint"],
                method=str(raw.get("method", "GET")).upper(),
                decoding=Decoding(raw["decoding"]),
                timeout_seconds=float(raw["timeout_seconds"]),
                validation_timeout_seconds=float(
                    raw.get("validation_timeout_seconds", raw["timeout_seconds"])
                ),
                retries=int(raw.get("retries", 0)),
                credential_env=credential_env,
                credential=secrets.credential(credential_env) if credential_env else None,
            )
        return specs

    # ------------------------------------------------------------------
    # Blocks
    # ------------------------------------------------------------------

    def trial_bounds(self) -> tuple[int, int]:
        blocks = self._section("blocks")
        return int(blocks.get("min_trials", 1)), int(blocks.get("max_trials", 100))

    def default_trials(self, block_id: str) -> int:
        blocks = self._section("blocks")
        per_block = blocks.get("trials", {})
        return int(per_block.get(block_id, blocks.get("default_trials", 18)))

    def profile_for_block(self, block_id: str) -> str:
        mapping = self._section("blocks").get("profiles", {})
        return str(mapping.get(block_id, self.default_profile()))

    # ------------------------------------------------------------------
    # Probe
    # ------------------------------------------------------------------

    def probe_pairs(self, requested: Optional[int]) -> int:
        """Clamp a requested probe size into [1, max_pairs]."""
        probe = self._section("probe")
        if requested is None:
            requested = int(probe.get("default_pairs", 1000))
        return max(1, min(int(probe.get("max_pairs", 10000)), requested))

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _section(self, name: str) -> dict[str, Any]:
        return self._policy.get(name, {})

    def _profiles(self) -> dict[str, list[str]]:
        return self._section("sourcing").get("profiles", {})

    def _validate(self) -> None:
        """Fail closed on profiles naming providers that do not exist."""
        providers = set(self._section("providers"))
        for profile, chain in self._profiles().items():
            unknown = [name for name in chain if name not in providers]
            if unknown:
                raise ConfigurationError(
                    f"Profile '{profile}' names unknown providers: {', '.join(unknown)}"
                )
        if self.default_profile() not in self._profiles():
            raise ConfigurationError(f"Default profile '{self.default_profile()}' is not defined")
