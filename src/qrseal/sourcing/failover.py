"""Failover sourcer — sequential fallback across providers with circuit breaking.

Providers are tried one at a time in a fixed priority order. They are
never raced: racing true-randomness providers against each other lets
response timing select which bytes are used.

Per provider:
- skipped while its circuit is open;
- otherwise up to ``1 + retries`` attempts, a fixed delay apart;
- RATE_LIMITED, UNCONFIGURED and PERMANENT failures end its attempts;
- success resets its failure counter;
- each counted failure increments the counter, and reaching the
  threshold opens the circuit for the cool-down.

If every provider fails, SourcingExhaustedError lists every reason.
No non-cryptographic substitute is ever produced here.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional, Sequence

import requests

from qrseal.errors import (
    FailureKind,
    ProviderError,
    SourcingCancelledError,
    SourcingExhaustedError,
)
from qrseal.models.provider import AcquiredBytes, CircuitState
from qrseal.policy.resolver import PolicyResolver
from qrseal.policy.secrets import Secrets
from qrseal.providers import ProviderAdapter, build_adapter


logger = logging.getLogger(__name__)

# Failures that make further attempts against the same provider pointless.
_STOP_KINDS = frozenset({FailureKind.RATE_LIMITED, FailureKind.UNCONFIGURED, FailureKind.PERMANENT})
# Failures that do not count toward opening the circuit.
_UNCOUNTED_KINDS = frozenset({FailureKind.RATE_LIMITED, FailureKind.UNCONFIGURED})


class CircuitBreakerTable:
    """Per-provider circuit state, one lock per provider.

    Owned by a single FailoverSourcer, created with it, never persisted.
    """

    def __init__(
        self,
        names: Sequence[str],
        failure_threshold: int,
        cooldown_seconds: float,
        clock: Callable[[], float],
    ) -> None:
        if failure_threshold < 1:
            raise ValueError(f"failure_threshold must be >= 1, got {failure_threshold}")
        self._threshold = failure_threshold
        self._cooldown = cooldown_seconds
        self._clock = clock
        self._states = {name: CircuitState() for name in names}
        self._locks = {name: threading.Lock() for name in names}

    def is_open(self, name: str) -> bool:
        with self._locks[name]:
            return self._states[name].is_open(self._clock())

    def record_success(self, name: str) -> None:
        with self._locks[name]:
            self._states[name].reset()

    def record_failure(self, name: str) -> bool:
        """Count a failure. Returns True only if this failure opened the circuit.

        Failures landing while the circuit is already open are counted but
        do not extend the cool-down.
        """
        with self._locks[name]:
            state = self._states[name]
            now = self._clock()
            state.failures += 1
            if state.is_open(now) or state.failures < self._threshold:
                return False
            state.open_until = now + self._cooldown
            return True

    def snapshot(self) -> dict[str, dict[str, object]]:
        now = self._clock()
        out: dict[str, dict[str, object]] = {}
        for name, state in self._states.items():
            with self._locks[name]:
                out[name] = {
                    "failures": state.failures,
                    "open": state.is_open(now),
                    "open_for_seconds": max(0.0, state.open_until - now),
                }
        return out


class FailoverSourcer:
    """Acquires bytes from the first provider in the chain that delivers.

    Usage:
        sourcer = FailoverSourcer.from_policy(resolver, secrets, "quantum")
        got = sourcer.acquire(20)
        got.data, got.source
    """

    def __init__(
        self,
        adapters: Sequence[ProviderAdapter],
        *,
        failure_threshold: int = 3,
        cooldown_seconds: float = 30.0,
        retry_delay_seconds: float = 0.2,
        max_bytes: int = 1024,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        names = [a.name for a in adapters]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate provider in chain: {names}")
        self._adapters = list(adapters)
        self._retry_delay = retry_delay_seconds
        self._max_bytes = max_bytes
        self._sleep = sleep
        self._breakers = CircuitBreakerTable(names, failure_threshold, cooldown_seconds, clock)

    @classmethod
    def from_policy(
        cls,
        resolver: PolicyResolver,
        secrets: Secrets,
        profile: str,
        session: Optional[requests.Session] = None,
    ) -> FailoverSourcer:
        specs = resolver.provider_specs(secrets)
        adapters = [build_adapter(specs[name], session) for name in resolver.profile_chain(profile)]
        return cls(
            adapters,
            failure_threshold=resolver.circuit_failure_threshold(),
            cooldown_seconds=resolver.circuit_cooldown_seconds(),
            retry_delay_seconds=resolver.retry_delay_seconds(),
            max_bytes=resolver.max_bytes_per_call(),
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def provider_names(self) -> list[str]:
        return [a.name for a in self._adapters]

    @property
    def max_bytes(self) -> int:
        return self._max_bytes

    def circuit_snapshot(self) -> dict[str, dict[str, object]]:
        return self._breakers.snapshot()

    def acquire(
        self,
        n: int,
        *,
        validation: bool = False,
        cancel: Optional[threading.Event] = None,
    ) -> AcquiredBytes:
        """Acquire *n* bytes, trying providers strictly in order.

        Args:
            n: Number of bytes, 1..max_bytes.
            validation: Use the providers' longer validation timeouts.
            cancel: Checked between attempts; setting it abandons the call.

        Raises:
            SourcingExhaustedError: Every provider failed or was skipped.
            SourcingCancelledError: *cancel* was set between attempts.
            ValueError: n out of range.
        """
        if not 1 <= n <= self._max_bytes:
            raise ValueError(f"n must be in [1, {self._max_bytes}], got {n}")

        failures: list[tuple[str, str]] = []
        attempts = 0

        for adapter in self._adapters:
            name = adapter.name
            if self._breakers.is_open(name):
                failures.append((name, "circuit_open"))
                logger.info("Skipping %s: circuit open", name)
                continue

            max_attempts = 1 + max(0, adapter.spec.retries)
            for attempt in range(max_attempts):
                if attempt > 0:
                    self._pause(cancel)
                self._check_cancel(cancel)
                attempts += 1
                try:
                    data = adapter.fetch(n, timeout=adapter.spec.timeout_for(validation))
                except ProviderError as exc:
                    failures.append((name, exc.reason))
                    logger.warning(
                        "Provider %s attempt %d/%d failed: %s (%s)",
                        name, attempt + 1, max_attempts, exc.reason, exc.kind.value,
                    )
                    if exc.kind not in _UNCOUNTED_KINDS:
                        if self._breakers.record_failure(name):
                            logger.warning("Circuit opened for %s", name)
                        if self._breakers.is_open(name):
                            break
                    if exc.kind in _STOP_KINDS:
                        break
                    continue

                self._breakers.record_success(name)
                logger.info("Acquired %d bytes from %s after %d attempt(s)", n, name, attempts)
                return AcquiredBytes(data=data, source=name, attempts=attempts, failures=tuple(failures))

        logger.error("All providers exhausted: %s", "; ".join(f"{p}:{r}" for p, r in failures))
        raise SourcingExhaustedError(failures)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _pause(self, cancel: Optional[threading.Event]) -> None:
        if cancel is None:
            self._sleep(self._retry_delay)
        elif cancel.wait(self._retry_delay):
            raise SourcingCancelledError("acquisition cancelled")

    @staticmethod
    def _check_cancel(cancel: Optional[threading.Event]) -> None:
        if cancel is not None and cancel.is_set():
            raise SourcingCancelledError("acquisition cancelled")
