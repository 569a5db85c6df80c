"""Test doubles shared by the sourcing, service and API tests."""

from __future__ import annotations

from typing import Any, Optional, Union

from qrseal.errors import FailureKind, ProviderError
from qrseal.models.provider import Decoding, ProviderSpec
from qrseal.sourcing.failover import FailoverSourcer


def make_spec(name: str, retries: int = 0, timeout: float = 3.0) -> ProviderSpec:
    return ProviderSpec(
        name=name,
        endpoint=f"https://{name}.invalid/",
        method="GET",
        decoding=Decoding.INTEGER_ARRAY,
        timeout_seconds=timeout,
        validation_timeout_seconds=10.0,
        retries=retries,
    )


def pattern_bytes(n: int, seed: int = 0) -> bytes:
    return bytes((i * 37 + seed) & 0xFF for i in range(n))


class FakeAdapter:
    """Scripted provider adapter.

    ``script`` entries are consumed one per fetch: a FailureKind (or a
    ``(FailureKind, reason)`` pair) raises, ``None`` serves pattern bytes,
    a ``bytes`` value is returned as-is. An exhausted script keeps
    serving pattern bytes.
    """

    def __init__(self, name: str, script: Optional[list[Any]] = None, retries: int = 0) -> None:
        self._spec = make_spec(name, retries=retries)
        self._script = list(script or [])
        self.calls: list[tuple[int, Optional[float]]] = []

    @property
    def name(self) -> str:
        return self._spec.name

    @property
    def spec(self) -> ProviderSpec:
        return self._spec

    def fetch(self, n: int, *, timeout: Optional[float] = None) -> bytes:
        self.calls.append((n, timeout))
        step: Union[None, bytes, FailureKind, tuple[FailureKind, str]] = (
            self._script.pop(0) if self._script else None
        )
        if step is None:
            return pattern_bytes(n, seed=len(self.calls))
        if isinstance(step, bytes):
            return step
        if isinstance(step, tuple):
            kind, reason = step
        else:
            kind, reason = step, _DEFAULT_REASONS[step]
        raise ProviderError(self.name, kind, reason)


_DEFAULT_REASONS = {
    FailureKind.TRANSIENT: "timeout_3s",
    FailureKind.RATE_LIMITED: "http_429",
    FailureKind.PERMANENT: "http_404",
    FailureKind.UNCONFIGURED: "no_key",
}


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_sourcer(*adapters: FakeAdapter, clock: Optional[FakeClock] = None, **kwargs: Any) -> FailoverSourcer:
    sleeps: list[float] = kwargs.pop("sleeps", [])
    return FailoverSourcer(
        list(adapters),
        clock=clock or FakeClock(),
        sleep=sleeps.append,
        **kwargs,
    )
