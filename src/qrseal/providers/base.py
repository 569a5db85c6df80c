"""Provider adapter — uniform ``fetch(n) -> bytes`` over one external source.

Each adapter builds its provider-specific request, applies a bounded
timeout, decodes the native encoding and validates the length. Every
failure leaves as a ProviderError whose FailureKind is decided here, so
the failover sourcer never has to interpret error text.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import requests

from qrseal.errors import FailureKind, ProviderError
from qrseal.models.provider import ProviderSpec
from qrseal.providers.decoding import DecodeError


logger = logging.getLogger(__name__)

_BASE_HEADERS = {"Cache-Control": "no-store"}


@dataclass(frozen=True)
class ProviderRequest:
    """Everything needed for one HTTP call, minus the timeout."""
    method: str
    url: str
    params: dict[str, Any] = field(default_factory=dict)
    headers: dict[str, str] = field(default_factory=dict)
    json_body: Optional[dict[str, Any]] = None


class ProviderAdapter:
    """Base adapter. Subclasses implement build_request and decode."""

    def __init__(self, spec: ProviderSpec, session: Optional[requests.Session] = None) -> None:
        self._spec = spec
        self._session = session or requests.Session()

    @property
    def name(self) -> str:
        return self._spec.name

    @property
    def spec(self) -> ProviderSpec:
        return self._spec

    def build_request(self, n: int) -> ProviderRequest:
        raise NotImplementedError

    def decode(self, body: Any) -> list[int]:
        raise NotImplementedError

    def fetch(self, n: int, *, timeout: Optional[float] = None) -> bytes:
        """Fetch exactly *n* bytes.

        A provider missing its required credential fails before any
        network traffic. A timed-out call is a TRANSIENT failure, the
        same as any other network error.

        Raises:
            ProviderError: On any failure, classified by FailureKind.
            ValueError: If n < 1.
        """
        if n < 1:
            raise ValueError(f"n must be >= 1, got {n}")
        if not self._spec.is_configured:
            raise self._error(FailureKind.UNCONFIGURED, "no_key")

        request = self.build_request(n)
        effective_timeout = timeout if timeout is not None else self._spec.timeout_seconds
        try:
            response = self._session.request(
                request.method,
                request.url,
                params=request.params or None,
                headers={**_BASE_HEADERS, **request.headers},
                json=request.json_body,
                timeout=effective_timeout,
            )
        except requests.Timeout:
            raise self._error(FailureKind.TRANSIENT, f"timeout_{effective_timeout:g}s") from None
        except requests.RequestException as exc:
            raise self._error(FailureKind.TRANSIENT, f"network_{type(exc).__name__}") from None

        self._check_status(response.status_code)

        try:
            body = response.json()
        except ValueError:
            raise self._error(FailureKind.PERMANENT, "bad_json") from None

        try:
            values = self.decode(body)
        except DecodeError as exc:
            raise self._error(FailureKind.PERMANENT, str(exc)) from None

        if len(values) < n:
            raise self._error(FailureKind.TRANSIENT, f"short_{len(values)}_need_{n}")

        logger.debug("%s returned %d bytes", self.name, n)
        return bytes(value & 0xFF for value in values[:n])

    def _check_status(self, status: int) -> None:
        if 200 <= status < 300:
            return
        if status == 429:
            raise self._error(FailureKind.RATE_LIMITED, "http_429")
        if status == 408 or status >= 500:
            raise self._error(FailureKind.TRANSIENT, f"http_{status}")
        raise self._error(FailureKind.PERMANENT, f"http_{status}")

    def _error(self, kind: FailureKind, reason: str) -> ProviderError:
        return ProviderError(self.name, kind, reason)
