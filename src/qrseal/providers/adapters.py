"""Concrete adapters for the four supported randomness providers."""

from __future__ import annotations

import time
from typing import Any

from qrseal.errors import FailureKind
from qrseal.models.provider import Decoding
from qrseal.providers.base import ProviderAdapter, ProviderRequest
from qrseal.providers.decoding import (
    DecodeError,
    decode_base64_decimal_rows,
    decode_hex_string,
    decode_integer_array,
)


class OutshiftAdapter(ProviderAdapter):
    """Quantum service, HTTP POST, API key required.

    Results arrive as base64-encoded decimal strings, one row per byte.
    """

    def build_request(self, n: int) -> ProviderRequest:
        key = self._spec.credential or ""
        return ProviderRequest(
            method=self._spec.method,
            url=self._spec.endpoint,
            # deployments differ on which header name they read
            headers={"x-api-key": key, "x-id-api-key": key},
            json_body={
                "encoding": "base64",
                "format": "decimal",
                "formats": ["decimal"],
                "bits_per_block": 8,
                "number_of_blocks": n,
            },
        )

    def decode(self, body: Any) -> list[int]:
        return decode_base64_decimal_rows(body)


class LfdrAdapter(ProviderAdapter):
    """Quantum service, HTTP GET, no credential. Returns one hex string."""

    def build_request(self, n: int) -> ProviderRequest:
        return ProviderRequest(
            method=self._spec.method,
            url=self._spec.endpoint,
            params={"length": n, "format": "HEX"},
        )

    def decode(self, body: Any) -> list[int]:
        return decode_hex_string(body, "qrn")


class AnuAdapter(ProviderAdapter):
    """Quantum service, HTTP GET, API key required. Returns a uint8 array."""

    def build_request(self, n: int) -> ProviderRequest:
        return ProviderRequest(
            method=self._spec.method,
            url=self._spec.endpoint,
            params={"length": n, "type": "uint8"},
            headers={"x-api-key": self._spec.credential or ""},
        )

    def decode(self, body: Any) -> list[int]:
        return decode_integer_array(body, ("data",))


class RandomOrgAdapter(ProviderAdapter):
    """Commercial true-RNG over JSON-RPC, API key required."""

    # JSON-RPC error codes meaning the key's allowance is used up
    _QUOTA_CODES = frozenset({402, 403})

    def build_request(self, n: int) -> ProviderRequest:
        return ProviderRequest(
            method=self._spec.method,
            url=self._spec.endpoint,
            headers={"Content-Type": "application/json"},
            json_body={
                "jsonrpc": "2.0",
                "method": "generateIntegers",
                "params": {
                    "apiKey": self._spec.credential,
                    "n": n,
                    "min": 0,
                    "max": 255,
                    "replacement": True,
                },
                "id": int(time.time() * 1000),
            },
        )

    def decode(self, body: Any) -> list[int]:
        error = body.get("error") if isinstance(body, dict) else None
        if isinstance(error, dict):
            code = error.get("code")
            if code in self._QUOTA_CODES:
                raise self._error(FailureKind.RATE_LIMITED, f"rpc_{code}")
            raise DecodeError(f"rpc_error_{code}")
        return decode_integer_array(body, ("result", "random", "data"))


ADAPTER_TYPES: dict[str, type[ProviderAdapter]] = {
    "outshift": OutshiftAdapter,
    "lfdr": LfdrAdapter,
    "anu": AnuAdapter,
    "random_org": RandomOrgAdapter,
}

# HTTP method each provider accepts.
ADAPTER_METHODS: dict[str, str] = {
    "outshift": "POST",
    "lfdr": "GET",
    "anu": "GET",
    "random_org": "POST",
}

# Expected decoding per adapter; a policy file that disagrees is misconfigured.
ADAPTER_DECODING: dict[str, Decoding] = {
    "outshift": Decoding.BASE64_DECIMAL_ROWS,
    "lfdr": Decoding.HEX_STRING,
    "anu": Decoding.INTEGER_ARRAY,
    "random_org": Decoding.INTEGER_ARRAY,
}
