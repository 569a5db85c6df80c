"""Provider identity and circuit-breaker state.

A ProviderSpec is loaded once at process start (policy file plus
environment) and never changes. A CircuitState lives for the lifetime
of the FailoverSourcer that owns it and is never persisted.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional


class Decoding(str, enum.Enum):
    """How a provider's native response is turned into raw bytes."""
    HEX_STRING = "hex_string"                    # {"qrn": "a1b2..."}
    BASE64_DECIMAL_ROWS = "base64_decimal_rows"  # {"random_numbers": [{"decimal": "NDI="}]}
    INTEGER_ARRAY = "integer_array"              # {"data": [12, 200, ...]}


@dataclass(frozen=True)
class ProviderSpec:
    """Identity of one external byte source."""
    name: str
    endpoint: str
    method: str
    decoding: Decoding
    timeout_seconds: float
    validation_timeout_seconds: float
    retries: int = 0
    credential_env: Optional[str] = None   # env var holding the API key, if one is required
    credential: Optional[str] = None       # resolved value; None when absent

    @property
    def requires_credential(self) -> bool:
        return self.credential_env is not None

    @property
    def is_configured(self) -> bool:
        """False when a required credential is missing."""
        return not self.requires_credential or bool(self.credential)

    def timeout_for(self, validation: bool) -> float:
        """Validation probes tolerate slower providers than live trials."""
        return self.validation_timeout_seconds if validation else self.timeout_seconds


@dataclass
class CircuitState:
    """Per-provider breaker state. Mutated only under the provider's lock."""
    failures: int = 0
    open_until: float = 0.0

    def is_open(self, now: float) -> bool:
        return now < self.open_until

    def reset(self) -> None:
        self.failures = 0
        self.open_until = 0.0


@dataclass(frozen=True)
class AcquiredBytes:
    """Bytes returned by the failover sourcer and the provider that served them."""
    data: bytes
    source: str
    attempts: int
    failures: tuple[tuple[str, str], ...] = ()  # (provider, reason) before success

    def as_list(self) -> list[int]:
        return list(self.data)
