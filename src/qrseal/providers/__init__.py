"""Provider adapters — one uniform interface per external byte source."""

from __future__ import annotations

from typing import Optional

import requests

from qrseal.errors import ConfigurationError
from qrseal.models.provider import ProviderSpec
from qrseal.providers.adapters import ADAPTER_DECODING, ADAPTER_METHODS, ADAPTER_TYPES
from qrseal.providers.base import ProviderAdapter


def build_adapter(spec: ProviderSpec, session: Optional[requests.Session] = None) -> ProviderAdapter:
    """Instantiate the adapter for a provider spec.

    Raises:
        ConfigurationError: Unknown provider, or a decoding or HTTP method
            that does not match what the provider speaks.
    """
    adapter_type = ADAPTER_TYPES.get(spec.name)
    if adapter_type is None:
        raise ConfigurationError(f"No adapter for provider: {spec.name}")
    if ADAPTER_DECODING[spec.name] != spec.decoding:
        raise ConfigurationError(
            f"Provider {spec.name} returns {ADAPTER_DECODING[spec.name].value}, "
            f"policy says {spec.decoding.value}"
        )
    if ADAPTER_METHODS[spec.name] != spec.method:
        raise ConfigurationError(
            f"Provider {spec.name} is called with {ADAPTER_METHODS[spec.name]}, "
            f"policy says {spec.method}"
        )
    return adapter_type(spec, session)


__all__ = ["ProviderAdapter", "build_adapter"]
