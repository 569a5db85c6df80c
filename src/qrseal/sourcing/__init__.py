"""Byte sourcing — failover across providers, block envelopes, probes."""

from qrseal.sourcing.envelopes import BatchEnvelopeBuilder
from qrseal.sourcing.failover import CircuitBreakerTable, FailoverSourcer

__all__ = ["BatchEnvelopeBuilder", "CircuitBreakerTable", "FailoverSourcer"]
