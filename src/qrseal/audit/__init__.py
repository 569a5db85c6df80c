"""Offline audit of stored trials."""

from qrseal.audit.verifier import (
    RemapVerifier,
    TrialVerdict,
    VerificationReport,
    flatten_records,
    load_records,
)

__all__ = [
    "RemapVerifier",
    "TrialVerdict",
    "VerificationReport",
    "flatten_records",
    "load_records",
]
