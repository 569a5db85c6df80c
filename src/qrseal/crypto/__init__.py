"""Commit-reveal primitives — key derivation, tokens, derive, reveal, remap."""

from qrseal.crypto.commit_issuer import CommitIssuer
from qrseal.crypto.outcome_deriver import OutcomeDeriver
from qrseal.crypto.reveal_auditor import RevealAuditor

__all__ = ["CommitIssuer", "OutcomeDeriver", "RevealAuditor"]
