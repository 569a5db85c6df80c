"""Runtime policy and process secrets."""

from qrseal.policy.resolver import PolicyResolver
from qrseal.policy.secrets import Secrets

__all__ = ["PolicyResolver", "Secrets"]
