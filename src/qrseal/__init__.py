"""qrseal — randomness sourcing and commit-reveal integrity for trial outcomes."""

__version__ = "0.4.0"
