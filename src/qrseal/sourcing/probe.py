"""Randomness probes over acquired bytes.

Quick health checks, not a test suite: a 2x2 parity independence test
over (subject, ghost) byte pairs and a uniformity check of ``byte % 5``,
the reduction that picks a Zener symbol. P-values come from
``scipy.stats``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from scipy import stats as scipy_stats


SYMBOL_COUNT = 5


@dataclass(frozen=True)
class ParityTable:
    """Counts of (subject odd?, ghost odd?) combinations."""
    both_odd: int
    subject_odd_only: int
    ghost_odd_only: int
    both_even: int

    def to_dict(self) -> dict[str, int]:
        return {
            "a": self.both_odd,
            "b": self.subject_odd_only,
            "c": self.ghost_odd_only,
            "d": self.both_even,
        }


@dataclass(frozen=True)
class PairProbe:
    n: int
    pct_odd_subject: float
    pct_odd_ghost: float
    pct_same_byte: float
    expected_same_byte_pct: float
    parity_table: ParityTable
    p_parity_independence: float

    def to_dict(self) -> dict[str, object]:
        return {
            "n": self.n,
            "pct_odd_subject": self.pct_odd_subject,
            "pct_odd_ghost": self.pct_odd_ghost,
            "pct_same_byte": self.pct_same_byte,
            "expected_same_byte_pct": self.expected_same_byte_pct,
            "parity_table": self.parity_table.to_dict(),
            "p_parity_independence": self.p_parity_independence,
        }


@dataclass(frozen=True)
class SymbolDistribution:
    counts: tuple[int, ...]
    chi_square: float
    p_value: float

    def to_dict(self) -> dict[str, object]:
        return {
            "counts": list(self.counts),
            "chi_square": self.chi_square,
            "p_value": self.p_value,
        }


def chi_square_uniform(counts: Sequence[int]) -> tuple[float, float]:
    """Goodness of fit against a uniform distribution over len(counts) cells.

    Returns (statistic, p-value).

    Raises:
        ValueError: Fewer than two cells, or no observations.
    """
    if len(counts) < 2:
        raise ValueError("need at least two cells")
    if sum(counts) == 0:
        raise ValueError("counts are empty")
    result = scipy_stats.chisquare(list(counts))
    return float(result.statistic), float(result.pvalue)


def parity_independence_p(table: ParityTable) -> float:
    """Pearson chi-square independence p-value for a 2x2 table, df=1.

    No continuity correction. A table with an empty row or column carries
    no evidence either way and returns 1.0.
    """
    a, b, c, d = table.both_odd, table.subject_odd_only, table.ghost_odd_only, table.both_even
    rows = (a + b, c + d)
    cols = (a + c, b + d)
    if 0 in rows or 0 in cols:
        return 1.0
    _, p_value, _, _ = scipy_stats.chi2_contingency([[a, b], [c, d]], correction=False)
    return float(p_value)


def analyze_pairs(data: bytes) -> PairProbe:
    """Treat ``data`` as interleaved (subject, ghost) pairs.

    A trailing unpaired byte is ignored.

    Raises:
        ValueError: Fewer than two bytes.
    """
    pairs = len(data) // 2
    if pairs < 1:
        raise ValueError("need at least one byte pair")

    odd_subject = odd_ghost = same = 0
    cells = [0, 0, 0, 0]
    for i in range(pairs):
        subject, ghost = data[2 * i], data[2 * i + 1]
        s_odd, g_odd = bool(subject & 1), bool(ghost & 1)
        odd_subject += s_odd
        odd_ghost += g_odd
        same += subject == ghost
        # index: 0 both odd, 1 subject only, 2 ghost only, 3 both even
        cells[(0 if s_odd else 2) + (0 if g_odd else 1)] += 1

    table = ParityTable(*cells)
    return PairProbe(
        n=pairs,
        pct_odd_subject=100.0 * odd_subject / pairs,
        pct_odd_ghost=100.0 * odd_ghost / pairs,
        pct_same_byte=100.0 * same / pairs,
        expected_same_byte_pct=100.0 / 256,
        parity_table=table,
        p_parity_independence=parity_independence_p(table),
    )


def symbol_distribution(data: bytes) -> SymbolDistribution:
    """Counts of ``byte % 5`` and their uniformity p-value.

    256 is not a multiple of 5, so residue 0 is slightly favoured
    (52/256 against 51/256); this only shows up at very large n.
    """
    if not data:
        raise ValueError("no bytes to analyze")
    counts = [0] * SYMBOL_COUNT
    for value in data:
        counts[value % SYMBOL_COUNT] += 1
    stat, p_value = chi_square_uniform(counts)
    return SymbolDistribution(counts=tuple(counts), chi_square=stat, p_value=p_value)
