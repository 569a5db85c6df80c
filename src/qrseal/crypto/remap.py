"""Remap resolution — from raw bytes and r to on-screen indices.

The raw byte picks a symbol (byte mod 5); the keyed offset r rotates that
symbol's display position. The ghost stream uses a second offset so the
two streams never share a mapping:

    target = (index(subject_symbol) + r) mod 5
    r_ghost = (r + ghost_byte mod 5) mod 5
    ghost  = (index(ghost_symbol) + r_ghost) mod 5
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from qrseal.models.commit import OPTION_COUNT


ZENER_SYMBOLS: tuple[str, ...] = ("circle", "plus", "waves", "square", "star")


@dataclass(frozen=True)
class RemapResult:
    target_index: int
    ghost_index: int
    subject_symbol: str
    ghost_symbol: str


def symbol_for_byte(value: int) -> str:
    return ZENER_SYMBOLS[(value & 0xFF) % OPTION_COUNT]


def resolve_indices(
    raw_byte: int,
    ghost_raw_byte: int,
    options: Sequence[str],
    r: int,
) -> RemapResult:
    """Map subject and ghost bytes to 0-based display indices.

    Raises:
        ValueError: If options is not a 5-symbol menu containing both symbols.
    """
    if len(options) != OPTION_COUNT:
        raise ValueError(f"options must be {OPTION_COUNT} ids, got {len(options)}")
    if not 0 <= r < OPTION_COUNT:
        raise ValueError(f"r must be in [0, {OPTION_COUNT}), got {r}")

    subject = symbol_for_byte(raw_byte)
    ghost = symbol_for_byte(ghost_raw_byte)
    menu = list(options)
    if subject not in menu or ghost not in menu:
        raise ValueError("symbol_not_in_options")

    r_ghost = (r + (ghost_raw_byte & 0xFF) % OPTION_COUNT) % OPTION_COUNT
    return RemapResult(
        target_index=(menu.index(subject) + r) % OPTION_COUNT,
        ghost_index=(menu.index(ghost) + r_ghost) % OPTION_COUNT,
        subject_symbol=subject,
        ghost_symbol=ghost,
    )
