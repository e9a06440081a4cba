"""Handicap calculation from a bowler's book average.

Uses the USBC-style formula ``floor((225 - book_average) * 0.9)``. The floor is
applied after the multiplication and the result never goes below zero, so a
book average of 225 or more carries no handicap.
"""

from __future__ import annotations

import math

from .scoring import to_score

HANDICAP_BASE_SCORE = 225
HANDICAP_MULTIPLIER = 0.9


def calculate_handicap(book_average) -> int | None:
    """Return the per-game handicap for ``book_average``.

    Args:
        book_average: Pre-tournament average; ``None``, blank or non-numeric
            values count as unknown.

    Returns:
        Non-negative integer handicap, or ``None`` when no average is given.

    Examples: 190 -> 31, 180 -> 40, 200 -> 22, 230 -> 0.
    """
    average = to_score(book_average)
    if average is None:
        return None
    raw = (HANDICAP_BASE_SCORE - average) * HANDICAP_MULTIPLIER
    return max(0, int(math.floor(raw)))


__all__ = ["HANDICAP_BASE_SCORE", "HANDICAP_MULTIPLIER", "calculate_handicap"]
