"""Tournament-wide constants shared by every board and editor."""

from typing import Dict, List, Optional

EVENT_TEAM = "team"
EVENT_DOUBLES = "doubles"
EVENT_SINGLES = "singles"

# Standard order used whenever all three events are iterated
EVENT_TYPES: List[str] = [EVENT_TEAM, EVENT_DOUBLES, EVENT_SINGLES]

EVENT_LABELS: Dict[str, str] = {
    EVENT_TEAM: "Team",
    EVENT_DOUBLES: "Doubles",
    EVENT_SINGLES: "Singles",
}

GAMES_PER_EVENT = 3

DIVISION_LABELS: Dict[str, str] = {
    "A": "Division A",
    "B": "Division B",
    "C": "Division C",
    "D": "Division D",
    "E": "Division E",
}
DIVISION_ORDER: List[str] = list(DIVISION_LABELS)

# Highest threshold first; the first match wins
DIVISION_THRESHOLDS = [
    ("A", 208),
    ("B", 190),
    ("C", 170),
    ("D", 150),
    ("E", 0),
]


def get_division_from_average(average) -> Optional[str]:
    """Return the division letter for a book average, or None if unknown."""
    if average is None or isinstance(average, bool):
        return None
    if isinstance(average, str) and not average.strip():
        return None
    try:
        parsed = float(average)
    except (TypeError, ValueError):
        return None
    if parsed != parsed:  # NaN
        return None
    for division, min_average in DIVISION_THRESHOLDS:
        if parsed >= min_average:
            return division
    return None


__all__ = [
    "EVENT_TEAM",
    "EVENT_DOUBLES",
    "EVENT_SINGLES",
    "EVENT_TYPES",
    "EVENT_LABELS",
    "GAMES_PER_EVENT",
    "DIVISION_LABELS",
    "DIVISION_ORDER",
    "DIVISION_THRESHOLDS",
    "get_division_from_average",
]
