"""Score aggregation for the team, doubles and singles standings.

Every builder works on pre-fetched row dictionaries and returns freshly
allocated entries, so calls are free of shared state. Game values are treated
as nullable numbers: anything missing or non-numeric is absent, and absence
propagates to totals instead of being folded into a zero.
"""

from __future__ import annotations

import math
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

from .constants import GAMES_PER_EVENT

Score = Optional[float]
GameSlots = Tuple[Score, Score, Score]

GAME_FIELDS = ("game1", "game2", "game3")


def to_score(value) -> Score:
    """Coerce a stored value to a number, or ``None`` when it is not one."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, Decimal):
        value = float(value)
    elif not isinstance(value, float):
        text = str(value).strip()
        if not text:
            return None
        try:
            value = float(text)
        except ValueError:
            return None
    if not math.isfinite(value):
        return None
    return int(value) if value.is_integer() else value


def game_slots(row: Dict) -> GameSlots:
    """Return the three nullable game values of a score row."""
    return tuple(to_score(row.get(field)) for field in GAME_FIELDS)  # type: ignore[return-value]


def is_complete(slots: Iterable[Score]) -> bool:
    """True when every game slot holds a value."""
    return all(value is not None for value in slots)


def has_any_game(slots: Iterable[Score]) -> bool:
    return any(value is not None for value in slots)


def sum_nullable(values: Iterable[Score]) -> Score:
    """Sum the present values; ``None`` if none are present."""
    present = [value for value in values if value is not None]
    if not present:
        return None
    return sum(present)


def build_full_name(person: Dict) -> str:
    return f"{person.get('first_name') or ''} {person.get('last_name') or ''}".strip()


def build_display_name(person: Dict) -> str:
    """Nickname (or first name) followed by last name."""
    first = person.get("nickname") or person.get("first_name") or ""
    return f"{first} {person.get('last_name') or ''}".strip()


def _member_handicap(row: Dict) -> float:
    return (to_score(row.get("handicap")) or 0) * GAMES_PER_EVENT


def _totals(slots: GameSlots, hdcp: float) -> Tuple[Score, Score]:
    total_scratch = sum(slots) if is_complete(slots) else None  # type: ignore[arg-type]
    total = total_scratch + hdcp if total_scratch is not None else None
    return total_scratch, total


def _sum_slots(members: List[Dict]) -> GameSlots:
    per_member = [game_slots(m) for m in members]
    return tuple(  # type: ignore[return-value]
        sum_nullable(slots[i] for slots in per_member) for i in range(GAMES_PER_EVENT)
    )


def _group_rows(rows: Iterable[Dict], key_field: str) -> Dict:
    groups: Dict = {}
    for row in rows or []:
        groups.setdefault(row.get(key_field), []).append(row)
    return groups


def assign_ranks(entries: List[Dict], field: str = "total") -> List[Dict]:
    """Sort by ``field`` descending with nulls last and number the result.

    Equal values keep their input order.
    """
    entries.sort(key=lambda e: (e[field] is None, -(e[field] or 0)))
    for place, entry in enumerate(entries, start=1):
        entry["rank"] = place
    return entries


def build_team_standings(rows: Iterable[Dict]) -> List[Dict]:
    """Aggregate per-member team rows into ranked team entries.

    Handicap is summed over the whole roster, including members who have not
    bowled yet, while the scratch total needs all three game slots.
    """
    entries: List[Dict] = []
    for tnmt_id, members in _group_rows(rows, "tnmt_id").items():
        slots = _sum_slots(members)
        if not has_any_game(slots):
            continue
        hdcp = sum(_member_handicap(m) for m in members)
        total_scratch, total = _totals(slots, hdcp)
        entries.append(
            {
                "rank": 0,
                "tnmt_id": tnmt_id,
                "team_name": members[0].get("team_name"),
                "team_slug": members[0].get("slug"),
                "game1": slots[0],
                "game2": slots[1],
                "game3": slots[2],
                "total_scratch": total_scratch,
                "hdcp": hdcp,
                "total": total,
            }
        )
    return assign_ranks(entries)


def _individual_entry(row: Dict) -> Dict:
    slots = game_slots(row)
    hdcp = _member_handicap(row)
    total_scratch, total = _totals(slots, hdcp)
    return {
        "pid": row.get("pid"),
        "name": build_display_name(row),
        "game1": slots[0],
        "game2": slots[1],
        "game3": slots[2],
        "total_scratch": total_scratch,
        "hdcp": hdcp,
        "total": total,
    }


def build_doubles_standings(rows: Iterable[Dict]) -> List[Dict]:
    """Aggregate doubles rows into ranked pairs.

    Each member carries its own totals; the pair totals are only present when
    both partners have complete games.
    """
    entries: List[Dict] = []
    for did, raw_members in _group_rows(rows, "did").items():
        members = [_individual_entry(m) for m in raw_members]
        slots = _sum_slots(raw_members)
        if not has_any_game(slots):
            continue
        hdcp = sum(m["hdcp"] for m in members)
        all_complete = all(m["total_scratch"] is not None for m in members)
        total_scratch = sum(m["total_scratch"] for m in members) if all_complete else None
        total = total_scratch + hdcp if total_scratch is not None else None
        entries.append(
            {
                "rank": 0,
                "did": did,
                "pair_name": " & ".join(m["name"] for m in members),
                "members": members,
                "game1": slots[0],
                "game2": slots[1],
                "game3": slots[2],
                "total_scratch": total_scratch,
                "hdcp": hdcp,
                "total": total,
            }
        )
    return assign_ranks(entries)


def build_singles_standings(rows: Iterable[Dict]) -> List[Dict]:
    entries: List[Dict] = []
    for pid, own_rows in _group_rows(rows, "pid").items():
        entry = _individual_entry(own_rows[0])
        if not has_any_game((entry["game1"], entry["game2"], entry["game3"])):
            continue
        entries.append({"rank": 0, **entry})
    return assign_ranks(entries)


def build_score_standings(
    team_rows: Iterable[Dict] = (),
    doubles_rows: Iterable[Dict] = (),
    singles_rows: Iterable[Dict] = (),
) -> Dict[str, List[Dict]]:
    """Build all three event standings in one call."""
    return {
        "team": build_team_standings(team_rows),
        "doubles": build_doubles_standings(doubles_rows),
        "singles": build_singles_standings(singles_rows),
    }


def has_any_scores(standings: Optional[Dict]) -> bool:
    standings = standings or {}
    return any(standings.get(key) for key in ("team", "doubles", "singles"))


__all__ = [
    "to_score",
    "game_slots",
    "is_complete",
    "has_any_game",
    "sum_nullable",
    "build_full_name",
    "build_display_name",
    "assign_ranks",
    "build_team_standings",
    "build_doubles_standings",
    "build_singles_standings",
    "build_score_standings",
    "has_any_scores",
]
