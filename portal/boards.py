"""Scratch-masters and optional-events boards.

Both boards are built from one row per (participant, event) carrying the
participant's division and opt-in flags. No handicap is applied on the
scratch boards; the all-events board adds the stored handicap once per event
bowled.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional

from .constants import DIVISION_LABELS, DIVISION_ORDER, EVENT_DOUBLES, EVENT_SINGLES, EVENT_TEAM
from .scoring import build_display_name, game_slots, sum_nullable, to_score

SCRATCH_EVENT_SCORE_KEYS = {
    EVENT_TEAM: ("t1", "t2", "t3"),
    EVENT_DOUBLES: ("d1", "d2", "d3"),
    EVENT_SINGLES: ("s1", "s2", "s3"),
}

OPTIONAL_FLAGS = {
    "best_3_of_9": "optional_best_3_of_9",
    "scratch": "optional_scratch",
    "all_events_hdcp": "optional_all_events_hdcp",
}


def _empty_divisions() -> Dict[str, List[Dict]]:
    return {division: [] for division in DIVISION_ORDER}


def _rank_by(entries: List[Dict], field: str) -> List[Dict]:
    """Descending by ``field``, nulls last, equal values ordered by name."""
    entries.sort(
        key=lambda e: (e[field] is None, -(e[field] or 0), e.get("name") or "")
    )
    for place, entry in enumerate(entries, start=1):
        entry["rank"] = place
    return entries


def create_empty_scratch_masters() -> Dict[str, List[Dict]]:
    return _empty_divisions()


def build_scratch_masters(rows: Iterable[Dict]) -> Dict[str, List[Dict]]:
    """Rank every division's participants by scratch pinfall over all events.

    Participants with rows but no bowled games are still listed, after
    everyone who has bowled, with null totals.
    """
    participants: Dict = {}
    for row in rows or []:
        division = (row or {}).get("division")
        if division not in DIVISION_LABELS:
            continue
        entry = participants.get(row.get("pid"))
        if entry is None:
            entry = {
                "rank": 0,
                "pid": row.get("pid"),
                "division": division,
                "name": build_display_name(row),
                **{key: None for keys in SCRATCH_EVENT_SCORE_KEYS.values() for key in keys},
                "total_scratch": None,
                "total": None,
            }
            participants[row.get("pid")] = entry
        keys = SCRATCH_EVENT_SCORE_KEYS.get(row.get("event_type"))
        if not keys:
            continue
        slots = game_slots(row)
        for key, value in zip(keys, slots):
            entry[key] = value
        scratch = sum_nullable(slots)
        if scratch is not None:
            entry["total_scratch"] = (entry["total_scratch"] or 0) + scratch
            entry["total"] = entry["total_scratch"]

    standings = create_empty_scratch_masters()
    for entry in participants.values():
        standings[entry["division"]].append(entry)
    for division in DIVISION_ORDER:
        _rank_by(standings[division], "total")
    return standings


def has_any_scratch_masters(standings: Optional[Dict]) -> bool:
    return any(entries for entries in (standings or {}).values())


def create_empty_optional_events_standings() -> Dict:
    return {
        "best_of_3_of_9": [],
        "all_events_handicapped": [],
        "optional_scratch": _empty_divisions(),
    }


def _opted_in(row: Dict, flag: str) -> bool:
    return to_score(row.get(OPTIONAL_FLAGS[flag])) == 1


def build_optional_events_standings(rows: Iterable[Dict]) -> Dict:
    """Build the best-of-3-of-9, all-events handicap and optional scratch boards."""
    participants: Dict = {}
    for row in rows or []:
        if not row or not row.get("pid"):
            continue
        person = participants.get(row["pid"])
        if person is None:
            person = {
                "pid": row["pid"],
                "name": build_display_name(row),
                "division": row.get("division") or None,
                "flags": {flag: _opted_in(row, flag) for flag in OPTIONAL_FLAGS},
                "games": [],
                "hdcp": 0,
            }
            participants[row["pid"]] = person
        games = [value for value in game_slots(row) if value is not None]
        if not games:
            continue
        person["games"].extend(games)
        person["hdcp"] += to_score(row.get("handicap")) or 0

    standings = create_empty_optional_events_standings()
    for person in participants.values():
        if not person["games"]:
            continue
        flags = person["flags"]
        total_scratch = sum(person["games"])

        if flags["best_3_of_9"]:
            best = sorted(person["games"], reverse=True)[:3]
            best += [None] * (3 - len(best))
            standings["best_of_3_of_9"].append(
                {
                    "rank": 0,
                    "pid": person["pid"],
                    "name": person["name"],
                    "best_game1": best[0],
                    "best_game2": best[1],
                    "best_game3": best[2],
                    "total": sum_nullable(best),
                }
            )

        if flags["all_events_hdcp"]:
            standings["all_events_handicapped"].append(
                {
                    "rank": 0,
                    "pid": person["pid"],
                    "name": person["name"],
                    "total_scratch": total_scratch,
                    "total_hdcp": person["hdcp"],
                    "total": total_scratch + person["hdcp"],
                }
            )

        division = person["division"]
        if flags["scratch"] and division in standings["optional_scratch"]:
            standings["optional_scratch"][division].append(
                {
                    "rank": 0,
                    "pid": person["pid"],
                    "name": person["name"],
                    "division": division,
                    "total_scratch": total_scratch,
                    "total": total_scratch,
                }
            )

    _rank_by(standings["best_of_3_of_9"], "total")
    _rank_by(standings["all_events_handicapped"], "total")
    for division in DIVISION_ORDER:
        _rank_by(standings["optional_scratch"][division], "total_scratch")
    return standings


def has_any_optional_events(standings: Optional[Dict]) -> bool:
    standings = standings or {}
    return (
        bool(standings.get("best_of_3_of_9"))
        or bool(standings.get("all_events_handicapped"))
        or any(entries for entries in (standings.get("optional_scratch") or {}).values())
    )


__all__ = [
    "create_empty_scratch_masters",
    "build_scratch_masters",
    "has_any_scratch_masters",
    "create_empty_optional_events_standings",
    "build_optional_events_standings",
    "has_any_optional_events",
]
