"""Participant view model and participant edits.

:func:`format_participant` reads one participant in exactly two round trips:
a joined identity/team/pairing/partner lookup and a score lookup.
:func:`update_participant` applies an edit inside one transaction, keeping the
doubles pairing reciprocal and auditing every participant it touches.
"""

from __future__ import annotations

import logging
import re
import uuid
from typing import Any, Callable, Dict, List, Optional, Tuple

from . import datastore
from .audit import write_audit_entries
from .constants import EVENT_TYPES
from .handicap import calculate_handicap
from .pairing import detach_from_team, link_partners
from .scoring import build_full_name, game_slots, to_score

logger = logging.getLogger(__name__)

QueryFn = Callable[..., Dict]

PARTICIPANT_EDITABLE_FIELDS = ("email", "phone", "city", "region", "country")
PERSON_FIELDS = ("first_name", "last_name", "nickname") + PARTICIPANT_EDITABLE_FIELDS
NESTED_SECTIONS = ("team", "doubles", "lanes", "averages", "scores")


class ParticipantNotFound(LookupError):
    pass


def to_team_slug(name: Optional[str]) -> str:
    return re.sub(r"[^a-z0-9]+", "-", (name or "").lower()).strip("-")


_IDENTITY_SQL = """
    SELECT p.pid, p.first_name, p.last_name, p.nickname, p.email, p.phone,
           p.city, p.region, p.country, p.division, p.tnmt_id, p.did,
           t.team_name, t.slug,
           dp.pid AS pairing_pid, dp.partner_pid,
           dp.partner_first_name, dp.partner_last_name,
           pp.first_name AS linked_first_name, pp.last_name AS linked_last_name,
           fb.pid AS fallback_pid,
           fb.first_name AS fallback_first_name, fb.last_name AS fallback_last_name
    FROM people p
    LEFT JOIN teams t ON t.tnmt_id = p.tnmt_id
    LEFT JOIN doubles_pairs dp ON dp.pid = p.pid AND dp.did = p.did
    LEFT JOIN people pp ON pp.pid = dp.partner_pid
    LEFT JOIN LATERAL (
        SELECT f.pid, f.first_name, f.last_name
        FROM people f
        WHERE f.did = p.did AND f.pid <> p.pid
        ORDER BY f.pid
        LIMIT 1
    ) fb ON TRUE
    WHERE p.pid = %s
"""

_SCORES_SQL = """
    SELECT event_type, lane, game1, game2, game3, entering_avg, handicap
    FROM scores
    WHERE pid = %s
"""


def resolve_partner(row: Dict) -> Tuple[str, str]:
    """Return ``(partner_pid, partner_name)`` for a joined identity row.

    A live pairing row is authoritative: when its partner reference is null
    the participant has no partner, whatever name snapshot is left on the
    row. Only a participant without any pairing row falls back to another
    participant sharing the doubles id.
    """
    if row.get("pairing_pid") is not None:
        partner_pid = row.get("partner_pid")
        if not partner_pid:
            return "", ""
        name = build_full_name(
            {"first_name": row.get("linked_first_name"), "last_name": row.get("linked_last_name")}
        ) or build_full_name(
            {"first_name": row.get("partner_first_name"), "last_name": row.get("partner_last_name")}
        )
        return str(partner_pid), name
    if row.get("fallback_pid"):
        return str(row["fallback_pid"]), build_full_name(
            {"first_name": row.get("fallback_first_name"), "last_name": row.get("fallback_last_name")}
        )
    return "", ""


def _first_present(score_index: Dict[str, Dict], field: str):
    for event_type in EVENT_TYPES:
        value = score_index.get(event_type, {}).get(field)
        if value is not None:
            return value
    return None


def format_participant(pid: str, query: Optional[QueryFn] = None) -> Optional[Dict[str, Any]]:
    """Assemble the full view of one participant, or ``None`` if unknown."""
    query = query or datastore.query
    rows = query(_IDENTITY_SQL, (pid,))["rows"]
    if not rows:
        return None
    person = rows[0]
    score_rows = query(_SCORES_SQL, (pid,))["rows"]
    score_index = {row.get("event_type"): row for row in score_rows}

    partner_pid, partner_name = resolve_partner(person)
    team_name = person.get("team_name") or ""
    return {
        "pid": person.get("pid"),
        "first_name": person.get("first_name"),
        "last_name": person.get("last_name"),
        "nickname": person.get("nickname"),
        "email": person.get("email"),
        "phone": person.get("phone"),
        "city": person.get("city"),
        "region": person.get("region"),
        "country": person.get("country"),
        "division": person.get("division"),
        "team": {
            "tnmt_id": person.get("tnmt_id"),
            "name": team_name,
            "slug": person.get("slug") or to_team_slug(team_name),
        },
        "doubles": {
            "did": person.get("did"),
            "partner_pid": partner_pid,
            "partner_name": partner_name,
        },
        "lanes": {
            event_type: score_index.get(event_type, {}).get("lane") or ""
            for event_type in EVENT_TYPES
        },
        "averages": {
            "entering": to_score(_first_present(score_index, "entering_avg")),
            "handicap": to_score(_first_present(score_index, "handicap")),
        },
        "scores": {
            event_type: list(game_slots(score_index.get(event_type, {})))
            for event_type in EVENT_TYPES
        },
    }


def build_changes(current: Dict, updates: Dict) -> List[Dict[str, Any]]:
    """List ``{field, old_value, new_value}`` for every edited field."""
    pairs = [(field, current.get(field), updates.get(field)) for field in PERSON_FIELDS]
    nested = [
        ("team_name", "team", "name"),
        ("team_id", "team", "tnmt_id"),
        ("doubles_id", "doubles", "did"),
        ("partner_pid", "doubles", "partner_pid"),
        ("avg_entering", "averages", "entering"),
        ("avg_handicap", "averages", "handicap"),
    ]
    nested += [(f"lane_{e}", "lanes", e) for e in EVENT_TYPES]
    nested += [(f"scores_{e}", "scores", e) for e in EVENT_TYPES]
    for field, section, key in nested:
        pairs.append(
            (field, (current.get(section) or {}).get(key), (updates.get(section) or {}).get(key))
        )
    return [
        {"field": field, "old_value": old, "new_value": new}
        for field, old, new in pairs
        if old != new
    ]


def resolve_participant_updates(current: Dict, raw_updates: Dict, participant_only: bool) -> Dict:
    """Merge a raw edit over the current view.

    Participants may only change their contact fields; administrators may
    change everything, one nested section key at a time.
    """
    raw_updates = raw_updates or {}
    merged = dict(current)
    if participant_only:
        for field in PARTICIPANT_EDITABLE_FIELDS:
            if field in raw_updates:
                merged[field] = raw_updates[field]
        return merged
    for key, value in raw_updates.items():
        if key == "force_reciprocal":
            continue
        if key in NESTED_SECTIONS and isinstance(value, dict):
            merged[key] = {**(current.get(key) or {}), **value}
        else:
            merged[key] = value
    return merged


def _upsert_person(pid: str, updates: Dict, query: QueryFn) -> None:
    query(
        """
        INSERT INTO people (pid, first_name, last_name, nickname, email, phone,
                            city, region, country, tnmt_id, did, updated_at)
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, now())
        ON CONFLICT (pid) DO UPDATE SET
            first_name = EXCLUDED.first_name,
            last_name = EXCLUDED.last_name,
            nickname = EXCLUDED.nickname,
            email = EXCLUDED.email,
            phone = EXCLUDED.phone,
            city = EXCLUDED.city,
            region = EXCLUDED.region,
            country = EXCLUDED.country,
            tnmt_id = EXCLUDED.tnmt_id,
            did = EXCLUDED.did,
            updated_at = now()
        """,
        [pid]
        + [updates.get(field) for field in PERSON_FIELDS]
        + [
            (updates.get("team") or {}).get("tnmt_id") or None,
            (updates.get("doubles") or {}).get("did") or None,
        ],
    )


def _upsert_team(team: Optional[Dict], query: QueryFn) -> None:
    if not team or not team.get("tnmt_id") or not team.get("name"):
        return
    query(
        """
        INSERT INTO teams (tnmt_id, team_name, slug)
        VALUES (%s, %s, %s)
        ON CONFLICT (tnmt_id) DO UPDATE SET
            team_name = EXCLUDED.team_name,
            slug = EXCLUDED.slug
        """,
        (team["tnmt_id"], team["name"], to_team_slug(team["name"])),
    )


def _score_row_changed(event_type: str, current: Optional[Dict], updates: Dict) -> bool:
    if current is None:
        return True
    if (current.get("averages") or {}) != (updates.get("averages") or {}):
        return True
    return any(
        (current.get(section) or {}).get(event_type) != (updates.get(section) or {}).get(event_type)
        for section in ("scores", "lanes")
    )


def _upsert_scores(pid: str, updates: Dict, query: QueryFn, current: Optional[Dict] = None) -> None:
    """Write one score row per event whose games, lane or averages changed.

    Games are positional: ``scores[event]`` is ``[game1, game2, game3]`` with
    gaps kept as ``None``.
    """
    averages = updates.get("averages") or {}
    entering = to_score(averages.get("entering"))
    handicap = to_score(averages.get("handicap"))
    if handicap is None:
        handicap = calculate_handicap(entering)
    for event_type in EVENT_TYPES:
        if not _score_row_changed(event_type, current, updates):
            continue
        games = list((updates.get("scores") or {}).get(event_type) or [])[:3]
        games += [None] * (3 - len(games))
        query(
            """
            INSERT INTO scores (id, pid, event_type, lane, game1, game2, game3,
                                entering_avg, handicap, updated_at)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, now())
            ON CONFLICT (pid, event_type) DO UPDATE SET
                lane = EXCLUDED.lane,
                game1 = EXCLUDED.game1,
                game2 = EXCLUDED.game2,
                game3 = EXCLUDED.game3,
                entering_avg = EXCLUDED.entering_avg,
                handicap = EXCLUDED.handicap,
                updated_at = now()
            """,
            (
                str(uuid.uuid4()),
                pid,
                event_type,
                (updates.get("lanes") or {}).get(event_type) or None,
                *[to_score(g) for g in games],
                entering,
                handicap,
            ),
        )


def apply_participant_updates(
    pid: str,
    updates: Dict,
    participant_only: bool,
    query: QueryFn,
    current: Optional[Dict] = None,
) -> None:
    """Write person, team and score rows. Pairings are handled separately.

    With ``current`` given, score rows for untouched events are left alone.
    """
    _upsert_person(pid, updates, query)
    if participant_only:
        return
    _upsert_team(updates.get("team"), query)
    _upsert_scores(pid, updates, query, current)


def _sync_pairing(pid: str, current: Dict, updates: Dict, force: bool, query: QueryFn) -> List[Tuple[str, Dict]]:
    """Bring pairing rows in line with the edit.

    Returns ``(pid, change)`` audit entries for the other participants whose
    partner reference changed as a side effect.
    """
    old_team = _ref((current.get("team") or {}).get("tnmt_id"))
    new_team = _ref((updates.get("team") or {}).get("tnmt_id"))
    old_did = _ref((current.get("doubles") or {}).get("did"))
    new_did = _ref((updates.get("doubles") or {}).get("did"))
    old_partner = _ref((current.get("doubles") or {}).get("partner_pid"))
    new_partner = _ref((updates.get("doubles") or {}).get("partner_pid"))

    if (old_team and not new_team) or (old_did and not new_did):
        cleared = detach_from_team(pid, query)
        return [(c["pid"], _partner_change(c["old_partner_pid"], "")) for c in cleared]

    if new_did == old_did and new_partner == old_partner:
        return []

    result = link_partners(pid, new_did, new_partner, query, force=force)
    side_effects = [(c["pid"], _partner_change(c["old_partner_pid"], "")) for c in result["cleared"]]
    if new_partner and result["previous_partner_pid"] != str(pid):
        side_effects.append((new_partner, _partner_change(result["previous_partner_pid"] or "", pid)))
    return side_effects


def _ref(value) -> Optional[str]:
    if value is None or str(value).strip() == "":
        return None
    return str(value).strip()


def _partner_change(old: str, new: str) -> Dict:
    return {"field": "partner_pid", "old_value": old, "new_value": new}


def update_participant(
    pid: str,
    raw_updates: Dict,
    actor: str,
    participant_only: bool = False,
    force_reciprocal: bool = False,
    transaction: Optional[Callable] = None,
) -> Dict[str, Any]:
    """Apply one participant edit atomically and return the refreshed view.

    Raises :class:`ParticipantNotFound` for an unknown pid and
    :class:`~portal.pairing.PairingConflict` when the new partner is already
    paired elsewhere and ``force_reciprocal`` is false. Either way nothing is
    written.
    """
    transaction = transaction or datastore.transaction
    with transaction() as query:
        current = format_participant(pid, query)
        if current is None:
            raise ParticipantNotFound(pid)
        updates = resolve_participant_updates(current, raw_updates, participant_only)

        side_effects: List[Tuple[str, Dict]] = []
        if not participant_only:
            side_effects = _sync_pairing(pid, current, updates, force_reciprocal, query)
        apply_participant_updates(pid, updates, participant_only, query, current)

        changes = build_changes(current, updates)
        write_audit_entries(actor, pid, changes, query)
        for other_pid, change in side_effects:
            write_audit_entries(actor, other_pid, [change], query)
        logger.info(
            "participant %s updated by %s: %d change(s), %d linked edit(s)",
            pid, actor, len(changes), len(side_effects),
        )
        return format_participant(pid, query)


__all__ = [
    "ParticipantNotFound",
    "to_team_slug",
    "resolve_partner",
    "format_participant",
    "build_changes",
    "resolve_participant_updates",
    "apply_participant_updates",
    "update_participant",
]
