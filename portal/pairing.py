"""Doubles pairing consistency.

A pairing row ``(did, pid, partner_pid)`` belongs to one participant. Two
participants are properly paired when each row points at the other. The
functions here keep that relationship reciprocal while participants are
edited:

* before any pairing write, :func:`reconcile_pairing` removes the owner's rows
  under other doubles ids and breaks links that still point at the owner from
  anyone but the new partner;
* :func:`link_partners` performs the whole two-sided edit and refuses to
  overwrite somebody else's partner unless forced;
* :func:`detach_from_team` drops every pairing in both directions when a
  participant leaves their team.

None of these commit. Callers run them inside ``datastore.transaction()`` so
that a failure part way through never leaves a one-sided pairing behind.
Every function takes the ``query(sql, params) -> {"rows": [...]}`` callable to
run on.
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, List, Optional

from .scoring import build_full_name

logger = logging.getLogger(__name__)

QueryFn = Callable[..., Dict]

_CLEARED_PARTNER = (
    "partner_pid = NULL, partner_first_name = NULL, partner_last_name = NULL, updated_at = now()"
)


class PairingConflict(Exception):
    """The requested partner is already paired with someone else."""

    def __init__(self, conflict: Dict[str, str]):
        self.conflict = conflict
        super().__init__(
            f"{conflict.get('partner_pid')} is already paired with "
            f"{conflict.get('current_partner_pid')}"
        )


def _same(a, b) -> bool:
    return a is not None and b is not None and str(a) == str(b)


def _pairing_state(pid: str, query: QueryFn) -> Optional[Dict]:
    """Participant identity, doubles id and current partner (live row only)."""
    rows = query(
        """
        SELECT p.pid, p.first_name, p.last_name, p.did,
               dp.partner_pid, dp.partner_first_name, dp.partner_last_name,
               cp.first_name AS current_first_name, cp.last_name AS current_last_name
        FROM people p
        LEFT JOIN doubles_pairs dp ON dp.pid = p.pid AND dp.did = p.did
        LEFT JOIN people cp ON cp.pid = dp.partner_pid
        WHERE p.pid = %s
        """,
        (pid,),
    )["rows"]
    return rows[0] if rows else None


def check_partner_conflict(target_pid: str, requester_pid: str, query: QueryFn) -> Optional[Dict[str, str]]:
    """Return a conflict descriptor if ``target_pid`` is paired with a third party.

    ``None`` when the target has no pairing row, has no partner, or already
    points at ``requester_pid``.
    """
    state = _pairing_state(target_pid, query)
    if not state or not state.get("partner_pid"):
        return None
    if _same(state["partner_pid"], requester_pid):
        return None
    current_name = build_full_name(
        {"first_name": state.get("current_first_name"), "last_name": state.get("current_last_name")}
    ) or build_full_name(
        {"first_name": state.get("partner_first_name"), "last_name": state.get("partner_last_name")}
    )
    return {
        "partner_pid": str(target_pid),
        "partner_name": build_full_name(state),
        "current_partner_pid": str(state["partner_pid"]),
        "current_partner_name": current_name,
    }


def _write_pairing(did: str, pid: str, partner_pid: Optional[str], query: QueryFn) -> None:
    query(
        """
        INSERT INTO doubles_pairs (did, pid, partner_pid, partner_first_name, partner_last_name, updated_at)
        VALUES (%s, %s, %s,
                (SELECT first_name FROM people WHERE pid = %s),
                (SELECT last_name FROM people WHERE pid = %s),
                now())
        ON CONFLICT (did, pid) DO UPDATE SET
            partner_pid = EXCLUDED.partner_pid,
            partner_first_name = EXCLUDED.partner_first_name,
            partner_last_name = EXCLUDED.partner_last_name,
            updated_at = now()
        """,
        (did, pid, partner_pid or None, partner_pid or None, partner_pid or None),
    )


def reconcile_pairing(pid: str, new_did: str, new_partner_pid: Optional[str], query: QueryFn) -> List[Dict[str, str]]:
    """Prepare ``pid`` for a pairing write under ``new_did``.

    Deletes the participant's rows left under any other doubles id, then
    clears the partner reference of everyone (other than ``new_partner_pid``)
    still pointing at ``pid``.

    Returns ``[{pid, old_partner_pid}]`` for each reference that was cleared.
    """
    query(
        "DELETE FROM doubles_pairs WHERE pid = %s AND did <> %s",
        (pid, new_did),
    )
    rows = query(
        f"""
        UPDATE doubles_pairs SET {_CLEARED_PARTNER}
        WHERE partner_pid = %s AND pid IS DISTINCT FROM %s
        RETURNING pid
        """,
        (pid, new_partner_pid or None),
    )["rows"]
    cleared = [{"pid": str(r["pid"]), "old_partner_pid": str(pid)} for r in rows]
    if cleared:
        logger.info("reconcile_pairing pid=%s cleared=%s", pid, [c["pid"] for c in cleared])
    return cleared


def upsert_reciprocal_partner(target_pid: str, owner_pid: str, query: QueryFn) -> Optional[Dict]:
    """Point ``target_pid``'s pairing row back at ``owner_pid``.

    A target without a doubles id cannot hold a pairing, so nothing is
    written and ``None`` is returned. Otherwise any third participant still
    linked to the target is detached first, then the target's row is written.
    """
    state = _pairing_state(target_pid, query)
    did = (state or {}).get("did")
    if not did:
        logger.debug("upsert_reciprocal_partner skipped: %s has no doubles id", target_pid)
        return None
    previous = state.get("partner_pid")
    cleared = reconcile_pairing(target_pid, did, owner_pid, query)
    _write_pairing(did, target_pid, owner_pid, query)
    logger.info("reciprocal pairing written did=%s pid=%s partner=%s", did, target_pid, owner_pid)
    return {
        "did": did,
        "pid": str(target_pid),
        "previous_partner_pid": str(previous) if previous else None,
        "cleared": cleared,
    }


def link_partners(
    owner_pid: str,
    owner_did: Optional[str],
    partner_pid: Optional[str],
    query: QueryFn,
    force: bool = False,
) -> Dict:
    """Set ``owner_pid``'s partner to ``partner_pid`` on both sides at once.

    Raises :class:`PairingConflict` when the partner is already paired with a
    third participant and ``force`` is false. With ``force`` the old link is
    broken. A ``partner_pid`` of ``None`` clears the owner's partner.

    Returns ``{owner_pid, partner_pid, previous_partner_pid, cleared,
    overridden}`` where ``previous_partner_pid`` is the partner's own partner
    before the edit and ``cleared`` lists every reference that was nulled.
    """
    if partner_pid and _same(partner_pid, owner_pid):
        raise ValueError("A participant cannot be their own doubles partner.")

    conflict = None
    if partner_pid:
        conflict = check_partner_conflict(partner_pid, owner_pid, query)
        if conflict and not force:
            logger.warning(
                "pairing conflict owner=%s partner=%s current=%s",
                owner_pid, partner_pid, conflict["current_partner_pid"],
            )
            raise PairingConflict(conflict)

    cleared: List[Dict[str, str]] = []
    if owner_did:
        cleared.extend(reconcile_pairing(owner_pid, owner_did, partner_pid, query))
        _write_pairing(owner_did, owner_pid, partner_pid, query)

    previous_partner_pid = None
    if partner_pid:
        reciprocal = upsert_reciprocal_partner(partner_pid, owner_pid, query)
        if reciprocal:
            previous_partner_pid = reciprocal["previous_partner_pid"]
            cleared.extend(c for c in reciprocal["cleared"] if c not in cleared)

    logger.info(
        "link_partners owner=%s partner=%s overridden=%s", owner_pid, partner_pid, bool(conflict)
    )
    return {
        "owner_pid": str(owner_pid),
        "partner_pid": str(partner_pid) if partner_pid else None,
        "previous_partner_pid": previous_partner_pid,
        "cleared": cleared,
        "overridden": conflict,
    }


def detach_from_team(pid: str, query: QueryFn) -> List[Dict[str, str]]:
    """Drop all pairings of a participant who no longer has a team.

    Deletes the participant's own rows and clears every other participant's
    reference to them. Returns ``[{pid, old_partner_pid}]`` for the cleared
    references.
    """
    query("DELETE FROM doubles_pairs WHERE pid = %s", (pid,))
    rows = query(
        f"UPDATE doubles_pairs SET {_CLEARED_PARTNER} WHERE partner_pid = %s RETURNING pid",
        (pid,),
    )["rows"]
    cleared = [{"pid": str(r["pid"]), "old_partner_pid": str(pid)} for r in rows]
    logger.info("detach_from_team pid=%s cleared=%s", pid, [c["pid"] for c in cleared])
    return cleared


__all__ = [
    "PairingConflict",
    "check_partner_conflict",
    "reconcile_pairing",
    "upsert_reciprocal_partner",
    "link_partners",
    "detach_from_team",
]
