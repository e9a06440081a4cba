"""Applying matched score imports.

The CSV/XML parsers live elsewhere; they hand over a match result shaped
``{matched, unmatched, warnings, errors, updates}``. Only ``matched`` rows are
written, and an incoming blank never overwrites a stored game.
"""

from __future__ import annotations

import logging
import uuid
from typing import Callable, Dict, List, Optional

from . import datastore
from .audit import log_admin_action, write_audit_entries
from .constants import EVENT_DOUBLES, EVENT_TYPES
from .scoring import GAME_FIELDS, to_score

logger = logging.getLogger(__name__)

QueryFn = Callable[..., Dict]


class ImportRejected(ValueError):
    pass


def _game_changes(bowler: Dict, event_type: str) -> List[Dict]:
    changes = []
    for field in GAME_FIELDS:
        new = to_score(bowler.get(field))
        old = to_score(bowler.get(f"existing_{field}"))
        if new is None:
            # Blank cells keep the stored value
            continue
        if new != old:
            changes.append(
                {"field": f"score_{event_type}_{field}", "old_value": old, "new_value": new}
            )
    return changes


def import_scores(matched: List[Dict], event_type: str, actor: str, query: QueryFn) -> Dict[str, int]:
    """Write matched game values for one event and audit each changed game."""
    if event_type not in EVENT_TYPES:
        raise ImportRejected(f"Unknown event type {event_type!r}.")
    updated = skipped = 0
    for bowler in matched or []:
        changes = _game_changes(bowler, event_type)
        if not changes:
            skipped += 1
            continue
        query(
            """
            INSERT INTO scores (id, pid, event_type, game1, game2, game3, updated_at)
            VALUES (%s, %s, %s, %s, %s, %s, now())
            ON CONFLICT (pid, event_type) DO UPDATE SET
                game1 = COALESCE(EXCLUDED.game1, scores.game1),
                game2 = COALESCE(EXCLUDED.game2, scores.game2),
                game3 = COALESCE(EXCLUDED.game3, scores.game3),
                updated_at = now()
            """,
            (
                str(uuid.uuid4()),
                bowler["pid"],
                event_type,
                *[to_score(bowler.get(field)) for field in GAME_FIELDS],
            ),
        )
        write_audit_entries(actor, bowler["pid"], changes, query)
        updated += 1
    return {"updated": updated, "skipped": skipped}


def apply_match_result(
    result: Dict,
    event_type: str,
    actor: str,
    transaction: Optional[Callable] = None,
) -> Dict[str, int]:
    """Import a previewed match result in one transaction."""
    matched = (result or {}).get("matched") or []
    if not matched:
        raise ImportRejected("No participants matched.")
    missing_partners = [
        w for w in (result.get("warnings") or []) if w.get("type") == "no_doubles_partner"
    ]
    if event_type == EVENT_DOUBLES and missing_partners:
        raise ImportRejected(
            f"Cannot import doubles scores: {len(missing_partners)} bowler(s) have no doubles "
            "partner assigned. Assign partners before importing."
        )
    transaction = transaction or datastore.transaction
    with transaction() as query:
        stats = import_scores(matched, event_type, actor, query)
        log_admin_action(actor, "import_scores", {**stats, "event_type": event_type}, query)
    logger.info("import_scores event=%s updated=%d skipped=%d", event_type, stats["updated"], stats["skipped"])
    return stats


__all__ = ["ImportRejected", "import_scores", "apply_match_result"]
