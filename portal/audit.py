"""Audit trail for participant edits and administrative actions."""

from __future__ import annotations

import json
import uuid
from typing import Any, Callable, Dict, Iterable, List

QueryFn = Callable[..., Dict]


def normalize_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return json.dumps(value)


def build_audit_entries(actor: str, pid: str, changes: Iterable[Dict]) -> List[Dict[str, str]]:
    return [
        {
            "admin_email": actor,
            "pid": pid,
            "field": change["field"],
            "old_value": normalize_value(change.get("old_value")),
            "new_value": normalize_value(change.get("new_value")),
        }
        for change in changes
    ]


def write_audit_entries(actor: str, pid: str, changes: List[Dict], query: QueryFn) -> int:
    """Batch-insert one ``audit_logs`` row per change.

    Returns the number of entries written (zero writes nothing).
    """
    if not changes:
        return 0
    entries = build_audit_entries(actor, pid, changes)
    rows = [
        (
            str(uuid.uuid4()),
            entry["admin_email"],
            entry["pid"],
            entry["field"],
            entry["old_value"],
            entry["new_value"],
        )
        for entry in entries
    ]
    query(
        "INSERT INTO audit_logs (id, admin_email, pid, field, old_value, new_value) VALUES %s",
        rows,
        many=True,
    )
    return len(entries)


def log_admin_action(actor: str, action: str, details: Any, query: QueryFn) -> None:
    query(
        "INSERT INTO admin_actions (id, admin_email, action, details) VALUES (%s, %s, %s, %s)",
        (str(uuid.uuid4()), actor, action, normalize_value(details)),
    )


__all__ = ["normalize_value", "build_audit_entries", "write_audit_entries", "log_admin_action"]
