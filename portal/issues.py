"""Read-only consistency report over participants and doubles pairings."""

from __future__ import annotations

from typing import Callable, Dict, List, Optional

QueryFn = Callable[..., Dict]

MAX_ISSUE_DETAILS = 12
NON_EMPTY_LANE_SQL = "s.lane IS NOT NULL AND trim(s.lane) <> ''"


def _display_name(row: Dict) -> str:
    name = f"{row.get('first_name') or ''} {row.get('last_name') or ''}".strip()
    return name or str(row.get("pid") or "") or "Unknown"


def parse_participant_list(raw: Optional[str]) -> List[Dict[str, str]]:
    """Parse ``"pid:Name | pid:Name"`` aggregates into ``[{pid, name}]``."""
    parsed = []
    for value in str(raw or "").split("|"):
        value = value.strip()
        if not value:
            continue
        pid, _, name = value.partition(":")
        pid = pid.strip()
        if pid:
            parsed.append({"pid": pid, "name": name.strip() or pid})
    return parsed


def _details(rows: List[Dict], describe: Callable[[Dict], str]) -> List[Dict]:
    return [
        {"pid": str(row.get("pid") or ""), "name": _display_name(row), "detail": describe(row)}
        for row in rows[:MAX_ISSUE_DETAILS]
    ]


def _with_related(details: List[Dict], rows: List[Dict], field: str) -> List[Dict]:
    return [
        {**detail, "related_participants": parse_participant_list(rows[i].get(field))}
        for i, detail in enumerate(details)
    ]


def build_possible_issues_from_rows(
    no_team_no_lane_no_partner: List[Dict] = (),
    partner_target_multiple_owners: List[Dict] = (),
    participant_with_multiple_partners: List[Dict] = (),
    non_reciprocal_partner_rows: List[Dict] = (),
    lane_but_no_team: List[Dict] = (),
) -> List[Dict]:
    issues: List[Dict] = []

    if no_team_no_lane_no_partner:
        issues.append({
            "key": "no-team-no-lane-no-partner",
            "title": "Participants with no team, no lane assignments, and no doubles partner",
            "count": len(no_team_no_lane_no_partner),
            "details": _details(list(no_team_no_lane_no_partner), lambda r: "Missing team, lanes, and doubles partner"),
        })

    if partner_target_multiple_owners:
        rows = list(partner_target_multiple_owners)
        issues.append({
            "key": "partner-target-multiple-owners",
            "title": "Participants listed as doubles partner for multiple people",
            "count": len(rows),
            "details": _with_related(
                _details(rows, lambda r: f"Referenced by {r.get('affected_count')} participants"),
                rows,
                "affected_participants",
            ),
        })

    if participant_with_multiple_partners:
        rows = list(participant_with_multiple_partners)
        issues.append({
            "key": "participant-with-multiple-partners",
            "title": "Participants assigned to multiple doubles partners",
            "count": len(rows),
            "details": _with_related(
                _details(rows, lambda r: f"Has {r.get('affected_count')} partners"),
                rows,
                "partner_list",
            ),
        })

    if non_reciprocal_partner_rows:
        rows = list(non_reciprocal_partner_rows)

        def describe(row):
            if row.get("partner_pid"):
                return (
                    f"Points to {row.get('partner_name') or 'unknown'} ({row['partner_pid']}) "
                    "but reverse mapping is missing"
                )
            return "Missing partner PID in doubles pair mapping"

        details = _details(rows, describe)
        for i, detail in enumerate(details):
            partner_pid = rows[i].get("partner_pid")
            detail["related_participants"] = (
                [{"pid": str(partner_pid), "name": rows[i].get("partner_name") or str(partner_pid)}]
                if partner_pid
                else []
            )
        issues.append({
            "key": "non-reciprocal-doubles-partners",
            "title": "Non-reciprocal doubles partner mappings",
            "count": len(rows),
            "details": details,
        })

    if lane_but_no_team:
        issues.append({
            "key": "lane-without-team",
            "title": "Participants with lane assignments but no team",
            "count": len(lane_but_no_team),
            "details": _details(list(lane_but_no_team), lambda r: f"Assigned lanes: {r.get('lanes') or 'unknown'}"),
        })

    return issues


_QUERIES = {
    "no_team_no_lane_no_partner": f"""
        SELECT p.pid, p.first_name, p.last_name
        FROM people p
        LEFT JOIN admins a ON a.pid = p.pid
        WHERE a.pid IS NULL
          AND (p.tnmt_id IS NULL OR trim(p.tnmt_id) = '')
          AND NOT EXISTS (SELECT 1 FROM scores s WHERE s.pid = p.pid AND {NON_EMPTY_LANE_SQL})
          AND NOT EXISTS (SELECT 1 FROM doubles_pairs d WHERE d.pid = p.pid AND d.partner_pid IS NOT NULL)
          AND NOT EXISTS (SELECT 1 FROM doubles_pairs d WHERE d.partner_pid = p.pid)
        ORDER BY p.last_name, p.first_name
    """,
    "partner_target_multiple_owners": """
        SELECT dp.partner_pid AS pid, pp.first_name, pp.last_name,
               count(DISTINCT dp.pid) AS affected_count,
               string_agg(DISTINCT dp.pid || ':' || p.first_name || ' ' || p.last_name, ' | ')
                   AS affected_participants
        FROM doubles_pairs dp
        LEFT JOIN people pp ON pp.pid = dp.partner_pid
        LEFT JOIN people p ON p.pid = dp.pid
        WHERE dp.partner_pid IS NOT NULL
        GROUP BY dp.partner_pid, pp.first_name, pp.last_name
        HAVING count(DISTINCT dp.pid) > 1
        ORDER BY affected_count DESC, pp.last_name, pp.first_name
    """,
    "participant_with_multiple_partners": """
        SELECT dp.pid, p.first_name, p.last_name,
               count(DISTINCT dp.partner_pid) AS affected_count,
               string_agg(DISTINCT dp.partner_pid || ':' || pp.first_name || ' ' || pp.last_name, ' | ')
                   AS partner_list
        FROM doubles_pairs dp
        JOIN people p ON p.pid = dp.pid
        LEFT JOIN people pp ON pp.pid = dp.partner_pid
        GROUP BY dp.pid, p.first_name, p.last_name
        HAVING count(DISTINCT dp.partner_pid) > 1
        ORDER BY affected_count DESC, p.last_name, p.first_name
    """,
    "non_reciprocal_partner_rows": """
        SELECT dp.pid, p.first_name, p.last_name, dp.partner_pid,
               pp.first_name || ' ' || pp.last_name AS partner_name
        FROM doubles_pairs dp
        LEFT JOIN doubles_pairs rev ON rev.pid = dp.partner_pid AND rev.partner_pid = dp.pid
        LEFT JOIN people p ON p.pid = dp.pid
        LEFT JOIN people pp ON pp.pid = dp.partner_pid
        WHERE dp.partner_pid IS NOT NULL AND rev.pid IS NULL
        ORDER BY p.last_name, p.first_name
    """,
    "lane_but_no_team": f"""
        SELECT p.pid, p.first_name, p.last_name,
               string_agg(DISTINCT s.event_type || ':' || s.lane, ', ') AS lanes
        FROM people p
        JOIN scores s ON s.pid = p.pid AND {NON_EMPTY_LANE_SQL}
        LEFT JOIN admins a ON a.pid = p.pid
        WHERE a.pid IS NULL
          AND (p.tnmt_id IS NULL OR trim(p.tnmt_id) = '')
        GROUP BY p.pid, p.first_name, p.last_name
        ORDER BY p.last_name, p.first_name
    """,
}

_COVERAGE_SQL = f"""
    SELECT count(*) AS total_participants,
           count(*) FILTER (
               WHERE EXISTS (SELECT 1 FROM scores s WHERE s.pid = p.pid AND {NON_EMPTY_LANE_SQL})
           ) AS participants_with_lane
    FROM people p
    LEFT JOIN admins a ON a.pid = p.pid
    WHERE a.pid IS NULL
"""


def build_possible_issues_report(query: QueryFn) -> Dict:
    coverage_rows = query(_COVERAGE_SQL)["rows"]
    coverage = coverage_rows[0] if coverage_rows else {}
    total = int(coverage.get("total_participants") or 0)
    with_lane = int(coverage.get("participants_with_lane") or 0)

    found = {name: query(sql)["rows"] for name, sql in _QUERIES.items()}
    issues = build_possible_issues_from_rows(**found)
    return {
        "show_section": total > 0 and bool(issues),
        "coverage": {
            "total_participants": total,
            "participants_with_lane": with_lane,
            "lane_coverage_pct": round(with_lane * 100 / total, 2) if total else 0,
        },
        "issues": issues,
    }


__all__ = [
    "MAX_ISSUE_DETAILS",
    "parse_participant_list",
    "build_possible_issues_from_rows",
    "build_possible_issues_report",
]
