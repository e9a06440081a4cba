from typing import Any, Dict, List, Optional, Sequence

# PostgreSQL-backed datastore proxy.
# Request handlers import from here so tests can monkeypatch ``datastore_pg``
# without touching the handlers themselves.

from . import datastore_pg as _pg


def query(sql: str, params: Optional[Sequence[Any]] = None, many: bool = False) -> Dict[str, Any]:
    return _pg.query(sql, params, many=many)


def transaction():
    return _pg.transaction()


def fetch_team_rows() -> List[Dict[str, Any]]:
    return _pg.fetch_team_rows()


def fetch_doubles_rows() -> List[Dict[str, Any]]:
    return _pg.fetch_doubles_rows()


def fetch_singles_rows() -> List[Dict[str, Any]]:
    return _pg.fetch_singles_rows()


def fetch_standings_rows() -> Dict[str, List[Dict[str, Any]]]:
    """Rows for all three events, keyed the way ``build_score_standings`` takes them."""
    return {
        "team_rows": _pg.fetch_team_rows(),
        "doubles_rows": _pg.fetch_doubles_rows(),
        "singles_rows": _pg.fetch_singles_rows(),
    }


def fetch_scratch_masters_rows() -> List[Dict[str, Any]]:
    return _pg.fetch_scratch_masters_rows()


def fetch_optional_events_rows() -> List[Dict[str, Any]]:
    return _pg.fetch_optional_events_rows()
