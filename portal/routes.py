from flask import Blueprint, abort, current_app, request
import os
import time

from .boards import build_optional_events_standings, build_scratch_masters
from .datastore import (
    fetch_optional_events_rows as ds_fetch_optional_events_rows,
    fetch_scratch_masters_rows as ds_fetch_scratch_masters_rows,
    fetch_standings_rows as ds_fetch_standings_rows,
    query as ds_query,
)
from .issues import build_possible_issues_report
from .pairing import PairingConflict
from .participants import ParticipantNotFound, format_participant, update_participant
from .scoring import build_score_standings


bp = Blueprint('portal', __name__)

# In-process cache for the computed boards, keyed by board name
_BOARD_CACHE: dict[str, tuple[float, dict]] = {}
_BOARD_TTL = int(os.environ.get('CACHE_TTL_STANDINGS', '60'))  # seconds


def _cache_get(name: str) -> dict | None:
    entry = _BOARD_CACHE.get(name)
    if not entry:
        return None
    exp, value = entry
    if exp < time.time():
        _BOARD_CACHE.pop(name, None)
        return None
    return value


def _cache_set(name: str, value: dict) -> None:
    _BOARD_CACHE[name] = (time.time() + _BOARD_TTL, value)


def _cache_clear_all() -> None:
    _BOARD_CACHE.clear()


def _actor() -> str:
    return (
        request.headers.get('X-Portal-Actor')
        or os.environ.get('ADMIN_EMAIL')
        or 'admin@local'
    )


def _cached_board(name: str, build):
    value = _cache_get(name)
    if value is None:
        value = build()
        _cache_set(name, value)
    return value


@bp.route('/health/db')
def health_db():
    """Database connectivity check; always HTTP 200 with a status body."""
    try:
        rows = ds_query('SELECT current_user AS "user", current_database() AS database')['rows']
    except RuntimeError as e:
        return {'connected': False, 'status': 'no_database_url', 'error': str(e)}
    except Exception as e:  # pragma: no cover - best-effort health output
        return {'connected': False, 'status': 'error', 'error': str(e)}
    info = rows[0] if rows else {}
    return {'connected': True, 'status': 'ok', 'user': info.get('user'), 'database': info.get('database')}


@bp.route('/api/scores')
def scores():
    return _cached_board('scores', lambda: build_score_standings(**ds_fetch_standings_rows()))


@bp.route('/api/scratch-masters')
def scratch_masters():
    return _cached_board('scratch_masters', lambda: build_scratch_masters(ds_fetch_scratch_masters_rows()))


@bp.route('/api/optional-events')
def optional_events():
    return _cached_board('optional_events', lambda: build_optional_events_standings(ds_fetch_optional_events_rows()))


@bp.route('/api/participants/<pid>', methods=['GET'])
def get_participant(pid):
    participant = format_participant(pid, ds_query)
    if participant is None:
        abort(404, description='Participant not found.')
    return participant


@bp.route('/api/participants/<pid>', methods=['PATCH'])
def patch_participant(pid):
    payload = request.get_json(silent=True)
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        abort(400, description='Expected a JSON object.')
    force = payload.pop('force_reciprocal', False) is True
    participant_only = request.args.get('scope') == 'participant'
    try:
        updated = update_participant(
            pid,
            payload,
            _actor(),
            participant_only=participant_only,
            force_reciprocal=force,
        )
    except ParticipantNotFound:
        abort(404, description='Participant not found.')
    except PairingConflict as conflict:
        current_app.logger.info('partner conflict on %s: %s', pid, conflict)
        return {'conflict': conflict.conflict}, 409
    except ValueError as e:
        abort(400, description=str(e))
    _cache_clear_all()
    return updated


@bp.route('/api/admin/possible-issues')
def possible_issues():
    return build_possible_issues_report(ds_query)
