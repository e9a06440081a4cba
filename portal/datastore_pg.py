import os
import logging
from contextlib import contextmanager
from typing import Any, Callable, Dict, List, Optional, Sequence

import psycopg2
from psycopg2 import pool as pg_pool
from psycopg2.extras import RealDictCursor, execute_values

from .constants import EVENT_DOUBLES, EVENT_SINGLES, EVENT_TEAM

logger = logging.getLogger(__name__)

_POOL: Optional[pg_pool.AbstractConnectionPool] = None

QueryResult = Dict[str, Any]
QueryFn = Callable[..., QueryResult]


def database_url() -> Optional[str]:
    """Connection string; PORTAL_DATABASE_URL wins over DATABASE_URL."""
    return os.environ.get("PORTAL_DATABASE_URL") or os.environ.get("DATABASE_URL")


def _env_int(name: str, default: Optional[int] = None) -> Optional[int]:
    val = os.environ.get(name)
    if val is None:
        return default
    try:
        return int(val)
    except ValueError:
        return default


def _connect_kwargs() -> Dict[str, Any]:
    """connect_timeout (default 10s) plus TCP keepalive options.

    Keepalives are on unless DB_KEEPALIVES is 0/false; the IDLE, INTERVAL and
    COUNT tunables are only passed when set.
    """
    kwargs: Dict[str, Any] = {"connect_timeout": _env_int("DB_CONNECT_TIMEOUT", 10)}
    ka_env = os.environ.get("DB_KEEPALIVES")
    kwargs["keepalives"] = 0 if ka_env is not None and ka_env.lower() in ("0", "false") else 1
    for suffix in ("idle", "interval", "count"):
        value = _env_int(f"DB_KEEPALIVES_{suffix.upper()}")
        if value is not None:
            kwargs[f"keepalives_{suffix}"] = value
    return kwargs


def init_pool(minconn: int = 1, maxconn: int = 10) -> None:
    """Create the global connection pool once; later calls are ignored."""
    global _POOL
    if _POOL is not None:
        return
    url = database_url()
    if not url:
        return
    _POOL = pg_pool.ThreadedConnectionPool(minconn, maxconn, dsn=url, **_connect_kwargs())


def _is_healthy(conn) -> bool:
    try:
        with conn.cursor() as cur:
            cur.execute("SELECT 1")
        if not getattr(conn, "autocommit", False):
            conn.rollback()
    except Exception:
        return False
    return True


def _discard_open_transaction(conn) -> None:
    # status 1 = active, 2 = intrans, 3 = inerror
    if getattr(conn, "closed", 0) != 0 or getattr(conn, "autocommit", False):
        return
    if getattr(conn, "status", 0) in (1, 2, 3):
        try:
            conn.rollback()
        except psycopg2.Error:
            logger.warning("rollback on release failed", exc_info=True)


def _checkout():
    """Take a healthy pooled connection, replacing one stale connection."""
    for attempt in range(2):
        conn = _POOL.getconn()
        if _is_healthy(conn):
            return conn
        logger.warning("discarding unhealthy pooled connection (attempt %d)", attempt + 1)
        try:
            _POOL.putconn(conn, close=True)
        except Exception:
            logger.debug("putconn(close=True) failed", exc_info=True)
    raise psycopg2.OperationalError("Failed to acquire healthy DB connection after retry")


@contextmanager
def _get_conn():
    """Yield a connection, rolling back on error and always releasing it."""
    url = database_url()
    if not url:
        raise RuntimeError("DATABASE_URL not set; configure a PostgreSQL connection string")
    pooled = _POOL is not None
    conn = _checkout() if pooled else psycopg2.connect(url, **_connect_kwargs())
    try:
        try:
            yield conn
        except Exception:
            try:
                conn.rollback()
            except psycopg2.Error:
                logger.warning("rollback after error failed", exc_info=True)
            raise
    finally:
        if pooled:
            try:
                _discard_open_transaction(conn)
            finally:
                _POOL.putconn(conn)
        else:
            conn.close()


def _run(cur, sql: str, params: Optional[Sequence[Any]], many: bool = False) -> QueryResult:
    if many:
        # params is a sequence of row tuples; execute_values expands "VALUES %s"
        execute_values(cur, sql, list(params or ()))
    else:
        cur.execute(sql, tuple(params or ()))
    rows: List[Dict[str, Any]] = []
    if cur.description is not None:
        rows = [dict(r) for r in cur.fetchall()]
    return {"rows": rows, "rowcount": cur.rowcount}


def query(sql: str, params: Optional[Sequence[Any]] = None, many: bool = False) -> QueryResult:
    """Run one statement on its own connection and commit it.

    With ``many`` the statement is a batch insert over row tuples.
    """
    with _get_conn() as conn, conn.cursor(cursor_factory=RealDictCursor) as cur:
        result = _run(cur, sql, params, many)
        conn.commit()
    return result


@contextmanager
def transaction():
    """All-or-nothing scope yielding a ``query`` bound to one connection.

    Commits when the block exits normally; any exception rolls back and is
    re-raised unchanged. The connection is always released.
    """
    with _get_conn() as conn, conn.cursor(cursor_factory=RealDictCursor) as cur:

        def conn_query(sql: str, params: Optional[Sequence[Any]] = None, many: bool = False) -> QueryResult:
            return _run(cur, sql, params, many)

        yield conn_query
        conn.commit()


def fetch_team_rows() -> List[Dict[str, Any]]:
    """Every rostered member with their team score row (if any)."""
    return query(
        """
        SELECT t.tnmt_id, t.team_name, t.slug,
               p.pid, p.first_name, p.last_name, p.nickname,
               s.game1, s.game2, s.game3, s.handicap
        FROM teams t
        JOIN people p ON p.tnmt_id = t.tnmt_id
        LEFT JOIN scores s ON s.pid = p.pid AND s.event_type = %s
        ORDER BY t.team_name, p.last_name, p.first_name
        """,
        (EVENT_TEAM,),
    )["rows"]


def fetch_doubles_rows() -> List[Dict[str, Any]]:
    """Doubles rows keyed by a pair identifier shared by both partners."""
    return query(
        """
        SELECT LEAST(dp.pid, COALESCE(dp.partner_pid, dp.pid)) AS did,
               p.pid, p.first_name, p.last_name, p.nickname,
               s.game1, s.game2, s.game3, s.handicap
        FROM doubles_pairs dp
        JOIN people p ON p.pid = dp.pid
        LEFT JOIN scores s ON s.pid = p.pid AND s.event_type = %s
        ORDER BY did, p.pid
        """,
        (EVENT_DOUBLES,),
    )["rows"]


def fetch_singles_rows() -> List[Dict[str, Any]]:
    return query(
        """
        SELECT p.pid, p.first_name, p.last_name, p.nickname,
               s.game1, s.game2, s.game3, s.handicap
        FROM people p
        JOIN scores s ON s.pid = p.pid AND s.event_type = %s
        ORDER BY p.last_name, p.first_name
        """,
        (EVENT_SINGLES,),
    )["rows"]


def fetch_scratch_masters_rows() -> List[Dict[str, Any]]:
    return query(
        """
        SELECT p.pid, p.first_name, p.last_name, p.nickname, p.division,
               s.event_type, s.game1, s.game2, s.game3
        FROM people p
        JOIN scores s ON s.pid = p.pid
        WHERE p.scratch_masters = 1
        ORDER BY p.division, p.last_name, p.first_name
        """
    )["rows"]


def fetch_optional_events_rows() -> List[Dict[str, Any]]:
    return query(
        """
        SELECT p.pid, p.first_name, p.last_name, p.nickname, p.division,
               p.optional_best_3_of_9, p.optional_scratch, p.optional_all_events_hdcp,
               s.event_type, s.game1, s.game2, s.game3, s.handicap
        FROM people p
        JOIN scores s ON s.pid = p.pid
        WHERE p.optional_events = 1
        ORDER BY p.last_name, p.first_name
        """
    )["rows"]
