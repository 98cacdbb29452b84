"""DuckDB session snapshot storage"""
import json
import uuid
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional

import duckdb
import structlog

from .config import settings
from .models import ScopeState

logger = structlog.get_logger(__name__)


SNAPSHOT_KEY = "scopeData"


def init_database(db_path: Optional[str] = None) -> duckdb.DuckDBPyConnection:
    """Initialize database and create tables if they don't exist"""
    conn = duckdb.connect(str(Path(db_path or settings.db_path)))

    conn.execute("""
        CREATE TABLE IF NOT EXISTS session_snapshots (
            session_id VARCHAR,
            snapshot_key VARCHAR,
            snapshot JSON,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            PRIMARY KEY (session_id, snapshot_key)
        )
    """)

    return conn


def new_session_id() -> str:
    return str(uuid.uuid4())


def _cutoff(ttl_hours: Optional[int]) -> datetime:
    hours = settings.session_ttl_hours if ttl_hours is None else ttl_hours
    return datetime.now() - timedelta(hours=hours)


def save_snapshot(conn: duckdb.DuckDBPyConnection, session_id: str, state: ScopeState) -> None:
    """Write the session's state under the well-known snapshot key"""
    snapshot = json.dumps(state.to_wire())
    conn.execute("""
        INSERT OR REPLACE INTO session_snapshots (session_id, snapshot_key, snapshot, updated_at)
        VALUES (?, ?, ?, ?)
    """, [session_id, SNAPSHOT_KEY, snapshot, datetime.now()])


def load_snapshot(
    conn: duckdb.DuckDBPyConnection,
    session_id: str,
    ttl_hours: Optional[int] = None
) -> Optional[ScopeState]:
    """Read the session's state, or None if absent, expired or unreadable (both are cleared)"""
    result = conn.execute("""
        SELECT snapshot, updated_at FROM session_snapshots
        WHERE session_id = ? AND snapshot_key = ?
    """, [session_id, SNAPSHOT_KEY]).fetchone()

    if not result:
        return None

    snapshot, updated_at = result
    if updated_at < _cutoff(ttl_hours):
        logger.info("session_expired", session_id=session_id)
        clear_snapshot(conn, session_id)
        return None

    try:
        data = json.loads(snapshot) if isinstance(snapshot, str) else snapshot
        return ScopeState.model_validate(data)
    except Exception as e:
        # Unreadable snapshots are dropped so the session reads as absent everywhere
        logger.error("snapshot_unreadable", session_id=session_id, error=str(e))
        clear_snapshot(conn, session_id)
        return None


def session_exists(conn: duckdb.DuckDBPyConnection, session_id: str) -> bool:
    result = conn.execute("""
        SELECT 1 FROM session_snapshots WHERE session_id = ? AND snapshot_key = ?
    """, [session_id, SNAPSHOT_KEY]).fetchone()
    return result is not None


def clear_snapshot(conn: duckdb.DuckDBPyConnection, session_id: str) -> bool:
    """Remove the snapshot entirely; returns whether one existed"""
    existed = session_exists(conn, session_id)
    conn.execute("""
        DELETE FROM session_snapshots WHERE session_id = ? AND snapshot_key = ?
    """, [session_id, SNAPSHOT_KEY])
    return existed


def purge_expired(conn: duckdb.DuckDBPyConnection, ttl_hours: Optional[int] = None) -> int:
    """Delete snapshots older than the session TTL"""
    cutoff = _cutoff(ttl_hours)
    count_result = conn.execute("""
        SELECT COUNT(*) FROM session_snapshots WHERE updated_at < ?
    """, [cutoff]).fetchone()
    removed = count_result[0] if count_result else 0

    if removed:
        conn.execute("""
            DELETE FROM session_snapshots WHERE updated_at < ?
        """, [cutoff])
        logger.info("expired_sessions_purged", removed=removed)
    return removed
