"""
Sanction Database Module
Stores sanctions and the votes cast on them in SQLite.
Sanctions are never deleted; once they leave the proposed state they are kept as a record.
"""
import sqlite3
import logging
from datetime import datetime, UTC
from typing import List, Dict, Optional

from config import DB_PATH as _CONFIGURED_DB_PATH

logger = logging.getLogger(__name__)

DB_PATH = _CONFIGURED_DB_PATH

STATUS_PROPOSED = "proposed"


def get_db_connection():
    """Get a database connection with WAL mode and concurrent access optimizations."""
    conn = sqlite3.connect(DB_PATH)
    # Enable WAL mode for concurrent reads/writes
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA synchronous=NORMAL")
    conn.execute("PRAGMA busy_timeout=5000")  # 5 second wait on a locked DB
    return conn


def _normalize_for_index(s: Optional[str]) -> Optional[str]:
    """Normalize strings for DB searches (lowered, None for empty)."""
    if not s:
        return None
    return s.lower()


def init_db():
    """Initialize the sanctions database with required tables."""
    try:
        conn = get_db_connection()
        cursor = conn.cursor()

        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS sanctions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                topic_uuid TEXT NOT NULL UNIQUE,
                target_name TEXT NOT NULL,
                target_name_lower TEXT,
                target_id INTEGER,
                status TEXT NOT NULL DEFAULT 'proposed',
                proposed_at REAL NOT NULL,
                voting_deadline REAL NOT NULL,
                created_at TEXT
            )
            """
        )

        # One row per (sanction, voter); a newer vote by the same voter overwrites the row
        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS sanction_votes (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                sanction_id INTEGER NOT NULL REFERENCES sanctions(id),
                voter_name TEXT NOT NULL,
                voter_name_lower TEXT NOT NULL,
                voter_id INTEGER,
                choice TEXT NOT NULL,
                period INTEGER,
                cast_at REAL NOT NULL,
                UNIQUE(sanction_id, voter_name_lower)
            )
            """
        )

        cursor.execute("CREATE INDEX IF NOT EXISTS idx_sanctions_target ON sanctions(target_name_lower)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_sanctions_status_deadline ON sanctions(status, voting_deadline)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_votes_sanction ON sanction_votes(sanction_id)")

        conn.commit()
        conn.close()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")


def migrate_db():
    """
    Migrate existing database to add new columns if missing.
    Tables that do not exist yet are left to init_db().
    """
    try:
        conn = get_db_connection()
        cursor = conn.cursor()

        cursor.execute("PRAGMA table_info(sanctions)")
        columns = [row[1] for row in cursor.fetchall()]

        if columns and 'target_name_lower' not in columns:
            cursor.execute("ALTER TABLE sanctions ADD COLUMN target_name_lower TEXT")
            cursor.execute("UPDATE sanctions SET target_name_lower = LOWER(target_name)")
            logger.info("Added target_name_lower column to sanctions table")

        if columns and 'created_at' not in columns:
            cursor.execute("ALTER TABLE sanctions ADD COLUMN created_at TEXT")
            logger.info("Added created_at column to sanctions table")

        cursor.execute("PRAGMA table_info(sanction_votes)")
        columns = [row[1] for row in cursor.fetchall()]

        if columns and 'period' not in columns:
            cursor.execute("ALTER TABLE sanction_votes ADD COLUMN period INTEGER")
            logger.info("Added period column to sanction_votes table")

        conn.commit()
        conn.close()
        logger.info("Database migration completed successfully")
    except Exception as e:
        logger.error(f"Failed to migrate database: {e}")


def store_sanction(
    topic_uuid: str,
    target_name: str,
    target_id: Optional[int],
    proposed_at: float,
    voting_deadline: float,
) -> Optional[int]:
    """
    Store a newly proposed sanction.

    Args:
        topic_uuid: Canonical id of the Flow topic holding the sanction
        target_name: Name of the user the sanction is against
        target_id: Wiki user id of the target (if known)
        proposed_at: Epoch seconds
        voting_deadline: Epoch seconds

    Returns:
        Row id of the sanction, or None if it could not be stored
    """
    try:
        conn = get_db_connection()
        cursor = conn.cursor()

        cursor.execute("SELECT id FROM sanctions WHERE topic_uuid = ?", (topic_uuid,))
        existing = cursor.fetchone()
        if existing:
            logger.info(f"Sanction for topic {topic_uuid} already stored as ID={existing[0]}")
            conn.close()
            return existing[0]

        cursor.execute("""
            INSERT INTO sanctions (
                topic_uuid, target_name, target_name_lower, target_id,
                status, proposed_at, voting_deadline, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            topic_uuid, target_name, _normalize_for_index(target_name), target_id,
            STATUS_PROPOSED, proposed_at, voting_deadline, datetime.now(UTC).isoformat(),
        ))
        sanction_id = cursor.lastrowid

        conn.commit()
        conn.close()

        logger.info(f"Stored sanction ID={sanction_id}: topic={topic_uuid}, target={target_name}")
        return sanction_id

    except Exception as e:
        logger.error(f"Failed to store sanction: {e}")
        return None


def _sanction_row_to_dict(row) -> Dict:
    return {
        'id': row['id'],
        'topic_uuid': row['topic_uuid'],
        'target_name': row['target_name'],
        'target_id': row['target_id'],
        'status': row['status'],
        'proposed_at': row['proposed_at'],
        'voting_deadline': row['voting_deadline'],
        'created_at': row['created_at'],
    }


def get_sanction_by_uuid(topic_uuid: str) -> Optional[Dict]:
    """Look a sanction up by its topic id. Returns None if there is no such sanction."""
    try:
        conn = get_db_connection()
        conn.row_factory = sqlite3.Row
        cursor = conn.cursor()
        cursor.execute("SELECT * FROM sanctions WHERE topic_uuid = ?", (topic_uuid,))
        row = cursor.fetchone()
        conn.close()
        if row is None:
            return None
        return _sanction_row_to_dict(row)
    except Exception as e:
        logger.error(f"Failed to fetch sanction {topic_uuid}: {e}")
        return None


def get_overdue_sanctions(now: float) -> List[Dict]:
    """Proposed sanctions whose voting deadline is at or before `now`."""
    try:
        conn = get_db_connection()
        conn.row_factory = sqlite3.Row
        cursor = conn.cursor()
        cursor.execute("""
            SELECT * FROM sanctions
            WHERE status = ? AND voting_deadline <= ?
            ORDER BY voting_deadline ASC
        """, (STATUS_PROPOSED, now))
        rows = cursor.fetchall()
        conn.close()
        return [_sanction_row_to_dict(row) for row in rows]
    except Exception as e:
        logger.error(f"Failed to fetch overdue sanctions: {e}")
        return []


def get_votes(sanction_id: int) -> List[Dict]:
    """Votes recorded for a sanction, oldest first."""
    try:
        conn = get_db_connection()
        conn.row_factory = sqlite3.Row
        cursor = conn.cursor()
        cursor.execute("""
            SELECT voter_name, voter_id, choice, period, cast_at FROM sanction_votes
            WHERE sanction_id = ?
            ORDER BY cast_at ASC, id ASC
        """, (sanction_id,))
        rows = cursor.fetchall()
        conn.close()

        votes = []
        for row in rows:
            votes.append({
                'voter_name': row['voter_name'],
                'voter_id': row['voter_id'],
                'choice': row['choice'],
                'period': row['period'],
                'cast_at': row['cast_at'],
            })
        return votes
    except Exception as e:
        logger.error(f"Failed to fetch votes for sanction {sanction_id}: {e}")
        return []


def upsert_vote(
    sanction_id: int,
    voter_name: str,
    voter_id: Optional[int],
    choice: str,
    period: Optional[int],
    cast_at: float,
) -> bool:
    """
    Record a vote, replacing the voter's previous vote only if this one is newer.

    The insert-or-replace happens in a single statement, so concurrent scans of
    the same topic cannot lose or duplicate a vote.

    Returns:
        True if a row was inserted or changed, False if the stored vote was already as new
    """
    try:
        conn = get_db_connection()
        cursor = conn.cursor()
        cursor.execute("""
            INSERT INTO sanction_votes (
                sanction_id, voter_name, voter_name_lower, voter_id, choice, period, cast_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(sanction_id, voter_name_lower) DO UPDATE SET
                voter_name = excluded.voter_name,
                voter_id = COALESCE(excluded.voter_id, sanction_votes.voter_id),
                choice = excluded.choice,
                period = excluded.period,
                cast_at = excluded.cast_at
            WHERE excluded.cast_at > sanction_votes.cast_at
        """, (sanction_id, voter_name, voter_name.lower(), voter_id, choice, period, cast_at))
        changed = cursor.rowcount > 0
        conn.commit()
        conn.close()

        if changed:
            logger.info(f"Recorded vote on sanction ID={sanction_id}: {voter_name} -> {choice}")
        return changed
    except Exception as e:
        logger.error(f"Failed to record vote: {e}")
        return False


def update_sanction_status(sanction_id: int, status: str) -> bool:
    """
    Move a sanction out of the proposed state.
    Only proposed sanctions can change state; returns False otherwise.
    """
    try:
        conn = get_db_connection()
        cursor = conn.cursor()
        cursor.execute("""
            UPDATE sanctions SET status = ?
            WHERE id = ? AND status = ?
        """, (status, sanction_id, STATUS_PROPOSED))
        changed = cursor.rowcount > 0
        conn.commit()
        conn.close()

        if changed:
            logger.info(f"Sanction ID={sanction_id} is now {status}")
        else:
            logger.warning(f"Sanction ID={sanction_id} was not proposed, status left unchanged")
        return changed
    except Exception as e:
        logger.error(f"Failed to update sanction status: {e}")
        return False
