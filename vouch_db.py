"""
Vouch Database Module
Stores vouch records in SQLite. Records are never physically deleted: removal
flips the `deleted` flag, and every read filters on it unless restoring.
Also keeps a small directory of users the bot has seen so numeric ids and
@usernames can be resolved later.
"""
import sqlite3
import logging
from contextlib import closing
from datetime import datetime, timezone
from typing import List, Optional, Sequence

from config import MAX_COMMENT_LENGTH, MAX_POINTS, MIN_POINTS
from vouchbot.errors import PersistenceError, ProcessFatalError
from vouchbot.models import ChatUser, Tally, VouchRecord

logger = logging.getLogger(__name__)

DB_PATH = "vouches.db"

_VOUCH_COLUMNS = "vouch_id, subject_id, author_id, points, comment, created_at, deleted"


def set_db_path(database_url: str) -> str:
    """Point the module at a database. Accepts `sqlite:///path` or a plain path."""
    global DB_PATH
    path = database_url
    if path.startswith("sqlite:///"):
        path = path[len("sqlite:///"):]
    DB_PATH = path or "vouches.db"
    return DB_PATH


def get_db_connection():
    """Get a database connection with WAL mode and concurrent access optimizations."""
    conn = sqlite3.connect(DB_PATH, timeout=5)
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA synchronous=NORMAL")
    conn.execute("PRAGMA busy_timeout=5000")
    return conn


def _to_epoch(moment: datetime) -> float:
    return moment.timestamp()


def _from_epoch(value: float) -> datetime:
    return datetime.fromtimestamp(value, tz=timezone.utc)


def _row_to_record(row) -> VouchRecord:
    return VouchRecord(
        id=row[0],
        subject_id=row[1],
        author_id=row[2],
        points=row[3],
        comment=row[4],
        created_at=_from_epoch(row[5]),
        deleted=bool(row[6]),
    )


def init_db():
    """Create tables and indexes. Raises ProcessFatalError if the store is unusable."""
    try:
        with closing(get_db_connection()) as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"""
                CREATE TABLE IF NOT EXISTS vouches (
                    vouch_id TEXT NOT NULL UNIQUE,
                    subject_id INTEGER NOT NULL,
                    author_id INTEGER NOT NULL,
                    points INTEGER NOT NULL CHECK (points BETWEEN {MIN_POINTS} AND {MAX_POINTS}),
                    comment TEXT NOT NULL CHECK (length(comment) <= {MAX_COMMENT_LENGTH}),
                    created_at REAL NOT NULL,
                    deleted INTEGER NOT NULL DEFAULT 0
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS known_users (
                    user_id INTEGER PRIMARY KEY,
                    username TEXT,
                    username_lower TEXT,
                    display_name TEXT,
                    last_seen REAL
                )
                """
            )
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_subject_deleted ON vouches(subject_id, deleted)")
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_author_deleted ON vouches(author_id, deleted)")
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_created_deleted ON vouches(created_at, deleted)")
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_known_users_username ON known_users(username_lower)")
            conn.commit()
        logger.info("Database initialized successfully at %s", DB_PATH)
    except sqlite3.Error as e:
        logger.error(f"Failed to initialize database: {e}")
        raise ProcessFatalError(f"Cannot open vouch store at {DB_PATH}: {e}") from e


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------

def insert_vouch(record: VouchRecord) -> VouchRecord:
    """Insert one record. An id collision is a fatal write error, never retried."""
    try:
        with closing(get_db_connection()) as conn:
            conn.execute(
                f"INSERT INTO vouches ({_VOUCH_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?)",
                (
                    record.id,
                    record.subject_id,
                    record.author_id,
                    record.points,
                    record.comment,
                    _to_epoch(record.created_at),
                    int(record.deleted),
                ),
            )
            conn.commit()
    except sqlite3.Error as e:
        logger.error(f"Failed to store vouch {record.id}: {e}")
        raise PersistenceError(f"Failed to store vouch: {e}") from e

    logger.info(f"Stored vouch ID={record.id}: {record.author_id} -> {record.subject_id}")
    return record


def insert_vouches(records: Sequence[VouchRecord]) -> int:
    """
    Insert many records, best effort. A row that fails (e.g. id collision)
    is logged and skipped; the rest of the batch is still written.

    Returns:
        Number of rows actually inserted.
    """
    inserted = 0
    try:
        with closing(get_db_connection()) as conn:
            for record in records:
                try:
                    conn.execute(
                        f"INSERT INTO vouches ({_VOUCH_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?)",
                        (
                            record.id,
                            record.subject_id,
                            record.author_id,
                            record.points,
                            record.comment,
                            _to_epoch(record.created_at),
                            int(record.deleted),
                        ),
                    )
                    inserted += 1
                except sqlite3.IntegrityError as e:
                    logger.warning(f"Skipped vouch {record.id} in bulk insert: {e}")
            conn.commit()
    except sqlite3.Error as e:
        logger.error(f"Bulk vouch insert failed after {inserted} rows: {e}")
        raise PersistenceError(f"Bulk insert failed: {e}") from e

    logger.info(f"Bulk inserted {inserted}/{len(records)} vouches")
    return inserted


def soft_delete_for_subject(subject_id: int) -> int:
    """Mark every live record for a subject deleted. Returns affected rows."""
    return _update(
        "UPDATE vouches SET deleted = 1 WHERE subject_id = ? AND deleted = 0",
        (subject_id,),
        "soft delete",
    )


def restore_for_subject(subject_id: int) -> int:
    """Clear the deleted flag on every removed record for a subject."""
    return _update(
        "UPDATE vouches SET deleted = 0 WHERE subject_id = ? AND deleted = 1",
        (subject_id,),
        "restore",
    )


def transfer_subject(source_id: int, target_id: int) -> int:
    """Reassign every live record from one subject to another."""
    return _update(
        "UPDATE vouches SET subject_id = ? WHERE subject_id = ? AND deleted = 0",
        (target_id, source_id),
        "transfer",
    )


def _update(sql: str, params: tuple, action: str) -> int:
    try:
        with closing(get_db_connection()) as conn:
            cursor = conn.execute(sql, params)
            conn.commit()
            affected = cursor.rowcount
    except sqlite3.Error as e:
        logger.error(f"Vouch {action} failed: {e}")
        raise PersistenceError(f"Vouch {action} failed: {e}") from e
    logger.info(f"Vouch {action} affected {affected} rows")
    return affected


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

def _query(sql: str, params: tuple = ()) -> list:
    try:
        with closing(get_db_connection()) as conn:
            return conn.execute(sql, params).fetchall()
    except sqlite3.Error as e:
        logger.error(f"Vouch query failed: {e}")
        raise PersistenceError(f"Vouch query failed: {e}") from e


def count_vouches(subject_id: Optional[int] = None) -> int:
    if subject_id is None:
        rows = _query("SELECT COUNT(*) FROM vouches WHERE deleted = 0")
    else:
        rows = _query(
            "SELECT COUNT(*) FROM vouches WHERE subject_id = ? AND deleted = 0",
            (subject_id,),
        )
    return rows[0][0]


def get_latest_vouch(subject_id: int, author_id: Optional[int] = None) -> Optional[VouchRecord]:
    """Most recent live record for a subject, optionally from one author."""
    if author_id is None:
        rows = _query(
            f"""
            SELECT {_VOUCH_COLUMNS} FROM vouches
            WHERE subject_id = ? AND deleted = 0
            ORDER BY created_at DESC, rowid DESC
            LIMIT 1
            """,
            (subject_id,),
        )
    else:
        rows = _query(
            f"""
            SELECT {_VOUCH_COLUMNS} FROM vouches
            WHERE subject_id = ? AND author_id = ? AND deleted = 0
            ORDER BY created_at DESC, rowid DESC
            LIMIT 1
            """,
            (subject_id, author_id),
        )
    return _row_to_record(rows[0]) if rows else None


def list_vouches_for_subject(subject_id: int) -> List[VouchRecord]:
    rows = _query(
        f"""
        SELECT {_VOUCH_COLUMNS} FROM vouches
        WHERE subject_id = ? AND deleted = 0
        ORDER BY created_at DESC, rowid DESC
        """,
        (subject_id,),
    )
    return [_row_to_record(r) for r in rows]


def _escape_like(keyword: str) -> str:
    return keyword.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def search_vouches(keyword: str, subject_id: Optional[int] = None) -> List[VouchRecord]:
    """Case-insensitive substring search over comments, newest first."""
    pattern = f"%{_escape_like(keyword.lower())}%"
    if subject_id is None:
        rows = _query(
            f"""
            SELECT {_VOUCH_COLUMNS} FROM vouches
            WHERE deleted = 0 AND lower(comment) LIKE ? ESCAPE '\\'
            ORDER BY created_at DESC, rowid DESC
            """,
            (pattern,),
        )
    else:
        rows = _query(
            f"""
            SELECT {_VOUCH_COLUMNS} FROM vouches
            WHERE deleted = 0 AND subject_id = ? AND lower(comment) LIKE ? ESCAPE '\\'
            ORDER BY created_at DESC, rowid DESC
            """,
            (subject_id, pattern),
        )
    return [_row_to_record(r) for r in rows]


def top_recipients(limit: int) -> List[Tally]:
    rows = _query(
        """
        SELECT subject_id, COUNT(*) AS total FROM vouches
        WHERE deleted = 0
        GROUP BY subject_id
        ORDER BY total DESC
        LIMIT ?
        """,
        (limit,),
    )
    return [Tally(user_id=r[0], count=r[1]) for r in rows]


def top_givers(limit: int) -> List[Tally]:
    rows = _query(
        """
        SELECT author_id, COUNT(*) AS total FROM vouches
        WHERE deleted = 0
        GROUP BY author_id
        ORDER BY total DESC
        LIMIT ?
        """,
        (limit,),
    )
    return [Tally(user_id=r[0], count=r[1]) for r in rows]


# ---------------------------------------------------------------------------
# Known users
# ---------------------------------------------------------------------------

def remember_user(user: ChatUser) -> None:
    """Upsert a user the bot has seen. Failures are logged and ignored."""
    try:
        with closing(get_db_connection()) as conn:
            conn.execute(
                """
                INSERT INTO known_users (user_id, username, username_lower, display_name, last_seen)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    username = excluded.username,
                    username_lower = excluded.username_lower,
                    display_name = excluded.display_name,
                    last_seen = excluded.last_seen
                """,
                (
                    user.id,
                    user.username,
                    user.username.lower() if user.username else None,
                    user.display_name,
                    datetime.now(timezone.utc).timestamp(),
                ),
            )
            conn.commit()
    except sqlite3.Error as e:
        # Directory data is a convenience, never block message handling on it
        logger.warning(f"Failed to remember user {user.id}: {e}")


def get_known_user(user_id: int) -> Optional[ChatUser]:
    rows = _query(
        "SELECT user_id, username, display_name FROM known_users WHERE user_id = ?",
        (user_id,),
    )
    if not rows:
        return None
    return ChatUser(id=rows[0][0], username=rows[0][1], display_name=rows[0][2])


def find_known_user_by_username(username: str) -> Optional[ChatUser]:
    norm = username.lstrip("@").lower()
    if not norm:
        return None
    rows = _query(
        """
        SELECT user_id, username, display_name FROM known_users
        WHERE username_lower = ?
        ORDER BY last_seen DESC
        LIMIT 1
        """,
        (norm,),
    )
    if not rows:
        return None
    return ChatUser(id=rows[0][0], username=rows[0][1], display_name=rows[0][2])
