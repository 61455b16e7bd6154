"""
Repository pattern for data access.

Handles database operations for the request log ledger and moderation
records. Both tables are append-only: rows are inserted and read, never
updated or deleted.
"""

from dataclasses import fields
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from .db import DEFAULT_DB_PATH, get_connection
from .models import ModerationRecord, UsageLogEntry

USAGE_LOG_COLUMNS = tuple(f.name for f in fields(UsageLogEntry))
MODERATION_COLUMNS = tuple(f.name for f in fields(ModerationRecord))


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create the request_logs and moderations tables if they don't exist.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS request_logs (
                id TEXT PRIMARY KEY,
                created_at TEXT NOT NULL,
                item_type TEXT NOT NULL,
                type TEXT NOT NULL DEFAULT 'text',
                user_id TEXT,
                profile_id TEXT,
                book_id TEXT,
                chapter_id TEXT,
                request TEXT,
                response TEXT,
                response_status_code INTEGER,
                response_time REAL,
                open_ai_id TEXT,
                model TEXT,
                prompt_tokens INTEGER,
                completion_tokens INTEGER,
                total_tokens INTEGER,
                cost_per_token REAL,
                total_cost REAL,
                input_images_count INTEGER,
                output_images_count INTEGER,
                cost_per_input_image REAL,
                cost_per_output_image REAL
            )
        """)
        conn.execute("CREATE INDEX IF NOT EXISTS idx_request_logs_book ON request_logs (book_id, chapter_id)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_request_logs_user ON request_logs (user_id, created_at)")
        conn.execute("""
            CREATE TABLE IF NOT EXISTS moderations (
                id TEXT PRIMARY KEY,
                created_at TEXT NOT NULL,
                input TEXT NOT NULL,
                response TEXT NOT NULL,
                flagged INTEGER NOT NULL,
                categories TEXT NOT NULL,
                category_scores TEXT NOT NULL,
                model TEXT NOT NULL,
                user_id TEXT,
                profile_id TEXT,
                moderation_id TEXT,
                source TEXT
            )
        """)
        conn.commit()
    finally:
        conn.close()


def insert_usage_log(entry: UsageLogEntry, db_path: str = DEFAULT_DB_PATH) -> None:
    """Insert a single request log entry into the append-only ledger.

    Args:
        entry: The request log entry to record
        db_path: Path to SQLite database file
    """
    values = [getattr(entry, column) for column in USAGE_LOG_COLUMNS]
    values[USAGE_LOG_COLUMNS.index("created_at")] = entry.created_at.isoformat()

    conn = get_connection(db_path)
    try:
        conn.execute(
            f"INSERT INTO request_logs ({', '.join(USAGE_LOG_COLUMNS)}) "
            f"VALUES ({', '.join('?' for _ in USAGE_LOG_COLUMNS)})",
            values,
        )
        conn.commit()
    finally:
        conn.close()


def fetch_usage_logs(
    book_id: Optional[str] = None,
    chapter_id: Optional[str] = None,
    user_id: Optional[str] = None,
    item_type: Optional[str] = None,
    limit: int = 100,
    db_path: str = DEFAULT_DB_PATH
) -> List[UsageLogEntry]:
    """Fetch request log entries, optionally filtered by request context.

    Returns entries in reverse chronological order (newest first).

    Args:
        book_id: Optional filter for a book
        chapter_id: Optional filter for a chapter
        user_id: Optional filter for a user
        item_type: Optional filter for an item type (e.g. "chapter")
        limit: Maximum number of entries to return
        db_path: Path to SQLite database file

    Returns:
        List of request log entries ordered by created_at (newest first)
    """
    conditions = []
    params: List[Any] = []
    for column, value in (("book_id", book_id), ("chapter_id", chapter_id),
                          ("user_id", user_id), ("item_type", item_type)):
        if value is not None:
            conditions.append(f"{column} = ?")
            params.append(value)

    query = f"SELECT {', '.join(USAGE_LOG_COLUMNS)} FROM request_logs"
    if conditions:
        query += " WHERE " + " AND ".join(conditions)
    query += " ORDER BY created_at DESC LIMIT ?"
    params.append(limit)

    conn = get_connection(db_path)
    try:
        cursor = conn.execute(query, params)
        return [_row_to_usage_log(row) for row in cursor.fetchall()]
    finally:
        conn.close()


def insert_moderation(record: ModerationRecord, db_path: str = DEFAULT_DB_PATH) -> None:
    """Insert a moderation record.

    Args:
        record: The moderation check to record
        db_path: Path to SQLite database file
    """
    values = [getattr(record, column) for column in MODERATION_COLUMNS]
    values[MODERATION_COLUMNS.index("created_at")] = record.created_at.isoformat()
    values[MODERATION_COLUMNS.index("flagged")] = int(record.flagged)

    conn = get_connection(db_path)
    try:
        conn.execute(
            f"INSERT INTO moderations ({', '.join(MODERATION_COLUMNS)}) "
            f"VALUES ({', '.join('?' for _ in MODERATION_COLUMNS)})",
            values,
        )
        conn.commit()
    finally:
        conn.close()


def fetch_moderations(
    user_id: Optional[str] = None,
    flagged: Optional[bool] = None,
    limit: int = 100,
    db_path: str = DEFAULT_DB_PATH
) -> List[ModerationRecord]:
    """Fetch moderation records, newest first."""
    conditions = []
    params: List[Any] = []
    if user_id is not None:
        conditions.append("user_id = ?")
        params.append(user_id)
    if flagged is not None:
        conditions.append("flagged = ?")
        params.append(int(flagged))

    query = f"SELECT {', '.join(MODERATION_COLUMNS)} FROM moderations"
    if conditions:
        query += " WHERE " + " AND ".join(conditions)
    query += " ORDER BY created_at DESC LIMIT ?"
    params.append(limit)

    conn = get_connection(db_path)
    try:
        records = []
        for row in conn.execute(query, params).fetchall():
            data = dict(zip(MODERATION_COLUMNS, row))
            data["created_at"] = datetime.fromisoformat(data["created_at"])
            data["flagged"] = bool(data["flagged"])
            records.append(ModerationRecord(**data))
        return records
    finally:
        conn.close()


def _row_to_usage_log(row: Tuple) -> UsageLogEntry:
    data = dict(zip(USAGE_LOG_COLUMNS, row))
    data["created_at"] = datetime.fromisoformat(data["created_at"])
    return UsageLogEntry(**data)


class UsageRepository:
    """Repository for accessing and managing request log data.

    This class provides a higher-level interface to the database operations,
    making it easier to work with usage data in a type-safe manner.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        """Initialize the repository with a database path.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path

    def initialize(self) -> None:
        initialize_schema(self.db_path)

    def store(self, entry: UsageLogEntry) -> UsageLogEntry:
        insert_usage_log(entry, self.db_path)
        return entry

    def store_moderation(self, record: ModerationRecord) -> ModerationRecord:
        insert_moderation(record, self.db_path)
        return record

    def get_all_by_book_id(self, book_id: str, limit: int = 1000) -> List[UsageLogEntry]:
        """Get every request log entry of a book, newest first."""
        return fetch_usage_logs(book_id=book_id, limit=limit, db_path=self.db_path)

    def get_recent_entries(
        self,
        user_id: Optional[str] = None,
        item_type: Optional[str] = None,
        limit: int = 100
    ) -> List[UsageLogEntry]:
        return fetch_usage_logs(user_id=user_id, item_type=item_type, limit=limit, db_path=self.db_path)

    def get_usage_stats(
        self,
        user_id: Optional[str] = None,
        days: int = 30
    ) -> Dict[str, float]:
        """Get usage statistics for the specified time period.

        Args:
            user_id: Optional filter for a specific user
            days: Number of days to include in the statistics

        Returns:
            Dictionary containing usage statistics
        """
        conn = get_connection(self.db_path)
        try:
            cutoff = (datetime.now() - timedelta(days=days)).isoformat()

            query = """
                SELECT
                    COUNT(*) as total_requests,
                    SUM(total_cost) as total_cost,
                    AVG(total_cost) as avg_cost,
                    SUM(total_tokens) as total_tokens,
                    SUM(COALESCE(output_images_count, 0)) as total_images,
                    SUM(CASE WHEN response_status_code >= 400 THEN 1 ELSE 0 END) as failed_requests
                FROM request_logs
                WHERE created_at >= ?
            """
            params: List[Any] = [cutoff]

            if user_id:
                query += " AND user_id = ?"
                params.append(user_id)

            cursor = conn.execute(query, params)
            row = cursor.fetchone()

            return {
                "total_requests": row[0] or 0,
                "total_cost": float(row[1] or 0),
                "avg_cost": float(row[2] or 0),
                "total_tokens": row[3] or 0,
                "total_images": row[4] or 0,
                "failed_requests": row[5] or 0,
            }
        finally:
            conn.close()

    def get_cost_breakdown(
        self,
        user_id: Optional[str] = None,
        days: int = 30
    ) -> List[Dict[str, Any]]:
        """Aggregate spend per request type and item type, most expensive first."""
        conn = get_connection(self.db_path)
        try:
            cutoff = (datetime.now() - timedelta(days=days)).isoformat()
            query = """
                SELECT type, item_type, COUNT(*), SUM(total_cost)
                FROM request_logs
                WHERE created_at >= ?
            """
            params: List[Any] = [cutoff]
            if user_id:
                query += " AND user_id = ?"
                params.append(user_id)
            query += " GROUP BY type, item_type ORDER BY SUM(total_cost) DESC"

            return [
                {"type": row[0], "item_type": row[1], "requests": row[2], "total_cost": float(row[3] or 0)}
                for row in conn.execute(query, params).fetchall()
            ]
        finally:
            conn.close()


# Global repository instance
_default_repository: Optional[UsageRepository] = None


def get_repository(db_path: str = DEFAULT_DB_PATH) -> UsageRepository:
    """Get a repository instance.

    This function provides a singleton instance of the UsageRepository.

    Args:
        db_path: Path to SQLite database file

    Returns:
        An instance of UsageRepository
    """
    global _default_repository
    if _default_repository is None or _default_repository.db_path != db_path:
        _default_repository = UsageRepository(db_path)
    return _default_repository
