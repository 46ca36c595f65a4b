"""SQLite-backed store for users, activities and content."""
import asyncio
import json
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Any, Iterable, Optional, Sequence, Union

from .base import DuplicateActivityError, Store
from .models import (
    Activity,
    ActivityStatus,
    ActivityType,
    Analytics,
    Content,
    ContentStatus,
    User,
    utcnow,
)

logger = logging.getLogger(__name__)

_TS_FORMAT = "%Y-%m-%dT%H:%M:%S.%f+00:00"

_SCHEMA = """
    CREATE TABLE IF NOT EXISTS users (
        id TEXT PRIMARY KEY,
        email TEXT,
        name TEXT,
        github_username TEXT,
        github_token TEXT,
        twitter_username TEXT,
        twitter_token TEXT,
        chat_id TEXT,
        chat_username TEXT,
        ai_provider TEXT,
        content_style TEXT NOT NULL DEFAULT 'professional',
        auto_approve INTEGER NOT NULL DEFAULT 0,
        posting_time TEXT NOT NULL DEFAULT '18:00',
        timezone TEXT NOT NULL DEFAULT 'UTC'
    );

    CREATE TABLE IF NOT EXISTS activities (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        type TEXT NOT NULL,
        repository TEXT NOT NULL,
        title TEXT NOT NULL,
        description TEXT,
        url TEXT,
        external_id TEXT NOT NULL,
        status TEXT NOT NULL,
        metadata TEXT NOT NULL DEFAULT '{}',
        created_at TEXT NOT NULL,
        processed_at TEXT,
        published_at TEXT
    );

    CREATE TABLE IF NOT EXISTS content (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        text TEXT NOT NULL,
        original_text TEXT,
        status TEXT NOT NULL,
        platform TEXT NOT NULL DEFAULT 'twitter',
        scheduled_for TEXT,
        post_id TEXT,
        post_url TEXT,
        posted_at TEXT,
        failure_reason TEXT,
        analytics TEXT NOT NULL DEFAULT '{}',
        metadata TEXT NOT NULL DEFAULT '{}',
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS content_activities (
        content_id TEXT NOT NULL,
        activity_id TEXT NOT NULL,
        position INTEGER NOT NULL,
        PRIMARY KEY (content_id, activity_id)
    );

    CREATE UNIQUE INDEX IF NOT EXISTS idx_activities_natural_key
        ON activities(user_id, type, repository, external_id);
    CREATE INDEX IF NOT EXISTS idx_activities_user_status ON activities(user_id, status);
    CREATE INDEX IF NOT EXISTS idx_activities_repository ON activities(repository);
    CREATE INDEX IF NOT EXISTS idx_activities_created ON activities(created_at);
    CREATE INDEX IF NOT EXISTS idx_content_user_status ON content(user_id, status);
    CREATE INDEX IF NOT EXISTS idx_content_scheduled ON content(status, scheduled_for);
    CREATE INDEX IF NOT EXISTS idx_content_activities_activity ON content_activities(activity_id);
    CREATE INDEX IF NOT EXISTS idx_users_github ON users(github_username);
    CREATE INDEX IF NOT EXISTS idx_users_chat ON users(chat_id);
"""


def _ts(value: Optional[datetime]) -> Optional[str]:
    """Serialize to a fixed-width UTC string so text comparison orders correctly."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(_TS_FORMAT)


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value)


def _placeholders(values: Sequence[Any]) -> str:
    return ", ".join("?" for _ in values)


def _status_values(statuses: Iterable[Union[ActivityStatus, ContentStatus]]) -> list[str]:
    return [s.value for s in statuses]


class SQLiteStore(Store):
    """
    SQLite storage for DevCast.

    All access goes through one lock, and blocking calls run in a worker
    thread so they stay off the event loop. In-memory databases keep a single
    persistent connection so the schema survives between calls.
    """

    def __init__(self, db_path: Optional[Union[str, Path]] = None):
        """
        Initialize the store.

        Args:
            db_path: Path to SQLite database. If None, uses in-memory.
        """
        self.db_path = str(db_path) if db_path else ":memory:"
        self._db_lock = Lock()
        self._conn: Optional[sqlite3.Connection] = None
        if self.db_path == ":memory:":
            self._conn = sqlite3.connect(":memory:", check_same_thread=False)
        else:
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Get database connection, using persistent connection for in-memory."""
        if self._conn is not None:
            return self._conn
        return sqlite3.connect(self.db_path)

    def _release(self, conn: sqlite3.Connection) -> None:
        if self._conn is None:
            conn.close()

    def _init_db(self) -> None:
        """Initialize SQLite database schema."""
        conn = self._get_connection()
        try:
            conn.executescript(_SCHEMA)
            conn.commit()
        finally:
            self._release(conn)

    def _query(self, sql: str, params: Sequence[Any] = ()) -> list[sqlite3.Row]:
        with self._db_lock:
            conn = self._get_connection()
            conn.row_factory = sqlite3.Row
            try:
                return conn.execute(sql, params).fetchall()
            finally:
                self._release(conn)

    def _execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        """Run a write and return the affected row count."""
        with self._db_lock:
            conn = self._get_connection()
            try:
                cursor = conn.execute(sql, params)
                conn.commit()
                return cursor.rowcount
            finally:
                self._release(conn)

    async def _read(self, sql: str, params: Sequence[Any] = ()) -> list[sqlite3.Row]:
        return await asyncio.to_thread(self._query, sql, params)

    async def _write(self, sql: str, params: Sequence[Any] = ()) -> int:
        return await asyncio.to_thread(self._execute, sql, params)

    # --- Row mapping ---

    @staticmethod
    def _row_to_user(row: sqlite3.Row) -> User:
        return User(
            id=row["id"],
            email=row["email"],
            name=row["name"],
            github_username=row["github_username"],
            github_token=row["github_token"],
            twitter_username=row["twitter_username"],
            twitter_token=row["twitter_token"],
            chat_id=row["chat_id"],
            chat_username=row["chat_username"],
            ai_provider=row["ai_provider"],
            content_style=row["content_style"],
            auto_approve=bool(row["auto_approve"]),
            posting_time=row["posting_time"],
            timezone=row["timezone"],
        )

    @staticmethod
    def _row_to_activity(row: sqlite3.Row) -> Activity:
        return Activity(
            id=row["id"],
            user_id=row["user_id"],
            type=ActivityType(row["type"]),
            repository=row["repository"],
            title=row["title"],
            description=row["description"],
            url=row["url"],
            external_id=row["external_id"],
            status=ActivityStatus(row["status"]),
            metadata=json.loads(row["metadata"] or "{}"),
            created_at=_parse_ts(row["created_at"]),
            processed_at=_parse_ts(row["processed_at"]),
            published_at=_parse_ts(row["published_at"]),
        )

    def _row_to_content(self, row: sqlite3.Row, activity_ids: list[str]) -> Content:
        return Content(
            id=row["id"],
            user_id=row["user_id"],
            activity_ids=activity_ids,
            text=row["text"],
            original_text=row["original_text"],
            status=ContentStatus(row["status"]),
            platform=row["platform"],
            scheduled_for=_parse_ts(row["scheduled_for"]),
            post_id=row["post_id"],
            post_url=row["post_url"],
            posted_at=_parse_ts(row["posted_at"]),
            failure_reason=row["failure_reason"],
            analytics=Analytics.from_dict(json.loads(row["analytics"] or "{}")),
            metadata=json.loads(row["metadata"] or "{}"),
            created_at=_parse_ts(row["created_at"]),
            updated_at=_parse_ts(row["updated_at"]),
        )

    async def _content_activity_ids(self, content_id: str) -> list[str]:
        rows = await self._read(
            "SELECT activity_id FROM content_activities WHERE content_id = ? ORDER BY position",
            (content_id,),
        )
        return [r["activity_id"] for r in rows]

    # --- Users ---

    async def save_user(self, user: User) -> User:
        await self._write(
            """
            INSERT OR REPLACE INTO users
            (id, email, name, github_username, github_token, twitter_username,
             twitter_token, chat_id, chat_username, ai_provider, content_style,
             auto_approve, posting_time, timezone)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                user.id,
                user.email,
                user.name,
                user.github_username,
                user.github_token,
                user.twitter_username,
                user.twitter_token,
                user.chat_id,
                user.chat_username,
                user.ai_provider,
                user.content_style,
                int(user.auto_approve),
                user.posting_time,
                user.timezone,
            ),
        )
        return user

    async def get_user(self, user_id: str) -> Optional[User]:
        rows = await self._read("SELECT * FROM users WHERE id = ?", (user_id,))
        return self._row_to_user(rows[0]) if rows else None

    async def get_user_by_github_username(self, username: str) -> Optional[User]:
        rows = await self._read(
            "SELECT * FROM users WHERE lower(github_username) = lower(?)",
            (username,),
        )
        return self._row_to_user(rows[0]) if rows else None

    async def get_user_by_chat_id(self, chat_id: str) -> Optional[User]:
        rows = await self._read("SELECT * FROM users WHERE chat_id = ?", (str(chat_id),))
        return self._row_to_user(rows[0]) if rows else None

    async def list_users(self, *, with_github_token: bool = False) -> list[User]:
        sql = "SELECT * FROM users"
        if with_github_token:
            sql += " WHERE github_token IS NOT NULL AND github_token != ''"
        return [self._row_to_user(r) for r in await self._read(sql + " ORDER BY id")]

    async def link_chat(
        self,
        user_id: str,
        chat_id: str,
        chat_username: Optional[str] = None,
    ) -> Optional[User]:
        changed = await self._write(
            "UPDATE users SET chat_id = ?, chat_username = ? WHERE id = ?",
            (str(chat_id), chat_username, user_id),
        )
        if not changed:
            return None
        return await self.get_user(user_id)

    # --- Activities ---

    async def find_activity(
        self,
        user_id: str,
        activity_type: ActivityType,
        repository: str,
        external_id: str,
    ) -> Optional[Activity]:
        rows = await self._read(
            """
            SELECT * FROM activities
            WHERE user_id = ? AND type = ? AND repository = ? AND external_id = ?
            """,
            (user_id, activity_type.value, repository, external_id),
        )
        return self._row_to_activity(rows[0]) if rows else None

    async def insert_activity(self, activity: Activity) -> Activity:
        try:
            await self._write(
                """
                INSERT INTO activities
                (id, user_id, type, repository, title, description, url,
                 external_id, status, metadata, created_at, processed_at, published_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    activity.id,
                    activity.user_id,
                    activity.type.value,
                    activity.repository,
                    activity.title,
                    activity.description,
                    activity.url,
                    activity.external_id,
                    activity.status.value,
                    json.dumps(activity.metadata),
                    _ts(activity.created_at),
                    _ts(activity.processed_at),
                    _ts(activity.published_at),
                ),
            )
        except sqlite3.IntegrityError as e:
            raise DuplicateActivityError(activity.natural_key) from e
        return activity

    async def update_activity_details(self, activity: Activity) -> None:
        await self._write(
            """
            UPDATE activities
            SET title = ?, description = ?, url = ?, metadata = ?
            WHERE id = ?
            """,
            (
                activity.title,
                activity.description,
                activity.url,
                json.dumps(activity.metadata),
                activity.id,
            ),
        )

    async def get_activities(self, activity_ids: Sequence[str]) -> list[Activity]:
        if not activity_ids:
            return []
        rows = await self._read(
            f"SELECT * FROM activities WHERE id IN ({_placeholders(activity_ids)})",
            list(activity_ids),
        )
        by_id = {r["id"]: self._row_to_activity(r) for r in rows}
        return [by_id[i] for i in activity_ids if i in by_id]

    async def list_activities(
        self,
        user_id: str,
        statuses: Iterable[ActivityStatus],
        limit: Optional[int] = None,
    ) -> list[Activity]:
        values = _status_values(statuses)
        sql = f"""
            SELECT * FROM activities
            WHERE user_id = ? AND status IN ({_placeholders(values)})
            ORDER BY created_at DESC, rowid DESC
        """
        params: list[Any] = [user_id, *values]
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        return [self._row_to_activity(r) for r in await self._read(sql, params)]

    async def transition_activities(
        self,
        activity_ids: Sequence[str],
        expected: Iterable[ActivityStatus],
        target: ActivityStatus,
        at: Optional[datetime] = None,
    ) -> int:
        if not activity_ids:
            return 0
        at = at or utcnow()
        values = _status_values(expected)

        assignments = "status = ?"
        params: list[Any] = [target.value]
        if target == ActivityStatus.PROCESSED:
            assignments += ", processed_at = ?, published_at = NULL"
            params.append(_ts(at))
        elif target == ActivityStatus.PUBLISHED:
            assignments += ", published_at = ?"
            params.append(_ts(at))

        params.extend(activity_ids)
        params.extend(values)
        return await self._write(
            f"""
            UPDATE activities SET {assignments}
            WHERE id IN ({_placeholders(activity_ids)})
              AND status IN ({_placeholders(values)})
            """,
            params,
        )

    async def activity_referenced_elsewhere(
        self,
        activity_id: str,
        exclude_content_id: str,
        statuses: Iterable[ContentStatus],
    ) -> bool:
        values = _status_values(statuses)
        rows = await self._read(
            f"""
            SELECT 1 FROM content_activities ca
            JOIN content c ON c.id = ca.content_id
            WHERE ca.activity_id = ? AND c.id != ?
              AND c.status IN ({_placeholders(values)})
            LIMIT 1
            """,
            [activity_id, exclude_content_id, *values],
        )
        return bool(rows)

    # --- Content ---

    async def insert_content(self, content: Content) -> Content:
        await asyncio.to_thread(self._insert_content, content)
        return content

    def _insert_content(self, content: Content) -> None:
        with self._db_lock:
            conn = self._get_connection()
            try:
                conn.execute(
                    """
                    INSERT INTO content
                    (id, user_id, text, original_text, status, platform, scheduled_for,
                     post_id, post_url, posted_at, failure_reason, analytics, metadata,
                     created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        content.id,
                        content.user_id,
                        content.text,
                        content.original_text,
                        content.status.value,
                        content.platform,
                        _ts(content.scheduled_for),
                        content.post_id,
                        content.post_url,
                        _ts(content.posted_at),
                        content.failure_reason,
                        json.dumps(content.analytics.to_dict()),
                        json.dumps(content.metadata, default=str),
                        _ts(content.created_at),
                        _ts(content.updated_at),
                    ),
                )
                conn.executemany(
                    "INSERT INTO content_activities (content_id, activity_id, position) VALUES (?, ?, ?)",
                    [(content.id, aid, pos) for pos, aid in enumerate(content.activity_ids)],
                )
                conn.commit()
            finally:
                self._release(conn)

    async def get_content(self, content_id: str) -> Optional[Content]:
        rows = await self._read("SELECT * FROM content WHERE id = ?", (content_id,))
        if not rows:
            return None
        return self._row_to_content(rows[0], await self._content_activity_ids(content_id))

    async def update_content(
        self,
        content: Content,
        expected: Iterable[ContentStatus],
    ) -> bool:
        values = _status_values(expected)
        content.updated_at = utcnow()
        changed = await self._write(
            f"""
            UPDATE content
            SET text = ?, original_text = ?, status = ?, scheduled_for = ?,
                post_id = ?, post_url = ?, posted_at = ?, failure_reason = ?,
                analytics = ?, metadata = ?, updated_at = ?
            WHERE id = ? AND status IN ({_placeholders(values)})
            """,
            [
                content.text,
                content.original_text,
                content.status.value,
                _ts(content.scheduled_for),
                content.post_id,
                content.post_url,
                _ts(content.posted_at),
                content.failure_reason,
                json.dumps(content.analytics.to_dict()),
                json.dumps(content.metadata, default=str),
                _ts(content.updated_at),
                content.id,
                *values,
            ],
        )
        if not changed:
            logger.debug(f"Conditional update lost for content {content.id}")
        return bool(changed)

    async def list_content(
        self,
        *,
        user_id: Optional[str] = None,
        statuses: Optional[Iterable[ContentStatus]] = None,
        scheduled_before: Optional[datetime] = None,
        posted_since: Optional[datetime] = None,
    ) -> list[Content]:
        clauses: list[str] = []
        params: list[Any] = []
        if user_id is not None:
            clauses.append("user_id = ?")
            params.append(user_id)
        if statuses is not None:
            values = _status_values(statuses)
            clauses.append(f"status IN ({_placeholders(values)})")
            params.extend(values)
        if scheduled_before is not None:
            clauses.append("scheduled_for IS NOT NULL AND scheduled_for <= ?")
            params.append(_ts(scheduled_before))
        if posted_since is not None:
            clauses.append("posted_at IS NOT NULL AND posted_at >= ?")
            params.append(_ts(posted_since))

        sql = "SELECT * FROM content"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY created_at, rowid"

        rows = await self._read(sql, params)
        return [self._row_to_content(r, await self._content_activity_ids(r["id"])) for r in rows]

    async def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
