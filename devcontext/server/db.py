"""Server-side storage for synchronized data.

All user data is partitioned by ``user_id``. A push is applied in a single
``BEGIN IMMEDIATE`` transaction: project-reference validation, the upserts
and the sync-session version bump either all commit or all roll back.
"""

import json
import sqlite3
import threading
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from loguru import logger

from devcontext.utils import now_ms


@dataclass
class PushOutcome:
    """Result of applying one push batch."""

    sync_version: int
    applied: int = 0
    invalid_project_ids: list[str] = field(default_factory=list)
    rejected: dict[str, list[str]] = field(
        default_factory=lambda: {"projects": [], "snippets": [], "knowledge": []}
    )

    @property
    def has_rejections(self) -> bool:
        return any(self.rejected.values())


_PROJECT_COLUMNS = ("name", "description")
_SNIPPET_COLUMNS = ("project_id", "code", "language", "description", "source", "content_hash")
_KNOWLEDGE_COLUMNS = ("project_id", "question", "answer", "source", "tags", "content_hash")

_TABLE_COLUMNS = {
    "projects": _PROJECT_COLUMNS,
    "snippets": _SNIPPET_COLUMNS,
    "knowledge": _KNOWLEDGE_COLUMNS,
}


class ServerStore:
    """SQLite store shared by all request handlers.

    Handlers run in worker threads, so the connection is opened with
    ``check_same_thread=False`` and every operation holds ``_lock``.
    """

    def __init__(self, db_path: str | Path) -> None:
        """Open (and if needed create) the server database.

        Args:
            db_path: Database file path, or ":memory:".
        """
        path = str(db_path)
        if path != ":memory:":
            db_file = Path(path).expanduser()
            db_file.parent.mkdir(parents=True, exist_ok=True)
            path = str(db_file)
        self.db_path = path
        self._lock = threading.Lock()
        self.conn = sqlite3.connect(path, check_same_thread=False, isolation_level=None)
        self.conn.row_factory = sqlite3.Row
        self._create_tables()

    def _create_tables(self) -> None:
        """Create database tables if they don't exist."""
        with self._lock:
            cursor = self.conn.cursor()
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    id TEXT PRIMARY KEY,
                    email TEXT UNIQUE NOT NULL,
                    is_active INTEGER DEFAULT 1,
                    expires_at INTEGER,
                    created_at INTEGER NOT NULL
                )
            """)
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS projects (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    name TEXT NOT NULL,
                    description TEXT,
                    created_at INTEGER NOT NULL,
                    updated_at INTEGER NOT NULL,
                    sync_version INTEGER NOT NULL DEFAULT 0,
                    is_deleted INTEGER DEFAULT 0
                )
            """)
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS snippets (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    project_id TEXT NOT NULL,
                    code TEXT NOT NULL,
                    language TEXT NOT NULL,
                    description TEXT,
                    source TEXT,
                    content_hash TEXT,
                    created_at INTEGER NOT NULL,
                    updated_at INTEGER NOT NULL,
                    sync_version INTEGER NOT NULL DEFAULT 0,
                    is_deleted INTEGER DEFAULT 0
                )
            """)
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS knowledge (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    project_id TEXT NOT NULL,
                    question TEXT NOT NULL,
                    answer TEXT NOT NULL,
                    source TEXT,
                    tags TEXT,
                    content_hash TEXT,
                    created_at INTEGER NOT NULL,
                    updated_at INTEGER NOT NULL,
                    sync_version INTEGER NOT NULL DEFAULT 0,
                    is_deleted INTEGER DEFAULT 0
                )
            """)
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS sync_sessions (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    device_id TEXT NOT NULL,
                    sync_version INTEGER NOT NULL DEFAULT 0,
                    last_sync_at INTEGER,
                    UNIQUE (user_id, device_id)
                )
            """)
            for table in _TABLE_COLUMNS:
                cursor.execute(f"""
                    CREATE INDEX IF NOT EXISTS idx_{table}_user_version
                    ON {table}(user_id, sync_version)
                """)

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Cursor]:
        """Run a block inside one write transaction."""
        with self._lock:
            cursor = self.conn.cursor()
            cursor.execute("BEGIN IMMEDIATE")
            try:
                yield cursor
            except BaseException:
                cursor.execute("ROLLBACK")
                raise
            else:
                cursor.execute("COMMIT")

    def close(self) -> None:
        with self._lock:
            self.conn.close()

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(self, email: str, expires_at: int | None = None) -> dict[str, Any]:
        """Create a user account.

        Raises:
            ValueError: If the email is already registered.
        """
        user = {
            "id": uuid.uuid4().hex,
            "email": email,
            "is_active": True,
            "expires_at": expires_at,
            "created_at": now_ms(),
        }
        try:
            with self._transaction() as cursor:
                cursor.execute(
                    """
                    INSERT INTO users (id, email, is_active, expires_at, created_at)
                    VALUES (?, ?, 1, ?, ?)
                    """,
                    (user["id"], email, expires_at, user["created_at"]),
                )
        except sqlite3.IntegrityError as e:
            raise ValueError(f"User already exists: {email}") from e
        logger.info(f"Created user {user['id']} ({email})")
        return user

    def get_user(self, user_id: str) -> dict[str, Any] | None:
        with self._lock:
            row = self.conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        if row is None:
            return None
        user = dict(row)
        user["is_active"] = bool(user["is_active"])
        return user

    def set_user_active(self, user_id: str, active: bool) -> None:
        with self._transaction() as cursor:
            cursor.execute("UPDATE users SET is_active = ? WHERE id = ?", (int(active), user_id))

    # ------------------------------------------------------------------
    # Push
    # ------------------------------------------------------------------

    def apply_push(self, user_id: str, device_id: str, changes: dict[str, list[dict]]) -> PushOutcome:
        """Apply a batch of client changes atomically.

        Snippets and knowledge must reference a project the user already
        owns or one created in the same batch. Items that fail this check,
        and batch projects whose ID belongs to another user, are rejected
        while the rest of the batch is applied.

        Each row is written only if it is new, owned by the same user, and
        its ``updated_at`` is not older than the stored one. Written rows
        get the batch's new sync version.

        Args:
            user_id: Authenticated user.
            device_id: Pushing device.
            changes: Snake_case rows keyed by "projects", "snippets", "knowledge".

        Returns:
            PushOutcome with the new sync version and any rejections.
        """
        projects = changes.get("projects") or []
        snippets = changes.get("snippets") or []
        knowledge = changes.get("knowledge") or []

        with self._transaction() as cursor:
            session = self._get_or_create_session(cursor, user_id, device_id)
            row = cursor.execute(
                "SELECT MAX(sync_version) AS v FROM sync_sessions WHERE user_id = ?", (user_id,)
            ).fetchone()
            new_version = (row["v"] or 0) + 1
            outcome = PushOutcome(sync_version=new_version)

            batch_ids = {p["id"] for p in projects}
            foreign = self._foreign_ids(cursor, "projects", user_id, batch_ids)
            valid_batch = batch_ids - foreign

            referenced = {item["project_id"] for item in snippets + knowledge} - valid_batch
            owned = self._owned_ids(cursor, "projects", user_id, referenced)
            valid_projects = valid_batch | owned
            outcome.invalid_project_ids = sorted((referenced - owned) | foreign)

            now = now_ms()
            for project in projects:
                if project["id"] in foreign:
                    outcome.rejected["projects"].append(project["id"])
                    continue
                outcome.applied += self._upsert(cursor, "projects", user_id, project, new_version, now)
            for table, items in (("snippets", snippets), ("knowledge", knowledge)):
                for item in items:
                    if item["project_id"] not in valid_projects:
                        outcome.rejected[table].append(item["id"])
                        continue
                    outcome.applied += self._upsert(cursor, table, user_id, item, new_version, now)

            cursor.execute(
                "UPDATE sync_sessions SET sync_version = ?, last_sync_at = ? WHERE id = ?",
                (new_version, now, session["id"]),
            )

        logger.info(
            f"Push from {user_id}/{device_id}: version {new_version}, "
            f"{outcome.applied} rows written, "
            f"{sum(len(v) for v in outcome.rejected.values())} rejected"
        )
        return outcome

    def _get_or_create_session(self, cursor: sqlite3.Cursor, user_id: str, device_id: str):
        session = cursor.execute(
            "SELECT * FROM sync_sessions WHERE user_id = ? AND device_id = ?",
            (user_id, device_id),
        ).fetchone()
        if session is not None:
            return dict(session)
        session = {
            "id": uuid.uuid4().hex,
            "user_id": user_id,
            "device_id": device_id,
            "sync_version": 0,
            "last_sync_at": None,
        }
        cursor.execute(
            "INSERT INTO sync_sessions (id, user_id, device_id, sync_version) VALUES (?, ?, ?, 0)",
            (session["id"], user_id, device_id),
        )
        return session

    @staticmethod
    def _owned_ids(cursor: sqlite3.Cursor, table: str, user_id: str, ids: set[str]) -> set[str]:
        if not ids:
            return set()
        placeholders = ",".join("?" * len(ids))
        rows = cursor.execute(
            f"SELECT id FROM {table} WHERE user_id = ? AND id IN ({placeholders})",
            (user_id, *ids),
        ).fetchall()
        return {r["id"] for r in rows}

    @staticmethod
    def _foreign_ids(cursor: sqlite3.Cursor, table: str, user_id: str, ids: set[str]) -> set[str]:
        if not ids:
            return set()
        placeholders = ",".join("?" * len(ids))
        rows = cursor.execute(
            f"SELECT id FROM {table} WHERE user_id != ? AND id IN ({placeholders})",
            (user_id, *ids),
        ).fetchall()
        return {r["id"] for r in rows}

    @staticmethod
    def _upsert(
        cursor: sqlite3.Cursor,
        table: str,
        user_id: str,
        item: dict[str, Any],
        sync_version: int,
        now: int,
    ) -> int:
        columns = _TABLE_COLUMNS[table]
        values = [item.get(c) for c in columns]
        if table == "knowledge":
            values[columns.index("tags")] = json.dumps(item.get("tags") or [])
        updated_at = item.get("updated_at") or now
        all_columns = ("id", "user_id", *columns, "created_at", "updated_at", "sync_version", "is_deleted")
        assignments = ", ".join(
            f"{c} = excluded.{c}"
            for c in (*columns, "updated_at", "sync_version", "is_deleted")
        )
        cursor.execute(
            f"""
            INSERT INTO {table} ({", ".join(all_columns)})
            VALUES ({", ".join("?" * len(all_columns))})
            ON CONFLICT(id) DO UPDATE SET {assignments}
            WHERE {table}.user_id = excluded.user_id
              AND excluded.updated_at >= {table}.updated_at
            """,
            (
                item["id"],
                user_id,
                *values,
                item["created_at"],
                updated_at,
                sync_version,
                int(bool(item.get("is_deleted"))),
            ),
        )
        return cursor.rowcount

    # ------------------------------------------------------------------
    # Pull
    # ------------------------------------------------------------------

    def owns_project(self, user_id: str, project_id: str) -> bool:
        with self._lock:
            row = self.conn.execute(
                "SELECT 1 FROM projects WHERE id = ? AND user_id = ?", (project_id, user_id)
            ).fetchone()
        return row is not None

    def changes_since(
        self,
        user_id: str,
        since: int,
        project_id: str | None = None,
        device_id: str | None = None,
    ) -> dict[str, Any]:
        """Collect every row of the user's written after a sync version.

        Args:
            user_id: Authenticated user.
            since: Return rows with a sync version greater than this.
            project_id: Optional project filter.
            device_id: Report this device's acknowledged version if it has one.

        Returns:
            ``{"sync_version": int, "projects": [...], "snippets": [...], "knowledge": [...]}``
            with snake_case rows.
        """
        result: dict[str, Any] = {}
        with self._lock:
            # Single read transaction so the version matches the rows
            self.conn.execute("BEGIN")
            try:
                for table in _TABLE_COLUMNS:
                    sql = f"SELECT * FROM {table} WHERE user_id = ? AND sync_version > ?"
                    params: list[Any] = [user_id, since]
                    if project_id:
                        sql += " AND id = ?" if table == "projects" else " AND project_id = ?"
                        params.append(project_id)
                    rows = self.conn.execute(sql + " ORDER BY sync_version", params).fetchall()
                    result[table] = [self._row_to_record(table, r) for r in rows]

                version = None
                if device_id:
                    row = self.conn.execute(
                        "SELECT sync_version FROM sync_sessions WHERE user_id = ? AND device_id = ?",
                        (user_id, device_id),
                    ).fetchone()
                    version = row["sync_version"] if row else None
                if version is None:
                    row = self.conn.execute(
                        "SELECT MAX(sync_version) AS v FROM sync_sessions WHERE user_id = ?",
                        (user_id,),
                    ).fetchone()
                    version = row["v"] or 0
            finally:
                self.conn.execute("COMMIT")
        result["sync_version"] = version
        return result

    @staticmethod
    def _row_to_record(table: str, row: sqlite3.Row) -> dict[str, Any]:
        record = dict(row)
        record.pop("user_id", None)
        record["is_deleted"] = bool(record["is_deleted"])
        if table == "knowledge":
            record["tags"] = json.loads(record["tags"] or "[]")
        return record
