"""Local content store for projects, snippets, knowledge and the sync outbox.

The store normally lives in a SQLite database. When SQLite cannot be
opened it falls back to a single JSON file. The fallback keeps the same
contract but has no secondary indexes, so index lookups become full scans.
"""

import copy
import json
import os
import sqlite3
from pathlib import Path
from typing import Any

from loguru import logger

from devcontext.errors import StorageUnavailable
from devcontext.models import (
    SYNC_PENDING,
    ActivityLogEntry,
    EntityKind,
    SyncQueueItem,
)
from devcontext.utils import now_ms

OP_UPSERT = "upsert"
OP_DELETE = "delete"


class _SQLiteBackend:
    """Indexed storage primitives on top of SQLite."""

    name = "sqlite"

    def __init__(self, path: Path) -> None:
        try:
            self.conn = sqlite3.connect(str(path))
            self.conn.row_factory = sqlite3.Row
            self._create_tables()
        except sqlite3.Error as e:
            raise StorageUnavailable(f"Cannot open SQLite store at {path}: {e}") from e

    def _create_tables(self) -> None:
        """Create database tables if they don't exist."""
        cursor = self.conn.cursor()
        for kind in EntityKind:
            cursor.execute(f"""
                CREATE TABLE IF NOT EXISTS {kind.value} (
                    id TEXT PRIMARY KEY,
                    project_id TEXT,
                    content_hash TEXT,
                    updated_at INTEGER,
                    data TEXT NOT NULL
                )
            """)
            for index in kind.indexes:
                cursor.execute(f"""
                    CREATE INDEX IF NOT EXISTS idx_{kind.value}_{index}
                    ON {kind.value}({index})
                """)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS settings (
                key TEXT PRIMARY KEY,
                value TEXT
            )
        """)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS sync_queue (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                store_name TEXT NOT NULL,
                operation TEXT NOT NULL,
                data TEXT NOT NULL,
                timestamp INTEGER NOT NULL,
                retries INTEGER DEFAULT 0
            )
        """)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS activity_log (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                timestamp INTEGER NOT NULL,
                action TEXT NOT NULL,
                item_type TEXT,
                item_id TEXT,
                project_id TEXT,
                source TEXT,
                content_hash TEXT,
                platform TEXT,
                metadata TEXT
            )
        """)
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_activity_log_content_hash
            ON activity_log(content_hash)
        """)
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_activity_log_project_id
            ON activity_log(project_id)
        """)
        self.conn.commit()

    def read(self, kind: EntityKind, record_id: str) -> dict[str, Any] | None:
        row = self.conn.execute(
            f"SELECT data FROM {kind.value} WHERE id = ?", (record_id,)
        ).fetchone()
        return json.loads(row["data"]) if row else None

    def write(self, kind: EntityKind, data: dict[str, Any]) -> None:
        self.conn.execute(
            f"""
            INSERT OR REPLACE INTO {kind.value} (id, project_id, content_hash, updated_at, data)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                data["id"],
                data.get("project_id"),
                data.get("content_hash"),
                data.get("updated_at"),
                json.dumps(data),
            ),
        )
        self.conn.commit()

    def scan(self, kind: EntityKind) -> list[dict[str, Any]]:
        rows = self.conn.execute(f"SELECT data FROM {kind.value}").fetchall()
        return [json.loads(row["data"]) for row in rows]

    def lookup(self, kind: EntityKind, index: str, value: Any) -> list[dict[str, Any]]:
        # index is validated against kind.indexes by the caller
        rows = self.conn.execute(
            f"SELECT data FROM {kind.value} WHERE {index} = ?", (value,)
        ).fetchall()
        return [json.loads(row["data"]) for row in rows]

    def get_setting(self, key: str) -> Any:
        row = self.conn.execute("SELECT value FROM settings WHERE key = ?", (key,)).fetchone()
        return json.loads(row["value"]) if row else None

    def set_setting(self, key: str, value: Any) -> None:
        self.conn.execute(
            "INSERT OR REPLACE INTO settings (key, value) VALUES (?, ?)",
            (key, json.dumps(value)),
        )
        self.conn.commit()

    def queue_append(self, store_name: str, operation: str, data: dict, timestamp: int) -> int:
        cursor = self.conn.execute(
            """
            INSERT INTO sync_queue (store_name, operation, data, timestamp, retries)
            VALUES (?, ?, ?, ?, 0)
            """,
            (store_name, operation, json.dumps(data), timestamp),
        )
        self.conn.commit()
        return cursor.lastrowid

    def queue_list(self) -> list[dict[str, Any]]:
        rows = self.conn.execute("SELECT * FROM sync_queue ORDER BY id").fetchall()
        items = []
        for row in rows:
            item = dict(row)
            item["data"] = json.loads(item["data"])
            items.append(item)
        return items

    def queue_remove(self, ids: list[int]) -> None:
        self.conn.executemany("DELETE FROM sync_queue WHERE id = ?", [(i,) for i in ids])
        self.conn.commit()

    def queue_set_retries(self, item_id: int, retries: int) -> None:
        self.conn.execute("UPDATE sync_queue SET retries = ? WHERE id = ?", (retries, item_id))
        self.conn.commit()

    def activity_append(self, entry: dict[str, Any]) -> int:
        cursor = self.conn.execute(
            """
            INSERT INTO activity_log
                (timestamp, action, item_type, item_id, project_id, source,
                 content_hash, platform, metadata)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                entry["timestamp"],
                entry["action"],
                entry["item_type"],
                entry["item_id"],
                entry["project_id"],
                entry["source"],
                entry["content_hash"],
                entry["platform"],
                json.dumps(entry["metadata"]),
            ),
        )
        self.conn.commit()
        return cursor.lastrowid

    def activity_list(self) -> list[dict[str, Any]]:
        rows = self.conn.execute("SELECT * FROM activity_log ORDER BY id").fetchall()
        entries = []
        for row in rows:
            entry = dict(row)
            entry["metadata"] = json.loads(entry["metadata"] or "{}")
            entries.append(entry)
        return entries

    def activity_clear(self) -> None:
        self.conn.execute("DELETE FROM activity_log")
        self.conn.commit()

    def close(self) -> None:
        self.conn.close()


class _JsonFileBackend:
    """Unindexed storage primitives kept in one JSON file.

    Every mutation rewrites the file through a temporary file and
    ``os.replace``, so a single write is all-or-nothing.
    """

    name = "json"

    def __init__(self, path: Path) -> None:
        self.path = path
        self._state: dict[str, Any] = {
            **{kind.value: {} for kind in EntityKind},
            "settings": {},
            "sync_queue": [],
            "activity_log": [],
            "next_queue_id": 1,
            "next_activity_id": 1,
        }
        try:
            if path.exists():
                with open(path) as f:
                    self._state.update(json.load(f))
            self._flush()
        except (OSError, json.JSONDecodeError) as e:
            raise StorageUnavailable(f"Cannot open JSON store at {path}: {e}") from e

    def _flush(self) -> None:
        tmp_path = self.path.with_suffix(".tmp")
        with open(tmp_path, "w") as f:
            json.dump(self._state, f)
        os.replace(tmp_path, self.path)

    def read(self, kind: EntityKind, record_id: str) -> dict[str, Any] | None:
        data = self._state[kind.value].get(record_id)
        return copy.deepcopy(data) if data else None

    def write(self, kind: EntityKind, data: dict[str, Any]) -> None:
        self._state[kind.value][data["id"]] = copy.deepcopy(data)
        self._flush()

    def scan(self, kind: EntityKind) -> list[dict[str, Any]]:
        return [copy.deepcopy(d) for d in self._state[kind.value].values()]

    def lookup(self, kind: EntityKind, index: str, value: Any) -> list[dict[str, Any]]:
        return [d for d in self.scan(kind) if d.get(index) == value]

    def get_setting(self, key: str) -> Any:
        return self._state["settings"].get(key)

    def set_setting(self, key: str, value: Any) -> None:
        self._state["settings"][key] = value
        self._flush()

    def queue_append(self, store_name: str, operation: str, data: dict, timestamp: int) -> int:
        item_id = self._state["next_queue_id"]
        self._state["next_queue_id"] = item_id + 1
        self._state["sync_queue"].append(
            {
                "id": item_id,
                "store_name": store_name,
                "operation": operation,
                "data": copy.deepcopy(data),
                "timestamp": timestamp,
                "retries": 0,
            }
        )
        self._flush()
        return item_id

    def queue_list(self) -> list[dict[str, Any]]:
        return copy.deepcopy(self._state["sync_queue"])

    def queue_remove(self, ids: list[int]) -> None:
        drop = set(ids)
        self._state["sync_queue"] = [i for i in self._state["sync_queue"] if i["id"] not in drop]
        self._flush()

    def queue_set_retries(self, item_id: int, retries: int) -> None:
        for item in self._state["sync_queue"]:
            if item["id"] == item_id:
                item["retries"] = retries
        self._flush()

    def activity_append(self, entry: dict[str, Any]) -> int:
        entry_id = self._state["next_activity_id"]
        self._state["next_activity_id"] = entry_id + 1
        self._state["activity_log"].append({**entry, "id": entry_id})
        self._flush()
        return entry_id

    def activity_list(self) -> list[dict[str, Any]]:
        return copy.deepcopy(self._state["activity_log"])

    def activity_clear(self) -> None:
        self._state["activity_log"] = []
        self._flush()

    def close(self) -> None:
        self._flush()


class ContentStore:
    """Authoritative local persistence keyed by record ID.

    Writes made through ``put`` and ``delete_by_id`` are stamped as
    pending and recorded in the sync queue. ``put_direct`` skips the
    queue and is reserved for data that came from the server.

    Deleted records are kept as tombstones (``is_deleted=True``) so they
    stay addressable by ID; listings and index lookups skip them unless
    asked otherwise.
    """

    SQLITE_FILENAME = "devcontext.db"
    JSON_FILENAME = "devcontext.json"

    def __init__(self, base_path: Path) -> None:
        """Initialize the store (call ``open`` before use).

        Args:
            base_path: Directory holding the database files.
        """
        self.base_path = Path(base_path)
        self._backend: _SQLiteBackend | _JsonFileBackend | None = None

    def open(self) -> "ContentStore":
        """Open the SQLite store, falling back to the JSON file store.

        Returns:
            The store itself.

        Raises:
            StorageUnavailable: If neither engine can be opened.
        """
        if self._backend is not None:
            return self
        self.base_path.mkdir(parents=True, exist_ok=True)
        try:
            self._backend = _SQLiteBackend(self.base_path / self.SQLITE_FILENAME)
        except StorageUnavailable as e:
            logger.warning(f"{e}; falling back to JSON file storage")
            self._backend = _JsonFileBackend(self.base_path / self.JSON_FILENAME)
        logger.debug(f"Content store opened with {self._backend.name} backend")
        return self

    def close(self) -> None:
        """Close the underlying storage engine."""
        if self._backend is not None:
            self._backend.close()
            self._backend = None

    def __enter__(self) -> "ContentStore":
        return self.open()

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    @property
    def backend(self) -> "_SQLiteBackend | _JsonFileBackend":
        if self._backend is None:
            raise StorageUnavailable("Content store is not open")
        return self._backend

    @property
    def backend_name(self) -> str:
        return self.backend.name

    @property
    def degraded(self) -> bool:
        """True when running on the unindexed fallback store."""
        return self.backend.name != _SQLiteBackend.name

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    def put(self, kind: EntityKind, record):
        """Upsert a record, mark it pending and queue it for push.

        Args:
            kind: Entity kind of the record.
            record: Project, Snippet or Knowledge instance (modified in place).

        Returns:
            The stamped record.
        """
        record.sync_status = SYNC_PENDING
        record.updated_at = now_ms()
        self.backend.write(kind, record.to_dict())
        self._enqueue(kind, OP_UPSERT, record)
        return record

    def put_direct(self, kind: EntityKind, record):
        """Write a record exactly as given, without queueing it."""
        self.backend.write(kind, record.to_dict())
        return record

    def delete_by_id(self, kind: EntityKind, record_id: str) -> bool:
        """Delete a record and queue its tombstone for push.

        Returns:
            True if a live record was deleted.
        """
        record = self.get_by_id(kind, record_id)
        if record is None or record.is_deleted:
            return False
        record.is_deleted = True
        record.sync_status = SYNC_PENDING
        record.updated_at = now_ms()
        self.backend.write(kind, record.to_dict())
        self._enqueue(kind, OP_DELETE, record)
        return True

    def get_by_id(self, kind: EntityKind, record_id: str):
        """Get a record by ID, including tombstones."""
        data = self.backend.read(kind, record_id)
        return kind.record(data) if data else None

    def get_all(self, kind: EntityKind, include_deleted: bool = False) -> list:
        """Get every record of a kind."""
        records = [kind.record(d) for d in self.backend.scan(kind)]
        if not include_deleted:
            records = [r for r in records if not r.is_deleted]
        return records

    def get_by_index(
        self, kind: EntityKind, index: str, value: Any, include_deleted: bool = False
    ) -> list:
        """Get records whose secondary index field equals value.

        Raises:
            ValueError: If the kind has no such index.
        """
        if index not in kind.indexes:
            raise ValueError(f"{kind.value} has no index named {index!r}")
        records = [kind.record(d) for d in self.backend.lookup(kind, index, value)]
        if not include_deleted:
            records = [r for r in records if not r.is_deleted]
        return records

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def get_setting(self, key: str, default: Any = None) -> Any:
        value = self.backend.get_setting(key)
        return default if value is None else value

    def set_setting(self, key: str, value: Any) -> None:
        self.backend.set_setting(key, value)

    # ------------------------------------------------------------------
    # Sync queue
    # ------------------------------------------------------------------

    def _enqueue(self, kind: EntityKind, operation: str, record) -> None:
        self.backend.queue_append(kind.value, operation, record.to_wire(), now_ms())

    def get_queue(self) -> list[SyncQueueItem]:
        """Get queued changes, oldest first."""
        return [SyncQueueItem(**item) for item in self.backend.queue_list()]

    def queue_size(self) -> int:
        return len(self.backend.queue_list())

    def remove_from_queue(self, ids: list[int]) -> None:
        if ids:
            self.backend.queue_remove(list(ids))

    def set_queue_retries(self, item_id: int, retries: int) -> None:
        self.backend.queue_set_retries(item_id, retries)

    # ------------------------------------------------------------------
    # Activity log
    # ------------------------------------------------------------------

    def log_activity(self, entry: ActivityLogEntry) -> ActivityLogEntry:
        data = {
            "timestamp": entry.timestamp,
            "action": entry.action,
            "item_type": entry.item_type,
            "item_id": entry.item_id,
            "project_id": entry.project_id,
            "source": entry.source,
            "content_hash": entry.content_hash,
            "platform": entry.platform,
            "metadata": entry.metadata,
        }
        entry.id = self.backend.activity_append(data)
        return entry

    def get_activity_log(
        self,
        project_id: str | None = None,
        action: str | None = None,
        since: int | None = None,
        limit: int | None = 50,
    ) -> list[ActivityLogEntry]:
        """Get activity log entries, newest first."""
        entries = [ActivityLogEntry(**e) for e in self.backend.activity_list()]
        if project_id:
            entries = [e for e in entries if e.project_id == project_id]
        if action:
            entries = [e for e in entries if e.action == action]
        if since is not None:
            entries = [e for e in entries if e.timestamp >= since]
        entries.sort(key=lambda e: (e.timestamp, e.id or 0), reverse=True)
        return entries[:limit] if limit else entries

    def find_saves_by_hash(
        self, content_hash: str, project_id: str | None = None
    ) -> list[ActivityLogEntry]:
        """Find earlier ``save`` activity for a content fingerprint."""
        return [
            e
            for e in self.get_activity_log(limit=None)
            if e.action == "save"
            and e.content_hash == content_hash
            and (not project_id or e.project_id == project_id)
        ]

    def clear_activity_log(self) -> None:
        self.backend.activity_clear()
