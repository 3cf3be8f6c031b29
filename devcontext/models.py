"""Record types stored locally and exchanged with the sync server.

Local records use snake_case attributes. The wire format (sync payloads,
exports, queued changes) uses camelCase keys; ``to_wire`` and
``from_dict`` convert between the two.
"""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field, fields
from enum import Enum
from typing import Any

SYNC_PENDING = "pending"
SYNC_SYNCED = "synced"

# Fields that never leave the device
LOCAL_ONLY_FIELDS = frozenset({"sync_status"})


def to_camel(name: str) -> str:
    """Convert a snake_case name to camelCase."""
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def to_snake(name: str) -> str:
    """Convert a camelCase name to snake_case."""
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


class _Record:
    """Shared conversion helpers for dataclass records."""

    @classmethod
    def from_dict(cls, data: dict[str, Any]):
        """Build a record from a camelCase or snake_case dictionary.

        Unknown keys are ignored.
        """
        known = {f.name for f in fields(cls)}
        kwargs = {}
        for key, value in data.items():
            name = key if key in known else to_snake(key)
            if name in known:
                kwargs[name] = value
        return cls(**kwargs)

    def to_dict(self) -> dict[str, Any]:
        """Return the snake_case storage representation."""
        return asdict(self)

    def to_wire(self, include_local: bool = False) -> dict[str, Any]:
        """Return the camelCase representation used on the wire."""
        return {
            to_camel(k): v
            for k, v in asdict(self).items()
            if include_local or k not in LOCAL_ONLY_FIELDS
        }


@dataclass
class Project(_Record):
    """Root container for snippets and knowledge items."""

    id: str
    name: str
    description: str | None = None
    created_at: int = 0
    updated_at: int = 0
    sync_version: int = 0
    sync_status: str = SYNC_PENDING
    is_deleted: bool = False


@dataclass
class Snippet(_Record):
    """A saved piece of code."""

    id: str
    project_id: str
    code: str
    language: str = "text"
    description: str | None = None
    source: str | None = None
    content_hash: str | None = None
    created_at: int = 0
    updated_at: int = 0
    sync_version: int = 0
    sync_status: str = SYNC_PENDING
    is_deleted: bool = False


@dataclass
class Knowledge(_Record):
    """A saved question and answer pair."""

    id: str
    project_id: str
    question: str
    answer: str
    source: str | None = None
    tags: list[str] = field(default_factory=list)
    content_hash: str | None = None
    created_at: int = 0
    updated_at: int = 0
    sync_version: int = 0
    sync_status: str = SYNC_PENDING
    is_deleted: bool = False

    def __post_init__(self) -> None:
        if self.tags is None:
            self.tags = []


class EntityKind(str, Enum):
    """The closed set of synchronized entity kinds.

    The value is the store/collection name used in the sync protocol.
    """

    PROJECT = "projects"
    SNIPPET = "snippets"
    KNOWLEDGE = "knowledge"

    @property
    def model(self) -> type[Project] | type[Snippet] | type[Knowledge]:
        """Dataclass used for records of this kind."""
        return _MODELS[self]

    @property
    def item_type(self) -> str:
        """Singular name used in activity logs and match results."""
        return _ITEM_TYPES[self]

    @property
    def indexes(self) -> tuple[str, ...]:
        """Secondary index fields available for this kind."""
        return _INDEXES[self]

    def record(self, data: dict[str, Any]):
        """Build a record of this kind from a dictionary."""
        return self.model.from_dict(data)


_MODELS = {
    EntityKind.PROJECT: Project,
    EntityKind.SNIPPET: Snippet,
    EntityKind.KNOWLEDGE: Knowledge,
}

_ITEM_TYPES = {
    EntityKind.PROJECT: "project",
    EntityKind.SNIPPET: "snippet",
    EntityKind.KNOWLEDGE: "knowledge",
}

_INDEXES = {
    EntityKind.PROJECT: (),
    EntityKind.SNIPPET: ("project_id", "content_hash"),
    EntityKind.KNOWLEDGE: ("project_id", "content_hash"),
}


@dataclass
class SyncQueueItem:
    """A pending local change waiting to be pushed.

    ``data`` holds the camelCase wire record; for deletes it is the
    tombstone (the full record with ``isDeleted`` set).
    """

    id: int
    store_name: str
    operation: str
    data: dict[str, Any]
    timestamp: int
    retries: int = 0

    @property
    def kind(self) -> EntityKind:
        return EntityKind(self.store_name)

    @property
    def record_id(self) -> str:
        return self.data["id"]


@dataclass
class ActivityLogEntry:
    """One append-only activity log row."""

    timestamp: int
    action: str
    item_type: str
    item_id: str | None = None
    project_id: str | None = None
    source: str | None = None
    content_hash: str | None = None
    platform: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    id: int | None = None
