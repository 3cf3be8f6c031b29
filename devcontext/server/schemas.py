"""Pydantic models for the sync wire protocol.

Field names are snake_case in Python and camelCase on the wire.
"""

from typing import Any, Optional

from pydantic import ConfigDict, Field

from devcontext.wire import (
    MAX_ITEMS_PER_SYNC,
    KnowledgeChange,
    ProjectChange,
    SnippetChange,
    WireModel,
)


class SyncChanges(WireModel):
    """Changes grouped by entity kind, each list capped per request."""

    projects: list[ProjectChange] = Field(default_factory=list, max_length=MAX_ITEMS_PER_SYNC)
    snippets: list[SnippetChange] = Field(default_factory=list, max_length=MAX_ITEMS_PER_SYNC)
    knowledge: list[KnowledgeChange] = Field(default_factory=list, max_length=MAX_ITEMS_PER_SYNC)

    def as_rows(self) -> dict[str, list[dict[str, Any]]]:
        """Return snake_case row dictionaries for the store."""
        return {
            "projects": [p.model_dump() for p in self.projects],
            "snippets": [s.model_dump() for s in self.snippets],
            "knowledge": [k.model_dump() for k in self.knowledge],
        }


class PushRequest(WireModel):
    """Body of ``POST /sync/push``."""

    device_id: str = Field(..., min_length=1, max_length=100, alias="deviceId")
    last_sync_version: int = Field(..., ge=0, alias="lastSyncVersion")
    changes: SyncChanges

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "deviceId": "3f9c2a7e",
                "lastSyncVersion": 4,
                "changes": {
                    "projects": [{"id": "p1", "name": "Web app", "createdAt": 1700000000000}],
                    "snippets": [
                        {
                            "id": "s1",
                            "projectId": "p1",
                            "code": "const x = 1;",
                            "language": "javascript",
                            "createdAt": 1700000000000,
                            "updatedAt": 1700000000000,
                        }
                    ],
                },
            }
        },
    )


class PushResponse(WireModel):
    """Successful push result."""

    success: bool = True
    sync_version: int = Field(..., alias="syncVersion")


class PulledProject(WireModel):
    id: str
    name: str
    description: Optional[str] = None
    created_at: int = Field(..., alias="createdAt")
    updated_at: int = Field(..., alias="updatedAt")
    sync_version: int = Field(..., alias="syncVersion")
    is_deleted: bool = Field(False, alias="isDeleted")


class PulledSnippet(WireModel):
    id: str
    project_id: str = Field(..., alias="projectId")
    code: str
    language: str
    description: Optional[str] = None
    source: Optional[str] = None
    content_hash: Optional[str] = Field(None, alias="contentHash")
    created_at: int = Field(..., alias="createdAt")
    updated_at: int = Field(..., alias="updatedAt")
    sync_version: int = Field(..., alias="syncVersion")
    is_deleted: bool = Field(False, alias="isDeleted")


class PulledKnowledge(WireModel):
    id: str
    project_id: str = Field(..., alias="projectId")
    question: str
    answer: str
    source: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    content_hash: Optional[str] = Field(None, alias="contentHash")
    created_at: int = Field(..., alias="createdAt")
    updated_at: int = Field(..., alias="updatedAt")
    sync_version: int = Field(..., alias="syncVersion")
    is_deleted: bool = Field(False, alias="isDeleted")


class PulledChanges(WireModel):
    projects: list[PulledProject] = Field(default_factory=list)
    snippets: list[PulledSnippet] = Field(default_factory=list)
    knowledge: list[PulledKnowledge] = Field(default_factory=list)


class PullResponse(WireModel):
    """Body returned by ``GET /sync/pull``."""

    sync_version: int = Field(..., alias="syncVersion")
    changes: PulledChanges
