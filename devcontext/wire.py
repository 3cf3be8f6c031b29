"""Record shapes accepted by ``POST /sync/push``.

Shared by the server, which validates whole requests, and the sync
engine, which checks each queued change before sending it so one bad row
cannot get a whole batch rejected.
"""

from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as SchemaValidationError

from devcontext.models import EntityKind

MAX_ITEMS_PER_SYNC = 500


class WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ProjectChange(WireModel):
    """A project row sent by a client."""

    id: str = Field(..., min_length=1, max_length=50)
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=1000)
    created_at: int = Field(..., ge=0, alias="createdAt")
    updated_at: Optional[int] = Field(None, ge=0, alias="updatedAt")
    is_deleted: bool = Field(False, alias="isDeleted")


class SnippetChange(WireModel):
    """A snippet row sent by a client."""

    id: str = Field(..., min_length=1, max_length=50)
    project_id: str = Field(..., min_length=1, max_length=50, alias="projectId")
    code: str = Field(..., max_length=100_000)
    language: str = Field(..., max_length=50)
    description: Optional[str] = Field(None, max_length=500)
    source: Optional[str] = Field(None, max_length=200)
    content_hash: Optional[str] = Field(None, max_length=100, alias="contentHash")
    created_at: int = Field(..., ge=0, alias="createdAt")
    updated_at: Optional[int] = Field(None, ge=0, alias="updatedAt")
    is_deleted: bool = Field(False, alias="isDeleted")


class KnowledgeChange(WireModel):
    """A knowledge row sent by a client."""

    id: str = Field(..., min_length=1, max_length=50)
    project_id: str = Field(..., min_length=1, max_length=50, alias="projectId")
    question: str = Field(..., min_length=1, max_length=2000)
    answer: str = Field(..., max_length=50_000)
    source: Optional[str] = Field(None, max_length=200)
    tags: list[Annotated[str, Field(max_length=50)]] = Field(default_factory=list, max_length=20)
    content_hash: Optional[str] = Field(None, max_length=100, alias="contentHash")
    created_at: int = Field(..., ge=0, alias="createdAt")
    updated_at: Optional[int] = Field(None, ge=0, alias="updatedAt")
    is_deleted: bool = Field(False, alias="isDeleted")


CHANGE_MODELS: dict[EntityKind, type[WireModel]] = {
    EntityKind.PROJECT: ProjectChange,
    EntityKind.SNIPPET: SnippetChange,
    EntityKind.KNOWLEDGE: KnowledgeChange,
}


def change_problem(kind: EntityKind, data: dict) -> str | None:
    """Describe why the server would reject a change, or return None if it is valid."""
    try:
        CHANGE_MODELS[kind].model_validate(data)
    except SchemaValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ()))
        return f"{location}: {first.get('msg', 'invalid value')}"
    return None
