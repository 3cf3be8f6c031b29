"""Core content management: capture, projects, retrieval and sync."""

import asyncio
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import httpx
from loguru import logger

from devcontext._config import ConfigManager
from devcontext._duplicates import DuplicateCheck, DuplicateDetector, knowledge_fingerprint, snippet_fingerprint
from devcontext._search import SearchEngine, SearchResult
from devcontext._store import ContentStore
from devcontext._sync import SyncEngine, SyncResult
from devcontext.context_detector import EditorContext
from devcontext.context_matcher import ContextMatcher, MatchResult
from devcontext.errors import DevContextError, ValidationError
from devcontext.models import ActivityLogEntry, EntityKind, Knowledge, Project, Snippet
from devcontext.utils import (
    auto_detect_tags,
    detect_language_from_code,
    extract_platform_from_source,
    format_date,
    generate_id,
    merge_tags,
    now_ms,
    parse_tags,
)

DEFAULT_BASE_PATH = "~/.devcontext"
DEFAULT_PROJECT_NAME = "My First Project"
EXPORT_VERSION = 1


@dataclass
class CaptureResult:
    """Outcome of a save request, safe to hand back to any caller."""

    success: bool
    id: str | None = None
    error: str | None = None
    duplicate: DuplicateCheck = field(default_factory=DuplicateCheck)
    existing_item: dict[str, Any] | None = None

    @property
    def is_duplicate(self) -> bool:
        return self.duplicate.is_duplicate

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"success": self.success}
        if self.id:
            result["id"] = self.id
        if self.error:
            result["error"] = self.error
        if self.is_duplicate:
            result["isDuplicate"] = True
            result["matchType"] = self.duplicate.match_type
            result["similarity"] = self.duplicate.similarity or 100
            result["existingItem"] = self.existing_item
        return result


class ContentManager:
    """Manages saved snippets and knowledge for one local data directory."""

    # Capture limits, matching what the sync server accepts
    MAX_CODE_LENGTH = 100_000
    MAX_LANGUAGE_LENGTH = 50
    MAX_DESCRIPTION_LENGTH = 500
    MAX_PROJECT_DESCRIPTION_LENGTH = 1000
    MAX_PROJECT_NAME_LENGTH = 200
    MAX_SOURCE_LENGTH = 200
    MAX_QUESTION_LENGTH = 2000
    MAX_ANSWER_LENGTH = 50_000
    MAX_TAG_COUNT = 20
    MAX_TAG_LENGTH = 50

    def __init__(
        self,
        base_path: str | Path | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the content manager.

        Args:
            base_path: Data directory (defaults to $DEVCONTEXT_HOME or ~/.devcontext).
            transport: Optional httpx transport for the sync client.
        """
        if base_path is None:
            base_path = os.environ.get("DEVCONTEXT_HOME", DEFAULT_BASE_PATH)
        self.base_path = Path(base_path).expanduser()
        self.base_path.mkdir(parents=True, exist_ok=True)

        self.config = ConfigManager(self.base_path)
        self.store = ContentStore(self.base_path).open()
        self._duplicates = DuplicateDetector(self.store)
        self._search = SearchEngine(self.store)
        self._sync = SyncEngine(self.store, self.config, transport=transport)

    @property
    def sync_engine(self) -> SyncEngine:
        return self._sync

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    def create_project(self, name: str, description: str | None = None) -> Project:
        """Create a project.

        Raises:
            ValidationError: If the name is empty or a field is too long.
        """
        if not name or not name.strip():
            raise ValidationError("Project name cannot be empty", "name")
        self._check_length("name", name, self.MAX_PROJECT_NAME_LENGTH)
        self._check_length("description", description, self.MAX_PROJECT_DESCRIPTION_LENGTH)
        created = now_ms()
        project = Project(
            id=generate_id(created),
            name=name.strip(),
            description=description,
            created_at=created,
        )
        self.store.put(EntityKind.PROJECT, project)
        logger.info(f"Created project {project.id} ({project.name})")
        return project

    def get_project(self, project_id: str) -> Project | None:
        project = self.store.get_by_id(EntityKind.PROJECT, project_id)
        if project is None or project.is_deleted:
            return None
        return project

    def get_projects(self) -> list[dict[str, Any]]:
        """List projects with item counts and an ``active`` flag, oldest first."""
        active_id = self.store.get_setting("activeProjectId")
        projects = sorted(self.store.get_all(EntityKind.PROJECT), key=lambda p: p.created_at)
        result = []
        for project in projects:
            entry = project.to_dict()
            entry["snippet_count"] = len(
                self.store.get_by_index(EntityKind.SNIPPET, "project_id", project.id)
            )
            entry["knowledge_count"] = len(
                self.store.get_by_index(EntityKind.KNOWLEDGE, "project_id", project.id)
            )
            entry["active"] = project.id == active_id
            result.append(entry)
        return result

    def set_active_project(self, project_id: str) -> Project:
        """Make a project the capture target.

        Raises:
            ValidationError: If the project does not exist.
        """
        project = self.get_project(project_id)
        if project is None:
            raise ValidationError(f"Project not found: {project_id}", "project_id")
        self.store.set_setting("activeProjectId", project.id)
        return project

    def get_active_project(self) -> Project | None:
        """Return the active project, falling back to the oldest remaining one."""
        active_id = self.store.get_setting("activeProjectId")
        if active_id:
            project = self.get_project(active_id)
            if project is not None:
                return project
        remaining = sorted(self.store.get_all(EntityKind.PROJECT), key=lambda p: p.created_at)
        if not remaining:
            return None
        self.store.set_setting("activeProjectId", remaining[0].id)
        return remaining[0]

    def ensure_default_project(self) -> Project:
        """Return the active project, creating the first-run default if needed."""
        project = self.get_active_project()
        if project is None:
            project = self.create_project(DEFAULT_PROJECT_NAME)
            self.store.set_setting("activeProjectId", project.id)
        return project

    def delete_project(self, project_id: str) -> bool:
        """Delete a project and everything in it.

        Returns:
            True if the project existed and was deleted.
        """
        if self.get_project(project_id) is None:
            return False
        removed = 0
        for kind in (EntityKind.SNIPPET, EntityKind.KNOWLEDGE):
            for item in self.store.get_by_index(kind, "project_id", project_id):
                removed += self.store.delete_by_id(kind, item.id)
        self.store.delete_by_id(EntityKind.PROJECT, project_id)
        self._log("delete", "project", project_id, project_id, metadata={"cascaded": removed})

        if self.store.get_setting("activeProjectId") == project_id:
            self.store.set_setting("activeProjectId", None)
            self.get_active_project()
        logger.info(f"Deleted project {project_id} and {removed} items")
        return True

    def _resolve_project(self, project_id: str | None) -> Project:
        if project_id:
            project = self.get_project(project_id)
            if project is None:
                raise ValidationError(f"Project not found: {project_id}", "project_id")
            return project
        return self.ensure_default_project()

    # ------------------------------------------------------------------
    # Capture
    # ------------------------------------------------------------------

    @staticmethod
    def _check_length(name: str, value: str | None, limit: int) -> None:
        if value is not None and len(value) > limit:
            raise ValidationError(f"{name} exceeds maximum length of {limit} characters", name)

    def _validate_snippet(
        self, code: str, language: str | None, description: str | None, source: str | None
    ) -> None:
        if not code or not code.strip():
            raise ValidationError("code cannot be empty", "code")
        self._check_length("code", code, self.MAX_CODE_LENGTH)
        self._check_length("language", language, self.MAX_LANGUAGE_LENGTH)
        self._check_length("description", description, self.MAX_DESCRIPTION_LENGTH)
        self._check_length("source", source, self.MAX_SOURCE_LENGTH)

    def _validate_knowledge(
        self, question: str, answer: str, source: str | None, tags: list[str]
    ) -> None:
        if not question or not question.strip():
            raise ValidationError("question cannot be empty", "question")
        if not answer or not answer.strip():
            raise ValidationError("answer cannot be empty", "answer")
        self._check_length("question", question, self.MAX_QUESTION_LENGTH)
        self._check_length("answer", answer, self.MAX_ANSWER_LENGTH)
        self._check_length("source", source, self.MAX_SOURCE_LENGTH)
        if len(tags) > self.MAX_TAG_COUNT:
            raise ValidationError(f"at most {self.MAX_TAG_COUNT} tags are allowed", "tags")
        for tag in tags:
            self._check_length("tag", tag, self.MAX_TAG_LENGTH)

    def _validate_record(self, kind: EntityKind, record: Project | Snippet | Knowledge) -> None:
        if kind is EntityKind.PROJECT:
            if not record.name or not record.name.strip():
                raise ValidationError("Project name cannot be empty", "name")
            self._check_length("name", record.name, self.MAX_PROJECT_NAME_LENGTH)
            self._check_length("description", record.description, self.MAX_PROJECT_DESCRIPTION_LENGTH)
        elif kind is EntityKind.SNIPPET:
            self._validate_snippet(record.code, record.language, record.description, record.source)
        else:
            self._validate_knowledge(record.question, record.answer, record.source, record.tags or [])

    def save_snippet(
        self,
        code: str,
        language: str | None = None,
        source: str | None = None,
        description: str | None = None,
        project_id: str | None = None,
        force: bool = False,
    ) -> CaptureResult:
        """Save a code snippet.

        Args:
            code: Snippet code.
            language: Language ID (detected from the code when missing or "text").
            source: URL or label of where the snippet came from.
            description: Optional description.
            project_id: Target project (defaults to the active project).
            force: Save even if a duplicate exists.

        Returns:
            CaptureResult with the new ID, or the error and duplicate details.
        """
        try:
            self._validate_snippet(code, language, description, source)
            project = self._resolve_project(project_id)

            fingerprint = snippet_fingerprint(code)
            check = self._duplicates.check_snippet(code, project.id)
            if check.is_duplicate and not force:
                return self._duplicate_result("snippet", check, project.id, source, fingerprint)

            if not language or language == "text":
                language = detect_language_from_code(code)
            created = now_ms()
            snippet = Snippet(
                id=generate_id(created),
                project_id=project.id,
                code=code,
                language=language,
                description=description or "",
                source=source or "unknown",
                content_hash=fingerprint,
                created_at=created,
            )
            self.store.put(EntityKind.SNIPPET, snippet)
        except DevContextError as e:
            logger.debug(f"Snippet capture rejected: {e}")
            return CaptureResult(success=False, error=str(e))

        self._log(
            "save",
            "snippet",
            snippet.id,
            project.id,
            source=snippet.source,
            content_hash=fingerprint,
            metadata={"forceSaved": force and check.is_duplicate},
        )
        logger.info(f"Saved snippet {snippet.id} ({snippet.language}) to {project.id}")
        return CaptureResult(success=True, id=snippet.id)

    def save_knowledge(
        self,
        question: str,
        answer: str,
        source: str | None = None,
        tags: str | list[str] | None = None,
        project_id: str | None = None,
        force: bool = False,
    ) -> CaptureResult:
        """Save a question and answer pair.

        Tags detected from the text are merged after the user's tags.

        Returns:
            CaptureResult with the new ID, or the error and duplicate details.
        """
        user_tags = parse_tags(tags)
        try:
            self._validate_knowledge(question, answer, source, user_tags)
            project = self._resolve_project(project_id)

            fingerprint = knowledge_fingerprint(question, answer)
            check = self._duplicates.check_knowledge(question, answer, project.id)
            if check.is_duplicate and not force:
                return self._duplicate_result("knowledge", check, project.id, source, fingerprint)

            created = now_ms()
            item = Knowledge(
                id=generate_id(created),
                project_id=project.id,
                question=question,
                answer=answer,
                source=source or "unknown",
                tags=merge_tags(user_tags, auto_detect_tags(f"{question} {answer}")),
                content_hash=fingerprint,
                created_at=created,
            )
            self.store.put(EntityKind.KNOWLEDGE, item)
        except DevContextError as e:
            logger.debug(f"Knowledge capture rejected: {e}")
            return CaptureResult(success=False, error=str(e))

        self._log(
            "save",
            "knowledge",
            item.id,
            project.id,
            source=item.source,
            content_hash=fingerprint,
            metadata={"forceSaved": force and check.is_duplicate},
        )
        logger.info(f"Saved knowledge {item.id} with tags {item.tags} to {project.id}")
        return CaptureResult(success=True, id=item.id)

    def _duplicate_result(
        self,
        item_type: str,
        check: DuplicateCheck,
        project_id: str,
        source: str | None,
        fingerprint: str,
    ) -> CaptureResult:
        existing = check.existing_item
        saved_date = format_date(existing.created_at)
        origin = existing.source or "unknown source"
        noun = "snippet" if item_type == "snippet" else "knowledge"
        if check.match_type == "exact":
            error = f"This exact {noun} was already saved on {saved_date} from {origin}"
        elif item_type == "snippet":
            error = f"A similar snippet ({check.similarity}% match) was saved on {saved_date} from {origin}"
        else:
            error = f"Similar knowledge ({check.similarity}% match) was saved on {saved_date} from {origin}"

        self._log(
            "duplicate_detected",
            item_type,
            existing.id,
            project_id,
            source=source or "unknown",
            content_hash=fingerprint,
            metadata={
                "matchType": check.match_type,
                "similarity": check.similarity or 100,
                "attemptedSource": source,
            },
        )
        summary: dict[str, Any] = {"id": existing.id}
        if item_type == "snippet":
            summary["description"] = existing.description
        else:
            summary["question"] = existing.question
        summary.update(
            {"source": existing.source, "createdAt": existing.created_at, "savedDate": saved_date}
        )
        return CaptureResult(success=False, error=error, duplicate=check, existing_item=summary)

    # ------------------------------------------------------------------
    # Read, update, delete
    # ------------------------------------------------------------------

    def get_snippets(self, project_id: str | None = None) -> list[Snippet]:
        """List live snippets, newest first."""
        if project_id:
            items = self.store.get_by_index(EntityKind.SNIPPET, "project_id", project_id)
        else:
            items = self.store.get_all(EntityKind.SNIPPET)
        return sorted(items, key=lambda s: s.created_at, reverse=True)

    def get_knowledge(self, project_id: str | None = None) -> list[Knowledge]:
        """List live knowledge items, newest first."""
        if project_id:
            items = self.store.get_by_index(EntityKind.KNOWLEDGE, "project_id", project_id)
        else:
            items = self.store.get_all(EntityKind.KNOWLEDGE)
        return sorted(items, key=lambda k: k.created_at, reverse=True)

    def get(self, item_id: str) -> tuple[str, Snippet | Knowledge] | None:
        """Find a live snippet or knowledge item by ID.

        Returns:
            ``(item_type, item)`` or None.
        """
        for kind in (EntityKind.SNIPPET, EntityKind.KNOWLEDGE):
            item = self.store.get_by_id(kind, item_id)
            if item is not None and not item.is_deleted:
                return kind.item_type, item
        return None

    def update_snippet(self, snippet_id: str, **kwargs: Any) -> Snippet:
        """Update a snippet's code, language, description or source.

        Raises:
            ValidationError: If the snippet is missing or a field is invalid.
        """
        snippet = self.store.get_by_id(EntityKind.SNIPPET, snippet_id)
        if snippet is None or snippet.is_deleted:
            raise ValidationError(f"Snippet not found: {snippet_id}", "id")
        allowed = {"code", "language", "description", "source"}
        unknown = set(kwargs) - allowed
        if unknown:
            raise ValidationError(f"Cannot update fields: {', '.join(sorted(unknown))}")
        for name, value in kwargs.items():
            if value is not None:
                setattr(snippet, name, value)
        self._validate_snippet(snippet.code, snippet.language, snippet.description, snippet.source)
        snippet.content_hash = snippet_fingerprint(snippet.code)
        self.store.put(EntityKind.SNIPPET, snippet)
        self._log("update", "snippet", snippet.id, snippet.project_id, content_hash=snippet.content_hash)
        return snippet

    def update_knowledge(self, knowledge_id: str, **kwargs: Any) -> Knowledge:
        """Update a knowledge item's question, answer, source or tags.

        Raises:
            ValidationError: If the item is missing or a field is invalid.
        """
        item = self.store.get_by_id(EntityKind.KNOWLEDGE, knowledge_id)
        if item is None or item.is_deleted:
            raise ValidationError(f"Knowledge not found: {knowledge_id}", "id")
        allowed = {"question", "answer", "source", "tags"}
        unknown = set(kwargs) - allowed
        if unknown:
            raise ValidationError(f"Cannot update fields: {', '.join(sorted(unknown))}")
        for name, value in kwargs.items():
            if value is None:
                continue
            setattr(item, name, parse_tags(value) if name == "tags" else value)
        self._validate_knowledge(item.question, item.answer, item.source, item.tags)
        item.content_hash = knowledge_fingerprint(item.question, item.answer)
        self.store.put(EntityKind.KNOWLEDGE, item)
        self._log("update", "knowledge", item.id, item.project_id, content_hash=item.content_hash)
        return item

    def delete_snippet(self, snippet_id: str) -> bool:
        return self._delete(EntityKind.SNIPPET, snippet_id)

    def delete_knowledge(self, knowledge_id: str) -> bool:
        return self._delete(EntityKind.KNOWLEDGE, knowledge_id)

    def _delete(self, kind: EntityKind, item_id: str) -> bool:
        item = self.store.get_by_id(kind, item_id)
        if not self.store.delete_by_id(kind, item_id):
            return False
        self._log("delete", kind.item_type, item_id, item.project_id, content_hash=item.content_hash)
        return True

    # ------------------------------------------------------------------
    # Search and context
    # ------------------------------------------------------------------

    def search(
        self,
        query: str,
        project_id: str | None = None,
        kind: str = "all",
        limit: int | None = None,
    ) -> list[SearchResult]:
        """Free-text search.

        Args:
            query: Search text.
            project_id: Optional project scope.
            kind: "all", "snippets" or "knowledge".
            limit: Maximum results (engine default when None).

        Raises:
            ValueError: If kind is not recognised.
        """
        if not query or not query.strip():
            return []
        if kind == "snippets":
            return self._search.search_snippets(query, project_id, limit=limit or SearchEngine.DEFAULT_LIMIT)
        if kind == "knowledge":
            return self._search.search_knowledge(query, project_id, limit=limit or SearchEngine.DEFAULT_LIMIT)
        if kind == "all":
            return self._search.search_all(query, project_id, limit=limit or SearchEngine.DEFAULT_ALL_LIMIT)
        raise ValueError(f"Unknown search kind: {kind}")

    def find_context(
        self,
        context: EditorContext,
        project_id: str | None = None,
        max_results: int = ContextMatcher.DEFAULT_MAX_RESULTS,
        min_score: float = ContextMatcher.DEFAULT_MIN_SCORE,
    ) -> list[MatchResult]:
        """Rank saved items by relevance to an editor context."""
        matcher = ContextMatcher()
        return matcher.find_relevant_context(
            context,
            self.get_snippets(project_id),
            self.get_knowledge(project_id),
            max_results=max_results,
            min_score=min_score,
        )

    # ------------------------------------------------------------------
    # Activity log
    # ------------------------------------------------------------------

    def _log(
        self,
        action: str,
        item_type: str,
        item_id: str | None,
        project_id: str | None,
        source: str | None = None,
        content_hash: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        self.store.log_activity(
            ActivityLogEntry(
                timestamp=now_ms(),
                action=action,
                item_type=item_type,
                item_id=item_id,
                project_id=project_id,
                source=source,
                content_hash=content_hash,
                platform=extract_platform_from_source(source) if action == "save" else None,
                metadata=metadata or {},
            )
        )

    def get_activity_log(
        self,
        project_id: str | None = None,
        action: str | None = None,
        since: int | None = None,
        limit: int | None = 50,
    ) -> list[ActivityLogEntry]:
        return self.store.get_activity_log(project_id=project_id, action=action, since=since, limit=limit)

    def find_saves_by_hash(self, content_hash: str, project_id: str | None = None) -> list[ActivityLogEntry]:
        return self.store.find_saves_by_hash(content_hash, project_id)

    def clear_activity_log(self) -> None:
        self.store.clear_activity_log()

    # ------------------------------------------------------------------
    # Import / export and stats
    # ------------------------------------------------------------------

    def export_data(self, project_id: str | None = None) -> dict[str, Any]:
        """Export live records in wire (camelCase) form."""
        projects = self.store.get_all(EntityKind.PROJECT)
        if project_id:
            projects = [p for p in projects if p.id == project_id]
        data = {
            "version": EXPORT_VERSION,
            "exportedAt": now_ms(),
            "projects": [p.to_wire() for p in projects],
            "snippets": [s.to_wire() for s in self.get_snippets(project_id)],
            "knowledge": [k.to_wire() for k in self.get_knowledge(project_id)],
        }
        self._log(
            "export",
            "all",
            None,
            project_id,
            metadata={kind: len(data[kind]) for kind in ("projects", "snippets", "knowledge")},
        )
        return data

    def import_data(self, data: dict[str, Any]) -> dict[str, int]:
        """Import records that do not exist locally yet.

        Records are written through the store so they are queued for sync.

        Returns:
            Counts: {"imported": n, "skipped": n, "errors": n}
        """
        counts = {"imported": 0, "skipped": 0, "errors": 0}
        for kind in (EntityKind.PROJECT, EntityKind.SNIPPET, EntityKind.KNOWLEDGE):
            for row in data.get(kind.value) or []:
                try:
                    record = kind.record(row)
                except TypeError:
                    counts["errors"] += 1
                    continue
                if self.store.get_by_id(kind, record.id) is not None:
                    counts["skipped"] += 1
                    continue
                if kind is not EntityKind.PROJECT and self.get_project(record.project_id) is None:
                    counts["errors"] += 1
                    continue
                try:
                    self._validate_record(kind, record)
                except ValidationError as e:
                    logger.warning(f"Skipping invalid {kind.item_type} {record.id} on import: {e}")
                    counts["errors"] += 1
                    continue
                if kind is EntityKind.SNIPPET and not record.content_hash:
                    record.content_hash = snippet_fingerprint(record.code)
                if kind is EntityKind.KNOWLEDGE and not record.content_hash:
                    record.content_hash = knowledge_fingerprint(record.question, record.answer)
                record.is_deleted = False
                self.store.put(kind, record)
                counts["imported"] += 1

        self._log("import", "all", None, None, metadata=dict(counts))
        logger.info(f"Import finished: {counts}")
        return counts

    def stats(self) -> dict[str, Any]:
        """Summarise stored content and sync state."""
        return {
            "projects": len(self.store.get_all(EntityKind.PROJECT)),
            "snippets": len(self.store.get_all(EntityKind.SNIPPET)),
            "knowledge": len(self.store.get_all(EntityKind.KNOWLEDGE)),
            "pending_changes": self.store.queue_size(),
            "storage_backend": self.store.backend_name,
            "last_sync_at": self.store.get_setting("lastSyncAt"),
        }

    # ------------------------------------------------------------------
    # Cloud sync
    # ------------------------------------------------------------------

    def cloud_login(self, token: str, api_url: str | None = None) -> None:
        """Store a bearer token and enable sync."""
        if not token or not token.strip():
            raise ValidationError("token cannot be empty", "token")
        if api_url:
            self.config.set_api_url(api_url)
        self.store.set_setting("cloudAuthToken", token.strip())
        self.store.set_setting("cloudSyncEnabled", True)
        self.store.set_setting("lastSyncError", None)

    def cloud_logout(self) -> None:
        self.store.set_setting("cloudAuthToken", None)
        self.store.set_setting("cloudSyncEnabled", False)

    def sync_status(self) -> dict[str, Any]:
        return {
            "enabled": bool(self.store.get_setting("cloudSyncEnabled", False)),
            "syncing": self._sync.is_syncing,
            "lastSyncAt": self.store.get_setting("lastSyncAt"),
            "lastPullSyncVersion": self.store.get_setting("lastPullSyncVersion", 0),
            "pending": self.store.queue_size(),
            "lastError": self.store.get_setting("lastSyncError"),
            "apiUrl": self.config.get_api_url(),
        }

    async def sync_async(self, push: bool = True, pull: bool = True) -> SyncResult:
        return await self._sync.sync(push=push, pull=pull)

    def sync(self, push: bool = True, pull: bool = True) -> SyncResult:
        """Run one sync cycle from synchronous code."""
        return asyncio.run(self._sync.sync(push=push, pull=pull))

    def close(self) -> None:
        """Close the content store."""
        self.store.close()

    def __enter__(self) -> "ContentManager":
        """Context manager entry."""
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Context manager exit."""
        self.close()
