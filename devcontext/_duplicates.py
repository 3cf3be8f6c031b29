"""Duplicate detection for captured snippets and knowledge."""

from dataclasses import dataclass
from typing import Any

from loguru import logger

from devcontext._store import ContentStore
from devcontext.models import EntityKind, Knowledge, Snippet
from devcontext.utils import calculate_similarity, hash_content, normalize_content

MATCH_EXACT = "exact"
MATCH_SIMILAR = "similar"


@dataclass
class DuplicateCheck:
    """Result of a duplicate check."""

    is_duplicate: bool = False
    match_type: str | None = None
    similarity: int | None = None  # percentage, similar matches only
    existing_item: Snippet | Knowledge | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"isDuplicate": self.is_duplicate}
        if self.is_duplicate:
            result["matchType"] = self.match_type
            if self.similarity is not None:
                result["similarity"] = self.similarity
            result["existingId"] = self.existing_item.id if self.existing_item else None
        return result


def snippet_fingerprint(code: str) -> str:
    """Fingerprint of a snippet's normalized code."""
    return hash_content(normalize_content(code))


def knowledge_fingerprint(question: str, answer: str) -> str:
    """Fingerprint of a knowledge item's normalized question and answer."""
    return hash_content(normalize_content(question) + normalize_content(answer))


class DuplicateDetector:
    """Finds existing items in a project that match new content.

    Exact matches compare fingerprints of the normalized content. When
    none exists, word-level Jaccard similarity is compared against a
    per-kind threshold. The best-scoring candidate wins and ties go to
    the oldest item.
    """

    SNIPPET_SIMILARITY_THRESHOLD = 0.80
    KNOWLEDGE_SIMILARITY_THRESHOLD = 0.85

    def __init__(self, store: ContentStore) -> None:
        """Initialize the duplicate detector.

        Args:
            store: Content store to search for existing items.
        """
        self.store = store

    def check_snippet(self, code: str, project_id: str) -> DuplicateCheck:
        """Check whether code duplicates a snippet in the project.

        Args:
            code: Snippet code to check.
            project_id: Project the snippet would be saved to.

        Returns:
            DuplicateCheck describing the best match, if any.
        """
        normalized = normalize_content(code)
        fingerprint = hash_content(normalized)
        candidates = self.store.get_by_index(EntityKind.SNIPPET, "project_id", project_id)

        exact = self._exact_match(
            EntityKind.SNIPPET,
            fingerprint,
            project_id,
            candidates,
            lambda s: hash_content(normalize_content(s.code)),
        )
        if exact:
            return exact

        return self._similar_match(
            candidates,
            lambda s: calculate_similarity(normalized, normalize_content(s.code)),
            self.SNIPPET_SIMILARITY_THRESHOLD,
        )

    def check_knowledge(self, question: str, answer: str, project_id: str) -> DuplicateCheck:
        """Check whether a Q&A pair duplicates knowledge in the project.

        The exact check covers question and answer together. The
        similarity check only looks at the answer text.
        """
        normalized_answer = normalize_content(answer)
        fingerprint = knowledge_fingerprint(question, answer)
        candidates = self.store.get_by_index(EntityKind.KNOWLEDGE, "project_id", project_id)

        exact = self._exact_match(
            EntityKind.KNOWLEDGE,
            fingerprint,
            project_id,
            candidates,
            lambda k: knowledge_fingerprint(k.question, k.answer),
        )
        if exact:
            return exact

        return self._similar_match(
            candidates,
            lambda k: calculate_similarity(normalized_answer, normalize_content(k.answer)),
            self.KNOWLEDGE_SIMILARITY_THRESHOLD,
        )

    def _exact_match(self, kind, fingerprint, project_id, candidates, fingerprint_of):
        if not fingerprint:
            return None
        # Stored fingerprints first, then recompute for items saved without one
        matches = [
            item
            for item in self.store.get_by_index(kind, "content_hash", fingerprint)
            if item.project_id == project_id
        ]
        if not matches:
            matches = [item for item in candidates if fingerprint_of(item) == fingerprint]
        if not matches:
            return None
        existing = min(matches, key=lambda item: item.created_at)
        logger.debug(f"Exact duplicate of {kind.item_type} {existing.id}")
        return DuplicateCheck(is_duplicate=True, match_type=MATCH_EXACT, existing_item=existing)

    def _similar_match(self, candidates, similarity_of, threshold: float) -> DuplicateCheck:
        best = None
        best_score = 0.0
        for item in sorted(candidates, key=lambda c: c.created_at):
            score = similarity_of(item)
            if score >= threshold and score > best_score:
                best, best_score = item, score
        if best is None:
            return DuplicateCheck()
        logger.debug(f"Similar duplicate {best.id} at {best_score:.2f}")
        return DuplicateCheck(
            is_duplicate=True,
            match_type=MATCH_SIMILAR,
            similarity=int(best_score * 100 + 0.5),  # half rounds up
            existing_item=best,
        )
