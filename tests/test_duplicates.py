"""Tests for duplicate detection."""

import pytest

from devcontext._duplicates import (
    MATCH_EXACT,
    MATCH_SIMILAR,
    DuplicateDetector,
    knowledge_fingerprint,
    snippet_fingerprint,
)
from devcontext.models import EntityKind, Knowledge, Snippet


@pytest.fixture
def detector(temp_store):
    return DuplicateDetector(temp_store)


def add_snippet(store, snippet_id, code, project_id="p1", created_at=1000, with_hash=True):
    store.put(
        EntityKind.SNIPPET,
        Snippet(
            id=snippet_id,
            project_id=project_id,
            code=code,
            content_hash=snippet_fingerprint(code) if with_hash else None,
            created_at=created_at,
        ),
    )


def add_knowledge(store, item_id, question, answer, project_id="p1", created_at=1000):
    store.put(
        EntityKind.KNOWLEDGE,
        Knowledge(
            id=item_id,
            project_id=project_id,
            question=question,
            answer=answer,
            content_hash=knowledge_fingerprint(question, answer),
            created_at=created_at,
        ),
    )


class TestFingerprints:
    """Tests for fingerprint helpers."""

    def test_snippet_fingerprint_ignores_whitespace_and_case(self):
        """Formatting differences do not change the fingerprint."""
        assert snippet_fingerprint("const x = 1;") == snippet_fingerprint("   CONST   x = 1;  ")

    def test_knowledge_fingerprint_covers_both_fields(self):
        """Question and answer both feed the fingerprint."""
        assert knowledge_fingerprint("Q one", "A") != knowledge_fingerprint("Q two", "A")
        assert knowledge_fingerprint("Q", "A one") != knowledge_fingerprint("Q", "A two")


class TestSnippetDuplicates:
    """Tests for snippet duplicate checks."""

    def test_exact_match_after_normalization(self, temp_store, detector):
        """Whitespace-only differences are exact duplicates."""
        add_snippet(temp_store, "s1", "const x = 1;")
        check = detector.check_snippet("   const   x = 1;  ", "p1")
        assert check.is_duplicate is True
        assert check.match_type == MATCH_EXACT
        assert check.similarity is None
        assert check.existing_item.id == "s1"

    def test_exact_match_without_stored_fingerprint(self, temp_store, detector):
        """Items saved without a fingerprint are still found."""
        add_snippet(temp_store, "s1", "const x = 1;", with_hash=False)
        check = detector.check_snippet("const x = 1;", "p1")
        assert check.match_type == MATCH_EXACT

    def test_exact_match_prefers_oldest(self, temp_store, detector):
        """When several items match exactly the oldest wins."""
        add_snippet(temp_store, "new", "const x = 1;", created_at=2000)
        add_snippet(temp_store, "old", "const x = 1;", created_at=1000)
        assert detector.check_snippet("const x = 1;", "p1").existing_item.id == "old"

    def test_scoped_to_project(self, temp_store, detector):
        """Items in another project are not duplicates."""
        add_snippet(temp_store, "s1", "const x = 1;", project_id="other")
        assert detector.check_snippet("const x = 1;", "p1").is_duplicate is False

    def test_deleted_items_ignored(self, temp_store, detector):
        """Tombstones never count as duplicates."""
        add_snippet(temp_store, "s1", "const x = 1;")
        temp_store.delete_by_id(EntityKind.SNIPPET, "s1")
        assert detector.check_snippet("const x = 1;", "p1").is_duplicate is False

    def test_similar_at_threshold(self, temp_store, detector):
        """Similarity exactly at the threshold counts as a duplicate."""
        add_snippet(temp_store, "s1", "alpha bravo charlie delta echo")
        check = detector.check_snippet("alpha bravo charlie delta", "p1")
        assert check.is_duplicate is True
        assert check.match_type == MATCH_SIMILAR
        assert check.similarity == 80

    def test_below_threshold(self, temp_store, detector):
        """Less similar code is not a duplicate."""
        add_snippet(temp_store, "s1", "alpha bravo charlie delta echo")
        check = detector.check_snippet("alpha bravo charlie foxtrot golf", "p1")
        assert check.is_duplicate is False
        assert check.existing_item is None

    def test_best_similar_match_wins(self, temp_store, detector):
        """The most similar candidate is reported."""
        words = "alpha bravo charlie delta echo foxtrot golf hotel india juliet".split()
        add_snippet(temp_store, "close", " ".join(words[:8]), created_at=1000)
        add_snippet(temp_store, "closer", " ".join(words[:9]), created_at=2000)
        check = detector.check_snippet(" ".join(words), "p1")
        assert check.existing_item.id == "closer"
        assert check.similarity == 90

    def test_empty_store(self, detector):
        """Nothing is a duplicate in an empty project."""
        assert detector.check_snippet("const x = 1;", "p1").is_duplicate is False


class TestKnowledgeDuplicates:
    """Tests for knowledge duplicate checks."""

    def test_exact_match(self, temp_store, detector):
        """Same question and answer modulo formatting is exact."""
        add_knowledge(temp_store, "k1", "How to center a div?", "Use flexbox.")
        check = detector.check_knowledge("how to  center a DIV?", " use flexbox. ", "p1")
        assert check.match_type == MATCH_EXACT
        assert check.existing_item.id == "k1"

    def test_similar_answer(self, temp_store, detector):
        """Answers above the threshold are similar duplicates."""
        answer = "alpha bravo charlie delta echo foxtrot golf"
        add_knowledge(temp_store, "k1", "First question", answer)
        check = detector.check_knowledge("Different question", "alpha bravo charlie delta echo foxtrot", "p1")
        assert check.match_type == MATCH_SIMILAR
        assert check.similarity == 86

    def test_similar_below_knowledge_threshold(self, temp_store, detector):
        """80% similar answers are below the knowledge threshold."""
        add_knowledge(temp_store, "k1", "First question", "alpha bravo charlie delta echo")
        check = detector.check_knowledge("Other question", "alpha bravo charlie delta", "p1")
        assert check.is_duplicate is False

    def test_to_dict(self, temp_store, detector):
        """Duplicate checks serialize with camelCase keys."""
        add_knowledge(temp_store, "k1", "Q?", "A.")
        data = detector.check_knowledge("Q?", "A.", "p1").to_dict()
        assert data == {"isDuplicate": True, "matchType": "exact", "existingId": "k1"}
