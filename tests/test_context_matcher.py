"""Tests for context matching."""

import pytest

from devcontext.context_detector import Diagnostic, EditorContext, get_language_aliases
from devcontext.context_matcher import (
    MATCH_WEIGHTS,
    SEVEN_DAYS_MS,
    ContextMatcher,
    normalize_import,
)
from devcontext.models import Knowledge, Snippet

NOW = 1_700_000_000_000
OLD = NOW - 4 * SEVEN_DAYS_MS

ERROR_MESSAGE = "TypeError: Cannot read properties of undefined (reading 'map')"


@pytest.fixture
def matcher():
    return ContextMatcher(now=NOW)


def make_knowledge(item_id="k1", question="Q?", answer="A.", tags=None, created_at=OLD):
    return Knowledge(
        id=item_id,
        project_id="p1",
        question=question,
        answer=answer,
        tags=tags or [],
        created_at=created_at,
    )


def make_snippet(item_id="s1", code="x", language="text", description="", created_at=OLD):
    return Snippet(
        id=item_id,
        project_id="p1",
        code=code,
        language=language,
        description=description,
        created_at=created_at,
    )


class TestNormalizeImport:
    """Tests for import normalization."""

    def test_subpath(self):
        """Subpaths reduce to the package."""
        assert normalize_import("react-dom/client") == "react-dom"

    def test_scoped_package(self):
        """Scoped packages keep their scope."""
        assert normalize_import("@testing-library/react") == "@testing-library/react"

    def test_dotted_module(self):
        """Dotted modules reduce to the top-level package."""
        assert normalize_import("django.db") == "django"

    def test_relative(self):
        """Relative imports normalize to nothing."""
        assert normalize_import("./utils") == ""

    def test_case(self):
        """Names are lowercased."""
        assert normalize_import("React") == "react"


class TestErrorMatching:
    """Tests for diagnostic matching."""

    def test_question_similarity_with_error_tag(self, matcher):
        """A knowledge item asking the same error scores fuzzy weight plus the tag bonus."""
        item = make_knowledge(question=ERROR_MESSAGE, answer="Use optional chaining.", tags=["error"])
        results = matcher.match_error(Diagnostic(ERROR_MESSAGE), [], [item])
        assert len(results) == 1
        assert results[0].relevance_score == pytest.approx(90)
        assert results[0].match_reasons[0].type == "error_match"

    def test_answer_containing_error(self, matcher):
        """An answer quoting the error earns the exact bonus."""
        item = make_knowledge(
            question="Why does my list crash?",
            answer=f"You will see {ERROR_MESSAGE} when the list is not loaded yet.",
        )
        results = matcher.match_error(Diagnostic(ERROR_MESSAGE), [], [item])
        assert results[0].relevance_score >= MATCH_WEIGHTS["error_exact"]

    def test_unrelated_knowledge(self, matcher):
        """Unrelated knowledge does not match."""
        item = make_knowledge(question="How to center a div?", answer="Flexbox.", tags=["error"])
        assert matcher.match_error(Diagnostic(ERROR_MESSAGE), [], [item]) == []

    def test_snippet_description(self, matcher):
        """Snippets describing a fix for the error match."""
        snippet = make_snippet(description="Fix cannot read properties of undefined")
        results = matcher.match_error(Diagnostic(ERROR_MESSAGE), [snippet], [])
        assert len(results) == 1
        assert results[0].type == "snippet"

    def test_blank_message(self, matcher):
        """Blank diagnostics match nothing."""
        item = make_knowledge(tags=["error"])
        assert matcher.match_error(Diagnostic("   "), [], [item]) == []


class TestLanguageMatching:
    """Tests for language matching."""

    def test_snippet_language(self, matcher):
        """Snippets in an alias of the language match."""
        snippet = make_snippet(language="js")
        results = matcher.match_language(get_language_aliases("javascript"), [snippet], [])
        assert results[0].relevance_score == MATCH_WEIGHTS["language_exact"]

    def test_recency_bonus(self, matcher):
        """Recently created items get the recency bonus."""
        snippet = make_snippet(language="python", created_at=NOW - 1000)
        results = matcher.match_language(["python"], [snippet], [])
        assert results[0].relevance_score == 35

    def test_knowledge_tag(self, matcher):
        """Knowledge tagged with the language matches."""
        item = make_knowledge(tags=["python", "django"])
        results = matcher.match_language(["python", "py"], [], [item])
        assert results[0].relevance_score == MATCH_WEIGHTS["tag_match"]
        assert results[0].match_reasons[0].details == "Tagged with: python"


class TestImportAndFrameworkMatching:
    """Tests for import and framework matching."""

    def test_snippet_imports(self, matcher):
        """Snippets importing the same package match."""
        snippet = make_snippet(code="import { render } from '@testing-library/react';")
        results = matcher.match_imports(
            ["react-dom/client", "@testing-library/react", "./local"], [snippet], []
        )
        assert results[0].relevance_score == MATCH_WEIGHTS["import_match"]
        assert results[0].match_reasons[0].confidence == 0.5

    def test_knowledge_mentions_package(self, matcher):
        """Knowledge discussing the package matches."""
        item = make_knowledge(question="How do I use react-dom createRoot?")
        results = matcher.match_imports(["react-dom/client"], [], [item])
        assert results[0].type == "knowledge"

    def test_framework_tags(self, matcher):
        """Knowledge tagged with a detected framework matches."""
        item = make_knowledge(tags=["react"])
        results = matcher.match_frameworks(["react"], [item])
        assert results[0].relevance_score == MATCH_WEIGHTS["framework_match"]


class TestTextMatching:
    """Tests for selection and line text matching."""

    def test_similar_text(self, matcher):
        """Overlapping words score by Jaccard similarity."""
        snippet = make_snippet(
            code="return () => subscription.unsubscribe();",
            description="Cleanup subscription in useEffect",
        )
        results = matcher.match_text("useEffect cleanup function subscription", [snippet], [])
        assert results[0].relevance_score == pytest.approx(50)
        assert results[0].match_reasons[0].details == "50% text match"

    def test_single_word_query(self, matcher):
        """Queries with fewer than two words are ignored."""
        snippet = make_snippet(code="subscription")
        assert matcher.match_text("subscription", [snippet], []) == []


class TestFindRelevantContext:
    """Tests for the combined ranking."""

    def test_error_outranks_language(self, matcher):
        """An error match ranks above a same-language snippet."""
        error_item = make_knowledge(
            question=ERROR_MESSAGE, answer="Guard with optional chaining.", tags=["javascript", "error"]
        )
        snippet = make_snippet(code="const x = 1;", language="javascript")
        context = EditorContext(
            language="javascript",
            language_aliases=get_language_aliases("javascript"),
            diagnostics=[Diagnostic(ERROR_MESSAGE)],
        )
        results = matcher.find_relevant_context(context, [snippet], [error_item])
        assert [r.item.id for r in results] == ["k1", "s1"]
        assert results[0].relevance_score == pytest.approx(90)
        reason_types = {r.type for r in results[0].match_reasons}
        assert reason_types == {"error_match", "language_match"}

    def test_merge_keeps_highest_score(self, matcher):
        """Several matches for one item keep the best score and every reason."""
        item = make_knowledge(tags=["python", "django"])
        context = EditorContext(language="python", language_aliases=["python"], frameworks=["django"])
        results = matcher.find_relevant_context(context, [], [item])
        assert len(results) == 1
        assert results[0].relevance_score == MATCH_WEIGHTS["tag_match"]
        assert len(results[0].match_reasons) == 2

    def test_min_score_and_max_results(self, matcher):
        """Low scores are dropped and results are capped."""
        snippets = [make_snippet(f"s{i}", language="python") for i in range(5)]
        context = EditorContext(language="python", language_aliases=["python"])
        assert len(matcher.find_relevant_context(context, snippets, [], max_results=3)) == 3
        assert matcher.find_relevant_context(context, snippets, [], min_score=31) == []

    def test_empty_context(self, matcher):
        """An empty context matches nothing."""
        assert matcher.find_relevant_context(EditorContext(), [make_snippet()], []) == []

    def test_to_dict(self, matcher):
        """Results serialize with camelCase keys."""
        snippet = make_snippet(language="python")
        context = EditorContext(language="python", language_aliases=["python"])
        data = matcher.find_relevant_context(context, [snippet], [])[0].to_dict()
        assert data["type"] == "snippet"
        assert data["relevanceScore"] == 30
        assert data["matchReasons"][0]["type"] == "language_match"
        assert data["item"]["id"] == "s1"
