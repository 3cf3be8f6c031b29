"""Token-based relevance search over snippets and knowledge."""

from dataclasses import dataclass
from typing import Any

from devcontext._store import ContentStore
from devcontext.models import EntityKind, Knowledge, Snippet
from devcontext.utils import tokenize_for_search


@dataclass(frozen=True)
class SearchWeights:
    """Points awarded per match type when scoring a text field."""

    exact: float = 10
    word: float = 3
    partial: float = 1


CODE_WEIGHTS = SearchWeights(exact=15, word=5, partial=2)
DESCRIPTION_WEIGHTS = SearchWeights(exact=10, word=3, partial=1)
QUESTION_WEIGHTS = SearchWeights(exact=12, word=4, partial=1)
ANSWER_WEIGHTS = SearchWeights(exact=10, word=3, partial=1)
LABEL_BONUS = 5  # language or tag containment


@dataclass
class SearchResult:
    """A scored search hit."""

    item: Snippet | Knowledge
    type: str  # "snippet" or "knowledge"
    score: float
    match_type: str  # field that scored highest

    def to_dict(self) -> dict[str, Any]:
        data = self.item.to_wire(include_local=True)
        data.update({"type": self.type, "searchScore": self.score, "matchType": self.match_type})
        return data


def calculate_search_score(
    query: str, text: str | None, weights: SearchWeights = SearchWeights()
) -> float:
    """Score how well text matches a free-text query.

    An exact (case-insensitive) substring match of the whole query earns
    ``weights.exact`` per query character. Each query token then earns
    ``weights.word`` if it appears as a token of the text, otherwise
    ``weights.partial`` if some text token contains it or is contained in
    it. A query token is counted at most once.

    Args:
        query: Search query.
        text: Text to score.
        weights: Weight profile for this field.

    Returns:
        Relevance score (0 when nothing matches).
    """
    if not query or not text:
        return 0
    query_lower = query.lower()
    score: float = 0
    if query_lower in text.lower():
        score += weights.exact * len(query_lower)

    text_words = set(tokenize_for_search(text))
    for query_word in tokenize_for_search(query):
        if query_word in text_words:
            score += weights.word
            continue
        for text_word in text_words:
            if query_word in text_word or text_word in query_word:
                score += weights.partial
                break
    return score


def _ranked(results: list[SearchResult], min_score: float, limit: int) -> list[SearchResult]:
    # Ties keep the most recently created item first
    results = [r for r in results if r.score >= min_score]
    results.sort(key=lambda r: (r.score, r.item.created_at), reverse=True)
    return results[:limit]


class SearchEngine:
    """Ranked free-text retrieval over the content store.

    Soft-deleted items never appear in results.
    """

    DEFAULT_LIMIT = 20
    DEFAULT_ALL_LIMIT = 30
    DEFAULT_MIN_SCORE = 1

    def __init__(self, store: ContentStore) -> None:
        """Initialize the search engine.

        Args:
            store: Content store to read items from.
        """
        self.store = store

    def _items(self, kind: EntityKind, project_id: str | None) -> list:
        if project_id:
            return self.store.get_by_index(kind, "project_id", project_id)
        return self.store.get_all(kind)

    def search_snippets(
        self,
        query: str,
        project_id: str | None = None,
        limit: int = DEFAULT_LIMIT,
        min_score: float = DEFAULT_MIN_SCORE,
    ) -> list[SearchResult]:
        """Search snippet code, description and language."""
        query_lower = query.lower()
        results = []
        for snippet in self._items(EntityKind.SNIPPET, project_id):
            code_score = calculate_search_score(query, snippet.code, CODE_WEIGHTS)
            desc_score = calculate_search_score(query, snippet.description, DESCRIPTION_WEIGHTS)
            lang_score = (
                LABEL_BONUS if snippet.language and query_lower in snippet.language.lower() else 0
            )
            results.append(
                SearchResult(
                    item=snippet,
                    type="snippet",
                    score=code_score + desc_score + lang_score,
                    match_type="code" if code_score > desc_score else "description",
                )
            )
        return _ranked(results, min_score, limit)

    def search_knowledge(
        self,
        query: str,
        project_id: str | None = None,
        limit: int = DEFAULT_LIMIT,
        min_score: float = DEFAULT_MIN_SCORE,
    ) -> list[SearchResult]:
        """Search knowledge questions, answers and tags."""
        query_lower = query.lower()
        results = []
        for item in self._items(EntityKind.KNOWLEDGE, project_id):
            question_score = calculate_search_score(query, item.question, QUESTION_WEIGHTS)
            answer_score = calculate_search_score(query, item.answer, ANSWER_WEIGHTS)
            tag_score = LABEL_BONUS if any(query_lower in t.lower() for t in item.tags) else 0
            results.append(
                SearchResult(
                    item=item,
                    type="knowledge",
                    score=question_score + answer_score + tag_score,
                    match_type="question" if question_score > answer_score else "answer",
                )
            )
        return _ranked(results, min_score, limit)

    def search_all(
        self,
        query: str,
        project_id: str | None = None,
        limit: int = DEFAULT_ALL_LIMIT,
    ) -> list[SearchResult]:
        """Search snippets and knowledge together, ranked on one scale."""
        combined = self.search_snippets(query, project_id, limit=limit) + self.search_knowledge(
            query, project_id, limit=limit
        )
        return _ranked(combined, self.DEFAULT_MIN_SCORE, limit)
