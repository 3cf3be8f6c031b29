"""Rank saved snippets and knowledge against the current editor context."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from devcontext.context_detector import Diagnostic, EditorContext, extract_imports
from devcontext.models import Knowledge, Snippet
from devcontext.utils import jaccard_similarity, now_ms, tokenize_words

MATCH_WEIGHTS = {
    "error_exact": 100,
    "error_fuzzy": 80,
    "language_exact": 30,
    "tag_match": 25,
    "import_match": 20,
    "framework_match": 15,
    "text_similarity": 10,
    "recency_bonus": 5,
}

ERROR_TAGS = frozenset({"error", "fix", "bug", "solution", "debug"})
ERROR_KEYWORD_PATTERN = re.compile(r"fix|error|bug|issue|solve|resolve", re.IGNORECASE)
ERROR_KEYWORD_BONUS = 15
ERROR_TAG_BONUS = 10
ERROR_SCORE_FLOOR = 10
ERROR_PREFIX_LENGTH = 50

SEVEN_DAYS_MS = 7 * 24 * 60 * 60 * 1000

_DOTTED_MODULE = re.compile(r"^[a-z_][a-z0-9_]*(\.[a-z_][a-z0-9_]*)+$")


@dataclass
class MatchReason:
    """Why an item matched."""

    type: str
    confidence: float
    details: str


@dataclass
class MatchResult:
    """A saved item ranked against the editor context."""

    item: Snippet | Knowledge
    type: str  # "snippet" or "knowledge"
    relevance_score: float
    match_reasons: list[MatchReason] = field(default_factory=list)

    @property
    def key(self) -> tuple[str, str]:
        return (self.type, self.item.id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "item": self.item.to_wire(include_local=True),
            "type": self.type,
            "relevanceScore": self.relevance_score,
            "matchReasons": [
                {"type": r.type, "confidence": r.confidence, "details": r.details}
                for r in self.match_reasons
            ],
        }


def normalize_import(import_path: str) -> str:
    """Reduce an import path to its top-level package name.

    ``react-dom/client`` becomes ``react-dom``, scoped packages keep their
    scope (``@testing-library/react``) and dotted Python modules keep
    their first segment (``django.db`` becomes ``django``). Relative
    imports normalize to an empty string.
    """
    name = import_path.strip().lower()
    if not name or name.startswith("."):
        return ""
    parts = name.split("/")
    if name.startswith("@") and len(parts) > 1:
        return "/".join(parts[:2])
    name = parts[0]
    if _DOTTED_MODULE.match(name):
        name = name.split(".")[0]
    return name


class ContextMatcher:
    """Scores saved items against an EditorContext.

    Four independent matchers (errors, language, imports/frameworks and
    free text) each propose candidates. Candidates for the same item are
    merged, keeping the highest score and every match reason.
    """

    DEFAULT_MAX_RESULTS = 10
    DEFAULT_MIN_SCORE = 15

    def __init__(self, now: int | None = None) -> None:
        """Initialize the matcher.

        Args:
            now: Fixed epoch-ms time for recency scoring (defaults to the clock).
        """
        self._now = now

    def find_relevant_context(
        self,
        context: EditorContext,
        snippets: list[Snippet],
        knowledge: list[Knowledge],
        max_results: int = DEFAULT_MAX_RESULTS,
        min_score: float = DEFAULT_MIN_SCORE,
    ) -> list[MatchResult]:
        """Rank snippets and knowledge by relevance to the editor context.

        Args:
            context: Current editor state.
            snippets: Candidate snippets.
            knowledge: Candidate knowledge items.
            max_results: Maximum number of results to return.
            min_score: Minimum relevance score to keep a result.

        Returns:
            Results sorted by descending relevance.
        """
        results: list[MatchResult] = []

        for diagnostic in context.diagnostics:
            results.extend(self.match_error(diagnostic, snippets, knowledge))

        aliases = context.language_aliases or ([context.language] if context.language else [])
        results.extend(self.match_language(aliases, snippets, knowledge))
        results.extend(self.match_imports(context.imports, snippets, knowledge))
        results.extend(self.match_frameworks(context.frameworks, knowledge))

        text_query = context.selection or context.line_content
        if text_query:
            results.extend(self.match_text(text_query, snippets, knowledge))

        merged = self._merge(results)
        ranked = [r for r in merged if r.relevance_score >= min_score][:max_results]
        logger.debug(f"Context match: {len(results)} candidates, {len(ranked)} kept")
        return ranked

    # ------------------------------------------------------------------
    # Matchers
    # ------------------------------------------------------------------

    def match_error(
        self, diagnostic: Diagnostic, snippets: list[Snippet], knowledge: list[Knowledge]
    ) -> list[MatchResult]:
        """Match items that look like solutions to a diagnostic."""
        error_text = (diagnostic.message or "").lower()
        if not error_text.strip():
            return []
        error_words = tokenize_words(error_text)
        prefix = error_text[:ERROR_PREFIX_LENGTH]
        shown = diagnostic.message[:ERROR_PREFIX_LENGTH]
        results = []

        for item in knowledge:
            similarity = jaccard_similarity(error_words, tokenize_words(item.question))
            contains_error = prefix in (item.answer or "").lower()
            has_error_tag = any(t.lower() in ERROR_TAGS for t in item.tags or [])

            if similarity > 0.2 or contains_error or (has_error_tag and similarity > 0.1):
                score = (
                    similarity * MATCH_WEIGHTS["error_fuzzy"]
                    + (MATCH_WEIGHTS["error_exact"] if contains_error else 0)
                    + (ERROR_TAG_BONUS if has_error_tag else 0)
                )
                if score > ERROR_SCORE_FLOOR:
                    results.append(
                        MatchResult(
                            item=item,
                            type="knowledge",
                            relevance_score=score,
                            match_reasons=[
                                MatchReason("error_match", similarity, f'Matches error: "{shown}..."')
                            ],
                        )
                    )

        for item in snippets:
            description = item.description or ""
            similarity = jaccard_similarity(error_words, tokenize_words(description))
            has_keyword = bool(ERROR_KEYWORD_PATTERN.search(description))

            if similarity > 0.2 or (has_keyword and similarity > 0.1):
                score = similarity * MATCH_WEIGHTS["error_fuzzy"] + (
                    ERROR_KEYWORD_BONUS if has_keyword else 0
                )
                if score > ERROR_SCORE_FLOOR:
                    results.append(
                        MatchResult(
                            item=item,
                            type="snippet",
                            relevance_score=score,
                            match_reasons=[
                                MatchReason("error_match", similarity, f'May fix: "{shown}..."')
                            ],
                        )
                    )

        return results

    def match_language(
        self, aliases: list[str], snippets: list[Snippet], knowledge: list[Knowledge]
    ) -> list[MatchResult]:
        """Match snippets in the same language and knowledge tagged with it."""
        languages = {a.lower() for a in aliases if a}
        if not languages:
            return []
        results = []

        for snippet in snippets:
            if (snippet.language or "").lower() in languages:
                results.append(
                    MatchResult(
                        item=snippet,
                        type="snippet",
                        relevance_score=MATCH_WEIGHTS["language_exact"]
                        + self.recency_bonus(snippet.created_at),
                        match_reasons=[
                            MatchReason("language_match", 1.0, f"Same language: {snippet.language}")
                        ],
                    )
                )

        for item in knowledge:
            matching = [t for t in item.tags or [] if t.lower() in languages]
            if matching:
                results.append(
                    MatchResult(
                        item=item,
                        type="knowledge",
                        relevance_score=MATCH_WEIGHTS["tag_match"]
                        + self.recency_bonus(item.created_at),
                        match_reasons=[
                            MatchReason("language_match", 0.8, f"Tagged with: {', '.join(matching)}")
                        ],
                    )
                )

        return results

    def match_imports(
        self, imports: list[str], snippets: list[Snippet], knowledge: list[Knowledge]
    ) -> list[MatchResult]:
        """Match items that use or discuss the file's imported packages."""
        packages = [p for p in dict.fromkeys(normalize_import(i) for i in imports) if p]
        if not packages:
            return []
        wanted = set(packages)
        results = []

        for snippet in snippets:
            used = [normalize_import(i) for i in extract_imports(snippet.code or "")]
            matches = [p for p in dict.fromkeys(used) if p in wanted]
            if matches:
                results.append(
                    MatchResult(
                        item=snippet,
                        type="snippet",
                        relevance_score=MATCH_WEIGHTS["import_match"] * len(matches),
                        match_reasons=[
                            MatchReason(
                                "import_match",
                                len(matches) / len(packages),
                                f"Uses: {', '.join(matches[:3])}",
                            )
                        ],
                    )
                )

        for item in knowledge:
            text = f"{item.question} {item.answer}".lower()
            matches = [p for p in packages if p in text]
            if matches:
                results.append(
                    MatchResult(
                        item=item,
                        type="knowledge",
                        relevance_score=MATCH_WEIGHTS["import_match"] * len(matches),
                        match_reasons=[
                            MatchReason(
                                "import_match",
                                len(matches) / len(packages),
                                f"Discusses: {', '.join(matches[:3])}",
                            )
                        ],
                    )
                )

        return results

    def match_frameworks(
        self, frameworks: list[str], knowledge: list[Knowledge]
    ) -> list[MatchResult]:
        """Match knowledge tagged with the file's frameworks."""
        if not frameworks:
            return []
        wanted = {f.lower() for f in frameworks}
        results = []
        for item in knowledge:
            matching = [t for t in item.tags or [] if t.lower() in wanted]
            if matching:
                results.append(
                    MatchResult(
                        item=item,
                        type="knowledge",
                        relevance_score=MATCH_WEIGHTS["framework_match"] * len(matching),
                        match_reasons=[
                            MatchReason(
                                "framework_match",
                                len(matching) / len(frameworks),
                                f"Framework: {', '.join(matching)}",
                            )
                        ],
                    )
                )
        return results

    def match_text(
        self, query: str, snippets: list[Snippet], knowledge: list[Knowledge]
    ) -> list[MatchResult]:
        """Match items whose text overlaps the selection or current line."""
        query_words = tokenize_words(query)
        if len(query_words) < 2:
            return []
        results = []

        candidates: list[tuple[Snippet | Knowledge, str, str]] = [
            (s, "snippet", f"{s.description or ''} {s.code}") for s in snippets
        ]
        candidates += [(k, "knowledge", f"{k.question} {k.answer}") for k in knowledge]

        for item, item_type, text in candidates:
            similarity = jaccard_similarity(query_words, tokenize_words(text))
            if similarity > 0.1:
                results.append(
                    MatchResult(
                        item=item,
                        type=item_type,
                        relevance_score=similarity * MATCH_WEIGHTS["text_similarity"] * 10,
                        match_reasons=[
                            MatchReason(
                                "text_similarity",
                                similarity,
                                f"{int(similarity * 100 + 0.5)}% text match",
                            )
                        ],
                    )
                )
        return results

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def recency_bonus(self, created_at: int) -> int:
        """Flat bonus for items created within the last seven days."""
        now = self._now if self._now is not None else now_ms()
        if now - created_at < SEVEN_DAYS_MS:
            return MATCH_WEIGHTS["recency_bonus"]
        return 0

    def _merge(self, results: list[MatchResult]) -> list[MatchResult]:
        merged: dict[tuple[str, str], MatchResult] = {}
        for result in results:
            existing = merged.get(result.key)
            if existing is None:
                merged[result.key] = MatchResult(
                    item=result.item,
                    type=result.type,
                    relevance_score=result.relevance_score,
                    match_reasons=list(result.match_reasons),
                )
                continue
            existing.relevance_score = max(existing.relevance_score, result.relevance_score)
            existing.match_reasons.extend(result.match_reasons)
        return sorted(merged.values(), key=lambda r: r.relevance_score, reverse=True)
