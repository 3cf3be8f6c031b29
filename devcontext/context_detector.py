"""Build an editor context snapshot from a source file.

The context is what the matcher ranks saved items against: the file's
language and its aliases, imported packages, detected frameworks,
diagnostics reported by the editor or a linter, and the text around the
cursor.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path

LANGUAGE_ALIASES: dict[str, list[str]] = {
    "javascript": ["js", "node", "nodejs", "es6", "ecmascript"],
    "typescript": ["ts", "tsx"],
    "typescriptreact": ["tsx", "react-typescript"],
    "javascriptreact": ["jsx", "react"],
    "python": ["py", "python3", "django", "flask"],
    "rust": ["rs"],
    "go": ["golang"],
    "java": ["spring", "springboot"],
    "csharp": ["cs", "dotnet", ".net"],
    "ruby": ["rb", "rails"],
    "php": ["laravel", "wordpress"],
    "sql": ["mysql", "postgres", "postgresql", "sqlite"],
    "html": ["htm", "markup"],
    "css": ["scss", "sass", "less"],
    "shellscript": ["bash", "sh", "shell", "zsh"],
    "yaml": ["yml"],
    "json": ["jsonc"],
    "markdown": ["md"],
}

EXTENSION_LANGUAGES: dict[str, str] = {
    ".js": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".jsx": "javascriptreact",
    ".ts": "typescript",
    ".tsx": "typescriptreact",
    ".py": "python",
    ".rs": "rust",
    ".go": "go",
    ".java": "java",
    ".cs": "csharp",
    ".rb": "ruby",
    ".php": "php",
    ".sql": "sql",
    ".html": "html",
    ".htm": "html",
    ".css": "css",
    ".scss": "css",
    ".sass": "css",
    ".less": "css",
    ".sh": "shellscript",
    ".bash": "shellscript",
    ".zsh": "shellscript",
    ".yml": "yaml",
    ".yaml": "yaml",
    ".json": "json",
    ".md": "markdown",
}

_IMPORT_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    # JavaScript/TypeScript
    (re.compile(r"import\s+(?:(?:\{[^}]*\}|\*\s+as\s+\w+|\w+)\s+from\s+)?['\"]([^'\"]+)['\"]"), ""),
    (re.compile(r"from\s+['\"]([^'\"]+)['\"]"), ""),
    # CommonJS
    (re.compile(r"require\s*\(\s*['\"]([^'\"]+)['\"]\s*\)"), ""),
    # Python
    (re.compile(r"^from\s+(\S+)\s+import", re.MULTILINE), ""),
    (re.compile(r"^import\s+([\w.]+)(?:\s+as\s+\w+)?(?:\s*,[^\n]*)?\s*$", re.MULTILINE), ""),
    # Go
    (re.compile(r"import\s+(?:\(\s*)?[\"']([^\"']+)[\"']"), ""),
    # Rust
    (re.compile(r"^\s*use\s+([^;{]+)", re.MULTILINE), "::"),
]

FRAMEWORK_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"\bReact\b|from\s+['\"]react['\"]|useEffect|useState|jsx", re.I), "react"),
    (re.compile(r"from\s+['\"]next['\"]|getServerSideProps|getStaticProps", re.I), "nextjs"),
    (re.compile(r"from\s+['\"]vue['\"]|createApp|defineComponent", re.I), "vue"),
    (re.compile(r"from\s+['\"]@angular|@Component|@Injectable", re.I), "angular"),
    (re.compile(r"from\s+['\"]express['\"]|app\.get\s*\(|app\.post\s*\(", re.I), "express"),
    (re.compile(r"from\s+['\"]?fastapi\b|@app\.get|@app\.post", re.I), "fastapi"),
    (re.compile(r"from\s+django|from\s+rest_framework", re.I), "django"),
    (re.compile(r"from\s+flask|@app\.route", re.I), "flask"),
    (re.compile(r"fn\s+main\s*\(\)|use\s+std::", re.I), "rust"),
    (re.compile(r"func\s+main\s*\(\)|package\s+main", re.I), "go"),
    (re.compile(r"import\s+pandas|import\s+numpy", re.I), "data-science"),
    (
        re.compile(r"from\s+['\"]@testing-library|describe\s*\(|\bit\s*\(|\btest\s*\(", re.I),
        "testing",
    ),
]

REPORTED_SEVERITIES = frozenset({"error", "warning"})
MAX_DIAGNOSTICS = 10


@dataclass
class Diagnostic:
    """An error or warning reported against the current file."""

    message: str
    severity: str = "error"
    code: str | int | None = None
    source: str | None = None
    line: int | None = None  # 0-based
    related_code: str | None = None


@dataclass
class EditorContext:
    """Snapshot of the user's editor state used for matching."""

    language: str = ""
    language_aliases: list[str] = field(default_factory=list)
    file_name: str = ""
    file_path: str = ""
    selection: str | None = None
    line_content: str = ""
    imports: list[str] = field(default_factory=list)
    diagnostics: list[Diagnostic] = field(default_factory=list)
    frameworks: list[str] = field(default_factory=list)


def get_language_aliases(language_id: str) -> list[str]:
    """Return the language ID followed by its known aliases."""
    return [language_id, *LANGUAGE_ALIASES.get(language_id, [])]


def language_from_path(file_path: str) -> str:
    """Guess the editor language ID from a file extension."""
    return EXTENSION_LANGUAGES.get(Path(file_path).suffix.lower(), "plaintext")


def extract_imports(text: str) -> list[str]:
    """Extract imported module names from source text.

    Recognizes JavaScript/TypeScript ``import``, CommonJS ``require``,
    Python ``import``/``from``, Go ``import`` and Rust ``use`` statements.

    Returns:
        Import names, de-duplicated in first-seen order.
    """
    imports: list[str] = []
    for pattern, separator in _IMPORT_PATTERNS:
        for match in pattern.finditer(text):
            name = match.group(1)
            if separator:
                name = name.split(separator)[0]
            name = name.strip()
            if name and name not in imports:
                imports.append(name)
    return imports


def detect_frameworks(text: str) -> list[str]:
    """Detect framework tags from source text."""
    return [tag for pattern, tag in FRAMEWORK_PATTERNS if pattern.search(text)]


class ContextDetector:
    """Derives an EditorContext from file contents."""

    def detect(
        self,
        text: str,
        language: str | None = None,
        file_path: str | None = None,
        selection: str | None = None,
        cursor_line: int | None = None,
        diagnostics: list[Diagnostic] | None = None,
    ) -> EditorContext:
        """Build the editor context for a file.

        Args:
            text: Full file contents.
            language: Editor language ID (guessed from file_path if omitted).
            file_path: Path of the file, used for the name and language.
            selection: Currently selected text, if any.
            cursor_line: 0-based line of the cursor.
            diagnostics: Diagnostics reported for the file.

        Returns:
            The detected EditorContext.
        """
        lines = text.splitlines()
        if language is None:
            language = language_from_path(file_path) if file_path else "plaintext"

        line_content = ""
        if cursor_line is not None and 0 <= cursor_line < len(lines):
            line_content = lines[cursor_line]

        return EditorContext(
            language=language,
            language_aliases=get_language_aliases(language),
            file_name=Path(file_path).name if file_path else "",
            file_path=file_path or "",
            selection=selection or None,
            line_content=line_content,
            imports=extract_imports(text),
            diagnostics=self._map_diagnostics(diagnostics or [], lines),
            frameworks=detect_frameworks(text),
        )

    def _map_diagnostics(self, diagnostics: list[Diagnostic], lines: list[str]) -> list[Diagnostic]:
        reported = [d for d in diagnostics if d.severity.lower() in REPORTED_SEVERITIES]
        mapped = []
        for diagnostic in reported[:MAX_DIAGNOSTICS]:
            related = diagnostic.related_code
            if related is None and diagnostic.line is not None and lines:
                start = max(0, diagnostic.line - 1)
                end = min(len(lines) - 1, diagnostic.line + 1)
                related = "\n".join(lines[start : end + 1])
            mapped.append(
                Diagnostic(
                    message=diagnostic.message,
                    severity=diagnostic.severity.lower(),
                    code=diagnostic.code,
                    source=diagnostic.source,
                    line=diagnostic.line,
                    related_code=related,
                )
            )
        return mapped
