"""Utility functions for the DevContext snippet and knowledge store."""

import random
import re
import string
import time
from datetime import datetime, timedelta

# Ordered: the first pattern that matches names the language.
LANGUAGE_PATTERNS: list[tuple[str, re.Pattern[str]]] = [
    ("javascript", re.compile(r"\b(const|let|var|function|async|await)\b|=>")),
    ("typescript", re.compile(r"\b(interface|type|enum|namespace|declare)\b")),
    ("python", re.compile(r"\b(def|import|from|class)\b|if __name__|\bprint\(")),
    ("rust", re.compile(r"\b(fn|let\s+mut|impl|struct|enum|pub\s+fn)\b")),
    ("go", re.compile(r"\b(func|package|import|type\s+\w+\s+struct)\b")),
    ("java", re.compile(r"\b(public\s+class|private|void)\b|System\.out")),
    ("csharp", re.compile(r"\b(using|namespace|public\s+class)\b|Console\.")),
    ("ruby", re.compile(r"\b(def|end|require|class\s+\w+|puts)\b")),
    ("php", re.compile(r"<\?php|\$\w+|\bfunction\s+\w+\s*\(|\becho\b")),
    ("sql", re.compile(r"\b(SELECT|INSERT|UPDATE|DELETE|FROM|WHERE|JOIN)\b", re.IGNORECASE)),
    ("html", re.compile(r"<(!DOCTYPE|html|head|body|div|span|script)", re.IGNORECASE)),
    ("css", re.compile(r"\{[\s\S]*?(color|margin|padding|display):")),
    ("bash", re.compile(r"^#!/|\b(echo|export|fi|done)\b|\bif\s+\[", re.MULTILINE)),
    ("yaml", re.compile(r"^\s*\w+:\s*[\w\-]+$", re.MULTILINE)),
    ("json", re.compile(r"^\s*[\[{]")),
]

AUTO_TAG_PATTERNS: dict[str, re.Pattern[str]] = {
    # Languages and frameworks
    "javascript": re.compile(r"\b(javascript|js|node|npm|yarn|webpack|babel)\b", re.IGNORECASE),
    "typescript": re.compile(r"\b(typescript|ts|interface|type\s+\w+)\b", re.IGNORECASE),
    "react": re.compile(r"\b(react|usestate|useeffect|jsx|component|props|redux)\b", re.IGNORECASE),
    "vue": re.compile(r"\b(vue|vuex|nuxt|v-model|v-if)\b", re.IGNORECASE),
    "angular": re.compile(r"\b(angular|ngmodule|rxjs)\b|@component\b", re.IGNORECASE),
    "python": re.compile(r"\b(python|pip|django|flask|pandas|numpy)\b", re.IGNORECASE),
    "rust": re.compile(r"\b(rust|cargo|impl|fn\s+\w+|let\s+mut)\b", re.IGNORECASE),
    "go": re.compile(r"\b(golang|go\s+func|goroutine|chan\s+\w+)\b", re.IGNORECASE),
    # Concepts
    "api": re.compile(r"\b(api|endpoint|rest|graphql|fetch|axios|request)\b", re.IGNORECASE),
    "database": re.compile(
        r"\b(database|sql|query|mongodb|postgres|mysql|redis)\b", re.IGNORECASE
    ),
    "auth": re.compile(r"\b(auth|jwt|oauth|token|login|session|password)\b", re.IGNORECASE),
    "error": re.compile(
        r"\b(error|exception|failed|cannot|undefined|null|bug|fix)\b", re.IGNORECASE
    ),
    "testing": re.compile(r"\b(test|jest|mocha|pytest|spec|assert|mock)\b", re.IGNORECASE),
    "security": re.compile(
        r"\b(security|vulnerability|xss|csrf|injection|encrypt)\b", re.IGNORECASE
    ),
    "performance": re.compile(
        r"\b(performance|optimize|cache|lazy|memory|speed)\b", re.IGNORECASE
    ),
    "deployment": re.compile(
        r"\b(deploy|docker|kubernetes|ci/cd|pipeline|aws|gcp)\b", re.IGNORECASE
    ),
    # Content types
    "explanation": re.compile(
        r"\b(how|why|what|explain|understand|means|because)\b", re.IGNORECASE
    ),
    "tutorial": re.compile(r"\b(step|first|then|next|finally|guide|tutorial)\b", re.IGNORECASE),
    "debugging": re.compile(
        r"\b(debug|trace|stack|breakpoint|print)\b|console\.log", re.IGNORECASE
    ),
    "refactor": re.compile(
        r"\b(refactor|improve|clean|simplify|better|instead)\b", re.IGNORECASE
    ),
}

MAX_AUTO_TAGS = 5
MAX_TAGS = 10

_ID_ALPHABET = string.digits + string.ascii_lowercase


def now_ms() -> int:
    """Return the current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def generate_id(timestamp_ms: int | None = None) -> str:
    """Generate a unique record ID.

    The ID is the creation time in epoch milliseconds followed by nine
    random base-36 characters, e.g. ``1700000000000-k3j9x0q2a``.

    Args:
        timestamp_ms: Optional creation time (defaults to now).

    Returns:
        A new record ID.
    """
    if timestamp_ms is None:
        timestamp_ms = now_ms()
    suffix = "".join(random.choices(_ID_ALPHABET, k=9))
    return f"{timestamp_ms}-{suffix}"


def normalize_content(content: str | None) -> str:
    """Normalize content for comparison.

    Trims, lowercases, and collapses whitespace runs to a single space.
    """
    if not content:
        return ""
    return re.sub(r"\s+", " ", content.strip().lower())


def hash_content(content: str | None) -> str:
    """Compute the 32-bit rolling fingerprint of a string.

    The hash is ``h = h * 31 + code_unit`` over UTF-16 code units, wrapped
    to a signed 32-bit integer and rendered as hex (negative values keep
    their minus sign). Fingerprints therefore match those produced by
    browser clients for the same text.

    Args:
        content: Text to fingerprint, usually already normalized.

    Returns:
        Hex fingerprint, or an empty string for empty content.
    """
    if not content:
        return ""
    data = content.encode("utf-16-le")
    h = 0
    for i in range(0, len(data), 2):
        unit = data[i] | (data[i + 1] << 8)
        h = ((h << 5) - h + unit) & 0xFFFFFFFF
    if h & 0x80000000:
        h -= 1 << 32
    return f"-{-h:x}" if h < 0 else f"{h:x}"


def calculate_similarity(str1: str, str2: str) -> float:
    """Jaccard similarity between the space-separated words of two strings.

    Only words longer than two characters count. Inputs are expected to be
    normalized already.

    Returns:
        Similarity from 0.0 to 1.0 (0.0 if either side has no words).
    """
    if not str1 or not str2:
        return 0.0
    words1 = {w for w in str1.split(" ") if len(w) > 2}
    words2 = {w for w in str2.split(" ") if len(w) > 2}
    if not words1 or not words2:
        return 0.0
    return len(words1 & words2) / len(words1 | words2)


def jaccard_similarity(tokens1: list[str], tokens2: list[str]) -> float:
    """Jaccard similarity between two token collections."""
    a = set(tokens1)
    b = set(tokens2)
    union = a | b
    if not union:
        return 0.0
    return len(a & b) / len(union)


def tokenize_words(text: str | None) -> list[str]:
    """Split text on non-word characters, keeping lowercased words longer than 2."""
    if not text:
        return []
    return [w.lower() for w in re.split(r"\W+", text) if len(w) > 2]


def tokenize_for_search(text: str | None) -> list[str]:
    """Tokenize text for search scoring.

    Lowercases, replaces punctuation with spaces and keeps words longer
    than two characters.
    """
    if not text:
        return []
    cleaned = re.sub(r"[^\w\s]", " ", text.lower())
    return [w for w in cleaned.split() if len(w) > 2]


def parse_tags(tags: str | list[str] | None) -> list[str]:
    """Parse tags from various input formats.

    Args:
        tags: Tags as comma-separated string, list, or None.

    Returns:
        List of normalized tag strings, de-duplicated in order.
    """
    if tags is None:
        return []
    if isinstance(tags, str):
        tags = tags.split(",")
    result: list[str] = []
    for tag in tags:
        tag = tag.strip().lower()
        if tag and tag not in result:
            result.append(tag)
    return result


def auto_detect_tags(text: str) -> list[str]:
    """Detect topic tags from free text.

    Returns:
        Up to MAX_AUTO_TAGS tags in pattern order.
    """
    tags = [tag for tag, pattern in AUTO_TAG_PATTERNS.items() if pattern.search(text)]
    return tags[:MAX_AUTO_TAGS]


def merge_tags(user_tags: list[str], auto_tags: list[str], limit: int = MAX_TAGS) -> list[str]:
    """Merge user-supplied tags with detected ones, user tags first."""
    merged = parse_tags(list(user_tags) + list(auto_tags))
    return merged[:limit]


def detect_language_from_code(code: str) -> str:
    """Guess the language of a code fragment from syntax patterns.

    Returns:
        Language identifier, or ``"text"`` when nothing matches.
    """
    for language, pattern in LANGUAGE_PATTERNS:
        if pattern.search(code):
            return language
    return "text"


def extract_platform_from_source(source: str | None) -> str:
    """Map a capture source URL to the platform it came from."""
    if not source:
        return "unknown"
    url = source.lower()
    if "chat.openai.com" in url or "chatgpt.com" in url:
        return "chatgpt"
    if "claude.ai" in url:
        return "claude"
    if "bard.google.com" in url or "gemini.google.com" in url:
        return "gemini"
    if "github.com" in url:
        return "github"
    if "stackoverflow.com" in url:
        return "stackoverflow"
    if "docs." in url:
        return "documentation"
    return "web"


def format_date(timestamp_ms: int) -> str:
    """Format an epoch-millisecond timestamp as a calendar date."""
    return datetime.fromtimestamp(timestamp_ms / 1000).strftime("%Y-%m-%d")


def format_relative_date(timestamp_ms: int, now: int | None = None) -> str:
    """Describe how long ago a timestamp was (``today``, ``3 days ago``...)."""
    if now is None:
        now = now_ms()
    diff_days = (now - timestamp_ms) // (24 * 60 * 60 * 1000)
    if diff_days <= 0:
        return "today"
    if diff_days == 1:
        return "yesterday"
    if diff_days < 7:
        return f"{diff_days} days ago"
    if diff_days < 30:
        return f"{diff_days // 7} weeks ago"
    return format_date(timestamp_ms)


def parse_relative_date(date_str: str) -> int | None:
    """Parse a date string that can be ISO format or relative (e.g., '7d', '2w', '1m').

    Args:
        date_str: Date string in ISO format or relative format (7d, 2w, 1m, 1y).

    Returns:
        Epoch milliseconds, or None if parsing fails.
    """
    if not date_str:
        return None

    try:
        parsed = datetime.fromisoformat(date_str.replace("Z", "+00:00"))
        return int(parsed.timestamp() * 1000)
    except ValueError:
        pass

    match = re.match(r"^(\d+)([dwmy])$", date_str.lower())
    if match:
        amount = int(match.group(1))
        unit = match.group(2)
        if unit == "d":
            delta = timedelta(days=amount)
        elif unit == "w":
            delta = timedelta(weeks=amount)
        elif unit == "m":
            delta = timedelta(days=amount * 30)  # Approximate month
        else:
            delta = timedelta(days=amount * 365)  # Approximate year
        return int((datetime.now() - delta).timestamp() * 1000)

    return None


def truncate(text: str, max_length: int) -> str:
    """Truncate text to max_length, ending with an ellipsis when cut."""
    if len(text) <= max_length:
        return text
    return text[: max_length - 3] + "..."
