"""Render context matches as text for an assistant prompt."""

from devcontext.context_matcher import MatchResult
from devcontext.utils import format_relative_date, truncate

FORMATS = ("markdown", "plain", "xml")
DEFAULT_MAX_ITEMS = 5


def escape_xml(text: str | None) -> str:
    """Escape XML special characters."""
    if not text:
        return ""
    return (
        text.replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
    )


def format_context(
    matches: list[MatchResult],
    fmt: str = "markdown",
    include_metadata: bool = True,
    include_reasons: bool = False,
    max_items: int = DEFAULT_MAX_ITEMS,
) -> str:
    """Format matches for pasting into an AI assistant.

    Args:
        matches: Ranked context matches.
        fmt: One of "markdown", "plain" or "xml".
        include_metadata: Include source, tags and save dates.
        include_reasons: Include why each item matched (markdown only).
        max_items: Maximum number of matches to render.

    Returns:
        Formatted text, or an empty string when there are no matches.

    Raises:
        ValueError: If fmt is not a supported format.
    """
    matches = matches[:max_items]
    if fmt == "markdown":
        return _format_markdown(matches, include_metadata, include_reasons)
    if fmt == "xml":
        return _format_xml(matches, include_metadata)
    if fmt == "plain":
        return _format_plain(matches)
    raise ValueError(f"Unknown context format: {fmt}")


def _format_markdown(
    matches: list[MatchResult], include_metadata: bool, include_reasons: bool
) -> str:
    if not matches:
        return ""
    lines = [
        "## Relevant DevContext History",
        "",
        "Use the following saved solutions to inform your response:",
        "",
    ]
    for match in matches:
        item = match.item
        if match.type == "snippet":
            lines.append(f"### Code Snippet ({item.language})")
            if include_metadata:
                saved = format_relative_date(item.created_at)
                lines += [f"*Source: {item.source or 'unknown'} | Saved: {saved}*", ""]
            if item.description:
                lines += [item.description, ""]
            lines += [f"```{item.language}", item.code, "```", ""]
        else:
            lines.append("### Knowledge")
            if include_metadata:
                lines += [f"*Source: {item.source or 'unknown'} | Tags: {', '.join(item.tags)}*", ""]
            lines += [f"**Q:** {item.question}", "", f"**A:** {truncate(item.answer, 1000)}", ""]

        if include_reasons and match.match_reasons:
            details = ", ".join(r.details for r in match.match_reasons)
            lines += [f"*Match: {details}*", ""]
        lines += ["---", ""]
    return "\n".join(lines).strip()


def _format_xml(matches: list[MatchResult], include_metadata: bool) -> str:
    if not matches:
        return ""
    lines = ["<devcontext>", "  <description>Relevant saved solutions from DevContext</description>", ""]
    for match in matches:
        item = match.item
        if match.type == "snippet":
            lines.append("  <snippet>")
            lines.append(f"    <language>{escape_xml(item.language)}</language>")
            if include_metadata:
                lines.append(f"    <source>{escape_xml(item.source)}</source>")
            if item.description:
                lines.append(f"    <description>{escape_xml(item.description)}</description>")
            lines.append(f"    <code><![CDATA[\n{item.code}\n    ]]></code>")
            lines += ["  </snippet>", ""]
        else:
            lines.append("  <knowledge>")
            lines.append(f"    <question>{escape_xml(item.question)}</question>")
            lines.append(f"    <answer>{escape_xml(truncate(item.answer, 1000))}</answer>")
            if include_metadata and item.tags:
                lines.append(f"    <tags>{escape_xml(', '.join(item.tags))}</tags>")
            lines += ["  </knowledge>", ""]
    lines.append("</devcontext>")
    return "\n".join(lines)


def _format_plain(matches: list[MatchResult]) -> str:
    if not matches:
        return ""
    lines = ["RELEVANT DEVCONTEXT:", ""]
    for match in matches:
        item = match.item
        if match.type == "snippet":
            lines.append(f"[{item.language.upper()} SNIPPET]")
            if item.description:
                lines.append(item.description)
            lines += ["---", item.code, "---", ""]
        else:
            lines += ["[KNOWLEDGE]", f"Q: {item.question}", f"A: {truncate(item.answer, 500)}", ""]
    return "\n".join(lines).strip()
