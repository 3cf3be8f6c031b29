"""Terminal output formatting with rich."""

from __future__ import annotations

from typing import TYPE_CHECKING

from rich.console import Console
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text

from devcontext.utils import format_date, format_relative_date, truncate

if TYPE_CHECKING:
    from devcontext._search import SearchResult
    from devcontext.context_matcher import MatchResult
    from devcontext.models import ActivityLogEntry, Knowledge, Snippet

# Global console instance - auto-detects TTY
console = Console()


def print_error(message: str) -> None:
    """Print error message in red."""
    console.print(f"[red]Error:[/red] {message}")


def print_success(message: str) -> None:
    """Print success message in green."""
    console.print(f"[green]{message}[/green]")


def print_warning(message: str) -> None:
    """Print warning message in yellow."""
    console.print(f"[yellow]{message}[/yellow]")


def format_score(score: float, high: float = 50, low: float = 20) -> Text:
    """Format a relevance score with color based on value.

    Args:
        score: The score value
        high: Scores at or above this are green
        low: Scores below this are red

    Returns:
        Rich Text object with colored score
    """
    if score >= high:
        color = "green"
    elif score >= low:
        color = "yellow"
    else:
        color = "red"
    return Text(f"{score:.0f}", style=color)


def format_tags(tags: list[str]) -> str:
    """Format tags as escaped rich markup."""
    # Escape brackets for Rich markup - use \[ to display literal [
    return f" [cyan]\\[{', '.join(tags)}][/cyan]" if tags else ""


def print_code_block(content: str, language: str = "text") -> None:
    """Print syntax-highlighted code block.

    Args:
        content: Code content to display
        language: Language for syntax highlighting
    """
    syntax = Syntax(content, language or "text", theme="monokai", line_numbers=False)
    console.print(syntax)


def create_stats_table(title: str = "DevContext Statistics") -> Table:
    """Create a styled table for statistics.

    Args:
        title: Table title

    Returns:
        Rich Table object
    """
    table = Table(title=title)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")
    return table


def create_projects_table(projects: list[dict]) -> Table:
    """Build a table of projects with item counts."""
    table = Table(title="Projects")
    table.add_column("", width=1)
    table.add_column("ID", style="dim")
    table.add_column("Name", style="bold")
    table.add_column("Snippets", justify="right")
    table.add_column("Knowledge", justify="right")
    table.add_column("Created", style="dim")
    for project in projects:
        table.add_row(
            "*" if project.get("active") else "",
            project["id"],
            project["name"],
            str(project.get("snippet_count", 0)),
            str(project.get("knowledge_count", 0)),
            format_date(project["created_at"]),
        )
    return table


def print_snippet_line(snippet: Snippet) -> None:
    """Print a one-line snippet summary (for list command)."""
    label = snippet.description or truncate(snippet.code.strip().splitlines()[0], 60)
    console.print(
        f"[dim]{snippet.id}[/dim]: [magenta]{snippet.language}[/magenta] [bold]{label}[/bold] "
        f"[dim]({format_relative_date(snippet.created_at)})[/dim]"
    )


def print_knowledge_line(item: Knowledge) -> None:
    """Print a one-line knowledge summary (for list command)."""
    console.print(
        f"[dim]{item.id}[/dim]: [bold]{truncate(item.question, 80)}[/bold]{format_tags(item.tags)} "
        f"[dim]({format_relative_date(item.created_at)})[/dim]"
    )


def print_snippet(snippet: Snippet) -> None:
    """Print a full snippet."""
    console.print(f"[bold]Snippet[/bold] [dim]{snippet.id}[/dim]")
    console.print(f"[bold]Language:[/bold] [magenta]{snippet.language}[/magenta]")
    if snippet.description:
        console.print(f"[bold]Description:[/bold] {snippet.description}")
    console.print(f"[bold]Source:[/bold] {snippet.source or '(unknown)'}")
    console.print(f"[bold]Saved:[/bold] [dim]{format_date(snippet.created_at)}[/dim]")
    console.print()
    print_code_block(snippet.code, snippet.language)


def print_knowledge(item: Knowledge) -> None:
    """Print a full knowledge item."""
    console.print(f"[bold]Knowledge[/bold] [dim]{item.id}[/dim]")
    tags_str = f"[cyan]{', '.join(item.tags)}[/cyan]" if item.tags else "[dim](none)[/dim]"
    console.print(f"[bold]Tags:[/bold] {tags_str}")
    console.print(f"[bold]Source:[/bold] {item.source or '(unknown)'}")
    console.print(f"[bold]Saved:[/bold] [dim]{format_date(item.created_at)}[/dim]")
    console.print()
    console.print(f"[bold]Q:[/bold] {item.question}")
    console.print()
    console.print(f"[bold]A:[/bold] {item.answer}")


def print_search_result(result: SearchResult) -> None:
    """Print a formatted search result."""
    line = Text()
    line.append(format_score(result.score, high=40, low=10))
    line.append(" ")
    if result.type == "snippet":
        item = result.item
        line.append(f"[{item.language}] ", style="magenta")
        line.append(item.description or truncate(item.code.strip().splitlines()[0], 60), style="bold")
    else:
        line.append(truncate(result.item.question, 80), style="bold")
    console.print(line)
    console.print(f"  ID: [dim]{result.item.id}[/dim] [dim](matched {result.match_type})[/dim]")


def print_match(match: MatchResult, show_reasons: bool = True) -> None:
    """Print a formatted context match with its reasons."""
    line = Text()
    line.append(format_score(match.relevance_score))
    line.append(f" {match.type} ", style="cyan")
    item = match.item
    if match.type == "snippet":
        line.append(item.description or truncate(item.code.strip().splitlines()[0], 60), style="bold")
    else:
        line.append(truncate(item.question, 80), style="bold")
    console.print(line)
    console.print(f"  ID: [dim]{item.id}[/dim]")
    if show_reasons:
        for reason in match.match_reasons:
            console.print(f"    [dim]- {reason.type}: {reason.details}[/dim]")


def print_activity_entry(entry: ActivityLogEntry) -> None:
    """Print one activity log entry."""
    if entry.action == "save":
        color = "green"
    elif entry.action in ("delete", "sync_error"):
        color = "red"
    elif entry.action == "duplicate_detected":
        color = "yellow"
    else:
        color = "cyan"
    platform = f" [magenta]{entry.platform}[/magenta]" if entry.platform else ""
    item = f" [dim]{entry.item_id}[/dim]" if entry.item_id else ""
    console.print(
        f"[dim]{format_relative_date(entry.timestamp):>12}[/dim] "
        f"[{color}]{entry.action}[/{color}] {entry.item_type}{item}{platform}"
    )
