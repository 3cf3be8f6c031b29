"""Shell completion helpers for the devctx CLI."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from argparse import Namespace


def get_project_completer():
    """Return a completer function for project IDs.

    The completer is lazy-loaded to avoid importing ContentManager at module load.
    """

    def completer(prefix: str, parsed_args: Namespace, **kwargs) -> list[str]:
        try:
            from devcontext.content_manager import ContentManager

            with ContentManager() as cm:
                projects = cm.get_projects()
            return [p["id"] for p in projects if p["id"].startswith(prefix)]
        except Exception:
            return []

    return completer


def get_item_id_completer():
    """Return a completer function for snippet and knowledge IDs.

    Returns recent IDs only (limited to avoid slow completions).
    """

    def completer(prefix: str, parsed_args: Namespace, **kwargs) -> list[str]:
        try:
            from devcontext.content_manager import ContentManager

            with ContentManager() as cm:
                items = cm.get_snippets() + cm.get_knowledge()
            items.sort(key=lambda i: i.created_at, reverse=True)
            return [i.id for i in items[:50] if i.id.startswith(prefix)]
        except Exception:
            return []

    return completer
