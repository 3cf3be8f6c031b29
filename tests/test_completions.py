"""Tests for shell completion functionality."""

from argparse import Namespace
from unittest.mock import patch

import pytest

from devcontext.completions import get_item_id_completer, get_project_completer
from devcontext.content_manager import ContentManager


@pytest.fixture
def home(tmp_path, monkeypatch):
    """Data directory with two projects and a couple of items."""
    monkeypatch.setenv("DEVCONTEXT_HOME", str(tmp_path))
    with ContentManager() as cm:
        work = cm.create_project("Work")
        cm.create_project("Side")
        snippet = cm.save_snippet("x = 1", project_id=work.id)
        knowledge = cm.save_knowledge("Why?", "Because.", project_id=work.id)
        ids = {
            "projects": [p["id"] for p in cm.get_projects()],
            "items": [snippet.id, knowledge.id],
        }
    return ids


class TestProjectCompleter:
    """Tests for project ID completion."""

    def test_returns_all_when_empty_prefix(self, home):
        """Every project is offered for an empty prefix."""
        results = get_project_completer()("", Namespace())
        assert sorted(results) == sorted(home["projects"])

    def test_filters_by_prefix(self, home):
        """Only IDs starting with the prefix are returned."""
        target = home["projects"][0]
        results = get_project_completer()(target, Namespace())
        assert results == [target]
        assert get_project_completer()("zzz", Namespace()) == []

    def test_handles_errors(self):
        """Completion failures return an empty list."""
        with patch("devcontext.content_manager.ContentManager", side_effect=OSError("boom")):
            assert get_project_completer()("", Namespace()) == []


class TestItemIdCompleter:
    """Tests for item ID completion."""

    def test_returns_snippets_and_knowledge(self, home):
        """Both kinds of item are offered."""
        results = get_item_id_completer()("", Namespace())
        assert sorted(results) == sorted(home["items"])

    def test_handles_errors(self):
        """Completion failures return an empty list."""
        with patch("devcontext.content_manager.ContentManager", side_effect=OSError("boom")):
            assert get_item_id_completer()("", Namespace()) == []
