"""Tests for the devctx command line."""

import json

import pytest

from devcontext.cli import create_parser, main


@pytest.fixture
def home(tmp_path, monkeypatch):
    """Point the CLI at an empty data directory."""
    monkeypatch.setenv("DEVCONTEXT_HOME", str(tmp_path / "data"))
    monkeypatch.setenv("NO_COLOR", "1")
    return tmp_path


class TestParser:
    """Tests for argument parsing."""

    def test_save_snippet_options(self):
        """save-snippet accepts code and metadata."""
        args = create_parser().parse_args(
            ["save-snippet", "--code", "x = 1", "--language", "python", "--force"]
        )
        assert args.command == "save-snippet"
        assert args.code == "x = 1"
        assert args.force is True

    def test_sync_directions_exclusive(self):
        """--push-only and --pull-only cannot be combined."""
        with pytest.raises(SystemExit):
            create_parser().parse_args(["sync", "run", "--push-only", "--pull-only"])


class TestCommands:
    """Tests running commands end to end."""

    def test_no_command_prints_help(self, home, capsys):
        """Running without a command shows help."""
        assert main([]) == 0
        assert "usage: devctx" in capsys.readouterr().out

    def test_save_and_get(self, home, capsys):
        """A saved snippet can be fetched as JSON."""
        assert main(["save-snippet", "--code", "print('hi')", "--description", "Greeting"]) == 0
        out = capsys.readouterr().out
        assert "Snippet saved with ID:" in out
        item_id = out.rsplit("ID:", 1)[1].split()[0]

        assert main(["get", item_id, "--format", "json"]) == 0
        data = json.loads(capsys.readouterr().out)
        assert data["type"] == "snippet"
        assert data["language"] == "python"
        assert data["description"] == "Greeting"

    def test_duplicate_exit_code(self, home, capsys):
        """Duplicates exit with code 2 unless forced."""
        assert main(["save-snippet", "--code", "SELECT 1;"]) == 0
        assert main(["save-snippet", "--code", "select   1;"]) == 2
        out = capsys.readouterr().out
        assert "Use --force to save anyway." in out
        assert main(["save-snippet", "--code", "select   1;", "--force"]) == 0

    def test_list_json(self, home, capsys):
        """list --format json returns wire records."""
        main(["save-knowledge", "--question", "What is a monad?", "--answer", "A monoid.", "--tags", "fp"])
        capsys.readouterr()
        assert main(["list", "--type", "knowledge", "--format", "json"]) == 0
        data = json.loads(capsys.readouterr().out)
        assert data["snippets"] == []
        assert data["knowledge"][0]["question"] == "What is a monad?"
        assert data["knowledge"][0]["tags"] == ["fp"]

    def test_missing_item(self, home, capsys):
        """Unknown IDs fail."""
        assert main(["get", "nope"]) == 1
        assert main(["delete", "nope"]) == 1
        assert "Item not found: nope" in capsys.readouterr().out

    def test_search_no_results(self, home, capsys):
        """An empty store finds nothing."""
        assert main(["search", "anything"]) == 0
        assert "No matching items found." in capsys.readouterr().out

    def test_export_import(self, home, tmp_path, monkeypatch, capsys):
        """Exported data can be imported into another data directory."""
        main(["save-snippet", "--code", "fn main() {}", "--language", "rust"])
        export_file = tmp_path / "export.json"
        assert main(["export", "--file", str(export_file)]) == 0

        monkeypatch.setenv("DEVCONTEXT_HOME", str(tmp_path / "other"))
        capsys.readouterr()
        assert main(["import", str(export_file)]) == 0
        assert "Imported: 2" in capsys.readouterr().out

    def test_import_invalid_json(self, home, tmp_path, capsys):
        """Invalid JSON is reported."""
        bad = tmp_path / "bad.json"
        bad.write_text("{not json")
        assert main(["import", str(bad)]) == 1
        assert "Invalid JSON" in capsys.readouterr().out

    def test_sync_status_disabled(self, home, capsys):
        """Sync is off until a token is stored."""
        assert main(["sync", "status"]) == 0
        out = capsys.readouterr().out
        assert "Enabled" in out
        assert "no" in out

    def test_sync_run_disabled(self, home, capsys):
        """Running sync without a token fails."""
        assert main(["sync", "run"]) == 1
        assert "Cloud sync is not enabled" in capsys.readouterr().out

    def test_project_create_and_use(self, home, capsys):
        """Projects can be created and activated."""
        assert main(["project", "create", "Work", "--use"]) == 0
        assert "made it active" in capsys.readouterr().out
        assert main(["project", "list"]) == 0
        assert "Work" in capsys.readouterr().out
