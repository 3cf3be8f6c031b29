"""Command-line interface for DevContext."""

import argparse
import json
import os
import sys
from datetime import datetime, timedelta

from loguru import logger

from devcontext.content_manager import ContentManager
from devcontext.context_detector import ContextDetector, Diagnostic
from devcontext.injector import FORMATS, format_context
from devcontext.output import (
    console,
    create_projects_table,
    create_stats_table,
    print_activity_entry,
    print_error,
    print_knowledge,
    print_knowledge_line,
    print_match,
    print_search_result,
    print_snippet,
    print_snippet_line,
    print_success,
    print_warning,
)
from devcontext.utils import format_date, parse_relative_date

try:
    import argcomplete

    ARGCOMPLETE_AVAILABLE = True
except ImportError:
    ARGCOMPLETE_AVAILABLE = False


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="devctx",
        description="Save code snippets and answers, find them again from your editor",
    )
    parser.add_argument(
        "--no-color",
        action="store_true",
        help="Disable colored output",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Show debug logging on stderr",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Import completers if argcomplete is available
    project_completer = None
    item_id_completer = None

    if ARGCOMPLETE_AVAILABLE:
        from devcontext.completions import get_item_id_completer, get_project_completer

        project_completer = get_project_completer()
        item_id_completer = get_item_id_completer()

    def add_project_option(sub: argparse.ArgumentParser, help_text: str) -> None:
        action = sub.add_argument("--project", help=help_text)
        if project_completer:
            action.completer = project_completer

    def add_item_id(sub: argparse.ArgumentParser, help_text: str) -> None:
        action = sub.add_argument("id", help=help_text)
        if item_id_completer:
            action.completer = item_id_completer

    # project command
    project_parser = subparsers.add_parser("project", help="Manage projects")
    project_sub = project_parser.add_subparsers(dest="project_command")
    project_sub.add_parser("list", help="List projects")
    project_create = project_sub.add_parser("create", help="Create a project")
    project_create.add_argument("name", help="Project name")
    project_create.add_argument("--description", help="Project description")
    project_create.add_argument("--use", action="store_true", help="Make it the active project")
    project_use = project_sub.add_parser("use", help="Set the active project")
    project_use_id = project_use.add_argument("id", help="Project ID")
    project_delete = project_sub.add_parser("delete", help="Delete a project and its items")
    project_delete_id = project_delete.add_argument("id", help="Project ID")
    project_delete.add_argument("-f", "--force", action="store_true", help="Skip confirmation")
    if project_completer:
        project_use_id.completer = project_completer
        project_delete_id.completer = project_completer

    # save-snippet command
    snippet_parser = subparsers.add_parser("save-snippet", help="Save a code snippet")
    snippet_parser.add_argument(
        "--code",
        help="Snippet code (use --file, or pipe code on stdin, instead)",
    )
    snippet_parser.add_argument("--file", help="Read the code from a file ('-' for stdin)")
    snippet_parser.add_argument("--language", help="Language (detected from the code if omitted)")
    snippet_parser.add_argument("--description", help="Short description")
    snippet_parser.add_argument("--source", help="Where the snippet came from (URL)")
    add_project_option(snippet_parser, "Target project ID (default: active project)")
    snippet_parser.add_argument(
        "--force",
        action="store_true",
        help="Save even if a duplicate exists",
    )

    # save-knowledge command
    knowledge_parser = subparsers.add_parser("save-knowledge", help="Save a question and answer")
    knowledge_parser.add_argument("--question", required=True, help="The question")
    knowledge_parser.add_argument("--answer", help="The answer (read from stdin if omitted)")
    knowledge_parser.add_argument("--tags", help="Comma-separated tags (e.g., 'react,hooks')")
    knowledge_parser.add_argument("--source", help="Where the answer came from (URL)")
    add_project_option(knowledge_parser, "Target project ID (default: active project)")
    knowledge_parser.add_argument(
        "--force",
        action="store_true",
        help="Save even if a duplicate exists",
    )

    # list command
    list_parser = subparsers.add_parser("list", help="List saved items")
    list_parser.add_argument(
        "--type",
        choices=["all", "snippets", "knowledge"],
        default="all",
        help="Item type (default: all)",
    )
    add_project_option(list_parser, "Filter by project ID")
    list_parser.add_argument(
        "--limit",
        type=int,
        default=20,
        help="Maximum number of items per type (default: 20)",
    )
    list_parser.add_argument(
        "--format",
        choices=["text", "json"],
        default="text",
        help="Output format (default: text)",
    )

    # get command
    get_parser = subparsers.add_parser("get", help="Show a saved item")
    add_item_id(get_parser, "Snippet or knowledge ID")
    get_parser.add_argument(
        "--format",
        choices=["text", "json"],
        default="text",
        help="Output format (default: text)",
    )

    # delete command
    delete_parser = subparsers.add_parser("delete", help="Delete a saved item")
    add_item_id(delete_parser, "Snippet or knowledge ID")

    # search command
    search_parser = subparsers.add_parser("search", help="Search saved items")
    search_parser.add_argument("text", help="Search text")
    search_parser.add_argument(
        "--type",
        choices=["all", "snippets", "knowledge"],
        default="all",
        help="Item type (default: all)",
    )
    add_project_option(search_parser, "Filter by project ID")
    search_parser.add_argument("--limit", type=int, help="Maximum number of results")
    search_parser.add_argument(
        "--format",
        choices=["text", "json"],
        default="text",
        help="Output format (default: text)",
    )

    # context command
    context_parser = subparsers.add_parser(
        "context",
        help="Find saved items relevant to a source file",
    )
    context_parser.add_argument("file", help="Source file to analyze")
    context_parser.add_argument("--language", help="Language ID (guessed from the extension)")
    context_parser.add_argument(
        "--error",
        action="append",
        default=[],
        help="Diagnostic message reported for the file (repeatable)",
    )
    context_parser.add_argument("--line", type=int, help="1-based cursor line")
    context_parser.add_argument("--selection", help="Selected text")
    add_project_option(context_parser, "Filter by project ID")
    context_parser.add_argument(
        "--max-results",
        type=int,
        default=10,
        help="Maximum number of matches (default: 10)",
    )
    context_parser.add_argument(
        "--format",
        choices=["text", "json", *FORMATS],
        default="text",
        help="Output format: text, json, or a prompt format (markdown, plain, xml)",
    )
    context_parser.add_argument(
        "--reasons",
        action="store_true",
        help="Include match reasons in markdown output",
    )

    # activity command
    activity_parser = subparsers.add_parser("activity", help="Show the activity log")
    add_project_option(activity_parser, "Filter by project ID")
    activity_parser.add_argument(
        "--action",
        choices=["save", "update", "delete", "duplicate_detected", "export", "import", "sync_error"],
        help="Filter by action",
    )
    activity_parser.add_argument(
        "--since",
        help="Only entries after this date (ISO format or relative: 7d, 2w, 1m)",
    )
    activity_parser.add_argument(
        "--limit",
        type=int,
        default=50,
        help="Maximum number of entries (default: 50)",
    )
    activity_parser.add_argument("--clear", action="store_true", help="Clear the activity log")

    # stats command
    subparsers.add_parser("stats", help="Show statistics")

    # export command
    export_parser = subparsers.add_parser("export", help="Export saved data as JSON")
    add_project_option(export_parser, "Export a single project")
    export_parser.add_argument(
        "--file",
        default="-",
        help="Output file (default: stdout)",
    )

    # import command
    import_parser = subparsers.add_parser("import", help="Import data exported with 'export'")
    import_parser.add_argument("file", help="JSON file ('-' for stdin)")

    # sync command
    sync_parser = subparsers.add_parser("sync", help="Sync with the DevContext server")
    sync_sub = sync_parser.add_subparsers(dest="sync_command")
    sync_run = sync_sub.add_parser("run", help="Run one sync cycle")
    direction = sync_run.add_mutually_exclusive_group()
    direction.add_argument("--push-only", action="store_true", help="Only push local changes")
    direction.add_argument("--pull-only", action="store_true", help="Only pull remote changes")
    sync_sub.add_parser("status", help="Show sync status")
    sync_login = sync_sub.add_parser("login", help="Store an access token and enable sync")
    sync_login.add_argument("--token", required=True, help="Access token from the server admin")
    sync_login.add_argument("--url", help="Server URL (e.g., https://sync.example.com)")
    sync_sub.add_parser("logout", help="Forget the access token and disable sync")

    # server command
    server_parser = subparsers.add_parser("server", help="Run or administer the sync server")
    server_sub = server_parser.add_subparsers(dest="server_command")
    serve_parser = server_sub.add_parser("serve", help="Start the sync server")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Bind address")
    serve_parser.add_argument("--port", type=int, default=8000, help="Port (default: 8000)")
    create_user_parser = server_sub.add_parser(
        "create-user",
        help="Create a user and print an access token",
    )
    create_user_parser.add_argument("email", help="User email")
    create_user_parser.add_argument(
        "--expires-days",
        type=int,
        help="Deactivate the account after this many days",
    )

    # completions command
    completions_parser = subparsers.add_parser(
        "completions",
        help="Print shell completion setup",
    )
    completions_parser.add_argument(
        "shell",
        choices=["bash", "zsh", "fish"],
        help="Shell type",
    )

    return parser


def _read_text(path: str) -> str:
    if path == "-":
        return sys.stdin.read()
    with open(path) as f:
        return f.read()


def cmd_project(args: argparse.Namespace, cm: ContentManager) -> int:
    """Handle the project command."""
    if args.project_command == "create":
        project = cm.create_project(args.name, args.description)
        if args.use or cm.get_active_project().id == project.id:
            cm.set_active_project(project.id)
            print_success(f"Created project {project.name} ({project.id}) and made it active")
        else:
            print_success(f"Created project {project.name} ({project.id})")
        return 0

    if args.project_command == "use":
        project = cm.set_active_project(args.id)
        print_success(f"Active project: {project.name}")
        return 0

    if args.project_command == "delete":
        project = cm.get_project(args.id)
        if project is None:
            print_error(f"Project not found: {args.id}")
            return 1
        if not args.force:
            console.print(
                f"Delete project '[magenta]{project.name}[/magenta]' and all its items? [y/N] ",
                end="",
            )
            if input().strip().lower() != "y":
                print_warning("Aborted.")
                return 0
        cm.delete_project(args.id)
        print_success(f"Deleted project: {project.name}")
        return 0

    # list (default)
    projects = cm.get_projects()
    if not projects:
        console.print("No projects yet. Saving something creates one.")
        return 0
    console.print(create_projects_table(projects))
    return 0


def cmd_save_snippet(args: argparse.Namespace, cm: ContentManager) -> int:
    """Handle the save-snippet command."""
    if args.code is not None:
        code = args.code
    elif args.file:
        code = _read_text(args.file)
    elif not sys.stdin.isatty():
        code = sys.stdin.read()
    else:
        print_error("Provide the code with --code, --file, or on stdin")
        return 1

    result = cm.save_snippet(
        code,
        language=args.language,
        source=args.source,
        description=args.description,
        project_id=args.project,
        force=args.force,
    )
    return _report_capture(result, "Snippet")


def cmd_save_knowledge(args: argparse.Namespace, cm: ContentManager) -> int:
    """Handle the save-knowledge command."""
    answer = args.answer
    if answer is None:
        if sys.stdin.isatty():
            print_error("Provide the answer with --answer or on stdin")
            return 1
        answer = sys.stdin.read()

    result = cm.save_knowledge(
        args.question,
        answer,
        source=args.source,
        tags=args.tags,
        project_id=args.project,
        force=args.force,
    )
    return _report_capture(result, "Knowledge")


def _report_capture(result, label: str) -> int:
    if result.success:
        print_success(f"{label} saved with ID: {result.id}")
        return 0
    if result.is_duplicate:
        print_warning(result.error)
        console.print(f"  Existing item: [dim]{result.existing_item['id']}[/dim]")
        console.print("  Use --force to save anyway.")
        return 2
    print_error(result.error)
    return 1


def cmd_list(args: argparse.Namespace, cm: ContentManager) -> int:
    """Handle the list command."""
    snippets = cm.get_snippets(args.project)[: args.limit] if args.type != "knowledge" else []
    knowledge = cm.get_knowledge(args.project)[: args.limit] if args.type != "snippets" else []

    if not snippets and not knowledge:
        console.print("No saved items found.")
        return 0

    if args.format == "json":
        output = {
            "snippets": [s.to_wire() for s in snippets],
            "knowledge": [k.to_wire() for k in knowledge],
        }
        print(json.dumps(output, indent=2))
        return 0

    if snippets:
        console.print(f"[bold]Snippets ({len(snippets)})[/bold]")
        for snippet in snippets:
            print_snippet_line(snippet)
    if knowledge:
        if snippets:
            console.print()
        console.print(f"[bold]Knowledge ({len(knowledge)})[/bold]")
        for item in knowledge:
            print_knowledge_line(item)
    return 0


def cmd_get(args: argparse.Namespace, cm: ContentManager) -> int:
    """Handle the get command."""
    found = cm.get(args.id)
    if not found:
        print_error(f"Item not found: {args.id}")
        return 1

    item_type, item = found
    if args.format == "json":
        print(json.dumps({"type": item_type, **item.to_wire()}, indent=2))
    elif item_type == "snippet":
        print_snippet(item)
    else:
        print_knowledge(item)
    return 0


def cmd_delete(args: argparse.Namespace, cm: ContentManager) -> int:
    """Handle the delete command."""
    if cm.delete_snippet(args.id) or cm.delete_knowledge(args.id):
        print_success(f"Deleted: {args.id}")
        return 0
    print_error(f"Item not found: {args.id}")
    return 1


def cmd_search(args: argparse.Namespace, cm: ContentManager) -> int:
    """Handle the search command."""
    results = cm.search(args.text, project_id=args.project, kind=args.type, limit=args.limit)

    if not results:
        console.print("No matching items found.")
        return 0

    if args.format == "json":
        print(json.dumps([r.to_dict() for r in results], indent=2))
    else:
        for result in results:
            print_search_result(result)
    return 0


def cmd_context(args: argparse.Namespace, cm: ContentManager) -> int:
    """Handle the context command."""
    try:
        text = _read_text(args.file)
    except OSError as e:
        print_error(f"Cannot read {args.file}: {e}")
        return 1

    diagnostics = [Diagnostic(message=message) for message in args.error]
    context = ContextDetector().detect(
        text,
        language=args.language,
        file_path=args.file,
        selection=args.selection,
        cursor_line=args.line - 1 if args.line else None,
        diagnostics=diagnostics,
    )
    matches = cm.find_context(context, project_id=args.project, max_results=args.max_results)

    if args.format in FORMATS:
        print(
            format_context(
                matches,
                fmt=args.format,
                include_reasons=args.reasons,
                max_items=args.max_results,
            )
        )
        return 0

    if args.format == "json":
        print(json.dumps([m.to_dict() for m in matches], indent=2))
        return 0

    aliases = ", ".join(context.language_aliases)
    console.print(f"[bold]Language:[/bold] {context.language} [dim]({aliases})[/dim]")
    if context.imports:
        console.print(f"[bold]Imports:[/bold] {', '.join(context.imports)}")
    if context.frameworks:
        console.print(f"[bold]Frameworks:[/bold] {', '.join(context.frameworks)}")
    console.print()
    if not matches:
        console.print("No relevant items found.")
        return 0
    for match in matches:
        print_match(match)
    return 0


def cmd_activity(args: argparse.Namespace, cm: ContentManager) -> int:
    """Handle the activity command."""
    if args.clear:
        cm.clear_activity_log()
        print_success("Activity log cleared.")
        return 0

    since = parse_relative_date(args.since) if args.since else None
    if args.since and since is None:
        print_error(f"Invalid date: {args.since}")
        return 1

    entries = cm.get_activity_log(
        project_id=args.project,
        action=args.action,
        since=since,
        limit=args.limit,
    )
    if not entries:
        console.print("No activity recorded.")
        return 0
    for entry in entries:
        print_activity_entry(entry)
    return 0


def cmd_stats(args: argparse.Namespace, cm: ContentManager) -> int:
    """Handle the stats command."""
    stats = cm.stats()

    table = create_stats_table()
    table.add_row("Projects", str(stats["projects"]))
    table.add_row("Snippets", str(stats["snippets"]))
    table.add_row("Knowledge items", str(stats["knowledge"]))
    table.add_row("Pending changes", str(stats["pending_changes"]))
    table.add_row("Storage", stats["storage_backend"])
    last_sync = stats["last_sync_at"]
    table.add_row("Last sync", format_date(last_sync) if last_sync else "never")
    console.print(table)

    if stats["storage_backend"] != "sqlite":
        print_warning("Running on fallback JSON storage; lookups are unindexed.")
    return 0


def cmd_export(args: argparse.Namespace, cm: ContentManager) -> int:
    """Handle the export command."""
    data = cm.export_data(project_id=args.project)
    output = json.dumps(data, indent=2)

    if args.file == "-":
        print(output)
    else:
        with open(args.file, "w") as f:
            f.write(output)
        total = len(data["snippets"]) + len(data["knowledge"])
        print_success(f"Exported {len(data['projects'])} projects and {total} items to {args.file}")
    return 0


def cmd_import(args: argparse.Namespace, cm: ContentManager) -> int:
    """Handle the import command."""
    try:
        data = json.loads(_read_text(args.file))
    except json.JSONDecodeError as e:
        print_error(f"Invalid JSON: {e}")
        return 1

    if not isinstance(data, dict):
        print_error("JSON must be an object with projects, snippets and knowledge lists")
        return 1

    result = cm.import_data(data)

    print_success(f"Imported: {result['imported']}")
    if result["skipped"]:
        print_warning(f"Skipped (already present): {result['skipped']}")
    if result["errors"]:
        print_error(f"Errors: {result['errors']}")

    return 0 if result["errors"] == 0 else 1


def cmd_sync(args: argparse.Namespace, cm: ContentManager) -> int:
    """Handle the sync command."""
    if args.sync_command == "login":
        cm.cloud_login(args.token, api_url=args.url)
        print_success(f"Sync enabled against {cm.config.get_api_url()}")
        return 0

    if args.sync_command == "logout":
        cm.cloud_logout()
        print_success("Sync disabled and token removed.")
        return 0

    if args.sync_command == "run":
        result = cm.sync(push=not args.pull_only, pull=not args.push_only)
        if result.skipped:
            print_warning(result.errors[0])
            return 0
        console.print(f"Pushed: {result.pushed}  Pulled: {result.pulled}")
        if result.rejected:
            print_warning(f"Rejected by server: {', '.join(result.rejected)}")
        for error in result.errors:
            print_error(error)
        return 0 if result.success else 1

    # status (default)
    status = cm.sync_status()
    table = create_stats_table("Sync Status")
    table.add_row("Enabled", "yes" if status["enabled"] else "no")
    table.add_row("Server", status["apiUrl"])
    table.add_row("Pending changes", str(status["pending"]))
    table.add_row("Last pulled version", str(status["lastPullSyncVersion"]))
    last_sync = status["lastSyncAt"]
    table.add_row(
        "Last sync",
        datetime.fromtimestamp(last_sync / 1000).strftime("%Y-%m-%d %H:%M") if last_sync else "never",
    )
    console.print(table)
    if status["lastError"]:
        print_warning(f"Last error: {status['lastError']}")
    return 0


def cmd_server(args: argparse.Namespace) -> int:
    """Handle the server command (doesn't need ContentManager)."""
    from devcontext.server import ServerStore, create_app, get_settings
    from devcontext.server.auth import create_access_token

    settings = get_settings()

    if args.server_command == "create-user":
        expires_at = None
        if args.expires_days:
            expires_at = int((datetime.now() + timedelta(days=args.expires_days)).timestamp() * 1000)
        store = ServerStore(settings.server_db)
        try:
            user = store.create_user(args.email, expires_at=expires_at)
        except ValueError as e:
            print_error(str(e))
            return 1
        finally:
            store.close()
        token = create_access_token(user["id"], settings)
        print_success(f"Created user {args.email} ({user['id']})")
        console.print("Access token (use with 'devctx sync login --token'):")
        print(token)
        return 0

    if args.server_command == "serve":
        import uvicorn

        uvicorn.run(create_app(settings), host=args.host, port=args.port)
        return 0

    print_error("Specify a server command: serve or create-user")
    return 1


def cmd_completions(args: argparse.Namespace) -> int:
    """Handle the completions command."""
    if not ARGCOMPLETE_AVAILABLE:
        print_error("argcomplete is not installed.")
        console.print("Install with: [cyan]pip install 'devcontext[completions]'[/cyan]")
        return 1

    shell = args.shell

    if shell == "bash":
        print("""# Add this to your ~/.bashrc:
eval "$(register-python-argcomplete devctx)"
""")
    elif shell == "zsh":
        print("""# Add this to your ~/.zshrc:
autoload -U bashcompinit
bashcompinit
eval "$(register-python-argcomplete devctx)"
""")
    elif shell == "fish":
        print("""# Run this command once:
register-python-argcomplete --shell fish devctx > ~/.config/fish/completions/devctx.fish
""")

    return 0


def configure_logging(verbose: bool) -> None:
    """Route loguru output to stderr at the requested level."""
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else "WARNING")


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the CLI."""
    parser = create_parser()

    # Enable argcomplete if available
    if ARGCOMPLETE_AVAILABLE:
        argcomplete.autocomplete(parser)

    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    # Handle --no-color flag and NO_COLOR environment variable
    if args.no_color or os.environ.get("NO_COLOR"):
        console.no_color = True

    if not args.command:
        parser.print_help()
        return 0

    # Commands that don't need ContentManager
    if args.command == "completions":
        return cmd_completions(args)
    if args.command == "server":
        return cmd_server(args)

    try:
        cm = ContentManager()
    except Exception as e:
        print_error(f"Initializing content store: {e}")
        return 1

    try:
        if args.command == "project":
            return cmd_project(args, cm)
        elif args.command == "save-snippet":
            return cmd_save_snippet(args, cm)
        elif args.command == "save-knowledge":
            return cmd_save_knowledge(args, cm)
        elif args.command == "list":
            return cmd_list(args, cm)
        elif args.command == "get":
            return cmd_get(args, cm)
        elif args.command == "delete":
            return cmd_delete(args, cm)
        elif args.command == "search":
            return cmd_search(args, cm)
        elif args.command == "context":
            return cmd_context(args, cm)
        elif args.command == "activity":
            return cmd_activity(args, cm)
        elif args.command == "stats":
            return cmd_stats(args, cm)
        elif args.command == "export":
            return cmd_export(args, cm)
        elif args.command == "import":
            return cmd_import(args, cm)
        elif args.command == "sync":
            return cmd_sync(args, cm)
        else:
            parser.print_help()
            return 0
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted[/yellow]")
        return 130
    except Exception as e:
        print_error(str(e))
        return 1
    finally:
        cm.close()


if __name__ == "__main__":
    sys.exit(main())
