"""
taskchat CLI - command-line interface for taskchat.

Minimal CLI providing commands for server management, inspecting task
threads and seeding auto-message templates.
"""

import json
from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape
from rich.tree import Tree

from taskchat.logging_config import setup_logging

app = typer.Typer(
    name="taskchat",
    help="taskchat - Threaded task conversations",
    no_args_is_help=True,
)

console = Console()


def _init_cli_logging() -> None:
    # Fall back to console logging if the log directory is not writable
    try:
        setup_logging(context="cli")
    except PermissionError:
        import logging

        logging.basicConfig(level=logging.INFO)


def _label(content: str, raw: bool) -> str:
    from taskchat.threads.header import decode_header

    if raw:
        return escape(content)
    header = decode_header(content)
    if header is None:
        return f"[italic]{escape(content)}[/italic]"
    return (
        f"[bold cyan]{escape(header.sender_tag)}[/bold cyan] "
        f"[dim]{header.stamp}[/dim] {escape(header.body)}"
    )


@app.command("show-thread")
def show_thread(
    task_id: int = typer.Argument(..., help="Task whose thread to print"),
    raw: bool = typer.Option(False, "--raw", help="Print stored content undecoded"),
) -> None:
    """
    Print the conversation of a task as a tree.

    Top-level messages are listed oldest activity first, as clients show them.
    """
    from taskchat.db.connection import db_session
    from taskchat.db.repositories import ConversationRepository
    from taskchat.threads.tree import flatten

    _init_cli_logging()

    with db_session() as session:
        thread = ConversationRepository(session).get_thread(task_id)

    if not thread:
        console.print(f"[yellow]No messages for task {task_id}[/yellow]")
        return

    root = Tree(f"[bold]Task {task_id}[/bold]")
    nodes: dict[tuple[int, ...], Tree] = {}
    for path, _depth, message in flatten(thread):
        parent = nodes.get(tuple(path[:-1]), root)
        nodes[tuple(path)] = parent.add(_label(message.content, raw))

    console.print(root)


@app.command("load-templates")
def load_templates(
    file: Path = typer.Argument(
        ..., exists=True, dir_okay=False, help="JSON file of templates"
    ),
) -> None:
    """
    Load auto-message templates from a JSON file.

    The file holds a list of objects with ``type``, ``from``, ``to`` and
    ``content`` (a string or a list of strings). Existing templates for the
    same transition are replaced.
    """
    from taskchat.db.connection import db_session
    from taskchat.db.repositories import AutoMessageTemplateRepository

    _init_cli_logging()

    try:
        entries = json.loads(file.read_text())
    except json.JSONDecodeError as e:
        console.print(f"[red]✗ Invalid JSON in {file}: {e}[/red]")
        raise typer.Exit(1)

    if not isinstance(entries, list):
        console.print("[red]✗ Expected a JSON list of templates[/red]")
        raise typer.Exit(1)

    loaded = 0
    skipped = 0
    with db_session() as session:
        repo = AutoMessageTemplateRepository(session)
        for index, entry in enumerate(entries):
            try:
                content = entry["content"]
                if isinstance(content, str):
                    content = [content]
                repo.save(
                    type=str(entry["type"]),
                    from_value=str(entry.get("from") or ""),
                    to_value=str(entry.get("to") or ""),
                    content=[str(item) for item in content],
                )
                loaded += 1
            except (KeyError, TypeError, AttributeError) as e:
                console.print(f"[yellow]⚠ Skipping entry {index}: missing {e}[/yellow]")
                skipped += 1

    console.print(f"[green]✓ Loaded {loaded} template(s)[/green]")
    if skipped:
        console.print(f"[yellow]  Skipped {skipped} invalid entr(ies)[/yellow]")


@app.command()
def serve(
    host: str = typer.Option(None, help="Host to bind to (default: API_HOST)"),
    port: int = typer.Option(None, help="Port to bind to (default: API_PORT)"),
    reload: bool = typer.Option(False, help="Enable auto-reload"),
) -> None:
    """
    Start the FastAPI server.

    Runs the taskchat API and WebSocket server.
    """
    import uvicorn

    from taskchat.config import settings

    host = host or settings.api_host
    port = port or settings.api_port

    console.print("[bold green]Starting taskchat API server...[/bold green]")
    console.print(f"  Host: {host}")
    console.print(f"  Port: {port}")
    console.print(f"  Reload: {reload}")
    console.print(f"\n  API docs: http://{host}:{port}/docs")

    uvicorn.run(
        "taskchat.api.app:app",
        host=host,
        port=port,
        reload=reload,
    )


if __name__ == "__main__":
    app()
