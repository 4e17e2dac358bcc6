"""sublate status command: show translation tasks and audit trail for a language."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.markup import escape
from rich.table import Table

from sublate.core.config import load_config
from sublate.core.storage import JsonFileStore, StorageError
from sublate.utils.console import console

_PREVIEW_CHARS = 160


def _ts(epoch: int) -> str:
    return datetime.fromtimestamp(epoch).strftime("%Y-%m-%d %H:%M:%S") if epoch else "-"


def status(
    project_id: Annotated[str, typer.Argument(help="Project id in the store.")],
    lang: Annotated[str, typer.Option("--lang", "-l", help="Target language code.")],
    store_dir: Annotated[
        Optional[Path],
        typer.Option("--store", help="Store directory (default: store_dir from config)."),
    ] = None,
    conversation: Annotated[
        bool,
        typer.Option("--conversation", "-c", help="Print the latest task's audit trail."),
    ] = False,
) -> None:
    """Show translation tasks for one language of a project."""
    config = load_config(store_dir=store_dir)
    try:
        project = JsonFileStore(config.store_dir).get(project_id)
    except StorageError as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        raise typer.Exit(1)
    if project is None:
        console.print(f"[red]Project not found:[/red] {project_id}")
        raise typer.Exit(1)
    meta = project.language_metadata.get(lang)
    if meta is None:
        console.print(f"[yellow]No {lang} data for project {project_id}[/yellow]")
        raise typer.Exit(1)

    console.print(
        f"[bold]{project.project_name or project.id}[/bold] {lang} "
        f"({meta.language_name or lang}) sync={meta.sync_status or '-'} "
        f"revision={meta.revision} [dim]translator={meta.translator or '-'}[/dim]"
    )

    table = Table(title=f"Translation tasks ({len(meta.status.conversion_tasks)})")
    table.add_column("Task", style="bold cyan", no_wrap=True)
    table.add_column("Started")
    table.add_column("Status")
    table.add_column("Stage")
    table.add_column("Done", justify="right")
    table.add_column("Failed", justify="right")
    table.add_column("Tokens", justify="right")
    table.add_column("Requests", justify="right")
    for task in meta.status.conversion_tasks:
        marker = " *" if task.id == meta.active_task_id else ""
        table.add_row(
            task.id[:12] + marker,
            _ts(task.start_time),
            task.status.value,
            task.stage or "-",
            f"{task.processed_segments}/{task.total_segments}",
            str(task.failed_segments),
            str(task.total_tokens),
            str(task.request_count),
        )
    console.print(table)

    if not conversation or not meta.status.conversion_tasks:
        return
    latest = meta.status.conversion_tasks[-1]
    conv = meta.status.llm_conversations.get(latest.id)
    if conv is None:
        console.print("[dim]No conversation recorded for the latest task.[/dim]")
        return
    console.print(
        f"\n[bold]Conversation[/bold] {conv.id[:12]} ({conv.status.value}, "
        f"{len(conv.messages)} messages)"
    )
    for msg in conv.messages:
        content = msg.content.strip().replace("\n", " ")
        if len(content) > _PREVIEW_CHARS:
            content = content[:_PREVIEW_CHARS] + "..."
        style = "red" if msg.kind == "error" else "dim"
        header = f"{_ts(msg.created_at)} {msg.role.value}/{msg.kind}"
        console.print(f"[{style}]{header}[/{style}] {escape(content)}")
