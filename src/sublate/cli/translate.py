"""sublate translate command: translate a stored subtitle project with an LLM."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.markup import escape
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn

from sublate.core.config import load_config
from sublate.core.events import TOPIC_PROGRESS, Event, EventBus
from sublate.core.models import ConversionStatus, LLMProfile
from sublate.core.storage import JsonFileStore, StorageError
from sublate.utils.console import console


def translate(
    project_id: Annotated[str, typer.Argument(help="Project id in the store.")],
    to: Annotated[str, typer.Option("--to", "-t", help="Target language code.")],
    source: Annotated[str, typer.Option("--from", "-s", help="Source language code.")] = "en",
    store_dir: Annotated[
        Optional[Path],
        typer.Option("--store", help="Store directory (default: store_dir from config)."),
    ] = None,
    provider: Annotated[
        str,
        typer.Option("--provider", "-p", help="Provider id from [llm.providers] in config."),
    ] = "openai",
    model: Annotated[
        Optional[str],
        typer.Option("--model", "-m", help="Model name (default: llm.model from config)."),
    ] = None,
    glossary_set: Annotated[
        Optional[list[str]],
        typer.Option("--glossary-set", "-g", help="Glossary set id to enforce. Repeatable."),
    ] = None,
    strict_glossary: Annotated[
        bool,
        typer.Option("--strict-glossary", help="Do not reveal glossary placeholders to the model."),
    ] = False,
    retry_failed: Annotated[
        bool,
        typer.Option("--retry-failed", help="Only retry segments that failed before."),
    ] = False,
    json_mode: Annotated[
        Optional[bool],
        typer.Option(
            "--json-mode/--jsonl",
            help="Force JSON mode or JSONL output (default: negotiate).",
        ),
    ] = None,
    batch_size: Annotated[
        Optional[int],
        typer.Option("--batch-size", "-b", min=1, help="Segments per request."),
    ] = None,
) -> None:
    """Translate a subtitle project into another language using an LLM."""
    from sublate.llm.client import LiteLLMClient
    from sublate.subtitles.translator import (
        TranslationError,
        TranslationOrchestrator,
        TranslationRequest,
        retry_failed_only,
    )

    overrides: dict[str, object] = {"store_dir": store_dir, "translation.batch_size": batch_size}
    config = load_config(**overrides)

    store = JsonFileStore(config.store_dir)
    bus = EventBus()
    orchestrator = TranslationOrchestrator(
        LiteLLMClient(config.llm),
        store,
        glossary_store=store,
        events=bus,
        config=config.translation,
    )
    request = TranslationRequest(
        project_id=project_id,
        source_lang=source,
        target_lang=to,
        provider_id=provider,
        model=model or config.llm.model,
        glossary_set_ids=list(glossary_set or []),
        strict_glossary=strict_glossary,
        segment_filter=retry_failed_only(to) if retry_failed else None,
        profile=LLMProfile(json_mode=json_mode) if json_mode is not None else None,
    )

    with Progress(
        SpinnerColumn(),
        TextColumn("[bold blue]{task.description}"),
        BarColumn(),
        TextColumn("{task.completed}/{task.total} segments"),
        console=console,
    ) as progress:
        bar = progress.add_task("Translating", total=None)

        def on_progress(event: Event) -> None:
            task = event.data
            progress.update(
                bar,
                total=task.total_segments,
                completed=task.processed_segments,
                description=task.stage or "Translating",
            )

        unsubscribe = bus.subscribe(TOPIC_PROGRESS, on_progress)
        try:
            result = orchestrator.translate(request)
        except (TranslationError, StorageError) as e:
            console.print(f"[red]{escape(str(e))}[/red]")
            raise typer.Exit(1)
        finally:
            unsubscribe()
            orchestrator.runner.shutdown(wait=False)

    console.print(
        f"[bold]Tokens:[/bold] prompt={result.prompt_tokens} "
        f"completion={result.completion_tokens} total={result.total_tokens} "
        f"[dim]({result.request_count} requests)[/dim]"
    )
    if result.status != ConversionStatus.COMPLETED:
        if result.error_message:
            console.print(f"[dim]{escape(result.error_message.rstrip())}[/dim]")
        console.print(f"[red]Task {result.id} {result.status.value}[/red]")
        raise typer.Exit(1)
