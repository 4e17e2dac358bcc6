"""Batched LLM translation of a subtitle project into one target language.

A run goes through three phases:

1. Prepare (synchronous): validate the request, append a pending task and
   mark the target language as translating.
2. Execute: analyze the project once, then send the selected segments in
   batches. Each batch is masked, exchanged through the JSON-mode/JSONL
   request cycle, restored and written back with quality metrics.
3. Finalize: settle the task status, bump the language revision and close
   the conversation.

A batch that yields nothing after its retry aborts the whole task; segments
applied by earlier batches are kept.
"""

from __future__ import annotations

import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable

from sublate.core.config import TranslationConfig
from sublate.core.events import EventPublisher
from sublate.core.languages import prompt_label, resolve_language_name
from sublate.core.models import (
    ChatRole,
    ConversationStatus,
    ConversionStatus,
    ConversionTask,
    GlossaryEntry,
    LanguageContent,
    LanguageProcess,
    LLMProfile,
    ProcessStatus,
    ProjectAnalysis,
    Segment,
    SubtitleProject,
)
from sublate.core.storage import DocumentStore, GlossaryStore, StorageError
from sublate.llm.analysis import AnalysisError, ProjectAnalyzer
from sublate.llm.client import ChatCompletionClient
from sublate.llm.masking import (
    RestoreMap,
    glossary_placeholder,
    mask_general,
    mask_glossary,
    restore,
)
from sublate.llm.parsing import TranslationItem
from sublate.llm.prompts import PromptGlossaryEntry
from sublate.llm.protocol import BatchRequest, Diagnostics, ProtocolNegotiator, RequestCycle
from sublate.subtitles.conversation import ConversationRecorder, sync_conversations_from_store
from sublate.subtitles.progress import ProgressReporter
from sublate.subtitles.quality import QualityAssessor
from sublate.utils.cache import TTLCache
from sublate.utils.console import console
from sublate.utils.tasks import (
    CancellationToken,
    TaskAlreadyRunningError,
    TaskCancelledError,
    TaskHandle,
    TaskRunner,
)

ABORT_NO_OUTPUT = "request_failed_or_no_output_after_retry"
DEFAULT_GUIDELINE_STANDARD = "netflix"

SegmentFilter = Callable[[Segment], bool]


class TranslationError(RuntimeError):
    """Raised when a translation request is invalid."""


@dataclass
class TranslationRequest:
    project_id: str
    source_lang: str
    target_lang: str
    provider_id: str
    model: str
    provider_name: str = ""  # Display name; defaults to provider_id
    glossary_set_ids: list[str] = field(default_factory=list)
    extra_glossary: list[GlossaryEntry] = field(default_factory=list)
    strict_glossary: bool = False
    segment_filter: SegmentFilter | None = None  # Set for retry-only runs
    profile: LLMProfile | None = None
    batch_size: int | None = None


def retry_failed_only(target_lang: str) -> SegmentFilter:
    """Select segments whose ``target_lang`` text is missing, unverified or failed."""

    def _filter(segment: Segment) -> bool:
        content = segment.languages.get(target_lang)
        if content is None or content.process is None:
            return True
        return content.process.status in (ProcessStatus.ERROR, ProcessStatus.FALLBACK)

    return _filter


@dataclass
class _Run:
    """Mutable state of one prepared run."""

    request: TranslationRequest
    project: SubtitleProject
    task: ConversionTask
    targets: list[Segment]
    reporter: ProgressReporter
    recorder: ConversationRecorder
    provider_name: str
    src_label: str
    dst_label: str
    diagnostics: Diagnostics = field(default_factory=Diagnostics)
    processed: int = 0
    failed: int = 0
    failed_ids: list[str] = field(default_factory=list)
    abort_reason: str = ""

    @property
    def is_retry(self) -> bool:
        return self.request.segment_filter is not None


class TranslationOrchestrator:
    """Runs translation tasks against a document store and a chat client.

    Args:
        client: Chat completion client.
        store: Project document store.
        glossary_store: Source of glossary set entries. Optional when no
            request selects glossary sets.
        events: Receives progress and conversation events.
        config: Translation tuning knobs.
        runner: Executes detached runs started with ``start``.
        clock: Monotonic clock for the glossary cache.
    """

    def __init__(
        self,
        client: ChatCompletionClient,
        store: DocumentStore,
        glossary_store: GlossaryStore | None = None,
        events: EventPublisher | None = None,
        config: TranslationConfig | None = None,
        runner: TaskRunner | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.client = client
        self.store = store
        self.glossary_store = glossary_store
        self.events = events
        self.config = config or TranslationConfig()
        self.runner = runner or TaskRunner()
        self.analyzer = ProjectAnalyzer(client, store, self.config)
        self.quality = QualityAssessor()
        self._glossary_cache: TTLCache[list[GlossaryEntry]] = TTLCache(
            self.config.glossary_cache_ttl, clock=clock
        )
        self._start_lock = threading.Lock()
        self._inflight: set[tuple[str, str]] = set()

    # --- entry points -------------------------------------------------------

    def translate(
        self, request: TranslationRequest, cancel: CancellationToken | None = None
    ) -> ConversionTask:
        """Run a translation synchronously and return the final task record.

        Raises:
            TranslationError: If the request is invalid.
            TaskAlreadyRunningError: If a run for the same project and
                target language is still in flight.
        """
        key, run = self._claim(request)
        try:
            return self._run(run, cancel or CancellationToken())
        finally:
            self._release(key)

    def start(self, request: TranslationRequest) -> TaskHandle:
        """Validate and prepare synchronously, then run in the background.

        Raises:
            TranslationError: If the request is invalid.
            TaskAlreadyRunningError: If a run for the same project and
                target language is still in flight.
        """
        key, run = self._claim(request)

        def _work(token: CancellationToken) -> ConversionTask:
            try:
                return self._run(run, token)
            finally:
                self._release(key)

        try:
            return self.runner.spawn(key, _work)
        except BaseException:
            self._release(key)
            raise

    def _claim(self, request: TranslationRequest) -> tuple[tuple[str, str], _Run]:
        """Prepare a run and hold its (project, target language) key until released."""
        key = (request.project_id, request.target_lang.strip())
        with self._start_lock:
            if key in self._inflight or self.runner.is_running(key):
                raise TaskAlreadyRunningError(
                    f"A translation into {key[1]} is already running for project {key[0]}"
                )
            run = self._prepare(request)
            self._inflight.add(key)
        return key, run

    def _release(self, key: tuple[str, str]) -> None:
        with self._start_lock:
            self._inflight.discard(key)

    # --- prepare ------------------------------------------------------------

    def _prepare(self, request: TranslationRequest) -> _Run:
        source = request.source_lang.strip()
        target = request.target_lang.strip()
        if source.lower() == target.lower():
            raise TranslationError("Source and target languages cannot be the same")
        project = self.store.get(request.project_id)
        if project is None:
            raise TranslationError(f"Project not found: {request.project_id}")
        if not project.segments:
            raise TranslationError(f"Project {request.project_id} has no segments")
        if request.batch_size is not None and request.batch_size <= 0:
            raise TranslationError(f"Batch size must be positive, got {request.batch_size}")

        if request.segment_filter is not None:
            targets = [seg for seg in project.segments if request.segment_filter(seg)]
        else:
            targets = list(project.segments)
        project_total = len(project.segments)
        provider_name = request.provider_name or request.provider_id
        now = int(time.time())

        task = ConversionTask(
            id=uuid.uuid4().hex,
            status=ConversionStatus.PENDING,
            start_time=now,
            source_lang=source,
            target_lang=target,
            provider=provider_name,
            provider_id=request.provider_id,
            model=request.model,
            total_segments=len(targets),
            project_total_segments=project_total,
            project_completed_segments=project_total - len(targets),
        )

        target_name = resolve_language_name(target, project)
        meta = project.language(target)
        if not meta.language_name.strip():
            meta.language_name = target_name or target
        meta.translator = f"llm/{provider_name}"
        meta.sync_status = "translating"
        meta.active_task_id = task.id
        meta.status.is_original = False
        meta.status.last_updated = now
        meta.put_task(task)

        sync_conversations_from_store(self.store, project)
        self.store.save(project)

        recorder = ConversationRecorder(
            self.store,
            self.events,
            project.id,
            target,
            task.id,
            provider=provider_name,
            provider_id=request.provider_id,
            model=request.model,
        )
        recorder.append(
            ChatRole.APP,
            "meta",
            f"Start LLM subtitle translation: {source} → {target} "
            f"(provider={provider_name}, model={request.model}, total_segments={len(targets)})",
            "pending",
            {"project_total": project_total, "task_total": len(targets)},
        )
        return _Run(
            request=request,
            project=project,
            task=task,
            targets=targets,
            reporter=ProgressReporter(self.store, self.events, task, project.id, target),
            recorder=recorder,
            provider_name=provider_name,
            src_label=prompt_label(source, resolve_language_name(source, project)),
            dst_label=prompt_label(target, target_name),
        )

    # --- run ----------------------------------------------------------------

    def _run(self, run: _Run, token: CancellationToken) -> ConversionTask:
        task = run.task
        console.print(
            f"[bold]Translating[/bold] {task.total_segments} segments "
            f"{task.source_lang} → {task.target_lang} "
            f"[dim]({run.provider_name}/{task.model})[/dim]"
        )
        try:
            self._execute(run, token)
        except TaskCancelledError:
            self._finalize(run, cancelled=True)
        except Exception as e:
            self._finalize(run, error=e)
            raise
        else:
            self._finalize(run)
        return task.model_copy(deep=True)

    def _save(self, run: _Run) -> None:
        """Save the working copy, keeping the latest task record and conversations."""
        run.reporter.write_into(run.project)
        sync_conversations_from_store(self.store, run.project)
        try:
            self.store.save(run.project)
        except StorageError as e:
            console.print(f"[yellow]Failed to save project {run.project.id}:[/yellow] {e}")

    def _analyze(self, run: _Run, token: CancellationToken) -> ProjectAnalysis | None:
        request = run.request
        run.reporter.stage("analysis_started", "project_overview")
        run.recorder.append(
            ChatRole.APP,
            "meta",
            "Analyze project structure and style before translation (project-level overview).",
            "analysis_start",
        )
        # The analyzer saves the working copy, so it must carry the live task
        run.reporter.write_into(run.project)
        analysis = None
        try:
            analysis, usage = self.analyzer.ensure_analysis(
                run.project,
                run.task.source_lang,
                request.provider_id,
                request.model,
                request.profile,
            )
        except AnalysisError as e:
            usage = e.usage
            console.print(f"[yellow]Project analysis failed, continuing without it:[/yellow] {e}")
            run.diagnostics.log(f"analysis failed: {e}")
            run.recorder.append(
                ChatRole.PROVIDER, "error", f"Project analysis failed: {e}", "analysis_error"
            )
        token.raise_if_cancelled()

        run.reporter.add_usage(usage)
        if analysis is not None and not usage.is_empty():
            run.recorder.append(
                ChatRole.PROVIDER,
                "meta",
                f"Project analysis completed. Tokens: prompt={usage.prompt_tokens}, "
                f"completion={usage.completion_tokens}, total={usage.total_tokens}.",
                "analysis_done",
            )
        run.reporter.stage("analysis_done", "project_overview")
        return analysis

    def _set_entries(self, set_id: str) -> list[GlossaryEntry]:
        cached = self._glossary_cache.get(set_id)
        if cached is not None:
            return cached
        if self.glossary_store is None:
            return []
        try:
            entries = self.glossary_store.list_entries_by_set(set_id)
        except StorageError as e:
            console.print(f"[yellow]Skipping glossary set {set_id}:[/yellow] {e}")
            return []
        self._glossary_cache.put(set_id, entries)
        return entries

    def _enforced_glossary(self, run: _Run) -> list[tuple[GlossaryEntry, str]]:
        """Entries to mask, each paired with its origin ("global" or "task")."""
        enforced = [
            (entry, "global")
            for set_id in run.request.glossary_set_ids
            for entry in self._set_entries(set_id)
        ]
        extras = [e for e in run.request.extra_glossary if e.source.strip()]
        if extras:
            run.project.metadata.task_terms = extras
            self._save(run)
            task_terms = extras
        elif run.is_retry:
            task_terms = run.project.metadata.task_terms
        else:
            task_terms = []
        enforced.extend((entry, "task") for entry in task_terms)
        return enforced

    def _global_style(self, analysis: ProjectAnalysis | None) -> dict[str, Any]:
        style: dict[str, Any] = {}
        if analysis is None:
            return style
        if analysis.genre:
            style["genre"] = analysis.genre
        if analysis.tone:
            style["tone"] = analysis.tone
        if analysis.style_guide:
            style["style_guide"] = analysis.style_guide[: self.config.style_guide_limit]
        return style

    def _disclosed_glossary(
        self,
        enforced: list[tuple[GlossaryEntry, str]],
        used: list[bool],
        reference: list[GlossaryEntry],
        strict: bool,
    ) -> list[PromptGlossaryEntry]:
        disclosed = []
        for idx, (entry, origin) in enumerate(enforced):
            if not used[idx]:
                continue
            disclosed.append(
                PromptGlossaryEntry(
                    id=entry.id or None,
                    set_id=entry.set_id or None,
                    source=entry.source,
                    do_not_translate=entry.do_not_translate,
                    case_sensitive=entry.case_sensitive,
                    translations=dict(entry.translations),
                    placeholder=None if strict else glossary_placeholder(idx),
                    origin=origin,
                )
            )
        for entry in reference[: self.config.max_reference_glossary]:
            disclosed.append(
                PromptGlossaryEntry(
                    id=entry.id or None,
                    set_id=entry.set_id or None,
                    source=entry.source,
                    do_not_translate=entry.do_not_translate,
                    case_sensitive=entry.case_sensitive,
                    translations=dict(entry.translations),
                    origin="auto",
                )
            )
        return disclosed

    def _apply_item(
        self,
        run: _Run,
        segment: Segment,
        item: TranslationItem | None,
        glossary_map: RestoreMap,
        general_map: RestoreMap,
    ) -> bool:
        """Write one model output into the segment. Returns True on success.

        Without usable output only ``process`` is updated: existing text is
        kept and no empty language entry is created.
        """
        target = run.task.target_lang
        output = item.output() if item is not None else ""
        process = LanguageProcess(
            provider=run.provider_name,
            model=run.task.model,
            task_id=run.task.id,
            updated_at=int(time.time()),
        )
        content = segment.languages.get(target)

        if not output.strip():
            process.status = ProcessStatus.ERROR
            process.error = "no_output_for_id"
            if content is not None:
                content.process = process
            run.failed += 1
            if len(run.failed_ids) < self.config.failed_id_sample:
                run.failed_ids.append(segment.id)
            self.quality.assess_segment(segment)
            return False

        if content is None:
            content = LanguageContent()
            segment.languages[target] = content
        content.text = restore(restore(output, glossary_map), general_map)
        process.status = ProcessStatus.OK
        content.process = process
        if not segment.guideline_standard.get(target):
            segment.guideline_standard[target] = DEFAULT_GUIDELINE_STANDARD
        self.quality.assess_segment(segment)
        return True

    def _execute(self, run: _Run, token: CancellationToken) -> None:
        request = run.request
        task = run.task
        reporter = run.reporter
        cfg = self.config
        source, target = task.source_lang, task.target_lang

        task.status = ConversionStatus.PROCESSING
        analysis = self._analyze(run, token)

        enforced = self._enforced_glossary(run)
        enforced_entries = [entry for entry, _ in enforced]
        reference = analysis.initial_glossary if analysis is not None else []
        global_style = self._global_style(analysis)

        batch_size = request.batch_size or cfg.batch_size
        total = len(run.targets)
        batch_count = (total + batch_size - 1) // batch_size
        negotiator = ProtocolNegotiator(
            pinned=request.profile.json_mode if request.profile is not None else None,
            allow_probe=not run.is_retry,
        )
        cycle = RequestCycle(
            self.client,
            request.provider_id,
            request.model,
            negotiator,
            run.diagnostics,
            run.recorder,
            reporter.add_usage,
            run.src_label,
            run.dst_label,
            profile=request.profile,
            config=cfg,
            token=token,
        )

        boundary_src: list[str] = []
        boundary_dst: list[str] = []
        style_examples: list[dict[str, str]] = []

        for start in range(0, total, batch_size):
            token.raise_if_cancelled()
            index = start // batch_size + 1
            label = f"batch {index}/{batch_count}"
            batch = run.targets[start : start + batch_size]
            ids = [seg.id for seg in batch]
            srcs = [seg.text_for(source).strip() for seg in batch]

            general_masked, general_map = mask_general(srcs)
            masked, glossary_map, used = mask_glossary(general_masked, enforced_entries, target)

            reporter.stage("batch_sending", f"{label}, size {len(ids)} items")
            items = cycle.exchange(
                BatchRequest(
                    index=index,
                    count=batch_count,
                    ids=ids,
                    texts=masked,
                    global_style=global_style,
                    glossary=self._disclosed_glossary(
                        enforced, used, reference, request.strict_glossary
                    ),
                    references=list(style_examples),
                    boundary_src=boundary_src,
                    boundary_dst=boundary_dst,
                )
            )
            if not items:
                run.abort_reason = ABORT_NO_OUTPUT
                return

            reporter.stage("batch_received", f"{label}, got {len(items)} items")
            got = {item.id.strip(): item for item in items}
            reporter.stage("batch_parsed", f"{label}, parsed {len(got)} items")

            for segment, src in zip(batch, srcs):
                ok = self._apply_item(run, segment, got.get(segment.id), glossary_map, general_map)
                run.processed += 1
                if ok and len(style_examples) < cfg.max_style_examples:
                    style_examples.append({"src": src, "dst": segment.text_for(target)})
                if run.processed % cfg.progress_every == 0:
                    reporter.set_counts(run.processed, run.failed)
                    self._save(run)
                    reporter.publish()

            keep = len(batch) - min(cfg.boundary_size, len(batch))
            tail = batch[keep:]
            boundary_src = srcs[keep:]
            boundary_dst = [seg.text_for(target).strip() for seg in tail]

            reporter.set_counts(run.processed, run.failed)
            self._save(run)
            reporter.stage(
                "batch_applied", f"{label}, processed={run.processed} failed={run.failed}"
            )
            run.recorder.append(
                ChatRole.APP,
                "meta",
                f"Applied batch {index}/{batch_count} to subtitles "
                f"(processed={run.processed}, failed={run.failed}).",
                "batch_applied",
                {
                    "batch_index": index,
                    "batch_count": batch_count,
                    "processed": run.processed,
                    "failed": run.failed,
                },
            )

    # --- finalize -----------------------------------------------------------

    def _finalize(
        self, run: _Run, cancelled: bool = False, error: Exception | None = None
    ) -> None:
        task = run.task
        processed, failed = run.processed, run.failed
        run.reporter.set_counts(processed, failed)
        diagnostics = run.diagnostics.render()
        counts = f"processed={processed}, failed={failed}"

        if cancelled:
            task.status = ConversionStatus.CANCELLED
            task.stage = "cancelled"
            task.stage_detail = counts
            sync_status = "cancelled"
            conv_status = ConversationStatus.FAILED
            kind = "error"
            summary = f"Translation cancelled ({counts})."
        elif error is not None or run.abort_reason:
            reason = run.abort_reason or f"{type(error).__name__}: {error}"
            task.status = ConversionStatus.FAILED
            task.stage = "aborted"
            task.stage_detail = reason
            task.error_message = f"{reason}\n{diagnostics}" if diagnostics else reason
            sync_status = "failed"
            conv_status = ConversationStatus.FAILED
            kind = "error"
            summary = f"Translation aborted: {reason} ({counts})."
        elif failed:
            task.progress = 100
            task.status = ConversionStatus.FAILED
            task.stage = "completed"
            task.stage_detail = counts
            sample = ""
            if run.failed_ids:
                sample = f"FailedIDs(sample)={', '.join(run.failed_ids)}\n"
            task.error_message = (
                f"partial_failed: {failed} segments did not produce output\n"
                f"Processed={processed} Failed={failed}\n{sample}{diagnostics}"
            )
            sync_status = "partial_failed"
            conv_status = ConversationStatus.FAILED
            kind = "meta"
            summary = f"Translation partial_failed. Segments: {counts}."
        else:
            task.progress = 100
            task.status = ConversionStatus.COMPLETED
            task.stage = "completed"
            task.stage_detail = counts
            sync_status = "done"
            conv_status = ConversationStatus.FINISHED
            kind = "meta"
            summary = f"Translation completed. Segments: {counts}."

        task.end_time = int(time.time())
        meta = run.project.language(task.target_lang)
        meta.revision += 1
        meta.sync_status = sync_status
        meta.active_task_id = ""
        meta.status.last_updated = task.end_time
        self._save(run)
        run.reporter.publish()

        run.recorder.append(
            ChatRole.APP,
            kind,
            summary,
            task.stage,
            {"processed": processed, "failed": failed, "status": sync_status},
        )
        run.recorder.finish(conv_status)
        color = "green" if task.status == ConversionStatus.COMPLETED else "yellow"
        console.print(f"[{color}]{summary}[/{color}]")
