"""Task progress: stage updates, counters, token usage, persistence, events."""

from __future__ import annotations

from sublate.core.events import TOPIC_PROGRESS, Event, EventPublisher
from sublate.core.models import ConversionTask, SubtitleProject, TokenUsage
from sublate.core.storage import DocumentStore, StorageError
from sublate.utils.console import console


class ProgressReporter:
    """Owns the live ``ConversionTask`` of one run.

    ``persist`` writes the task into the latest stored document so a reader
    can follow progress mid-run. Before the translator saves its own copy of
    the project it must call ``write_into`` so that save does not roll the
    task record back.
    """

    def __init__(
        self,
        store: DocumentStore,
        events: EventPublisher | None,
        task: ConversionTask,
        project_id: str,
        language: str,
    ) -> None:
        self.store = store
        self.events = events
        self.task = task
        self.project_id = project_id
        self.language = language

    def stage(self, stage: str, detail: str = "", persist: bool = True) -> None:
        self.task.stage = stage
        self.task.stage_detail = detail
        self.publish()
        if persist:
            self.persist()

    def set_counts(self, processed: int, failed: int) -> None:
        self.task.processed_segments = processed
        self.task.failed_segments = failed
        if self.task.total_segments > 0:
            self.task.progress = processed / self.task.total_segments * 100

    def add_usage(self, usage: TokenUsage) -> None:
        """Accumulate usage from one completed call and persist it."""
        self.task.prompt_tokens += usage.prompt_tokens
        self.task.completion_tokens += usage.completion_tokens
        self.task.total_tokens += usage.total_tokens
        if not usage.is_empty():
            self.task.request_count += 1
        self.persist()

    def publish(self) -> None:
        if self.events is None:
            return
        self.events.publish(
            Event(
                topic=TOPIC_PROGRESS,
                data=self.task.model_copy(deep=True),
                metadata={
                    "project_id": self.project_id,
                    "language": self.language,
                    "task_id": self.task.id,
                },
            )
        )

    def write_into(self, project: SubtitleProject) -> None:
        project.language(self.language).put_task(self.task)

    def persist(self) -> None:
        """Replace the task record in the stored project. Failures only warn."""
        try:
            project = self.store.get(self.project_id)
            if project is None:
                return
            self.write_into(project)
            self.store.save(project)
        except StorageError as e:
            console.print(f"[yellow]Failed to persist task progress:[/yellow] {e}")
