"""Append-only audit trail of every model exchange in a translation task.

Each task owns one ``LLMConversation`` stored under
``language_metadata[lang].status.llm_conversations[task_id]``. Messages are
written straight to the store (read, append, save) so they survive even if
the run dies mid-batch. The translator keeps its own in-memory copy of the
project and saves it often; ``sync_conversations_from_store`` must run before
each of those saves so recorded messages are not overwritten.
"""

from __future__ import annotations

import time
import uuid
from typing import Any

from sublate.core.events import TOPIC_CONVERSATION, ConversationEvent, Event, EventPublisher
from sublate.core.models import (
    ChatRole,
    ConversationStatus,
    LLMChatMessage,
    LLMConversation,
    SubtitleProject,
)
from sublate.core.storage import DocumentStore, StorageError
from sublate.utils.console import console


def merge_conversations(target: SubtitleProject, stored: SubtitleProject) -> None:
    """Merge stored conversations into ``target`` in place.

    Per conversation id, whichever copy has more messages wins. Nothing else
    in ``target`` is touched.
    """
    for lang, stored_meta in stored.language_metadata.items():
        remote_convs = stored_meta.status.llm_conversations
        if not remote_convs:
            continue
        local_convs = target.language(lang).status.llm_conversations
        for conv_id, remote in remote_convs.items():
            local = local_convs.get(conv_id)
            if local is None or len(remote.messages) > len(local.messages):
                local_convs[conv_id] = remote


def sync_conversations_from_store(store: DocumentStore, project: SubtitleProject) -> None:
    """Pull the latest stored conversations into ``project`` before it is saved."""
    try:
        stored = store.get(project.id)
    except StorageError as e:
        console.print(f"[yellow]Could not load conversations for {project.id}:[/yellow] {e}")
        return
    if stored is not None:
        merge_conversations(project, stored)


class ConversationRecorder:
    """Records audit messages for one task and publishes them as events.

    Persistence failures are reported on the console and never raised; the
    audit trail is best-effort and must not abort a translation.
    """

    def __init__(
        self,
        store: DocumentStore,
        events: EventPublisher | None,
        project_id: str,
        language: str,
        task_id: str,
        provider: str = "",
        provider_id: str = "",
        model: str = "",
    ) -> None:
        self.store = store
        self.events = events
        self.project_id = project_id
        self.language = language
        self.task_id = task_id
        self.provider = provider
        self.provider_id = provider_id
        self.model = model

    def _message(
        self,
        role: ChatRole,
        kind: str,
        content: str,
        stage: str,
        metadata: dict[str, Any] | None,
    ) -> LLMChatMessage:
        meta: dict[str, Any] = {}
        if stage:
            meta["stage"] = stage
        if metadata:
            meta.update(metadata)
        return LLMChatMessage(
            id=str(uuid.uuid4()),
            role=role,
            kind=kind,
            content=content,
            created_at=int(time.time()),
            metadata=meta,
        )

    def _new_conversation(self) -> LLMConversation:
        return LLMConversation(
            id=self.task_id,
            project_id=self.project_id,
            language=self.language,
            task_id=self.task_id,
            provider=self.provider,
            provider_id=self.provider_id,
            model=self.model,
            status=ConversationStatus.RUNNING,
            started_at=int(time.time()),
        )

    def _publish(self, conv: LLMConversation, message: LLMChatMessage | None, total: int) -> None:
        if self.events is None:
            return
        payload = ConversationEvent(
            project_id=self.project_id,
            language=self.language,
            task_id=self.task_id,
            conversation_id=conv.id,
            status=conv.status.value,
            message=message,
            messages_total=total,
        )
        self.events.publish(
            Event(
                topic=TOPIC_CONVERSATION,
                data=payload,
                metadata={
                    "project_id": self.project_id,
                    "language": self.language,
                    "task_id": self.task_id,
                },
            )
        )

    def append(
        self,
        role: ChatRole,
        kind: str,
        content: str,
        stage: str = "",
        metadata: dict[str, Any] | None = None,
    ) -> LLMChatMessage | None:
        """Persist one message and broadcast it.

        Returns the stored message, or None if nothing was written (empty
        content, missing project or language, terminal conversation, or a
        storage failure).
        """
        if not content:
            return None
        try:
            project = self.store.get(self.project_id)
        except StorageError as e:
            console.print(f"[yellow]Could not load project for audit log:[/yellow] {e}")
            return None
        if project is None or self.language not in project.language_metadata:
            return None

        convs = project.language_metadata[self.language].status.llm_conversations
        conv = convs.get(self.task_id) or self._new_conversation()
        if conv.is_terminal:
            console.print(
                f"[yellow]Conversation {self.task_id} is {conv.status.value}, "
                f"dropping {kind} message[/yellow]"
            )
            return None
        conv.provider = conv.provider or self.provider
        conv.provider_id = conv.provider_id or self.provider_id
        conv.model = conv.model or self.model

        message = self._message(role, kind, content, stage, metadata)
        conv.messages.append(message)
        convs[self.task_id] = conv
        try:
            self.store.save(project)
        except StorageError as e:
            console.print(f"[yellow]Failed to save audit message:[/yellow] {e}")
            return None

        self._publish(conv, message, len(conv.messages))
        return message

    def push_delta(
        self,
        role: ChatRole,
        kind: str,
        content: str,
        stage: str = "",
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Broadcast a streaming fragment without persisting it."""
        if not content or self.events is None:
            return
        message = self._message(role, kind, content, stage, metadata)
        live = self._new_conversation()
        self._publish(live, message, 0)

    def finish(self, status: ConversationStatus) -> None:
        """Mark the conversation terminal and stamp ``ended_at``.

        An already-terminal conversation keeps its status; only a missing
        ``ended_at`` is filled in.
        """
        try:
            project = self.store.get(self.project_id)
        except StorageError as e:
            console.print(f"[yellow]Could not load project to close conversation:[/yellow] {e}")
            return
        if project is None or self.language not in project.language_metadata:
            return
        conv = project.language_metadata[self.language].status.llm_conversations.get(self.task_id)
        if conv is None:
            return
        if not conv.is_terminal:
            conv.status = status
        if not conv.ended_at:
            conv.ended_at = int(time.time())
        try:
            self.store.save(project)
        except StorageError as e:
            console.print(f"[yellow]Failed to save conversation status:[/yellow] {e}")
            return
        self._publish(conv, None, len(conv.messages))
