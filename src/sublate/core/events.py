"""Event system for streaming translation progress to external consumers.

The translator publishes events through an ``EventPublisher``. Consumers
(CLI progress bars, websocket bridges) subscribe to a topic on the in-process
``EventBus`` to receive real-time updates without touching translation logic.
"""

from __future__ import annotations

import threading
import time
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Callable, Protocol

from sublate.core.models import LLMChatMessage

TOPIC_PROGRESS = "subtitle.progress"
TOPIC_CONVERSATION = "subtitle.conversation"


@dataclass
class Event:
    """A published event.

    Attributes:
        topic: Topic name (subtitle.progress, subtitle.conversation).
        data: Payload; a ConversionTask snapshot or a ConversationEvent.
        source: Emitting subsystem.
        metadata: Optional routing hints (project_id, language, task_id).
    """

    topic: str
    data: Any
    source: str = "subtitles"
    metadata: dict = field(default_factory=dict)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: float = field(default_factory=time.time)


@dataclass
class ConversationEvent:
    """Payload for subtitle.conversation events."""

    project_id: str
    language: str
    task_id: str
    conversation_id: str
    status: str
    message: LLMChatMessage | None = None
    messages_total: int = 0


EventCallback = Callable[[Event], None]


class EventPublisher(Protocol):
    def publish(self, event: Event) -> None: ...


class EventBus:
    """Thread-safe in-process publish/subscribe bus."""

    def __init__(self) -> None:
        self._subscribers: dict[str, list[EventCallback]] = defaultdict(list)
        self._lock = threading.Lock()

    def subscribe(self, topic: str, callback: EventCallback) -> Callable[[], None]:
        """Register a callback for a topic. Returns an unsubscribe function."""
        with self._lock:
            self._subscribers[topic].append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers[topic]:
                    self._subscribers[topic].remove(callback)

        return unsubscribe

    def publish(self, event: Event) -> None:
        with self._lock:
            callbacks = list(self._subscribers.get(event.topic, ()))
        for callback in callbacks:
            callback(event)
