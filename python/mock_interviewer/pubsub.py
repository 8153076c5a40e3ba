"""
Real-time Pub/Sub for session notices.

Provides an in-memory pub/sub feed that carries ledger events, stage
changes, system messages and errors from an interview session to whatever
renders it (console, web UI, tests).

Publishing is synchronous so it can be called from data channel callbacks
without reordering: each subscriber owns an unbounded asyncio.Queue and
notices are delivered with put_nowait.

Example usage:
    publisher = SessionEventPublisher()
    queue = publisher.subscribe()
    publisher.publish_system("Channel open")
    notice = await queue.get()
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .models import RealtimeEvent, format_utc_timestamp

logger = logging.getLogger(__name__)


class NoticeType(str, Enum):
    """
    Types of notices published to the feed.

    Attributes:
        EVENT: An event was appended to the ledger.
        STAGE: Interview stage or question index changed.
        SYSTEM: Session lifecycle messages (channel open, stopped, ...).
        ERROR: Setup failures, dropped sends, dropped transport.
    """

    EVENT = "event"
    STAGE = "stage"
    SYSTEM = "system"
    ERROR = "error"


@dataclass
class SessionNotice:
    """
    A single notice from an interview session.

    Attributes:
        notice_type: Category of the notice.
        content: Human-readable summary.
        timestamp: UTC timestamp when the notice was created.
        direction: "client" or "server" for EVENT notices.
        event: Wire payload for EVENT notices (display timestamp included).
        stage: Stage value for STAGE notices.
        question_index: Question index for STAGE notices.
    """

    notice_type: NoticeType
    content: str
    timestamp: str = field(default_factory=format_utc_timestamp)
    direction: str | None = None
    event: dict[str, Any] | None = None
    stage: str | None = None
    question_index: int | None = None

    def to_dict(self) -> dict[str, object]:
        """
        Convert notice to dictionary for JSON serialization.

        Returns:
            Dictionary representation of the notice.
        """
        return {
            "notice_type": self.notice_type.value,
            "content": self.content,
            "timestamp": self.timestamp,
            "direction": self.direction,
            "event": self.event,
            "stage": self.stage,
            "question_index": self.question_index,
        }

    def to_json(self) -> str:
        """Convert notice to JSON string."""
        return json.dumps(self.to_dict())


class SessionEventPublisher:
    """
    Publisher for session notices.

    Manages subscriber queues and broadcasts notices to all of them,
    replaying recent history to late subscribers.

    Attributes:
        max_history: Maximum number of notices to retain in history.

    Example:
        publisher = SessionEventPublisher()
        queue = publisher.subscribe()
        publisher.publish_error("No data channel available")
        notice = await queue.get()
        assert notice.notice_type is NoticeType.ERROR
    """

    def __init__(self, max_history: int = 200) -> None:
        """
        Initialize the publisher.

        Args:
            max_history: Maximum number of notices to retain in history.
        """
        self._subscribers: list[asyncio.Queue[SessionNotice]] = []
        self._history: list[SessionNotice] = []
        self._max_history = max_history
        logger.debug("SessionEventPublisher initialized with max_history=%d", max_history)

    def subscribe(self) -> asyncio.Queue[SessionNotice]:
        """
        Subscribe to session notices.

        The returned queue is pre-filled with the retained history.
        Caller is responsible for calling unsubscribe when done.

        Returns:
            Queue that will receive published notices.
        """
        queue: asyncio.Queue[SessionNotice] = asyncio.Queue()
        for notice in self._history:
            queue.put_nowait(notice)
        self._subscribers.append(queue)
        logger.debug("New subscriber added. Total: %d", len(self._subscribers))
        return queue

    def unsubscribe(self, queue: asyncio.Queue[SessionNotice]) -> None:
        """
        Remove a subscriber.

        Args:
            queue: The queue to unsubscribe.
        """
        if queue in self._subscribers:
            self._subscribers.remove(queue)
        logger.debug("Subscriber removed. Total: %d", len(self._subscribers))

    def publish(self, notice: SessionNotice) -> None:
        """
        Publish a notice to all subscribers and store it in history.

        Args:
            notice: The notice to publish.
        """
        self._history.append(notice)
        if len(self._history) > self._max_history:
            self._history = self._history[-self._max_history :]

        for queue in self._subscribers:
            queue.put_nowait(notice)

    def publish_event(self, event: RealtimeEvent) -> None:
        """
        Publish a ledger event.

        Args:
            event: The event that was just appended to the ledger.
        """
        direction = "client" if event.is_client_event else "server"
        self.publish(
            SessionNotice(
                notice_type=NoticeType.EVENT,
                content=f"{direction}: {event.type}",
                direction=direction,
                event=event.model_dump(),
            )
        )

    def publish_stage(self, stage: str, question_index: int) -> None:
        """
        Publish a stage/question change.

        Args:
            stage: New interview stage value.
            question_index: Current question index.
        """
        self.publish(
            SessionNotice(
                notice_type=NoticeType.STAGE,
                content=f"stage={stage} question={question_index}",
                stage=stage,
                question_index=question_index,
            )
        )

    def publish_system(self, content: str) -> None:
        """Publish a system message."""
        self.publish(SessionNotice(notice_type=NoticeType.SYSTEM, content=content))

    def publish_error(self, content: str) -> None:
        """Publish an error message."""
        self.publish(SessionNotice(notice_type=NoticeType.ERROR, content=content))

    def get_history(self) -> list[SessionNotice]:
        """
        Get the notice history.

        Returns:
            Copy of the history list.
        """
        return list(self._history)

    def clear_history(self) -> None:
        """Remove all notices from history."""
        self._history.clear()
        logger.debug("History cleared")

    @property
    def subscriber_count(self) -> int:
        """Number of active subscribers."""
        return len(self._subscribers)
