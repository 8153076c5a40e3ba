"""
Event Ledger.

Append-ordered record of every event exchanged over the realtime channel,
newest first. The raw record is never deduplicated; display reductions are
materialized on demand from it.

Thread Safety:
    Not thread-safe. The ledger is owned by one session running on one
    event loop.

Last Grunted: 10/16/2026
"""

import logging
from itertools import count
from typing import Iterator

from .models import (
    LogEntry,
    RealtimeEvent,
    TranscriptMessage,
    extract_output_item_content,
    extract_response_content,
    extract_user_text,
)


__all__ = ["EventLedger"]


logger = logging.getLogger(__name__)


def _entry_key(event: RealtimeEvent, counter: Iterator[int]) -> str:
    """Build a key from the event id plus the pass-scoped counter."""
    return f"{event.event_id or 'local'}-{next(counter)}"


class EventLedger:
    """
    Newest-first record of realtime events with two materialized views.

    Views:
        - technical_view(): every event, with each run of same-type
          streaming deltas collapsed to its first (newest) member.
        - transcript_view(): chronological chat messages, deduplicated on
          exact (role, content).

    Both views are recomputed from the raw record on every call, so calling
    them repeatedly on the same content yields the same result.

    Example:
        >>> ledger = EventLedger()
        >>> ledger.append(RealtimeEvent(type="response.audio_transcript.delta"))
        >>> ledger.append(RealtimeEvent(type="response.audio_transcript.delta"))
        >>> len(ledger), len(ledger.technical_view())
        (2, 1)
    """

    def __init__(self) -> None:
        self._events: list[RealtimeEvent] = []

    def __len__(self) -> int:
        return len(self._events)

    @property
    def events(self) -> tuple[RealtimeEvent, ...]:
        """Raw record, newest first."""
        return tuple(self._events)

    def append(self, event: RealtimeEvent) -> None:
        """Prepend an event to the record. Never deduplicates."""
        self._events.insert(0, event)

    def reset(self) -> None:
        """Drop every recorded event."""
        if self._events:
            logger.debug("Ledger reset (dropped %d events)", len(self._events))
        self._events = []

    def technical_view(self) -> list[LogEntry]:
        """
        Materialize the technical log, newest first.

        A streaming delta is shown only if no delta of the same type has
        been shown since the last non-delta event in this pass.

        Returns:
            Log entries with pass-unique keys.
        """
        counter = count()
        shown_deltas: set[str] = set()
        entries: list[LogEntry] = []

        for event in self._events:
            if event.is_delta:
                if event.type in shown_deltas:
                    continue
                shown_deltas.add(event.type)
            else:
                shown_deltas.clear()

            entries.append(
                LogEntry(
                    key=_entry_key(event, counter),
                    direction="client" if event.is_client_event else "server",
                    event=event,
                )
            )
        return entries

    def transcript_view(self) -> list[TranscriptMessage]:
        """
        Materialize the conversational transcript, oldest first.

        Only content-bearing events are kept: typed user messages, completed
        responses, and completed assistant output items. If the same role
        produced identical content more than once, only the earliest
        occurrence survives.

        Returns:
            Chat messages in chronological order with pass-unique keys.
        """
        counter = count()
        seen: set[tuple[str, str]] = set()
        messages: list[TranscriptMessage] = []

        for event in reversed(self._events):
            role, content = self._chat_content(event)
            if not content:
                continue
            if (role, content) in seen:
                continue
            seen.add((role, content))
            messages.append(
                TranscriptMessage(
                    key=_entry_key(event, counter),
                    role=role,
                    content=content,
                    timestamp=event.timestamp,
                    event_id=event.event_id,
                )
            )
        return messages

    @staticmethod
    def _chat_content(event: RealtimeEvent) -> tuple[str, str]:
        if event.type == "conversation.item.create":
            return "user", extract_user_text(event)
        if event.type == "response.done":
            return "assistant", extract_response_content(event)
        if event.type == "response.output_item.done":
            return "assistant", extract_output_item_content(event)
        return "", ""
