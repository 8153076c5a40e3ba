"""
Models for the realtime mock interviewer.

Defines the interview stage enumeration, the realtime wire event model,
content extraction for transcript-bearing events, and the rendered entries
produced by the event ledger.

Last Grunted: 10/16/2026
"""

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


SERVER_EVENT_PREFIX = "event_"
DELTA_SUFFIX = "delta"

TEXT_PART_TYPES = ("text", "output_text")


def format_utc_timestamp(dt: Optional[datetime] = None) -> str:
    """
    Format a datetime as ISO 8601 UTC string with 'Z' suffix.

    Args:
        dt: Timezone-aware datetime. Defaults to now.

    Returns:
        ISO 8601 formatted string ending with 'Z'.
    """
    dt = dt or datetime.now(timezone.utc)
    return dt.isoformat().replace("+00:00", "Z")


class InterviewStage(str, Enum):
    """
    Stages of one interview session.

    Stages only move forward (idle -> mic-check -> interviewing -> completed)
    until the session is stopped, which resets to idle.
    """

    IDLE = "idle"
    MIC_CHECK = "mic-check"
    INTERVIEWING = "interviewing"
    COMPLETED = "completed"


class RealtimeEvent(BaseModel):
    """
    One structured message exchanged over the realtime data channel.

    Only `type` is required. Every other field of the wire record is kept
    as an extra attribute so that payloads round-trip untouched.

    The `timestamp` field is a display annotation. It is assigned once,
    after transmission for outbound events and on receipt for inbound
    ones, and never goes on the wire.

    Example:
        >>> event = RealtimeEvent.model_validate({
        ...     "type": "response.create",
        ...     "response": {"instructions": "Ask the first question."},
        ... })
        >>> event.payload("response")["instructions"]
        'Ask the first question.'
    """

    model_config = ConfigDict(extra="allow")

    type: str = Field(..., min_length=1, description="Event discriminator")
    event_id: Optional[str] = Field(
        default=None,
        description="Client UUID for outbound events, 'event_'-prefixed id for server events",
    )
    timestamp: Optional[str] = Field(
        default=None,
        description="Display-only timestamp, never transmitted",
    )

    @property
    def is_client_event(self) -> bool:
        """Whether the event was generated on this side of the channel."""
        return bool(self.event_id) and not self.event_id.startswith(SERVER_EVENT_PREFIX)

    @property
    def is_delta(self) -> bool:
        """Whether the event is a streaming fragment of a longer reply."""
        return self.type.endswith(DELTA_SUFFIX)

    def payload(self, key: str, default: Any = None) -> Any:
        """Return a top-level wire field that is not one of the declared fields."""
        return (self.model_extra or {}).get(key, default)

    def stamp(self, timestamp: Optional[str] = None) -> None:
        """Assign the display timestamp unless one is already present."""
        if not self.timestamp:
            self.timestamp = timestamp or format_utc_timestamp()

    def to_wire(self) -> str:
        """
        Serialize the event for transmission.

        The display timestamp is always stripped and an unset event id is
        omitted rather than sent as null.
        """
        data = self.model_dump(exclude={"timestamp"})
        if data.get("event_id") is None:
            data.pop("event_id", None)
        return json.dumps(data)


def _join_content(parts: list[Any]) -> str:
    """Join text parts, falling back to spoken transcripts when no text exists."""
    dict_parts = [part for part in parts if isinstance(part, dict)]
    text = "".join(
        part.get("text") or ""
        for part in dict_parts
        if part.get("type") in TEXT_PART_TYPES
    )
    if text:
        return text
    return "".join(
        part.get("transcript") or ""
        for part in dict_parts
        if part.get("type") == "audio"
    )


def extract_response_content(event: RealtimeEvent) -> str:
    """
    Extract text (or, failing that, transcript) content from a `response.done`.

    Output parts may sit directly in `response.output` or be nested in the
    `content` list of an output message item. Both shapes are flattened.

    Args:
        event: Any event. Non-`response.done` events yield "".

    Returns:
        The concatenated content, or "" if the response carried none.
    """
    if event.type != "response.done":
        return ""
    response = event.payload("response")
    if not isinstance(response, dict):
        return ""
    parts: list[Any] = []
    for item in response.get("output") or []:
        if not isinstance(item, dict):
            continue
        content = item.get("content")
        if isinstance(content, list):
            parts.extend(content)
        else:
            parts.append(item)
    return _join_content(parts)


def extract_output_item_content(event: RealtimeEvent) -> str:
    """Extract assistant content from a `response.output_item.done` event."""
    if event.type != "response.output_item.done":
        return ""
    item = event.payload("item")
    if not isinstance(item, dict) or item.get("role") != "assistant":
        return ""
    content = item.get("content")
    if not isinstance(content, list):
        return ""
    return _join_content(content)


def extract_user_text(event: RealtimeEvent) -> str:
    """Extract typed user text from an outbound `conversation.item.create`."""
    if event.type != "conversation.item.create":
        return ""
    item = event.payload("item")
    if not isinstance(item, dict) or item.get("role") != "user":
        return ""
    content = item.get("content")
    if not isinstance(content, list) or not content:
        return ""
    first = content[0]
    if not isinstance(first, dict) or first.get("type") != "input_text":
        return ""
    return first.get("text") or ""


@dataclass(frozen=True)
class LogEntry:
    """
    One row of the technical event log.

    Attributes:
        key: Identity unique within one materialization pass.
        direction: "client" for events we sent, "server" for received ones.
        event: The underlying ledger event.
    """

    key: str
    direction: str
    event: RealtimeEvent


@dataclass(frozen=True)
class TranscriptMessage:
    """
    One chat message of the conversational transcript.

    Attributes:
        key: Identity unique within one materialization pass.
        role: "user" or "assistant".
        content: Message text or spoken transcript.
        timestamp: Display timestamp of the source event.
        event_id: Identifier of the source event, if any.
    """

    key: str
    role: str
    content: str
    timestamp: Optional[str] = None
    event_id: Optional[str] = None
