"""
Message Channel.

Wraps the realtime data channel: stamps and records outbound events after
they hit the wire, and parses, stamps and records inbound events before
handing them to the interview logic.

The wrapped object follows aiortc's RTCDataChannel surface: `send(str)`,
`close()`, `readyState` and pyee-style `on(event)` registration. Handlers
are plain functions so that pyee invokes them inline and delivery order is
preserved.

Last Grunted: 10/16/2026
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, Callable, Mapping, Optional, Protocol, Union

from pydantic import ValidationError

from .errors import ChannelOpenTimeoutError, TransportError
from .ledger import EventLedger
from .models import RealtimeEvent
from .pubsub import SessionEventPublisher


__all__ = ["DataChannel", "MessageChannel"]


logger = logging.getLogger(__name__)


class DataChannel(Protocol):
    """Interface of the underlying realtime data channel."""

    readyState: str

    def send(self, data: str) -> None:
        """Transmit one UTF-8 text frame."""

    def close(self) -> None:
        """Close the channel."""

    def on(self, event: str, f: Optional[Callable[..., Any]] = None) -> Any:
        """Register an event handler."""


EventCallback = Callable[[RealtimeEvent], None]
OutboundEvent = Union[RealtimeEvent, Mapping[str, Any]]


class MessageChannel:
    """
    Ordered, reliable event channel bound to one session's ledger.

    Example:
        >>> channel = MessageChannel(raw_channel, ledger, publisher,
        ...                          on_open=handle_open, on_event=handle_event)
        >>> channel.send({"type": "response.create"})
    """

    def __init__(
        self,
        raw: DataChannel,
        ledger: EventLedger,
        publisher: SessionEventPublisher,
        *,
        on_open: Optional[Callable[["MessageChannel"], None]] = None,
        on_event: Optional[EventCallback] = None,
        on_close: Optional[Callable[["MessageChannel"], None]] = None,
    ) -> None:
        self._raw = raw
        self._ledger = ledger
        self._publisher = publisher
        self._on_open = on_open
        self._on_event = on_event
        self._on_close = on_close
        self._opened = asyncio.Event()
        self._closed = asyncio.Event()
        self._closing = False

        raw.on("open", self._handle_open)
        raw.on("message", self._handle_message)
        raw.on("close", self._handle_close)

        if raw.readyState == "open":
            self._handle_open()

    @property
    def is_open(self) -> bool:
        """Whether the underlying channel is open for sending."""
        return self._raw.readyState == "open" and not self._closing

    async def wait_open(self, timeout: float) -> None:
        """
        Wait for the channel to report open.

        Raises:
            TransportError: If the channel closes before opening.
            ChannelOpenTimeoutError: If the channel is not open within timeout.
        """
        opened = asyncio.ensure_future(self._opened.wait())
        closed = asyncio.ensure_future(self._closed.wait())
        try:
            await asyncio.wait(
                {opened, closed},
                timeout=timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            opened.cancel()
            closed.cancel()

        if self._opened.is_set():
            return
        if self._closed.is_set():
            raise TransportError("Data channel closed before opening")
        raise ChannelOpenTimeoutError(
            f"Data channel did not open within {timeout:.0f}s"
        )

    def send(self, message: OutboundEvent) -> Optional[RealtimeEvent]:
        """
        Send one event to the remote peer.

        Assigns a client UUID if the event has no id, transmits it, then
        assigns the display timestamp and records it in the ledger. When
        the channel is not open the event is dropped and an error is
        reported; it is never queued or retried.

        Args:
            message: Event model or plain dict with at least a `type`.

        Returns:
            The recorded event, or None if it was dropped.
        """
        event = (
            message
            if isinstance(message, RealtimeEvent)
            else RealtimeEvent.model_validate(dict(message))
        )

        if not self.is_open:
            logger.error(
                "Failed to send message - no data channel available: %s", event.type
            )
            self._publisher.publish_error(
                f"Failed to send {event.type}: no data channel available"
            )
            return None

        if not event.event_id:
            event.event_id = str(uuid.uuid4())

        self._raw.send(event.to_wire())
        event.stamp()
        self._ledger.append(event)
        self._publisher.publish_event(event)
        logger.debug("Sent %s (%s)", event.type, event.event_id)
        return event

    def close(self) -> None:
        """Close the underlying channel. Safe to call more than once."""
        if self._closing:
            return
        self._closing = True
        self._closed.set()
        self._raw.close()

    def _handle_open(self) -> None:
        if self._opened.is_set():
            return
        self._opened.set()
        logger.info("Data channel open")
        if self._on_open is not None:
            self._on_open(self)

    def _handle_message(self, data: Union[str, bytes]) -> None:
        if isinstance(data, bytes):
            data = data.decode("utf-8", errors="replace")
        try:
            event = RealtimeEvent.model_validate_json(data)
        except ValidationError as exc:
            logger.error("Dropping malformed inbound message: %s", exc)
            self._publisher.publish_error("Dropped malformed inbound message")
            return

        event.stamp()
        self._ledger.append(event)
        self._publisher.publish_event(event)
        logger.debug("Received %s (%s)", event.type, event.event_id)
        if self._on_event is not None:
            self._on_event(event)

    def _handle_close(self) -> None:
        was_closing = self._closing
        self._closing = True
        self._closed.set()
        logger.info("Data channel closed")
        if not was_closing and self._on_close is not None:
            self._on_close(self)
