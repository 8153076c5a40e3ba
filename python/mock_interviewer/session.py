"""
Interview Session.

One realtime interview connection: owns the transport, the message channel,
the event ledger, the interview stage and question index, and the delay
timers scheduled by the state machine.

Lifecycle:
    start()  credential -> local media -> data channel -> negotiation -> open
    stop()   resets to idle immediately, cancels timers, releases resources

Concurrency:
    Runs on a single asyncio event loop. Timer callbacks check the session
    generation before acting, so a callback that outlives a stop() (or a
    stop() followed by a new start()) is a no-op.

Last Grunted: 10/17/2026
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Optional

from .channel import MessageChannel, OutboundEvent
from .config import RealtimeConfig
from .errors import SessionAlreadyActiveError, TransportError
from .interview import InterviewStateMachine
from .ledger import EventLedger
from .models import InterviewStage, LogEntry, RealtimeEvent, TranscriptMessage
from .profile import InterviewProfile
from .pubsub import SessionEventPublisher
from .transport import RealtimeTransport, Transport


__all__ = ["InterviewSession"]


logger = logging.getLogger(__name__)


TransportFactory = Callable[[RealtimeConfig], Transport]


class InterviewSession:
    """
    Explicit session object for one realtime mock interview.

    Responsibilities:
        - Establish and release the realtime transport
        - Route channel events into the ledger and the state machine
        - Hold stage, question index and the mic-check-resolved flag
        - Run generation-guarded delay timers

    Example:
        >>> session = InterviewSession(config, profile)
        >>> await session.start()
        >>> session.submit_text("Hi, I am ready to start")
        >>> session.next_question()
        >>> await session.stop()
    """

    def __init__(
        self,
        config: RealtimeConfig,
        profile: InterviewProfile,
        *,
        transport_factory: Optional[TransportFactory] = None,
        publisher: Optional[SessionEventPublisher] = None,
        machine: Optional[InterviewStateMachine] = None,
    ) -> None:
        self.config = config
        self.profile = profile
        self.publisher = publisher or SessionEventPublisher()
        self.machine = machine or InterviewStateMachine(profile)
        self.ledger = EventLedger()

        self.stage = InterviewStage.IDLE
        self.question_index = 0
        self.mic_check_resolved = False
        self.channel: Optional[MessageChannel] = None

        self._transport_factory = transport_factory or RealtimeTransport
        self._transport: Optional[Transport] = None
        self._timers: set[asyncio.Task[None]] = set()
        self._generation = 0
        self._stop_task: Optional[asyncio.Task[None]] = None
        logger.debug("InterviewSession initialized (profile=%s)", profile.profile_id)

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def is_active(self) -> bool:
        """Whether a channel is open and the interview is underway."""
        return self.channel is not None and self.stage != InterviewStage.IDLE

    @property
    def pending_timers(self) -> int:
        """Number of delay timers that have not fired yet."""
        return len(self._timers)

    def technical_view(self) -> list[LogEntry]:
        """Technical event log, newest first."""
        return self.ledger.technical_view()

    def transcript_view(self) -> list[TranscriptMessage]:
        """Conversational transcript, oldest first."""
        return self.ledger.transcript_view()

    def snapshot(self) -> dict[str, Any]:
        """Render-ready summary of the session."""
        return {
            "active": self.is_active,
            "stage": self.stage.value,
            "question_index": self.question_index,
            "question_count": self.profile.question_count,
            "mic_check_resolved": self.mic_check_resolved,
            "events": len(self.ledger),
            "profile_id": self.profile.profile_id,
        }

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        """
        Establish the transport and wait for the data channel to open.

        On success the channel-open handler has already moved the session
        to mic-check. On failure every acquired resource is released, the
        session stays idle, an error notice is published and the error is
        re-raised.

        Raises:
            SessionAlreadyActiveError: If the session is not idle.
            TransportError: On credential, microphone, negotiation or
                channel-open failure.
        """
        if self.stage != InterviewStage.IDLE or self._transport is not None:
            raise SessionAlreadyActiveError()

        generation = self._generation
        transport = self._transport_factory(self.config)
        self._transport = transport
        logger.info("Starting session (model=%s)", self.config.model)

        try:
            raw_channel = await transport.prepare(on_failure=self._on_transport_failure)
            if generation != self._generation:
                await self._abandon(transport, "after local media setup")
                return
            channel = MessageChannel(
                raw_channel,
                self.ledger,
                self.publisher,
                on_open=lambda opened: self._on_channel_open(opened, generation),
                on_event=self._on_event,
                on_close=lambda closed: self._on_channel_closed(closed, generation),
            )
            await transport.negotiate()
            if generation != self._generation:
                await self._abandon(transport, "after negotiation")
                return
            await channel.wait_open(self.config.channel_open_timeout_seconds)
        except Exception as exc:
            if generation != self._generation:
                await self._abandon(transport, str(exc))
                return
            logger.error("Session start failed: %s", exc)
            self.publisher.publish_error(f"Session start failed: {exc}")
            await self.stop()
            if isinstance(exc, TransportError):
                raise
            raise TransportError(f"Realtime setup failed: {exc}") from exc

    async def _abandon(self, transport: Transport, reason: str) -> None:
        """Release a transport whose start() was overtaken by stop()."""
        logger.info("Session start abandoned after stop: %s", reason)
        await transport.close()

    async def stop(self) -> None:
        """
        Stop the session from any stage. Idempotent.

        State is reset to idle before any resource is released, so timers
        and callbacks observing the session during teardown see it stopped.
        """
        self._generation += 1
        for task in list(self._timers):
            task.cancel()
        self._timers.clear()

        channel, transport = self.channel, self._transport
        was_idle = self.stage == InterviewStage.IDLE and transport is None
        self.channel = None
        self._transport = None
        self.mic_check_resolved = False
        self.transition(InterviewStage.IDLE, 0)

        if channel is not None:
            channel.close()
        if transport is not None:
            await transport.close()

        if not was_idle:
            logger.info("Session stopped")
            self.publisher.publish_system("Session stopped")

    # -------------------------------------------------------------------------
    # User actions
    # -------------------------------------------------------------------------

    def submit_text(self, text: str) -> bool:
        """Send typed user text. Returns False if nothing was sent."""
        return self.machine.submit_text(self, text)

    def next_question(self) -> None:
        """Advance to the next question (finishes after the last one)."""
        self.machine.advance(self)

    def finish_interview(self) -> None:
        """Finish the interview at the last question."""
        self.machine.finish(self)

    # -------------------------------------------------------------------------
    # Used by the state machine
    # -------------------------------------------------------------------------

    def send(self, message: OutboundEvent) -> Optional[RealtimeEvent]:
        """
        Send one event over the open channel.

        Returns:
            The recorded event, or None if there is no open channel (the
            failure is logged and published, never raised).
        """
        if self.channel is None:
            event_type = (
                message.type if isinstance(message, RealtimeEvent) else message.get("type")
            )
            logger.error("Failed to send message - no data channel available: %s", event_type)
            self.publisher.publish_error(
                f"Failed to send {event_type}: no data channel available"
            )
            return None
        return self.channel.send(message)

    def transition(self, stage: InterviewStage, question_index: int) -> None:
        """Set stage and question index, publishing the change."""
        if stage == self.stage and question_index == self.question_index:
            return
        logger.info(
            "Interview stage %s -> %s (question %d)",
            self.stage.value,
            stage.value,
            question_index,
        )
        self.stage = stage
        self.question_index = question_index
        self.publisher.publish_stage(stage.value, question_index)

    def call_later(self, delay: float, callback: Callable[[], None]) -> asyncio.Task[None]:
        """
        Run callback after delay seconds unless the session is stopped first.

        Returns:
            The timer task.
        """
        generation = self._generation

        async def _fire() -> None:
            await asyncio.sleep(delay)
            if generation != self._generation:
                logger.debug("Discarding stale timer callback")
                return
            callback()

        task = asyncio.create_task(_fire())
        self._timers.add(task)
        task.add_done_callback(self._timers.discard)
        return task

    # -------------------------------------------------------------------------
    # Channel/transport callbacks
    # -------------------------------------------------------------------------

    def _on_channel_open(self, channel: MessageChannel, generation: int) -> None:
        if generation != self._generation:
            return
        self.channel = channel
        self.ledger.reset()
        self.publisher.publish_system("Channel open")
        self.machine.on_channel_open(self)

    def _on_event(self, event: RealtimeEvent) -> None:
        self.machine.observe(self, event)

    def _on_channel_closed(self, channel: MessageChannel, generation: int) -> None:
        # Never opened: start() reports the failure itself.
        if generation != self._generation or self.channel is None:
            return
        logger.error("Data channel closed unexpectedly; stopping session")
        self.publisher.publish_error("Connection lost; session stopped")
        self._schedule_stop()

    def _on_transport_failure(self, state: str) -> None:
        if self._transport is None:
            return
        logger.error("Realtime transport failed (%s); stopping session", state)
        self.publisher.publish_error(f"Connection {state}; session stopped")
        self._schedule_stop()

    def _schedule_stop(self) -> None:
        if self._stop_task is not None and not self._stop_task.done():
            return
        self._stop_task = asyncio.get_running_loop().create_task(self.stop())
