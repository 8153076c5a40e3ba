"""
Interview State Machine.

Drives one session through mic-check -> interviewing -> completed and
composes the instruction payloads sent to the remote model at each stage.

The mic check has two exits that can race:
    - the user submits any non-empty text while in mic-check
    - the model's completed reply matches a recognition phrase

Both go through resolve_mic_check(), which is guarded by the session's
mic_check_resolved flag, so the transition is scheduled at most once.

Last Grunted: 10/17/2026
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional

from .errors import InvalidStageError
from .models import InterviewStage, RealtimeEvent, extract_response_content
from .profile import InterviewProfile, MicCheckPhrases

if TYPE_CHECKING:
    from .session import InterviewSession


__all__ = [
    "InterviewStateMachine",
    "MicCheckMatcher",
    "MicCheckOutcome",
    "build_instruction_event",
    "build_text_message_event",
]


logger = logging.getLogger(__name__)


class MicCheckOutcome(str, Enum):
    """Why a model reply ended the mic check."""

    CONFIRMED = "confirmed"
    CORRECTIVE = "corrective"


class MicCheckMatcher:
    """
    Case-insensitive substring matcher over the mic-check phrase lists.

    Confusion phrases are checked first: a reply like "Great! How can I
    assist you?" means the model dropped the mic-check framing, which is
    logged as a corrective transition.

    Example:
        >>> matcher = MicCheckMatcher(profile.mic_check_phrases)
        >>> matcher.match("I can hear you clearly")
        <MicCheckOutcome.CONFIRMED: 'confirmed'>
    """

    def __init__(self, phrases: MicCheckPhrases) -> None:
        self.confirmation = tuple(phrases.confirmation)
        self.confusion = tuple(phrases.confusion)

    def match(self, text: str) -> Optional[MicCheckOutcome]:
        """Classify model text, or return None if no phrase matches."""
        if not text:
            return None
        lowered = text.lower()
        if any(phrase in lowered for phrase in self.confusion):
            return MicCheckOutcome.CORRECTIVE
        if any(phrase in lowered for phrase in self.confirmation):
            return MicCheckOutcome.CONFIRMED
        return None


def build_instruction_event(instructions: str) -> dict[str, Any]:
    """Build a `response.create` carrying stage instructions."""
    return {
        "type": "response.create",
        "response": {"instructions": instructions},
    }


def build_text_message_event(text: str) -> dict[str, Any]:
    """Build the `conversation.item.create` for a typed user message."""
    return {
        "type": "conversation.item.create",
        "item": {
            "type": "message",
            "role": "user",
            "content": [{"type": "input_text", "text": text}],
        },
    }


class InterviewStateMachine:
    """
    Stage logic for an InterviewSession.

    The machine holds only configuration. All mutable state (stage,
    question index, mic-check flag) lives on the session passed to each
    operation, and every outbound message goes through session.send().
    """

    def __init__(
        self,
        profile: InterviewProfile,
        matcher: Optional[MicCheckMatcher] = None,
    ) -> None:
        self.profile = profile
        self.matcher = matcher or MicCheckMatcher(profile.mic_check_phrases)

    # -------------------------------------------------------------------------
    # Channel-driven transitions
    # -------------------------------------------------------------------------

    def on_channel_open(self, session: "InterviewSession") -> None:
        """Enter mic-check and schedule the automatic mic-check prompt."""
        session.mic_check_resolved = False
        session.transition(InterviewStage.MIC_CHECK, 0)
        session.call_later(
            self.profile.timing.mic_check_prompt_delay_seconds,
            lambda: self._send_mic_check_prompt(session),
        )

    def observe(self, session: "InterviewSession", event: RealtimeEvent) -> None:
        """Interpret one inbound event."""
        if session.stage != InterviewStage.MIC_CHECK or event.type != "response.done":
            return

        content = extract_response_content(event)
        logger.debug("Mic check response: %s", content)
        outcome = self.matcher.match(content)
        if outcome is None:
            return

        if outcome is MicCheckOutcome.CORRECTIVE:
            logger.warning("Model left the mic-check framing; forcing interview start")
        self.resolve_mic_check(
            session,
            source=f"model:{outcome.value}",
            delay=self.profile.timing.model_resolution_delay_seconds,
        )

    # -------------------------------------------------------------------------
    # User actions
    # -------------------------------------------------------------------------

    def submit_text(self, session: "InterviewSession", text: str) -> bool:
        """
        Send typed user text followed by a response request.

        Any non-empty text typed during mic-check also resolves the mic
        check.

        Returns:
            True if the text was sent.
        """
        text = (text or "").strip()
        if not text:
            return False

        if session.send(build_text_message_event(text)) is None:
            return False
        session.send({"type": "response.create"})

        if session.stage == InterviewStage.MIC_CHECK:
            self.resolve_mic_check(
                session,
                source="user",
                delay=self.profile.timing.user_resolution_delay_seconds,
            )
        return True

    def resolve_mic_check(
        self,
        session: "InterviewSession",
        source: str,
        delay: float,
    ) -> bool:
        """
        Schedule the mic-check -> interviewing transition once per session.

        Returns:
            True if this call scheduled the transition, False if the mic
            check was already resolved or the session left mic-check.
        """
        if session.stage != InterviewStage.MIC_CHECK or session.mic_check_resolved:
            return False

        session.mic_check_resolved = True
        logger.info("Mic check resolved by %s; interview starts in %.1fs", source, delay)
        session.call_later(delay, lambda: self._begin_interview(session))
        return True

    def advance(self, session: "InterviewSession") -> None:
        """
        Move to the next question, or finish at the last one.

        Raises:
            InvalidStageError: If the interview is not in progress.
        """
        if session.stage != InterviewStage.INTERVIEWING:
            raise InvalidStageError("advance to the next question", session.stage.value)

        if session.question_index >= self.profile.question_count:
            self.finish(session)
            return

        next_index = session.question_index + 1
        session.transition(InterviewStage.INTERVIEWING, next_index)
        session.send(build_instruction_event(self.profile.render_next_question(next_index)))

    def finish(self, session: "InterviewSession") -> None:
        """
        Complete the interview and request the final evaluation.

        Raises:
            InvalidStageError: If not interviewing or not on the last question.
        """
        if session.stage != InterviewStage.INTERVIEWING:
            raise InvalidStageError("finish the interview", session.stage.value)
        if session.question_index != self.profile.question_count:
            raise InvalidStageError(
                f"finish before question {self.profile.question_count}",
                session.stage.value,
            )

        session.transition(InterviewStage.COMPLETED, session.question_index)
        session.send(build_instruction_event(self.profile.render_evaluation()))

    # -------------------------------------------------------------------------
    # Timer callbacks
    # -------------------------------------------------------------------------

    def _send_mic_check_prompt(self, session: "InterviewSession") -> None:
        session.send(build_instruction_event(self.profile.prompts.mic_check))

    def _begin_interview(self, session: "InterviewSession") -> None:
        if session.stage != InterviewStage.MIC_CHECK:
            return
        session.transition(InterviewStage.INTERVIEWING, 1)
        session.send(build_instruction_event(self.profile.render_first_question()))
