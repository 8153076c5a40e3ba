"""
Realtime Mock Interviewer Package.

Runs a voice-and-text mock interview against a realtime conversational model
over WebRTC: microphone check, ten interview questions, final evaluation.

Components:
    - InterviewSession: Owns the transport, channel, ledger and interview state
    - RealtimeTransport: aiortc peer connection + SDP exchange over httpx
    - MessageChannel: Ordered JSON event channel bound to the ledger
    - EventLedger: Raw event record with technical and transcript views
    - InterviewStateMachine: Stage transitions and instruction prompts
    - SessionEventPublisher: Real-time notice feed for renderers
    - Models: Pydantic wire event model and rendered entries

Example:
    >>> from mock_interviewer import InterviewSession, load_profile, load_realtime_config
    >>>
    >>> profile, _ = load_profile()
    >>> session = InterviewSession(load_realtime_config(), profile)
    >>> await session.start()
    >>> session.submit_text("Hi, I am ready to start")
    >>> for message in session.transcript_view():
    ...     print(message.role, message.content)

Last Grunted: 10/18/2026
"""

from .models import (
    InterviewStage,
    LogEntry,
    RealtimeEvent,
    TranscriptMessage,
)

from .errors import (
    ChannelOpenTimeoutError,
    CredentialError,
    InterviewError,
    InvalidStageError,
    MicrophoneError,
    NegotiationError,
    SessionAlreadyActiveError,
    TransportError,
)

from .config import RealtimeConfig, load_realtime_config

from .profile import InterviewProfile, load_profile

from .ledger import EventLedger

from .channel import MessageChannel

from .transport import CredentialProvider, RealtimeTransport

from .interview import (
    InterviewStateMachine,
    MicCheckMatcher,
    MicCheckOutcome,
)

from .pubsub import (
    NoticeType,
    SessionEventPublisher,
    SessionNotice,
)

from .session import InterviewSession


__all__ = [
    # Models
    "InterviewStage",
    "LogEntry",
    "RealtimeEvent",
    "TranscriptMessage",
    # Errors
    "ChannelOpenTimeoutError",
    "CredentialError",
    "InterviewError",
    "InvalidStageError",
    "MicrophoneError",
    "NegotiationError",
    "SessionAlreadyActiveError",
    "TransportError",
    # Configuration
    "RealtimeConfig",
    "load_realtime_config",
    "InterviewProfile",
    "load_profile",
    # Core
    "EventLedger",
    "MessageChannel",
    "CredentialProvider",
    "RealtimeTransport",
    "InterviewStateMachine",
    "MicCheckMatcher",
    "MicCheckOutcome",
    "InterviewSession",
    # Pub/Sub
    "NoticeType",
    "SessionEventPublisher",
    "SessionNotice",
]

__version__ = "0.1.0"
