"""Exception hierarchy for the realtime mock interviewer."""

from __future__ import annotations


class InterviewError(Exception):
    """Base exception for interview session errors."""


class TransportError(InterviewError):
    """Raised when the realtime transport cannot be established."""


class CredentialError(TransportError):
    """Raised when the short-lived credential cannot be obtained."""


class MicrophoneError(TransportError):
    """Raised when microphone capture cannot be acquired."""


class NegotiationError(TransportError):
    """Raised when the remote endpoint rejects the offer or answers with garbage."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class ChannelOpenTimeoutError(TransportError):
    """Raised when the data channel does not open in time after negotiation."""


class SessionAlreadyActiveError(InterviewError):
    """Raised when starting a session that is not idle."""

    def __init__(self, message: str = "Session already active. Stop it first.") -> None:
        super().__init__(message)


class InvalidStageError(InterviewError):
    """Raised when a user action is not legal in the current interview stage."""

    def __init__(self, action: str, stage: str) -> None:
        self.action = action
        self.stage = stage
        super().__init__(f"Cannot {action} while interview stage is '{stage}'")
