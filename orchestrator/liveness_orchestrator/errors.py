"""Error taxonomy for a verification attempt."""
from __future__ import annotations

from typing import Optional


class AttemptError(RuntimeError):
    """Base class for attempt failures; ``user_message`` is safe to show on screen."""

    default_user_message = "Please try again"
    fatal = True

    def __init__(self, user_message: Optional[str] = None, *, log_message: Optional[str] = None) -> None:
        user_message = user_message or self.default_user_message
        super().__init__(log_message or user_message)
        self.user_message = user_message


class SessionCreateError(AttemptError):
    default_user_message = "Could not start a verification session"


class CaptureUnavailable(AttemptError):
    default_user_message = "Camera unavailable"


class ChallengeStartError(AttemptError):
    default_user_message = "Failed to start liveness"


class SessionInvalidated(AttemptError):
    default_user_message = "Session expired. Please restart."


class TransientFrameError(AttemptError):
    """A single frame submission failed. Only fatal once it keeps recurring."""

    default_user_message = "Connection unstable. Please try again."
    fatal = False


class VerificationPipelineError(AttemptError):
    """Face search/enroll failed after liveness passed; the pass itself stands."""

    default_user_message = "Face verification failed"


class AttemptTimeout(AttemptError):
    default_user_message = "Verification timed out"


__all__ = [
    "AttemptError",
    "AttemptTimeout",
    "CaptureUnavailable",
    "ChallengeStartError",
    "SessionCreateError",
    "SessionInvalidated",
    "TransientFrameError",
    "VerificationPipelineError",
]
