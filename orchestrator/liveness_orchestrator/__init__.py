"""Liveness session orchestrator: drives a remote challenge/response liveness check."""
from .errors import (
    AttemptError,
    AttemptTimeout,
    CaptureUnavailable,
    ChallengeStartError,
    SessionCreateError,
    SessionInvalidated,
    TransientFrameError,
    VerificationPipelineError,
)
from .orchestrator import LivenessOrchestrator
from .state import AttemptEvent, AttemptPhase, EnrolledIdentity, MatchedIdentity, VerificationOutcome

__all__ = [
    "AttemptError",
    "AttemptEvent",
    "AttemptPhase",
    "AttemptTimeout",
    "CaptureUnavailable",
    "ChallengeStartError",
    "EnrolledIdentity",
    "LivenessOrchestrator",
    "MatchedIdentity",
    "SessionCreateError",
    "SessionInvalidated",
    "TransientFrameError",
    "VerificationOutcome",
    "VerificationPipelineError",
]
