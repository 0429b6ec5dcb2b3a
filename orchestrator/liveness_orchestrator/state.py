"""Shared state definitions for the liveness orchestrator."""
from __future__ import annotations

import base64
import enum
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union


class AttemptPhase(str, enum.Enum):
    """
    Attempt phases in chronological order:

    1. IDLE               - No attempt running (initial state, and after reset)
    2. STARTING           - Creating the remote session, opening the camera
    3. AWAITING_CHALLENGE - Challenge requested, no task received yet
    4. CHALLENGE_ACTIVE   - A task is being shown/spoken to the user
    5. PASSED / FAILED    - Remote terminal judgment received
    6. VERIFYING          - Face search / enroll in progress (PASSED only)
    7. COMPLETE           - Match or enrollment reported
    8. ERROR              - Fatal error; a reset or new attempt is required
    """
    IDLE = "idle"
    STARTING = "starting"
    AWAITING_CHALLENGE = "awaiting_challenge"
    CHALLENGE_ACTIVE = "challenge_active"
    PASSED = "passed"
    FAILED = "failed"
    VERIFYING = "verifying"
    COMPLETE = "complete"
    ERROR = "error"


class SessionStatus(str, enum.Enum):
    ABSENT = "absent"
    ACTIVE = "active"
    ENDED = "ended"


@dataclass
class Session:
    """Remote session handle. Only one is live per orchestrator."""

    session_id: Optional[str] = None
    status: SessionStatus = SessionStatus.ABSENT
    created_at: Optional[float] = None


@dataclass(frozen=True)
class CaptureFrame:
    """A JPEG-encoded still frame."""

    image: bytes
    timestamp: float = field(default_factory=time.time)

    def as_data_url(self) -> str:
        encoded = base64.b64encode(self.image).decode("ascii")
        return f"data:image/jpeg;base64,{encoded}"


@dataclass(frozen=True)
class ChallengeTask:
    description: str
    index: Optional[int] = None
    total: Optional[int] = None
    time_remaining: Optional[float] = None


@dataclass(frozen=True)
class VerificationOutcome:
    passed: bool
    success_rate: Optional[float] = None
    completed: Optional[int] = None
    total: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "passed": self.passed,
            "success_rate": self.success_rate,
            "completed": self.completed,
            "total": self.total,
        }


@dataclass(frozen=True)
class MatchedIdentity:
    """The reference face matched an identity already on file."""

    identity_id: str
    confidence: Optional[float] = None

    kind = "matched"

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.kind, "identity_id": self.identity_id, "confidence": self.confidence}


@dataclass(frozen=True)
class EnrolledIdentity:
    """No match was found; the reference face was enrolled as a new identity."""

    identity_id: str
    display_name: str

    kind = "enrolled"

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.kind, "identity_id": self.identity_id, "display_name": self.display_name}


EnrollmentResult = Union[MatchedIdentity, EnrolledIdentity]


@dataclass
class AttemptEvent:
    """Event payload distributed to UI clients over the local WebSocket."""

    type: str
    data: Dict[str, Any]
    phase: AttemptPhase
    error: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"type": self.type, "phase": self.phase.value, "data": self.data}
        if self.error:
            payload["error"] = self.error
        return payload


__all__ = [
    "AttemptPhase",
    "AttemptEvent",
    "CaptureFrame",
    "ChallengeTask",
    "EnrolledIdentity",
    "EnrollmentResult",
    "MatchedIdentity",
    "Session",
    "SessionStatus",
    "VerificationOutcome",
]
