"""Maps raw verification responses to normalized progress signals."""
from __future__ import annotations

import enum
import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from .state import ChallengeTask, VerificationOutcome

logger = logging.getLogger(__name__)

_INVALID_SESSION_RE = re.compile(
    r"(invalid|unknown|expired)\s+session|session(_id)?\s+(not\s+found|expired|invalid)|invalid\s+session_id",
    re.IGNORECASE,
)


class SignalKind(str, enum.Enum):
    NO_FACE = "no_face"
    CHALLENGE_ACTIVE = "challenge_active"
    TERMINAL = "terminal"
    TRANSIENT_ERROR = "transient_error"
    SESSION_INVALID = "session_invalid"
    NO_CHANGE = "no_change"


@dataclass(frozen=True)
class Signal:
    kind: SignalKind
    face_detected: Optional[bool] = None
    task: Optional[ChallengeTask] = None
    outcome: Optional[VerificationOutcome] = None
    error: Optional[str] = None


class ResultInterpreter:
    """Stateless classifier; each response is judged on its own.

    Priority: invalid session, terminal judgment, active challenge,
    explicit no-face, then no change.
    """

    def classify(self, response: Optional[Mapping[str, Any]]) -> Signal:
        if not isinstance(response, Mapping):
            return Signal(SignalKind.TRANSIENT_ERROR, error="empty or malformed response")

        error = response.get("error")
        if error:
            message = str(error)
            if _INVALID_SESSION_RE.search(message):
                return Signal(SignalKind.SESSION_INVALID, error=message)
            return Signal(SignalKind.TRANSIENT_ERROR, error=message)

        face_detected = response.get("face_detected")
        if face_detected is not None:
            face_detected = bool(face_detected)

        status = _task_status(response)
        if status is not None:
            result = status.get("result")
            if not status.get("active") and isinstance(result, Mapping):
                return Signal(SignalKind.TERMINAL, face_detected=face_detected, outcome=_outcome(status, result))

            current = status.get("current_task")
            if status.get("active") and isinstance(current, Mapping) and current.get("description"):
                return Signal(SignalKind.CHALLENGE_ACTIVE, face_detected=face_detected, task=_task(current))

        if face_detected is False:
            return Signal(SignalKind.NO_FACE, face_detected=False)
        return Signal(SignalKind.NO_CHANGE, face_detected=face_detected)


def _task_status(response: Mapping[str, Any]) -> Optional[Mapping[str, Any]]:
    # Frame responses embed the status; the status endpoint returns it at top level
    status = response.get("task_session")
    if isinstance(status, Mapping):
        return status
    if "active" in response:
        return response
    return None


def _task(current: Mapping[str, Any]) -> ChallengeTask:
    return ChallengeTask(
        description=str(current["description"]),
        index=_as_int(current.get("index")),
        total=_as_int(current.get("total")),
        time_remaining=_as_float(current.get("time_remaining")),
    )


def _outcome(status: Mapping[str, Any], result: Mapping[str, Any]) -> VerificationOutcome:
    passed = result.get("final_result")
    if passed is None:
        passed = result.get("passed", False)
    completed = result.get("completed", status.get("completed_tasks"))
    total = result.get("total", status.get("total_tasks"))
    return VerificationOutcome(
        passed=bool(passed),
        success_rate=_as_float(result.get("success_rate")),
        completed=_as_int(completed),
        total=_as_int(total),
    )


def _as_int(value: Any) -> Optional[int]:
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError, OverflowError):
        logger.debug("Ignoring non-integer field value %r", value)
        return None


def _as_float(value: Any) -> Optional[float]:
    try:
        number = float(value) if value is not None else None
    except (TypeError, ValueError):
        logger.debug("Ignoring non-numeric field value %r", value)
        return None
    if number is not None and not math.isfinite(number):
        logger.debug("Ignoring non-finite field value %r", value)
        return None
    return number


__all__ = ["ResultInterpreter", "Signal", "SignalKind"]
