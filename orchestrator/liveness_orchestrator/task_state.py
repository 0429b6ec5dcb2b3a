"""Challenge progress tracking for one attempt."""
from __future__ import annotations

import enum
import logging
import re
from dataclasses import dataclass, replace
from typing import Optional

from .interpreter import Signal, SignalKind
from .state import ChallengeTask, VerificationOutcome

logger = logging.getLogger(__name__)

_DIRECTION_RE = re.compile(r"\b(left|right)\b", re.IGNORECASE | re.ASCII)
_SWAP = {"left": "right", "right": "left"}

_VOICE_TEMPLATES = (
    (re.compile(r"\blook\s+(left|right|up|down)\b", re.IGNORECASE), "Please look {0}"),
    (re.compile(r"\bturn\s+(left|right)\b", re.IGNORECASE), "Please turn {0}"),
    (re.compile(r"\bclose\s+(your\s+)?eyes\b", re.IGNORECASE), "Please close your eyes"),
    (re.compile(r"\bopen\s+(your\s+)?mouth\b", re.IGNORECASE), "Please open your mouth"),
    (re.compile(r"\bblink\b", re.IGNORECASE), "Please blink"),
    (re.compile(r"\bsmile\b", re.IGNORECASE), "Please smile"),
)


def mirror_direction(text: str) -> str:
    """Swap left/right so instructions match the mirrored preview."""

    def _swap(match: "re.Match[str]") -> str:
        word = match.group(0)
        swapped = _SWAP[word.lower()]
        if word.isupper():
            return swapped.upper()
        if word[0].isupper():
            return swapped.capitalize()
        return swapped

    return _DIRECTION_RE.sub(_swap, text)


def voice_prompt_for(display_text: str) -> str:
    for pattern, template in _VOICE_TEMPLATES:
        match = pattern.search(display_text)
        if match:
            return template.format(*(g.lower() for g in match.groups() if g))
    return display_text


class TaskState(str, enum.Enum):
    IDLE = "idle"
    AWAITING_CHALLENGE = "awaiting_challenge"
    CHALLENGE_ACTIVE = "challenge_active"
    PASSED = "passed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskState.PASSED, TaskState.FAILED)


class TransitionKind(str, enum.Enum):
    NONE = "none"
    CHALLENGE_CHANGED = "challenge_changed"
    CHALLENGE_UPDATED = "challenge_updated"
    PASSED = "passed"
    FAILED = "failed"


@dataclass(frozen=True)
class Transition:
    kind: TransitionKind
    state: TaskState
    task: Optional[ChallengeTask] = None
    display_text: Optional[str] = None
    voice_prompt: Optional[str] = None
    outcome: Optional[VerificationOutcome] = None


class TaskStateMachine:
    """Idle -> AwaitingChallenge -> ChallengeActive -> Passed | Failed.

    Terminal states are sticky until ``reset()``. The last seen challenge
    description is the de-dup key for voice prompts; it is shared by every
    observation path (frame responses and status polls alike).
    """

    def __init__(self) -> None:
        self._state = TaskState.IDLE
        self._task: Optional[ChallengeTask] = None
        self._outcome: Optional[VerificationOutcome] = None
        self._last_description: Optional[str] = None

    @property
    def state(self) -> TaskState:
        return self._state

    @property
    def task(self) -> Optional[ChallengeTask]:
        return self._task

    @property
    def outcome(self) -> Optional[VerificationOutcome]:
        return self._outcome

    @property
    def last_description(self) -> Optional[str]:
        return self._last_description

    def begin(self) -> None:
        if self._state is not TaskState.IDLE:
            raise RuntimeError(f"cannot begin challenge from {self._state.value}")
        self._state = TaskState.AWAITING_CHALLENGE

    def reset(self) -> None:
        self._state = TaskState.IDLE
        self._task = None
        self._outcome = None
        self._last_description = None

    def apply(self, signal: Signal) -> Transition:
        if self._state is TaskState.IDLE or self._state.is_terminal:
            return self._none()

        if signal.kind is SignalKind.TERMINAL and signal.outcome is not None:
            self._outcome = signal.outcome
            self._task = None
            self._state = TaskState.PASSED if signal.outcome.passed else TaskState.FAILED
            logger.info("🏁 [TASK] Terminal judgment: %s", self._state.value)
            kind = TransitionKind.PASSED if signal.outcome.passed else TransitionKind.FAILED
            return Transition(kind=kind, state=self._state, outcome=self._outcome)

        if signal.kind is SignalKind.CHALLENGE_ACTIVE and signal.task is not None:
            return self._apply_task(signal.task)

        return self._none()

    def _apply_task(self, task: ChallengeTask) -> Transition:
        display_text = mirror_direction(task.description)
        if task.description == self._last_description and self._task is not None:
            if (
                task.time_remaining is not None
                and self._task.time_remaining is not None
                and task.time_remaining > self._task.time_remaining
            ):
                task = replace(task, time_remaining=self._task.time_remaining)
            self._task = task
            self._state = TaskState.CHALLENGE_ACTIVE
            return Transition(
                kind=TransitionKind.CHALLENGE_UPDATED,
                state=self._state,
                task=task,
                display_text=display_text,
            )

        self._task = task
        self._last_description = task.description
        self._state = TaskState.CHALLENGE_ACTIVE
        logger.info("📋 [TASK] %s (shown as %r, %ss left)", task.description, display_text, task.time_remaining)
        return Transition(
            kind=TransitionKind.CHALLENGE_CHANGED,
            state=self._state,
            task=task,
            display_text=display_text,
            voice_prompt=voice_prompt_for(display_text),
        )

    def _none(self) -> Transition:
        return Transition(kind=TransitionKind.NONE, state=self._state, task=self._task, outcome=self._outcome)


__all__ = [
    "TaskState",
    "TaskStateMachine",
    "Transition",
    "TransitionKind",
    "mirror_direction",
    "voice_prompt_for",
]
