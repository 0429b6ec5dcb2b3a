"""
Unit and property tests for TaskStateMachine and the mirroring transform
"""
import string

import pytest
from hypothesis import given, settings, strategies as st

from liveness_orchestrator.interpreter import Signal, SignalKind
from liveness_orchestrator.state import ChallengeTask, VerificationOutcome
from liveness_orchestrator.task_state import (
    TaskState,
    TaskStateMachine,
    TransitionKind,
    mirror_direction,
    voice_prompt_for,
)


def challenge(description, time_remaining=None, index=None):
    return Signal(
        SignalKind.CHALLENGE_ACTIVE,
        face_detected=True,
        task=ChallengeTask(description=description, time_remaining=time_remaining, index=index, total=3),
    )


def terminal(passed):
    return Signal(SignalKind.TERMINAL, face_detected=True, outcome=VerificationOutcome(passed=passed))


NO_FACE = Signal(SignalKind.NO_FACE, face_detected=False)
NO_CHANGE = Signal(SignalKind.NO_CHANGE, face_detected=True)


@pytest.fixture
def machine():
    m = TaskStateMachine()
    m.begin()
    return m


class TestTransitions:
    """State transitions"""

    def test_starts_idle(self):
        assert TaskStateMachine().state == TaskState.IDLE

    def test_signals_ignored_while_idle(self):
        m = TaskStateMachine()

        transition = m.apply(challenge("Look Left"))

        assert transition.kind == TransitionKind.NONE
        assert m.state == TaskState.IDLE

    def test_begin_twice_is_rejected(self, machine):
        with pytest.raises(RuntimeError):
            machine.begin()

    def test_no_face_keeps_awaiting(self, machine):
        transition = machine.apply(NO_FACE)

        assert transition.kind == TransitionKind.NONE
        assert machine.state == TaskState.AWAITING_CHALLENGE

    def test_first_challenge(self, machine):
        transition = machine.apply(challenge("Look Left", 5))

        assert transition.kind == TransitionKind.CHALLENGE_CHANGED
        assert machine.state == TaskState.CHALLENGE_ACTIVE
        assert transition.display_text == "Look Right"
        assert transition.voice_prompt == "Please look right"
        assert machine.task.description == "Look Left"

    def test_same_description_does_not_reprompt(self, machine):
        machine.apply(challenge("Blink", 5))

        transition = machine.apply(challenge("Blink", 4))

        assert transition.kind == TransitionKind.CHALLENGE_UPDATED
        assert transition.voice_prompt is None
        assert machine.task.time_remaining == 4

    def test_new_description_prompts_again(self, machine):
        machine.apply(challenge("Look Left", 5))

        transition = machine.apply(challenge("Look Down", 5))

        assert transition.kind == TransitionKind.CHALLENGE_CHANGED
        assert transition.voice_prompt == "Please look down"

    def test_time_remaining_never_increases_for_same_task(self, machine):
        machine.apply(challenge("Blink", 3))

        transition = machine.apply(challenge("Blink", 4.5))

        assert transition.task.time_remaining == 3
        assert machine.task.time_remaining == 3

    def test_passed(self, machine):
        machine.apply(challenge("Blink", 3))

        transition = machine.apply(terminal(True))

        assert transition.kind == TransitionKind.PASSED
        assert machine.state == TaskState.PASSED
        assert machine.outcome.passed is True
        assert machine.task is None

    def test_failed(self, machine):
        transition = machine.apply(terminal(False))

        assert transition.kind == TransitionKind.FAILED
        assert machine.state == TaskState.FAILED

    def test_terminal_is_sticky(self, machine):
        machine.apply(terminal(True))

        assert machine.apply(challenge("Look Left")).kind == TransitionKind.NONE
        assert machine.apply(terminal(False)).kind == TransitionKind.NONE
        assert machine.state == TaskState.PASSED

    def test_reset_clears_everything(self, machine):
        machine.apply(challenge("Look Left", 5))
        machine.apply(terminal(True))

        machine.reset()

        assert machine.state == TaskState.IDLE
        assert machine.task is None
        assert machine.outcome is None
        assert machine.last_description is None

    def test_reset_allows_same_prompt_again(self, machine):
        machine.apply(challenge("Look Left", 5))
        machine.reset()
        machine.begin()

        transition = machine.apply(challenge("Look Left", 5))

        assert transition.kind == TransitionKind.CHALLENGE_CHANGED


signals = st.one_of(
    st.sampled_from(["Look Left", "Look Right", "Blink", "Close Eyes"]).map(challenge),
    st.booleans().map(terminal),
    st.just(NO_FACE),
    st.just(NO_CHANGE),
)


class TestTerminalStickinessProperty:
    """Once terminal, no sequence of responses leaves the terminal state"""

    @given(before=st.lists(signals, max_size=10), after=st.lists(signals, max_size=20), passed=st.booleans())
    @settings(max_examples=200)
    def test_terminal_never_regresses(self, before, after, passed):
        m = TaskStateMachine()
        m.begin()
        for signal in before:
            m.apply(signal)
        if m.state.is_terminal:
            expected = m.state
        else:
            m.apply(terminal(passed))
            expected = TaskState.PASSED if passed else TaskState.FAILED

        for signal in after:
            transition = m.apply(signal)
            assert transition.kind == TransitionKind.NONE

        assert m.state == expected

    @given(sequence=st.lists(signals, min_size=1, max_size=30))
    @settings(max_examples=200)
    def test_at_most_one_terminal_transition(self, sequence):
        m = TaskStateMachine()
        m.begin()

        kinds = [m.apply(signal).kind for signal in sequence]

        assert sum(k in (TransitionKind.PASSED, TransitionKind.FAILED) for k in kinds) <= 1


class TestMirroring:
    """Left/right swap for the mirrored preview"""

    def test_look_left_becomes_look_right(self):
        assert mirror_direction("Look Left") == "Look Right"

    def test_look_right_becomes_look_left(self):
        assert mirror_direction("Look Right") == "Look Left"

    def test_case_is_preserved(self):
        assert mirror_direction("turn LEFT") == "turn RIGHT"
        assert mirror_direction("look right") == "look left"

    def test_partial_words_untouched(self):
        assert mirror_direction("Leftover Brightness") == "Leftover Brightness"

    @given(st.sampled_from(["Look Left", "Look Right"]))
    def test_involution_on_directions(self, text):
        assert mirror_direction(mirror_direction(text)) == text
        assert mirror_direction(text) != text

    @given(st.text(alphabet=string.printable))
    @settings(max_examples=300)
    def test_identity_without_direction_words(self, text):
        lowered = text.lower()
        if "left" in lowered or "right" in lowered:
            return
        assert mirror_direction(text) == text


class TestVoicePrompts:
    """Spoken prompt derivation"""

    @pytest.mark.parametrize("display, expected", [
        ("Look Right", "Please look right"),
        ("Look Left", "Please look left"),
        ("Look Down", "Please look down"),
        ("Close Eyes", "Please close your eyes"),
        ("Blink twice", "Please blink"),
        ("Smile", "Please smile"),
        ("Open Mouth", "Please open your mouth"),
        ("Nod your head", "Nod your head"),
    ])
    def test_prompt(self, display, expected):
        assert voice_prompt_for(display) == expected
