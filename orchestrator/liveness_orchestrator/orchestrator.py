"""Attempt orchestration: session, capture loop, challenge tracking, completion."""
from __future__ import annotations

import asyncio
from asyncio import QueueEmpty
import logging
import math
import time
from typing import Any, Dict, List, Optional

from .backend.http_client import VerificationHttpClient
from .completion import CompletionHandler
from .config import Settings, get_settings
from .errors import (
    AttemptError,
    AttemptTimeout,
    ChallengeStartError,
    SessionInvalidated,
    TransientFrameError,
    VerificationPipelineError,
)
from .interpreter import ResultInterpreter, SignalKind
from .scheduler import CaptureScheduler
from .sensors.base import CaptureSource
from .session_manager import SessionManager
from .state import (
    AttemptEvent,
    AttemptPhase,
    CaptureFrame,
    EnrollmentResult,
    MatchedIdentity,
    VerificationOutcome,
)
from .task_state import TaskStateMachine, Transition, TransitionKind
from .voice import VoiceFeedbackCoordinator

logger = logging.getLogger(__name__)

VOICE_PASSED = "Liveness verification successful"
VOICE_FAILED = "Liveness verification failed"
VOICE_MATCHED = "Face already exists"
VOICE_ENROLLED = "Face registered successfully"


class LivenessOrchestrator:
    """Coordinates the remote session, capture loop, task tracking and UI updates.

    Entry points are ``start_attempt()``, ``reset_attempt()`` and
    ``teardown()``; presentation layers follow progress through
    ``register_ui()`` queues.
    """

    def __init__(
        self,
        *,
        settings: Optional[Settings] = None,
        capture_source: Optional[CaptureSource] = None,
        http_client: Optional[VerificationHttpClient] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._http_client = http_client or VerificationHttpClient(self.settings)
        if capture_source is None:
            from .sensors.webcam_service import WebcamCaptureSource

            capture_source = WebcamCaptureSource(self.settings.capture, self.settings.performance)
        self._capture = capture_source

        self._sessions = SessionManager(self._http_client)
        self._interpreter = ResultInterpreter()
        self._tasks = TaskStateMachine()
        self._completion = CompletionHandler(self._http_client, self.settings.enrollment)
        self._voice = VoiceFeedbackCoordinator(self._emit_voice)
        self._scheduler = CaptureScheduler(
            self._capture,
            self._submit_frame,
            min_interval=self.settings.scheduler.min_submit_interval_seconds,
            tick_interval=self.settings.scheduler.tick_interval_seconds,
            max_consecutive_errors=self.settings.scheduler.max_consecutive_frame_errors,
            jpeg_quality=self.settings.capture.frame_jpeg_quality,
            on_fatal=self._on_scheduler_fatal,
        )

        self._phase: AttemptPhase = AttemptPhase.IDLE
        self._phase_started_at: float = time.time()
        self._last_phase_payload: Dict[str, Any] = {}
        self._last_phase_error: Optional[str] = None
        self._ui_subscribers: List[asyncio.Queue[AttemptEvent]] = []

        self._attempt_task: Optional[asyncio.Task[None]] = None
        self._poll_task: Optional[asyncio.Task[None]] = None
        self._heartbeat_task: Optional[asyncio.Task[None]] = None
        self._terminal: Optional[asyncio.Future[VerificationOutcome]] = None
        self._reference: Optional[CaptureFrame] = None
        self._enrollment: Optional[EnrollmentResult] = None

    @property
    def phase(self) -> AttemptPhase:
        return self._phase

    @property
    def task_state(self) -> TaskStateMachine:
        return self._tasks

    @property
    def sessions(self) -> SessionManager:
        return self._sessions

    @property
    def scheduler(self) -> CaptureScheduler:
        return self._scheduler

    @property
    def completion(self) -> CompletionHandler:
        return self._completion

    @property
    def voice(self) -> VoiceFeedbackCoordinator:
        return self._voice

    @property
    def reference_image(self) -> Optional[CaptureFrame]:
        return self._reference

    @property
    def enrollment_result(self) -> Optional[EnrollmentResult]:
        return self._enrollment

    def snapshot(self) -> Dict[str, Any]:
        return {
            "phase": self._phase.value,
            "data": self._last_phase_payload,
            "error": self._last_phase_error,
            "session_id": self._sessions.session_id,
            "task_state": self._tasks.state.value,
        }

    # ------------------------------------------------------------
    # Service lifecycle
    # ------------------------------------------------------------

    async def start(self) -> None:
        logger.info("Starting liveness orchestrator")
        if not self._heartbeat_task or self._heartbeat_task.done():
            self._heartbeat_task = asyncio.create_task(self._heartbeat_loop(), name="orchestrator-heartbeat")

    async def teardown(self) -> None:
        logger.info("Tearing down liveness orchestrator")
        await self.reset_attempt()

        if self._heartbeat_task and not self._heartbeat_task.done():
            self._heartbeat_task.cancel()
            try:
                await self._heartbeat_task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.warning("Error stopping heartbeat task: %s", e)
        self._heartbeat_task = None

        try:
            await self._capture.deactivate()
        except Exception as e:
            logger.warning("Error releasing camera: %s", e)

        await self._http_client.aclose()
        logger.info("Liveness orchestrator stopped")

    def register_ui(self) -> asyncio.Queue[AttemptEvent]:
        queue: asyncio.Queue[AttemptEvent] = asyncio.Queue(maxsize=self.settings.performance.ui_event_queue_size)
        self._ui_subscribers.append(queue)
        return queue

    def unregister_ui(self, queue: asyncio.Queue[AttemptEvent]) -> None:
        if queue in self._ui_subscribers:
            self._ui_subscribers.remove(queue)

    # ------------------------------------------------------------
    # Caller entry points
    # ------------------------------------------------------------

    async def start_attempt(self) -> asyncio.Task[None]:
        """Begin a fresh attempt, resetting whatever came before it."""
        if self._attempt_task is not None or self._phase is not AttemptPhase.IDLE:
            logger.info("Resetting previous attempt before starting a new one")
            await self.reset_attempt()
        self._attempt_task = asyncio.create_task(self._run_attempt(), name="liveness-attempt")
        return self._attempt_task

    async def reset_attempt(self) -> None:
        """Return to IDLE from any state, discarding all attempt state."""
        logger.info("🔄 [RESET] Resetting attempt (phase=%s)", self._phase.value)
        await self._stop_streaming()

        session_id = self._sessions.session_id
        if session_id:
            await self._sessions.reset(session_id)

        task, self._attempt_task = self._attempt_task, None
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.warning("Error while cancelling attempt: %s", e)

        await self._release_resources()

        self._tasks.reset()
        self._completion.reset()
        self._voice.reset()
        self._reference = None
        self._enrollment = None
        self._terminal = None
        await self._advance_phase(AttemptPhase.IDLE)

    # ------------------------------------------------------------
    # Attempt flow
    # ------------------------------------------------------------

    async def _run_attempt(self) -> None:
        """
        1. Create the remote session (no camera access without one)
        2. Open the camera, wait for it to settle, take the reference image
        3. Start the challenge and stream frames until a terminal judgment
        4. On pass, run the one-shot face match / enroll step
        """
        loop = asyncio.get_running_loop()
        self._terminal = loop.create_future()
        try:
            logger.info("🎬 [ATTEMPT_START] ================================")
            await self._advance_phase(AttemptPhase.STARTING)

            session_id = await self._sessions.start()

            await self._capture.activate(self.settings.capture.ready_timeout_seconds)
            logger.info("📷 [ATTEMPT] Camera ready")
            if self.settings.capture.warmup_seconds > 0:
                await asyncio.sleep(self.settings.capture.warmup_seconds)

            self._reference = await loop.run_in_executor(
                None, self._capture.grab_frame, self.settings.capture.reference_jpeg_quality
            )
            logger.info("📸 [ATTEMPT] Reference image captured (%d bytes)", len(self._reference.image))

            self._tasks.begin()
            await self._advance_phase(AttemptPhase.AWAITING_CHALLENGE, data={"session_id": session_id})
            await self._start_challenge(session_id)

            self._scheduler.start(session_id)
            poll_interval = self.settings.scheduler.status_poll_interval_seconds
            if poll_interval > 0:
                self._poll_task = asyncio.create_task(
                    self._status_poll_loop(session_id, poll_interval), name="liveness-status-poll"
                )

            try:
                outcome = await asyncio.wait_for(self._terminal, timeout=self.settings.scheduler.max_attempt_seconds)
            except asyncio.TimeoutError as exc:
                raise AttemptTimeout(
                    log_message=f"No terminal judgment within {self.settings.scheduler.max_attempt_seconds}s"
                ) from exc

            await self._stop_streaming()
            if outcome.passed:
                await self._complete(outcome)
            logger.info("✅ Attempt finished (passed=%s)", outcome.passed)

        except asyncio.CancelledError:
            logger.info("⚠️ Attempt cancelled")
            # Don't re-raise - reset_attempt owns the state change

        except AttemptError as exc:
            logger.error("❌ Attempt failed: %s", exc)
            await self._show_error(exc)

        except Exception as exc:
            logger.exception("❌ Unexpected attempt error: %s", exc)
            await self._show_error(AttemptError())

        finally:
            await self._stop_streaming()
            await self._release_resources()
            logger.info("🏁 [ATTEMPT_END] ================================")

    async def _start_challenge(self, session_id: str) -> None:
        data = await self._http_client.start_challenge(session_id)
        if not data or not data.get("success"):
            message = data.get("message") if data else None
            raise ChallengeStartError(message or None, log_message=f"Challenge start failed: {data!r}")
        logger.info("✅ Liveness started for %s", session_id)
        try:
            await self._observe(session_id, data)
        except TransientFrameError as e:
            logger.debug("Ignoring start snapshot: %s", e)

    async def _submit_frame(self, session_id: str, frame: CaptureFrame) -> None:
        response = await self._http_client.submit_frame(session_id, frame.as_data_url())
        await self._observe(session_id, response)

    async def _status_poll_loop(self, session_id: str, interval: float) -> None:
        try:
            while self._is_live(session_id):
                await asyncio.sleep(interval)
                if not self._is_live(session_id):
                    break
                try:
                    response = await self._http_client.challenge_status(session_id)
                    await self._observe(session_id, response)
                except TransientFrameError as e:
                    logger.debug("Status poll failed: %s", e)
                except Exception as e:
                    logger.exception("Status poll error: %s", e)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception("Status poll loop crashed: %s", e)

    def _is_live(self, session_id: str) -> bool:
        return (
            self._terminal is not None
            and not self._terminal.done()
            and self._sessions.is_current(session_id)
        )

    async def _observe(self, session_id: str, response: Optional[Dict[str, Any]]) -> None:
        """Apply one response from either the frame path or the poll path."""
        if not self._is_live(session_id):
            logger.debug("Dropping stale response for session %s", session_id)
            return

        signal = self._interpreter.classify(response)
        if signal.kind is SignalKind.SESSION_INVALID:
            logger.warning("⚠️ Session expired: %s", signal.error)
            self._resolve_fatal(SessionInvalidated(log_message=signal.error))
            return
        if signal.kind is SignalKind.TRANSIENT_ERROR:
            raise TransientFrameError(log_message=signal.error)

        transition = self._tasks.apply(signal)
        await self._handle_transition(transition, face_detected=signal.face_detected)

    async def _handle_transition(self, transition: Transition, *, face_detected: Optional[bool]) -> None:
        if transition.kind is TransitionKind.NONE:
            return

        if transition.kind in (TransitionKind.CHALLENGE_CHANGED, TransitionKind.CHALLENGE_UPDATED):
            if transition.voice_prompt:
                self._voice.say(transition.voice_prompt)
            task = transition.task
            data: Dict[str, Any] = {
                "task": transition.display_text,
                "index": task.index if task else None,
                "total": task.total if task else None,
                "time_remaining": task.time_remaining if task else None,
                "face_detected": face_detected,
            }
            if task and task.time_remaining is not None and math.isfinite(task.time_remaining):
                data["timer"] = f"Time left: {int(task.time_remaining)}s"
            await self._advance_phase(AttemptPhase.CHALLENGE_ACTIVE, data=data)
            return

        outcome = transition.outcome
        if outcome is None:
            return
        self._scheduler.stop()
        await self._stop_poll()
        if transition.kind is TransitionKind.PASSED:
            logger.info("✅ LIVENESS SUCCESS")
            self._voice.say(VOICE_PASSED)
            await self._advance_phase(AttemptPhase.PASSED, data={"outcome": outcome.to_dict()})
        else:
            logger.info("❌ LIVENESS FAILED")
            self._voice.say(VOICE_FAILED)
            await self._advance_phase(AttemptPhase.FAILED, data={"outcome": outcome.to_dict()})
        if self._terminal is not None and not self._terminal.done():
            self._terminal.set_result(outcome)

    async def _complete(self, outcome: VerificationOutcome) -> None:
        delay = self.settings.enrollment.completion_delay_seconds
        if delay > 0:
            await asyncio.sleep(delay)
        await self._advance_phase(AttemptPhase.VERIFYING, data={"outcome": outcome.to_dict()})
        try:
            result = await self._completion.run(self._reference)
        except VerificationPipelineError as exc:
            logger.error("❌ Face verification error: %s", exc)
            await self._advance_phase(
                AttemptPhase.ERROR,
                data={"outcome": outcome.to_dict(), "error_type": type(exc).__name__},
                error=exc.user_message,
            )
            return
        if result is None:
            return

        self._enrollment = result
        self._voice.say(VOICE_MATCHED if isinstance(result, MatchedIdentity) else VOICE_ENROLLED)
        await self._advance_phase(
            AttemptPhase.COMPLETE,
            data={"outcome": outcome.to_dict(), "enrollment": result.to_dict()},
        )

    async def _on_scheduler_fatal(self, exc: TransientFrameError) -> None:
        self._resolve_fatal(exc)

    def _resolve_fatal(self, exc: AttemptError) -> None:
        self._scheduler.stop()
        if self._terminal is not None and not self._terminal.done():
            self._terminal.set_exception(exc)

    async def _show_error(self, exc: AttemptError) -> None:
        await self._advance_phase(
            AttemptPhase.ERROR, data={"error_type": type(exc).__name__}, error=exc.user_message
        )

    # ------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------

    async def _stop_poll(self) -> None:
        task, self._poll_task = self._poll_task, None
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.warning("Error stopping status poll: %s", e)

    async def _stop_streaming(self) -> None:
        await self._scheduler.aclose()
        await self._stop_poll()

    async def _release_resources(self) -> None:
        session_id = self._sessions.session_id
        if session_id:
            await self._sessions.end(session_id)
        try:
            await self._capture.deactivate()
        except Exception as exc:
            logger.warning(f"Error deactivating camera: {exc}")

    # ------------------------------------------------------------
    # UI events
    # ------------------------------------------------------------

    def _broadcast(self, event: AttemptEvent) -> None:
        """Broadcast event to all UI subscribers; slow subscribers lose the oldest event."""
        for queue in list(self._ui_subscribers):
            try:
                if queue.full():
                    try:
                        queue.get_nowait()
                    except QueueEmpty:
                        pass
                queue.put_nowait(event)
            except Exception as e:
                logger.warning("Failed to broadcast event to subscriber: %s", e)

    def _emit_voice(self, text: Optional[str]) -> None:
        data: Dict[str, Any] = {"text": text} if text else {"cancel": True}
        self._broadcast(AttemptEvent(type="voice", data=data, phase=self._phase))

    async def _advance_phase(
        self,
        phase: AttemptPhase,
        *,
        data: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
    ) -> None:
        if phase is not self._phase:
            logger.info("Phase %s -> %s", self._phase.value, phase.value)
            self._phase_started_at = time.time()
        self._phase = phase
        self._last_phase_payload = data or {}
        self._last_phase_error = error
        self._broadcast(AttemptEvent(type="state", data=data or {}, phase=phase, error=error))

    async def _heartbeat_loop(self) -> None:
        """Send periodic heartbeat to UI clients."""
        try:
            while True:
                await asyncio.sleep(self.settings.performance.heartbeat_interval_seconds)
                self._broadcast(AttemptEvent(type="heartbeat", data={}, phase=self.phase))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception("Heartbeat loop crashed: %s", e)


__all__ = ["LivenessOrchestrator"]
