"""Self-throttling capture/submit loop."""
from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Optional

from .errors import TransientFrameError
from .sensors.base import CaptureSource
from .state import CaptureFrame

logger = logging.getLogger(__name__)

# Submits one frame for the given session; raises TransientFrameError on a failed round trip
FrameSubmitter = Callable[[str, CaptureFrame], Awaitable[None]]
FatalHandler = Callable[[TransientFrameError], Awaitable[None]]


class CaptureScheduler:
    """Pulls frames from a capture source and submits them one at a time.

    A tick is skipped when the source is not ready, a submission is still in
    flight, or the minimum interval since the last submission has not
    elapsed. Stopping bumps a generation counter, so ticks and completions
    that belong to an earlier run become no-ops.
    """

    def __init__(
        self,
        source: CaptureSource,
        submit: FrameSubmitter,
        *,
        min_interval: float = 0.05,
        tick_interval: float = 0.016,
        max_consecutive_errors: int = 10,
        jpeg_quality: Optional[int] = None,
        on_fatal: Optional[FatalHandler] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._source = source
        self._submit = submit
        self._min_interval = min_interval
        self._tick_interval = tick_interval
        self._max_consecutive_errors = max_consecutive_errors
        self._jpeg_quality = jpeg_quality
        self._on_fatal = on_fatal
        self._clock = clock

        self._generation = 0
        self._session_id: Optional[str] = None
        self._running = False
        self._busy = False
        self._last_submit_at: Optional[float] = None
        self._consecutive_errors = 0
        self._submissions = 0
        self._loop_task: Optional[asyncio.Task[None]] = None
        self._inflight: Optional[asyncio.Task[None]] = None

    @property
    def running(self) -> bool:
        return self._running

    @property
    def busy(self) -> bool:
        return self._busy

    @property
    def submissions(self) -> int:
        return self._submissions

    def start(self, session_id: str) -> None:
        if self._running:
            self.stop()
        self._generation += 1
        self._session_id = session_id
        self._running = True
        self._busy = False
        self._last_submit_at = None
        self._consecutive_errors = 0
        self._loop_task = asyncio.create_task(self._loop(self._generation), name="capture-scheduler")
        logger.info("📷 [SCHEDULER] Started for session %s (min interval %.3fs)", session_id, self._min_interval)

    def stop(self) -> None:
        if not self._running and self._loop_task is None:
            return
        self._generation += 1
        self._running = False
        self._busy = False
        self._session_id = None
        task, self._loop_task = self._loop_task, None
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()
        logger.info("📷 [SCHEDULER] Stopped after %d submissions", self._submissions)

    async def aclose(self) -> None:
        """Stop and wait for the loop and any in-flight submission to unwind."""
        loop_task, inflight = self._loop_task, self._inflight
        self.stop()
        for task in (loop_task, inflight):
            if task is None or task.done() or task is asyncio.current_task():
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.warning("Error while stopping capture scheduler: %s", e)

    def tick(self) -> bool:
        """Run one scheduling decision. Returns True when a submission was launched."""
        generation = self._generation
        if not self._running or self._session_id is None:
            return False
        if self._busy or not self._source.is_ready():
            return False
        # A submission from an earlier run may still be unwinding
        if self._inflight is not None and not self._inflight.done():
            return False
        now = self._clock()
        if self._last_submit_at is not None and now - self._last_submit_at < self._min_interval:
            return False

        session_id = self._session_id
        self._busy = True
        self._last_submit_at = now
        self._inflight = asyncio.create_task(
            self._submit_one(generation, session_id), name="capture-submit"
        )
        return True

    async def _loop(self, generation: int) -> None:
        try:
            while self._running and generation == self._generation:
                self.tick()
                await asyncio.sleep(self._tick_interval)
        except asyncio.CancelledError:
            raise
        except Exception:  # pragma: no cover - tick() itself does not raise
            logger.exception("Capture scheduler loop crashed")

    async def _submit_one(self, generation: int, session_id: str) -> None:
        failure: Optional[Exception] = None
        try:
            loop = asyncio.get_running_loop()
            frame = await loop.run_in_executor(None, self._grab)
            if generation != self._generation:
                return
            self._submissions += 1
            await self._submit(session_id, frame)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            failure = e
        finally:
            if generation == self._generation:
                self._busy = False
                self._inflight = None

        if generation != self._generation:
            return
        if failure is None:
            self._consecutive_errors = 0
            return

        self._consecutive_errors += 1
        if isinstance(failure, TransientFrameError):
            logger.warning("Frame submission failed (%d in a row): %s", self._consecutive_errors, failure)
        else:
            logger.exception("Frame processing error (%d in a row)", self._consecutive_errors, exc_info=failure)

        if self._consecutive_errors >= self._max_consecutive_errors:
            logger.error("❌ [SCHEDULER] %d consecutive frame errors, giving up", self._consecutive_errors)
            self.stop()
            if self._on_fatal:
                await self._on_fatal(
                    TransientFrameError(log_message=f"{self._max_consecutive_errors} consecutive frame errors")
                )

    def _grab(self) -> CaptureFrame:
        return self._source.grab_frame(quality=self._jpeg_quality)


__all__ = ["CaptureScheduler", "FrameSubmitter"]
