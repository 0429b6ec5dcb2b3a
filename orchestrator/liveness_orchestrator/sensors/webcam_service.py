"""
Webcam capture source.

Opens the user-facing camera with OpenCV, keeps the most recent frame for
challenge submissions and streams a mirrored JPEG preview.
"""

from __future__ import annotations

import asyncio
from asyncio import QueueEmpty
import base64
import logging
import time
from typing import AsyncIterator, Optional

import numpy as np

# Optional deps
try:
    import cv2  # type: ignore
except Exception:
    cv2 = None

from ..config import CaptureSettings, PerformanceSettings
from ..errors import CaptureUnavailable
from ..state import CaptureFrame

logger = logging.getLogger("webcam_service")

_PLACEHOLDER_JPEG = base64.b64decode(
    b"/9j/4AAQSkZJRgABAQAAAQABAAD/2wBDAAgGBgcGBQgHBwcJCQgKDBQNDAsLDBkSEw8UHRofHh0aHBwgJC4nICIsIxwcKDcpLDAxNDQ0Hyc5PTgyPC4zNDL/2wBDAQkJCQwLDBgNDRgyIRwhMjIyMjIyMjIyMjIyMjIyMjIyMjIyMjIyMjIyMjIyMjIyMjIyMjIyMjIyMjIyMjIyMjL/wAARCAABAAEDASIAAhEBAxEB/8QAHwAAAQUBAQEBAQEAAAAAAAAAAAECAwQFBgcICQoL/8QAtRAAAgEDAwIEAwUFBAQAAAF9AQIDAAQRBRIhMUEGE1FhByJxFDKBkaEII0KxwRVS0fAkM2JyggkKFhcYGRolJicoKSo0NTY3ODk6Q0RFRkdISUpTVFVWV1hZWmNkZWZnaGlqc3R1dnd4eXqDhIWGh4iJipKTlJWWl5iZmqKjpKWmp6ipqrKztLW2t7i5usLDxMXGx8jJytLT1NXW19jZ2uHi4+Tl5ufo6erx8vP09fb3+Pn6/8QAHwEAAwEBAQEBAQEBAQAAAAAAAAECAwQFBgcICQoL/8QAtREAAgECBAQDBAcFBAQAAQJ3AAECAxEEBSExBhJBUQdhcRMiMoEIFEKRobHBCSMzUvAVYnLRChYkNOEl8RcYGRomJygpKjU2Nzg5OkNERUZHSElKU1RVVldYWVpjZGVmZ2hpanN0dXZ3eHl6goOEhYaHiImKkpOUlZaXmJmaoqOkpaanqKmqsrO0tba3uLm6wsPExcbHyMnK0tPU1dbX2Nna4uPk5ebn6Onq8vP09fb3+Pn6/9oADAMBAAIRAxEAPwD5/ooooA//2Q=="
)


class WebcamCaptureSource:
    """Capture source backed by a local webcam."""

    def __init__(self, settings: CaptureSettings, performance: Optional[PerformanceSettings] = None):
        self.settings = settings
        self.performance = performance or PerformanceSettings()
        self.enable_hardware = cv2 is not None
        self._cap = None
        self._active = False
        self._latest: Optional[np.ndarray] = None
        self._latest_ts: float = 0.0
        self._lock = asyncio.Lock()
        self._first_frame = asyncio.Event()
        self._preview_subscribers: list[asyncio.Queue[bytes]] = []
        self._loop_task: Optional[asyncio.Task[None]] = None
        self._stop_event = asyncio.Event()

    async def start(self) -> None:
        """Start the capture/preview loop (camera stays closed until activated)."""
        if self._loop_task:
            return
        if not self.enable_hardware:
            logger.warning("OpenCV not available - webcam disabled")
            return

        self._stop_event.clear()
        self._loop_task = asyncio.create_task(self._capture_loop(), name="webcam-capture-loop")
        logger.info("Webcam service started")

    async def stop(self) -> None:
        """Stop the capture loop and release the camera."""
        if self._loop_task:
            self._stop_event.set()
            await self._loop_task
            self._loop_task = None

        await self.deactivate()
        logger.info("Webcam service stopped")

    async def activate(self, timeout: float) -> None:
        """Open the camera and wait until the first frame arrives."""
        if not self.enable_hardware:
            raise CaptureUnavailable("Camera access denied", log_message="OpenCV is not installed")
        if self._loop_task is None:
            await self.start()

        async with self._lock:
            await self._activate_locked()

        try:
            await asyncio.wait_for(self._first_frame.wait(), timeout=timeout)
        except asyncio.TimeoutError as exc:
            await self.deactivate()
            raise CaptureUnavailable(
                "Camera timeout", log_message=f"No frame from camera {self.settings.camera_id} within {timeout}s"
            ) from exc

    async def deactivate(self) -> None:
        async with self._lock:
            await self._deactivate_locked()

    async def _activate_locked(self) -> None:
        """Activate webcam (must be called with lock held)."""
        if self._active:
            return

        logger.info(f"Opening webcam (camera_id={self.settings.camera_id})")
        loop = asyncio.get_running_loop()
        cap = await loop.run_in_executor(None, cv2.VideoCapture, self.settings.camera_id)
        if not cap.isOpened():
            cap.release()
            raise CaptureUnavailable(
                "Camera access denied", log_message=f"Failed to open webcam {self.settings.camera_id}"
            )

        cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.settings.resolution_width)
        cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.settings.resolution_height)
        cap.set(cv2.CAP_PROP_FPS, self.settings.fps)

        self._cap = cap
        self._latest = None
        self._first_frame.clear()
        self._active = True
        logger.info("Webcam activated successfully")

    async def _deactivate_locked(self) -> None:
        """Deactivate webcam (must be called with lock held)."""
        if not self._active:
            return

        logger.info("Closing webcam")
        self._active = False
        if self._cap is not None:
            self._cap.release()
            self._cap = None
        self._latest = None
        self._first_frame.clear()
        logger.info("Webcam deactivated")

    def is_ready(self) -> bool:
        return self._active and self._latest is not None

    def grab_frame(self, quality: Optional[int] = None) -> CaptureFrame:
        frame = self._latest
        if not self._active or frame is None:
            raise CaptureUnavailable(log_message="grab_frame called before the camera is ready")
        quality = quality or self.settings.frame_jpeg_quality
        ok, enc = cv2.imencode(".jpg", frame, [int(cv2.IMWRITE_JPEG_QUALITY), int(quality)])
        if not ok:
            raise CaptureUnavailable(log_message="JPEG encoding failed")
        return CaptureFrame(image=enc.tobytes(), timestamp=self._latest_ts)

    def _read_frame(self) -> Optional[np.ndarray]:
        cap = self._cap
        if cap is None or not cap.isOpened():
            return None
        ret, frame = cap.read()
        if not ret or frame is None:
            return None
        return frame

    async def _capture_loop(self) -> None:
        """Main capture loop."""
        try:
            while not self._stop_event.is_set():
                if self._active and self._cap is not None:
                    loop = asyncio.get_running_loop()
                    frame = await loop.run_in_executor(None, self._read_frame)
                    if frame is not None and self._active:
                        self._latest = frame
                        self._latest_ts = time.time()
                        self._first_frame.set()
                        if self._preview_subscribers:
                            self._broadcast_frame(self._serialize_preview(frame))
                    await asyncio.sleep(self.performance.preview_fps_limit)
                else:
                    # Inactive - send placeholder
                    self._broadcast_frame(_PLACEHOLDER_JPEG)
                    await asyncio.sleep(0.1)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Webcam capture loop crashed")
        finally:
            self._stop_event.clear()
            logger.info("Webcam capture loop stopped")

    def _serialize_preview(self, frame: np.ndarray) -> bytes:
        """Mirror (selfie view) and encode as JPEG."""
        try:
            preview = cv2.flip(frame, 1) if self.settings.mirror_preview else frame.copy()
            ret, enc = cv2.imencode(".jpg", preview, [cv2.IMWRITE_JPEG_QUALITY, 85])
            return enc.tobytes() if ret else _PLACEHOLDER_JPEG
        except Exception as e:
            logger.warning(f"Frame serialization error: {e}")
            return _PLACEHOLDER_JPEG

    def _broadcast_frame(self, frame: bytes) -> None:
        """Broadcast frame to all subscribers."""
        for q in list(self._preview_subscribers):
            if q.full():
                try:
                    q.get_nowait()
                except QueueEmpty:
                    pass
            q.put_nowait(frame)

    async def preview_stream(self) -> AsyncIterator[bytes]:
        """Stream preview frames."""
        q: asyncio.Queue[bytes] = asyncio.Queue(maxsize=self.performance.preview_queue_size)
        self._preview_subscribers.append(q)
        try:
            while True:
                frame = await q.get()
                yield frame
        finally:
            self._preview_subscribers.remove(q)


__all__ = ["WebcamCaptureSource"]
