"""
Shared fixtures and fakes for orchestrator tests
"""
import asyncio
import os
import tempfile
from typing import Any, Dict, List, Optional

import pytest

# main.py builds Settings at import time
os.environ.setdefault("BACKEND_API_URL", "http://verify.test")
os.environ.setdefault("LOG_DIRECTORY", tempfile.mkdtemp(prefix="liveness-logs-"))

from liveness_orchestrator.config import (  # noqa: E402
    CaptureSettings,
    EnrollmentSettings,
    PerformanceSettings,
    SchedulerSettings,
    Settings,
)
from liveness_orchestrator.errors import CaptureUnavailable  # noqa: E402
from liveness_orchestrator.state import CaptureFrame  # noqa: E402


class FakeCaptureSource:
    """In-memory capture source; frames are numbered JPEG stand-ins"""

    def __init__(self, *, fail_activate: bool = False, ready: bool = True):
        self.fail_activate = fail_activate
        self.ready = ready
        self.active = False
        self.activations = 0
        self.grabs = 0
        self.qualities: List[Optional[int]] = []

    def is_ready(self) -> bool:
        return self.active and self.ready

    def grab_frame(self, quality: Optional[int] = None) -> CaptureFrame:
        if not self.is_ready():
            raise CaptureUnavailable(log_message="not ready")
        self.grabs += 1
        self.qualities.append(quality)
        return CaptureFrame(image=f"frame-{self.grabs}".encode())

    async def activate(self, timeout: float) -> None:
        self.activations += 1
        if self.fail_activate:
            raise CaptureUnavailable("Camera access denied")
        self.active = True

    async def deactivate(self) -> None:
        self.active = False


class FakeVerificationClient:
    """Scripted stand-in for VerificationHttpClient

    Frame and status responses are consumed in order; once a script runs
    out, its last entry keeps being returned.
    """

    def __init__(
        self,
        *,
        frame_responses: Optional[List[Optional[Dict[str, Any]]]] = None,
        status_responses: Optional[List[Optional[Dict[str, Any]]]] = None,
        create_response: Optional[Dict[str, Any]] = None,
        start_response: Optional[Dict[str, Any]] = None,
        search_response: Optional[Dict[str, Any]] = None,
        enroll_response: Optional[Dict[str, Any]] = None,
        latency: float = 0.0,
    ):
        self.frame_responses = list(frame_responses or [{"face_detected": True}])
        self.status_responses = list(status_responses or [{"success": True, "active": True}])
        self.create_response = create_response if create_response is not None else {
            "success": True,
            "session_id": "sid-1",
        }
        self.start_response = start_response if start_response is not None else {"success": True}
        self.search_response = search_response if search_response is not None else {"matched_user_id": None}
        self.enroll_response = enroll_response if enroll_response is not None else {
            "success": True,
            "data": {"person_id": "person-42"},
        }
        self.latency = latency
        self.calls: List[tuple] = []
        self.closed = False

    def count(self, name: str) -> int:
        return sum(1 for call in self.calls if call[0] == name)

    async def _delay(self):
        await asyncio.sleep(self.latency)

    async def create_session(self):
        self.calls.append(("create_session",))
        return self.create_response

    async def end_session(self, session_id):
        self.calls.append(("end_session", session_id))
        return {"success": True}

    async def start_challenge(self, session_id):
        self.calls.append(("start_challenge", session_id))
        return self.start_response

    async def challenge_status(self, session_id):
        self.calls.append(("challenge_status", session_id))
        await self._delay()
        return self._next(self.status_responses)

    async def reset_challenge(self, session_id):
        self.calls.append(("reset_challenge", session_id))
        return {"success": True}

    async def submit_frame(self, session_id, frame_data_url):
        self.calls.append(("submit_frame", session_id))
        await self._delay()
        return self._next(self.frame_responses)

    async def search_face(self, image):
        self.calls.append(("search_face", image))
        return self.search_response

    async def enroll_face(self, name, image, metadata):
        self.calls.append(("enroll_face", name, image, metadata))
        return self.enroll_response

    async def aclose(self):
        self.closed = True

    @staticmethod
    def _next(script):
        if len(script) > 1:
            return script.pop(0)
        return script[0]


def make_settings(**scheduler_overrides) -> Settings:
    scheduler = {
        "min_submit_interval_seconds": 0.0,
        "tick_interval_seconds": 0.001,
        "max_consecutive_frame_errors": 3,
        "status_poll_interval_seconds": 0.0,
        "max_attempt_seconds": 2.0,
    }
    scheduler.update(scheduler_overrides)
    return Settings(
        backend_api_url="http://verify.test",
        capture=CaptureSettings(warmup_seconds=0.0, ready_timeout_seconds=1.0),
        scheduler=SchedulerSettings(**scheduler),
        enrollment=EnrollmentSettings(completion_delay_seconds=0.0),
        performance=PerformanceSettings(ui_event_queue_size=256, heartbeat_interval_seconds=60.0),
    )


async def wait_until(predicate, timeout: float = 2.0, interval: float = 0.002):
    """Poll predicate until it holds or fail the test"""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(interval)


def drain(queue: asyncio.Queue) -> list:
    events = []
    while not queue.empty():
        events.append(queue.get_nowait())
    return events


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def capture():
    return FakeCaptureSource()
