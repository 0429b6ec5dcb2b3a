"""One-shot face match-or-enroll step run after liveness passes."""
from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from .backend.http_client import VerificationHttpClient
from .config import EnrollmentSettings
from .errors import VerificationPipelineError
from .state import CaptureFrame, EnrolledIdentity, EnrollmentResult, MatchedIdentity

logger = logging.getLogger(__name__)


class CompletionHandler:
    """Searches the reference face and enrolls it when nothing matches.

    The latch is set before the first network call, so a second trigger
    from another observation path is a no-op returning ``None``.
    """

    def __init__(
        self,
        client: VerificationHttpClient,
        settings: EnrollmentSettings,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._client = client
        self._settings = settings
        self._clock = clock
        self._triggered = False

    @property
    def triggered(self) -> bool:
        return self._triggered

    def reset(self) -> None:
        self._triggered = False

    async def run(self, reference: Optional[CaptureFrame]) -> Optional[EnrollmentResult]:
        if self._triggered:
            logger.warning("⚠️ Face verification already triggered")
            return None
        self._triggered = True

        if reference is None:
            raise VerificationPipelineError(log_message="No reference image captured for verification")

        logger.info("🔍 [COMPLETION] Searching for existing face")
        search = await self._client.search_face(reference.image)
        if search is None or search.get("error"):
            raise VerificationPipelineError(log_message=f"Face search failed: {search!r}")

        matched_id = search.get("matched_user_id")
        if matched_id:
            result = MatchedIdentity(identity_id=str(matched_id), confidence=_confidence(search))
            logger.info("✅ [COMPLETION] Face found: %s", result.identity_id)
            return result

        name = self._display_name()
        logger.info("➕ [COMPLETION] No match, enrolling %s", name)
        enrolled = await self._client.enroll_face(name, reference.image, self._metadata())
        if enrolled is None or enrolled.get("error"):
            raise VerificationPipelineError(log_message=f"Face enrollment failed: {enrolled!r}")

        person_id = _person_id(enrolled)
        if not person_id:
            raise VerificationPipelineError(log_message=f"Enrollment returned no identity: {enrolled!r}")
        logger.info("✅ [COMPLETION] New identity created: %s", person_id)
        return EnrolledIdentity(identity_id=person_id, display_name=name)

    def _display_name(self) -> str:
        return f"{self._settings.display_name_prefix}_{int(self._clock() * 1000)}"

    def _metadata(self) -> Dict[str, Any]:
        created_at = datetime.fromtimestamp(self._clock(), tz=timezone.utc)
        return {"source": self._settings.source_tag, "created_at": created_at.isoformat()}


def _confidence(payload: Dict[str, Any]) -> Optional[float]:
    value = payload.get("confidence")
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def _person_id(payload: Dict[str, Any]) -> Optional[str]:
    data = payload.get("data")
    if isinstance(data, dict) and data.get("person_id"):
        return str(data["person_id"])
    if payload.get("person_id"):
        return str(payload["person_id"])
    return None


__all__ = ["CompletionHandler"]
