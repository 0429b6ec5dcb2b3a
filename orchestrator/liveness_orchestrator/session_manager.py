"""Remote session lifecycle (create / end / reset)."""
from __future__ import annotations

import logging
import time
from typing import Optional

from .backend.http_client import VerificationHttpClient
from .errors import SessionCreateError
from .state import Session, SessionStatus

logger = logging.getLogger(__name__)


class SessionManager:
    """Owns the one live remote session and its identifier."""

    def __init__(self, client: VerificationHttpClient) -> None:
        self._client = client
        self._session = Session()

    @property
    def session(self) -> Session:
        return self._session

    @property
    def session_id(self) -> Optional[str]:
        if self._session.status is SessionStatus.ACTIVE:
            return self._session.session_id
        return None

    def is_current(self, session_id: Optional[str]) -> bool:
        return session_id is not None and session_id == self.session_id

    async def start(self) -> str:
        if self._session.status is SessionStatus.ACTIVE:
            logger.info("Ending previous session %s before creating a new one", self._session.session_id)
            await self.end()

        data = await self._client.create_session()
        if not data or not data.get("success"):
            raise SessionCreateError(log_message=f"Session create failed: {data!r}")
        session_id = data.get("session_id")
        if not session_id:
            raise SessionCreateError(log_message=f"Session create returned no session_id: {data!r}")

        self._session = Session(session_id=str(session_id), status=SessionStatus.ACTIVE, created_at=time.time())
        logger.info("🆔 [SESSION] Created %s", self._session.session_id)
        return self._session.session_id

    async def end(self, session_id: Optional[str] = None) -> None:
        """Best-effort; never raises."""
        session_id = session_id or self._session.session_id
        if session_id is None:
            return
        # Mark ended first so responses still in flight are already stale
        if self._session.session_id == session_id:
            self._session = Session(session_id=session_id, status=SessionStatus.ENDED)
        try:
            data = await self._client.end_session(session_id)
            if not data or not data.get("success"):
                logger.warning("Session end not acknowledged for %s: %s", session_id, data)
            else:
                logger.info("🆔 [SESSION] Ended %s", session_id)
        except Exception as e:
            logger.warning("Error ending session %s: %s", session_id, e)

    async def reset(self, session_id: Optional[str] = None) -> None:
        """Ask the service to drop in-progress challenge state; no-op when unsupported."""
        session_id = session_id or self.session_id
        if session_id is None:
            return
        try:
            data = await self._client.reset_challenge(session_id)
            if not data or not data.get("success"):
                logger.debug("Challenge reset unsupported or rejected for %s: %s", session_id, data)
        except Exception as e:
            logger.warning("Error resetting challenge for %s: %s", session_id, e)


__all__ = ["SessionManager"]
