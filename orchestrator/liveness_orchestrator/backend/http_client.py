"""HTTP client for the remote verification service."""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

import httpx

from ..config import Settings

logger = logging.getLogger(__name__)


class VerificationHttpClient:
    """Thin wrapper around the verification REST API.

    Every call returns the decoded JSON body, or ``None`` when the request
    failed at the transport level or the body could not be decoded. Error
    bodies (``{"error": ...}``) are returned as-is even on 4xx so the caller
    can tell an invalid session from a network hiccup.
    """

    def __init__(self, settings: Settings, *, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self.settings = settings
        self._client = httpx.AsyncClient(
            base_url=self.settings.backend_api_url,
            timeout=self.settings.request_timeout_seconds,
            transport=transport,
        )

    # ------------------------------------------------------------
    # Session
    # ------------------------------------------------------------

    async def create_session(self) -> Optional[Dict[str, Any]]:
        logger.info("verify.create_session: requesting new session")
        return await self._post("create_session", "/session", json={"action": "create"})

    async def end_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        return await self._post(
            "end_session", "/session", json={"action": "end", "session_id": session_id}
        )

    # ------------------------------------------------------------
    # Liveness challenge
    # ------------------------------------------------------------

    async def start_challenge(self, session_id: str) -> Optional[Dict[str, Any]]:
        return await self._post("start_challenge", f"/liveness/{session_id}", json={"action": "start"})

    async def challenge_status(self, session_id: str) -> Optional[Dict[str, Any]]:
        return await self._post("challenge_status", f"/liveness/{session_id}", json={"action": "status"})

    async def reset_challenge(self, session_id: str) -> Optional[Dict[str, Any]]:
        return await self._post("reset_challenge", f"/liveness/{session_id}", json={"action": "reset"})

    async def submit_frame(self, session_id: str, frame_data_url: str) -> Optional[Dict[str, Any]]:
        return await self._post(
            "submit_frame", "/process_frame", json={"session_id": session_id, "frame": frame_data_url}
        )

    # ------------------------------------------------------------
    # Faces
    # ------------------------------------------------------------

    async def search_face(self, image: bytes) -> Optional[Dict[str, Any]]:
        logger.info("verify.search_face: searching %d byte reference image", len(image))
        return await self._post(
            "search_face",
            "/faces",
            data={"action": "search"},
            files={"image": ("reference.jpg", image, "image/jpeg")},
            headers=self._faces_headers(),
        )

    async def enroll_face(self, name: str, image: bytes, metadata: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        logger.info("verify.enroll_face: enrolling %s", name)
        return await self._post(
            "enroll_face",
            "/faces",
            data={"action": "add", "name": name, "metadata": json.dumps(metadata)},
            files={"image": ("reference.jpg", image, "image/jpeg")},
            headers=self._faces_headers(),
        )

    async def aclose(self) -> None:
        try:
            await self._client.aclose()
        except Exception as e:
            logger.warning("Error closing HTTP client: %s", e)

    def _faces_headers(self) -> Dict[str, str]:
        if not self.settings.faces_api_key:
            return {}
        return {"X-API-Key": self.settings.faces_api_key}

    async def _post(self, op: str, path: str, **kwargs: Any) -> Optional[Dict[str, Any]]:
        try:
            response = await self._client.post(path, **kwargs)
            data = _decode_json(response)
            if response.is_error:
                if data is not None and data.get("error"):
                    logger.warning("verify.%s: HTTP %d - %s", op, response.status_code, data.get("error"))
                    return data
                response.raise_for_status()
            if data is None:
                logger.error("verify.%s: response is not a JSON object", op)
            return data
        except httpx.TimeoutException:
            logger.error("verify.%s: request timeout", op)
            return None
        except httpx.NetworkError as e:
            logger.error("verify.%s: network error - %s", op, e)
            return None
        except httpx.HTTPStatusError as e:
            logger.error("verify.%s: HTTP %d - %s", op, e.response.status_code, e.response.text)
            return None
        except Exception as e:
            logger.exception("verify.%s: unexpected error - %s", op, e)
            return None


def _decode_json(response: httpx.Response) -> Optional[Dict[str, Any]]:
    try:
        data = response.json()
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


__all__ = ["VerificationHttpClient"]
