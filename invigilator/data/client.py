from __future__ import annotations
"""
Backend Client

Async HTTP client for the interview backend: session lifecycle, TTS,
face verification, remote object detection, violation logging and
body-language scores.
"""

from typing import Any, Optional

import httpx

from invigilator.cfg import BackendConfig
from invigilator.errors import BackendError
from invigilator.utils.logger import get_logger

logger = get_logger(__name__)


class BackendClient:
    """
    Thin wrapper around ``httpx.AsyncClient``.

    Every method raises ``BackendError`` on transport failure or a non-2xx
    response; callers decide whether that is fatal.

    Example:
        >>> async with BackendClient(BackendConfig(base_url="http://localhost:5000")) as client:
        ...     started = await client.start_session("setup-1")
    """

    START_PATH = "/api/interview/start"
    ANSWER_PATH = "/api/interview/answer"
    SESSION_PATH = "/api/interview/session/{session_id}"
    TTS_PATH = "/api/interview/tts"
    LOG_VIOLATION_PATH = "/api/interview/log-violation"
    BODY_LANGUAGE_PATH = "/api/interview/body-language"
    BODY_LANGUAGE_SESSION_PATH = "/api/interview/body-language/{session_id}"
    VERIFY_FACE_PATH = "/api/verify-face"
    DETECT_CHEATING_PATH = "/api/detect-cheating"

    def __init__(
        self,
        cfg: Optional[BackendConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize backend client.

        Args:
            cfg: Backend configuration
            transport: Custom httpx transport (tests use ``httpx.MockTransport``)
        """
        self.cfg = cfg or BackendConfig()

        headers = {}
        if self.cfg.api_token:
            headers["Authorization"] = f"Bearer {self.cfg.api_token}"

        self._client = httpx.AsyncClient(
            base_url=self.cfg.base_url,
            headers=headers,
            timeout=self.cfg.timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "BackendClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"❌ {method} {path} failed: {e}")
            raise BackendError(f"{method} {path} failed: {e}") from e

        if response.status_code >= 400:
            logger.error(f"❌ {method} {path} returned {response.status_code}: {response.text[:200]}")
            raise BackendError(
                f"{method} {path} returned {response.status_code}",
                status_code=response.status_code,
            )
        return response

    async def _json(self, method: str, path: str, **kwargs) -> dict[str, Any]:
        response = await self._request(method, path, **kwargs)
        try:
            return response.json()
        except ValueError as e:
            raise BackendError(f"{method} {path} returned invalid JSON") from e

    # ------------------------------------------------------------------
    # Interview lifecycle
    # ------------------------------------------------------------------

    async def start_session(self, setup_id: str) -> dict[str, Any]:
        """Start an interview. Returns ``{sessionId, question, totalQuestions}``."""
        return await self._json("POST", self.START_PATH, json={"setupId": setup_id})

    async def submit_answer(self, session_id: str, answer: str) -> dict[str, Any]:
        """Submit an answer. Returns the next question or a ``done``/``sessionEnded`` flag."""
        return await self._json(
            "POST",
            self.ANSWER_PATH,
            json={"sessionId": session_id, "answer": answer},
        )

    async def get_session(self, session_id: str) -> dict[str, Any]:
        """Fetch a session for deep-link hydration."""
        return await self._json("GET", self.SESSION_PATH.format(session_id=session_id))

    async def synthesize_speech(self, text: str, voice: str = "alloy") -> bytes:
        """Render text to audio bytes."""
        response = await self._request("POST", self.TTS_PATH, json={"text": text, "voice": voice})
        return response.content

    # ------------------------------------------------------------------
    # Proctoring
    # ------------------------------------------------------------------

    async def verify_face(self, embedding: list[float]) -> dict[str, Any]:
        """Compare an embedding with the registered one. Returns ``{verified, confidence}``."""
        return await self._json("POST", self.VERIFY_FACE_PATH, json={"embedding": embedding})

    async def detect_objects(self, jpeg: bytes) -> dict[str, Any]:
        """Run the remote prohibited-object detector on one JPEG frame."""
        return await self._json(
            "POST",
            self.DETECT_CHEATING_PATH,
            files={"file": ("frame.jpg", jpeg, "image/jpeg")},
        )

    async def save_body_language(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Store aggregated body-language scores for a session's feedback report."""
        return await self._json("POST", self.BODY_LANGUAGE_PATH, json=payload)

    async def get_body_language(self, session_id: str) -> Optional[dict[str, Any]]:
        """Fetch stored body-language scores, None if the session has none."""
        data = await self._json("GET", self.BODY_LANGUAGE_SESSION_PATH.format(session_id=session_id))
        return data.get("bodyLanguage")

    async def log_violation(
        self,
        user_id: Optional[str],
        interview_id: str,
        violation_type: str,
        action_taken: str,
        screenshot: Optional[str] = None,
    ) -> dict[str, Any]:
        """Record one violation in the backend audit log."""
        return await self._json(
            "POST",
            self.LOG_VIOLATION_PATH,
            json={
                "userId": user_id,
                "interviewId": interview_id,
                "violationType": violation_type,
                "actionTaken": action_taken,
                "screenshot": screenshot,
            },
        )
