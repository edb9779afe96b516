from __future__ import annotations
"""
Identity Sampler

Periodically checks that exactly one face is in frame and that it belongs
to the registered candidate.
"""

import asyncio
import time
from typing import Callable, Optional, Protocol

import numpy as np

from invigilator.cfg import IdentityConfig
from invigilator.engine.results import (
    BehaviorStatus,
    IdentityOutcome,
    IdentityResult,
    IdentitySample,
)
from invigilator.errors import BackendError, ResourceUnavailable, TransientDetectionError
from invigilator.utils.logger import SessionLogger, get_logger

logger = get_logger(__name__)


class FaceRecognizer(Protocol):
    """Face counting, embedding and comparison with the registered identity."""

    def is_ready(self) -> bool:
        ...

    async def detect_faces(self, frame: np.ndarray) -> int:
        ...

    async def embed(self, frame: np.ndarray) -> list[float]:
        ...

    async def compare_to_registered(self, embedding: list[float]) -> bool:
        ...


class RemoteFaceVerifier:
    """Compares embeddings through the backend's ``/api/verify-face``."""

    def __init__(self, client, min_confidence: Optional[float] = None):
        self.client = client
        self.min_confidence = min_confidence

    async def compare_to_registered(self, embedding: list[float]) -> bool:
        try:
            data = await self.client.verify_face(embedding)
        except BackendError as e:
            # A failed call is not evidence of a different person
            raise TransientDetectionError(f"Face verification unavailable: {e}") from e

        verified = bool(data.get("verified", False))
        confidence = data.get("confidence")
        if verified and self.min_confidence is not None and confidence is not None:
            verified = float(confidence) >= self.min_confidence
        return verified


class FaceRecognitionPipeline:
    """
    FaceRecognizer assembled from a detector, an embedder and a verifier.

    Example:
        >>> landmarker = MediaPipeLandmarker()
        >>> pipeline = FaceRecognitionPipeline(
        ...     MediaPipeFaceDetector(), MeshEmbedder(landmarker), RemoteFaceVerifier(client)
        ... )
        >>> pipeline.setup()
    """

    def __init__(self, detector, embedder, verifier):
        self.detector = detector
        self.embedder = embedder
        self.verifier = verifier
        self._ready = False

    def setup(self) -> None:
        """Load model runtimes up front instead of on the first frame."""
        for component in (self.detector, getattr(self.embedder, "landmarker", None)):
            if component is not None and hasattr(component, "setup_model") and not component.is_ready():
                component.setup_model()
        self._ready = True

    def is_ready(self) -> bool:
        return self._ready

    async def detect_faces(self, frame: np.ndarray) -> int:
        boxes = await asyncio.to_thread(self.detector.detect, frame)
        return len(boxes)

    async def embed(self, frame: np.ndarray) -> list[float]:
        return await asyncio.to_thread(self.embedder.embed, frame)

    async def compare_to_registered(self, embedding: list[float]) -> bool:
        return await self.verifier.compare_to_registered(embedding)


class IdentitySampler:
    """
    Two-tier identity check.

    A fast housekeeping tick asks ``is_due()``; the expensive detection and
    comparison run every ``check_interval_ms``. Only ``mismatch_count``
    carries over between samples.

    Example:
        >>> sampler = IdentitySampler(frame_source, recognizer, IdentityConfig())
        >>> if sampler.is_due():
        ...     result = await sampler.sample()
    """

    def __init__(
        self,
        frame_source,
        recognizer: FaceRecognizer,
        cfg: Optional[IdentityConfig] = None,
        behavior_status: Optional[Callable[[], Optional[BehaviorStatus]]] = None,
        clock: Callable[[], float] = time.monotonic,
        session_id: Optional[str] = None,
    ):
        """
        Initialize identity sampler.

        Args:
            frame_source: FrameSource to read from
            recognizer: Face recognizer capability
            cfg: Identity configuration
            behavior_status: Returns the latest behavior status at decision time
            clock: Monotonic clock in seconds
            session_id: For log context
        """
        self.frame_source = frame_source
        self.recognizer = recognizer
        self.cfg = cfg or IdentityConfig()
        self.behavior_status = behavior_status
        self.clock = clock
        self.log = SessionLogger(session_id)

        self.enabled = True
        self.in_flight = False
        self.mismatch_count = 0
        self.last_result: Optional[IdentityResult] = None
        self._last_check: Optional[float] = None
        self._skipped = 0

    @property
    def interval_seconds(self) -> float:
        return self.cfg.check_interval_ms / 1000.0

    @property
    def skipped(self) -> int:
        """Ticks dropped because a sample was still running."""
        return self._skipped

    def enable(self) -> None:
        self.enabled = True

    def disable(self) -> None:
        self.enabled = False

    def is_due(self, now: Optional[float] = None) -> bool:
        if not self.enabled or self.in_flight:
            return False
        if self._last_check is None:
            return True
        now = self.clock() if now is None else now
        return now - self._last_check >= self.interval_seconds

    def _paused(self) -> bool:
        if not self.cfg.pause_on_distraction or self.behavior_status is None:
            return False
        return self.behavior_status() == BehaviorStatus.DISTRACTED

    async def sample(self, now: Optional[float] = None) -> Optional[IdentityResult]:
        """
        Take one identity sample.

        Returns:
            The result, or None if the sampler is disabled, busy, or was
            disabled while the sample ran
        """
        if not self.enabled:
            return None
        if self.in_flight:
            self._skipped += 1
            self.log.log_skipped("identity", "previous sample in flight")
            return None

        self.in_flight = True
        self._last_check = self.clock() if now is None else now
        started = time.perf_counter()

        try:
            result = await self._evaluate()
        finally:
            self.in_flight = False

        if not self.enabled:
            return None

        self.last_result = result
        self.log.log_sample("identity", result.outcome.value, (time.perf_counter() - started) * 1000)
        return result

    async def _evaluate(self) -> IdentityResult:
        if not self.frame_source.is_live().is_live:
            return IdentityResult(IdentityOutcome.SOURCE_UNAVAILABLE, mismatch_count=self.mismatch_count)

        frame = self.frame_source.current_frame()
        if frame is None:
            return self._transient("no decoded frame yet")
        if not self.recognizer.is_ready():
            return self._transient("face recognition runtime not ready")

        try:
            faces = await self.recognizer.detect_faces(frame)
            if faces == 0:
                return self._observed(IdentityOutcome.NO_FACE, faces)
            if faces > 1:
                return self._observed(IdentityOutcome.MULTI_FACE, faces)

            if self._paused():
                return self._observed(IdentityOutcome.PAUSED, faces)

            embedding = await self.recognizer.embed(frame)
            matched = await self.recognizer.compare_to_registered(embedding)
        except ResourceUnavailable as e:
            logger.warning(f"⚠️ Camera unavailable during identity sample: {e}")
            return IdentityResult(IdentityOutcome.SOURCE_UNAVAILABLE, mismatch_count=self.mismatch_count, error=str(e))
        except Exception as e:
            return self._transient(str(e))

        if matched:
            self.mismatch_count = 0
            return self._observed(IdentityOutcome.MATCH, faces, matched=True)

        self.mismatch_count += 1
        return self._observed(IdentityOutcome.MISMATCH, faces, matched=False)

    def _observed(self, outcome: IdentityOutcome, faces: int, matched: Optional[bool] = None) -> IdentityResult:
        return IdentityResult(
            outcome=outcome,
            sample=IdentitySample(faces_detected=faces, matched_registered_identity=matched),
            mismatch_count=self.mismatch_count,
        )

    def _transient(self, reason: str) -> IdentityResult:
        logger.warning(f"⚠️ Identity sample skipped: {reason}")
        return IdentityResult(IdentityOutcome.TRANSIENT_ERROR, mismatch_count=self.mismatch_count, error=reason)
