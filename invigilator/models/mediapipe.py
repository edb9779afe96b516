from __future__ import annotations
"""
MediaPipe Adapters

Face mesh + hand landmarks for behavior analysis, face detection for
counting, and a mesh-geometry embedding for identity comparison.
"""

from dataclasses import dataclass, field
from typing import Optional, Protocol

import numpy as np

from invigilator.errors import TransientDetectionError
from invigilator.utils.logger import get_logger

logger = get_logger(__name__)

# Lazy import
mp = None


def _import_mediapipe():
    """Lazy import MediaPipe."""
    global mp
    if mp is None:
        import mediapipe as _mp
        mp = _mp
    return mp


Point = tuple[float, float, float]

FACE_MESH_POINTS = 468


@dataclass
class Landmarks:
    """
    Normalized landmarks for one frame.

    Attributes:
        face: Face mesh points of the first face, None if no face
        hands: One point list per detected hand
    """
    face: Optional[list[Point]] = None
    hands: list[list[Point]] = field(default_factory=list)

    @property
    def has_face(self) -> bool:
        return self.face is not None and len(self.face) >= FACE_MESH_POINTS


class LandmarkDetector(Protocol):
    def detect(self, frame: np.ndarray) -> Landmarks:
        ...


class MediaPipeLandmarker:
    """
    Face mesh and hand landmark extraction.

    Example:
        >>> landmarker = MediaPipeLandmarker(face_confidence=0.5)
        >>> marks = landmarker.detect(rgb_frame)
        >>> marks.has_face
        True
    """

    def __init__(self, face_confidence: float = 0.5, max_hands: int = 2):
        self.face_confidence = face_confidence
        self.max_hands = max_hands
        self.face_mesh = None
        self.hands = None

    def setup_model(self) -> None:
        mp = _import_mediapipe()

        self.face_mesh = mp.solutions.face_mesh.FaceMesh(
            static_image_mode=False,
            max_num_faces=1,
            refine_landmarks=True,
            min_detection_confidence=self.face_confidence,
            min_tracking_confidence=0.5,
        )
        self.hands = mp.solutions.hands.Hands(
            static_image_mode=False,
            max_num_hands=self.max_hands,
            min_detection_confidence=0.5,
            min_tracking_confidence=0.5,
        )
        logger.info("✅ MediaPipe face mesh and hands initialized")

    def is_ready(self) -> bool:
        return self.face_mesh is not None and self.hands is not None

    def detect(self, frame: np.ndarray) -> Landmarks:
        """
        Extract landmarks from an RGB frame.

        Raises:
            TransientDetectionError: If the runtime fails on this frame
        """
        if not self.is_ready():
            self.setup_model()

        try:
            mesh_results = self.face_mesh.process(frame)
            hand_results = self.hands.process(frame)
        except Exception as e:
            raise TransientDetectionError(f"MediaPipe inference failed: {e}") from e

        result = Landmarks()
        if mesh_results.multi_face_landmarks:
            face = mesh_results.multi_face_landmarks[0]
            result.face = [(lm.x, lm.y, lm.z) for lm in face.landmark]
        if hand_results.multi_hand_landmarks:
            result.hands = [
                [(lm.x, lm.y, lm.z) for lm in hand.landmark]
                for hand in hand_results.multi_hand_landmarks
            ]
        return result

    def close(self) -> None:
        for solution in (self.face_mesh, self.hands):
            if solution is not None:
                solution.close()
        self.face_mesh = None
        self.hands = None


class MediaPipeFaceDetector:
    """Face boxes for counting people in frame."""

    def __init__(self, face_confidence: float = 0.5):
        self.face_confidence = face_confidence
        self.face_detection = None

    def setup_model(self) -> None:
        mp = _import_mediapipe()
        self.face_detection = mp.solutions.face_detection.FaceDetection(
            model_selection=1,  # Full range model
            min_detection_confidence=self.face_confidence,
        )
        logger.info("✅ MediaPipe face detection initialized")

    def is_ready(self) -> bool:
        return self.face_detection is not None

    def detect(self, frame: np.ndarray) -> list[list[int]]:
        """
        Detect faces.

        Returns:
            One ``[x1, y1, x2, y2]`` pixel box per face
        """
        if not self.is_ready():
            self.setup_model()

        try:
            results = self.face_detection.process(frame)
        except Exception as e:
            raise TransientDetectionError(f"Face detection failed: {e}") from e

        h, w = frame.shape[:2]
        boxes = []
        for detection in results.detections or []:
            bbox = detection.location_data.relative_bounding_box
            boxes.append([
                int(bbox.xmin * w),
                int(bbox.ymin * h),
                int((bbox.xmin + bbox.width) * w),
                int((bbox.ymin + bbox.height) * h),
            ])
        return boxes

    def close(self) -> None:
        if self.face_detection is not None:
            self.face_detection.close()
            self.face_detection = None


class MeshEmbedder:
    """
    Identity vector from face mesh geometry.

    Points are centered on the nose tip and scaled by face width, so the
    vector is stable under translation and distance to the camera.
    """

    NOSE_TIP = 4
    LEFT_FACE = 234
    RIGHT_FACE = 454

    def __init__(self, landmarker: MediaPipeLandmarker):
        self.landmarker = landmarker

    def is_ready(self) -> bool:
        return True

    def embed(self, frame: np.ndarray) -> list[float]:
        marks = self.landmarker.detect(frame)
        if not marks.has_face:
            raise TransientDetectionError("No face mesh for embedding")
        return embed_landmarks(marks.face)


def embed_landmarks(face: list[Point]) -> list[float]:
    """Normalize mesh points into a flat, unit-length vector."""
    points = np.asarray(face[:FACE_MESH_POINTS], dtype=np.float32)[:, :2]
    origin = points[MeshEmbedder.NOSE_TIP]
    width = np.linalg.norm(points[MeshEmbedder.RIGHT_FACE] - points[MeshEmbedder.LEFT_FACE])
    if width <= 0:
        raise TransientDetectionError("Degenerate face mesh")

    vector = ((points - origin) / width).flatten()
    norm = np.linalg.norm(vector)
    return (vector / norm).tolist() if norm > 0 else vector.tolist()
