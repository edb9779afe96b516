from __future__ import annotations
"""
Prohibited Object Detection

YOLO11 running in-process, or the backend's detector over HTTP.
https://docs.ultralytics.com/models/yolo11/
"""

import asyncio
from pathlib import Path
from typing import Optional, Protocol

import numpy as np

from invigilator.errors import BackendError, EvidenceCaptureFailure, TransientDetectionError
from invigilator.utils.images import encode_jpeg
from invigilator.utils.logger import get_logger

logger = get_logger(__name__)

# Lazy import
YOLO = None


def _import_yolo():
    """Lazy import YOLO."""
    global YOLO
    if YOLO is None:
        from ultralytics import YOLO as _YOLO
        YOLO = _YOLO
    return YOLO


# COCO class IDs
PHONE_CLASS = 67

PROHIBITED_CLASSES = {
    PHONE_CLASS: "phone",
}


class ObjectDetector(Protocol):
    async def detect(self, frame: np.ndarray) -> bool:
        """True if a prohibited object is in frame."""
        ...


class YOLOObjectDetector:
    """
    YOLO11 wrapper flagging prohibited objects.

    Example:
        >>> detector = YOLOObjectDetector("yolo11n.pt", confidence=0.5)
        >>> await detector.detect(rgb_frame)
        False
    """

    def __init__(self, model_path: str = "yolo11n.pt", confidence: float = 0.5, device: Optional[str] = None):
        """
        Initialize YOLO11 detector.

        Args:
            model_path: Path to model weights
            confidence: Detection confidence threshold
            device: Torch device, None lets Ultralytics choose
        """
        self.model_path = model_path
        self.confidence = confidence
        self.device = device
        self.model = None

    def setup_model(self) -> None:
        YOLO = _import_yolo()

        path = self.model_path
        if not Path(path).exists():
            logger.info("📥 Downloading YOLO11 model...")
            path = "yolo11n.pt"  # Will download automatically

        self.model = YOLO(path)
        if self.device:
            self.model.to(self.device)
        logger.info(f"✅ YOLO11 loaded: {path}")

    def is_ready(self) -> bool:
        return self.model is not None

    def detect_sync(self, frame: np.ndarray) -> list[dict]:
        """
        Run detection on a frame.

        Returns:
            One ``{class, confidence, box}`` dict per prohibited object
        """
        if not self.is_ready():
            self.setup_model()

        try:
            results = self.model(
                frame,
                conf=self.confidence,
                classes=list(PROHIBITED_CLASSES.keys()),
                verbose=False,
            )
        except Exception as e:
            raise TransientDetectionError(f"YOLO inference failed: {e}") from e

        found = []
        if not results or results[0].boxes is None:
            return found

        boxes = results[0].boxes
        for i in range(len(boxes)):
            cls = int(boxes.cls[i])
            if cls not in PROHIBITED_CLASSES:
                continue
            found.append({
                "class": PROHIBITED_CLASSES[cls],
                "confidence": float(boxes.conf[i]),
                "box": boxes.xyxy[i].cpu().numpy().tolist(),
            })
        return found

    async def detect(self, frame: np.ndarray) -> bool:
        found = await asyncio.to_thread(self.detect_sync, frame)
        return len(found) > 0


class RemoteObjectDetector:
    """Posts JPEG frames to the backend's cheating detector."""

    def __init__(self, client, jpeg_quality: int = 80):
        self.client = client
        self.jpeg_quality = jpeg_quality

    def is_ready(self) -> bool:
        return True

    async def detect(self, frame: np.ndarray) -> bool:
        try:
            jpeg = encode_jpeg(frame, quality=self.jpeg_quality)
        except EvidenceCaptureFailure as e:
            raise TransientDetectionError(f"Frame not encodable: {e}") from e

        try:
            data = await self.client.detect_objects(jpeg)
        except BackendError as e:
            raise TransientDetectionError(f"Remote detection failed: {e}") from e

        return bool(data.get("phoneDetected", False))
