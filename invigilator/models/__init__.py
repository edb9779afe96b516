from __future__ import annotations
"""
Invigilator Models Module

Samplers and the model adapters behind them. MediaPipe and Ultralytics
are imported on first use.
"""

from invigilator.models.identity import (
    FaceRecognizer,
    FaceRecognitionPipeline,
    RemoteFaceVerifier,
    IdentitySampler,
)
from invigilator.models.behavior import (
    BehaviorAnalyzer,
    LandmarkBehaviorAnalyzer,
    BehaviorSampler,
)
from invigilator.models.body_language import BodyLanguageAnalyzer, Expression
from invigilator.models.mediapipe import (
    Landmarks,
    MediaPipeLandmarker,
    MediaPipeFaceDetector,
    MeshEmbedder,
)
from invigilator.models.yolo import ObjectDetector, YOLOObjectDetector, RemoteObjectDetector

__all__ = [
    # Identity
    "FaceRecognizer",
    "FaceRecognitionPipeline",
    "RemoteFaceVerifier",
    "IdentitySampler",
    # Behavior
    "BehaviorAnalyzer",
    "LandmarkBehaviorAnalyzer",
    "BehaviorSampler",
    # Coaching
    "BodyLanguageAnalyzer",
    "Expression",
    # Adapters
    "Landmarks",
    "MediaPipeLandmarker",
    "MediaPipeFaceDetector",
    "MeshEmbedder",
    "ObjectDetector",
    "YOLOObjectDetector",
    "RemoteObjectDetector",
]
