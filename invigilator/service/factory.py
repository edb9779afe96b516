from __future__ import annotations
"""
Session Factory

Assembles a ProctoringSession from settings with the production adapters.
"""

from typing import Optional

from invigilator.cfg import Settings, get_settings
from invigilator.data.client import BackendClient
from invigilator.data.frame_source import FrameSource
from invigilator.data.publisher import BodyLanguagePublisher, ViolationReporter
from invigilator.engine.termination import ExitNavigator
from invigilator.models.behavior import BehaviorSampler, LandmarkBehaviorAnalyzer
from invigilator.models.body_language import BodyLanguageAnalyzer
from invigilator.models.identity import FaceRecognitionPipeline, IdentitySampler, RemoteFaceVerifier
from invigilator.models.mediapipe import MediaPipeFaceDetector, MediaPipeLandmarker, MeshEmbedder
from invigilator.models.yolo import RemoteObjectDetector, YOLOObjectDetector
from invigilator.service.proctoring import ProctoringSession


def build_proctoring_session(
    session_id: str,
    frame_source: FrameSource,
    client: BackendClient,
    store=None,
    narration=None,
    navigator: Optional[ExitNavigator] = None,
    user_id: Optional[str] = None,
    settings: Optional[Settings] = None,
) -> ProctoringSession:
    """
    Wire samplers, rule engine and teardown for one session.

    Args:
        session_id: Interview session ID
        frame_source: Camera capability
        client: Backend client for verification, detection and reports
        store: SessionStore
        narration: NarrationChannel
        navigator: Host exit callback
        user_id: Candidate's user ID for reports
        settings: Settings, defaults to the cached environment settings
    """
    settings = settings or get_settings()
    identity_cfg = settings.to_identity_config()
    behavior_cfg = settings.to_behavior_config()

    recognizer = FaceRecognitionPipeline(
        detector=MediaPipeFaceDetector(face_confidence=identity_cfg.face_confidence),
        embedder=MeshEmbedder(MediaPipeLandmarker(face_confidence=identity_cfg.face_confidence)),
        verifier=RemoteFaceVerifier(client),
    )
    recognizer.setup()

    if settings.remote_object_detection:
        object_detector = RemoteObjectDetector(client)
    else:
        object_detector = YOLOObjectDetector(behavior_cfg.yolo_model_path, confidence=behavior_cfg.object_confidence)

    body_language = BodyLanguageAnalyzer(hand_near_face_distance=behavior_cfg.hand_near_face_distance)

    # Separate landmarker: the two samplers may run on different threads
    behavior = BehaviorSampler(
        frame_source,
        MediaPipeLandmarker(face_confidence=identity_cfg.face_confidence),
        LandmarkBehaviorAnalyzer(behavior_cfg),
        object_detector=object_detector,
        cfg=behavior_cfg,
        session_id=session_id,
        body_language=body_language,
    )
    identity = IdentitySampler(
        frame_source,
        recognizer,
        cfg=identity_cfg,
        behavior_status=lambda: behavior.status,
        session_id=session_id,
    )

    return ProctoringSession(
        session_id=session_id,
        frame_source=frame_source,
        identity=identity,
        behavior=behavior,
        store=store,
        reporter=ViolationReporter(client, user_id=user_id),
        narration=narration,
        navigator=navigator,
        identity_cfg=identity_cfg,
        rule_cfg=settings.to_rule_config(),
        termination_cfg=settings.to_termination_config(),
        body_language=BodyLanguagePublisher(client, body_language),
    )
