"""
Invigilator Data Module

Camera stream ownership, backend HTTP client, violation reporting
and persisted interview sessions.
"""

from invigilator.data.frame_source import FrameSource, FrameSink, MediaStream, MediaTrack
from invigilator.data.client import BackendClient
from invigilator.data.publisher import BodyLanguagePublisher, ViolationReporter
from invigilator.data.session_store import (
    TranscriptMessage,
    PersistedSession,
    SessionStorage,
    MemoryStorage,
    JsonFileStorage,
    SessionStore,
    ResumeOutcome,
    ResumeDecision,
    SessionResumer,
)

__all__ = [
    # Camera
    "FrameSource",
    "FrameSink",
    "MediaStream",
    "MediaTrack",
    "LiveKitFrameSource",
    # Backend
    "BackendClient",
    "ViolationReporter",
    "BodyLanguagePublisher",
    # Sessions
    "TranscriptMessage",
    "PersistedSession",
    "SessionStorage",
    "MemoryStorage",
    "JsonFileStorage",
    "SessionStore",
    "ResumeOutcome",
    "ResumeDecision",
    "SessionResumer",
]


def __getattr__(name: str):
    # LiveKit is imported only when the adapter is asked for
    if name == "LiveKitFrameSource":
        from invigilator.data.video_receiver import LiveKitFrameSource
        return LiveKitFrameSource
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
