from __future__ import annotations
"""
Invigilator Service

Per-session proctoring loop, interview controller, narration and the
LiveKit room watcher.
"""

from invigilator.service.narration import NarrationChannel, AudioPlayer, Playback
from invigilator.service.proctoring import ProctoringSession, SessionRegistry
from invigilator.service.interview import InterviewController
from invigilator.service.factory import build_proctoring_session

__all__ = [
    "NarrationChannel",
    "AudioPlayer",
    "Playback",
    "ProctoringSession",
    "SessionRegistry",
    "InterviewController",
    "build_proctoring_session",
    "RoomProctoringService",
]


def __getattr__(name: str):
    # LiveKit is imported only when the room watcher is asked for
    if name == "RoomProctoringService":
        from invigilator.service.room import RoomProctoringService
        return RoomProctoringService
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
