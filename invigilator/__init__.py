"""
Invigilator - Live proctoring for interview practice sessions

Watches the candidate's camera during a practice interview, escalates
integrity violations through warnings to termination, and tears the
session down through one shared path whether it ends by verdict or by
completion.

Usage:
    from invigilator import ProctoringSession, build_proctoring_session

    session = build_proctoring_session(session_id, frame_source, client, store=store)
    await session.start()

    # Whole LiveKit room
    from invigilator import RoomProctoringService
    from invigilator.service.room import create_room_service
    service = create_room_service()
    await service.connect(room_name)

    # Interview host
    from invigilator import InterviewController
    controller = InterviewController(client, store, narration, session_factory, navigator)
    await controller.initialize(setup_id="setup-9")
"""

__version__ = "0.1.0"
__author__ = "Pendent AI"

from invigilator.cfg import Settings, get_settings
from invigilator.engine import RuleEngine, TerminationCoordinator
from invigilator.service import (
    InterviewController,
    NarrationChannel,
    ProctoringSession,
    SessionRegistry,
    build_proctoring_session,
)


def __getattr__(name: str):
    """Lazy load LiveKit-backed components."""
    if name == "RoomProctoringService":
        from invigilator.service.room import RoomProctoringService
        return RoomProctoringService
    elif name == "LiveKitFrameSource":
        from invigilator.data.video_receiver import LiveKitFrameSource
        return LiveKitFrameSource
    raise AttributeError(f"module 'invigilator' has no attribute '{name}'")


# Public API
__all__ = [
    "Settings",
    "get_settings",
    "RuleEngine",
    "TerminationCoordinator",
    "ProctoringSession",
    "SessionRegistry",
    "InterviewController",
    "NarrationChannel",
    "build_proctoring_session",
    # Lazy loaded
    "RoomProctoringService",
    "LiveKitFrameSource",
    # Version
    "__version__",
]
