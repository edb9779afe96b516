from __future__ import annotations
"""
FastAPI Server for Invigilator

Monitoring and control surface: room join/leave for the backend, and
per-session status, termination and completion.
"""

from contextlib import asynccontextmanager
from typing import Any, Callable, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from invigilator.cfg import get_settings
from invigilator.models.behavior import score_breakdown
from invigilator.service.proctoring import ProctoringSession, SessionRegistry
from invigilator.utils.alerts import ExitReason, RuleId
from invigilator.utils.logger import get_logger

logger = get_logger(__name__)

RoomServiceFactory = Callable[[SessionRegistry], Any]


class JoinRoomRequest(BaseModel):
    """Request to join a room for proctoring."""
    room_name: str
    participant_identity: str = "invigilator"


class JoinRoomResponse(BaseModel):
    """Response after joining or leaving a room."""
    success: bool
    room_name: str
    message: str


class LeaveRoomRequest(BaseModel):
    """Request to leave a room."""
    room_name: str


class StatusResponse(BaseModel):
    """Status response."""
    active_rooms: list[str]
    sessions: list[str]
    total_sessions: int


class TerminateRequest(BaseModel):
    """Host-requested termination."""
    rule_id: RuleId = RuleId.IDENTITY_MISMATCH
    reason: Optional[ExitReason] = None


class SessionActionResponse(BaseModel):
    """Result of a termination or completion request."""
    session_id: str
    accepted: bool
    status: dict


def _default_room_service(registry: SessionRegistry):
    from invigilator.service.room import create_room_service
    return create_room_service(registry=registry)


def create_app(
    registry: Optional[SessionRegistry] = None,
    room_service_factory: Optional[RoomServiceFactory] = None,
) -> FastAPI:
    """
    Build the API.

    Args:
        registry: Sessions to expose, shared with every room watcher
        room_service_factory: ``registry -> RoomProctoringService``
    """
    registry = registry if registry is not None else SessionRegistry()
    room_service_factory = room_service_factory or _default_room_service
    rooms: dict[str, Any] = {}

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler."""
        logger.info("🚀 Invigilator API starting...")
        yield
        logger.info("👋 Shutting down, completing all sessions...")
        for room_name, service in list(rooms.items()):
            try:
                await service.disconnect()
            except Exception as e:
                logger.error(f"Error disconnecting from {room_name}: {e}")
        rooms.clear()
        await registry.shutdown()

    app = FastAPI(
        title="Invigilator",
        description="Live proctoring for interview practice sessions",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.registry = registry
    app.state.rooms = rooms

    def _session(session_id: str) -> ProctoringSession:
        session = registry.get(session_id)
        if session is None:
            raise HTTPException(status_code=404, detail=f"Unknown session: {session_id}")
        return session

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy", "active_sessions": len(registry)}

    @app.get("/status", response_model=StatusResponse)
    async def get_status():
        """Get current service status."""
        return StatusResponse(
            active_rooms=list(rooms.keys()),
            sessions=[s.session_id for s in registry.all()],
            total_sessions=len(registry),
        )

    @app.get("/sessions/{session_id}")
    async def get_session(session_id: str):
        """Current status, counters and last samples for one session."""
        session = _session(session_id)
        snapshot = session.snapshot()
        last = session.behavior.last_sample
        snapshot["score_breakdown"] = score_breakdown(last, session.behavior.cfg) if last else None
        return snapshot

    @app.post("/sessions/{session_id}/terminate", response_model=SessionActionResponse)
    async def terminate_session(session_id: str, request: TerminateRequest):
        """Terminate a session; teardown continues in the background."""
        session = _session(session_id)
        accepted = await session.terminate(request.rule_id, request.reason, wait=False)
        return SessionActionResponse(session_id=session_id, accepted=accepted, status=session.status.to_dict())

    @app.post("/sessions/{session_id}/complete", response_model=SessionActionResponse)
    async def complete_session(session_id: str):
        """Mark a session's interview as finished."""
        session = _session(session_id)
        accepted = await session.complete()
        return SessionActionResponse(session_id=session_id, accepted=accepted, status=session.status.to_dict())

    @app.post("/join", response_model=JoinRoomResponse)
    async def join_room(request: JoinRoomRequest):
        """
        Join a room for proctoring.

        Called by backend when an interview starts.
        """
        room_name = request.room_name

        if room_name in rooms:
            return JoinRoomResponse(
                success=True,
                room_name=room_name,
                message="Already monitoring this room",
            )

        try:
            service = room_service_factory(registry)
            await service.connect(room_name, request.participant_identity)
        except Exception as e:
            logger.error(f"❌ Failed to join room {room_name}: {e}")
            raise HTTPException(status_code=500, detail=str(e))

        rooms[room_name] = service
        logger.info(f"✅ Started monitoring room: {room_name}")
        return JoinRoomResponse(
            success=True,
            room_name=room_name,
            message="Successfully joined room for proctoring",
        )

    @app.post("/leave", response_model=JoinRoomResponse)
    async def leave_room(request: LeaveRoomRequest):
        """
        Leave a room.

        Called by backend when an interview ends.
        """
        room_name = request.room_name

        service = rooms.pop(room_name, None)
        if service is None:
            return JoinRoomResponse(
                success=True,
                room_name=room_name,
                message="Not monitoring this room",
            )

        try:
            await service.disconnect()
        except Exception as e:
            logger.error(f"❌ Failed to leave room {room_name}: {e}")
            raise HTTPException(status_code=500, detail=str(e))

        logger.info(f"👋 Left room: {room_name}")
        return JoinRoomResponse(
            success=True,
            room_name=room_name,
            message="Successfully left room",
        )

    return app


app = create_app()


def start_server(host: Optional[str] = None, port: Optional[int] = None):
    """Start the FastAPI server."""
    import uvicorn

    settings = get_settings()

    uvicorn.run(
        "invigilator.api.server:app",
        host=host or settings.api_host,
        port=port or settings.api_port,
        reload=False,
    )


if __name__ == "__main__":
    start_server()
