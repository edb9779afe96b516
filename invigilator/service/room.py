from __future__ import annotations
"""
Room Proctoring Service

Joins a LiveKit room and starts a ProctoringSession for each candidate
video track.
"""

import asyncio
import json
from typing import Any, Callable, Optional

from invigilator.cfg import Settings, get_settings
from invigilator.data.frame_source import FrameSource
from invigilator.service.proctoring import ProctoringSession, SessionRegistry
from invigilator.utils.alerts import RuleId
from invigilator.utils.logger import get_logger

try:
    from livekit import api, rtc
    LIVEKIT_AVAILABLE = True
except ImportError:
    LIVEKIT_AVAILABLE = False

logger = get_logger(__name__)

SessionBuilder = Callable[[str, FrameSource], ProctoringSession]


def session_id_for(participant: "rtc.RemoteParticipant") -> str:
    """Interview session ID from participant metadata, else the identity."""
    if participant.metadata:
        try:
            metadata = json.loads(participant.metadata)
        except ValueError:
            metadata = {}
        if isinstance(metadata, dict) and metadata.get("sessionId"):
            return str(metadata["sessionId"])
    return participant.identity


class RoomProctoringService:
    """
    LiveKit room watcher.

    Example:
        >>> service = RoomProctoringService(builder, registry)
        >>> await service.connect("interview-room-123")
        >>> # Sessions run until the room closes
        >>> await service.disconnect()
    """

    def __init__(
        self,
        session_builder: SessionBuilder,
        registry: Optional[SessionRegistry] = None,
        settings: Optional[Settings] = None,
        client: Any = None,
        store: Any = None,
    ):
        """
        Initialize room service.

        Args:
            session_builder: ``(session_id, frame_source) -> ProctoringSession``
            registry: Where running sessions are published
            settings: LiveKit credentials
            client: BackendClient closed on disconnect
            store: SessionStore consulted so ended sessions are never restarted
        """
        if not LIVEKIT_AVAILABLE:
            raise ImportError("livekit package required: pip install livekit")

        self.session_builder = session_builder
        self.registry = registry if registry is not None else SessionRegistry()
        self.settings = settings or get_settings()
        self.client = client
        self.store = store

        self.room: Optional["rtc.Room"] = None
        self.running = False
        self.tasks: list[asyncio.Task] = []
        self._sources: dict[str, FrameSource] = {}

    def generate_token(self, room_name: str, identity: str) -> str:
        token = api.AccessToken(self.settings.livekit_api_key, self.settings.livekit_api_secret)
        token.with_identity(identity)
        token.with_name("Invigilator")
        token.with_grants(api.VideoGrants(
            room_join=True,
            room=room_name,
            can_subscribe=True,
            can_publish=False,
            can_publish_data=True,
        ))
        return token.to_jwt()

    async def connect(self, room_name: str, participant_identity: str = "invigilator") -> None:
        """Join a room and start watching candidate tracks."""
        jwt = self.generate_token(room_name, participant_identity)

        self.room = rtc.Room()
        self._setup_handlers()
        await self.room.connect(self.settings.livekit_url, jwt)

        logger.info(f"✅ Connected to room: {room_name}")
        self.running = True

    def _setup_handlers(self) -> None:

        @self.room.on("track_subscribed")
        def on_track_subscribed(
            track: rtc.Track,
            publication: rtc.RemoteTrackPublication,
            participant: rtc.RemoteParticipant,
        ):
            if track.kind != rtc.TrackKind.KIND_VIDEO:
                return
            logger.info(f"📹 Subscribed to video from: {participant.identity}")
            task = asyncio.create_task(self._start_session(track, participant))
            self.tasks.append(task)

        @self.room.on("track_unsubscribed")
        def on_track_unsubscribed(
            track: rtc.Track,
            publication: rtc.RemoteTrackPublication,
            participant: rtc.RemoteParticipant,
        ):
            if track.kind != rtc.TrackKind.KIND_VIDEO:
                return
            logger.info(f"📹 Unsubscribed from video: {participant.identity}")
            self._track_lost(participant)

        @self.room.on("participant_disconnected")
        def on_participant_disconnected(participant: rtc.RemoteParticipant):
            logger.info(f"👋 Participant left: {participant.identity}")

        @self.room.on("disconnected")
        def on_disconnected(*args):
            logger.info("🔌 Disconnected from room")
            self.running = False

    def _track_lost(self, participant: "rtc.RemoteParticipant") -> None:
        session_id = session_id_for(participant)
        source = self._sources.get(session_id)
        if source is not None and source.stream is not None:
            # Liveness drops; the absence rule takes it from here
            for media_track in source.stream.tracks:
                media_track.ended = True
        session = self.registry.get(session_id)
        if session is not None and not session.finished:
            # Face count from the lost track is stale
            session.clear_condition(RuleId.MULTIPLE_FACES)

    async def _start_session(self, track: "rtc.Track", participant: "rtc.RemoteParticipant") -> None:
        from invigilator.data.video_receiver import LiveKitFrameSource

        session_id = session_id_for(participant)
        existing = self.registry.get(session_id)
        if existing is not None:
            if existing.finished:
                logger.warning(f"⚠️ Session {session_id} already ended; not restarting proctoring")
            else:
                logger.warning(f"⚠️ Session {session_id} already proctored; ignoring extra track")
            return
        persisted = self.store.get(session_id) if self.store is not None else None
        if persisted is not None and persisted.completed:
            logger.warning(f"⚠️ Session {session_id} is completed; not restarting proctoring")
            return

        source = LiveKitFrameSource(track, participant_id=participant.identity)
        self._sources[session_id] = source
        try:
            session = self.session_builder(session_id, source)
            self.registry.register(session)
            await session.start()
        except Exception as e:
            logger.error(f"❌ Could not start proctoring for {session_id}: {e}")

    async def disconnect(self) -> None:
        """Complete this room's sessions and leave the room."""
        self.running = False

        # Only this room's sessions; the registry may be shared
        for session_id in list(self._sources):
            session = self.registry.remove(session_id)
            if session is not None and not session.finished:
                await session.complete()
        self._sources.clear()

        for task in self.tasks:
            task.cancel()
        if self.tasks:
            await asyncio.gather(*self.tasks, return_exceptions=True)

        if self.room:
            await self.room.disconnect()

        if self.client is not None:
            await self.client.close()
            self.client = None

        logger.info("👋 Disconnected from LiveKit")

    async def run(self, room_name: str) -> None:
        await self.connect(room_name)
        while self.running:
            await asyncio.sleep(1)


def create_room_service(
    registry: Optional[SessionRegistry] = None,
    settings: Optional[Settings] = None,
) -> RoomProctoringService:
    """Room watcher wired to the backend and the on-disk session store."""
    from invigilator.data.client import BackendClient
    from invigilator.data.session_store import JsonFileStorage, SessionStore
    from invigilator.service.factory import build_proctoring_session

    settings = settings or get_settings()
    client = BackendClient(settings.to_backend_config())
    store = SessionStore(JsonFileStorage(settings.to_store_config().path))

    def navigator(destination: str, reason) -> None:
        label = reason.value if reason else "COMPLETED"
        logger.info(f"🚪 Session ended ({label}); host should go to {destination}")

    def builder(session_id: str, source: FrameSource) -> ProctoringSession:
        return build_proctoring_session(
            session_id,
            source,
            client,
            store=store,
            navigator=navigator,
            settings=settings,
        )

    return RoomProctoringService(builder, registry=registry, settings=settings, client=client, store=store)


async def main(room_name: Optional[str] = None) -> None:
    """Proctor every candidate in one LiveKit room until interrupted."""
    import signal
    import sys

    room_name = room_name or (sys.argv[1] if len(sys.argv) > 1 else "test-room")
    service = create_room_service()

    loop = asyncio.get_running_loop()

    def signal_handler():
        logger.warning("⚠️ Shutting down...")
        service.running = False

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    try:
        await service.run(room_name)
    except Exception as e:
        logger.error(f"❌ Error: {e}")
    finally:
        await service.disconnect()
