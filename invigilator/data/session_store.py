from __future__ import annotations
"""
Session Store

Persists interview progress so a reload resumes instead of restarting,
and guarantees a finished session is never resumed into the live view.
"""

import json
import os
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Protocol

from pydantic import BaseModel, Field

from invigilator.errors import BackendError
from invigilator.utils.logger import get_logger

logger = get_logger(__name__)


# ============================================================================
# Records
# ============================================================================

class TranscriptMessage(BaseModel):
    """One line of the interview conversation."""

    sender: str = Field(description="'ai' or 'user'")
    text: str
    question_index: Optional[int] = None


class PersistedSession(BaseModel):
    """Durable interview progress, keyed by session ID."""

    session_id: str
    setup_id: Optional[str] = None
    question_index: int = 1
    total_questions: Optional[int] = None
    transcript: list[TranscriptMessage] = Field(default_factory=list)
    completed: bool = False
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    def last_ai_message(self) -> Optional[TranscriptMessage]:
        if self.transcript and self.transcript[-1].sender == "ai":
            return self.transcript[-1]
        return None

    def playback_key(self, message: TranscriptMessage) -> str:
        """Key the narration channel uses to play a message once."""
        ordinal = message.question_index or len(self.transcript)
        return f"{self.session_id}-{ordinal}"


# ============================================================================
# Storage backends
# ============================================================================

class SessionStorage(Protocol):
    """Raw key-value persistence for the store."""

    def load(self) -> dict[str, Any]:
        ...

    def save(self, data: dict[str, Any]) -> None:
        ...


class MemoryStorage:
    """In-process storage; survives nothing. Used by tests and the API demo."""

    def __init__(self, data: Optional[dict[str, Any]] = None):
        self.data: dict[str, Any] = data or {}
        self.writes = 0

    def load(self) -> dict[str, Any]:
        return json.loads(json.dumps(self.data))

    def save(self, data: dict[str, Any]) -> None:
        self.data = json.loads(json.dumps(data))
        self.writes += 1


class JsonFileStorage:
    """Single JSON document on disk, replaced atomically on every write."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def load(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"❌ Session store unreadable, starting empty: {e}")
            return {}

    def save(self, data: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        os.replace(tmp_path, self.path)


# ============================================================================
# Store
# ============================================================================

class SessionStore:
    """
    Persisted session records plus the active-session pointer.

    Every mutation is written back before the method returns.

    Example:
        >>> store = SessionStore(JsonFileStorage(".invigilator/sessions.json"))
        >>> store.create("sess-1", "setup-9", "Tell me about yourself.", total_questions=5)
        >>> store.append_message("sess-1", "user", "I build things.")
    """

    def __init__(self, storage: Optional[SessionStorage] = None):
        self.storage = storage or MemoryStorage()
        data = self.storage.load()

        self.sessions: dict[str, PersistedSession] = {
            sid: PersistedSession.model_validate(raw)
            for sid, raw in data.get("sessions", {}).items()
        }
        self.active_session_id: Optional[str] = data.get("active_session_id")
        self.active_setup_id: Optional[str] = data.get("active_setup_id")
        self.completion_pending: bool = bool(data.get("completion_pending", False))

    def _flush(self) -> None:
        self.storage.save({
            "active_session_id": self.active_session_id,
            "active_setup_id": self.active_setup_id,
            "completion_pending": self.completion_pending,
            "sessions": {
                sid: session.model_dump(mode="json")
                for sid, session in self.sessions.items()
            },
        })

    def get(self, session_id: str) -> Optional[PersistedSession]:
        return self.sessions.get(session_id)

    def active(self) -> Optional[PersistedSession]:
        if self.active_session_id is None:
            return None
        return self.sessions.get(self.active_session_id)

    def select_setup(self, setup_id: Optional[str]) -> None:
        """Record the setup the candidate is about to run."""
        self.active_setup_id = setup_id
        self._flush()

    def put(self, session: PersistedSession) -> PersistedSession:
        """Store a record and make it the active session."""
        self.sessions[session.session_id] = session
        self.active_session_id = session.session_id
        self._flush()
        return session

    def create(
        self,
        session_id: str,
        setup_id: Optional[str],
        first_question: Optional[str] = None,
        total_questions: Optional[int] = None,
        question_index: int = 1,
    ) -> PersistedSession:
        transcript = []
        if first_question:
            transcript.append(TranscriptMessage(sender="ai", text=first_question, question_index=question_index))
        return self.put(PersistedSession(
            session_id=session_id,
            setup_id=setup_id,
            question_index=question_index,
            total_questions=total_questions,
            transcript=transcript,
        ))

    def _mutable(self, session_id: str) -> PersistedSession:
        session = self.sessions.get(session_id)
        if session is None:
            raise KeyError(f"Unknown session: {session_id}")
        if session.completed:
            raise ValueError(f"Session {session_id} is completed and read-only")
        return session

    def append_message(
        self,
        session_id: str,
        sender: str,
        text: str,
        question_index: Optional[int] = None,
    ) -> TranscriptMessage:
        session = self._mutable(session_id)
        message = TranscriptMessage(sender=sender, text=text, question_index=question_index)
        session.transcript.append(message)
        session.updated_at = datetime.utcnow()
        self._flush()
        return message

    def update_progress(
        self,
        session_id: str,
        question_index: Optional[int] = None,
        total_questions: Optional[int] = None,
    ) -> PersistedSession:
        session = self._mutable(session_id)
        if question_index is not None:
            session.question_index = question_index
        if total_questions is not None:
            session.total_questions = total_questions
        session.updated_at = datetime.utcnow()
        self._flush()
        return session

    def mark_completed(self, session_id: str) -> bool:
        """
        Finalize a session. Only the first call changes anything.

        Returns:
            True if this call completed the session
        """
        session = self.sessions.get(session_id)
        if session is None:
            # Terminated before anything was persisted; still block resume
            session = PersistedSession(session_id=session_id, setup_id=self.active_setup_id)
            self.sessions[session_id] = session
        if session.completed:
            return False

        session.completed = True
        session.updated_at = datetime.utcnow()
        self.completion_pending = True
        self._flush()
        logger.info(f"🔒 Session {session_id} marked completed")
        return True

    def clear_completion(self) -> None:
        """Acknowledge the completion view; the next start begins fresh."""
        self.completion_pending = False
        active = self.active()
        if active is not None and active.completed:
            self.active_session_id = None
        self._flush()

    def discard(self, session_id: str) -> None:
        """Drop a stale record."""
        self.sessions.pop(session_id, None)
        if self.active_session_id == session_id:
            self.active_session_id = None
        self._flush()


# ============================================================================
# Resume
# ============================================================================

class ResumeOutcome(str, Enum):
    HYDRATED = "hydrated"
    GO_TO_COMPLETION = "go_to_completion"
    RESTORED = "restored"
    STARTED_FRESH = "started_fresh"
    NEEDS_SETUP = "needs_setup"


@dataclass
class ResumeDecision:
    """What the host should show after initialization."""
    outcome: ResumeOutcome
    session: Optional[PersistedSession] = None
    already_played_key: Optional[str] = None

    @property
    def is_live(self) -> bool:
        return self.outcome in (ResumeOutcome.HYDRATED, ResumeOutcome.RESTORED, ResumeOutcome.STARTED_FRESH)


class SessionResumer:
    """
    Chooses between hydrate, completion, restore and a fresh start.

    Priority:
        1. explicit session ID (deep link): fetch and hydrate
        2. completed and not yet cleared: go to the completion view
        3. stored, not completed, same setup: restore verbatim, no start call
        4. otherwise start fresh (a stale record for another setup is discarded)
    """

    def __init__(self, store: SessionStore, client: Any):
        self.store = store
        self.client = client

    async def resume(
        self,
        setup_id: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> ResumeDecision:
        if setup_id is not None and setup_id != self.store.active_setup_id:
            self.store.select_setup(setup_id)
        setup_id = setup_id or self.store.active_setup_id

        if session_id:
            decision = await self._hydrate(session_id, setup_id)
            if decision is not None:
                return decision

        if self.store.completion_pending:
            logger.info("🏁 Previous session completed; routing to completion view")
            return ResumeDecision(ResumeOutcome.GO_TO_COMPLETION, session=self.store.active())

        if not setup_id:
            return ResumeDecision(ResumeOutcome.NEEDS_SETUP)

        existing = self.store.active()
        if existing is not None:
            if existing.completed:
                return ResumeDecision(ResumeOutcome.GO_TO_COMPLETION, session=existing)
            if existing.setup_id != setup_id:
                logger.info(f"🧹 Discarding session {existing.session_id} from setup {existing.setup_id}")
                self.store.discard(existing.session_id)
            elif existing.transcript:
                last = existing.last_ai_message()
                played = existing.playback_key(last) if last else None
                logger.info(f"♻️ Restored session {existing.session_id} at question {existing.question_index}")
                return ResumeDecision(ResumeOutcome.RESTORED, session=existing, already_played_key=played)

        return await self._start(setup_id)

    async def _hydrate(self, session_id: str, setup_id: Optional[str]) -> Optional[ResumeDecision]:
        stored = self.store.get(session_id)
        if stored is not None and stored.completed:
            return ResumeDecision(ResumeOutcome.GO_TO_COMPLETION, session=stored)

        try:
            data = await self.client.get_session(session_id)
        except BackendError as e:
            logger.error(f"❌ Could not load session {session_id}: {e}")
            return None

        sid = data.get("sessionId") or session_id
        if data.get("setup"):
            setup_id = f"resume_{sid}"
            self.store.select_setup(setup_id)

        session = self.store.create(
            session_id=sid,
            setup_id=setup_id,
            first_question=data.get("question"),
            total_questions=data.get("totalQuestions"),
            question_index=data.get("currentIndex") or 1,
        )
        logger.info(f"🔗 Hydrated session {sid} at question {session.question_index}")
        return ResumeDecision(ResumeOutcome.HYDRATED, session=session)

    async def _start(self, setup_id: str) -> ResumeDecision:
        data = await self.client.start_session(setup_id)
        sid = data.get("sessionId") or (data.get("session") or {}).get("_id")
        if not sid:
            raise BackendError("Start response carried no session ID")

        session = self.store.create(
            session_id=sid,
            setup_id=setup_id,
            first_question=data.get("question"),
            total_questions=data.get("totalQuestions"),
        )
        logger.info(f"🆕 Started session {sid} for setup {setup_id}")
        return ResumeDecision(ResumeOutcome.STARTED_FRESH, session=session)
