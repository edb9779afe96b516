from __future__ import annotations
"""
Interview Controller

Host-side glue for one interview: resume or start, exchange answers,
narrate questions, and hand the end of the interview to the shared
teardown.
"""

import inspect
from typing import Any, Callable, Optional

from invigilator.cfg import TerminationConfig
from invigilator.data.session_store import ResumeDecision, ResumeOutcome, SessionResumer, SessionStore
from invigilator.engine.termination import ExitNavigator
from invigilator.errors import BackendError
from invigilator.service.narration import NarrationChannel
from invigilator.service.proctoring import ProctoringSession
from invigilator.utils.logger import get_logger

logger = get_logger(__name__)

SETUP_DESTINATION = "/interview-setup"

SessionFactory = Callable[[str], ProctoringSession]


class InterviewController:
    """
    Drives the question/answer loop and keeps the persisted session current.

    Example:
        >>> controller = InterviewController(client, store, narration, session_factory, navigator)
        >>> decision = await controller.initialize(setup_id="setup-9")
        >>> next_question = await controller.submit_answer("I led the billing rewrite.")
    """

    def __init__(
        self,
        client: Any,
        store: SessionStore,
        narration: Optional[NarrationChannel] = None,
        session_factory: Optional[SessionFactory] = None,
        navigator: Optional[ExitNavigator] = None,
        cfg: Optional[TerminationConfig] = None,
    ):
        """
        Initialize interview controller.

        Args:
            client: BackendClient
            store: Persisted sessions
            narration: Speaks interviewer lines
            session_factory: Builds the ProctoringSession for a session ID
            navigator: Host exit callback ``(destination, reason)``
            cfg: Destinations and delays
        """
        self.client = client
        self.store = store
        self.narration = narration
        self.session_factory = session_factory
        self.navigator = navigator
        self.cfg = cfg or TerminationConfig()
        self.resumer = SessionResumer(store, client)

        self.session_id: Optional[str] = None
        self.decision: Optional[ResumeDecision] = None
        self.proctoring: Optional[ProctoringSession] = None
        self.finished = False

    @property
    def active(self) -> bool:
        if self.session_id is None or self.finished:
            return False
        return self.proctoring is None or not self.proctoring.finished

    async def _navigate(self, destination: str) -> None:
        if self.navigator is None:
            return
        result = self.navigator(destination, None)
        if inspect.isawaitable(result):
            await result

    async def initialize(
        self,
        setup_id: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> ResumeDecision:
        """
        Resume, hydrate or start the interview, then begin proctoring.

        Args:
            setup_id: Interview setup the candidate chose
            session_id: Explicit session from a deep link
        """
        decision = await self.resumer.resume(setup_id=setup_id, session_id=session_id)
        self.decision = decision

        if decision.outcome is ResumeOutcome.GO_TO_COMPLETION:
            self.finished = True
            await self._navigate(self.cfg.completion_destination)
            return decision
        if decision.outcome is ResumeOutcome.NEEDS_SETUP:
            await self._navigate(SETUP_DESTINATION)
            return decision

        session = decision.session
        self.session_id = session.session_id

        if self.narration is not None:
            if decision.outcome is ResumeOutcome.RESTORED:
                # The restored question was spoken before the reload
                self.narration.mark_played(decision.already_played_key)
            else:
                last = session.last_ai_message()
                if last is not None:
                    self.narration.announce(session.session_id, last.question_index or 1, last.text)

        if self.session_factory is not None:
            self.proctoring = self.session_factory(session.session_id)
            await self.proctoring.start()

        return decision

    async def submit_answer(self, answer: str) -> Optional[str]:
        """
        Send an answer and record the exchange.

        Returns:
            The next question, or None when the interview ended or the answer was rejected
        """
        if not self.active:
            logger.warning("⚠️ Answer ignored: no active interview")
            return None
        answer = answer.strip()
        if not answer:
            return None

        sid = self.session_id
        self.store.append_message(sid, "user", answer)

        try:
            data = await self.client.submit_answer(sid, answer)
        except BackendError as e:
            logger.error(f"❌ Answer submission failed for {sid}: {e}")
            return None

        # Proctoring may have ended the session while the request was in flight
        if not self.active:
            return None

        if data.get("done") or data.get("sessionEnded"):
            await self.finish()
            return None

        session = self.store.get(sid)
        current = data.get("current")
        index = current if isinstance(current, int) else session.question_index + 1
        total = data.get("total") if isinstance(data.get("total"), int) else None

        next_question = data.get("nextQuestion") or data.get("question") or data.get("reply")
        if next_question:
            text = str(next_question)
            self.store.append_message(sid, "ai", text, question_index=index)
            if self.narration is not None:
                self.narration.announce(sid, index, text)

        self.store.update_progress(sid, question_index=index, total_questions=total)
        return str(next_question) if next_question else None

    async def finish(self) -> None:
        """All questions answered: tear down and go to the feedback view."""
        if self.finished:
            return
        self.finished = True

        if self.proctoring is not None:
            # Coordinator stops narration, finalizes the store and navigates
            await self.proctoring.complete()
            return

        if self.narration is not None:
            self.narration.stop()
        if self.session_id is not None:
            self.store.mark_completed(self.session_id)
        await self._navigate(self.cfg.completion_destination)

    def acknowledge_completion(self) -> None:
        """Completion view shown; a later start begins a new interview."""
        self.store.clear_completion()
