"""
Violation Reporter

Submits violation reports to the backend audit log and the session's
body-language aggregate to the feedback store.
"""

import asyncio
import time
from datetime import datetime
from typing import Optional

from invigilator.data.client import BackendClient
from invigilator.errors import BackendError, ReportSubmissionFailure
from invigilator.models.body_language import BodyLanguageAnalyzer
from invigilator.utils.alerts import ViolationType
from invigilator.utils.images import to_data_url
from invigilator.utils.logger import get_logger

logger = get_logger(__name__)


class ViolationReporter:
    """
    Reports violations through ``BackendClient.log_violation``.

    Each (session, violation type, action) is delivered at most once, so a
    retried termination cannot produce a second report.

    Example:
        >>> reporter = ViolationReporter(client, user_id="user-42")
        >>> await reporter.report("sess-1", ViolationType.CAMERA_OFF, "Session Terminated")
    """

    def __init__(self, client: BackendClient, user_id: Optional[str] = None):
        """
        Initialize violation reporter.

        Args:
            client: Backend client
            user_id: Candidate's user ID, sent with every report
        """
        self.client = client
        self.user_id = user_id

        self._sent: dict[str, datetime] = {}
        self._pending: set[asyncio.Task] = set()

    def _key(self, session_id: str, violation_type: ViolationType, action: str) -> str:
        return f"{session_id}:{violation_type.value}:{action}"

    async def report(
        self,
        session_id: str,
        violation_type: ViolationType,
        action: str,
        evidence: Optional[bytes] = None,
    ) -> bool:
        """
        Submit one report.

        Args:
            session_id: Interview session ID
            violation_type: Violation type as the backend names it
            action: Action taken ("First Warning Issued", "Session Terminated", ...)
            evidence: JPEG bytes, sent as a data URL

        Returns:
            True if sent, False if this report was already delivered

        Raises:
            ReportSubmissionFailure: If the backend rejected the report
        """
        key = self._key(session_id, violation_type, action)
        if key in self._sent:
            return False

        # Claimed before the await so a concurrent duplicate is dropped
        self._sent[key] = datetime.utcnow()
        screenshot = to_data_url(evidence) if evidence else None

        try:
            await self.client.log_violation(
                user_id=self.user_id,
                interview_id=session_id,
                violation_type=violation_type.value,
                action_taken=action,
                screenshot=screenshot,
            )
        except BackendError as e:
            raise ReportSubmissionFailure(f"Report {violation_type.value} failed: {e}") from e

        logger.info(f"📤 Violation reported: {violation_type.value} ({action})")
        return True

    def report_nowait(
        self,
        session_id: str,
        violation_type: ViolationType,
        action: str,
        evidence: Optional[bytes] = None,
    ) -> asyncio.Task:
        """Fire-and-forget variant for warnings; failures are logged."""
        task = asyncio.create_task(self._report_logged(session_id, violation_type, action, evidence))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _report_logged(self, session_id, violation_type, action, evidence) -> None:
        try:
            await self.report(session_id, violation_type, action, evidence)
        except ReportSubmissionFailure as e:
            logger.error(f"❌ {e}")

    async def drain(self) -> None:
        """Wait for every fire-and-forget report still in flight."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def was_reported(self, session_id: str, violation_type: ViolationType, action: str) -> bool:
        return self._key(session_id, violation_type, action) in self._sent


class BodyLanguagePublisher:
    """
    Saves a session's body-language aggregate once, on teardown.

    Best effort: a failed save is logged and never blocks the teardown.
    """

    def __init__(self, client: BackendClient, analyzer: BodyLanguageAnalyzer):
        self.client = client
        self.analyzer = analyzer
        self.saved = False

    async def save(self, session_id: str) -> bool:
        """
        Submit the aggregate for ``session_id``.

        Returns:
            True if the backend stored it; False when already saved, when
            nothing was observed, or on a backend failure
        """
        if self.saved:
            return False

        summary = self.analyzer.summary()
        if summary.sample_count == 0:
            logger.info(f"⚠️ No body-language samples for {session_id}, skipping save")
            return False

        self.saved = True
        payload = summary.to_payload(session_id, int(time.time() * 1000))
        try:
            await self.client.save_body_language(payload)
        except BackendError as e:
            logger.error(f"❌ Body-language save failed for {session_id}: {e}")
            return False

        logger.info(f"✅ Body-language scores saved for {session_id} ({summary.sample_count} samples)")
        return True
