"""Interview host glue: resume, answer loop, narration and completion."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from invigilator.data.session_store import ResumeOutcome, SessionStore
from invigilator.errors import BackendError
from invigilator.service.interview import SETUP_DESTINATION, InterviewController

from conftest import RecordingNavigator


class FakeProctoring:
    def __init__(self, session_id):
        self.session_id = session_id
        self.finished = False
        self.start = AsyncMock()
        self.complete = AsyncMock(side_effect=self._complete)

    async def _complete(self):
        self.finished = True
        return True


def make_client():
    client = MagicMock()
    client.start_session = AsyncMock(return_value={
        "sessionId": "sess-1",
        "question": "Tell me about yourself.",
        "totalQuestions": 3,
    })
    client.submit_answer = AsyncMock(return_value={
        "nextQuestion": "Describe a project you led.",
        "current": 2,
        "total": 3,
    })
    client.get_session = AsyncMock(return_value={})
    return client


def make_controller(store=None, client=None):
    store = store or SessionStore()
    client = client or make_client()
    narration = MagicMock()
    built = []

    def factory(session_id):
        proctoring = FakeProctoring(session_id)
        built.append(proctoring)
        return proctoring

    navigator = RecordingNavigator()
    controller = InterviewController(client, store, narration, factory, navigator)
    return controller, built


@pytest.mark.asyncio
async def test_fresh_start_announces_first_question_and_starts_proctoring():
    controller, built = make_controller()

    decision = await controller.initialize(setup_id="setup-9")

    assert decision.outcome is ResumeOutcome.STARTED_FRESH
    controller.narration.announce.assert_called_once_with("sess-1", 1, "Tell me about yourself.")
    assert [p.session_id for p in built] == ["sess-1"]
    built[0].start.assert_awaited_once()
    assert controller.active


@pytest.mark.asyncio
async def test_answer_appends_transcript_and_narrates_next_question():
    controller, _ = make_controller()
    await controller.initialize(setup_id="setup-9")

    question = await controller.submit_answer("  I rebuilt our billing system.  ")

    assert question == "Describe a project you led."
    session = controller.store.get("sess-1")
    assert [(m.sender, m.text) for m in session.transcript] == [
        ("ai", "Tell me about yourself."),
        ("user", "I rebuilt our billing system."),
        ("ai", "Describe a project you led."),
    ]
    assert session.question_index == 2
    assert session.total_questions == 3
    controller.narration.announce.assert_called_with("sess-1", 2, "Describe a project you led.")
    controller.client.submit_answer.assert_awaited_once_with("sess-1", "I rebuilt our billing system.")


@pytest.mark.asyncio
async def test_missing_index_advances_question_ordinal():
    client = make_client()
    client.submit_answer.return_value = {"reply": "Can you elaborate?"}
    controller, _ = make_controller(client=client)
    await controller.initialize(setup_id="setup-9")

    await controller.submit_answer("Sure.")
    await controller.submit_answer("More detail.")

    assert controller.store.get("sess-1").question_index == 3
    keys = [c.args[:2] for c in controller.narration.announce.call_args_list]
    assert keys == [("sess-1", 1), ("sess-1", 2), ("sess-1", 3)]


@pytest.mark.asyncio
async def test_blank_answer_is_ignored():
    controller, _ = make_controller()
    await controller.initialize(setup_id="setup-9")

    assert await controller.submit_answer("   ") is None
    controller.client.submit_answer.assert_not_awaited()


@pytest.mark.asyncio
async def test_done_completes_through_proctoring():
    client = make_client()
    client.submit_answer.return_value = {"done": True}
    controller, built = make_controller(client=client)
    await controller.initialize(setup_id="setup-9")

    assert await controller.submit_answer("Final answer.") is None

    built[0].complete.assert_awaited_once()
    assert not controller.active
    assert await controller.submit_answer("ignored") is None
    assert client.submit_answer.await_count == 1


@pytest.mark.asyncio
async def test_backend_failure_keeps_the_user_message():
    client = make_client()
    client.submit_answer.side_effect = BackendError("502", status_code=502)
    controller, _ = make_controller(client=client)
    await controller.initialize(setup_id="setup-9")

    assert await controller.submit_answer("My answer") is None
    assert controller.store.get("sess-1").transcript[-1].text == "My answer"
    assert controller.active


@pytest.mark.asyncio
async def test_terminated_session_drops_late_answers():
    controller, built = make_controller()
    await controller.initialize(setup_id="setup-9")
    built[0].finished = True

    assert await controller.submit_answer("too late") is None
    controller.client.submit_answer.assert_not_awaited()


@pytest.mark.asyncio
async def test_restored_session_does_not_replay_last_question():
    store = SessionStore()
    store.select_setup("setup-9")
    store.create("sess-1", "setup-9", "Tell me about yourself.")
    controller, built = make_controller(store=store)

    decision = await controller.initialize(setup_id="setup-9")

    assert decision.outcome is ResumeOutcome.RESTORED
    controller.narration.mark_played.assert_called_once_with("sess-1-1")
    controller.narration.announce.assert_not_called()
    controller.client.start_session.assert_not_awaited()
    built[0].start.assert_awaited_once()


@pytest.mark.asyncio
async def test_completed_session_goes_to_completion_view():
    store = SessionStore()
    store.create("sess-1", "setup-9")
    store.mark_completed("sess-1")
    controller, built = make_controller(store=store)

    decision = await controller.initialize(setup_id="setup-9")

    assert decision.outcome is ResumeOutcome.GO_TO_COMPLETION
    assert controller.navigator.calls == [("/interview-feedback", None)]
    assert built == []
    assert not controller.active


@pytest.mark.asyncio
async def test_missing_setup_goes_to_setup():
    controller, built = make_controller()

    decision = await controller.initialize()

    assert decision.outcome is ResumeOutcome.NEEDS_SETUP
    assert controller.navigator.calls == [(SETUP_DESTINATION, None)]
    assert built == []


@pytest.mark.asyncio
async def test_finish_without_proctoring_finalizes_directly():
    store = SessionStore()
    controller = InterviewController(make_client(), store, MagicMock(), None, RecordingNavigator())
    await controller.initialize(setup_id="setup-9")

    await controller.finish()
    await controller.finish()

    controller.narration.stop.assert_called_once()
    assert store.get("sess-1").completed
    assert controller.navigator.calls == [("/interview-feedback", None)]

    controller.acknowledge_completion()
    assert not store.completion_pending
