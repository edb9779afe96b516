"""Persisted sessions and resume decisions."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from invigilator.data.session_store import (
    JsonFileStorage,
    MemoryStorage,
    ResumeOutcome,
    SessionResumer,
    SessionStore,
)
from invigilator.errors import BackendError


def make_client(**responses):
    client = MagicMock()
    client.start_session = AsyncMock(return_value=responses.get(
        "start", {"sessionId": "new-1", "question": "Tell me about yourself.", "totalQuestions": 5}
    ))
    client.get_session = AsyncMock(return_value=responses.get("session", {}))
    return client


# ============================================================================
# Store
# ============================================================================

def test_every_mutation_is_persisted():
    storage = MemoryStorage()
    store = SessionStore(storage)
    store.create("sess-1", "setup-9", "Q1", total_questions=3)
    store.append_message("sess-1", "user", "A1")
    store.update_progress("sess-1", question_index=2)

    reloaded = SessionStore(storage)
    session = reloaded.get("sess-1")
    assert [m.text for m in session.transcript] == ["Q1", "A1"]
    assert session.question_index == 2
    assert session.total_questions == 3
    assert reloaded.active_session_id == "sess-1"
    assert storage.writes == 3


def test_json_file_storage_round_trip(tmp_path):
    path = tmp_path / "state" / "sessions.json"
    store = SessionStore(JsonFileStorage(path))
    store.create("sess-1", "setup-9", "Q1")
    store.mark_completed("sess-1")

    reloaded = SessionStore(JsonFileStorage(path))
    assert reloaded.get("sess-1").completed
    assert reloaded.completion_pending
    assert not path.with_suffix(".json.tmp").exists()


def test_unreadable_file_starts_empty(tmp_path):
    path = tmp_path / "sessions.json"
    path.write_text("{not json")
    store = SessionStore(JsonFileStorage(path))
    assert store.sessions == {}


def test_mark_completed_is_idempotent():
    store = SessionStore()
    store.create("sess-1", "setup-9")
    assert store.mark_completed("sess-1")
    assert not store.mark_completed("sess-1")


def test_completed_session_is_read_only():
    store = SessionStore()
    store.create("sess-1", "setup-9")
    store.mark_completed("sess-1")

    with pytest.raises(ValueError):
        store.append_message("sess-1", "user", "late answer")
    with pytest.raises(ValueError):
        store.update_progress("sess-1", question_index=4)


def test_unknown_session_cannot_be_mutated():
    with pytest.raises(KeyError):
        SessionStore().append_message("nope", "user", "hello")


def test_completing_an_unpersisted_session_still_blocks_resume():
    store = SessionStore()
    store.select_setup("setup-9")
    assert store.mark_completed("ghost")
    assert store.get("ghost").completed
    assert store.get("ghost").setup_id == "setup-9"


def test_playback_key_uses_question_index():
    store = SessionStore()
    session = store.create("sess-1", "setup-9", "Q1")
    store.append_message("sess-1", "user", "A1")
    message = store.append_message("sess-1", "ai", "Q2", question_index=2)
    assert session.playback_key(message) == "sess-1-2"
    assert session.last_ai_message() is message


# ============================================================================
# Resume
# ============================================================================

@pytest.mark.asyncio
async def test_completed_session_routes_to_completion_without_start():
    store = SessionStore()
    store.create("sess-1", "setup-9", "Q1")
    store.mark_completed("sess-1")
    client = make_client()

    decision = await SessionResumer(store, client).resume(setup_id="setup-9")

    assert decision.outcome is ResumeOutcome.GO_TO_COMPLETION
    assert not decision.is_live
    client.start_session.assert_not_awaited()


@pytest.mark.asyncio
async def test_completed_session_is_never_resumed_after_a_reload():
    storage = MemoryStorage()
    store = SessionStore(storage)
    store.create("sess-1", "setup-9", "Q1")
    store.mark_completed("sess-1")
    client = make_client()

    decision = await SessionResumer(SessionStore(storage), client).resume(setup_id="setup-9")

    assert decision.outcome is ResumeOutcome.GO_TO_COMPLETION
    client.start_session.assert_not_awaited()


@pytest.mark.asyncio
async def test_cleared_completion_starts_fresh():
    store = SessionStore()
    store.create("sess-1", "setup-9", "Q1")
    store.mark_completed("sess-1")
    store.clear_completion()
    client = make_client()

    decision = await SessionResumer(store, client).resume(setup_id="setup-9")

    assert decision.outcome is ResumeOutcome.STARTED_FRESH
    assert decision.session.session_id == "new-1"
    client.start_session.assert_awaited_once_with("setup-9")


@pytest.mark.asyncio
async def test_same_setup_restores_verbatim():
    store = SessionStore()
    store.select_setup("setup-9")
    store.create("sess-1", "setup-9", "Q1")
    store.append_message("sess-1", "user", "A1")
    store.append_message("sess-1", "ai", "Q2", question_index=2)
    client = make_client()

    decision = await SessionResumer(store, client).resume(setup_id="setup-9")

    assert decision.outcome is ResumeOutcome.RESTORED
    assert decision.session.session_id == "sess-1"
    assert decision.already_played_key == "sess-1-2"
    client.start_session.assert_not_awaited()


@pytest.mark.asyncio
async def test_other_setup_discards_stale_session():
    store = SessionStore()
    store.create("sess-1", "setup-old", "Q1")
    client = make_client()

    decision = await SessionResumer(store, client).resume(setup_id="setup-new")

    assert decision.outcome is ResumeOutcome.STARTED_FRESH
    assert store.get("sess-1") is None
    assert store.active_session_id == "new-1"
    assert store.get("new-1").transcript[0].text == "Tell me about yourself."


@pytest.mark.asyncio
async def test_no_setup_needs_setup():
    decision = await SessionResumer(SessionStore(), make_client()).resume()
    assert decision.outcome is ResumeOutcome.NEEDS_SETUP


@pytest.mark.asyncio
async def test_start_reads_nested_session_id():
    client = make_client(start={"session": {"_id": "mongo-7"}, "question": "Q1"})
    decision = await SessionResumer(SessionStore(), client).resume(setup_id="setup-9")
    assert decision.session.session_id == "mongo-7"


@pytest.mark.asyncio
async def test_start_without_session_id_raises():
    client = make_client(start={"question": "Q1"})
    with pytest.raises(BackendError):
        await SessionResumer(SessionStore(), client).resume(setup_id="setup-9")


@pytest.mark.asyncio
async def test_deep_link_hydrates_from_backend():
    client = make_client(session={
        "sessionId": "sess-7",
        "question": "Q3",
        "currentIndex": 3,
        "totalQuestions": 5,
        "setup": {"role": "Backend Engineer"},
    })
    store = SessionStore()

    decision = await SessionResumer(store, client).resume(session_id="sess-7")

    assert decision.outcome is ResumeOutcome.HYDRATED
    assert decision.session.question_index == 3
    assert decision.session.setup_id == "resume_sess-7"
    assert store.active_setup_id == "resume_sess-7"
    client.start_session.assert_not_awaited()


@pytest.mark.asyncio
async def test_deep_link_to_completed_session_goes_to_completion():
    store = SessionStore()
    store.create("sess-7", "setup-9")
    store.mark_completed("sess-7")
    store.clear_completion()
    client = make_client()

    decision = await SessionResumer(store, client).resume(session_id="sess-7")

    assert decision.outcome is ResumeOutcome.GO_TO_COMPLETION
    client.get_session.assert_not_awaited()


@pytest.mark.asyncio
async def test_deep_link_failure_falls_back_to_start():
    client = make_client()
    client.get_session.side_effect = BackendError("404", status_code=404)

    decision = await SessionResumer(SessionStore(), client).resume(setup_id="setup-9", session_id="gone")

    assert decision.outcome is ResumeOutcome.STARTED_FRESH
