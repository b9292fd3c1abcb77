"""
Tests for the chat service: persistence around the loop, fatal errors, busy sessions, rebasing.
"""

from dataclasses import replace
from unittest.mock import patch

import pytest

from ragloop.agent.models import FileReference, LoopOutcome
from ragloop.core.errors import ConfigurationError, SchemaValidationError, SessionBusyError
from ragloop.core.session_store import (
    append_turns,
    clear_history,
    get_history,
    get_session,
    select_collection,
    session_guard,
)
from ragloop.schemas.events import DoneEvent, ErrorEvent, FilesEvent, TextFragmentEvent
from ragloop.services.chat_service import answer_chat, collect, stream_chat


def fake_loop(answer="Policy X covers leave.", files=(), error=None, during=None):
    """Stand-in for run_agentic_loop with the same generator protocol."""

    def _loop(history, session_state):
        if during is not None:
            during()
        if error is not None:
            raise error
        yield TextFragmentEvent(text=answer)
        updated = list(history) + ([{"role": "assistant", "content": answer}] if answer.strip() else [])
        return LoopOutcome(
            answer=answer,
            files=list(files),
            history=updated,
            session_state=replace(session_state, total_searches=session_state.total_searches + 2),
            iterations=1,
            stop_reason="sufficient",
            rewritten_query=history[-1]["content"],
        )

    return _loop


def test_turn_persists_user_and_assistant() -> None:
    select_collection("s1", "policies")
    files = [FileReference("a.pdf", "f1")]
    with patch("ragloop.services.chat_service.run_agentic_loop", fake_loop(files=files)):
        events, outcome = collect(stream_chat("s1", "  What is policy X?  "))

    assert [type(e) for e in events] == [TextFragmentEvent, FilesEvent, DoneEvent]
    assert events[1].files[0].filename == "a.pdf"
    assert outcome.answer == "Policy X covers leave."
    assert get_history("s1") == [
        {"role": "user", "content": "What is policy X?"},
        {"role": "assistant", "content": "Policy X covers leave."},
    ]
    snap = get_session("s1")
    assert snap.version == 2
    assert snap.state.total_searches == 2
    assert snap.state.selected_collection == "policies"


def test_no_files_event_when_nothing_cited() -> None:
    with patch("ragloop.services.chat_service.run_agentic_loop", fake_loop()):
        events, _ = collect(stream_chat("s1", "q", collection="policies"))
    assert [type(e) for e in events] == [TextFragmentEvent, DoneEvent]
    assert get_session("s1").state.selected_collection == "policies"


@pytest.mark.parametrize("error", [ConfigurationError("No search collection selected."), SchemaValidationError("bad")])
def test_fatal_error_keeps_user_turn_only(error) -> None:
    with patch("ragloop.services.chat_service.run_agentic_loop", fake_loop(error=error)):
        events, outcome = collect(stream_chat("s1", "What is policy X?"))

    assert outcome is None
    assert events == [ErrorEvent(message=error.message)]
    assert get_history("s1") == [{"role": "user", "content": "What is policy X?"}]


def test_retry_after_failure_appends_cleanly() -> None:
    with patch("ragloop.services.chat_service.run_agentic_loop", fake_loop(error=ConfigurationError("none"))):
        collect(stream_chat("s1", "q"))
    with patch("ragloop.services.chat_service.run_agentic_loop", fake_loop(answer="A.")):
        collect(stream_chat("s1", "q"))
    assert [m["role"] for m in get_history("s1")] == ["user", "user", "assistant"]


def test_busy_session_gets_single_error() -> None:
    with session_guard("s1"):
        events, outcome = collect(stream_chat("s1", "q"))
        with pytest.raises(SessionBusyError):
            answer_chat("s1", "q")
    assert outcome is None
    assert len(events) == 1 and isinstance(events[0], ErrorEvent)
    assert "already processing" in events[0].message
    assert get_history("s1") == []


def test_empty_question_is_rejected() -> None:
    events, outcome = collect(stream_chat("s1", "   "))
    assert outcome is None
    assert events == [ErrorEvent(message="question is required")]


def test_history_cleared_mid_turn_keeps_question_with_answer() -> None:
    append_turns("s1", [{"role": "user", "content": "earlier"}], expected_version=0)
    cleared_mid_turn = fake_loop(answer="A.", during=lambda: clear_history("s1"))
    with patch("ragloop.services.chat_service.run_agentic_loop", cleared_mid_turn):
        _events, outcome = collect(stream_chat("s1", "What is policy X?"))
    assert outcome is not None
    history = get_history("s1")
    assert history[0]["role"] == "user"
    assert history == [
        {"role": "user", "content": "What is policy X?"},
        {"role": "assistant", "content": "A."},
    ]


def test_history_cleared_mid_turn_with_blank_answer_stays_empty() -> None:
    cleared_mid_turn = fake_loop(answer="  ", during=lambda: clear_history("s1"))
    with patch("ragloop.services.chat_service.run_agentic_loop", cleared_mid_turn):
        collect(stream_chat("s1", "q"))
    assert get_history("s1") == []


def test_cancelled_stream_releases_session() -> None:
    with patch("ragloop.services.chat_service.run_agentic_loop", fake_loop()):
        events = stream_chat("s1", "q")
        assert isinstance(next(events), TextFragmentEvent)
        events.close()
    with session_guard("s1"):
        pass
    assert get_history("s1") == [{"role": "user", "content": "q"}]


def test_answer_chat_propagates_fatal_errors() -> None:
    with patch("ragloop.services.chat_service.run_agentic_loop", fake_loop(error=SchemaValidationError("bad"))):
        with pytest.raises(SchemaValidationError):
            answer_chat("s1", "q")
