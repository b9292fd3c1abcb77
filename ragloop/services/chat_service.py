"""
Chat turns: session bookkeeping around the agentic loop.

Responsibility: Hold the session for one message, persist the user turn before
the loop runs and the assistant turn plus session state after, and turn fatal
errors into a single error event. Called by the API; no HTTP here.
"""

import logging
from dataclasses import replace
from typing import Generator, Iterator, Optional, Sequence

from ragloop.agent.graph import run_agentic_loop
from ragloop.agent.models import ConversationTurn, LoopOutcome, SessionState
from ragloop.core.errors import AgentError, HistoryConflictError
from ragloop.core.session_store import (
    append_turns,
    get_session,
    select_collection,
    session_guard,
)
from ragloop.schemas.events import DoneEvent, ErrorEvent, FileInfo, FilesEvent

logger = logging.getLogger(__name__)


def _commit(
    session_id: str,
    turns: Sequence[ConversationTurn],
    expected_version: int,
    state: Optional[SessionState] = None,
    question_turn: Optional[ConversationTurn] = None,
) -> int:
    """
    Conditioned append; on a version conflict rebase once onto the latest history.
    If the history was cleared under us, question_turn is re-appended ahead of
    the answer so the saved history never starts with an orphaned reply.
    """
    try:
        return append_turns(session_id, turns, expected_version, state)
    except HistoryConflictError as e:
        latest = get_session(session_id)
        if question_turn is not None and turns and (not latest.history or latest.history[-1] != question_turn):
            turns = [question_turn] + list(turns)
        logger.warning("[chat:commit] %s; rebasing %d turn(s) onto latest history", e.message, len(turns))
        return append_turns(session_id, turns, latest.version, state)


def _process_turn(
    session_id: str,
    question: str,
    collection: Optional[str] = None,
) -> Generator[object, None, LoopOutcome]:
    q = (question or "").strip()
    if not q:
        raise ValueError("question is required")
    with session_guard(session_id):
        if collection and collection.strip():
            select_collection(session_id, collection)
        snap = get_session(session_id)
        user_turn: ConversationTurn = {"role": "user", "content": q}
        # Persisted before the loop so a failed turn can be retried
        version = _commit(session_id, [user_turn], snap.version)
        history = snap.history + [user_turn]

        outcome = yield from run_agentic_loop(history, snap.state)

        new_turns = outcome.history[len(history):]
        latest_collection = get_session(session_id).state.selected_collection
        state = replace(outcome.session_state, selected_collection=latest_collection)
        _commit(session_id, new_turns, version, state, question_turn=user_turn)
        if outcome.files:
            yield FilesEvent(files=[FileInfo(**f.to_dict()) for f in outcome.files])
        return outcome


def stream_chat(
    session_id: str,
    question: str,
    collection: Optional[str] = None,
) -> Generator[object, None, Optional[LoopOutcome]]:
    """
    Run one turn and yield its events, ending with done (or a single error event
    if the turn failed). Returns the LoopOutcome, or None on failure.
    """
    logger.info("[chat:stream_chat] START session_id=%s question=%r", (session_id or "")[:16], question)
    try:
        outcome = yield from _process_turn(session_id, question, collection)
    except (AgentError, ValueError) as e:
        logger.warning("[chat:stream_chat] turn failed: %s", e)
        yield ErrorEvent(message=str(e))
        return None
    yield DoneEvent()
    logger.info("[chat:stream_chat] END iterations=%d stop_reason=%s", outcome.iterations, outcome.stop_reason)
    return outcome


def collect(events: Iterator[object]) -> tuple[list, object]:
    """Drain a generator; returns (events, return value)."""
    seen = []
    while True:
        try:
            seen.append(next(events))
        except StopIteration as stop:
            return seen, stop.value


def answer_chat(
    session_id: str,
    question: str,
    collection: Optional[str] = None,
) -> LoopOutcome:
    """Run one turn to completion. Fatal errors propagate to the caller."""
    _events, outcome = collect(_process_turn(session_id, question, collection))
    return outcome
