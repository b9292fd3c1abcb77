"""
In-memory chat session store. Keyed by session_id; history is not sent from the frontend.

Each session holds its history, a version bumped on every write, and the
SessionState value (selected collection, search counters). Writes are
conditioned on the version read by the caller. session_guard enforces one
message in flight per session.
"""

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from typing import Iterator, Optional, Sequence

from ragloop.agent.models import ConversationTurn, SessionState
from ragloop.core.config import DEFAULT_COLLECTION
from ragloop.core.errors import HistoryConflictError, SessionBusyError

logger = logging.getLogger(__name__)


@dataclass
class _Session:
    history: list[ConversationTurn] = field(default_factory=list)
    version: int = 0
    state: SessionState = field(default_factory=lambda: SessionState(selected_collection=DEFAULT_COLLECTION))


@dataclass(frozen=True)
class SessionSnapshot:
    history: list[ConversationTurn]
    version: int
    state: SessionState


_sessions: dict[str, _Session] = {}
_in_flight: set[str] = set()  # session ids with a message in progress
_lock = threading.Lock()


def _check_id(session_id: str) -> None:
    if not session_id or not isinstance(session_id, str):
        raise ValueError("session_id is required")


def get_session(session_id: str) -> SessionSnapshot:
    """Return a copy of the session (history, version, state). Unknown ids read as empty."""
    _check_id(session_id)
    with _lock:
        s = _sessions.get(session_id) or _Session()
        out = SessionSnapshot(history=list(s.history), version=s.version, state=s.state)
    logger.info("[session_store:get_session] session_id=%s messages=%d version=%d",
                session_id[:16], len(out.history), out.version)
    return out


def get_history(session_id: str) -> list[ConversationTurn]:
    """Return chat history for the session (copy so caller cannot mutate store)."""
    return get_session(session_id).history


def append_turns(
    session_id: str,
    turns: Sequence[ConversationTurn],
    expected_version: int,
    state: Optional[SessionState] = None,
) -> int:
    """
    Append turns (and optionally replace the session state) if the session is
    still at expected_version. Returns the new version.
    """
    _check_id(session_id)
    with _lock:
        s = _sessions.setdefault(session_id, _Session())
        if s.version != expected_version:
            raise HistoryConflictError(session_id, expected_version, s.version)
        for t in turns:
            s.history.append({"role": t["role"], "content": t.get("content") or ""})
        if state is not None:
            s.state = state
        s.version += 1
        version = s.version
    logger.info("[session_store:append_turns] session_id=%s appended=%d version=%d",
                session_id[:16], len(turns), version)
    return version


def select_collection(session_id: str, collection: str) -> SessionState:
    """Set the search collection for the session. Does not touch history."""
    _check_id(session_id)
    with _lock:
        s = _sessions.setdefault(session_id, _Session())
        s.state = replace(s.state, selected_collection=(collection or "").strip())
        state = s.state
    logger.info("[session_store:select_collection] session_id=%s collection=%s", session_id[:16], state.selected_collection)
    return state


def clear_history(session_id: str) -> None:
    """Drop the session's turns. Bumps the version so in-flight writes notice."""
    _check_id(session_id)
    with _lock:
        s = _sessions.setdefault(session_id, _Session())
        s.history = []
        s.version += 1
    logger.info("[session_store:clear_history] session_id=%s", session_id[:16])


@contextmanager
def session_guard(session_id: str) -> Iterator[None]:
    """Hold the session for one message. Raises SessionBusyError if another message is in flight."""
    _check_id(session_id)
    with _lock:
        if session_id in _in_flight:
            raise SessionBusyError(session_id)
        _in_flight.add(session_id)
    try:
        yield
    finally:
        with _lock:
            _in_flight.discard(session_id)


def reset() -> None:
    """Forget all sessions."""
    with _lock:
        _sessions.clear()
        _in_flight.clear()
