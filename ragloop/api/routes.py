"""
API route aggregator: register endpoints; no logic — only delegate to services.
"""

import logging

from fastapi import APIRouter, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.concurrency import iterate_in_threadpool, run_in_threadpool
from fastapi.responses import StreamingResponse
from pydantic import ValidationError

from ragloop.api.sse import format_sse
from ragloop.core.errors import (
    ConfigurationError,
    SchemaValidationError,
    ServiceUnavailableError,
    SessionBusyError,
)
from ragloop.core.session_store import clear_history, get_session, select_collection
from ragloop.schemas.events import ErrorEvent, FileInfo, HistoryEvent, HistoryMessage
from ragloop.schemas.query import (
    ChatSocketMessage,
    CollectionSelectRequest,
    HistoryResponse,
    QueryRequest,
    QueryResponse,
    SessionStateResponse,
)
from ragloop.services.chat_service import answer_chat, stream_chat
from ragloop.services.vector_store import list_collections

logger = logging.getLogger(__name__)
router = APIRouter()


# --- System ---

@router.get("/", tags=["system"])
def root():
    return {"status": "Agentic document search backend running"}


@router.get("/health", tags=["system"])
def health():
    return {"ok": True}


# --- Collections & sessions ---

@router.get("/collections", tags=["sessions"], summary="List searchable collections")
def get_collections() -> dict:
    """Return collection names that a session can select as its search target."""
    try:
        collections = list_collections()
    except ServiceUnavailableError as e:
        raise HTTPException(status_code=503, detail=e.message) from e
    except Exception as e:
        logger.warning("Failed to list collections: %s", e)
        collections = []
    return {"collections": collections}


def _state_response(session_id: str) -> SessionStateResponse:
    state = get_session(session_id).state
    return SessionStateResponse(
        session_id=session_id,
        selected_collection=state.selected_collection,
        total_searches=state.total_searches,
        last_search_time=state.last_search_time,
    )


@router.get("/sessions/{session_id}", response_model=SessionStateResponse, tags=["sessions"])
def get_session_state(session_id: str) -> SessionStateResponse:
    return _state_response(session_id)


@router.put(
    "/sessions/{session_id}/collection",
    response_model=SessionStateResponse,
    tags=["sessions"],
    summary="Select the search collection for a session",
)
def put_collection(session_id: str, body: CollectionSelectRequest) -> SessionStateResponse:
    select_collection(session_id, body.collection)
    return _state_response(session_id)


@router.get("/sessions/{session_id}/history", response_model=HistoryResponse, tags=["sessions"])
def get_history(session_id: str) -> HistoryResponse:
    snap = get_session(session_id)
    return HistoryResponse(
        session_id=session_id,
        version=snap.version,
        messages=[HistoryMessage(**m) for m in snap.history],
    )


@router.delete("/sessions/{session_id}/history", tags=["sessions"])
def delete_history(session_id: str) -> dict:
    clear_history(session_id)
    return {"cleared": True}


# --- Query (HTTP) ---

@router.post(
    "/query",
    response_model=QueryResponse,
    tags=["query"],
    summary="Ask a question (sync)",
    description="Run the retrieval loop and return the answer with its source files. 400 on invalid input or no collection selected, 409 while the session is busy, 502 on malformed evaluation output, 503 when a backing service is not configured.",
)
def post_query(body: QueryRequest) -> QueryResponse:
    logger.info("[api:post_query] IN  question=%r session_id=%s", body.question, body.session_id)
    try:
        outcome = answer_chat(body.session_id, body.question, body.collection)
    except (ValueError, ConfigurationError) as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except SessionBusyError as e:
        raise HTTPException(status_code=409, detail=e.message) from e
    except SchemaValidationError as e:
        raise HTTPException(status_code=502, detail=e.message) from e
    except ServiceUnavailableError as e:
        raise HTTPException(status_code=503, detail=e.message) from e
    except Exception as e:
        logger.exception("Agent failed")
        raise HTTPException(status_code=500, detail=str(e)) from e
    logger.info("[api:post_query] OUT iterations=%d files=%d answer_len=%d",
                outcome.iterations, len(outcome.files), len(outcome.answer))
    return QueryResponse(
        answer=outcome.answer,
        rewritten_query=outcome.rewritten_query,
        iterations=outcome.iterations,
        stop_reason=outcome.stop_reason,
        files=[FileInfo(**f.to_dict()) for f in outcome.files],
    )


def _sse_generator(question: str, session_id: str, collection: str | None):
    """Yield Server-Sent Events for one turn."""
    try:
        for evt in stream_chat(session_id, question, collection):
            yield format_sse(evt)
    except Exception as e:
        logger.exception("SSE stream failed")
        yield format_sse(ErrorEvent(message=str(e)))


@router.post(
    "/query/stream",
    tags=["query"],
    summary="Ask a question (SSE stream)",
    description="Stream progress and the answer via Server-Sent Events. Events: query-rewritten, search-started, tool-invoked, tool-completed, text-fragment, files, error, done.",
)
def post_query_stream(body: QueryRequest) -> StreamingResponse:
    logger.info("[api:post_query_stream] IN  question=%r session_id=%s", body.question, body.session_id)
    return StreamingResponse(
        _sse_generator(body.question, body.session_id, body.collection),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


# --- Query (WebSocket) ---

@router.websocket("/ws/{session_id}")
async def chat_socket(websocket: WebSocket, session_id: str) -> None:
    """Send persisted history on connect, then answer each inbound message as a stream of JSON events."""
    await websocket.accept()
    snap = get_session(session_id)
    if snap.history:
        await websocket.send_text(
            HistoryEvent(messages=[HistoryMessage(**m) for m in snap.history]).model_dump_json()
        )
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                msg = ChatSocketMessage.model_validate_json(raw)
            except ValidationError as e:
                await websocket.send_text(ErrorEvent(message=f"Invalid message: {e.errors()[0]['msg']}").model_dump_json())
                continue
            question = msg.resolved_question()
            if not question and msg.collection:
                select_collection(session_id, msg.collection)
                continue
            events = stream_chat(session_id, question, msg.collection)
            try:
                async for evt in iterate_in_threadpool(events):
                    await websocket.send_text(evt.model_dump_json())
            finally:
                await run_in_threadpool(events.close)
    except WebSocketDisconnect:
        logger.info("[api:chat_socket] session_id=%s disconnected", session_id[:16])
