"""Schemas for the query and session endpoints."""

from typing import Optional

from pydantic import BaseModel, Field

from ragloop.schemas.events import FileInfo, HistoryMessage


class QueryRequest(BaseModel):
    """Request body for POST /query and POST /query/stream. History is stored server-side by session_id."""

    question: str = Field(..., min_length=1, description="User question for the agent.")
    session_id: str = Field(..., min_length=1, description="Session ID; chat history is stored on the server for this session.")
    collection: Optional[str] = Field(None, description="Search collection to select for this session before answering.")


class QueryResponse(BaseModel):
    """Response for POST /query."""

    answer: str = Field(..., description="Final answer from the agent.")
    rewritten_query: str = Field("", description="Query used for the first search after consolidating earlier turns.")
    iterations: int = Field(0, description="Number of retrieval iterations (at most 5).")
    stop_reason: str = Field("", description="Why the loop stopped (sufficient, max_iterations, no_new_knowledge, ...).")
    files: list[FileInfo] = Field(default_factory=list, description="Source files cited during retrieval, unique by filename.")


class CollectionSelectRequest(BaseModel):
    collection: str = Field(..., min_length=1, description="Milvus collection to search for this session.")


class SessionStateResponse(BaseModel):
    session_id: str
    selected_collection: str
    total_searches: int
    last_search_time: float


class HistoryResponse(BaseModel):
    session_id: str
    version: int
    messages: list[HistoryMessage] = Field(default_factory=list)


class ChatSocketMessage(BaseModel):
    """Inbound WebSocket message. Either question or messages (last user message is used)."""

    question: Optional[str] = None
    messages: list[HistoryMessage] = Field(default_factory=list)
    collection: Optional[str] = Field(None, alias="selectedRag")

    model_config = {"populate_by_name": True}

    def resolved_question(self) -> str:
        if self.question and self.question.strip():
            return self.question.strip()
        for m in reversed(self.messages):
            if m.role == "user" and m.content.strip():
                return m.content.strip()
        return ""
