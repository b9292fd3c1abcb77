"""
Progress events emitted while a turn is processed.

A closed tagged union on ``type``; every event crossing the transport boundary
is one of these models. Use ``parse_event`` to validate inbound payloads.
"""

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter


class SearchStartedEvent(BaseModel):
    type: Literal["search-started"] = "search-started"
    query: str


class QueryRewrittenEvent(BaseModel):
    type: Literal["query-rewritten"] = "query-rewritten"
    original: str
    rewritten: str


class TextFragmentEvent(BaseModel):
    type: Literal["text-fragment"] = "text-fragment"
    text: str


class ToolInvokedEvent(BaseModel):
    type: Literal["tool-invoked"] = "tool-invoked"
    name: str
    args: dict[str, Any] = Field(default_factory=dict)


class ToolCompletedEvent(BaseModel):
    type: Literal["tool-completed"] = "tool-completed"
    name: str
    result: dict[str, Any] = Field(default_factory=dict)


class ErrorEvent(BaseModel):
    type: Literal["error"] = "error"
    message: str


class FileInfo(BaseModel):
    filename: str
    file_id: str


class FilesEvent(BaseModel):
    """Deduplicated source files for the answer (download links are built by the client)."""

    type: Literal["files"] = "files"
    files: list[FileInfo] = Field(default_factory=list)


class HistoryMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class HistoryEvent(BaseModel):
    """Persisted conversation sent to a client when it connects."""

    type: Literal["history"] = "history"
    messages: list[HistoryMessage] = Field(default_factory=list)


class DoneEvent(BaseModel):
    type: Literal["done"] = "done"


AgentEvent = Annotated[
    Union[
        SearchStartedEvent,
        QueryRewrittenEvent,
        TextFragmentEvent,
        ToolInvokedEvent,
        ToolCompletedEvent,
        ErrorEvent,
        FilesEvent,
        HistoryEvent,
        DoneEvent,
    ],
    Field(discriminator="type"),
]

_event_adapter: TypeAdapter = TypeAdapter(AgentEvent)


def parse_event(payload: dict[str, Any] | str | bytes) -> BaseModel:
    """Validate a raw event (dict or JSON) into its model. Raises pydantic.ValidationError on unknown/malformed events."""
    if isinstance(payload, (str, bytes)):
        return _event_adapter.validate_json(payload)
    return _event_adapter.validate_python(payload)
