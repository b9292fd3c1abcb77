"""
Tests for the event union: boundary validation and SSE framing.
"""

import pytest
from pydantic import ValidationError

from ragloop.api.sse import format_sse
from ragloop.schemas.events import (
    DoneEvent,
    QueryRewrittenEvent,
    ToolCompletedEvent,
    parse_event,
)


def test_parse_dict_picks_variant_by_type() -> None:
    evt = parse_event({"type": "query-rewritten", "original": "and clause Y?", "rewritten": "clause Y of policy X"})
    assert isinstance(evt, QueryRewrittenEvent)
    assert evt.rewritten == "clause Y of policy X"


def test_parse_json() -> None:
    evt = parse_event('{"type": "tool-completed", "name": "search_documents", "result": {"count": 0}}')
    assert isinstance(evt, ToolCompletedEvent)
    assert evt.result == {"count": 0}


def test_unknown_type_rejected() -> None:
    with pytest.raises(ValidationError):
        parse_event({"type": "finish"})


def test_missing_field_rejected() -> None:
    with pytest.raises(ValidationError):
        parse_event({"type": "search-started"})


def test_format_sse() -> None:
    assert format_sse(DoneEvent()) == 'event: done\ndata: {"type":"done"}\n\n'
