"""
Shared fixtures: clean session store per test and fakes for the LLM and search calls.

LLM and search functions are patched where they are imported (module under test),
so no test touches the network.
"""

from unittest.mock import patch

import pytest

from ragloop.agent.models import EvaluationDecision
from ragloop.core import session_store


@pytest.fixture(autouse=True)
def clean_sessions():
    session_store.reset()
    yield
    session_store.reset()


def decision(sufficient: bool, next_query: str | None = None) -> EvaluationDecision:
    return EvaluationDecision(is_sufficient=sufficient, next_query=next_query)


def tool_call(query: str, call_id: str = "call_1", name: str = "search_documents") -> dict:
    return {"id": call_id, "name": name, "arguments": {"query": query}}


def hit(source: str, score: float, text: str = "Some text.", file_id: str | None = None) -> dict:
    return {
        "id": 1,
        "text": text,
        "score": score,
        "metadata": {"source": source, "file_id": file_id or f"id-{source}", "chunk_id": 0},
    }


@pytest.fixture
def stream_answer():
    """Patch the final answer stream with two fragments; yields the mock to inspect prompts."""

    def _fake(prompt, max_tokens=0):
        yield ("content_delta", "Policy X ")
        yield ("content_delta", "covers leave.")
        yield ("content_done",)

    with patch("ragloop.agent.synthesis.stream_text", side_effect=_fake) as m:
        yield m
