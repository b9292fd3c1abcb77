"""
Final answer: stream a comprehensive answer from the accumulated knowledge.
"""

import logging
from typing import Generator, Sequence

from ragloop.agent.llm import stream_text
from ragloop.core.config import SYNTHESIS_MAX_TOKENS
from ragloop.core.errors import StreamError
from ragloop.schemas.events import ErrorEvent, TextFragmentEvent

logger = logging.getLogger(__name__)

NO_KNOWLEDGE_NOTE = "(No relevant information was found in the documents.)"


def _synthesis_prompt(original_query: str, knowledge: Sequence[str], iterations: int) -> str:
    searches = f"{iterations} search{'es' if iterations != 1 else ''}"
    joined = "\n\n".join(knowledge) if knowledge else NO_KNOWLEDGE_NOTE
    fallback = (
        "\nNothing relevant was found. Tell the user plainly that no information about their question "
        "was found in the documents, and suggest rephrasing or selecting another collection.\n"
        if not knowledge
        else ""
    )
    return f"""You are answering a user's question using accumulated knowledge from documents.

User Query: {original_query}

Accumulated Knowledge from {searches}:
{joined}
{fallback}
Task: Provide a comprehensive, well-structured answer to the user's query based on the accumulated knowledge.

IMPORTANT: Do NOT reference, cite, or mention any document filenames in your response. Download links are provided to the user separately.

Be clear, accurate, and thorough in your response."""


def synthesize_answer(
    original_query: str,
    knowledge: Sequence[str],
    iterations: int,
) -> Generator[object, None, str]:
    """
    Yield text-fragment events in arrival order and return the full text.

    A failing stream yields one error event and stops; whatever text arrived
    before the failure is still returned.
    """
    logger.info("[synthesis] IN  query=%r knowledge_entries=%d iterations=%d", original_query, len(knowledge), iterations)
    parts: list[str] = []
    for item in stream_text(_synthesis_prompt(original_query, knowledge, iterations), max_tokens=SYNTHESIS_MAX_TOKENS):
        if item[0] == "content_delta":
            parts.append(item[1])
            yield TextFragmentEvent(text=item[1])
        elif item[0] == "error":
            err = StreamError(f"Answer stream failed: {item[1]}")
            logger.warning("[synthesis] %s (kept %d fragments)", err.message, len(parts))
            yield ErrorEvent(message=err.message)
            break
        elif item[0] == "content_done":
            break
    answer = "".join(parts)
    logger.info("[synthesis] OUT answer_len=%d", len(answer))
    return answer
