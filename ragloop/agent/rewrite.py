"""
Query consolidation: fold earlier user turns into one self-contained search query.
"""

import logging
from typing import Any, Callable, Optional, Sequence

from ragloop.agent.llm import generate_text
from ragloop.agent.models import ConversationTurn
from ragloop.core.config import REWRITE_MAX_TOKENS
from ragloop.core.errors import ServiceUnavailableError, TransientServiceError
from ragloop.schemas.events import QueryRewrittenEvent

logger = logging.getLogger(__name__)


def prior_user_queries(history: Sequence[ConversationTurn]) -> list[str]:
    """User utterances from history, oldest first, skipping blanks."""
    out = []
    for m in history:
        if (m.get("role") or "").strip().lower() != "user":
            continue
        content = (m.get("content") or "").strip()
        if content:
            out.append(content)
    return out


def _rewrite_prompt(previous: list[str], current: str) -> str:
    numbered = "\n".join(f"{i}. {q}" for i, q in enumerate(previous, 1))
    return f"""You are a query rewriting assistant. Combine the user's related queries into a single, self-contained search query that captures what the user is asking for now.

Previous user queries (in chronological order):
{numbered}

Current user query:
{current}

Rules:
- Focus on the CURRENT intent. If the current query narrows or changes an earlier one, the rewrite reflects the latest state, not a union of everything asked.
- Resolve references such as "it", "that policy" or "and clause Y?" to the concrete topic from earlier queries.
- Output ONLY the rewritten query, nothing else."""


def consolidate_query(
    history: Sequence[ConversationTurn],
    current_query: str,
    emit: Optional[Callable[[Any], None]] = None,
) -> str:
    """
    Rewrite current_query using the user turns in history (turns before the current one).

    Without earlier user turns the query is returned unchanged and no LLM call is made.
    Generation failures fall back to current_query.
    """
    previous = prior_user_queries(history)
    logger.info("[rewrite:consolidate_query] IN  query=%r previous_user_turns=%d", current_query, len(previous))
    if not previous:
        return current_query

    try:
        rewritten = generate_text(_rewrite_prompt(previous, current_query), max_new_tokens=REWRITE_MAX_TOKENS)
    except (TransientServiceError, ServiceUnavailableError) as e:
        logger.warning("[rewrite:consolidate_query] rewrite failed, using original: %s", e)
        return current_query

    # Keep the first block only and strip wrapping quotes
    rewritten = (rewritten or "").strip().split("\n\n")[0].strip()
    if len(rewritten) >= 2 and rewritten[0] == rewritten[-1] and rewritten[0] in "\"'":
        rewritten = rewritten[1:-1].strip()
    if not rewritten:
        logger.info("[rewrite:consolidate_query] empty rewrite, using original")
        return current_query

    logger.info("[rewrite:consolidate_query] OUT rewritten=%r", rewritten)
    if emit is not None:
        emit(QueryRewrittenEvent(original=current_query, rewritten=rewritten))
    return rewritten
