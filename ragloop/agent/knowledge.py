"""
Knowledge extraction (tool-calling step loop) and sufficiency evaluation (structured output).
"""

import logging
from typing import Any, Callable, Optional, Sequence

from ragloop.agent.llm import chat_with_tools, generate_structured
from ragloop.agent.models import EvaluationDecision
from ragloop.agent.tools import (
    AGENT_TOOLS,
    SearchTool,
    execute_tool,
    tool_result_content,
)
from ragloop.core.config import (
    EVALUATION_MAX_ATTEMPTS,
    EVALUATION_MAX_TOKENS,
    EXTRACTION_MAX_TOKENS,
    MAX_EXTRACTION_STEPS,
    MAX_SEARCH_CALLS,
)
from ragloop.core.errors import SchemaValidationError, TransientServiceError
from ragloop.schemas.events import ToolCompletedEvent, ToolInvokedEvent

logger = logging.getLogger(__name__)


def _plural(n: int) -> str:
    return f"{n} search{'es' if n != 1 else ''}"


def _extraction_prompt(
    original_query: str,
    current_query: str,
    knowledge: Sequence[str],
    iteration: int,
) -> str:
    label = "Current Search Query" if iteration <= 1 else "Next Search Query"
    lines = [
        "You are gathering information to answer a user's query.",
        "",
        f"User Original Query: {original_query}",
    ]
    if iteration <= 1 and current_query != original_query:
        lines.append(f"Rewritten Search Query: {current_query}")
    lines += ["", f"{label}: {current_query}", ""]
    if knowledge:
        lines += ["Previously Accumulated Knowledge:", "\n\n".join(knowledge), ""]
    lines += [
        "Task:",
        "1. Use the search_documents tool to search the documents with any query related to the user question",
        "2. Analyze the search results",
        f"3. Continue using search_documents with different queries to gather more knowledge (max {MAX_SEARCH_CALLS} searches in total)",
        "4. Extract 3-5 key knowledge entries that are relevant to answering the user's query",
        "5. Format each knowledge entry as a clear, concise bullet point with the document filename for reference",
        "",
        "If the searches return nothing relevant, reply with an empty message.",
        "",
        "Provide your knowledge extraction.",
    ]
    return "\n".join(lines)


def extract_knowledge(
    original_query: str,
    current_query: str,
    knowledge: Sequence[str],
    iteration: int,
    search_tool: SearchTool,
    emit: Optional[Callable[[Any], None]] = None,
) -> str:
    """
    Run up to MAX_EXTRACTION_STEPS model steps, executing search calls in between.

    The last step is requested with tool_choice="none" so it produces text.
    Returns the trimmed knowledge text; "" means nothing new was found.
    ConfigurationError from the search tool propagates.
    """
    emit = emit or (lambda _e: None)
    messages: list[dict[str, Any]] = [
        {"role": "user", "content": _extraction_prompt(original_query, current_query, knowledge, iteration)}
    ]
    searches_before = search_tool.search_count
    logger.info("[knowledge:extract] IN  iteration=%d query=%r known_entries=%d", iteration, current_query, len(knowledge))

    for step in range(1, MAX_EXTRACTION_STEPS + 1):
        final_step = step == MAX_EXTRACTION_STEPS
        try:
            content, tool_calls = chat_with_tools(
                messages,
                AGENT_TOOLS,
                max_tokens=EXTRACTION_MAX_TOKENS,
                tool_choice="none" if final_step else "auto",
            )
        except TransientServiceError as e:
            logger.warning("[knowledge:extract] step=%d generation failed: %s", step, e)
            return ""

        if not tool_calls:
            text = (content or "").strip()
            logger.info("[knowledge:extract] OUT step=%d searches=%d knowledge_len=%d",
                        step, search_tool.search_count - searches_before, len(text))
            return text

        messages.append({
            "role": "assistant",
            "content": content or "",
            "tool_calls": [
                {
                    "id": tc["id"],
                    "type": "function",
                    "function": {"name": tc["name"], "arguments": tool_result_content(tc.get("arguments") or {})},
                }
                for tc in tool_calls
            ],
        })
        for tc in tool_calls:
            name = tc.get("name", "")
            args = tc.get("arguments") or {}
            emit(ToolInvokedEvent(name=name, args=args))
            payload = execute_tool(search_tool, name, args, calls_made=search_tool.search_count - searches_before)
            emit(ToolCompletedEvent(name=name, result=payload))
            messages.append({"role": "tool", "tool_call_id": tc.get("id", ""), "content": tool_result_content(payload)})

    logger.info("[knowledge:extract] OUT step budget exhausted without text")
    return ""


def _evaluation_prompt(original_query: str, knowledge: Sequence[str], iteration: int) -> str:
    joined = "\n\n".join(knowledge)
    return f"""You are evaluating whether accumulated knowledge is sufficient to answer a user query.

User Query: {original_query}

Accumulated Knowledge ({_plural(iteration)}):
{joined}

Task: Determine if this knowledge is sufficient to provide a comprehensive answer. If not, suggest what additional information to search for.

Consider:
- Is the query fully addressed?
- Are there gaps or missing details?
- Would additional context help?

Respond with JSON: {{"isKnowledgeEnough": true|false, "nextSearchQuery": "<next query, omit when enough>"}}"""


def evaluate_knowledge(original_query: str, knowledge: Sequence[str], iteration: int) -> EvaluationDecision:
    """
    Decide whether the knowledge so far answers the query.

    Retries once; if the last attempt failed validation raises SchemaValidationError,
    if it failed to reach the model raises TransientServiceError.
    """
    prompt = _evaluation_prompt(original_query, knowledge, iteration)
    last_error: Exception | None = None
    for attempt in range(1, EVALUATION_MAX_ATTEMPTS + 1):
        try:
            decision = generate_structured(prompt, EvaluationDecision, max_tokens=EVALUATION_MAX_TOKENS)
        except (SchemaValidationError, TransientServiceError) as e:
            logger.warning("[knowledge:evaluate] attempt=%d failed: %s", attempt, e)
            last_error = e
            continue
        logger.info("[knowledge:evaluate] OUT iteration=%d sufficient=%s next_query=%r",
                    iteration, decision.is_sufficient, decision.next_query)
        return decision
    raise last_error
