"""
Agent tools: the search_documents tool used during knowledge extraction.

SearchTool wraps the semantic search call for one loop: formats and truncates
hits, registers cited files, counts searches, and turns search failures into
payloads the model can read instead of exceptions.
"""

import json
import logging
import time
from typing import Any, Callable, Optional

from ragloop.agent.models import FileRegistry, SearchResult
from ragloop.core.config import (
    MAX_SEARCH_CALLS,
    SEARCH_MAX_RESULTS,
    SEARCH_SCORE_THRESHOLD,
    SNIPPET_MAX_CHARS,
)
from ragloop.core.errors import ConfigurationError, TransientServiceError
from ragloop.schemas.events import SearchStartedEvent
from ragloop.services.retrieval_service import search_documents

logger = logging.getLogger(__name__)

EventSink = Callable[[Any], None]

SEARCH_TOOL_NAME = "search_documents"

# OpenAI function-calling format
AGENT_TOOLS = [
    {
        "type": "function",
        "function": {
            "name": SEARCH_TOOL_NAME,
            "description": "Search through a document database. Use this tool to find relevant information from the indexed documents.",
            "parameters": {
                "type": "object",
                "properties": {
                    "query": {
                        "type": "string",
                        "description": "The search query to find relevant documents",
                    }
                },
                "required": ["query"],
            },
        },
    },
]


def _noop(_event: Any) -> None:
    return None


def format_results(hits: list[dict]) -> list[SearchResult]:
    """Turn raw hits into ranked SearchResults (score to 2 decimals, snippet capped)."""
    formatted = []
    for i, h in enumerate(hits, 1):
        meta = h.get("metadata") or {}
        filename = (meta.get("source") or "").strip() or "Unknown"
        formatted.append(SearchResult(
            rank=i,
            filename=filename,
            score=round(float(h.get("score", 0.0)), 2),
            content=(h.get("text") or "")[:SNIPPET_MAX_CHARS],
            file_id=str(meta.get("file_id") or filename),
        ))
    return formatted


class SearchTool:
    """
    search_documents bound to one session's collection and one loop's file registry.

    Search counters start at zero for every loop; the controller folds them into
    the session state when the loop ends.
    """

    def __init__(
        self,
        collection: str,
        files: Optional[FileRegistry] = None,
        emit: Optional[EventSink] = None,
        max_results: int = SEARCH_MAX_RESULTS,
        score_threshold: float = SEARCH_SCORE_THRESHOLD,
    ) -> None:
        self.collection = (collection or "").strip()
        self.files = files if files is not None else FileRegistry()
        self.emit = emit or _noop
        self.max_results = max_results
        self.score_threshold = score_threshold
        self.search_count = 0
        self.last_search_time = 0.0

    def search(self, query: str) -> dict[str, Any]:
        """Run one search and return the tool payload. Raises ConfigurationError if no collection is selected."""
        logger.info("[tools:search] IN  query=%r collection=%s", query, self.collection)
        if not self.collection:
            raise ConfigurationError(
                "No search collection selected. Select a collection before asking a question."
            )

        self.emit(SearchStartedEvent(query=query))
        self.search_count += 1
        self.last_search_time = time.time()

        try:
            hits = search_documents(
                query,
                self.collection,
                max_results=self.max_results,
                score_threshold=self.score_threshold,
            )
        except TransientServiceError as e:
            logger.warning("[tools:search] search failed: %s", e)
            return {
                "success": False,
                "error": "Failed to search the database",
                "message": e.message,
                "results": [],
            }

        if not hits:
            logger.info("[tools:search] OUT no results")
            return {
                "success": True,
                "found": False,
                "message": "No relevant documents found for this query.",
                "count": 0,
                "results": [],
            }

        results = format_results(hits)
        for r in results:
            if r.filename != "Unknown":
                self.files.register(r.filename, r.file_id)
        logger.info("[tools:search] OUT results=%d files_total=%d", len(results), len(self.files))
        return {
            "success": True,
            "found": True,
            "count": len(results),
            "search_query": query,
            "results": [r.to_dict() for r in results],
        }


def execute_tool(
    search_tool: SearchTool,
    name: str,
    arguments: dict[str, Any],
    calls_made: int = 0,
) -> dict[str, Any]:
    """
    Execute a tool call by name. Returns the payload for the model; bad calls
    (unknown tool, missing query, over the search budget) come back as
    {"success": False, "message": ...}.
    """
    args = arguments or {}
    logger.info("[tools] execute_tool name=%r arguments=%r calls_made=%d", name, args, calls_made)

    if name != SEARCH_TOOL_NAME:
        return {"success": False, "message": f"Unknown tool: {name}"}

    query = str(args.get("query") or "").strip()
    if not query:
        return {"success": False, "message": "Error: query is required."}

    if calls_made >= MAX_SEARCH_CALLS:
        return {
            "success": False,
            "message": f"Search limit of {MAX_SEARCH_CALLS} calls reached. Extract knowledge from the results you have.",
        }

    return search_tool.search(query)


def tool_result_content(payload: dict[str, Any]) -> str:
    """Serialize a tool payload for a tool message."""
    return json.dumps(payload, ensure_ascii=False, default=str)
