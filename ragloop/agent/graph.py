"""
LangGraph agent: rewrite query → extract knowledge → evaluate → (extract or stop),
then stream the final answer.

At most MAX_ITERATIONS extraction passes. The graph runs in a worker thread and
its nodes put progress events on a queue; run_agentic_loop yields them as they
arrive, so a search-started event reaches the client before that search runs.
"""

import logging
import threading
from dataclasses import replace
from queue import Queue
from typing import Generator, Literal, Optional, Sequence, TypedDict

from langgraph.graph import END, StateGraph

from ragloop.agent.knowledge import evaluate_knowledge, extract_knowledge
from ragloop.agent.models import (
    ConversationTurn,
    FileRegistry,
    LoopOutcome,
    SessionState,
)
from ragloop.agent.rewrite import consolidate_query
from ragloop.agent.synthesis import synthesize_answer
from ragloop.agent.tools import EventSink, SearchTool
from ragloop.core.config import MAX_ITERATIONS
from ragloop.core.errors import TransientServiceError

logger = logging.getLogger(__name__)

# Stop reasons
SUFFICIENT = "sufficient"
MAX_ITERATIONS_REACHED = "max_iterations"
NO_NEW_KNOWLEDGE = "no_new_knowledge"
NO_NEXT_QUERY = "no_next_query"
EVALUATION_UNAVAILABLE = "evaluation_unavailable"

_GRAPH_DONE = object()


class LoopState(TypedDict):
    original_query: str
    current_query: str
    rewritten_query: str
    history: list  # turns before the current question
    iteration: int
    knowledge: list  # one entry per iteration, append-only
    stop_reason: str


def build_graph(
    search_tool: SearchTool,
    emit: EventSink,
    cancelled: Optional[threading.Event] = None,
):
    """
    Build and compile the loop graph for one user turn.
    rewrite → extract → evaluate → (extract again if needed) → END.
    Nodes report progress through emit; once cancelled is set no further pass starts.
    """
    cancelled = cancelled or threading.Event()

    def _rewrite_query(state: LoopState) -> dict:
        rewritten = consolidate_query(state["history"], state["original_query"], emit=emit)
        return {"current_query": rewritten, "rewritten_query": rewritten, "iteration": 0}

    def _extract_knowledge(state: LoopState) -> dict:
        it = state["iteration"] + 1
        logger.info("[graph:extract_knowledge] iteration=%d/%d query=%r", it, MAX_ITERATIONS, state["current_query"])
        text = extract_knowledge(
            state["original_query"],
            state["current_query"],
            state["knowledge"],
            it,
            search_tool,
            emit=emit,
        )
        if not text:
            logger.info("[graph:extract_knowledge] no knowledge extracted, skipping evaluation")
            return {"iteration": it, "stop_reason": NO_NEW_KNOWLEDGE}
        return {"iteration": it, "knowledge": state["knowledge"] + [text]}

    def _evaluate_knowledge(state: LoopState) -> dict:
        it = state["iteration"]
        try:
            decision = evaluate_knowledge(state["original_query"], state["knowledge"], it)
        except TransientServiceError as e:
            logger.warning("[graph:evaluate_knowledge] evaluation unavailable, stopping: %s", e)
            return {"stop_reason": EVALUATION_UNAVAILABLE}

        if decision.is_sufficient:
            reason = SUFFICIENT
        elif it >= MAX_ITERATIONS:
            reason = MAX_ITERATIONS_REACHED
        elif decision.next_query:
            logger.info("[graph:evaluate_knowledge] continuing with next query=%r", decision.next_query)
            return {"current_query": decision.next_query}
        else:
            reason = NO_NEXT_QUERY
        logger.info("[graph:evaluate_knowledge] stop iteration=%d reason=%s", it, reason)
        return {"stop_reason": reason}

    def _route(state: LoopState, next_node: str) -> str:
        if state.get("stop_reason"):
            return END
        if cancelled.is_set():
            logger.info("[graph] consumer went away, not starting %s", next_node)
            return END
        return next_node

    def _route_after_extract(state: LoopState) -> Literal["evaluate_knowledge", "__end__"]:
        return _route(state, "evaluate_knowledge")

    def _route_after_evaluate(state: LoopState) -> Literal["extract_knowledge", "__end__"]:
        return _route(state, "extract_knowledge")

    graph = StateGraph(LoopState)

    graph.add_node("rewrite_query", _rewrite_query)
    graph.add_node("extract_knowledge", _extract_knowledge)
    graph.add_node("evaluate_knowledge", _evaluate_knowledge)

    graph.set_entry_point("rewrite_query")
    graph.add_edge("rewrite_query", "extract_knowledge")
    graph.add_conditional_edges("extract_knowledge", _route_after_extract)
    graph.add_conditional_edges("evaluate_knowledge", _route_after_evaluate)

    return graph.compile()


def run_agentic_loop(
    history: Sequence[ConversationTurn],
    session_state: SessionState,
) -> Generator[object, None, LoopOutcome]:
    """
    Process the last turn of history (the user's question).

    Yields progress events (query-rewritten, search-started, tool-invoked,
    tool-completed, text-fragment, error) and returns a LoopOutcome:

        outcome = yield from run_agentic_loop(history, state)

    ConfigurationError, SchemaValidationError and ServiceUnavailableError propagate.
    """
    if not history or history[-1].get("role") != "user" or not (history[-1].get("content") or "").strip():
        raise ValueError("history must end with a non-empty user turn")
    question = history[-1]["content"].strip()
    prior = list(history[:-1])
    logger.info("[run_agentic_loop] START question=%r history_len=%d collection=%s",
                question, len(prior), session_state.selected_collection)

    events: Queue = Queue()
    cancelled = threading.Event()
    files = FileRegistry()
    search_tool = SearchTool(session_state.selected_collection, files=files, emit=events.put)
    initial: LoopState = {
        "original_query": question,
        "current_query": question,
        "rewritten_query": question,
        "history": prior,
        "iteration": 0,
        "knowledge": [],
        "stop_reason": "",
    }
    result: dict = {"final": dict(initial)}

    def _run_graph() -> None:
        try:
            for chunk in build_graph(search_tool, events.put, cancelled).stream(initial, stream_mode="values"):
                result["final"] = chunk
        except Exception as e:
            result["error"] = e
        finally:
            events.put(_GRAPH_DONE)

    worker = threading.Thread(target=_run_graph, name="agentic-loop", daemon=True)
    worker.start()
    try:
        while True:
            event = events.get()
            if event is _GRAPH_DONE:
                break
            yield event
    finally:
        cancelled.set()
    worker.join()
    if "error" in result:
        raise result["error"]

    final = result["final"]
    knowledge = list(final["knowledge"])
    iterations = final["iteration"]
    answer = yield from synthesize_answer(question, knowledge, iterations)

    updated = list(history)
    if answer.strip():
        updated.append({"role": "assistant", "content": answer})
    new_state = replace(
        session_state,
        total_searches=session_state.total_searches + search_tool.search_count,
        last_search_time=search_tool.last_search_time or session_state.last_search_time,
    )
    logger.info("[run_agentic_loop] END iterations=%d stop_reason=%s files=%d answer_len=%d",
                iterations, final["stop_reason"], len(files), len(answer))
    return LoopOutcome(
        answer=answer,
        files=files.files(),
        history=updated,
        session_state=new_state,
        iterations=iterations,
        stop_reason=final["stop_reason"],
        rewritten_query=final["rewritten_query"],
        knowledge=knowledge,
    )
