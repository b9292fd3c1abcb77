"""
Unit tests for the search tool and retrieval service: formatting, file tracking, failure payloads.
"""

from unittest.mock import patch

import pytest

from conftest import hit
from ragloop.agent.models import FileRegistry
from ragloop.agent.tools import SearchTool, execute_tool, format_results
from ragloop.core.config import MAX_SEARCH_CALLS
from ragloop.core.errors import ConfigurationError, TransientServiceError
from ragloop.schemas.events import SearchStartedEvent
from ragloop.services.retrieval_service import search_documents


class TestFormatResults:
    def test_rank_score_and_snippet(self) -> None:
        results = format_results([hit("a.pdf", 0.8765, text="x" * 900), hit("b.pdf", 0.31)])
        assert [r.rank for r in results] == [1, 2]
        assert results[0].score == 0.88
        assert results[1].score == 0.31
        assert len(results[0].content) == 400
        assert results[0].file_id == "id-a.pdf"

    def test_missing_source_is_unknown(self) -> None:
        results = format_results([{"text": "t", "score": 0.5, "metadata": {}}])
        assert results[0].filename == "Unknown"


class TestSearchTool:
    def test_no_collection_raises_configuration_error(self) -> None:
        tool = SearchTool("")
        with patch("ragloop.agent.tools.search_documents") as mock_search:
            with pytest.raises(ConfigurationError):
                tool.search("policy X")
        mock_search.assert_not_called()
        assert tool.search_count == 0

    def test_results_payload_and_file_registration(self) -> None:
        events = []
        tool = SearchTool("policies", emit=events.append)
        with patch("ragloop.agent.tools.search_documents", return_value=[hit("a.pdf", 0.9), hit("b.pdf", 0.5)]):
            payload = tool.search("policy X")
        assert payload["success"] is True
        assert payload["found"] is True
        assert payload["count"] == 2
        assert [r["filename"] for r in payload["results"]] == ["a.pdf", "b.pdf"]
        assert [f.filename for f in tool.files.files()] == ["a.pdf", "b.pdf"]
        assert events == [SearchStartedEvent(query="policy X")]
        assert tool.search_count == 1
        assert tool.last_search_time > 0

    def test_files_deduplicated_first_wins(self) -> None:
        files = FileRegistry()
        tool = SearchTool("policies", files=files)
        with patch("ragloop.agent.tools.search_documents", side_effect=[
            [hit("a.pdf", 0.9, file_id="first")],
            [hit("a.pdf", 0.7, file_id="second"), hit("c.pdf", 0.6)],
        ]):
            tool.search("one")
            tool.search("two")
        refs = files.files()
        assert [f.filename for f in refs] == ["a.pdf", "c.pdf"]
        assert refs[0].file_id == "first"

    def test_zero_results(self) -> None:
        tool = SearchTool("policies")
        with patch("ragloop.agent.tools.search_documents", return_value=[]):
            payload = tool.search("nothing")
        assert payload["success"] is True
        assert payload["found"] is False
        assert payload["count"] == 0
        assert payload["results"] == []
        assert len(tool.files) == 0

    def test_search_failure_returns_payload(self) -> None:
        tool = SearchTool("policies")
        with patch("ragloop.agent.tools.search_documents", side_effect=TransientServiceError("milvus down")):
            payload = tool.search("policy X")
        assert payload["success"] is False
        assert payload["message"] == "milvus down"
        assert payload["results"] == []


class TestExecuteTool:
    def test_unknown_tool(self) -> None:
        payload = execute_tool(SearchTool("policies"), "calculator", {"expression": "1+1"})
        assert payload["success"] is False
        assert "Unknown tool" in payload["message"]

    def test_missing_query(self) -> None:
        payload = execute_tool(SearchTool("policies"), "search_documents", {})
        assert payload["success"] is False

    def test_over_budget_does_not_search(self) -> None:
        with patch("ragloop.agent.tools.search_documents") as mock_search:
            payload = execute_tool(
                SearchTool("policies"), "search_documents", {"query": "q"}, calls_made=MAX_SEARCH_CALLS
            )
        assert payload["success"] is False
        mock_search.assert_not_called()


class TestRetrievalService:
    def test_threshold_and_cap(self) -> None:
        hits = [hit("a.pdf", 0.9), hit("b.pdf", 0.31), hit("c.pdf", 0.2)]
        with patch("ragloop.services.retrieval_service.embed_query", return_value=[0.1, 0.2]), \
                patch("ragloop.services.retrieval_service.search_collection", return_value=hits) as mock_search:
            kept = search_documents("q", "policies", max_results=10, score_threshold=0.3)
        assert [h["metadata"]["source"] for h in kept] == ["a.pdf", "b.pdf"]
        mock_search.assert_called_once_with("policies", [0.1, 0.2], limit=10)

    def test_empty_query_skips_search(self) -> None:
        with patch("ragloop.services.retrieval_service.embed_query") as mock_embed:
            assert search_documents("   ", "policies") == []
        mock_embed.assert_not_called()

    def test_backend_failure_is_transient(self) -> None:
        with patch("ragloop.services.retrieval_service.embed_query", side_effect=RuntimeError("HF API error 500")):
            with pytest.raises(TransientServiceError):
                search_documents("q", "policies")
