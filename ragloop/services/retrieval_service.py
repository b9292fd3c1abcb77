"""
Retrieval: semantic search over the selected collection.

Responsibility: Embed the query, search Milvus, apply the score threshold and
result cap. Failures surface as TransientServiceError so the search tool can
hand them back to the model.
"""

import logging

from ragloop.core.config import SEARCH_MAX_RESULTS, SEARCH_SCORE_THRESHOLD
from ragloop.core.errors import ServiceUnavailableError, TransientServiceError
from ragloop.services.vector_store import embed_query, search_collection

logger = logging.getLogger(__name__)


def search_documents(
    query: str,
    collection_name: str,
    max_results: int = SEARCH_MAX_RESULTS,
    score_threshold: float = SEARCH_SCORE_THRESHOLD,
) -> list[dict]:
    """
    Ranked hits for query in collection_name, each with score >= score_threshold,
    at most max_results. Empty query returns [].
    """
    logger.info(
        "[retrieval:search_documents] IN  query=%r collection=%s max_results=%d threshold=%.2f",
        query, collection_name, max_results, score_threshold,
    )
    if not query or not query.strip():
        return []
    try:
        query_vec = embed_query(query.strip())
        hits = search_collection(collection_name, query_vec, limit=max_results)
    except ServiceUnavailableError:
        raise
    except Exception as e:
        logger.warning("[retrieval:search_documents] search failed: %s", e)
        raise TransientServiceError(str(e)) from e

    kept = [h for h in hits if h.get("score", 0.0) >= score_threshold][:max_results]
    logger.info(
        "[retrieval:search_documents] OUT hits=%d kept=%d sources=%s",
        len(hits), len(kept), [h.get("metadata", {}).get("source") for h in kept],
    )
    return kept
