"""
Vector store client: Milvus Cloud connection and query embeddings (HF Inference API).

Responsibility: Connect to Milvus, embed search queries via all-MiniLM-L6-v2,
run vector search against a named collection, list searchable collections.
"""

import logging
from typing import Any

import httpx

from ragloop.core.config import (
    EMBED_API_TIMEOUT,
    HF_API_KEY,
    HF_EMBED_MODEL,
    MILVUS_TOKEN,
    MILVUS_URI,
)
from ragloop.core.errors import ServiceUnavailableError

logger = logging.getLogger(__name__)

HF_API_URL_ROUTER = (
    "https://router.huggingface.co/hf-inference/models/"
    f"{HF_EMBED_MODEL}/pipeline/feature-extraction"
)
HF_API_URL_STANDARD = f"https://api-inference.huggingface.co/models/{HF_EMBED_MODEL}"

OUTPUT_FIELDS = ["id", "text", "source", "file_id", "chunk_id"]


def _normalize(vec: list[float]) -> list[float]:
    # Milvus collections use COSINE
    norm = sum(x * x for x in vec) ** 0.5
    if norm == 0:
        norm = 1.0
    return [x / norm for x in vec]


def embed_query(text: str) -> list[float]:
    """
    Embed one search query with the Hugging Face Inference API.

    Tries the router endpoint first and falls back to the standard endpoint on 403.
    Returns a normalized vector.
    """
    if not HF_API_KEY:
        raise ServiceUnavailableError(
            "HF_API_KEY must be set in .env. Get a token from https://huggingface.co/settings/tokens"
        )
    headers = {
        "Authorization": f"Bearer {HF_API_KEY}",
        "Content-Type": "application/json",
    }
    payload = {"inputs": [text], "options": {"wait_for_model": True}}
    response = None
    with httpx.Client(timeout=EMBED_API_TIMEOUT) as client:
        for api_url in (HF_API_URL_ROUTER, HF_API_URL_STANDARD):
            response = client.post(api_url, json=payload, headers=headers)
            if response.status_code == 403 and api_url == HF_API_URL_ROUTER:
                continue
            break

    if response is None or response.status_code != 200:
        msg = response.text[:200] if response is not None else "no response"
        status = response.status_code if response is not None else 0
        if status == 503:
            raise RuntimeError(f"HF model is loading. Retry later. {msg}")
        if status == 401:
            raise ServiceUnavailableError(
                "Invalid HF API key. Check HF_API_KEY at https://huggingface.co/settings/tokens"
            )
        raise RuntimeError(f"HF API error {status}: {msg}")

    result = response.json()
    vec = result[0] if isinstance(result, list) and result and isinstance(result[0], list) else result
    return _normalize([float(x) for x in vec])


def get_milvus_client() -> Any:
    """Connect to Milvus Cloud and return a client."""
    if not MILVUS_URI or not MILVUS_TOKEN:
        raise ServiceUnavailableError("MILVUS_URI and MILVUS_TOKEN must be set in .env")

    from pymilvus import MilvusClient

    client = MilvusClient(uri=MILVUS_URI, token=MILVUS_TOKEN)
    logger.info("Milvus connection established")
    return client


def list_collections() -> list[str]:
    """Return the names of collections that can be selected as a search target."""
    client = get_milvus_client()
    return sorted(client.list_collections())


def search_collection(collection_name: str, query_vec: list[float], limit: int) -> list[dict]:
    """
    Vector search in one collection. Returns hits as
    {"id", "text", "score", "metadata": {"source", "file_id", "chunk_id"}}, best first.
    """
    client = get_milvus_client()
    results = client.search(
        collection_name=collection_name,
        data=[query_vec],
        limit=limit,
        output_fields=OUTPUT_FIELDS,
    )
    # results: list of list of hits (one list per query vector)
    hits = results[0] if results else []
    out = []
    for h in hits:
        score = float(h.get("distance", h.get("score", 0.0)))
        e = h.get("entity") or h
        source = e.get("source", "") or ""
        out.append({
            "id": e.get("id", h.get("id")),
            "text": e.get("text", "") or "",
            "score": score,
            "metadata": {
                "source": source,
                "file_id": str(e.get("file_id") or source),
                "chunk_id": e.get("chunk_id", 0),
            },
        })
    return out
