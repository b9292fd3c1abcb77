"""
Application configuration (env, settings, constants).

Responsibility: Centralize config loading, environment variables, and loop
policy constants. Keeps the rest of the app decoupled from how config is sourced.
"""

import os

from dotenv import load_dotenv

load_dotenv()

# Milvus Cloud (from env)
MILVUS_URI: str = os.getenv("MILVUS_URI", "").strip()
MILVUS_TOKEN: str = os.getenv("MILVUS_TOKEN", "").strip()

# Search target selected for new sessions (Milvus collection name). Empty = must be chosen per session.
DEFAULT_COLLECTION: str = os.getenv("DEFAULT_COLLECTION", "").strip()

# Hugging Face (query embeddings, fallback LLM)
HF_API_KEY: str = os.getenv("HF_API_KEY", "").strip()
HF_EMBED_MODEL: str = "sentence-transformers/all-MiniLM-L6-v2"
HF_CHAT_URL: str = "https://router.huggingface.co/v1/chat/completions"
HF_LLM_MODEL: str = (
    os.getenv("HF_LLM_MODEL", "meta-llama/Llama-3.2-3B-Instruct").strip()
    or "meta-llama/Llama-3.2-3B-Instruct"
)

# API timeouts (seconds)
EMBED_API_TIMEOUT: float = 30.0
LLM_API_TIMEOUT: float = 60.0

# OpenAI. Loop steps (rewrite, extraction, evaluation) use the fast model; the final answer the stronger one.
OPENAI_API_KEY: str = os.getenv("OPENAI_API_KEY", "").strip()
OPENAI_LLM_MODEL: str = (
    os.getenv("OPENAI_LLM_MODEL", "gpt-4o-mini").strip() or "gpt-4o-mini"
)
OPENAI_SYNTHESIS_MODEL: str = (
    os.getenv("OPENAI_SYNTHESIS_MODEL", "gpt-4o").strip() or "gpt-4o"
)

# Agentic loop policy
MAX_ITERATIONS: int = 5
MAX_EXTRACTION_STEPS: int = 5
MAX_SEARCH_CALLS: int = 3
EVALUATION_MAX_ATTEMPTS: int = 2

# Search gateway
SEARCH_MAX_RESULTS: int = 10
SEARCH_SCORE_THRESHOLD: float = 0.3
SNIPPET_MAX_CHARS: int = 400

# Token budgets
REWRITE_MAX_TOKENS: int = 200
EXTRACTION_MAX_TOKENS: int = 1024
EVALUATION_MAX_TOKENS: int = 300
SYNTHESIS_MAX_TOKENS: int = 2048
