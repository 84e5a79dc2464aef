"""
Resilient memory retrieval and context budgeting.

Picks a bounded, relevance-ranked set of persona memories to inject into
a response, and keeps doing so when the store, the embedding service or
the telemetry sink fails:

- Retrieval: hybrid (similarity + importance) ranking over pgvector, with
  importance/recency fallbacks when embeddings are unavailable
- Selection: anchor / recency / relevance slots over a fetched pool
- Budgeting: line-boundary truncation to an approximate token ceiling
- Safe fetches: every subsystem failure becomes an empty/None result
"""

from ..config import RecallConfig
from .framing import MemoryFramer, frame_memories
from .models import Memory, RetrievalRequest, RetrievalResult, Strategy
from .orchestrator import MemoryOrchestrator
from .retriever import HybridRetriever, create_embedding_model
from .selector import select_memories
from .token_budget import estimate_tokens, truncate_memories

__all__ = [
    "RecallConfig",
    "Memory",
    "RetrievalRequest",
    "RetrievalResult",
    "Strategy",
    "HybridRetriever",
    "MemoryFramer",
    "MemoryOrchestrator",
    "create_embedding_model",
    "estimate_tokens",
    "frame_memories",
    "select_memories",
    "truncate_memories",
]
