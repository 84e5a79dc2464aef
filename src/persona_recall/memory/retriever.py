"""
Hybrid memory retriever over pgvector.

Ranks a persona's memories about a user with one of three strategies,
picked by what data is available:

  - hybrid: query embedding available and some memories carry embeddings
      → 0.6 * cosine similarity + 0.4 * importance
  - hybrid_fallback_to_importance: query embedding available but no
      memory in scope has an embedding yet → importance, then recency
  - importance_and_recency: no query embedding (no API key, provider
      error, empty vector) → importance, then recency

Every call emits exactly one operator log record and never raises: a store
or embedding failure degrades to an empty result.

Missing scores and timestamps sort last, as they do in the selector.
Rows carry their stored embedding so the selector can tell whether the
pool is embedded.

``search_by_embedding`` is the stricter semantic search used for explicit
recall: it applies a similarity floor and falls back to keyword search
when no embedding can be produced.
"""

import logging
import time
from typing import Optional

from langchain_core.embeddings import Embeddings

from ..config import RecallConfig
from ..operator_logger import OperatorLogger, elapsed_ms, get_operator_logger
from .models import Memory, RetrievalResult, Strategy, memories_from_rows

logger = logging.getLogger(__name__)

# Leading columns match models.MEMORY_COLUMNS for positional rows
MEMORY_FIELDS = (
    "id, memory_type, content, importance_score, created_at, "
    "persona_id, user_id, embedding"
)

HYBRID_SQL = f"""
    SELECT {MEMORY_FIELDS},
           (%(semantic_weight)s * (1.0 - (embedding <=> %(embedding)s::vector))
            + %(importance_weight)s * importance_score) AS hybrid_score
    FROM memories
    WHERE persona_id = %(persona_id)s
      AND user_id = %(user_id)s
      AND embedding IS NOT NULL
    ORDER BY hybrid_score DESC NULLS LAST
    LIMIT %(limit)s
"""

IMPORTANCE_RECENCY_SQL = f"""
    SELECT {MEMORY_FIELDS}
    FROM memories
    WHERE persona_id = %(persona_id)s AND user_id = %(user_id)s
    ORDER BY importance_score DESC NULLS LAST, created_at DESC NULLS LAST
    LIMIT %(limit)s
"""

SEMANTIC_SQL = f"""
    SELECT {MEMORY_FIELDS},
           (1.0 - (embedding <=> %(embedding)s::vector)) AS similarity,
           (%(semantic_weight)s * (1.0 - (embedding <=> %(embedding)s::vector))
            + %(importance_weight)s * importance_score) AS hybrid_score
    FROM memories
    WHERE persona_id = %(persona_id)s
      AND user_id = %(user_id)s
      AND embedding IS NOT NULL
      AND (1.0 - (embedding <=> %(embedding)s::vector)) >= %(min_similarity)s
    ORDER BY hybrid_score DESC NULLS LAST
    LIMIT %(limit)s
"""

# Query words this short carry no signal for keyword search
MIN_KEYWORD_LENGTH = 3


def create_embedding_model(config: RecallConfig) -> Optional[Embeddings]:
    """
    Build the embedding model from config.

    Returns None when no API key is configured; retrieval then ranks by
    importance and recency only.
    """
    if not config.embedding_api_key:
        logger.info("No embedding API key configured, using importance ranking")
        return None
    try:
        from langchain_openai import OpenAIEmbeddings

        embed_kwargs = {"api_key": config.embedding_api_key}
        if config.embedding_base_url:
            embed_kwargs["base_url"] = config.embedding_base_url
        return OpenAIEmbeddings(
            model=config.embedding_model,
            dimensions=config.embedding_dimensions,
            **embed_kwargs,
        )
    except Exception as e:
        logger.warning("Failed to create embedding model: %s", e)
        return None


class HybridRetriever:
    """
    Fetches ranked memory candidates for a (persona, user, query).

    Args:
        pool: psycopg connection pool; the shared pool when omitted.
        embedding_model: LangChain ``Embeddings``; None disables the
            semantic strategies.
        operator_logger: Telemetry sink; the process-wide one when omitted.
        config: Weights and limits.
    """

    def __init__(
        self,
        pool=None,
        embedding_model: Optional[Embeddings] = None,
        operator_logger: Optional[OperatorLogger] = None,
        config: Optional[RecallConfig] = None,
    ):
        self._pool = pool
        self._embedding_model = embedding_model
        self._operator_logger = operator_logger
        self.config = config or RecallConfig()

    @property
    def operator_logger(self) -> OperatorLogger:
        if self._operator_logger is None:
            self._operator_logger = get_operator_logger()
        return self._operator_logger

    def _get_pool(self):
        if self._pool is None:
            from ..db import get_shared_pool

            self._pool = get_shared_pool(self.config)
        return self._pool

    def _embed(self, text: str) -> Optional[list[float]]:
        """Embed text; any failure or empty vector means no embedding."""
        if not self._embedding_model or not text:
            return None
        try:
            embedding = self._embedding_model.embed_query(text)
        except Exception as e:
            logger.warning("Embedding failed: %s", e)
            return None
        return list(embedding) if embedding else None

    def _fetch(self, sql: str, params: dict) -> list[Memory]:
        with self._get_pool().connection() as conn:
            rows = conn.execute(sql, params).fetchall()
        return memories_from_rows(rows)

    def retrieve(
        self,
        persona_id,
        user_id,
        query: str,
        session_id=None,
    ) -> RetrievalResult:
        """Rank up to ``retrieval_limit`` memories. Never raises."""
        start = time.monotonic()
        base_params = {
            "persona_id": persona_id,
            "user_id": user_id,
            "limit": self.config.retrieval_limit,
        }

        try:
            embedding = self._embed(query)

            if embedding:
                strategy = Strategy.HYBRID
                memories = self._fetch(
                    HYBRID_SQL,
                    {
                        **base_params,
                        "embedding": embedding,
                        "semantic_weight": self.config.semantic_weight,
                        "importance_weight": self.config.importance_weight,
                    },
                )
                if not memories:
                    # No embedded memories in scope yet
                    strategy = Strategy.HYBRID_FALLBACK_TO_IMPORTANCE
                    memories = self._fetch(IMPORTANCE_RECENCY_SQL, base_params)
            else:
                strategy = Strategy.IMPORTANCE_AND_RECENCY
                memories = self._fetch(IMPORTANCE_RECENCY_SQL, base_params)
        except Exception as e:
            logger.warning("Memory retrieval failed for persona %s: %s", persona_id, e)
            self.operator_logger.log_operation(
                "error_graceful",
                session_id=session_id,
                persona_id=persona_id,
                user_id=user_id,
                details={
                    "error_type": "memory_retrieval_failure",
                    "error_message": str(e),
                    "fallback_used": "empty_array",
                },
                duration_ms=elapsed_ms(start),
                success=False,
            )
            return RetrievalResult.empty(degraded=True)

        self.operator_logger.log_operation(
            "memory_retrieval",
            session_id=session_id,
            persona_id=persona_id,
            user_id=user_id,
            details={
                "memories_selected": len(memories),
                "total_available": len(memories),
                "selection_strategy": strategy.value,
            },
            duration_ms=elapsed_ms(start),
            success=True,
        )
        logger.debug(
            "Retrieved %d memories for persona %s (%s)",
            len(memories), persona_id, strategy.value,
        )
        return RetrievalResult(memories=memories, strategy=strategy)

    def search_by_embedding(
        self,
        query: str,
        persona_id,
        user_id,
        limit: Optional[int] = None,
        min_similarity: Optional[float] = None,
        session_id=None,
    ) -> list[Memory]:
        """
        Semantic search with a similarity floor.

        Falls back to keyword search when no embedding can be produced,
        and to importance + recency when the query has no usable words.
        Returns an empty list on error.
        """
        start = time.monotonic()
        limit = limit if limit is not None else self.config.retrieval_limit
        if min_similarity is None:
            min_similarity = self.config.min_similarity

        try:
            embedding = self._embed(query)
            if embedding:
                memories = self._fetch(
                    SEMANTIC_SQL,
                    {
                        "persona_id": persona_id,
                        "user_id": user_id,
                        "embedding": embedding,
                        "min_similarity": min_similarity,
                        "semantic_weight": self.config.semantic_weight,
                        "importance_weight": self.config.importance_weight,
                        "limit": limit,
                    },
                )
                self._log_search(
                    start, session_id, persona_id, user_id,
                    strategy="embedding",
                    results_count=len(memories),
                    min_similarity_threshold=min_similarity,
                )
                return memories

            self.operator_logger.log_operation(
                "semantic_search_fallback",
                session_id=session_id,
                persona_id=persona_id,
                user_id=user_id,
                details={
                    "reason": "embedding_generation_failed",
                    "fallback": "text_search",
                },
                duration_ms=elapsed_ms(start),
                success=True,
            )
            return self._keyword_search(
                query, persona_id, user_id, limit, session_id, start
            )
        except Exception as e:
            logger.warning("Semantic search failed: %s", e)
            self.operator_logger.log_operation(
                "error_graceful",
                session_id=session_id,
                persona_id=persona_id,
                user_id=user_id,
                details={
                    "error_type": "semantic_search_failure",
                    "error_message": str(e),
                    "fallback_used": "empty_array",
                },
                duration_ms=elapsed_ms(start),
                success=False,
            )
            return []

    def _keyword_search(
        self, query, persona_id, user_id, limit, session_id, start
    ) -> list[Memory]:
        """Fallback: count ILIKE keyword hits, then importance."""
        words = [w for w in query.lower().split() if len(w) >= MIN_KEYWORD_LENGTH]
        params = {"persona_id": persona_id, "user_id": user_id, "limit": limit}

        if not words:
            memories = self._fetch(IMPORTANCE_RECENCY_SQL, params)
            self._log_search(
                start, session_id, persona_id, user_id,
                strategy="importance_recency",
                results_count=len(memories),
                reason="no_meaningful_keywords",
            )
            return memories

        conditions = []
        for i, word in enumerate(words):
            params[f"kw{i}"] = f"%{word}%"
            conditions.append(f"content ILIKE %(kw{i})s")
        match_count = " + ".join(f"CASE WHEN {c} THEN 1 ELSE 0 END" for c in conditions)
        any_match = " OR ".join(conditions)

        sql = f"""
            SELECT {MEMORY_FIELDS}, ({match_count}) AS keyword_matches
            FROM memories
            WHERE persona_id = %(persona_id)s AND user_id = %(user_id)s
              AND ({any_match})
            ORDER BY keyword_matches DESC, importance_score DESC NULLS LAST
            LIMIT %(limit)s
        """
        memories = self._fetch(sql, params)
        self._log_search(
            start, session_id, persona_id, user_id,
            strategy="text_search",
            results_count=len(memories),
            keywords_used=len(words),
        )
        return memories

    def _log_search(self, start, session_id, persona_id, user_id, **details):
        self.operator_logger.log_operation(
            "semantic_search",
            session_id=session_id,
            persona_id=persona_id,
            user_id=user_id,
            details=details,
            duration_ms=elapsed_ms(start),
            success=True,
        )
