"""
Memory records and retrieval value objects.

Store rows are decoded into ``Memory`` here; rows without an id or content
are rejected instead of being trusted as-is.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Iterator, Optional

logger = logging.getLogger(__name__)

# Column order used by positional (tuple) rows
MEMORY_COLUMNS = (
    "id",
    "memory_type",
    "content",
    "importance_score",
    "created_at",
    "persona_id",
    "user_id",
    "embedding",
)


class Strategy(str, Enum):
    """Ranking strategy actually used by a retrieval."""

    HYBRID = "hybrid"
    HYBRID_FALLBACK_TO_IMPORTANCE = "hybrid_fallback_to_importance"
    IMPORTANCE_AND_RECENCY = "importance_and_recency"
    NONE = "none"


@dataclass
class Memory:
    """One discrete recollection owned by a persona (and optionally a user)."""

    id: Any
    content: str
    memory_type: str = "general"
    persona_id: Any = None
    user_id: Any = None
    importance_score: Optional[float] = None
    created_at: Optional[datetime] = None
    embedding: Optional[list[float]] = None

    # Scores computed by the store query, when present
    hybrid_score: Optional[float] = None
    similarity: Optional[float] = None
    keyword_matches: Optional[int] = None

    @property
    def has_embedding(self) -> bool:
        return self.embedding is not None and len(self.embedding) > 0

    @classmethod
    def from_row(cls, row) -> Optional["Memory"]:
        """Decode a dict row (``dict_row``) or a positional tuple row."""
        if isinstance(row, dict):
            data = dict(row)
        else:
            data = dict(zip(MEMORY_COLUMNS, row))

        if data.get("id") is None or data.get("content") is None:
            logger.debug("Skipping memory row without id/content: %r", data)
            return None

        importance = data.get("importance_score")
        return cls(
            id=data["id"],
            content=str(data["content"]),
            memory_type=data.get("memory_type") or "general",
            persona_id=data.get("persona_id"),
            user_id=data.get("user_id"),
            importance_score=float(importance) if importance is not None else None,
            created_at=data.get("created_at"),
            embedding=_as_vector(data.get("embedding")),
            hybrid_score=_as_float(data.get("hybrid_score")),
            similarity=_as_float(data.get("similarity")),
            keyword_matches=data.get("keyword_matches"),
        )


def _as_float(value) -> Optional[float]:
    return float(value) if value is not None else None


def _as_vector(value) -> Optional[list[float]]:
    if value is None:
        return None
    if isinstance(value, str):
        # pgvector text form: "[0.1,0.2,...]"
        stripped = value.strip("[] ")
        return [float(v) for v in stripped.split(",")] if stripped else []
    return [float(v) for v in value]


def memories_from_rows(rows) -> list[Memory]:
    """Decode store rows, dropping the ones that fail validation."""
    memories = []
    for row in rows:
        memory = Memory.from_row(row)
        if memory is not None:
            memories.append(memory)
    return memories


@dataclass
class RetrievalRequest:
    """A request for memories to inject into one response."""

    persona_id: Any
    user_id: Any
    query: str
    max_results: int = 5
    session_id: Any = None

    def __post_init__(self):
        if self.max_results < 0:
            raise ValueError(
                f"max_results must be >= 0, got {self.max_results}"
            )


@dataclass
class RetrievalResult:
    """Memories in selection order, annotated with the strategy used."""

    memories: list[Memory] = field(default_factory=list)
    strategy: Strategy = Strategy.NONE
    degraded: bool = False

    def __iter__(self) -> Iterator[Memory]:
        return iter(self.memories)

    def __len__(self) -> int:
        return len(self.memories)

    @classmethod
    def empty(cls, degraded: bool = False) -> "RetrievalResult":
        return cls(memories=[], strategy=Strategy.NONE, degraded=degraded)
