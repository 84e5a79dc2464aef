"""
Slot-based selection over an already-fetched memory pool.

Slots are filled in a fixed order, each memory used at most once:

- Anchor (1): the most important memory in the pool
- Recency (up to 2): the newest of the rest, for continuity
- Relevance (the rest): importance when embeddings are present, otherwise
  a keyword match count against the query
"""

from .models import Memory

RECENCY_SLOTS = 2


def _importance(memory: Memory) -> float:
    if memory.importance_score is None:
        return float("-inf")
    return memory.importance_score


def _recency(memory: Memory) -> float:
    if memory.created_at is None:
        return float("-inf")
    return memory.created_at.timestamp()


def _keyword_score(memory: Memory, query_words: list[str]) -> int:
    content = memory.content.lower()
    return sum(1 for word in query_words if word in content)


def select_memories(pool: list[Memory], query: str, max_count: int) -> list[Memory]:
    """
    Reduce ``pool`` to at most ``max_count`` memories.

    Pools that already fit are returned unchanged (same order). Ties keep
    pool order: ``max`` and ``sorted`` both favour the earlier element.
    """
    if not pool or max_count <= 0:
        return []
    if len(pool) <= max_count:
        return list(pool)

    selected: list[Memory] = []
    used: set = set()

    def take(memory: Memory):
        selected.append(memory)
        used.add(memory.id)

    # Anchor
    take(max(pool, key=_importance))

    # Recency
    by_recency = sorted(
        (m for m in pool if m.id not in used), key=_recency, reverse=True
    )
    for memory in by_recency[:RECENCY_SLOTS]:
        if len(selected) >= max_count:
            break
        take(memory)

    # Relevance
    remaining = [m for m in pool if m.id not in used]
    if any(m.has_embedding for m in remaining):
        # TODO: rerank by cosine similarity to the query embedding once the
        # pool carries one; importance stands in for relevance until then.
        ranked = sorted(remaining, key=_importance, reverse=True)
    else:
        query_words = query.lower().split() if query else []
        ranked = sorted(
            remaining, key=lambda m: _keyword_score(m, query_words), reverse=True
        )

    for memory in ranked:
        if len(selected) >= max_count:
            break
        take(memory)

    return selected
