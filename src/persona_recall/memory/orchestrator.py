"""
Memory orchestrator: safe fetches for context assembly.

Every ``safe_*`` method calls one subsystem, post-processes the result
(selection, framing, budget truncation) and returns either a value or the
neutral fallback (empty list, None, ""). A failing subsystem never breaks
the response: to the user it looks like a persona with nothing relevant
to remember. Each call writes exactly one operator log record.
"""

import logging
import time
from typing import Optional

from ..config import RecallConfig
from ..operator_logger import OperatorLogger, elapsed_ms, get_operator_logger
from .framing import MemoryFramer
from .models import Memory, RetrievalRequest, RetrievalResult
from .retriever import HybridRetriever
from .selector import select_memories
from .token_budget import estimate_tokens, truncate_memories

logger = logging.getLogger(__name__)


def _field(result, name, default=None):
    """Read a field from a dict-like or attribute-style provider result."""
    if isinstance(result, dict):
        return result.get(name, default)
    return getattr(result, name, default)


class MemoryOrchestrator:
    """
    Entry point for memory context used by the context-assembly layer.

    Args:
        retriever: Hybrid retriever for user memories.
        persona_memories: Provider with ``get_persona_memories(persona_id,
            limit=..., min_importance=...)`` and
            ``frame_persona_memories(memories, token_budget)``.
        preterite: Provider with ``attempt_surface(persona_id, user_id,
            count)`` and ``frame_preterite_context(result)``. Whether a
            memory surfaces at all is the provider's decision.
        framer: Frames retrieved memories for ``build_memory_context``.
        operator_logger: Telemetry sink; the process-wide one when omitted.
        config: Budgets and limits.
    """

    def __init__(
        self,
        retriever: Optional[HybridRetriever] = None,
        persona_memories=None,
        preterite=None,
        framer: Optional[MemoryFramer] = None,
        operator_logger: Optional[OperatorLogger] = None,
        config: Optional[RecallConfig] = None,
    ):
        self.config = config or RecallConfig()
        self._operator_logger = operator_logger
        self.retriever = retriever or HybridRetriever(
            operator_logger=operator_logger, config=self.config
        )
        self.persona_memories = persona_memories
        self.preterite = preterite
        self.framer = framer or MemoryFramer(operator_logger=operator_logger)

    @property
    def operator_logger(self) -> OperatorLogger:
        if self._operator_logger is None:
            self._operator_logger = get_operator_logger()
        return self._operator_logger

    def _log_failure(self, error_type, error, start, session_id, persona_id, user_id=None):
        logger.warning("%s for persona %s: %s", error_type, persona_id, error)
        self.operator_logger.log_operation(
            "error_graceful",
            session_id=session_id,
            persona_id=persona_id,
            user_id=user_id,
            details={
                "error_type": error_type,
                "error_message": str(error),
                "fallback_used": "null",
            },
            duration_ms=elapsed_ms(start),
            success=False,
        )

    def safe_memory_retrieval(
        self, persona_id, user_id, query: str, session_id=None
    ) -> list[Memory]:
        """Ranked memory candidates, or [] when anything fails."""
        return self.retriever.retrieve(persona_id, user_id, query, session_id).memories

    def recall(self, request: RetrievalRequest) -> RetrievalResult:
        """Retrieve candidates and reduce them to ``request.max_results``."""
        if request.max_results == 0:
            return RetrievalResult.empty()

        result = self.retriever.retrieve(
            request.persona_id, request.user_id, request.query, request.session_id
        )
        selected = select_memories(result.memories, request.query, request.max_results)
        return RetrievalResult(
            memories=selected, strategy=result.strategy, degraded=result.degraded
        )

    def safe_persona_memories_fetch(
        self, persona_id, token_budget: Optional[int] = None, session_id=None
    ) -> Optional[str]:
        """The persona's own (user-independent) memories, framed, or None."""
        start = time.monotonic()
        budget = token_budget if token_budget is not None else self.config.persona_token_budget

        try:
            memories = self.persona_memories.get_persona_memories(
                persona_id,
                limit=self.config.persona_memory_limit,
                min_importance=self.config.persona_min_importance,
            )
            framed = None
            if memories:
                framed = self.persona_memories.frame_persona_memories(memories, budget)
                framed = truncate_memories(framed, budget) or None
        except Exception as e:
            self._log_failure(
                "persona_memories_fetch_failure", e, start, session_id, persona_id
            )
            return None

        self.operator_logger.log_operation(
            "persona_memories_fetch",
            session_id=session_id,
            persona_id=persona_id,
            details={
                "memories_included": len(memories or []),
                "total_characters": len(framed or ""),
            },
            duration_ms=elapsed_ms(start),
            success=True,
        )
        return framed

    def safe_preterite_fetch(self, persona_id, user_id, session_id=None) -> Optional[str]:
        """A rare surfaced (preterite) memory, framed, or None."""
        start = time.monotonic()

        try:
            surface = self.preterite.attempt_surface(
                persona_id, user_id, self.config.preterite_fragments
            )
            surfaced = bool(surface) and bool(_field(surface, "surfaced", False))
            fragments = []
            framed = None
            if surfaced:
                fragments = _field(surface, "fragments") or []
                framed = self.preterite.frame_preterite_context(surface)
                framed = truncate_memories(framed, self.config.preterite_token_budget) or None
        except Exception as e:
            self._log_failure(
                "preterite_surface_failure", e, start, session_id, persona_id, user_id
            )
            return None

        self.operator_logger.log_operation(
            "preterite_surface",
            session_id=session_id,
            persona_id=persona_id,
            user_id=user_id,
            details={
                "surfaced": surfaced,
                "fragments_surfaced": len(fragments),
            },
            duration_ms=elapsed_ms(start),
            success=True,
        )
        return framed

    def build_memory_context(
        self,
        persona_id,
        user_id,
        query: str,
        session_id=None,
        max_tokens: Optional[int] = None,
        max_memories: Optional[int] = None,
        trust_level: Optional[str] = None,
    ) -> str:
        """
        Framed, budget-bounded user memories ready for injection.

        Retrieval, selection and framing degrade on their own; the result
        is at worst an empty string. A negative ``max_memories`` counts as 0.
        """
        max_tokens = max_tokens if max_tokens is not None else self.config.memory_token_budget
        if max_memories is None:
            max_memories = self.config.default_max_memories
        if max_memories < 0:
            logger.warning("Negative max_memories %d, treating as 0", max_memories)
            max_memories = 0
        request = RetrievalRequest(
            persona_id=persona_id,
            user_id=user_id,
            query=query,
            max_results=max_memories,
            session_id=session_id,
        )
        result = self.recall(request)
        if not result.memories:
            return ""

        framed = self.framer.frame(
            result.memories,
            trust_level=trust_level,
            persona_id=persona_id,
            session_id=session_id,
        )
        truncated = truncate_memories(framed, max_tokens)

        if truncated != framed:
            self.operator_logger.log_operation(
                "memory_truncation",
                session_id=session_id,
                persona_id=persona_id,
                user_id=user_id,
                details={
                    "original_tokens": estimate_tokens(framed),
                    "truncated_to": estimate_tokens(truncated),
                    "budget": max_tokens,
                },
                success=True,
            )
        return truncated
