"""
Memory framing: turn memory records into natural-language recollection.

Memories are phrased as the persona's own thoughts, not as database
lookups. The phrasing depends on the memory type and on how well the
persona knows the user (trust level).
"""

import logging
import time
from typing import Optional

from ..operator_logger import OperatorLogger, elapsed_ms, get_operator_logger
from .models import Memory

logger = logging.getLogger(__name__)

MAX_MEMORY_CHARS = 300

# {content} → memory content, {user_ref} → reference by trust level
DEFAULT_TEMPLATES: dict[str, str] = {
    "interaction": 'You recall {user_ref} mentioning: "{content}"',
    "relationship": "You remember this about them: {content}",
    "insight": "A thought surfaces from your experience: {content}",
    "learning": "You have come to understand: {content}",
    "general": "From your memory: {content}",
}

USER_REFERENCES: dict[str, str] = {
    "stranger": "a visitor",
    "acquaintance": "your acquaintance",
    "familiar": "your friend",
    "confidant": "your trusted companion",
}

CUSTOM_TEMPLATES_SQL = """
    SELECT subtype, template
    FROM context_templates
    WHERE template_type = 'memory'
      AND persona_id = %s
      AND active = true
    ORDER BY priority DESC
"""


def frame_memory(memory: Memory, template: str, user_ref: str) -> str:
    """Frame one memory; blank content frames to an empty string."""
    content = (memory.content or "").strip()
    if not content:
        return ""
    if len(content) > MAX_MEMORY_CHARS:
        content = content[: MAX_MEMORY_CHARS - 3] + "..."
    return template.replace("{content}", content).replace("{user_ref}", user_ref)


def _frame_each(
    memories: list[Memory],
    trust_level: Optional[str] = None,
    templates: Optional[dict[str, str]] = None,
) -> list[str]:
    templates = {**DEFAULT_TEMPLATES, **(templates or {})}
    user_ref = USER_REFERENCES.get(trust_level or "stranger", USER_REFERENCES["stranger"])

    lines = []
    for memory in memories:
        template = templates.get(memory.memory_type) or templates["general"]
        framed = frame_memory(memory, template, user_ref)
        if framed:
            lines.append(framed)
    return lines


def frame_memories(
    memories: list[Memory],
    trust_level: Optional[str] = None,
    templates: Optional[dict[str, str]] = None,
) -> str:
    """Frame memories one per line, in the given order."""
    return "\n".join(_frame_each(memories, trust_level, templates))


class MemoryFramer:
    """Frames memories with per-persona custom templates from the store."""

    def __init__(self, pool=None, operator_logger: Optional[OperatorLogger] = None):
        self._pool = pool
        self._operator_logger = operator_logger

    @property
    def operator_logger(self) -> OperatorLogger:
        if self._operator_logger is None:
            self._operator_logger = get_operator_logger()
        return self._operator_logger

    def load_custom_templates(self, persona_id) -> dict[str, str]:
        """Custom templates keyed by memory type (higher priority wins)."""
        pool = self._pool
        if pool is None:
            from ..db import get_shared_pool

            pool = self._pool = get_shared_pool()

        with pool.connection() as conn:
            rows = conn.execute(CUSTOM_TEMPLATES_SQL, (persona_id,)).fetchall()

        templates: dict[str, str] = {}
        for row in rows:
            subtype = row["subtype"] if isinstance(row, dict) else row[0]
            template = row["template"] if isinstance(row, dict) else row[1]
            # Rows come highest priority first; keep the first per subtype
            if subtype and subtype not in templates:
                templates[subtype] = template
        return templates

    def frame(
        self,
        memories: list[Memory],
        trust_level: Optional[str] = None,
        persona_id=None,
        session_id=None,
    ) -> str:
        """Frame memories as natural language. Never raises; "" on error."""
        start = time.monotonic()

        try:
            templates: dict[str, str] = {}
            if memories and persona_id is not None:
                try:
                    templates = self.load_custom_templates(persona_id)
                except Exception as e:
                    logger.warning(
                        "Failed to load custom templates for %s, using defaults: %s",
                        persona_id, e,
                    )

            framed = _frame_each(memories or [], trust_level, templates)
            output = "\n".join(framed)
            types_used = sorted({m.memory_type for m in memories or []})
        except Exception as e:
            self.operator_logger.log_operation(
                "error_graceful",
                session_id=session_id,
                persona_id=persona_id,
                details={
                    "error_type": "memory_framing_failure",
                    "error_message": str(e),
                    "fallback_used": "empty_string",
                },
                duration_ms=elapsed_ms(start),
                success=False,
            )
            return ""

        self.operator_logger.log_operation(
            "memory_framing",
            session_id=session_id,
            persona_id=persona_id,
            details={
                "memories_framed": len(framed),
                "templates_used": types_used,
                "total_characters": len(output),
            },
            duration_ms=elapsed_ms(start),
            success=True,
        )
        return output
