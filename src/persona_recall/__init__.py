"""
Persona memory recall with resilient retrieval and telemetry.

- memory: hybrid retrieval, slot selection, framing and token budgeting
- operator_logger: fire-and-forget telemetry with DB backoff and file fallback
- db: shared PostgreSQL connection pool
- inspect_logs: operator CLI for reading telemetry
"""

from .config import RecallConfig
from .memory import (
    HybridRetriever,
    Memory,
    MemoryOrchestrator,
    RetrievalRequest,
    RetrievalResult,
    Strategy,
    estimate_tokens,
    select_memories,
    truncate_memories,
)
from .operator_logger import (
    BackoffState,
    OperatorLogger,
    log_operation,
    log_operation_batch,
)

__all__ = [
    "RecallConfig",
    "BackoffState",
    "HybridRetriever",
    "Memory",
    "MemoryOrchestrator",
    "OperatorLogger",
    "RetrievalRequest",
    "RetrievalResult",
    "Strategy",
    "estimate_tokens",
    "log_operation",
    "log_operation_batch",
    "select_memories",
    "truncate_memories",
]
