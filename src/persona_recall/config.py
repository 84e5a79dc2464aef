"""
Recall configuration: retrieval weights, budgets and operator-log backoff.
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv

# Operator logger fallback
MAX_CONSECUTIVE_FAILURES = 5  # DB failures before backoff kicks in
BACKOFF_SKIP_COUNT = 10  # in backoff, only attempt the DB every N calls
FALLBACK_LOG_FILE = "logs/operator-fallback.log"

# Hybrid retrieval
RETRIEVAL_LIMIT = 10
SEMANTIC_WEIGHT = 0.6
IMPORTANCE_WEIGHT = 0.4
MIN_SIMILARITY = 0.3

# Embeddings
EMBEDDING_MODEL = "text-embedding-3-small"
EMBEDDING_DIMENSIONS = 1536


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


@dataclass
class RecallConfig:
    """Configuration for memory retrieval, safe fetches and telemetry."""

    database_url: str = ""

    # Hybrid retriever
    retrieval_limit: int = RETRIEVAL_LIMIT
    semantic_weight: float = SEMANTIC_WEIGHT
    importance_weight: float = IMPORTANCE_WEIGHT
    min_similarity: float = MIN_SIMILARITY

    # Embeddings (empty api key = no embedding model, importance ranking only)
    embedding_model: str = EMBEDDING_MODEL
    embedding_api_key: str = ""
    embedding_base_url: str = ""
    embedding_dimensions: int = EMBEDDING_DIMENSIONS

    # Persona memories
    persona_memory_limit: int = 5
    persona_min_importance: float = 0.5
    persona_token_budget: int = 200

    # Preterite surfacing
    preterite_fragments: int = 2
    preterite_token_budget: int = 150

    # Framed user memories
    memory_token_budget: int = 800
    default_max_memories: int = 5

    # Operator logger
    max_consecutive_failures: int = MAX_CONSECUTIVE_FAILURES
    backoff_skip_count: int = BACKOFF_SKIP_COUNT
    fallback_log_file: str = FALLBACK_LOG_FILE

    @classmethod
    def from_env(cls) -> "RecallConfig":
        """Load configuration from environment variables (and a .env file)."""
        load_dotenv()
        return cls(
            database_url=os.getenv("DATABASE_URL", ""),
            retrieval_limit=_env_int("RECALL_RETRIEVAL_LIMIT", RETRIEVAL_LIMIT),
            semantic_weight=_env_float("RECALL_SEMANTIC_WEIGHT", SEMANTIC_WEIGHT),
            importance_weight=_env_float(
                "RECALL_IMPORTANCE_WEIGHT", IMPORTANCE_WEIGHT
            ),
            min_similarity=_env_float("RECALL_MIN_SIMILARITY", MIN_SIMILARITY),
            embedding_model=os.getenv("RECALL_EMBEDDING_MODEL", EMBEDDING_MODEL),
            embedding_api_key=os.getenv("RECALL_EMBEDDING_API_KEY")
            or os.getenv("OPENAI_API_KEY", ""),
            embedding_base_url=os.getenv("RECALL_EMBEDDING_BASE_URL", ""),
            persona_memory_limit=_env_int("RECALL_PERSONA_MEMORY_LIMIT", 5),
            persona_min_importance=_env_float("RECALL_PERSONA_MIN_IMPORTANCE", 0.5),
            persona_token_budget=_env_int("RECALL_PERSONA_TOKEN_BUDGET", 200),
            preterite_fragments=_env_int("RECALL_PRETERITE_FRAGMENTS", 2),
            preterite_token_budget=_env_int("RECALL_PRETERITE_TOKEN_BUDGET", 150),
            memory_token_budget=_env_int("RECALL_MEMORY_TOKEN_BUDGET", 800),
            max_consecutive_failures=_env_int(
                "OPERATOR_LOG_MAX_FAILURES", MAX_CONSECUTIVE_FAILURES
            ),
            backoff_skip_count=_env_int(
                "OPERATOR_LOG_BACKOFF_SKIP", BACKOFF_SKIP_COUNT
            ),
            fallback_log_file=os.getenv(
                "OPERATOR_LOG_FALLBACK_FILE", FALLBACK_LOG_FILE
            ),
        )
