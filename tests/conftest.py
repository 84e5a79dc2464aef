"""
Shared test setup: puts ``src`` on sys.path and provides mock store helpers.
"""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import MagicMock

import pytest

# Add src to PYTHONPATH
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

from persona_recall.config import RecallConfig  # noqa: E402
from persona_recall.memory.models import Memory  # noqa: E402
from persona_recall.operator_logger import BackoffState, OperatorLogger  # noqa: E402

BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


def make_pool(*results):
    """
    A mock connection pool whose queries return ``results`` in order.

    An exception instance in ``results`` is raised by that query's fetchall.
    Returns (pool, conn) so tests can inspect executed SQL.
    """
    pool = MagicMock()
    conn = pool.connection.return_value.__enter__.return_value
    conn.execute.return_value.fetchall.side_effect = list(results)
    return pool, conn


def make_memory(idx, importance=0.5, days=0, content=None, embedding=None, memory_type="general"):
    return Memory(
        id=f"mem-{idx}",
        content=content if content is not None else f"memory {idx}",
        memory_type=memory_type,
        importance_score=importance,
        created_at=BASE_TIME + timedelta(days=days),
        embedding=embedding,
    )


def memory_row(idx, importance=0.5, days=0, content=None, memory_type="general"):
    return {
        "id": f"mem-{idx}",
        "memory_type": memory_type,
        "content": content if content is not None else f"memory {idx}",
        "importance_score": importance,
        "created_at": BASE_TIME + timedelta(days=days),
    }


@pytest.fixture
def sink():
    """A mock operator logger recording log_operation calls."""
    return MagicMock(spec=OperatorLogger)


@pytest.fixture
def fallback_config(tmp_path):
    return RecallConfig(fallback_log_file=str(tmp_path / "logs" / "operator-fallback.log"))


@pytest.fixture
def backoff_state():
    return BackoffState()


@pytest.fixture
def make_operator_logger(fallback_config, backoff_state):
    """Build a real OperatorLogger over a given pool, writing to tmp_path."""

    def _make(pool):
        return OperatorLogger(
            pool_factory=lambda: pool, state=backoff_state, config=fallback_config
        )

    return _make
