"""
Shared PostgreSQL connection pool.

One process-wide ``psycopg_pool.ConnectionPool`` serves retrieval, framing
and the operator logger. Connections are checked out per operation with
``with pool.connection() as conn:`` so they are always released.
"""

import logging
import threading
from datetime import datetime, timezone
from typing import Optional

from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from .config import RecallConfig

logger = logging.getLogger(__name__)

POOL_MIN_SIZE = 1
POOL_MAX_SIZE = 10
POOL_TIMEOUT = 2.0  # seconds to wait for a connection
POOL_MAX_IDLE = 30.0

_shared_pool: Optional[ConnectionPool] = None
_pool_created_at: Optional[datetime] = None
_pool_lock = threading.Lock()


def get_shared_pool(config: Optional[RecallConfig] = None) -> ConnectionPool:
    """
    Get or create the shared connection pool.

    Raises RuntimeError when no DATABASE_URL is configured; callers inside
    the safe-fetch boundary turn that into their fallback value.
    """
    global _shared_pool, _pool_created_at

    with _pool_lock:
        if _shared_pool is None:
            config = config or RecallConfig.from_env()
            if not config.database_url:
                raise RuntimeError("DATABASE_URL environment variable is required")

            _shared_pool = ConnectionPool(
                config.database_url,
                min_size=POOL_MIN_SIZE,
                max_size=POOL_MAX_SIZE,
                timeout=POOL_TIMEOUT,
                max_idle=POOL_MAX_IDLE,
                kwargs={
                    "autocommit": True,
                    "prepare_threshold": 0,
                    "row_factory": dict_row,
                },
                open=True,
            )
            _pool_created_at = datetime.now(timezone.utc)
            logger.info(
                "Shared pool created (min=%d, max=%d)", POOL_MIN_SIZE, POOL_MAX_SIZE
            )

    return _shared_pool


def close_shared_pool():
    """Close the shared pool; call during graceful shutdown."""
    global _shared_pool, _pool_created_at

    with _pool_lock:
        if _shared_pool is not None:
            logger.info("Closing shared pool")
            _shared_pool.close()
            _shared_pool = None
            _pool_created_at = None


def get_pool_stats() -> dict:
    """Pool statistics for monitoring."""
    if _shared_pool is None:
        return {"active": False, "created_at": None}

    stats = _shared_pool.get_stats()
    return {
        "active": True,
        "size": stats.get("pool_size", 0),
        "available": stats.get("pool_available", 0),
        "waiting": stats.get("requests_waiting", 0),
        "created_at": _pool_created_at.isoformat() if _pool_created_at else None,
    }
