"""
Operator logger: silent telemetry for every memory operation.

Records go to the ``operator_logs`` table through the ``log_operation``
stored function and are never shown to users. Writes are fire-and-forget:

- A failed DB write appends the record to a newline-delimited JSON
  fallback file (``_fallback_reason: "db_error"``).
- After ``max_consecutive_failures`` failed writes the logger enters
  backoff: only every ``backoff_skip_count``-th call tries the DB, the
  others go straight to the file (``_fallback_reason: "backoff_skip"``).
- Any successful DB write resets the backoff counters.
- Batch entries that cannot be decoded are appended as ``malformed``.
- If even the fallback file cannot be written, the record is dropped.

Backoff counters live in a ``BackoffState`` passed to the logger, so tests
and callers can own their own state; the module-level helpers share one
default logger per process.
"""

import json
import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, Optional

from .config import RecallConfig

logger = logging.getLogger(__name__)

LOG_OPERATION_SQL = "SELECT log_operation(%s, %s, %s, %s, %s, %s, %s)"

BACKOFF_SKIP = "backoff_skip"
DB_ERROR = "db_error"
MALFORMED = "malformed"


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def elapsed_ms(start: float) -> int:
    """Milliseconds since a ``time.monotonic()`` reading."""
    return int((time.monotonic() - start) * 1000)


def _error_code(error: BaseException) -> Optional[str]:
    code = getattr(error, "sqlstate", None) or getattr(error, "code", None)
    if code is None:
        code = getattr(error, "errno", None)
    return str(code) if code is not None else None


@dataclass
class OperationRecord:
    """One write-once telemetry entry."""

    operation: str
    session_id: Any = None
    persona_id: Any = None
    user_id: Any = None
    details: dict = field(default_factory=dict)
    duration_ms: Optional[int] = None
    success: bool = True
    timestamp: str = field(default_factory=_utc_now)

    def db_params(self) -> tuple:
        """Positional arguments for the ``log_operation`` stored function."""
        return (
            _as_param(self.session_id),
            _as_param(self.persona_id),
            _as_param(self.user_id),
            self.operation,
            json.dumps(self.details or {}, default=str),
            self.duration_ms,
            self.success,
        )

    def to_fallback_entry(
        self, reason: str, error: Optional[BaseException] = None
    ) -> dict:
        entry = {
            "operation": self.operation,
            "session_id": self.session_id,
            "persona_id": self.persona_id,
            "user_id": self.user_id,
            "details": self.details or {},
            "duration_ms": self.duration_ms,
            "success": self.success,
            "timestamp": self.timestamp,
            "_fallback_reason": reason,
        }
        if error is not None:
            entry["error"] = str(error)
            entry["error_code"] = _error_code(error)
        return entry


def _as_param(value):
    return str(value) if value is not None else None


def _malformed_record(op) -> OperationRecord:
    """Placeholder record for a batch entry that could not be decoded."""
    name = op.get("operation") if isinstance(op, dict) else None
    return OperationRecord(operation=str(name or "unknown"), details={"raw": op})


@dataclass
class BackoffState:
    """Consecutive-failure counters shared by every write of one logger."""

    consecutive_failures: int = 0
    calls_since_backoff: int = 0
    _lock: threading.Lock = field(
        default_factory=threading.Lock, repr=False, compare=False
    )

    def should_attempt_db(self, max_failures: int, skip_count: int) -> bool:
        """Advance the backoff counter and decide whether to try the DB."""
        with self._lock:
            if self.consecutive_failures < max_failures:
                return True
            self.calls_since_backoff += 1
            return self.calls_since_backoff % max(skip_count, 1) == 0

    def record_success(self):
        with self._lock:
            self.consecutive_failures = 0
            self.calls_since_backoff = 0

    def record_failure(self) -> int:
        with self._lock:
            self.consecutive_failures += 1
            return self.consecutive_failures

    def reset(self):
        self.record_success()

    def snapshot(self) -> dict:
        with self._lock:
            return {
                "consecutive_failures": self.consecutive_failures,
                "calls_since_backoff": self.calls_since_backoff,
            }


class OperatorLogger:
    """
    Writes operation records to the DB with a file fallback and backoff.

    Args:
        pool_factory: Returns the connection pool. Called per write so a
            missing or broken pool counts as a failed write, not a crash.
        state: Backoff counters; a fresh ``BackoffState`` if omitted.
        config: Thresholds and fallback file location.
    """

    def __init__(
        self,
        pool_factory: Optional[Callable] = None,
        state: Optional[BackoffState] = None,
        config: Optional[RecallConfig] = None,
    ):
        if pool_factory is None:
            from .db import get_shared_pool

            pool_factory = get_shared_pool
        self._pool_factory = pool_factory
        self.state = state if state is not None else BackoffState()
        self.config = config or RecallConfig()
        self.fallback_path = Path(self.config.fallback_log_file)

    def log_operation(
        self,
        operation: str,
        session_id=None,
        persona_id=None,
        user_id=None,
        details: Optional[dict] = None,
        duration_ms: Optional[int] = None,
        success: bool = True,
    ) -> None:
        """Log one operation. Never raises."""
        record = OperationRecord(
            operation=operation,
            session_id=session_id,
            persona_id=persona_id,
            user_id=user_id,
            details=details or {},
            duration_ms=duration_ms,
            success=success,
        )
        self._write([record])

    def log_operation_batch(self, operations: Iterable[dict]) -> None:
        """
        Log several operations in one transaction. Never raises.

        Each item is ``{"operation": name, "params": {...}}`` where params
        are the keyword arguments of ``log_operation``. The DB write is
        all-or-nothing; on failure every record goes to the fallback file
        on its own line. Entries that cannot be decoded go to the fallback
        file as ``malformed`` and do not hold back the rest of the batch.
        """
        try:
            items = list(operations or [])
        except TypeError as e:
            logger.warning("Operator log batch is not iterable: %s", e)
            return

        records = []
        for op in items:
            try:
                records.append(
                    OperationRecord(operation=op["operation"], **(op.get("params") or {}))
                )
            except (KeyError, TypeError, AttributeError) as e:
                logger.warning("Malformed operator log entry: %r", e)
                self._write_fallback([_malformed_record(op)], MALFORMED, e)
        if records:
            self._write(records)

    def _write(self, records: list[OperationRecord]):
        if not self.state.should_attempt_db(
            self.config.max_consecutive_failures, self.config.backoff_skip_count
        ):
            self._write_fallback(records, BACKOFF_SKIP)
            return

        try:
            pool = self._pool_factory()
            with pool.connection() as conn:
                if len(records) == 1:
                    conn.execute(LOG_OPERATION_SQL, records[0].db_params())
                else:
                    with conn.transaction():
                        for record in records:
                            conn.execute(LOG_OPERATION_SQL, record.db_params())
        except Exception as e:
            failures = self.state.record_failure()
            if failures == self.config.max_consecutive_failures:
                logger.warning(
                    "Operator log DB failed %d times in a row, backing off: %s",
                    failures,
                    e,
                )
            else:
                logger.debug("Operator log DB write failed: %s", e)
            self._write_fallback(records, DB_ERROR, e)
            return

        self.state.record_success()

    def _write_fallback(
        self,
        records: list[OperationRecord],
        reason: str,
        error: Optional[BaseException] = None,
    ):
        """Append records to the fallback file; failures are swallowed."""
        try:
            lines = "".join(
                json.dumps(r.to_fallback_entry(reason, error), default=str) + "\n"
                for r in records
            )
            self.fallback_path.parent.mkdir(parents=True, exist_ok=True)
            with self.fallback_path.open("a", encoding="utf-8") as f:
                f.write(lines)
        except Exception:
            pass  # last resort: nothing left to fall back to


_default_logger: Optional[OperatorLogger] = None
_default_lock = threading.Lock()


def get_operator_logger() -> OperatorLogger:
    """Process-wide logger configured from the environment."""
    global _default_logger
    with _default_lock:
        if _default_logger is None:
            _default_logger = OperatorLogger(config=RecallConfig.from_env())
    return _default_logger


def set_operator_logger(operator_logger: Optional[OperatorLogger]):
    """Replace (or clear, with None) the process-wide logger."""
    global _default_logger
    with _default_lock:
        _default_logger = operator_logger


def log_operation(operation: str, **params) -> None:
    """Fire-and-forget log through the process-wide logger."""
    try:
        sink = get_operator_logger()
    except Exception as e:
        logger.warning("Operator logger unavailable, dropping %s: %s", operation, e)
        return
    try:
        sink.log_operation(operation, **params)
    except TypeError as e:
        logger.warning("Dropping %s with bad parameters: %s", operation, e)


def log_operation_batch(operations: Iterable[dict]) -> None:
    try:
        sink = get_operator_logger()
    except Exception as e:
        logger.warning("Operator logger unavailable, dropping batch: %s", e)
        return
    sink.log_operation_batch(operations)


def reset_backoff_state():
    get_operator_logger().state.reset()


def get_backoff_state() -> dict:
    return get_operator_logger().state.snapshot()
