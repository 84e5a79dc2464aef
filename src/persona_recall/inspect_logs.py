"""
Operator log inspector.

Developer/operator tool for reading telemetry: the ``operator_logs`` table
by default, or the local fallback file with ``--fallback``. Never exposed
to users.

Examples:
    persona-recall-logs --persona pessoa --since 24h
    persona-recall-logs --operation memory_retrieval --limit 10
    persona-recall-logs --failed --since 1h --json
    persona-recall-logs --fallback --since 7d
"""

import argparse
import json
import logging
import re
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

from .config import RecallConfig

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 50
DETAILS_PREVIEW_CHARS = 60

_DURATION_RE = re.compile(r"^(\d+)([mhd])$")
_UNITS = {"m": "minutes", "h": "hours", "d": "days"}


def parse_duration(value: str) -> timedelta:
    """Parse ``30m``, ``1h``, ``24h``, ``7d`` into a timedelta."""
    match = _DURATION_RE.match(value or "")
    if not match:
        raise argparse.ArgumentTypeError(
            f'invalid duration "{value}", use e.g. 30m, 1h, 24h, 7d'
        )
    amount, unit = match.groups()
    return timedelta(**{_UNITS[unit]: int(amount)})


def _positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        number = 0
    if number < 1:
        raise argparse.ArgumentTypeError("--limit must be a positive integer")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="persona-recall-logs",
        description="Inspect operator logs (developer/operator use only).",
    )
    parser.add_argument("--persona", help="filter by persona name (or id with --fallback)")
    parser.add_argument("--operation", help="filter by operation type")
    parser.add_argument("--since", type=parse_duration, help="time window, e.g. 1h, 24h, 7d")
    parser.add_argument("--severity", help="filter by details.severity")
    status = parser.add_mutually_exclusive_group()
    status.add_argument("--success", dest="success", action="store_const", const=True)
    status.add_argument("--failed", dest="success", action="store_const", const=False)
    parser.add_argument("--limit", type=_positive_int, default=DEFAULT_LIMIT)
    parser.add_argument("--json", action="store_true", help="output as a JSON array")
    parser.add_argument(
        "--fallback",
        action="store_true",
        help="read the local fallback file instead of the database",
    )
    return parser


def build_query(args: argparse.Namespace) -> tuple[str, list]:
    """SQL and parameters for the ``operator_logs`` query."""
    conditions = []
    values: list = []

    if args.persona:
        conditions.append("p.name = %s")
        values.append(args.persona)
    if args.operation:
        conditions.append("ol.operation = %s")
        values.append(args.operation)
    if args.since is not None:
        conditions.append("ol.created_at > now() - %s")
        values.append(args.since)
    if args.severity:
        conditions.append("ol.details->>'severity' = %s")
        values.append(args.severity)
    if args.success is not None:
        conditions.append("ol.success = %s")
        values.append(args.success)

    where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
    sql = f"""
        SELECT ol.id, p.name AS persona, ol.operation, ol.details,
               ol.duration_ms, ol.success, ol.created_at
        FROM operator_logs ol
        LEFT JOIN personas p ON ol.persona_id = p.id
        {where}
        ORDER BY ol.created_at DESC
        LIMIT %s
    """
    values.append(args.limit)
    return sql, values


def read_fallback_entries(
    path: Path, args: argparse.Namespace, now: Optional[datetime] = None
) -> list[dict]:
    """Matching fallback-file entries, newest first. Bad lines are skipped."""
    if not path.exists():
        return []

    cutoff = None
    if args.since is not None:
        cutoff = (now or datetime.now(timezone.utc)) - args.since

    entries = []
    with path.open(encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                entry = json.loads(line)
            except json.JSONDecodeError:
                logger.debug("Skipping unreadable fallback line: %.80s", line)
                continue
            if _matches(entry, args, cutoff):
                entries.append(entry)

    entries.reverse()
    return entries[: args.limit]


def _matches(entry: dict, args: argparse.Namespace, cutoff: Optional[datetime]) -> bool:
    if args.persona and str(entry.get("persona_id")) != args.persona:
        return False
    if args.operation and entry.get("operation") != args.operation:
        return False
    if args.severity and (entry.get("details") or {}).get("severity") != args.severity:
        return False
    if args.success is not None and bool(entry.get("success")) != args.success:
        return False
    if cutoff is not None:
        try:
            ts = datetime.fromisoformat(entry.get("timestamp", ""))
        except (TypeError, ValueError):
            return False
        if ts.tzinfo is None:
            ts = ts.replace(tzinfo=timezone.utc)
        if ts <= cutoff:
            return False
    return True


def format_row(row: dict) -> str:
    ts = row.get("created_at") or row.get("timestamp") or ""
    if hasattr(ts, "isoformat"):
        ts = ts.isoformat()
    ts = str(ts).replace("T", " ")[:19]
    details = json.dumps(row.get("details") or {}, default=str)
    if len(details) > DETAILS_PREVIEW_CHARS:
        details = details[:DETAILS_PREVIEW_CHARS] + "..."
    persona = row.get("persona") or row.get("persona_id") or "-"
    ms = row.get("duration_ms")
    return "  ".join([
        f"{ts:<19}",
        f"{str(persona):<16}",
        f"{row.get('operation', ''):<28}",
        "Y" if row.get("success") else "N",
        f"{ms if ms is not None else '-':>6}",
        details,
    ])


def _print_rows(rows: list[dict], as_json: bool):
    if not rows:
        print("No matching log entries found.")
        return
    if as_json:
        print(json.dumps(rows, indent=2, default=str))
        return
    print(f"Found {len(rows)} entries:\n")
    for row in rows:
        print(format_row(row))


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    config = RecallConfig.from_env()

    if args.fallback:
        rows = read_fallback_entries(Path(config.fallback_log_file), args)
        _print_rows(rows, args.json)
        return 0

    from .db import close_shared_pool, get_shared_pool

    try:
        pool = get_shared_pool(config)
        sql, values = build_query(args)
        with pool.connection() as conn:
            rows = conn.execute(sql, values).fetchall()
    except Exception as e:
        print(f"Query error: {e}", file=sys.stderr)
        return 1
    finally:
        close_shared_pool()

    _print_rows([dict(r) for r in rows], args.json)
    return 0


if __name__ == "__main__":
    sys.exit(main())
