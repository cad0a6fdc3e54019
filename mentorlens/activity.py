"""Activity and review logs.

Every MCP tool call is appended to a JSONL activity log so people can see
what their editor asked for and what came back (including whether the
answer was degraded). Generated text that failed to parse goes to a
separate review log for offline inspection.

Both files live alongside mentorlens.db by default.
"""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime
from pathlib import Path

logger = logging.getLogger(__name__)

RESULT_PREVIEW_LIMIT = 500
REVIEW_TEXT_LIMIT = 4000


def _resolve_log_path() -> Path:
    """Find the activity log path, checking env var then defaulting next to the DB."""
    env_path = os.getenv("MENTORLENS_LOG_PATH")
    if env_path:
        return Path(env_path)

    db_path = os.getenv("MENTORLENS_DB_PATH", "mentorlens.db")
    return Path(db_path).parent / "mentorlens-activity.jsonl"


def _resolve_review_path() -> Path:
    env_path = os.getenv("MENTORLENS_REVIEW_LOG_PATH")
    if env_path:
        return Path(env_path)
    return _resolve_log_path().parent / "mentorlens-review.jsonl"


def _append(path: Path, entry: dict) -> None:
    """Append one JSON line. Never raises: logging must not fail a request."""
    try:
        with open(path, "a") as f:
            f.write(json.dumps(entry, default=str) + "\n")
    except OSError as e:
        logger.debug(f"Could not write {path}: {e}")


def log_tool_call(
    tool_name: str,
    arguments: dict,
    result_text: str,
    error: str | None,
    duration_ms: int,
    degraded: bool = False,
) -> None:
    _append(
        _resolve_log_path(),
        {
            "timestamp": datetime.now().isoformat(),
            "tool_name": tool_name,
            "arguments": arguments,
            "result_preview": result_text[:RESULT_PREVIEW_LIMIT] if result_text else "",
            "error": error,
            "degraded": degraded,
            "duration_ms": duration_ms,
        },
    )


def log_malformed_generation(kind: str, reason: str, text: str) -> None:
    _append(
        _resolve_review_path(),
        {
            "timestamp": datetime.now().isoformat(),
            "kind": kind,
            "reason": reason,
            "text": text[:REVIEW_TEXT_LIMIT],
        },
    )


def read_activity_log(
    limit: int = 20,
    tool_name: str | None = None,
    log_path: Path | None = None,
) -> list[dict]:
    """Read recent activity log entries, most recent first."""
    path = log_path or _resolve_log_path()
    if not path.exists():
        return []

    entries: list[dict] = []
    for line in path.read_text().splitlines():
        if not line.strip():
            continue
        try:
            entry = json.loads(line)
        except json.JSONDecodeError:
            continue

        if tool_name and entry.get("tool_name") != tool_name:
            continue

        entries.append(entry)

    entries.reverse()
    return entries[:limit]
