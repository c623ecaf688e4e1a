"""Outcome logging for degraded searches.

Logs stale fallbacks and errors for later review.
Controlled by the SEARCH_LOGGING setting (0/1).
"""

import hashlib
import hmac
import json
import logging
import secrets
import threading
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from config.settings import settings
from .models import Query

logger = logging.getLogger("search.outcomes")

LOG_FILE_NAME = "search_outcomes.jsonl"

# Lock for thread-safe writing
_log_lock = threading.Lock()

# Used when SEARCH_LOG_SALT is unset; hashes then only group within one process
_process_salt = secrets.token_bytes(32)


@dataclass
class OutcomeLog:
    """Log entry for a search outcome."""
    timestamp: str
    query_hash: str  # keyed HMAC-SHA256 of the normalized query
    education_track: str
    radius_km: int
    status: str
    source: Optional[str]
    error_code: Optional[str]
    result_count: int
    latency_ms: int


def _hash_query(query: Query) -> str:
    """
    Keyed hash of the normalized query.

    The query space is small, so an unkeyed digest could be reversed by
    enumerating it. Without the salt the hash only groups repeated queries.
    """
    if settings.search_log_salt:
        salt = settings.search_log_salt.encode("utf-8")
    else:
        salt = _process_salt
    return hmac.new(salt, query.cache_key.encode("utf-8"), hashlib.sha256).hexdigest()[:16]


def _log_file() -> Path:
    return Path(settings.log_directory) / LOG_FILE_NAME


def log_outcome(
    query: Query,
    status: str,
    source: Optional[str],
    error_code: Optional[str],
    result_count: int,
    latency_ms: int,
) -> None:
    """
    Log a search outcome for analytics.

    Only logs if SEARCH_LOGGING=1 and the outcome was degraded:
    - a stale fallback was served
    - an error was returned
    """
    if not settings.search_logging:
        return

    if status == "ok" and source != "stale":
        return

    entry = OutcomeLog(
        timestamp=datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        query_hash=_hash_query(query),
        education_track=query.education_track.value,
        radius_km=query.radius_km,
        status=status,
        source=source,
        error_code=error_code,
        result_count=result_count,
        latency_ms=latency_ms,
    )

    _write_log(entry)


def _write_log(entry: OutcomeLog) -> None:
    """Write log entry to file."""
    log_file = _log_file()
    with _log_lock:
        try:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            with open(log_file, "a", encoding="utf-8") as f:
                f.write(json.dumps(asdict(entry)) + "\n")
        except OSError as e:
            logger.warning(f"Could not write outcome log: {e}")


def get_recent_logs(limit: int = 100) -> list[dict]:
    """Read recent log entries for review."""
    log_file = _log_file()
    if not log_file.exists():
        return []

    entries = []
    with open(log_file, "r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if line:
                entries.append(json.loads(line))

    return entries[-limit:]


def clear_logs() -> None:
    """Clear all log entries."""
    log_file = _log_file()
    if log_file.exists():
        log_file.unlink()
