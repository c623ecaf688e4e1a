"""Response models for search - single envelope contract."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .models import CompanyRecord, ResultEntry, ResultSource

STATUS_OK = "ok"
STATUS_ERROR = "error"

CODE_VALIDATION = "VALIDATION_ERROR"
CODE_RATE_LIMITED = "RATE_LIMIT_EXCEEDED"
CODE_SOURCE_UNAVAILABLE = "SOURCE_UNAVAILABLE"


@dataclass
class SearchResult:
    """
    Unified result envelope for every search.

    Three outcomes are kept apart:
    - status "ok", source "fresh": trustworthy live data (possibly empty)
    - status "ok", source "stale": last known data, refresh failed
    - status "error": no data, with a code saying why
    """
    status: str
    source: Optional[str] = None  # "fresh" | "stale"
    results: List[CompanyRecord] = field(default_factory=list)
    fetched_at: Optional[str] = None  # ISO timestamp of the fetch

    # Error details
    code: Optional[str] = None
    message: Optional[str] = None
    retry_after_seconds: Optional[int] = None
    scope: Optional[str] = None  # Rate limit scope that tripped
    errors: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def is_ok(self) -> bool:
        return self.status == STATUS_OK

    @property
    def is_stale(self) -> bool:
        return self.status == STATUS_OK and self.source == ResultSource.STALE.value

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        if self.is_ok:
            return {
                "status": self.status,
                "source": self.source,
                "results": [r.to_dict() for r in self.results],
                "fetchedAt": self.fetched_at,
            }

        result: Dict[str, Any] = {
            "status": self.status,
            "code": self.code,
            "message": self.message,
        }
        if self.retry_after_seconds is not None:
            result["retryAfterSeconds"] = self.retry_after_seconds
        if self.scope:
            result["scope"] = self.scope
        if self.errors:
            result["errors"] = self.errors
        return result


# Factory functions for common responses
def ok_response(entry: ResultEntry) -> SearchResult:
    """Create a success result from a cache entry (fresh or stale)."""
    return SearchResult(
        status=STATUS_OK,
        source=entry.source.value,
        results=list(entry.results),
        fetched_at=entry.fetched_at_iso,
    )


def error_response(
    code: str,
    message: str,
    retry_after: int = None,
    scope: str = None,
    errors: List[Dict[str, Any]] = None,
) -> SearchResult:
    """Create an error result."""
    return SearchResult(
        status=STATUS_ERROR,
        code=code,
        message=message,
        retry_after_seconds=retry_after,
        scope=scope,
        errors=errors or [],
    )
