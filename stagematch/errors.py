"""Exception taxonomy for the search core."""
from typing import Dict, List, Optional


class SearchError(Exception):
    """Base class for every failure scoped to a single search."""

    code = "INTERNAL_ERROR"


class ValidationError(SearchError):
    """Malformed search criteria; never reaches the orchestration core."""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, errors: Optional[List[Dict[str, str]]] = None):
        self.errors = errors or []
        super().__init__(message)


class RateLimitError(SearchError):
    """A quota was exhausted at identity, session or global scope."""

    code = "RATE_LIMIT_EXCEEDED"

    def __init__(self, scope: str, retry_after_seconds: int, message: Optional[str] = None):
        self.scope = scope
        self.retry_after_seconds = retry_after_seconds
        super().__init__(message or f"Rate limit exceeded ({scope}); retry in {retry_after_seconds}s")


class TransientSourceError(SearchError):
    """Network, timeout or temporary failure of the external source. Retried."""

    code = "SOURCE_TRANSIENT"


class PermanentSourceError(SearchError):
    """Unexpected or malformed response from the external source. Not retried."""

    code = "SOURCE_PERMANENT"


class SourceUnavailable(SearchError):
    """Terminal: the source could not be reached within the retry budget."""

    code = "SOURCE_UNAVAILABLE"

    def __init__(self, message: str, attempts: int = 0):
        self.attempts = attempts
        super().__init__(message)
